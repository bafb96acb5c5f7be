"""
Per-domain change buses.
"""

from .change_bus import (
    ChangeBus,
    ChangeBusRegistry,
    Subscription,
    get_change_buses,
    reset_change_buses,
)

__all__ = [
    "ChangeBus",
    "ChangeBusRegistry",
    "Subscription",
    "get_change_buses",
    "reset_change_buses",
]
