"""
RoomLedger: shared-expense ledger client.

Computes net balances and settlement plans for a room's expenses and keeps
independently owned screens in step through per-domain change buses.
"""

__version__ = "0.1.0"
