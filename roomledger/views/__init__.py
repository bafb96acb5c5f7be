"""
Screen coordinators and the refresh protocol they share.
"""

from .coordinator import ViewCoordinator
from .screens import ChartsView, ExpensesView, HistoryView, HomeView, NotificationsView

__all__ = [
    "ViewCoordinator",
    "HomeView",
    "ExpensesView",
    "ChartsView",
    "HistoryView",
    "NotificationsView",
]
