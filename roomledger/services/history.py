"""Filtering and totals for the signed-in user's expense history."""

from decimal import Decimal
from typing import Iterable, List, Tuple

from roomledger.core.models import HistoryFilter, UserExpense


def filter_history(
    entries: Iterable[UserExpense], history_filter: HistoryFilter = HistoryFilter.ALL
) -> Tuple[List[UserExpense], Decimal]:
    """
    Select the entries shown under ``history_filter``, newest first.

    The total adds each visible entry's magnitude: credits as they are,
    debits negated.

    Returns:
        Tuple of (visible entries, total)
    """
    visible = [
        entry
        for entry in entries
        if history_filter == HistoryFilter.ALL or entry.kind == history_filter
    ]
    visible.sort(key=lambda entry: entry.occurred_at, reverse=True)

    total = sum(
        (e.amount if e.kind == HistoryFilter.CREDIT else -e.amount for e in visible),
        Decimal("0.00"),
    )
    return visible, total
