"""Trend aggregation for the charts and home dashboard."""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

import structlog

from roomledger.core.models import (
    CategoryTrend,
    Expense,
    Member,
    MemberTrend,
    MonthlyTotal,
    MonthRange,
    TrendReport,
)
from roomledger.utils.money import from_minor_units, to_minor_units

logger = structlog.get_logger(__name__)


class TrendAggregator:
    """Bucket expenses by calendar month into chart-ready series."""

    def __init__(self, top_n: Optional[int] = None):
        self.top_n = top_n

    def aggregate(
        self,
        expenses: Iterable[Expense],
        window: MonthRange,
        members: Optional[Iterable[Member]] = None,
        top_n: Optional[int] = None,
    ) -> TrendReport:
        """
        Aggregate expenses inside ``window``.

        Args:
            expenses: Expenses to aggregate; those outside the window are ignored
            window: Inclusive month range
            members: Known members, zero-filled in ``per_member`` so series align
            top_n: Truncate ``top_spends`` to this many categories (instance default if None)

        Returns:
            TrendReport with per-member, per-category and top-spend series
        """
        months = window.months()
        index = {month: i for i, month in enumerate(months)}
        top_n = top_n if top_n is not None else self.top_n

        member_units: "OrderedDict[int, List[int]]" = OrderedDict()
        member_names: Dict[int, str] = {}
        for member in members or []:
            member_units.setdefault(member.id, [0] * len(months))
            member_names.setdefault(member.id, member.display_name)

        category_units: Dict[str, List[int]] = {}
        category_icons: Dict[str, str] = {}

        in_window = 0
        for expense in expenses:
            position = index.get(expense.month)
            if position is None:
                continue
            in_window += 1
            units = to_minor_units(expense.amount)

            if expense.payer_id not in member_units:
                member_units[expense.payer_id] = [0] * len(months)
                member_names[expense.payer_id] = expense.payer_name or "Unknown"
            member_units[expense.payer_id][position] += units

            series = category_units.setdefault(expense.category, [0] * len(months))
            series[position] += units
            category_icons.setdefault(expense.category, expense.icon_tag)

        per_member = [
            MemberTrend(
                member_id=member_id,
                display_name=member_names[member_id],
                monthly_totals=[from_minor_units(u) for u in series],
                total=from_minor_units(sum(series)),
            )
            for member_id, series in member_units.items()
        ]
        per_category = [
            CategoryTrend(
                category=category,
                icon_tag=category_icons[category],
                monthly_totals=[from_minor_units(u) for u in series],
                total=from_minor_units(sum(series)),
            )
            for category, series in sorted(category_units.items())
        ]

        top_spends = sorted(per_category, key=lambda c: (-c.total, c.category))
        if top_n:
            top_spends = top_spends[:top_n]

        logger.debug(
            "Trends aggregated",
            window_start=window.start,
            window_end=window.end,
            expenses=in_window,
            categories=len(per_category),
        )
        return TrendReport(
            months=months, per_member=per_member, per_category=per_category, top_spends=top_spends
        )


def monthly_totals(expenses: Iterable[Expense], window: MonthRange) -> List[MonthlyTotal]:
    """Total spend per month of ``window``, zero-filled, in calendar order."""
    totals = OrderedDict((month, 0) for month in window.months())
    for expense in expenses:
        if expense.month in totals:
            totals[expense.month] += to_minor_units(expense.amount)
    return [MonthlyTotal(month=m, total=from_minor_units(u)) for m, u in totals.items()]
