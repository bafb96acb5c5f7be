"""
Screen coordinators.

Each screen re-runs its full read-and-project pipeline whenever one of its
buses signals; none of them edits its projection in place after a command.
"""

from decimal import Decimal
from typing import List, Optional

import structlog
from pydantic import Field

from roomledger.core.config import LedgerConfig
from roomledger.core.models import (
    HistoryFilter,
    LedgerEntity,
    LedgerSnapshot,
    MonthlyTotal,
    MonthRange,
    Notification,
    Room,
    SettlementResult,
    TrendReport,
    UserExpense,
)
from roomledger.data.auth import AuthGuard
from roomledger.data.ledger_reader import LedgerReader
from roomledger.events.change_bus import ChangeBusRegistry
from roomledger.services.history import filter_history
from roomledger.services.notification_service import NotificationService
from roomledger.services.settlement import settle_or_fallback
from roomledger.services.trends import TrendAggregator
from roomledger.utils.months import current_month
from roomledger.views.coordinator import (
    ErrorSink,
    ViewCoordinator,
    preserve_month,
    preserve_selection,
)

logger = structlog.get_logger(__name__)


# Projections


class HomeProjection(LedgerEntity):
    rooms: List[Room] = Field(default_factory=list)
    selected_room_id: Optional[int] = None
    trend: List[MonthlyTotal] = Field(default_factory=list)

    @property
    def selected_room(self) -> Optional[Room]:
        return next((r for r in self.rooms if r.id == self.selected_room_id), None)


class ExpensesProjection(LedgerEntity):
    rooms: List[Room] = Field(default_factory=list)
    snapshot: Optional[LedgerSnapshot] = None
    settlement: SettlementResult = Field(default_factory=SettlementResult)
    selected_member_id: Optional[int] = None

    @property
    def selected_room_id(self) -> Optional[int]:
        return self.snapshot.room.id if self.snapshot else None

    @property
    def selected_month(self) -> Optional[str]:
        return self.snapshot.selected_month if self.snapshot else None

    @property
    def displayed_total(self) -> Decimal:
        return self.snapshot.total_amount if self.snapshot else Decimal("0.00")


class ChartsProjection(LedgerEntity):
    rooms: List[Room] = Field(default_factory=list)
    selected_room_id: Optional[int] = None
    selected_month: Optional[str] = None
    available_months: List[str] = Field(default_factory=list)
    report: TrendReport = Field(default_factory=TrendReport)


class HistoryProjection(LedgerEntity):
    months: List[str] = Field(default_factory=list)
    selected_month: Optional[str] = None
    entries: List[UserExpense] = Field(default_factory=list)
    history_filter: HistoryFilter = HistoryFilter.ALL
    visible: List[UserExpense] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")

    def with_filter(self, history_filter: HistoryFilter) -> "HistoryProjection":
        visible, total = filter_history(self.entries, history_filter)
        return self.model_copy(
            update={"history_filter": history_filter, "visible": visible, "total": total}
        )


class NotificationsProjection(LedgerEntity):
    notifications: List[Notification] = Field(default_factory=list)
    unread_count: int = 0


# Screens


async def fetch_ledger_with_fallback(
    reader: LedgerReader, room_id: int, month: Optional[str]
) -> LedgerSnapshot:
    """
    Fetch a room ledger for ``month``.

    When that month is no longer available the most recent one is fetched
    instead, so the snapshot always holds the expenses of the month it
    reports as selected.
    """
    snapshot = await reader.fetch_room_ledger(room_id, month)
    fallback = preserve_month(snapshot.selected_month, snapshot.available_months)
    if fallback and fallback != snapshot.selected_month:
        logger.debug("Selected month gone; using latest", room_id=room_id, month=fallback)
        snapshot = await reader.fetch_room_ledger(room_id, fallback)
    return snapshot


class HomeView(ViewCoordinator[HomeProjection]):
    """Room list, selected room and its monthly spend trend."""

    name = "home"

    def __init__(
        self,
        reader: LedgerReader,
        buses: ChangeBusRegistry,
        auth_guard: Optional[AuthGuard] = None,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.reader = reader
        self.selected_room_id: Optional[int] = None
        super().__init__([buses.groups, buses.expenses], auth_guard, error_sink)

    def empty_projection(self) -> HomeProjection:
        return HomeProjection()

    async def load(self, previous: HomeProjection) -> HomeProjection:
        rooms = await self.reader.fetch_rooms()
        room = preserve_selection(self.selected_room_id, rooms, key=lambda r: r.id)
        trend = await self.reader.fetch_room_trend(room.id) if room else []
        return HomeProjection(rooms=rooms, selected_room_id=room.id if room else None, trend=trend)

    def on_applied(self, projection: HomeProjection) -> None:
        self.selected_room_id = projection.selected_room_id

    def select_room(self, room_id: int) -> None:
        self.selected_room_id = room_id
        self.change_selection()


class ExpensesView(ViewCoordinator[ExpensesProjection]):
    """
    Expense list, settlement and displayed total for one room and month.

    Settlement never breaks the screen: when the balances fail their checks
    the view shows them without a transfer plan.
    """

    name = "expenses"

    def __init__(
        self,
        reader: LedgerReader,
        buses: ChangeBusRegistry,
        config: LedgerConfig,
        auth_guard: Optional[AuthGuard] = None,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.reader = reader
        self.config = config
        self.selected_room_id: Optional[int] = None
        self.selected_month: Optional[str] = None
        self.selected_member_id: Optional[int] = None
        super().__init__([buses.expenses, buses.groups], auth_guard, error_sink)

    def empty_projection(self) -> ExpensesProjection:
        return ExpensesProjection()

    async def load(self, previous: ExpensesProjection) -> ExpensesProjection:
        rooms = await self.reader.fetch_rooms()
        room = preserve_selection(self.selected_room_id, rooms, key=lambda r: r.id)
        if room is None:
            return ExpensesProjection()

        snapshot = await fetch_ledger_with_fallback(self.reader, room.id, self.selected_month)
        settlement = settle_or_fallback(
            snapshot.expenses, snapshot.members, self.config.split_policy
        )
        member = preserve_selection(self.selected_member_id, snapshot.members, key=lambda m: m.id)
        return ExpensesProjection(
            rooms=rooms,
            snapshot=snapshot,
            settlement=settlement,
            selected_member_id=member.id if member else None,
        )

    def on_applied(self, projection: ExpensesProjection) -> None:
        self.selected_room_id = projection.selected_room_id
        self.selected_month = projection.selected_month
        self.selected_member_id = projection.selected_member_id

    def select_room(self, room_id: int) -> None:
        self.selected_room_id = room_id
        self.selected_month = None
        self.change_selection()

    def select_month(self, month: str) -> None:
        self.selected_month = month
        self.change_selection()

    def select_member(self, member_id: int) -> None:
        """Member selection is local: no refetch."""
        self.selected_member_id = member_id
        self.projection = self.projection.model_copy(update={"selected_member_id": member_id})


class ChartsView(ViewCoordinator[ChartsProjection]):
    """Per-member and per-category spend for the selected room and month."""

    name = "charts"

    def __init__(
        self,
        reader: LedgerReader,
        buses: ChangeBusRegistry,
        aggregator: Optional[TrendAggregator] = None,
        auth_guard: Optional[AuthGuard] = None,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.reader = reader
        self.aggregator = aggregator or TrendAggregator()
        self.selected_room_id: Optional[int] = None
        self.selected_month: Optional[str] = None
        super().__init__([buses.expenses, buses.groups], auth_guard, error_sink)

    def empty_projection(self) -> ChartsProjection:
        return ChartsProjection()

    async def load(self, previous: ChartsProjection) -> ChartsProjection:
        rooms = await self.reader.fetch_rooms()
        room = preserve_selection(self.selected_room_id, rooms, key=lambda r: r.id)
        if room is None:
            return ChartsProjection()

        snapshot = await fetch_ledger_with_fallback(self.reader, room.id, self.selected_month)
        window = MonthRange.single(snapshot.selected_month or current_month())
        report = self.aggregator.aggregate(snapshot.expenses, window, snapshot.members)

        return ChartsProjection(
            rooms=rooms,
            selected_room_id=room.id,
            selected_month=window.end,
            available_months=snapshot.available_months,
            report=report,
        )

    def on_applied(self, projection: ChartsProjection) -> None:
        self.selected_room_id = projection.selected_room_id
        self.selected_month = projection.selected_month

    def select_room(self, room_id: int) -> None:
        self.selected_room_id = room_id
        self.selected_month = None
        self.change_selection()

    def select_month(self, month: str) -> None:
        self.selected_month = month
        self.change_selection()


class HistoryView(ViewCoordinator[HistoryProjection]):
    """
    The signed-in user's own expenses across rooms, one month at a time.

    Opens on the latest month. The credit/debit filter is applied locally.
    """

    name = "history"

    def __init__(
        self,
        reader: LedgerReader,
        buses: ChangeBusRegistry,
        auth_guard: Optional[AuthGuard] = None,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.reader = reader
        self.selected_month: Optional[str] = None
        self.history_filter = HistoryFilter.ALL
        super().__init__([buses.expenses], auth_guard, error_sink)

    def empty_projection(self) -> HistoryProjection:
        return HistoryProjection(history_filter=self.history_filter)

    async def load(self, previous: HistoryProjection) -> HistoryProjection:
        months = await self.reader.fetch_expense_months()
        month = preserve_month(self.selected_month, months)
        if not months or month is None:
            return self.empty_projection()

        entries = await self.reader.fetch_user_expenses(month)
        projection = HistoryProjection(months=months, selected_month=month, entries=entries)
        return projection.with_filter(self.history_filter)

    def on_applied(self, projection: HistoryProjection) -> None:
        self.selected_month = projection.selected_month

    def select_month(self, month: str) -> None:
        self.selected_month = month
        self.change_selection()

    def previous_month(self) -> None:
        months = self.projection.months
        if self.selected_month in months and months.index(self.selected_month) > 0:
            self.select_month(months[months.index(self.selected_month) - 1])

    def next_month(self) -> None:
        months = self.projection.months
        if self.selected_month in months and months.index(self.selected_month) < len(months) - 1:
            self.select_month(months[months.index(self.selected_month) + 1])

    def select_filter(self, history_filter: HistoryFilter) -> None:
        """Filter changes are local: no refetch."""
        self.history_filter = HistoryFilter(history_filter)
        self.projection = self.projection.with_filter(self.history_filter)

    def toggle_filter(self) -> None:
        self.select_filter(self.history_filter.next())


class NotificationsView(ViewCoordinator[NotificationsProjection]):
    """Notification list and unread badge."""

    name = "notifications"

    def __init__(
        self,
        service: NotificationService,
        buses: ChangeBusRegistry,
        auth_guard: Optional[AuthGuard] = None,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.service = service
        super().__init__([buses.notifications], auth_guard, error_sink)

    def empty_projection(self) -> NotificationsProjection:
        return NotificationsProjection()

    async def load(self, previous: NotificationsProjection) -> NotificationsProjection:
        notifications = await self.service.fetch_all()
        return NotificationsProjection(
            notifications=notifications, unread_count=self.service.state.unread_count
        )
