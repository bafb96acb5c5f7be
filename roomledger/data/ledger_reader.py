"""
Ledger reader: fetches raw room data through the gateway and normalizes it.

Backend payloads use camelCase keys and are not always consistent between
endpoints (``members`` vs ``membersSummary``, ``roomId`` vs ``id``). Everything
leaving this module is a validated ledger model.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from roomledger.core.exceptions import TransportError
from roomledger.core.models import (
    Expense,
    LedgerSnapshot,
    Member,
    MonthlyTotal,
    Notification,
    Room,
    SettlementPreview,
    SettlementPreviewLine,
    UserExpense,
)
from roomledger.data.gateway import ApiGateway
from roomledger.utils.months import label_to_month_key, month_key

logger = structlog.get_logger(__name__)


def _first(row: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present, non-null value among ``keys``."""
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return default


def _normalize_month(value: Any) -> Optional[str]:
    if not value:
        return None
    try:
        return month_key(str(value))
    except ValueError:
        pass
    try:
        return label_to_month_key(str(value))
    except ValueError:
        return None


class LedgerReader:
    """
    Read side of the ledger core.

    With ``strict_validation`` off (the default) malformed rows are logged and
    skipped; with it on, any malformed row fails the whole read with a
    ``TransportError``. Without a gateway only the parsing helpers are usable.
    """

    def __init__(self, gateway: Optional[ApiGateway] = None, strict_validation: bool = False):
        self.gateway = gateway
        self.strict_validation = strict_validation

    # Row normalization

    def _rows(self, rows: Iterable[Dict[str, Any]], parse, kind: str) -> List[Any]:
        parsed = []
        for index, row in enumerate(rows or []):
            try:
                parsed.append(parse(row))
            except (PydanticValidationError, ValueError, TypeError, AttributeError) as e:
                if self.strict_validation:
                    raise TransportError(
                        f"Malformed {kind} row {index}: {e}", details={"row": index}
                    )
                logger.warning("Skipping malformed row", kind=kind, row_index=index, error=str(e))
        return parsed

    @staticmethod
    def parse_member(row: Dict[str, Any]) -> Member:
        return Member(
            id=_first(row, "memberId", "id", "userId"),
            display_name=_first(row, "memberName", "displayName", "name", "userName"),
        )

    @staticmethod
    def parse_expense(row: Dict[str, Any], room_id: Optional[int] = None) -> Expense:
        return Expense(
            id=_first(row, "expenseId", "id"),
            room_id=_first(row, "roomId", default=room_id),
            payer_id=_first(row, "payerId", "memberId"),
            item=str(_first(row, "item", default="")).strip(),
            amount=_first(row, "amount"),
            occurred_at=_first(row, "date", "expenseDate", "occurredAt"),
            category=_first(row, "category", "categoryName"),
            icon_tag=_first(row, "iconName", "iconTag"),
            payer_name=_first(row, "payerName"),
        )

    def parse_room(self, row: Dict[str, Any]) -> Room:
        return Room(
            id=_first(row, "roomId", "id"),
            name=_first(row, "name", "roomName", default="Unnamed Room"),
            members=self._rows(_first(row, "members", default=[]), self.parse_member, "member"),
            total_amount=_first(row, "totalAmount", "total", default=0),
        )

    # Reads

    async def fetch_rooms(self) -> List[Room]:
        """Fetch every room visible to the current user."""
        raw = await self.gateway.fetch_rooms()
        rooms = self._rows(raw, self.parse_room, "room")
        logger.debug("Rooms fetched", count=len(rooms))
        return rooms

    async def fetch_room_ledger(self, room_id: int, month: Optional[str] = None) -> LedgerSnapshot:
        """
        Fetch one room's members and expenses for a month.

        Args:
            room_id: Room to read
            month: Month key (YYYY-MM); the backend picks its default month when None

        Returns:
            Normalized snapshot

        Raises:
            TransportError: On gateway failure or (strict mode) malformed rows
            AuthExpiredError: When the session expired
        """
        data = await self.gateway.fetch_expenses(room_id, month)
        snapshot = self.build_snapshot(data, room_id, month)

        logger.debug(
            "Room ledger fetched",
            room_id=room_id,
            month=snapshot.selected_month,
            members=len(snapshot.members),
            expenses=len(snapshot.expenses),
        )
        return snapshot

    def build_snapshot(
        self, data: Dict[str, Any], room_id: Optional[int] = None, month: Optional[str] = None
    ) -> LedgerSnapshot:
        """Normalize a room ledger payload (as served by the backend) into a snapshot."""
        if not isinstance(data, dict):
            raise TransportError(
                "Unexpected room ledger payload",
                details={"room_id": room_id, "type": type(data).__name__},
            )
        if room_id is None:
            room_id = _first(data, "roomId", "id", default=0)

        members = self._rows(
            _first(data, "members", "membersSummary", default=[]), self.parse_member, "member"
        )
        expenses = self._rows(
            _first(data, "expenses", default=[]),
            lambda row: self.parse_expense(row, room_id),
            "expense",
        )

        available = sorted(
            {m for m in (_normalize_month(v) for v in data.get("availableMonths") or []) if m}
        )
        selected = (
            _normalize_month(data.get("selectedMonth"))
            or _normalize_month(month)
            or (available[-1] if available else None)
        )

        room = Room(
            id=room_id,
            name=_first(data, "roomName", "name", default="Unnamed Room"),
            members=members,
            total_amount=sum((e.amount for e in expenses), 0),
        )
        return LedgerSnapshot(
            room=room, expenses=expenses, available_months=available, selected_month=selected
        )

    async def fetch_settlement_preview(
        self, room_id: int, member_id: int, month: Optional[str] = None
    ) -> SettlementPreview:
        """Fetch the backend's own settlement figures for one member."""
        data = await self.gateway.fetch_settlement_preview(room_id, member_id, month)
        lines = self._rows(
            _first(data, "settlements", "transfers", default=[]),
            lambda row: SettlementPreviewLine(
                to_member_id=_first(row, "toMemberId"),
                to_member_name=_first(row, "toMemberName", default="Unknown"),
                amount=_first(row, "amount"),
            ),
            "settlement",
        )
        return SettlementPreview(
            member_id=member_id, net_balance=_first(data, "netBalance", default=0), transfers=lines
        )

    async def fetch_room_trend(self, room_id: int) -> List[MonthlyTotal]:
        """Fetch per-month totals for a room's dashboard chart."""
        raw = await self.gateway.fetch_room_trend(room_id)

        def parse(row: Dict[str, Any]) -> MonthlyTotal:
            month = _normalize_month(_first(row, "month", "monthKey", "monthName"))
            if month is None:
                raise ValueError(f"Unrecognized month in trend row: {row!r}")
            return MonthlyTotal(month=month, total=_first(row, "total", default=0))

        return self._rows(raw, parse, "trend")

    async def fetch_notifications(self) -> List[Notification]:
        raw = await self.gateway.fetch_notifications()
        return self._rows(
            raw,
            lambda row: Notification(
                id=_first(row, "id", "notificationId"),
                title=_first(row, "title", default=""),
                body=_first(row, "body", "message", default=""),
                is_read=bool(_first(row, "isRead", default=False)),
                created_at=_first(row, "createdAt"),
            ),
            "notification",
        )

    # History

    @staticmethod
    def parse_user_expense(row: Dict[str, Any]) -> UserExpense:
        return UserExpense(
            item=_first(row, "item"),
            room_name=_first(row, "roomName"),
            amount=_first(row, "amount", default=0),
            occurred_at=_first(row, "expenseDate", "date"),
            icon_tag=_first(row, "iconName"),
            user_id=_first(row, "userId"),
        )

    async def fetch_expense_months(self) -> List[str]:
        """Months (YYYY-MM, oldest first) in which the current user has expenses."""
        raw = await self.gateway.fetch_expense_months()
        months = sorted({m for m in (_normalize_month(v) for v in raw or []) if m})
        logger.debug("Expense months fetched", count=len(months))
        return months

    async def fetch_user_expenses(self, month: str) -> List[UserExpense]:
        """Fetch the current user's expenses across all rooms for one month."""
        raw = await self.gateway.fetch_user_expenses(month)
        entries = self._rows(raw, self.parse_user_expense, "user expense")
        logger.debug("User expenses fetched", month=month, count=len(entries))
        return entries
