"""
Data models and type definitions for RoomLedger.

Provides type-safe data structures with validation for ledger entities,
derived settlement figures, trend reports and gateway results.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from roomledger.utils.money import CENT, to_wire_amount
from roomledger.utils.months import month_key, month_label, months_between, shift_month


def quantize_money(value: Any) -> Decimal:
    """Coerce a numeric value to a two-decimal Decimal."""
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e


def parse_calendar_date(value: Any) -> Any:
    """Accept ISO dates and datetimes, keeping only the calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    return value


class SplitPolicy(str, Enum):
    """Which members share the cost of each expense."""

    ALL_MEMBERS = "all_members"
    PARTICIPANTS = "participants"


class ExpenseOperation(str, Enum):
    """Expense mutation commands accepted by the gateway."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class NotificationOperation(str, Enum):
    """Notification mutation commands accepted by the gateway."""

    MARK_ALL_READ = "mark_all_read"
    CLEAR_ALL = "clear_all"
    DELETE = "delete"


class ViewState(str, Enum):
    """Refresh protocol states of a view coordinator."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    REFRESHING_BACKGROUND = "refreshing_background"
    TORN_DOWN = "torn_down"


class HistoryFilter(str, Enum):
    """Which side of the user's expense history is shown."""

    ALL = "all"
    CREDIT = "credit"
    DEBIT = "debit"

    def next(self) -> HistoryFilter:
        """The filter after this one when cycling all -> credit -> debit."""
        order = list(HistoryFilter)
        return order[(order.index(self) + 1) % len(order)]


# Base Models


class LedgerEntity(BaseModel):
    """Base class for immutable ledger values."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)


# Reference data


class Member(LedgerEntity):
    """A room member. Identity is immutable within a room."""

    id: int
    display_name: str = Field(default="Unknown", max_length=200)

    @field_validator("display_name", mode="before")
    @classmethod
    def normalize_name(cls, v):
        if v is None:
            return "Unknown"
        return str(v).strip() or "Unknown"


class Room(LedgerEntity):
    """A shared ledger scope (group) with its members."""

    id: int
    name: str = Field(default="Unnamed Room")
    members: List[Member] = Field(default_factory=list)
    total_amount: Decimal = Field(default=Decimal("0.00"))

    @field_validator("total_amount", mode="before")
    @classmethod
    def parse_total(cls, v):
        return quantize_money(v or 0)

    def member(self, member_id: int) -> Optional[Member]:
        """Return the member with the given id, if present."""
        return next((m for m in self.members if m.id == member_id), None)


class Expense(LedgerEntity):
    """A single logged expense."""

    id: int
    room_id: int
    payer_id: int
    item: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    occurred_at: date
    category: str = Field(default="Uncategorized")
    icon_tag: str = Field(default="fa-solid fa-receipt")
    payer_name: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return quantize_money(v)

    @field_validator("occurred_at", mode="before")
    @classmethod
    def parse_occurred_at(cls, v):
        return parse_calendar_date(v)

    @field_validator("category", mode="before")
    @classmethod
    def default_category(cls, v):
        if v is None or not str(v).strip():
            return "Uncategorized"
        return str(v).strip()

    @field_validator("icon_tag", mode="before")
    @classmethod
    def default_icon(cls, v):
        if v is None or not str(v).strip():
            return "fa-solid fa-receipt"
        return str(v).strip()

    @property
    def month(self) -> str:
        """Month key (YYYY-MM) the expense is bucketed under."""
        return month_key(self.occurred_at)


# Derived settlement figures


class NetBalance(LedgerEntity):
    """A member's paid total against their fair share."""

    member_id: int
    display_name: Optional[str] = None
    total_paid: Decimal = Decimal("0.00")
    total_owed_share: Decimal = Decimal("0.00")
    net: Decimal = Decimal("0.00")


class SettlementTransfer(LedgerEntity):
    """A recommended payment from a debtor to a creditor."""

    from_member_id: int
    to_member_id: int
    amount: Decimal = Field(..., gt=0)


class SettlementResult(LedgerEntity):
    """Balances and transfer plan for one room and time window."""

    balances: List[NetBalance] = Field(default_factory=list)
    transfers: List[SettlementTransfer] = Field(default_factory=list)
    split_policy: SplitPolicy = SplitPolicy.ALL_MEMBERS
    plan_available: bool = True

    def balance_for(self, member_id: int) -> Optional[NetBalance]:
        return next((b for b in self.balances if b.member_id == member_id), None)


class SettlementRecord(LedgerEntity):
    """A confirmed settlement. Immutable once created."""

    room_id: int
    payer_name: str = Field(..., min_length=1)
    receiver_name: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    month_label: str
    settled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return quantize_money(v)

    def to_payload(self) -> dict:
        """Wire payload understood by the settlement endpoint."""
        return {
            "roomId": self.room_id,
            "payerName": self.payer_name,
            "receiverName": self.receiver_name,
            "settlementAmount": to_wire_amount(self.amount),
            "monthLabel": self.month_label,
            "settlementMonth": self.settled_at.isoformat(),
        }


class SettlementPreviewLine(LedgerEntity):
    """One counterparty in a server-side settlement preview."""

    to_member_id: int
    to_member_name: str
    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return quantize_money(v)


class SettlementPreview(LedgerEntity):
    """Server-computed settlement details for one member."""

    member_id: int
    net_balance: Decimal = Decimal("0.00")
    transfers: List[SettlementPreviewLine] = Field(default_factory=list)

    @field_validator("net_balance", mode="before")
    @classmethod
    def parse_net(cls, v):
        return quantize_money(v or 0)


# Snapshots


class LedgerSnapshot(LedgerEntity):
    """Normalized room ledger for one month as returned by the backend."""

    room: Room
    expenses: List[Expense] = Field(default_factory=list)
    available_months: List[str] = Field(default_factory=list)
    selected_month: Optional[str] = None

    @property
    def members(self) -> List[Member]:
        return list(self.room.members)

    @property
    def total_amount(self) -> Decimal:
        return sum((e.amount for e in self.expenses), Decimal("0.00"))


# Trends


class MonthRange(LedgerEntity):
    """Inclusive range of calendar months, keyed YYYY-MM."""

    start: str
    end: str

    @field_validator("start", "end", mode="before")
    @classmethod
    def normalize_month(cls, v):
        if isinstance(v, (date, datetime)):
            return month_key(v)
        return str(v).strip()[:7]

    @model_validator(mode="after")
    def check_order(self):
        if self.start > self.end:
            raise ValueError(f"Month range start {self.start} is after end {self.end}")
        return self

    @classmethod
    def single(cls, month: str) -> "MonthRange":
        return cls(start=month, end=month)

    @classmethod
    def trailing(cls, end: str, count: int) -> "MonthRange":
        """The ``count`` months ending with (and including) ``end``."""
        end = month_key(end) if isinstance(end, (date, datetime)) else end
        return cls(start=shift_month(end, -(max(count, 1) - 1)), end=end)

    def months(self) -> List[str]:
        return months_between(self.start, self.end)

    def contains(self, day: date) -> bool:
        return self.start <= month_key(day) <= self.end


class MemberTrend(LedgerEntity):
    """Spend paid by one member, per month of the window."""

    member_id: int
    display_name: str
    monthly_totals: List[Decimal] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")


class CategoryTrend(LedgerEntity):
    """Spend in one category, per month of the window."""

    category: str
    icon_tag: str = "fa-solid fa-receipt"
    monthly_totals: List[Decimal] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")


class TrendReport(LedgerEntity):
    """Chart-ready aggregation of a set of expenses."""

    months: List[str] = Field(default_factory=list)
    per_member: List[MemberTrend] = Field(default_factory=list)
    per_category: List[CategoryTrend] = Field(default_factory=list)
    top_spends: List[CategoryTrend] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((m.total for m in self.per_member), Decimal("0.00"))


class MonthlyTotal(LedgerEntity):
    """Total spend of a room in one month."""

    month: str
    total: Decimal = Decimal("0.00")

    @property
    def label(self) -> str:
        return month_label(self.month)


# Notifications


class Notification(LedgerEntity):
    """An in-app notification."""

    id: int
    title: str = ""
    body: str = ""
    is_read: bool = False
    created_at: Optional[datetime] = None


# History


class UserExpense(LedgerEntity):
    """
    One line of the signed-in user's expense history across rooms.

    Positive amounts are credits, negative amounts debits.
    """

    item: str = "Unknown"
    room_name: str = "Unknown"
    amount: Decimal = Decimal("0.00")
    occurred_at: date
    icon_tag: str = Field(default="fa-solid fa-receipt")
    user_id: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return quantize_money(v if v is not None else 0)

    @field_validator("occurred_at", mode="before")
    @classmethod
    def parse_occurred_at(cls, v):
        return parse_calendar_date(v)

    @field_validator("item", "room_name", mode="before")
    @classmethod
    def default_unknown(cls, v):
        if v is None or not str(v).strip():
            return "Unknown"
        return str(v).strip()

    @field_validator("icon_tag", mode="before")
    @classmethod
    def default_icon(cls, v):
        if v is None or not str(v).strip():
            return "fa-solid fa-receipt"
        return str(v).strip()

    @field_validator("user_id", mode="before")
    @classmethod
    def stringify_user_id(cls, v):
        return str(v) if v is not None else None

    @property
    def kind(self) -> HistoryFilter:
        return HistoryFilter.CREDIT if self.amount >= 0 else HistoryFilter.DEBIT

    @property
    def month(self) -> str:
        return month_key(self.occurred_at)


# Commands


class ExpenseDraft(BaseModel):
    """Raw expense form input, validated by the expense service before sending."""

    item: str = ""
    amount: Any = None
    occurred_at: date = Field(default_factory=date.today)
    room_id: Optional[int] = None
    expense_id: Optional[int] = None
    payer_id: Optional[int] = None


class MutationResult(BaseModel):
    """Outcome reported by the backend for a mutation command."""

    success: bool = False
    message: str = ""
    data: Optional[Any] = None
