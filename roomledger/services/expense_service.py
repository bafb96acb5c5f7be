"""Expense and settlement commands."""

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from roomledger.core.config import LedgerConfig
from roomledger.core.exceptions import ValidationError
from roomledger.core.models import (
    ExpenseDraft,
    ExpenseOperation,
    LedgerSnapshot,
    MutationResult,
    Room,
    SettlementPreview,
    SettlementRecord,
    SettlementResult,
)
from roomledger.data.gateway import ApiGateway
from roomledger.data.ledger_reader import LedgerReader
from roomledger.events.change_bus import ChangeBus
from roomledger.services.settlement import build_settlement_record, transfers_for_member
from roomledger.utils.money import CENT, to_wire_amount
from roomledger.utils.months import current_month

logger = structlog.get_logger(__name__)

# "aaaaa", "!!!!!!"
REPEATED_CHARACTERS = re.compile(r"(.)\1{4,}")
# "bkjdfhg"; short acronyms like "KFC" are still allowed
NO_VOWELS = re.compile(r"^[^aeiouAEIOU]+$")
NO_VOWELS_MIN_LENGTH = 6


class ExpenseValidator:
    """Client-side checks applied to expense input before anything is sent."""

    def __init__(self, config: LedgerConfig):
        self.config = config

    def clean_item(self, item: Optional[str]) -> str:
        item = (item or "").strip()
        if not item:
            raise ValidationError("Please complete all required fields.", field="item")
        if len(item) < self.config.min_item_length:
            raise ValidationError(
                f"Item name is too short (min {self.config.min_item_length} chars).", field="item"
            )
        if len(item) > self.config.max_item_length:
            raise ValidationError(
                f"Item name is too long (max {self.config.max_item_length} chars).", field="item"
            )
        if REPEATED_CHARACTERS.search(item):
            raise ValidationError("Please enter a valid item description.", field="item")
        if len(item) >= NO_VOWELS_MIN_LENGTH and NO_VOWELS.match(item):
            raise ValidationError(
                "Item description appears invalid. Please check spelling.", field="item"
            )
        return item

    def clean_amount(self, amount: Any) -> Decimal:
        if amount is None or (isinstance(amount, str) and not amount.strip()):
            raise ValidationError("Please complete all required fields.", field="amount")
        try:
            value = Decimal(str(amount).strip())
        except InvalidOperation:
            value = None
        if value is None or not value.is_finite() or value <= self.config.min_amount:
            raise ValidationError(
                f"Please enter a valid amount greater than {self.config.min_amount}.",
                field="amount",
            )
        return value.quantize(CENT, rounding=ROUND_HALF_UP)

    def clean_room(self, room_id: Optional[int]) -> int:
        if not room_id:
            raise ValidationError("Please choose a room.", field="room_id")
        return room_id

    def validate(self, draft: ExpenseDraft) -> Tuple[str, Decimal, int]:
        """Return the cleaned (item, amount, room_id) or raise ValidationError."""
        return (
            self.clean_item(draft.item),
            self.clean_amount(draft.amount),
            self.clean_room(draft.room_id),
        )


def _to_result(response: Dict[str, Any]) -> MutationResult:
    return MutationResult(
        success=bool(response.get("success", True)),
        message=response.get("message") or "",
        data=response.get("data"),
    )


def choose_default_room(rooms: Iterable[Room], preferred_name: str = "General") -> Optional[Room]:
    """The room new expenses go to: the one named ``preferred_name``, else the first."""
    rooms = list(rooms)
    if not rooms:
        return None
    wanted = preferred_name.strip().lower()
    return next((r for r in rooms if r.name.strip().lower() == wanted), rooms[0])


class ExpenseService:
    """
    Expense mutations and settlement confirmation.

    Every command goes out through the gateway. Only a response the backend
    confirms as successful publishes, on the groups bus (room totals changed)
    and then on the expenses bus. Validation failures, rejections and
    transport errors leave every view untouched.
    """

    def __init__(
        self,
        gateway: ApiGateway,
        expenses_bus: ChangeBus,
        config: LedgerConfig,
        validator: Optional[ExpenseValidator] = None,
        groups_bus: Optional[ChangeBus] = None,
    ):
        self.gateway = gateway
        self.expenses_bus = expenses_bus
        self.groups_bus = groups_bus
        self.config = config
        self.validator = validator or ExpenseValidator(config)
        self.reader = LedgerReader(gateway)

    def default_room(self, rooms: Iterable[Room]) -> Optional[Room]:
        return choose_default_room(rooms, self.config.default_room_name)

    def new_draft(self, rooms: Iterable[Room], today: Optional[date] = None) -> ExpenseDraft:
        """Blank expense form pointed at the default room."""
        room = self.default_room(rooms)
        return ExpenseDraft(
            occurred_at=today or date.today(), room_id=room.id if room else None
        )

    def _publish(self) -> None:
        if self.groups_bus is not None:
            self.groups_bus.publish()
        self.expenses_bus.publish()

    async def _mutate(
        self, op: ExpenseOperation, payload: Dict[str, Any], **log_context
    ) -> MutationResult:
        result = _to_result(await self.gateway.mutate_expense(op, payload))

        if result.success:
            logger.info("Expense mutation confirmed", operation=op.value, **log_context)
            self._publish()
        else:
            logger.warning(
                "Expense mutation rejected",
                operation=op.value,
                message=result.message,
                **log_context,
            )
        return result

    async def add_expense(self, draft: ExpenseDraft) -> MutationResult:
        """
        Validate and create an expense.

        Raises:
            ValidationError: Input rejected before any network call
            TransportError: Gateway failure (nothing is published)
            AuthExpiredError: Session expired
        """
        item, amount, room_id = self.validator.validate(draft)
        payload = {
            "item": item,
            "amount": to_wire_amount(amount),
            "date": draft.occurred_at.isoformat(),
            "roomId": room_id,
        }
        return await self._mutate(ExpenseOperation.ADD, payload, room_id=room_id)

    async def update_expense(self, draft: ExpenseDraft) -> MutationResult:
        """Replace item, amount, date and room of an existing expense. The payer is fixed."""
        if not draft.expense_id:
            raise ValidationError("Expense id is required for an update.", field="expense_id")
        item, amount, room_id = self.validator.validate(draft)
        payload = {
            "expenseId": draft.expense_id,
            "roomId": room_id,
            "item": item,
            "amount": to_wire_amount(amount),
            "date": draft.occurred_at.isoformat(),
        }
        return await self._mutate(
            ExpenseOperation.UPDATE, payload, expense_id=draft.expense_id, room_id=room_id
        )

    async def delete_expense(self, expense_id: int) -> MutationResult:
        if not expense_id:
            raise ValidationError("Expense id is required for a delete.", field="expense_id")
        return await self._mutate(
            ExpenseOperation.DELETE, {"expenseId": expense_id}, expense_id=expense_id
        )

    async def preview_settlement(
        self, room_id: int, member_id: int, month: Optional[str] = None
    ) -> SettlementPreview:
        return await self.reader.fetch_settlement_preview(room_id, member_id, month)

    async def _send_settlement(self, record: SettlementRecord) -> MutationResult:
        result = _to_result(await self.gateway.confirm_settlement(record.to_payload()))

        if result.success:
            logger.info(
                "Settlement confirmed",
                room_id=record.room_id,
                payer=record.payer_name,
                receiver=record.receiver_name,
                amount=str(record.amount),
                month=record.month_label,
            )
        else:
            logger.warning("Settlement rejected", room_id=record.room_id, message=result.message)
        return result

    async def confirm_settlement(self, record: SettlementRecord) -> MutationResult:
        """Send a settlement record; publishes when the backend confirms it."""
        result = await self._send_settlement(record)
        if result.success:
            self._publish()
        return result

    async def settle_member(
        self, result: SettlementResult, member_id: int, snapshot: LedgerSnapshot
    ) -> List[MutationResult]:
        """
        Confirm every transfer ``member_id`` owes under the plan.

        Each transfer becomes one settlement record labelled with the
        snapshot's month. Publishes once after the batch if any record was
        confirmed, even when a later one fails.

        Raises:
            ComputationInvariantViolation: A transfer names a member outside the room
            TransportError: Gateway failure part way through the batch
        """
        month = snapshot.selected_month or current_month()
        records = [
            build_settlement_record(transfer, snapshot.room.id, snapshot.members, month)
            for transfer in transfers_for_member(result, member_id)
        ]
        if not records:
            logger.info("Nothing to settle", room_id=snapshot.room.id, member_id=member_id)
            return []

        results: List[MutationResult] = []
        try:
            for record in records:
                results.append(await self._send_settlement(record))
        finally:
            if any(r.success for r in results):
                self._publish()
        return results
