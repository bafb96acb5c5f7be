"""
Settlement calculator.

Turns a set of expenses into per-member net balances and a greedy, minimal
transfer plan that zeroes them. Pure functions: no I/O, no caching.

All arithmetic happens in integer minor units. Each expense is split evenly
across the split group; the leftover minor units of an uneven split go one
each to the lowest member ids, so the shares of an expense always add up to
the expense exactly and the nets always sum to zero.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from roomledger.core.exceptions import ComputationInvariantViolation
from roomledger.core.models import (
    Expense,
    Member,
    NetBalance,
    SettlementRecord,
    SettlementResult,
    SettlementTransfer,
    SplitPolicy,
)
from roomledger.utils.money import from_minor_units, to_minor_units
from roomledger.utils.months import month_key, month_label

logger = structlog.get_logger(__name__)

# Nets may be off by at most one minor unit before the plan is rejected.
BALANCE_TOLERANCE_UNITS = 1


def _split_group(
    expenses: Sequence[Expense], member_ids: List[int], split_policy: SplitPolicy
) -> List[int]:
    if split_policy == SplitPolicy.PARTICIPANTS:
        payers = {e.payer_id for e in expenses}
        return sorted(m for m in member_ids if m in payers)
    return sorted(member_ids)


def compute_net_balances(
    expenses: Iterable[Expense],
    members: Iterable[Member],
    split_policy: SplitPolicy = SplitPolicy.ALL_MEMBERS,
) -> List[NetBalance]:
    """
    Compute paid, owed share and net for every member.

    Balances follow the order of ``members``. A payer missing from ``members``
    gets a trailing balance row of its own so no money disappears; callers
    that need a valid plan should reject such input
    (:func:`compute_settlement` does).
    """
    expenses = list(expenses)
    names: "OrderedDict[int, Optional[str]]" = OrderedDict()
    for member in members:
        names.setdefault(member.id, member.display_name)
    member_ids = list(names)

    paid: Dict[int, int] = {m: 0 for m in member_ids}
    owed: Dict[int, int] = {m: 0 for m in member_ids}

    group = _split_group(expenses, member_ids, split_policy)

    for expense in expenses:
        units = to_minor_units(expense.amount)

        if expense.payer_id not in paid:
            names.setdefault(expense.payer_id, expense.payer_name)
            paid[expense.payer_id] = 0
            owed[expense.payer_id] = 0
        paid[expense.payer_id] += units

        if not group:
            continue
        base, remainder = divmod(units, len(group))
        for position, member_id in enumerate(group):
            owed[member_id] += base + (1 if position < remainder else 0)

    return [
        NetBalance(
            member_id=member_id,
            display_name=names[member_id],
            total_paid=from_minor_units(paid[member_id]),
            total_owed_share=from_minor_units(owed[member_id]),
            net=from_minor_units(paid[member_id] - owed[member_id]),
        )
        for member_id in names
    ]


def plan_transfers(balances: Iterable[NetBalance]) -> List[SettlementTransfer]:
    """
    Greedy settlement plan.

    Debtors are taken from the most negative net, creditors from the most
    positive; equal magnitudes go in ascending member id order. Each step
    moves ``min(debt, credit)`` and retires whichever side reached zero, so
    the plan has at most ``len(balances) - 1`` transfers.
    """
    debtors = []
    creditors = []
    for balance in balances:
        units = to_minor_units(balance.net)
        if units < 0:
            debtors.append([units, balance.member_id])
        elif units > 0:
            creditors.append([units, balance.member_id])

    debtors.sort(key=lambda d: (d[0], d[1]))
    creditors.sort(key=lambda c: (-c[0], c[1]))

    transfers = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        units = min(-debtor[0], creditor[0])

        transfers.append(
            SettlementTransfer(
                from_member_id=debtor[1],
                to_member_id=creditor[1],
                amount=from_minor_units(units),
            )
        )

        debtor[0] += units
        creditor[0] -= units
        if debtor[0] == 0:
            i += 1
        if creditor[0] == 0:
            j += 1

    return transfers


def apply_transfers(
    balances: Iterable[NetBalance], transfers: Iterable[SettlementTransfer]
) -> Dict[int, int]:
    """Residual net per member, in minor units, after paying ``transfers``."""
    residual = {b.member_id: to_minor_units(b.net) for b in balances}
    for transfer in transfers:
        units = to_minor_units(transfer.amount)
        residual[transfer.from_member_id] = residual.get(transfer.from_member_id, 0) + units
        residual[transfer.to_member_id] = residual.get(transfer.to_member_id, 0) - units
    return residual


def check_balances(balances: Sequence[NetBalance], members: Iterable[Member]) -> None:
    """
    Raise ComputationInvariantViolation when balances cannot be settled.

    Checks that every balance belongs to a known member and that nets sum to
    zero within one minor unit.
    """
    known = {m.id for m in members}
    strangers = [b.member_id for b in balances if b.member_id not in known]
    if strangers:
        raise ComputationInvariantViolation(
            "Expenses paid by members outside the room",
            balances=list(balances),
            details={"unknown_payers": strangers},
        )

    drift = sum(to_minor_units(b.net) for b in balances)
    if abs(drift) > BALANCE_TOLERANCE_UNITS:
        raise ComputationInvariantViolation(
            "Net balances do not sum to zero",
            balances=list(balances),
            details={"drift_units": drift},
        )


def compute_settlement(
    expenses: Iterable[Expense],
    members: Iterable[Member],
    split_policy: SplitPolicy = SplitPolicy.ALL_MEMBERS,
) -> SettlementResult:
    """
    Net balances and transfer plan for a set of expenses.

    Args:
        expenses: Expenses in scope (one room, one time window)
        members: Current room members
        split_policy: Who shares each expense

    Returns:
        SettlementResult with one balance per member and the transfer plan

    Raises:
        ComputationInvariantViolation: Unknown payer, non-zero balance sum, or a
            plan that does not settle every balance
    """
    expenses = list(expenses)
    members = list(members)

    balances = compute_net_balances(expenses, members, split_policy)
    check_balances(balances, members)

    transfers = plan_transfers(balances)

    residual = apply_transfers(balances, transfers)
    leftover = {m: units for m, units in residual.items() if units != 0}
    if leftover:
        raise ComputationInvariantViolation(
            "Transfer plan leaves balances unsettled",
            balances=balances,
            details={"residual_units": leftover},
        )
    if len(transfers) > max(len(balances) - 1, 0):
        raise ComputationInvariantViolation(
            "Transfer plan is not minimal",
            balances=balances,
            details={"transfers": len(transfers), "members": len(balances)},
        )

    logger.debug(
        "Settlement computed",
        expenses=len(expenses),
        members=len(members),
        transfers=len(transfers),
        split_policy=split_policy.value,
    )
    return SettlementResult(balances=balances, transfers=transfers, split_policy=split_policy)


def settle_or_fallback(
    expenses: Iterable[Expense],
    members: Iterable[Member],
    split_policy: SplitPolicy = SplitPolicy.ALL_MEMBERS,
) -> SettlementResult:
    """
    Like :func:`compute_settlement`, but never raises for invariant violations.

    A violation is logged and the raw balances are returned without a plan
    (``plan_available`` is False).
    """
    try:
        return compute_settlement(expenses, members, split_policy)
    except ComputationInvariantViolation as e:
        logger.error(
            "Settlement invariant violated; showing balances without a plan",
            error=e.message,
            details=e.details,
        )
        return SettlementResult(
            balances=e.balances, transfers=[], split_policy=split_policy, plan_available=False
        )


def transfers_for_member(
    result: SettlementResult, member_id: int
) -> List[SettlementTransfer]:
    """Transfers ``member_id`` has to pay under the plan."""
    return [t for t in result.transfers if t.from_member_id == member_id]


def build_settlement_record(
    transfer: SettlementTransfer,
    room_id: int,
    members: Iterable[Member],
    month: str,
) -> SettlementRecord:
    """Turn a confirmed transfer into the immutable record sent to the backend."""
    names = {m.id: m.display_name for m in members}
    if transfer.from_member_id not in names or transfer.to_member_id not in names:
        raise ComputationInvariantViolation(
            "Settlement transfer references an unknown member",
            details={"from": transfer.from_member_id, "to": transfer.to_member_id},
        )
    return SettlementRecord(
        room_id=room_id,
        payer_name=names[transfer.from_member_id],
        receiver_name=names[transfer.to_member_id],
        amount=transfer.amount,
        month_label=month_label(month_key(month)),
    )
