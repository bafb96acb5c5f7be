"""Validate net balances, transfer plans and their invariants."""

import random
from datetime import date
from decimal import Decimal

import pytest

from roomledger.core.exceptions import ComputationInvariantViolation
from roomledger.core.models import Member, NetBalance, SplitPolicy
from roomledger.services.settlement import (
    apply_transfers,
    build_settlement_record,
    check_balances,
    compute_net_balances,
    compute_settlement,
    plan_transfers,
    settle_or_fallback,
    transfers_for_member,
)
from roomledger.utils.money import to_minor_units
from tests.sample_data import ALICE, BOB, CAROL, make_expense


def nets(result):
    return {b.member_id: b.net for b in result.balances}


def plan(result):
    return [(t.from_member_id, t.to_member_id, t.amount) for t in result.transfers]


class TestComputeSettlement:
    """Settlement scenarios for a single room and month."""

    def test_two_members_one_expense(self):
        """One payer, two members: the other owes half."""
        result = compute_settlement([make_expense(1, ALICE.id, 100)], [ALICE, BOB])

        assert nets(result) == {1: Decimal("50.00"), 2: Decimal("-50.00")}
        assert plan(result) == [(2, 1, Decimal("50.00"))]
        assert result.plan_available

    def test_three_members_largest_creditor_first(self):
        """Debts are matched largest first against the top creditor."""
        expenses = [make_expense(1, ALICE.id, 90), make_expense(2, BOB.id, 30)]

        result = compute_settlement(expenses, [ALICE, BOB, CAROL])

        assert nets(result) == {1: Decimal("50.00"), 2: Decimal("-10.00"), 3: Decimal("-40.00")}
        assert plan(result) == [(3, 1, Decimal("40.00")), (2, 1, Decimal("10.00"))]

        alice = result.balance_for(ALICE.id)
        assert alice.total_paid == Decimal("90.00")
        assert alice.total_owed_share == Decimal("40.00")

    def test_zero_expenses(self):
        """No expenses: every member at zero, no transfers, no error."""
        result = compute_settlement([], [ALICE, BOB, CAROL])

        assert [b.member_id for b in result.balances] == [1, 2, 3]
        assert all(b.net == 0 for b in result.balances)
        assert result.transfers == []

    def test_no_members_and_no_expenses(self):
        result = compute_settlement([], [])

        assert result.balances == []
        assert result.transfers == []

    def test_single_member(self):
        """A lone member pays their own way."""
        result = compute_settlement([make_expense(1, ALICE.id, 75)], [ALICE])

        assert nets(result) == {1: Decimal("0.00")}
        assert result.transfers == []

    def test_member_without_expenses_owes_share(self):
        result = compute_settlement([make_expense(1, ALICE.id, 60)], [ALICE, BOB, CAROL])

        assert result.balance_for(CAROL.id).net == Decimal("-20.00")
        assert result.balance_for(CAROL.id).total_paid == Decimal("0.00")

    def test_uneven_split_goes_to_lowest_ids(self):
        """Leftover cents land on the lowest member ids and nets still sum to zero."""
        result = compute_settlement([make_expense(1, BOB.id, 100)], [CAROL, BOB, ALICE])

        shares = {b.member_id: b.total_owed_share for b in result.balances}
        assert shares == {1: Decimal("33.34"), 2: Decimal("33.33"), 3: Decimal("33.33")}
        assert sum(b.net for b in result.balances) == 0

    def test_balances_follow_member_order(self):
        result = compute_settlement([make_expense(1, ALICE.id, 30)], [CAROL, ALICE, BOB])

        assert [b.member_id for b in result.balances] == [3, 1, 2]

    def test_equal_magnitudes_break_ties_by_id(self):
        members = [Member(id=i, display_name=f"M{i}") for i in (4, 3, 2, 1)]
        expenses = [make_expense(1, 1, 40), make_expense(2, 2, 40)]

        result = compute_settlement(expenses, members)

        assert plan(result) == [(3, 1, Decimal("20.00")), (4, 2, Decimal("20.00"))]

    def test_participants_split_policy(self):
        """Only members who paid something share the cost."""
        expenses = [make_expense(1, ALICE.id, 90), make_expense(2, BOB.id, 30)]

        result = compute_settlement(expenses, [ALICE, BOB, CAROL], SplitPolicy.PARTICIPANTS)

        assert nets(result) == {1: Decimal("30.00"), 2: Decimal("-30.00"), 3: Decimal("0.00")}
        assert plan(result) == [(2, 1, Decimal("30.00"))]
        assert result.split_policy == SplitPolicy.PARTICIPANTS

    def test_unknown_payer_is_an_invariant_violation(self):
        expenses = [make_expense(1, ALICE.id, 40), make_expense(2, 99, 20)]

        with pytest.raises(ComputationInvariantViolation) as exc_info:
            compute_settlement(expenses, [ALICE, BOB])

        assert exc_info.value.details["unknown_payers"] == [99]
        assert [b.member_id for b in exc_info.value.balances] == [1, 2, 99]


class TestSettlementProperties:
    """Invariants that hold for any expense set."""

    def test_random_ledgers(self):
        rng = random.Random(20251019)

        for _ in range(200):
            member_count = rng.randint(1, 7)
            members = [
                Member(id=rng.randint(1, 10_000) * 10 + i, display_name=f"M{i}")
                for i in range(member_count)
            ]
            expenses = [
                make_expense(
                    n,
                    rng.choice(members).id,
                    Decimal(rng.randint(1, 500_000)) / 100,
                    occurred_at=date(2025, rng.randint(1, 12), 1),
                )
                for n in range(rng.randint(0, 25))
            ]
            policy = rng.choice(list(SplitPolicy))

            result = compute_settlement(expenses, members, policy)

            assert sum(to_minor_units(b.net) for b in result.balances) == 0
            assert len(result.transfers) <= max(member_count - 1, 0)
            residual = apply_transfers(result.balances, result.transfers)
            assert all(units == 0 for units in residual.values())
            assert all(t.amount > 0 for t in result.transfers)


class TestSettlementHelpers:
    def test_compute_net_balances_keeps_strangers(self):
        balances = compute_net_balances([make_expense(1, 7, 10)], [ALICE])

        assert [b.member_id for b in balances] == [1, 7]
        assert balances[1].total_paid == Decimal("10.00")

    def test_plan_transfers_skips_settled_members(self):
        balances = [
            NetBalance(member_id=1, net=Decimal("0.00")),
            NetBalance(member_id=2, net=Decimal("12.50")),
            NetBalance(member_id=3, net=Decimal("-12.50")),
        ]

        transfers = plan_transfers(balances)

        assert [(t.from_member_id, t.to_member_id, t.amount) for t in transfers] == [
            (3, 2, Decimal("12.50"))
        ]

    def test_check_balances_rejects_drift(self):
        balances = [
            NetBalance(member_id=1, net=Decimal("10.00")),
            NetBalance(member_id=2, net=Decimal("-9.00")),
        ]

        with pytest.raises(ComputationInvariantViolation, match="do not sum to zero"):
            check_balances(balances, [ALICE, BOB])

    def test_check_balances_tolerates_one_minor_unit(self):
        balances = [
            NetBalance(member_id=1, net=Decimal("10.00")),
            NetBalance(member_id=2, net=Decimal("-9.99")),
        ]

        check_balances(balances, [ALICE, BOB])

    def test_settle_or_fallback_returns_raw_balances(self):
        expenses = [make_expense(1, ALICE.id, 40), make_expense(2, 99, 20)]

        result = settle_or_fallback(expenses, [ALICE, BOB])

        assert not result.plan_available
        assert result.transfers == []
        assert {b.member_id for b in result.balances} == {1, 2, 99}

    def test_settle_or_fallback_passes_valid_results_through(self):
        result = settle_or_fallback([make_expense(1, ALICE.id, 100)], [ALICE, BOB])

        assert result.plan_available
        assert len(result.transfers) == 1

    def test_transfers_for_member(self):
        expenses = [make_expense(1, ALICE.id, 90), make_expense(2, BOB.id, 30)]
        result = compute_settlement(expenses, [ALICE, BOB, CAROL])

        assert [t.to_member_id for t in transfers_for_member(result, CAROL.id)] == [ALICE.id]
        assert transfers_for_member(result, ALICE.id) == []

    def test_build_settlement_record(self):
        result = compute_settlement([make_expense(1, ALICE.id, 100)], [ALICE, BOB])

        record = build_settlement_record(result.transfers[0], 10, [ALICE, BOB], "2025-10-05")
        payload = record.to_payload()

        assert record.payer_name == "Bob"
        assert record.receiver_name == "Alice"
        assert payload["roomId"] == 10
        assert payload["settlementAmount"] == "50.00"
        assert payload["monthLabel"] == "October 2025"
        assert "settlementMonth" in payload

    def test_settlement_record_is_immutable(self):
        result = compute_settlement([make_expense(1, ALICE.id, 100)], [ALICE, BOB])
        record = build_settlement_record(result.transfers[0], 10, [ALICE, BOB], "2025-10")

        with pytest.raises(Exception):
            record.amount = Decimal("1.00")

    def test_build_settlement_record_rejects_unknown_member(self):
        result = compute_settlement([make_expense(1, ALICE.id, 100)], [ALICE, BOB])

        with pytest.raises(ComputationInvariantViolation):
            build_settlement_record(result.transfers[0], 10, [ALICE], "2025-10")
