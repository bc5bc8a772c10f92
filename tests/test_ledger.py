"""
Tests for ledger aggregation and the fund ledger.

The worked examples follow one small organization through a delegate
submission, an approval and a deletion request.
"""

import pytest
from datetime import date
from decimal import Decimal

from teamledger.ledger import fund_totals, snapshot_of
from teamledger.models.audit import AuditEventType
from teamledger.models.record import (
    ApprovalState,
    FundDetails,
    FundDirection,
    PaymentStatus,
    RecordFilters,
    RecordKind,
)

from conftest import DELEGATE_ID, OTHER_OWNER_ID, OWNER_ID, expense, income, run


FINANCE = RecordKind.FINANCE_ENTRY
FUND = RecordKind.FUND_ENTRY


def totals(workspace, actor_id=OWNER_ID) -> tuple:
    snapshot = run(workspace.ledger.summarize(actor_id))
    return (
        snapshot.total_income,
        snapshot.received_amount,
        snapshot.pending_amount,
        snapshot.available_balance,
    )


def deposit(amount: str) -> FundDetails:
    return FundDetails(
        direction=FundDirection.DEPOSIT,
        amount=Decimal(amount),
        entry_date=date(2024, 5, 1),
    )


class TestWorkedExamples:
    """End-to-end ledger behavior."""

    def test_owner_income_counts_immediately(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("1000")))
        assert totals(workspace) == (
            Decimal("1000"), Decimal("1000"), Decimal("0"), Decimal("1000")
        )

    def test_delegate_income_counts_after_approval(self, workspace, delegate):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("1000")))
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))
        assert record.approval_state == ApprovalState.PENDING
        assert totals(workspace) == (
            Decimal("1000"), Decimal("1000"), Decimal("0"), Decimal("1000")
        )

        run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        assert run(workspace.ledger.summarize(OWNER_ID)).total_income == Decimal("1500")

    def test_deletion_request_keeps_counting_until_confirmed(self, workspace, delegate):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("1000")))
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, expense("200")))
        run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        assert run(workspace.ledger.summarize(OWNER_ID)).total_expense == Decimal("200")

        run(workspace.gate.retract(DELEGATE_ID, record.id, FINANCE))
        assert run(workspace.ledger.summarize(OWNER_ID)).total_expense == Decimal("200")

        run(workspace.approvals.confirm_deletion(OWNER_ID, FINANCE, record.id))
        assert run(workspace.ledger.summarize(OWNER_ID)).total_expense == Decimal("0")
        assert run(workspace.visibility.get_visible(OWNER_ID, FINANCE, record.id)) is None

    def test_edited_record_stops_counting_until_reapproved(self, workspace, delegate):
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))
        run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        run(workspace.gate.update(DELEGATE_ID, FINANCE, record.id, {"amount": "5000"}))
        assert run(workspace.ledger.summarize(OWNER_ID)).total_income == Decimal("0")


class TestLedgerAggregator:
    """Tests for LedgerAggregator."""

    def test_pending_and_received_split(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("700")))
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("300", PaymentStatus.PENDING)))
        run(workspace.gate.propose(OWNER_ID, FINANCE, expense("900")))

        snapshot = run(workspace.ledger.summarize(OWNER_ID))
        assert snapshot.total_income == Decimal("1000")
        assert snapshot.pending_amount == Decimal("300")
        assert snapshot.received_amount == Decimal("700")
        assert snapshot.net_balance == Decimal("100")
        assert snapshot.available_balance == Decimal("-200")
        assert snapshot.record_count == 3

    def test_summarize_is_idempotent(self, workspace, delegate):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("700")))
        run(workspace.gate.propose(DELEGATE_ID, FINANCE, expense("50")))
        first = run(workspace.ledger.summarize(OWNER_ID))
        second = run(workspace.ledger.summarize(OWNER_ID))
        assert first == second

    def test_delegate_totals_cover_own_approved_records(self, workspace, delegate):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("1000")))
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("250")))
        assert run(workspace.ledger.summarize(DELEGATE_ID)).total_income == Decimal("0")
        run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        assert run(workspace.ledger.summarize(DELEGATE_ID)).total_income == Decimal("250")

    def test_unresolved_actor_gets_zeros(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("1000")))
        snapshot = run(workspace.ledger.summarize("nobody"))
        assert snapshot.total_income == Decimal("0")
        assert snapshot.record_count == 0

    def test_other_organization_not_counted(self, workspace, owner, other_owner):
        run(workspace.gate.propose(OTHER_OWNER_ID, FINANCE, income("9999")))
        assert run(workspace.ledger.summarize(OWNER_ID)).total_income == Decimal("0")

    def test_filters_narrow_totals(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("100", entry_date=date(2024, 1, 5))))
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("200", entry_date=date(2024, 2, 5))))
        snapshot = run(workspace.ledger.summarize(OWNER_ID, RecordFilters(year=2024, month=2)))
        assert snapshot.total_income == Decimal("200")

    def test_filters_cannot_reintroduce_pending(self, workspace, delegate):
        run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))
        filters = RecordFilters(approval_state=ApprovalState.PENDING)
        assert run(workspace.ledger.summarize(OWNER_ID, filters)).total_income == Decimal("0")

    def test_monthly_totals(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("100", entry_date=date(2024, 1, 5))))
        run(workspace.gate.propose(OWNER_ID, FINANCE, expense("40", entry_date=date(2024, 1, 9))))
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("300", entry_date=date(2024, 12, 1))))
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("999", entry_date=date(2023, 12, 1))))

        months = run(workspace.ledger.monthly_totals(OWNER_ID, 2024))
        assert len(months) == 12
        assert months[0].income == Decimal("100")
        assert months[0].net == Decimal("60")
        assert months[11].income == Decimal("300")
        assert months[5].income == Decimal("0")

    def test_yearly_totals(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("100", entry_date=date(2023, 3, 1))))
        run(workspace.gate.propose(OWNER_ID, FINANCE, expense("50", entry_date=date(2024, 3, 1))))
        years = run(workspace.ledger.yearly_totals(OWNER_ID))
        assert list(years) == [2023, 2024]
        assert years[2024].expense == Decimal("50")

    def test_payment_mode_distribution(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("100", payment_mode="UPI")))
        run(workspace.gate.propose(OWNER_ID, FINANCE, expense("40", payment_mode="UPI")))
        run(workspace.gate.propose(OWNER_ID, FINANCE, expense("10")))
        distribution = run(workspace.ledger.payment_mode_distribution(OWNER_ID))
        assert distribution == {"UPI": Decimal("140"), "unknown": Decimal("10")}

    def test_status_distribution(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("100")))
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("25", PaymentStatus.PENDING)))
        distribution = run(workspace.ledger.status_distribution(OWNER_ID))
        assert distribution == {"pending": Decimal("25"), "received": Decimal("100")}

    def test_pure_helpers_ignore_unapproved(self, workspace, delegate):
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))
        fund = run(workspace.gate.propose(DELEGATE_ID, FUND, deposit("500")))
        assert snapshot_of([record, fund]).record_count == 0
        assert fund_totals([record, fund]) == (Decimal("0"), Decimal("0"))


class TestFundLedger:
    """Tests for the shared cash pool."""

    def test_balance_counts_approved_movements(self, workspace, delegate):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("5000")))
        run(workspace.gate.propose(DELEGATE_ID, FUND, deposit("700")))
        balance = run(workspace.ledger.fund_balance(OWNER_ID))
        assert balance.total_deposits == Decimal("5000")
        assert balance.balance == Decimal("5000")
        assert not balance.is_low

    def test_low_balance_flag(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("500")))
        assert run(workspace.ledger.fund_balance(OWNER_ID)).is_low

    def test_withdrawal_within_balance(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("5000")))
        result = run(workspace.record_fund_withdrawal(
            OWNER_ID, {"amount": "1200", "entry_date": "2024-05-02", "description": "Petty cash"}
        ))
        assert not result.check.exceeds_balance
        assert result.check.warning is None
        assert result.record.details.direction == FundDirection.WITHDRAWAL
        assert run(workspace.ledger.fund_balance(OWNER_ID)).balance == Decimal("3800")

    def test_oversized_withdrawal_is_allowed_with_warning(self, workspace, store, owner):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("100")))
        result = run(workspace.record_fund_withdrawal(
            OWNER_ID, {"amount": "300", "entry_date": "2024-05-02"}
        ))
        assert result.check.exceeds_balance
        assert "exceeds" in result.check.warning
        assert result.check.balance_after == Decimal("-200")
        assert run(workspace.ledger.fund_balance(OWNER_ID)).balance == Decimal("-200")

        events = run(store.get_events_by_entity("fund_entry", result.record.id))
        assert AuditEventType.FUND_WITHDRAWAL_WARNING in [e.event_type for e in events]

    def test_delegate_withdrawal_waits_for_approval(self, workspace, store, delegate):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("1000")))
        result = run(workspace.record_fund_withdrawal(
            DELEGATE_ID, {"amount": "400", "entry_date": "2024-05-02"}
        ))
        assert result.record.approval_state == ApprovalState.PENDING
        assert result.check.balance_before == Decimal("1000")
        assert not result.check.exceeds_balance
        assert result.check.warning is None
        events = run(store.get_events_by_entity("fund_entry", result.record.id))
        assert AuditEventType.FUND_WITHDRAWAL_WARNING not in [e.event_type for e in events]
        assert run(workspace.ledger.fund_balance(OWNER_ID)).balance == Decimal("1000")

        run(workspace.approvals.approve(OWNER_ID, FUND, result.record.id))
        assert run(workspace.ledger.fund_balance(OWNER_ID)).balance == Decimal("600")

    def test_delegate_sees_the_shared_pool(self, workspace, delegate):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("5000")))
        run(workspace.gate.propose(DELEGATE_ID, FUND, deposit("700")))
        balance = run(workspace.ledger.fund_balance(DELEGATE_ID))
        assert balance.total_deposits == Decimal("5000")
        assert balance.balance == Decimal("5000")

    def test_delegate_oversized_withdrawal_warns_against_pool(self, workspace, delegate):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("300")))
        result = run(workspace.record_fund_withdrawal(
            DELEGATE_ID, {"amount": "400", "entry_date": "2024-05-02"}
        ))
        assert result.check.balance_before == Decimal("300")
        assert result.check.exceeds_balance
        assert "300" in result.check.warning

    def test_fund_pools_are_per_organization(self, workspace, delegate, other_owner):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("5000")))
        run(workspace.gate.propose(OTHER_OWNER_ID, FUND, deposit("200")))
        assert run(workspace.ledger.fund_balance(OTHER_OWNER_ID)).balance == Decimal("200")
        assert run(workspace.ledger.fund_balance(DELEGATE_ID)).balance == Decimal("5000")

    def test_unresolved_actor_gets_empty_pool(self, workspace, owner):
        run(workspace.gate.propose(OWNER_ID, FUND, deposit("5000")))
        assert run(workspace.ledger.fund_balance("stranger")).balance == Decimal("0")

    def test_withdrawal_direction_cannot_be_overridden(self, workspace, owner):
        result = run(workspace.record_fund_withdrawal(
            OWNER_ID, {"amount": "10", "entry_date": "2024-05-02", "direction": "deposit"}
        ))
        assert result.record.details.direction == FundDirection.WITHDRAWAL
