"""
Ledger Models

Derived values only. Nothing here is persisted; every snapshot is
computed fresh from the currently approved records.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from teamledger.models.actor import utc_now
from teamledger.models.record import FinanceRecord, FundDetails, FundDirection


ZERO = Decimal("0")


def fund_totals(records: list[FinanceRecord]) -> tuple[Decimal, Decimal]:
    """(approved deposits, approved withdrawals) of fund records."""
    deposits = ZERO
    withdrawals = ZERO
    for record in records:
        if not record.counts_toward_ledger or not isinstance(record.details, FundDetails):
            continue
        if record.details.direction == FundDirection.DEPOSIT:
            deposits += record.details.amount
        else:
            withdrawals += record.details.amount
    return deposits, withdrawals


class LedgerSnapshot(BaseModel):
    """
    Income/expense totals for an actor's visible, approved entries.

    net_balance and available_balance may be negative (overdraft is
    allowed and is not an error).
    """

    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO
    pending_amount: Decimal = Field(
        default=ZERO,
        description="Approved income whose payment is still pending"
    )
    received_amount: Decimal = Field(
        default=ZERO,
        description="Approved income that has been received"
    )
    record_count: int = Field(default=0, ge=0)

    @property
    def net_balance(self) -> Decimal:
        return self.total_income - self.total_expense

    @property
    def available_balance(self) -> Decimal:
        return self.received_amount - self.total_expense

    def to_dict(self) -> dict:
        """Flat dict including the derived balances."""
        return {
            "total_income": self.total_income,
            "total_expense": self.total_expense,
            "pending_amount": self.pending_amount,
            "received_amount": self.received_amount,
            "net_balance": self.net_balance,
            "available_balance": self.available_balance,
            "record_count": self.record_count,
        }


class MonthlyTotals(BaseModel):
    """Income and expense for one period bucket."""

    income: Decimal = ZERO
    expense: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class FundBalance(BaseModel):
    """Running balance of the shared cash pool (approved movements only)."""

    total_deposits: Decimal = ZERO
    total_withdrawals: Decimal = ZERO
    is_low: bool = False
    computed_at: datetime = Field(default_factory=utc_now)

    @property
    def balance(self) -> Decimal:
        return self.total_deposits - self.total_withdrawals


class WithdrawalCheck(BaseModel):
    """
    Result of checking a withdrawal against the fund balance.

    A withdrawal above the balance is permitted; it only carries a
    warning, since cash handling may precede reconciliation.
    """

    amount: Decimal
    balance_before: Decimal
    exceeds_balance: bool
    warning: Optional[str] = None

    @property
    def balance_after(self) -> Decimal:
        return self.balance_before - self.amount


class FundWithdrawalResult(BaseModel):
    """A proposed withdrawal together with its balance check."""

    record: FinanceRecord
    check: WithdrawalCheck
