"""
Ledger Aggregator

Computes totals from approved records only.

DESIGN DECISION: Aggregation is DETERMINISTIC and recomputed on every
call. There is no cache and no incremental running total; an
organization has thousands of records, not millions, so correctness
wins over throughput.

Numbers:
- total_income / total_expense: sums of approved entries
- pending_amount: approved income whose payment is still pending
- received_amount: approved income that was received
- net_balance = total_income - total_expense
- available_balance = received_amount - total_expense

Both balances may be negative. Overdraft is not an error.

The fund ledger is a shared cash pool with the same approval gating:
balance = approved deposits - approved withdrawals. A withdrawal larger
than the balance is allowed but carries a warning, since cash may be
spent before the books catch up.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional

from teamledger.access.visibility import VisibilityFilter
from teamledger.config import LedgerSettings, get_settings
from teamledger.errors import translate_storage_error
from teamledger.identity import IdentityResolver
from teamledger.models.actor import AuthSession
from teamledger.models.ledger import (
    ZERO,
    FundBalance,
    LedgerSnapshot,
    MonthlyTotals,
    WithdrawalCheck,
)
from teamledger.models.record import (
    ApprovalState,
    EntryDetails,
    EntryType,
    FinanceRecord,
    PaymentStatus,
    RecordFilters,
    RecordKind,
)
from teamledger.services.storage import (
    RecordStoreInterface,
    StorageError,
    StoreContext,
)


def snapshot_of(records: list[FinanceRecord]) -> LedgerSnapshot:
    """
    Sum a set of finance entries.

    Records that are not approved, or are not finance entries, are
    ignored, so the result never depends on what the caller passed in.
    """
    total_income = ZERO
    total_expense = ZERO
    pending_amount = ZERO
    received_amount = ZERO
    count = 0

    for record in records:
        if not record.counts_toward_ledger or not isinstance(record.details, EntryDetails):
            continue
        details = record.details
        count += 1
        if details.entry_type == EntryType.INCOME:
            total_income += details.amount
            if details.payment_status == PaymentStatus.PENDING:
                pending_amount += details.amount
            else:
                received_amount += details.amount
        else:
            total_expense += details.amount

    return LedgerSnapshot(
        total_income=total_income,
        total_expense=total_expense,
        pending_amount=pending_amount,
        received_amount=received_amount,
        record_count=count,
    )


class LedgerAggregator:
    """
    Role-scoped totals.

    An owner's totals cover the whole organization; a delegate's cover
    their own approved entries. The fund is one pool per organization,
    so fund totals are the same for the owner and every delegate. An
    unresolved actor gets zeros.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        visibility: VisibilityFilter,
        resolver: IdentityResolver,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._visibility = visibility
        self._resolver = resolver
        self._settings = settings or get_settings().ledger

    async def _approved(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        filters: Optional[RecordFilters],
        session: Optional[AuthSession],
    ) -> list[FinanceRecord]:
        actor = await self._resolver.resolve_or_none(actor_id, session)
        if actor is None:
            return []
        filters = (filters or RecordFilters()).restricted_to(ApprovalState.APPROVED)
        return await self._visibility.list_for_actor(actor, kind, filters)

    async def summarize(
        self,
        actor_id: Optional[str],
        filters: Optional[RecordFilters] = None,
        session: Optional[AuthSession] = None,
    ) -> LedgerSnapshot:
        records = await self._approved(actor_id, RecordKind.FINANCE_ENTRY, filters, session)
        return snapshot_of(records)

    async def monthly_totals(
        self,
        actor_id: Optional[str],
        year: int,
        session: Optional[AuthSession] = None,
    ) -> list[MonthlyTotals]:
        """Twelve buckets, January first."""
        records = await self._approved(
            actor_id, RecordKind.FINANCE_ENTRY, RecordFilters(year=year), session
        )
        buckets = [MonthlyTotals() for _ in range(12)]
        for record in records:
            bucket = buckets[record.effective_date.month - 1]
            if record.details.entry_type == EntryType.INCOME:
                bucket.income += record.details.amount
            else:
                bucket.expense += record.details.amount
        return buckets

    async def yearly_totals(
        self,
        actor_id: Optional[str],
        session: Optional[AuthSession] = None,
    ) -> dict[int, MonthlyTotals]:
        """Income and expense per calendar year, oldest year first."""
        records = await self._approved(actor_id, RecordKind.FINANCE_ENTRY, None, session)
        years: dict[int, MonthlyTotals] = defaultdict(MonthlyTotals)
        for record in records:
            bucket = years[record.effective_date.year]
            if record.details.entry_type == EntryType.INCOME:
                bucket.income += record.details.amount
            else:
                bucket.expense += record.details.amount
        return dict(sorted(years.items()))

    async def payment_mode_distribution(
        self,
        actor_id: Optional[str],
        filters: Optional[RecordFilters] = None,
        session: Optional[AuthSession] = None,
    ) -> dict[str, Decimal]:
        """Approved entry amounts per payment mode ('unknown' if unset)."""
        records = await self._approved(actor_id, RecordKind.FINANCE_ENTRY, filters, session)
        distribution: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for record in records:
            distribution[record.details.payment_mode or "unknown"] += record.details.amount
        return dict(distribution)

    async def status_distribution(
        self,
        actor_id: Optional[str],
        filters: Optional[RecordFilters] = None,
        session: Optional[AuthSession] = None,
    ) -> dict[str, Decimal]:
        """Approved income split by payment status."""
        snapshot = await self.summarize(actor_id, filters, session)
        return {
            PaymentStatus.PENDING.value: snapshot.pending_amount,
            PaymentStatus.RECEIVED.value: snapshot.received_amount,
        }

    async def fund_balance(
        self,
        actor_id: Optional[str],
        filters: Optional[RecordFilters] = None,
        session: Optional[AuthSession] = None,
    ) -> FundBalance:
        """Balance of the actor's organization fund, approved movements only."""
        deposits, withdrawals = ZERO, ZERO
        actor = await self._resolver.resolve_or_none(actor_id, session)
        if actor is not None:
            filters = (filters or RecordFilters()).restricted_to(ApprovalState.APPROVED)
            try:
                deposits, withdrawals = await self._store.fund_totals(
                    StoreContext(uid=actor.id), actor.organization_key, filters
                )
            except StorageError as e:
                raise translate_storage_error(e)
        threshold = Decimal(str(self._settings.low_fund_balance_threshold))
        return FundBalance(
            total_deposits=deposits,
            total_withdrawals=withdrawals,
            is_low=(deposits - withdrawals) < threshold,
        )

    async def check_withdrawal(
        self,
        actor_id: Optional[str],
        amount: Decimal,
        session: Optional[AuthSession] = None,
    ) -> WithdrawalCheck:
        """
        Compare a withdrawal with the current fund balance.

        Never fails: an oversized withdrawal only sets a warning.
        """
        balance = (await self.fund_balance(actor_id, session=session)).balance
        exceeds = amount > balance
        warning = None
        if exceeds:
            warning = (
                f"Withdrawal of {amount} {self._settings.currency} exceeds "
                f"the fund balance of {balance} {self._settings.currency}"
            )
        return WithdrawalCheck(
            amount=amount,
            balance_before=balance,
            exceeds_balance=exceeds,
            warning=warning,
        )
