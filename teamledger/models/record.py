"""
Core Record Models for TeamLedger

Finance entries, investments, clients and fund-ledger entries all share
one approval shape. The shared part lives on FinanceRecord; the
kind-specific part is a discriminated union in FinanceRecord.details.

DESIGN DECISION: One record type with a tagged union of details keeps the
approval state machine single-sourced. No code branches on kind to decide
approval behavior; only the ledger looks inside details.

These models are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail
"""

import calendar
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    model_validator,
)

from teamledger.models.actor import utc_now


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class RecordKind(str, Enum):
    """
    Record kinds exposed by the engine.

    Each kind is stored in its own table but follows the same
    approval lifecycle.
    """
    FINANCE_ENTRY = "finance_entry"
    INVESTMENT = "investment"
    CLIENT = "client"
    FUND_ENTRY = "fund_entry"


class ApprovalState(str, Enum):
    """
    Approval state of a record.

    CRITICAL: Only APPROVED records contribute to ledger totals.
    Only an owner of the record's organization can leave PENDING.
    """
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class EntryType(str, Enum):
    """Direction of a finance entry."""
    INCOME = "income"
    EXPENSE = "expense"


class PaymentStatus(str, Enum):
    """Whether income has actually been received."""
    RECEIVED = "received"
    PENDING = "pending"


class FundDirection(str, Enum):
    """Movement of the shared cash pool."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class Outcome(str, Enum):
    """What a state-changing call actually did."""
    APPLIED = "applied"
    DELETION_REQUESTED = "deletion_requested"
    DELETED = "deleted"
    NOOP = "noop"


Money = Annotated[Decimal, Field(ge=0, decimal_places=2)]


# =============================================================================
# KIND-SPECIFIC DETAILS
# =============================================================================

class _DetailsBase(BaseModel):
    """Accessors the visibility filter and ledger use on every kind."""
    model_config = ConfigDict(str_strip_whitespace=True)

    @property
    def record_date(self) -> Optional[date]:
        return None

    @property
    def amount_value(self) -> Decimal:
        return Decimal("0")

    @property
    def category_value(self) -> Optional[str]:
        return None

    def search_fields(self) -> list[str]:
        """Fields free-text search looks at (counterparty, description)."""
        return []


class EntryDetails(_DetailsBase):
    """An income or expense entry."""

    kind: Literal["finance_entry"] = "finance_entry"
    entry_type: EntryType
    amount: Money
    entry_date: date
    counterparty: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Client or vendor name"
    )
    description: Optional[str] = Field(default=None, max_length=1000)
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.RECEIVED,
        description="Only meaningful for income"
    )
    payment_mode: Optional[str] = Field(default=None, max_length=50)
    category: Optional[str] = Field(default=None, max_length=100)

    @property
    def record_date(self) -> Optional[date]:
        return self.entry_date

    @property
    def amount_value(self) -> Decimal:
        return self.amount

    @property
    def category_value(self) -> Optional[str]:
        return self.category

    def search_fields(self) -> list[str]:
        return [self.counterparty or "", self.description or ""]


class InvestmentDetails(_DetailsBase):
    """Equipment or other asset bought for the organization."""

    kind: Literal["investment"] = "investment"
    item_name: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    amount: Money
    date_bought: date
    purpose: Optional[str] = Field(default=None, max_length=1000)

    @property
    def record_date(self) -> Optional[date]:
        return self.date_bought

    @property
    def amount_value(self) -> Decimal:
        return self.amount

    @property
    def category_value(self) -> Optional[str]:
        return self.category

    def search_fields(self) -> list[str]:
        return [self.item_name, self.purpose or ""]


class ClientDetails(_DetailsBase):
    """A client of the organization."""

    kind: Literal["client"] = "client"
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = Field(default=None, max_length=500)
    company: Optional[str] = Field(default=None, max_length=200)

    def search_fields(self) -> list[str]:
        return [self.name, self.company or ""]


class FundDetails(_DetailsBase):
    """A deposit into or withdrawal from the shared cash pool."""

    kind: Literal["fund_entry"] = "fund_entry"
    direction: FundDirection
    amount: Money
    entry_date: date
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=100)

    @property
    def record_date(self) -> Optional[date]:
        return self.entry_date

    @property
    def amount_value(self) -> Decimal:
        return self.amount

    @property
    def category_value(self) -> Optional[str]:
        return self.category

    def search_fields(self) -> list[str]:
        return [self.description or ""]


RecordDetails = Annotated[
    Union[EntryDetails, InvestmentDetails, ClientDetails, FundDetails],
    Field(discriminator="kind"),
]

_details_adapter = TypeAdapter(RecordDetails)


def parse_details(kind: RecordKind, payload: Any) -> RecordDetails:
    """
    Validate a payload as the details of the given kind.

    Accepts a details model or a plain dict. A dict without 'kind'
    is tagged with the requested kind; a mismatching kind is rejected.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    else:
        payload = dict(payload)

    declared = payload.setdefault("kind", kind.value)
    if declared != kind.value:
        raise ValueError(
            f"Payload kind {declared!r} does not match record kind {kind.value!r}"
        )
    return _details_adapter.validate_python(payload)


# =============================================================================
# THE SHARED RECORD
# =============================================================================

class FinanceRecord(BaseModel):
    """
    A record of any kind with its approval metadata.

    INVARIANTS:
    - organization_key, author_id and author_display are written once
      at creation and never changed by an update.
    - deletion_requested is orthogonal to approval_state.
    - version increases by one on every successful write.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    kind: RecordKind

    # Ownership (immutable after creation)
    organization_key: str = Field(..., min_length=1)
    author_id: str = Field(..., min_length=1)
    author_display: str = Field(
        ...,
        max_length=250,
        description="Role and name of the author captured at creation"
    )

    # Approval
    approval_state: ApprovalState = ApprovalState.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    # Deletion request (orthogonal to approval_state)
    deletion_requested: bool = False
    deletion_requested_by: Optional[str] = None

    # Optimistic concurrency
    version: int = Field(default=1, ge=1)

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    details: RecordDetails

    @model_validator(mode='after')
    def validate_kind_matches(self) -> 'FinanceRecord':
        """The details tag must agree with the record kind."""
        if self.details.kind != self.kind.value:
            raise ValueError(
                f"Details of kind {self.details.kind!r} on a {self.kind.value!r} record"
            )
        if self.deletion_requested and not self.deletion_requested_by:
            raise ValueError("A deletion request must name who requested it")
        return self

    @property
    def effective_date(self) -> date:
        """Date used for filtering and sorting; clients fall back to creation."""
        return self.details.record_date or self.created_at.date()

    @property
    def counts_toward_ledger(self) -> bool:
        return self.approval_state == ApprovalState.APPROVED


# =============================================================================
# FILTERS
# =============================================================================

class RecordFilters(BaseModel):
    """
    Predicates that narrow a role-scoped result set.

    Filters only ever narrow. A record must satisfy every
    filter that is set.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=1900, le=9999)
    category: Optional[str] = None
    entry_type: Optional[EntryType] = None
    payment_status: Optional[PaymentStatus] = None
    payment_mode: Optional[str] = None
    search: Optional[str] = None
    approval_state: Optional[ApprovalState] = None
    deletion_requested: Optional[bool] = None

    @model_validator(mode='after')
    def validate_ranges(self) -> 'RecordFilters':
        if self.month is not None and self.year is None:
            raise ValueError("A month filter requires a year")
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self

    def restricted_to(self, state: ApprovalState) -> 'RecordFilters':
        """Copy of these filters with an approval-state constraint."""
        return self.model_copy(update={"approval_state": state})

    def period_bounds(self) -> tuple[Optional[date], Optional[date]]:
        """Calendar bounds implied by month/year, or (None, None)."""
        if self.year is None:
            return None, None
        if self.month is None:
            return date(self.year, 1, 1), date(self.year, 12, 31)
        last_day = calendar.monthrange(self.year, self.month)[1]
        return date(self.year, self.month, 1), date(self.year, self.month, last_day)

    def matches(self, record: FinanceRecord) -> bool:
        """True if the record satisfies every filter that is set."""
        if self.approval_state and record.approval_state != self.approval_state:
            return False
        if (
            self.deletion_requested is not None
            and record.deletion_requested != self.deletion_requested
        ):
            return False

        record_date = record.effective_date
        if self.date_from and record_date < self.date_from:
            return False
        if self.date_to and record_date > self.date_to:
            return False
        period_start, period_end = self.period_bounds()
        if period_start and not (period_start <= record_date <= period_end):
            return False

        details = record.details
        if self.category:
            value = details.category_value
            if not value or value.lower() != self.category.lower():
                return False

        if self.entry_type or self.payment_status or self.payment_mode:
            if not isinstance(details, EntryDetails):
                return False
            if self.entry_type and details.entry_type != self.entry_type:
                return False
            if self.payment_status and details.payment_status != self.payment_status:
                return False
            if self.payment_mode and (details.payment_mode or "").lower() != self.payment_mode.lower():
                return False

        if self.search:
            needle = self.search.lower()
            if not any(needle in field.lower() for field in details.search_fields()):
                return False

        return True
