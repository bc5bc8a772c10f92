"""
Declarative Row Policies

Every record table carries the same four policies. Backends evaluate
them on every call, independently of the engine's own checks:

- SELECT: the row's organization is the caller, or the caller wrote it
- INSERT: the caller is the author, and writes into its own organization
  or into the organization of an owner that lists it on a roster.
  A non-owner may only insert pending rows.
- UPDATE: USING as SELECT. WITH CHECK keeps ownership fields fixed and
  stops a non-owner from approving, declining or clearing a deletion
  request.
- DELETE: the row's organization is the caller, or the caller wrote it

Aggregates are not row reads. FUND_TOTALS_POLICY lets any member of an
organization (the owner, or a delegate on its roster) read fund totals
over rows its SELECT policy hides, the way a SECURITY DEFINER function
would. No row ever leaves the store through it.

DESIGN DECISION: A policy is data (name, operation, predicates), not a
method on a backend. The in-memory store and the Google Sheets store
share the same RECORD_POLICIES table, so both enforce identical rules.

CRITICAL: "Owner" here means organization_key == uid. The store does not
consult role records; a delegate's uid is never an organization key.
"""

from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from teamledger.models.record import ApprovalState, FinanceRecord


class PolicyOperation(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class PolicyContext(BaseModel):
    """
    What a row predicate may know about the caller.

    reports_to holds the owner ids whose roster links the caller.
    """
    model_config = ConfigDict(frozen=True)

    uid: str
    reports_to: frozenset[str] = Field(default_factory=frozenset)

    def owns(self, row: FinanceRecord) -> bool:
        return row.organization_key == self.uid

    def member_of(self, organization_key: str) -> bool:
        return organization_key == self.uid or organization_key in self.reports_to


# (ctx, row, previous) -> allowed. previous is only set for UPDATE checks.
RowPredicate = Callable[[PolicyContext, FinanceRecord, Optional[FinanceRecord]], bool]


class RowPolicy(BaseModel):
    """
    A single row-level policy.

    using filters existing rows (invisible rows are simply absent);
    with_check validates the row being written.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    operation: PolicyOperation
    using: Optional[RowPredicate] = None
    with_check: Optional[RowPredicate] = None

    def admits(self, ctx: PolicyContext, row: FinanceRecord) -> bool:
        if self.using is None:
            return True
        return self.using(ctx, row, None)

    def accepts(
        self,
        ctx: PolicyContext,
        row: FinanceRecord,
        previous: Optional[FinanceRecord] = None,
    ) -> bool:
        if self.with_check is None:
            return True
        return self.with_check(ctx, row, previous)


# =============================================================================
# PREDICATES
# =============================================================================

def org_or_author(ctx: PolicyContext, row: FinanceRecord, previous=None) -> bool:
    return ctx.owns(row) or row.author_id == ctx.uid


def insert_check(ctx: PolicyContext, row: FinanceRecord, previous=None) -> bool:
    if row.author_id != ctx.uid:
        return False
    if ctx.owns(row):
        return True
    return (
        row.organization_key in ctx.reports_to
        and row.approval_state == ApprovalState.PENDING
        and not row.deletion_requested
    )


def update_check(
    ctx: PolicyContext,
    row: FinanceRecord,
    previous: Optional[FinanceRecord] = None,
) -> bool:
    if previous is None:
        return False
    if (
        row.organization_key != previous.organization_key
        or row.author_id != previous.author_id
        or row.author_display != previous.author_display
        or row.kind != previous.kind
    ):
        return False
    if ctx.owns(row):
        return True

    # Non-owner: may reset to pending, never elevate
    if row.approval_state != previous.approval_state:
        if row.approval_state != ApprovalState.PENDING:
            return False
    if row.details != previous.details and row.approval_state != ApprovalState.PENDING:
        return False
    if row.approved_by != previous.approved_by and row.approved_by is not None:
        return False
    if previous.deletion_requested and not row.deletion_requested:
        return False
    if row.deletion_requested and row.deletion_requested_by != ctx.uid and not previous.deletion_requested:
        return False
    return True


RECORD_POLICIES: dict[PolicyOperation, RowPolicy] = {
    PolicyOperation.SELECT: RowPolicy(
        name="records_select_org_or_author",
        operation=PolicyOperation.SELECT,
        using=org_or_author,
    ),
    PolicyOperation.INSERT: RowPolicy(
        name="records_insert_author_in_org",
        operation=PolicyOperation.INSERT,
        with_check=insert_check,
    ),
    PolicyOperation.UPDATE: RowPolicy(
        name="records_update_org_or_author",
        operation=PolicyOperation.UPDATE,
        using=org_or_author,
        with_check=update_check,
    ),
    PolicyOperation.DELETE: RowPolicy(
        name="records_delete_org_or_author",
        operation=PolicyOperation.DELETE,
        using=org_or_author,
    ),
}


FUND_TOTALS_POLICY = "fund_totals_org_member"


def policy_for(operation: PolicyOperation) -> RowPolicy:
    return RECORD_POLICIES[operation]
