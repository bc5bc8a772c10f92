"""
Main Orchestrator for TeamLedger

This module ties together all the components and defines the
end-to-end flows that span more than one of them:
1. Proposal with review (validate -> propose, warnings returned)
2. Fund withdrawal (balance check -> propose, warning audited)

DESIGN DECISION: The Workspace holds one instance of every component,
all sharing the same store, resolver, notification sink and audit
logger. Callers use the components directly for single-step
operations (workspace.gate.update(...), workspace.approvals.approve(...))
and the flow methods below for the combined ones.

This is the "glue" that ensures every component sees the same
identity rules and the same store-side policies.
"""

import logging
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from teamledger.access import MutationGate, VisibilityFilter
from teamledger.approval import ApprovalService
from teamledger.audit import AuditLogger
from teamledger.config import get_settings
from teamledger.errors import UnavailableError
from teamledger.identity import AccountProvisioner, IdentityResolver
from teamledger.invoicing import InvoiceNumberer
from teamledger.ledger import LedgerAggregator
from teamledger.models.actor import AuthSession
from teamledger.models.ledger import FundWithdrawalResult
from teamledger.models.record import (
    FinanceRecord,
    FundDetails,
    FundDirection,
    RecordKind,
    parse_details,
)
from teamledger.models.validation import ValidationResult
from teamledger.notifications import NotificationSink, StoreNotificationSink
from teamledger.services.storage import (
    AuditStorageInterface,
    DirectoryStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStore,
    InMemoryStore,
    NotificationStorageInterface,
    RecordStoreInterface,
)
from teamledger.validation import RecordValidator


logger = structlog.get_logger(__name__)


class Workspace:
    """
    One organization-agnostic engine instance.

    Usage:
        workspace = create_app_components()
        owner = await workspace.provisioner.provision(AuthSession(actor_id="owner-1"))
        record = await workspace.gate.propose("delegate-1", RecordKind.FINANCE_ENTRY, payload)
        await workspace.approvals.approve("owner-1", RecordKind.FINANCE_ENTRY, record.id, record.version)
        snapshot = await workspace.ledger.summarize("owner-1")
    """

    def __init__(
        self,
        records: RecordStoreInterface,
        directory: DirectoryStoreInterface,
        notifier: NotificationSink,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.audit_logger = audit_logger or AuditLogger()
        self.notifier = notifier
        self.resolver = IdentityResolver(directory, self.audit_logger)
        self.provisioner = AccountProvisioner(directory, self.resolver, self.audit_logger)
        self.visibility = VisibilityFilter(records, self.resolver)
        self.gate = MutationGate(
            records,
            self.resolver,
            visibility=self.visibility,
            notifier=notifier,
            audit_logger=self.audit_logger,
        )
        self.approvals = ApprovalService(
            records,
            self.resolver,
            visibility=self.visibility,
            notifier=notifier,
            audit_logger=self.audit_logger,
        )
        self.ledger = LedgerAggregator(records, self.visibility, self.resolver)
        self.validator = RecordValidator(self.visibility)
        self.invoices = InvoiceNumberer(directory, self.resolver)

    async def propose_with_review(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        payload: Any,
        session: Optional[AuthSession] = None,
    ) -> tuple[Optional[FinanceRecord], ValidationResult]:
        """
        Validate a payload, then propose it.

        Semantic warnings never block the proposal; they are returned
        for the person submitting it. A payload that fails schema
        validation is not proposed.

        Returns:
            (record or None, validation result)
        """
        review = await self.validator.validate(kind, payload, actor_id=actor_id)
        if not review.schema_valid:
            return None, review
        record = await self.gate.propose(actor_id, kind, payload, session)
        return record, review

    async def record_fund_withdrawal(
        self,
        actor_id: Optional[str],
        payload: Any,
        session: Optional[AuthSession] = None,
    ) -> FundWithdrawalResult:
        """
        Propose a withdrawal from the shared cash pool.

        The balance check runs against approved movements before the
        withdrawal is written. Exceeding the balance is allowed; the
        result carries the warning and an audit event records it.
        """
        data = payload.model_dump() if hasattr(payload, "model_dump") else dict(payload)
        data["direction"] = FundDirection.WITHDRAWAL
        details: FundDetails = parse_details(RecordKind.FUND_ENTRY, data)

        check = await self.ledger.check_withdrawal(actor_id, details.amount, session)
        record = await self.gate.propose(actor_id, RecordKind.FUND_ENTRY, details, session)

        if check.exceeds_balance:
            await self.audit_logger.log_fund_warning(
                actor_id=record.author_id,
                organization_key=record.organization_key,
                amount=str(check.amount),
                balance=str(check.balance_before),
                record_id=record.id,
            )
        return FundWithdrawalResult(record=record, check=check)


def create_app_components(
    backend: Optional[str] = None,
    notifier: Optional[NotificationSink] = None,
) -> Workspace:
    """
    Factory function to create a fully wired Workspace.

    Args:
        backend: "memory" or "google_sheets". Defaults to STORE_BACKEND.
        notifier: Notification sink. Defaults to the store's inbox.

    Raises:
        UnavailableError: Google Sheets is selected but not configured
    """
    settings = get_settings()
    backend = backend or settings.store.backend

    # structlog renders through the stdlib logger configured here
    logging.basicConfig(format="%(message)s", level=settings.app.log_level)

    records: RecordStoreInterface
    directory: DirectoryStoreInterface
    inbox: NotificationStorageInterface
    audit_storage: AuditStorageInterface

    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
        except ValidationError as e:
            logger.error("storage_not_configured", backend=backend, error=str(e))
            raise UnavailableError(f"Google Sheets storage is not configured: {e}")
        store = GoogleSheetsStore(sheets_client)
        records, directory, inbox = store, store, store
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
    else:
        store = InMemoryStore()
        records, directory, inbox, audit_storage = store, store, store, store

    audit_logger = AuditLogger(audit_storage)
    return Workspace(
        records,
        directory,
        notifier or StoreNotificationSink(inbox),
        audit_logger,
    )
