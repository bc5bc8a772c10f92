"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a production backend because:
1. A non-technical owner can view the books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (an organization has thousands of
  rows, not millions)
- No transactions. Compare-and-set re-reads the version cell right
  before writing, which narrows the race window but cannot close it.
- Limited query capabilities (we filter in Python)

CRITICAL: Row policies are evaluated here exactly as in the in-memory
backend. Sheets has no server-side predicates, so this class is the
store-side check.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import gspread
import requests
import structlog
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from teamledger.config import get_settings
from teamledger.models.actor import DelegateRosterEntry, RoleRecord, utc_now
from teamledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from teamledger.models.ledger import fund_totals
from teamledger.models.notification import StoredNotification
from teamledger.models.record import (
    ApprovalState,
    FinanceRecord,
    RecordFilters,
    RecordKind,
)
from teamledger.services.storage.interface import (
    AuditStorageInterface,
    DirectoryStoreInterface,
    DuplicateError,
    NotFoundError,
    NotificationStorageInterface,
    PolicyViolationError,
    RecordStoreInterface,
    StoreContext,
    StoreUnavailableError,
    VersionConflictError,
)
from teamledger.services.storage.policies import (
    FUND_TOTALS_POLICY,
    PolicyContext,
    PolicyOperation,
    policy_for,
)


logger = structlog.get_logger(__name__)


# Column mappings for the record sheets (one sheet per kind)
RECORD_COLUMNS = [
    "id",
    "kind",
    "organization_key",
    "author_id",
    "author_display",
    "approval_state",
    "approved_by",
    "approved_at",
    "deletion_requested",
    "deletion_requested_by",
    "version",
    "created_at",
    "updated_at",
    "details",
]
VERSION_COLUMN = RECORD_COLUMNS.index("version") + 1

ROLE_COLUMNS = [
    "actor_id",
    "role",
    "display_name",
    "organization_key",
    "assigned_by",
    "assigned_at",
    "revoked_at",
]

ROSTER_COLUMNS = ["id", "owner_id", "delegate_id", "name", "email", "created_at"]

SEQUENCE_COLUMNS = ["organization_key", "name", "value"]

NOTIFICATION_COLUMNS = [
    "id",
    "organization_key",
    "record_kind",
    "record_id",
    "event_type",
    "is_read",
    "created_at",
]

# Same order as AuditEvent.to_sheets_row()
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "actor_id",
    "organization_key",
    "entity_type",
    "entity_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


# Failures meaning Sheets was unreachable or refused the call
TRANSPORT_ERRORS = (
    gspread.exceptions.APIError,
    requests.exceptions.RequestException,
    GoogleAuthError,
)


sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(TRANSPORT_ERRORS),
    reraise=True,
)


def model_to_row(model: BaseModel, columns: list[str]) -> list[str]:
    """Flatten a model to strings; nested values are JSON-encoded."""
    data = model.model_dump(mode="json")
    row = []
    for column in columns:
        value = data.get(column)
        if value is None:
            row.append("")
        elif isinstance(value, (dict, list)):
            row.append(json.dumps(value))
        else:
            row.append(str(value))
    return row


def row_to_dict(row: list[str], columns: list[str]) -> dict[str, Any]:
    """Inverse of model_to_row for flat columns; empty cells become None."""
    return {
        column: (row[index] if index < len(row) and row[index] != "" else None)
        for index, column in enumerate(columns)
    }


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._sheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(TRANSPORT_ERRORS),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StoreUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            try:
                client = self.connect()
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise StoreUnavailableError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
            except TRANSPORT_ERRORS as e:
                raise StoreUnavailableError(f"Failed to reach Google Sheets: {e}")
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        if title not in self._sheets:
            spreadsheet = self.get_spreadsheet()
            try:
                self._sheets[title] = self._open_or_create(spreadsheet, title, columns, rows)
            except TRANSPORT_ERRORS as e:
                raise StoreUnavailableError(f"Failed to open sheet {title}: {e}")
        return self._sheets[title]

    @staticmethod
    def _open_or_create(
        spreadsheet: gspread.Spreadsheet,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        try:
            return spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
            return sheet

    def record_sheet_name(self, kind: RecordKind) -> str:
        return {
            RecordKind.FINANCE_ENTRY: self._settings.finance_entries_sheet_name,
            RecordKind.INVESTMENT: self._settings.investments_sheet_name,
            RecordKind.CLIENT: self._settings.clients_sheet_name,
            RecordKind.FUND_ENTRY: self._settings.fund_entries_sheet_name,
        }[kind]

    @sheets_retry
    def read_rows(self, sheet: gspread.Worksheet) -> list[list[str]]:
        """All data rows (header excluded)."""
        return sheet.get_all_values()[1:]

    @sheets_retry
    def read_cell(self, sheet: gspread.Worksheet, row: int, col: int) -> Optional[str]:
        return sheet.cell(row, col).value

    @sheets_retry
    def append_row(self, sheet: gspread.Worksheet, row: list[str]) -> None:
        sheet.append_row(row, value_input_option="RAW")

    @sheets_retry
    def replace_row(self, sheet: gspread.Worksheet, index: int, row: list[str]) -> None:
        sheet.update(range_name=f"A{index}", values=[row])

    @sheets_retry
    def delete_row(self, sheet: gspread.Worksheet, index: int) -> None:
        sheet.delete_rows(index)


def _find_row(rows: list[list[str]], key: str, column: int = 0) -> Optional[int]:
    """Sheet row number (1-based, header is row 1) of the first match."""
    for offset, row in enumerate(rows):
        if len(row) > column and row[column] == key:
            return offset + 2
    return None


class GoogleSheetsStore(
    RecordStoreInterface,
    DirectoryStoreInterface,
    NotificationStorageInterface,
):
    """
    Google Sheets implementation of the record, directory and
    notification stores.

    Records are stored one per row; details are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._settings = get_settings().google_sheets

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _record_sheet(self, kind: RecordKind) -> gspread.Worksheet:
        return self._client.get_sheet(self._client.record_sheet_name(kind), RECORD_COLUMNS)

    def _roster_sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(self._settings.delegate_roster_sheet_name, ROSTER_COLUMNS)

    def _role_sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(self._settings.role_records_sheet_name, ROLE_COLUMNS)

    def _sequence_sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(self._settings.sequences_sheet_name, SEQUENCE_COLUMNS)

    def _notification_sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(
            self._settings.notifications_sheet_name, NOTIFICATION_COLUMNS
        )

    def _read(self, sheet: gspread.Worksheet) -> list[list[str]]:
        try:
            return self._client.read_rows(sheet)
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to read {sheet.title}: {e}")

    @staticmethod
    def _row_to_record(row: list[str]) -> FinanceRecord:
        data = row_to_dict(row, RECORD_COLUMNS)
        data["details"] = json.loads(data["details"] or "{}")
        return FinanceRecord.model_validate(data)

    def _load_records(self, kind: RecordKind) -> list[tuple[int, FinanceRecord]]:
        """(sheet row number, record) for every parseable row."""
        loaded = []
        for offset, row in enumerate(self._read(self._record_sheet(kind))):
            if not row or not row[0]:
                continue
            try:
                loaded.append((offset + 2, self._row_to_record(row)))
            except (ValidationError, ValueError) as e:
                logger.warning(
                    "malformed_record_row",
                    kind=kind.value,
                    row_number=offset + 2,
                    error=str(e),
                )
        return loaded

    async def _policy_context(self, ctx: StoreContext) -> PolicyContext:
        reports_to = frozenset(
            entry.owner_id
            for entry in await self._all_roster_entries()
            if entry.delegate_id == ctx.uid
        )
        return PolicyContext(uid=ctx.uid, reports_to=reports_to)

    # =========================================================================
    # RECORDS
    # =========================================================================

    async def insert_record(self, ctx: StoreContext, record: FinanceRecord) -> FinanceRecord:
        policy = policy_for(PolicyOperation.INSERT)
        if not policy.accepts(await self._policy_context(ctx), record):
            raise PolicyViolationError(
                f"Insert of {record.kind.value} {record.id} rejected",
                policy.name,
            )
        sheet = self._record_sheet(record.kind)
        if _find_row(self._read(sheet), str(record.id)) is not None:
            raise DuplicateError(f"Record already exists: {record.id}")
        try:
            self._client.append_row(sheet, model_to_row(record, RECORD_COLUMNS))
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to insert record: {e}")
        return record

    async def get_record(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        record_id: UUID,
    ) -> Optional[FinanceRecord]:
        pctx = await self._policy_context(ctx)
        for _, record in self._load_records(kind):
            if record.id == record_id:
                if policy_for(PolicyOperation.SELECT).admits(pctx, record):
                    return record
                return None
        return None

    async def list_records(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        organization_key: Optional[str] = None,
        author_id: Optional[str] = None,
        approval_state: Optional[ApprovalState] = None,
    ) -> list[FinanceRecord]:
        policy = policy_for(PolicyOperation.SELECT)
        pctx = await self._policy_context(ctx)
        return [
            record
            for _, record in self._load_records(kind)
            if policy.admits(pctx, record)
            and (organization_key is None or record.organization_key == organization_key)
            and (author_id is None or record.author_id == author_id)
            and (approval_state is None or record.approval_state == approval_state)
        ]

    async def update_record(
        self,
        ctx: StoreContext,
        record: FinanceRecord,
        expected_version: int,
    ) -> FinanceRecord:
        policy = policy_for(PolicyOperation.UPDATE)
        pctx = await self._policy_context(ctx)
        sheet = self._record_sheet(record.kind)

        match = next(
            ((index, stored) for index, stored in self._load_records(record.kind)
             if stored.id == record.id),
            None,
        )
        if match is None or not policy.admits(pctx, match[1]):
            raise NotFoundError(f"Record not found: {record.id}")
        index, stored = match

        if stored.version != expected_version:
            raise VersionConflictError(
                f"Record {record.id} is at version {stored.version}, expected {expected_version}",
                expected_version=expected_version,
                actual_version=stored.version,
            )
        if not policy.accepts(pctx, record, stored):
            raise PolicyViolationError(
                f"Update of {record.kind.value} {record.id} rejected",
                policy.name,
            )

        written = record.model_copy(
            update={"version": expected_version + 1, "updated_at": utc_now()}
        )
        try:
            # Best-effort compare-and-set: re-read the version cell just before writing
            current = self._client.read_cell(sheet, index, VERSION_COLUMN)
            if current != str(expected_version):
                raise VersionConflictError(
                    f"Record {record.id} changed during update",
                    expected_version=expected_version,
                    actual_version=int(current) if current and current.isdigit() else -1,
                )
            self._client.replace_row(sheet, index, model_to_row(written, RECORD_COLUMNS))
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to update record: {e}")
        return written

    async def delete_record(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        record_id: UUID,
        expected_version: Optional[int] = None,
    ) -> bool:
        pctx = await self._policy_context(ctx)
        for index, stored in self._load_records(kind):
            if stored.id != record_id:
                continue
            if not policy_for(PolicyOperation.DELETE).admits(pctx, stored):
                return False
            if expected_version is not None and stored.version != expected_version:
                raise VersionConflictError(
                    f"Record {record_id} is at version {stored.version}, expected {expected_version}",
                    expected_version=expected_version,
                    actual_version=stored.version,
                )
            try:
                self._client.delete_row(self._record_sheet(kind), index)
            except TRANSPORT_ERRORS as e:
                raise StoreUnavailableError(f"Failed to delete record: {e}")
            return True
        return False

    async def fund_totals(
        self,
        ctx: StoreContext,
        organization_key: str,
        filters: Optional[RecordFilters] = None,
    ) -> tuple[Decimal, Decimal]:
        if not (await self._policy_context(ctx)).member_of(organization_key):
            raise PolicyViolationError(
                f"{ctx.uid} may not read fund totals of {organization_key}",
                FUND_TOTALS_POLICY,
            )
        return fund_totals([
            record
            for _, record in self._load_records(RecordKind.FUND_ENTRY)
            if record.organization_key == organization_key
            and (filters is None or filters.matches(record))
        ])

    # =========================================================================
    # DIRECTORY
    # =========================================================================

    async def get_role_record(self, actor_id: str) -> Optional[RoleRecord]:
        for row in self._read(self._role_sheet()):
            if row and row[0] == actor_id:
                return RoleRecord.model_validate(row_to_dict(row, ROLE_COLUMNS))
        return None

    async def save_role_record(self, record: RoleRecord) -> RoleRecord:
        sheet = self._role_sheet()
        index = _find_row(self._read(sheet), record.actor_id)
        row = model_to_row(record, ROLE_COLUMNS)
        try:
            if index is None:
                self._client.append_row(sheet, row)
            else:
                self._client.replace_row(sheet, index, row)
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to save role record: {e}")
        return record

    async def _all_roster_entries(self) -> list[DelegateRosterEntry]:
        return [
            DelegateRosterEntry.model_validate(row_to_dict(row, ROSTER_COLUMNS))
            for row in self._read(self._roster_sheet())
            if row and row[0]
        ]

    async def find_roster_entry(self, delegate_id: str) -> Optional[DelegateRosterEntry]:
        for entry in await self._all_roster_entries():
            if entry.delegate_id == delegate_id:
                return entry
        return None

    async def get_roster_entry(self, roster_id: UUID) -> Optional[DelegateRosterEntry]:
        for entry in await self._all_roster_entries():
            if entry.id == roster_id:
                return entry
        return None

    async def list_roster(self, owner_id: str) -> list[DelegateRosterEntry]:
        entries = [e for e in await self._all_roster_entries() if e.owner_id == owner_id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    async def save_roster_entry(self, entry: DelegateRosterEntry) -> DelegateRosterEntry:
        if entry.delegate_id:
            existing = await self.find_roster_entry(entry.delegate_id)
            if existing is not None and existing.id != entry.id:
                raise DuplicateError(f"Account {entry.delegate_id} is already on a roster")
        sheet = self._roster_sheet()
        index = _find_row(self._read(sheet), str(entry.id))
        row = model_to_row(entry, ROSTER_COLUMNS)
        try:
            if index is None:
                self._client.append_row(sheet, row)
            else:
                self._client.replace_row(sheet, index, row)
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to save roster entry: {e}")
        return entry

    async def delete_roster_entry(self, roster_id: UUID) -> bool:
        sheet = self._roster_sheet()
        index = _find_row(self._read(sheet), str(roster_id))
        if index is None:
            return False
        try:
            self._client.delete_row(sheet, index)
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to delete roster entry: {e}")
        return True

    async def next_sequence_value(self, organization_key: str, name: str) -> int:
        sheet = self._sequence_sheet()
        rows = self._read(sheet)
        try:
            for offset, row in enumerate(rows):
                if len(row) >= 3 and row[0] == organization_key and row[1] == name:
                    value = int(row[2] or 0) + 1
                    self._client.replace_row(sheet, offset + 2, [organization_key, name, str(value)])
                    return value
            self._client.append_row(sheet, [organization_key, name, "1"])
            return 1
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to advance sequence {name}: {e}")

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _load_notifications(self) -> list[tuple[int, StoredNotification]]:
        return [
            (offset + 2, StoredNotification.model_validate(row_to_dict(row, NOTIFICATION_COLUMNS)))
            for offset, row in enumerate(self._read(self._notification_sheet()))
            if row and row[0]
        ]

    async def append_notification(self, notification: StoredNotification) -> bool:
        try:
            self._client.append_row(
                self._notification_sheet(),
                model_to_row(notification, NOTIFICATION_COLUMNS),
            )
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to store notification: {e}")
        return True

    async def list_notifications(self, organization_key: str) -> list[StoredNotification]:
        items = [n for _, n in self._load_notifications() if n.organization_key == organization_key]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items

    async def mark_notification_read(self, organization_key: str, notification_id: UUID) -> bool:
        for index, item in self._load_notifications():
            if item.id == notification_id and item.organization_key == organization_key:
                item.is_read = True
                try:
                    self._client.replace_row(
                        self._notification_sheet(),
                        index,
                        model_to_row(item, NOTIFICATION_COLUMNS),
                    )
                except TRANSPORT_ERRORS as e:
                    raise StoreUnavailableError(f"Failed to update notification: {e}")
                return True
        return False

    async def delete_notification(self, organization_key: str, notification_id: UUID) -> bool:
        for index, item in self._load_notifications():
            if item.id == notification_id and item.organization_key == organization_key:
                try:
                    self._client.delete_row(self._notification_sheet(), index)
                except TRANSPORT_ERRORS as e:
                    raise StoreUnavailableError(f"Failed to delete notification: {e}")
                return True
        return False


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._settings = get_settings().google_sheets

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            actor_id=safe_get(4) or None,
            organization_key=safe_get(5) or None,
            entity_type=safe_get(6) or None,
            entity_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _load_events(self) -> list[AuditEvent]:
        try:
            rows = self._client.read_rows(self._sheet())
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to read audit log: {e}")
        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValidationError, ValueError) as e:
                logger.warning("malformed_audit_row", event_id=row[0], error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._client.append_row(self._sheet(), event.to_sheets_row())
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to write audit event: {e}")
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        events = [
            e for e in self._load_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._load_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
