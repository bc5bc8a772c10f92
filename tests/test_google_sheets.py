"""
Tests for the Google Sheets backend.

No network: a fake client stands in for GoogleSheetsClient and keeps
each worksheet as a list of string rows, header first.
"""

import pytest
import requests
from datetime import date
from decimal import Decimal
from google.auth.exceptions import TransportError

from teamledger.audit import AuditLogger
from teamledger.errors import UnavailableError, UnresolvedIdentityError
from teamledger.models.actor import AuthSession
from teamledger.models.audit import AuditEventType
from teamledger.models.record import (
    ApprovalState,
    FundDetails,
    FundDirection,
    RecordKind,
)
from teamledger.notifications import InMemoryNotificationSink
from teamledger.orchestrator import Workspace
from teamledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStore,
    PolicyViolationError,
    StoreContext,
    StoreUnavailableError,
    VersionConflictError,
)
from teamledger.services.storage.google_sheets import (
    RECORD_COLUMNS,
    VERSION_COLUMN,
    model_to_row,
    row_to_dict,
)

from conftest import DELEGATE_ID, OWNER_ID, expense, income, run


FINANCE = RecordKind.FINANCE_ENTRY
FUND = RecordKind.FUND_ENTRY


class FakeWorksheet:
    def __init__(self, title: str, columns: list[str]):
        self.title = title
        self.rows = [list(columns)]


class FakeSheetsClient:
    """Duck-typed GoogleSheetsClient over in-memory worksheets."""

    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}
        self.version_override = None

    def get_sheet(self, title, columns, rows=1000):
        if title not in self.sheets:
            self.sheets[title] = FakeWorksheet(title, columns)
        return self.sheets[title]

    def record_sheet_name(self, kind):
        return kind.value

    def read_rows(self, sheet):
        return [list(row) for row in sheet.rows[1:]]

    def read_cell(self, sheet, row, col):
        if self.version_override is not None:
            return self.version_override
        return sheet.rows[row - 1][col - 1]

    def append_row(self, sheet, row):
        sheet.rows.append(list(row))

    def replace_row(self, sheet, index, row):
        sheet.rows[index - 1] = list(row)

    def delete_row(self, sheet, index):
        del sheet.rows[index - 1]


@pytest.fixture
def sheets_env(monkeypatch, tmp_path):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}")
    monkeypatch.setenv("GOOGLE_SHEETS_CREDENTIALS_PATH", str(credentials))
    monkeypatch.setenv("GOOGLE_SHEETS_SPREADSHEET_ID", "test-spreadsheet")


@pytest.fixture
def client(sheets_env):
    return FakeSheetsClient()


@pytest.fixture
def sheets_workspace(client):
    store = GoogleSheetsStore(client)
    audit = GoogleSheetsAuditStorage(client)
    workspace = Workspace(store, store, InMemoryNotificationSink(), AuditLogger(audit))
    run(workspace.provisioner.provision(
        AuthSession(actor_id=OWNER_ID, metadata={"role": "owner", "name": "Asha"})
    ))
    run(workspace.provisioner.add_delegate(OWNER_ID, "Ravi", delegate_id=DELEGATE_ID))
    return workspace, store, audit


class TestRowConversion:
    """Tests for model <-> row helpers."""

    def test_record_round_trip(self, sheets_workspace):
        workspace, store, _ = sheets_workspace
        record = run(workspace.gate.propose(OWNER_ID, FINANCE, income("1234.50", counterparty="Acme")))
        row = model_to_row(record, RECORD_COLUMNS)
        assert row[RECORD_COLUMNS.index("approved_by")] == OWNER_ID
        assert row[VERSION_COLUMN - 1] == "1"

        parsed = GoogleSheetsStore._row_to_record(row)
        assert parsed == record
        assert parsed.details.amount == Decimal("1234.50")

    def test_empty_cells_become_none(self):
        data = row_to_dict(["a", ""], ["first", "second", "third"])
        assert data == {"first": "a", "second": None, "third": None}


class TestGoogleSheetsStore:
    """Tests for the Sheets store behind the engine."""

    def test_engine_flow(self, sheets_workspace):
        workspace, store, _ = sheets_workspace
        run(workspace.gate.propose(OWNER_ID, FINANCE, income("1000")))
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))
        assert run(workspace.ledger.summarize(OWNER_ID)).total_income == Decimal("1000")

        outcome, approved = run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        assert approved.version == 2
        assert run(workspace.ledger.summarize(OWNER_ID)).total_income == Decimal("1500")
        assert [r.id for r in run(workspace.visibility.list_visible(DELEGATE_ID, FINANCE))] == [
            record.id
        ]

    def test_delegate_cannot_self_approve(self, sheets_workspace):
        workspace, store, _ = sheets_workspace
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, expense("200")))
        approved = record.model_copy(update={"approval_state": ApprovalState.APPROVED})
        with pytest.raises(PolicyViolationError):
            run(store.update_record(StoreContext(uid=DELEGATE_ID), approved, record.version))

    def test_version_cell_changed_underneath(self, sheets_workspace, client):
        workspace, store, _ = sheets_workspace
        record = run(workspace.gate.propose(OWNER_ID, FINANCE, expense("200")))
        client.version_override = "7"
        with pytest.raises(VersionConflictError) as exc_info:
            run(store.update_record(StoreContext(uid=OWNER_ID), record, record.version))
        assert exc_info.value.actual_version == 7

    def test_malformed_rows_are_skipped(self, sheets_workspace, client):
        workspace, store, _ = sheets_workspace
        record = run(workspace.gate.propose(OWNER_ID, FINANCE, expense("200")))
        client.sheets[FINANCE.value].rows.append(["not-a-uuid", "finance_entry"])
        records = run(store.list_records(StoreContext(uid=OWNER_ID), FINANCE))
        assert [r.id for r in records] == [record.id]

    def test_delete(self, sheets_workspace):
        workspace, store, _ = sheets_workspace
        record = run(workspace.gate.propose(OWNER_ID, FINANCE, expense("200")))
        assert run(workspace.gate.retract(OWNER_ID, record.id, FINANCE)).value == "deleted"
        assert run(store.list_records(StoreContext(uid=OWNER_ID), FINANCE)) == []

    def test_sequences(self, sheets_workspace):
        workspace, _, _ = sheets_workspace
        assert run(workspace.invoices.next_number(OWNER_ID)) == "INV-0001"
        assert run(workspace.invoices.next_number(DELEGATE_ID)) == "INV-0002"

    def test_removed_delegate_stays_revoked(self, sheets_workspace):
        workspace, store, _ = sheets_workspace
        entry = run(workspace.provisioner.list_delegates(OWNER_ID))[0]
        run(workspace.provisioner.remove_delegate(OWNER_ID, entry.id))

        assert run(store.get_role_record(DELEGATE_ID)).is_revoked
        stale = AuthSession(
            actor_id=DELEGATE_ID, metadata={"role": "employee", "admin_id": OWNER_ID}
        )
        with pytest.raises(UnresolvedIdentityError):
            run(workspace.resolver.resolve(DELEGATE_ID, stale))


class TestGoogleSheetsAuditStorage:
    """Tests for audit persistence in Sheets."""

    def test_events_are_persisted(self, sheets_workspace):
        workspace, _, audit = sheets_workspace
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))
        run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))

        events = run(audit.get_events_by_entity(FINANCE.value, record.id))
        assert [e.event_type for e in events] == [
            AuditEventType.RECORD_PROPOSED,
            AuditEventType.RECORD_APPROVED,
        ]

    def test_recent_events_include_provisioning(self, sheets_workspace):
        _, _, audit = sheets_workspace
        types = [e.event_type for e in run(audit.get_recent_events())]
        assert AuditEventType.ROLE_ASSIGNED in types
        assert AuditEventType.DELEGATE_LINKED in types

    def test_delegate_withdrawal_checks_the_organization_pool(self, sheets_workspace):
        workspace, _, audit = sheets_workspace
        run(workspace.gate.propose(OWNER_ID, FUND, FundDetails(
            direction=FundDirection.DEPOSIT,
            amount=Decimal("5000"),
            entry_date=date(2024, 5, 1),
        )))
        result = run(workspace.record_fund_withdrawal(
            DELEGATE_ID, {"amount": "400", "entry_date": "2024-05-02"}
        ))
        assert result.check.balance_before == Decimal("5000")
        assert not result.check.exceeds_balance
        types = [e.event_type for e in run(audit.get_recent_events())]
        assert AuditEventType.FUND_WITHDRAWAL_WARNING not in types


class FailingSheetsClient(FakeSheetsClient):
    """Fake client whose reads or writes fail below gspread."""

    def __init__(self):
        super().__init__()
        self.read_error = None
        self.write_error = None

    def read_rows(self, sheet):
        if self.read_error is not None:
            raise self.read_error
        return super().read_rows(sheet)

    def append_row(self, sheet, row):
        if self.write_error is not None:
            raise self.write_error
        super().append_row(sheet, row)


class TestTransportFailures:
    """Network and auth failures surface as UnavailableError."""

    @pytest.fixture
    def failing(self, sheets_env):
        client = FailingSheetsClient()
        store = GoogleSheetsStore(client)
        workspace = Workspace(store, store, InMemoryNotificationSink(), AuditLogger())
        run(workspace.provisioner.provision(
            AuthSession(actor_id=OWNER_ID, metadata={"role": "owner", "name": "Asha"})
        ))
        return workspace, client

    def test_connection_error_on_read(self, failing):
        workspace, client = failing
        client.read_error = requests.exceptions.ConnectionError("network down")
        with pytest.raises(UnavailableError):
            run(workspace.visibility.list_visible(OWNER_ID, FINANCE))

    def test_auth_transport_error_on_write(self, failing):
        workspace, client = failing
        client.write_error = TransportError("token refresh failed")
        with pytest.raises(UnavailableError):
            run(workspace.gate.propose(OWNER_ID, FINANCE, income("100")))

    def test_connection_error_opening_a_sheet(self, sheets_env):
        class UnreachableSpreadsheet:
            def worksheet(self, title):
                raise requests.exceptions.ConnectionError("network down")

        client = GoogleSheetsClient()
        client._spreadsheet = UnreachableSpreadsheet()
        with pytest.raises(StoreUnavailableError):
            client.get_sheet("finance_entries", RECORD_COLUMNS)
