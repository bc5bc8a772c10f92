"""
Tests for the approval state machine.

Includes the concurrent-approver cases: two approvals of the same
record, and an approval racing a delegate edit.
"""

import asyncio

import pytest

from teamledger.approval import TRANSITIONS, ApprovalEvent, next_state
from teamledger.audit import AuditLogger
from teamledger.errors import (
    ForbiddenError,
    InvalidStateTransitionError,
    StaleWriteError,
)
from teamledger.models.actor import AuthSession
from teamledger.models.audit import AuditEventType
from teamledger.models.notification import NotificationType
from teamledger.models.record import ApprovalState, Outcome, RecordKind
from teamledger.notifications import InMemoryNotificationSink
from teamledger.orchestrator import Workspace
from teamledger.services.storage import InMemoryStore

from conftest import DELEGATE_ID, OTHER_OWNER_ID, OWNER_ID, expense, income, run


FINANCE = RecordKind.FINANCE_ENTRY


class RacingStore(InMemoryStore):
    """
    Lets another writer win the next compare-and-set.

    When armed, the next update_record first commits whatever
    competing(record) returns at the same expected version.
    """

    def __init__(self):
        super().__init__()
        self.competing = None

    async def update_record(self, ctx, record, expected_version):
        if self.competing is not None:
            competing, self.competing = self.competing, None
            await super().update_record(ctx, competing(record), expected_version)
        return await super().update_record(ctx, record, expected_version)


def events_of(store, record_id, event_type) -> list:
    events = run(store.get_events_by_entity(FINANCE.value, record_id))
    return [e for e in events if e.event_type == event_type]


@pytest.fixture
def pending(workspace, delegate):
    return run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))


class TestTransitionTable:
    """Tests for the transition table."""

    def test_allowed_transitions(self):
        assert next_state(ApprovalState.PENDING, ApprovalEvent.APPROVE) == ApprovalState.APPROVED
        assert next_state(ApprovalState.PENDING, ApprovalEvent.DECLINE) == ApprovalState.DECLINED
        for state in ApprovalState:
            assert next_state(state, ApprovalEvent.EDIT) == ApprovalState.PENDING

    def test_terminal_states_reject_decisions(self):
        for state in (ApprovalState.APPROVED, ApprovalState.DECLINED):
            for event in (ApprovalEvent.APPROVE, ApprovalEvent.DECLINE):
                assert (state, event) not in TRANSITIONS
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            next_state(ApprovalState.DECLINED, ApprovalEvent.APPROVE)
        assert exc_info.value.current_state == "declined"


class TestApproveDecline:
    """Tests for owner decisions."""

    def test_approve(self, workspace, store, pending):
        outcome, record = run(workspace.approvals.approve(
            OWNER_ID, FINANCE, pending.id, expected_version=pending.version
        ))
        assert outcome == Outcome.APPLIED
        assert record.approval_state == ApprovalState.APPROVED
        assert record.approved_by == OWNER_ID
        assert record.approved_at is not None
        assert len(events_of(store, pending.id, AuditEventType.RECORD_APPROVED)) == 1

    def test_approve_twice_is_noop(self, workspace, store, pending):
        run(workspace.approvals.approve(OWNER_ID, FINANCE, pending.id))
        outcome, record = run(workspace.approvals.approve(OWNER_ID, FINANCE, pending.id))
        assert outcome == Outcome.NOOP
        assert record.version == 2
        assert len(events_of(store, pending.id, AuditEventType.RECORD_APPROVED)) == 1

    def test_decline_notifies(self, workspace, sink, pending):
        outcome, record = run(workspace.approvals.decline(OWNER_ID, FINANCE, pending.id))
        assert outcome == Outcome.APPLIED
        assert record.approval_state == ApprovalState.DECLINED
        assert record.approved_by is None
        assert sink.events[-1].event_type == NotificationType.RECORD_DECLINED

    def test_decline_then_edit_round_trip(self, workspace, pending):
        run(workspace.approvals.decline(OWNER_ID, FINANCE, pending.id))
        edited = run(workspace.gate.update(DELEGATE_ID, FINANCE, pending.id, {"amount": "450"}))
        assert edited.approval_state == ApprovalState.PENDING

    def test_approve_declined_is_invalid(self, workspace, store, pending):
        run(workspace.approvals.decline(OWNER_ID, FINANCE, pending.id))
        with pytest.raises(InvalidStateTransitionError):
            run(workspace.approvals.approve(OWNER_ID, FINANCE, pending.id))
        assert events_of(store, pending.id, AuditEventType.INVALID_TRANSITION)

    def test_decline_approved_is_invalid(self, workspace, pending):
        run(workspace.approvals.approve(OWNER_ID, FINANCE, pending.id))
        with pytest.raises(InvalidStateTransitionError):
            run(workspace.approvals.decline(OWNER_ID, FINANCE, pending.id))

    def test_decline_deleted_record_is_invalid(self, workspace, pending):
        run(workspace.gate.retract(OWNER_ID, pending.id, FINANCE))
        with pytest.raises(InvalidStateTransitionError):
            run(workspace.approvals.decline(OWNER_ID, FINANCE, pending.id))

    def test_delegate_cannot_approve(self, workspace, store, pending):
        with pytest.raises(ForbiddenError):
            run(workspace.approvals.approve(DELEGATE_ID, FINANCE, pending.id))
        assert events_of(store, pending.id, AuditEventType.MUTATION_FORBIDDEN)
        assert store.raw_record(FINANCE, pending.id).approval_state == ApprovalState.PENDING

    def test_other_owner_cannot_approve(self, workspace, store, pending, other_owner):
        with pytest.raises(InvalidStateTransitionError):
            run(workspace.approvals.approve(OTHER_OWNER_ID, FINANCE, pending.id))
        assert store.raw_record(FINANCE, pending.id).approval_state == ApprovalState.PENDING

    def test_approval_of_outdated_version_is_stale(self, workspace, store, pending):
        run(workspace.gate.update(DELEGATE_ID, FINANCE, pending.id, {"amount": "5000"}))
        with pytest.raises(StaleWriteError):
            run(workspace.approvals.approve(
                OWNER_ID, FINANCE, pending.id, expected_version=pending.version
            ))
        assert store.raw_record(FINANCE, pending.id).approval_state == ApprovalState.PENDING
        assert events_of(store, pending.id, AuditEventType.STALE_WRITE_REJECTED)


class TestConcurrentApprovers:
    """Two writers on the same record."""

    @pytest.fixture
    def racing(self):
        store = RacingStore()
        sink = InMemoryNotificationSink()
        workspace = Workspace(store, store, sink, AuditLogger(store))
        run(workspace.provisioner.provision(
            AuthSession(actor_id=OWNER_ID, metadata={"role": "owner", "name": "Asha"})
        ))
        run(workspace.provisioner.add_delegate(OWNER_ID, "Ravi", delegate_id=DELEGATE_ID))
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, income("500")))
        return store, sink, workspace, record

    def test_concurrent_approvals_apply_once(self, workspace, store, sink, pending):
        async def both():
            return await asyncio.gather(
                workspace.approvals.approve(OWNER_ID, FINANCE, pending.id, pending.version),
                workspace.approvals.approve(OWNER_ID, FINANCE, pending.id, pending.version),
            )

        results = run(both())
        outcomes = sorted(outcome.value for outcome, _ in results)
        assert outcomes == [Outcome.APPLIED.value, Outcome.NOOP.value]
        assert store.raw_record(FINANCE, pending.id).version == 2
        assert len(events_of(store, pending.id, AuditEventType.RECORD_APPROVED)) == 1

    def test_lost_race_to_same_decision_is_noop(self, racing):
        store, sink, workspace, record = racing
        store.competing = lambda decided: decided
        outcome, latest = run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        assert outcome == Outcome.NOOP
        assert latest.approval_state == ApprovalState.APPROVED
        assert events_of(store, record.id, AuditEventType.RECORD_APPROVED) == []

    def test_lost_race_to_edit_is_stale(self, racing):
        store, sink, workspace, record = racing
        store.competing = lambda decided: decided.model_copy(
            update={"approval_state": ApprovalState.PENDING, "approved_by": None, "approved_at": None}
        )
        with pytest.raises(StaleWriteError):
            run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        assert store.raw_record(FINANCE, record.id).approval_state == ApprovalState.PENDING

    def test_lost_decline_race_sends_no_second_notification(self, racing):
        store, sink, workspace, record = racing
        store.competing = lambda decided: decided
        outcome, _ = run(workspace.approvals.decline(OWNER_ID, FINANCE, record.id))
        assert outcome == Outcome.NOOP
        assert NotificationType.RECORD_DECLINED not in [e.event_type for e in sink.events]


class TestDeletionRequests:
    """Tests for confirm and cancel of deletion requests."""

    @pytest.fixture
    def flagged(self, workspace, delegate):
        record = run(workspace.gate.propose(DELEGATE_ID, FINANCE, expense("200")))
        run(workspace.approvals.approve(OWNER_ID, FINANCE, record.id))
        run(workspace.gate.retract(DELEGATE_ID, record.id, FINANCE))
        return record

    def test_confirm_deletion(self, workspace, store, flagged):
        outcome, removed = run(workspace.approvals.confirm_deletion(OWNER_ID, FINANCE, flagged.id))
        assert outcome == Outcome.DELETED
        assert removed.id == flagged.id
        assert store.raw_record(FINANCE, flagged.id) is None
        assert events_of(store, flagged.id, AuditEventType.DELETION_CONFIRMED)

    def test_confirm_twice_is_noop(self, workspace, flagged):
        run(workspace.approvals.confirm_deletion(OWNER_ID, FINANCE, flagged.id))
        assert run(workspace.approvals.confirm_deletion(OWNER_ID, FINANCE, flagged.id)) == (
            Outcome.NOOP,
            None,
        )

    def test_confirm_without_request_is_invalid(self, workspace, pending):
        with pytest.raises(InvalidStateTransitionError):
            run(workspace.approvals.confirm_deletion(OWNER_ID, FINANCE, pending.id))

    def test_cancel_keeps_approval_state(self, workspace, flagged):
        outcome, record = run(workspace.approvals.cancel_deletion(OWNER_ID, FINANCE, flagged.id))
        assert outcome == Outcome.APPLIED
        assert not record.deletion_requested
        assert record.deletion_requested_by is None
        assert record.approval_state == ApprovalState.APPROVED

    def test_cancel_without_request_is_noop(self, workspace, pending):
        outcome, record = run(workspace.approvals.cancel_deletion(OWNER_ID, FINANCE, pending.id))
        assert outcome == Outcome.NOOP
        assert record.id == pending.id

    def test_cancel_of_deleted_record_is_invalid(self, workspace, flagged):
        run(workspace.approvals.confirm_deletion(OWNER_ID, FINANCE, flagged.id))
        with pytest.raises(InvalidStateTransitionError):
            run(workspace.approvals.cancel_deletion(OWNER_ID, FINANCE, flagged.id))

    def test_delegate_cannot_confirm(self, workspace, store, flagged):
        with pytest.raises(ForbiddenError):
            run(workspace.approvals.confirm_deletion(DELEGATE_ID, FINANCE, flagged.id))
        assert store.raw_record(FINANCE, flagged.id) is not None
