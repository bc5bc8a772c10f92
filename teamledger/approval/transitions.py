"""
Approval transition table.

Kept apart from the service so the mutation gate can apply the edit
transition without importing the approver side.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

from teamledger.errors import InvalidStateTransitionError
from teamledger.models.record import ApprovalState


class ApprovalEvent(str, Enum):
    APPROVE = "approve"
    DECLINE = "decline"
    EDIT = "edit"


TRANSITIONS: dict[tuple[ApprovalState, ApprovalEvent], ApprovalState] = {
    (ApprovalState.PENDING, ApprovalEvent.APPROVE): ApprovalState.APPROVED,
    (ApprovalState.PENDING, ApprovalEvent.DECLINE): ApprovalState.DECLINED,
    (ApprovalState.APPROVED, ApprovalEvent.EDIT): ApprovalState.PENDING,
    (ApprovalState.DECLINED, ApprovalEvent.EDIT): ApprovalState.PENDING,
    (ApprovalState.PENDING, ApprovalEvent.EDIT): ApprovalState.PENDING,
}


def next_state(
    current: ApprovalState,
    event: ApprovalEvent,
    record_id: Optional[UUID] = None,
) -> ApprovalState:
    """
    Target state of an event.

    Raises:
        InvalidStateTransitionError: The pair is not in TRANSITIONS
    """
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidStateTransitionError(
            f"Cannot {event.value} a record that is {current.value}",
            record_id=record_id,
            current_state=current.value,
            event=event.value,
        )
