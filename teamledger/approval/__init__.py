"""Approval state machine and owner-side decisions."""

from teamledger.approval.transitions import TRANSITIONS, ApprovalEvent, next_state
from teamledger.approval.state_machine import ApprovalService

__all__ = [
    "TRANSITIONS",
    "ApprovalEvent",
    "ApprovalService",
    "next_state",
]
