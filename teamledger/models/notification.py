"""
Notification Models

The engine tells the owner about transitions that need attention.
Delivery and retry are the sink's concern.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from teamledger.models.actor import utc_now
from teamledger.models.record import RecordKind


class NotificationType(str, Enum):
    """Transitions that require owner attention."""
    RECORD_SUBMITTED = "record_submitted"
    RECORD_RESUBMITTED = "record_resubmitted"
    DELETION_REQUESTED = "deletion_requested"
    RECORD_DECLINED = "record_declined"


class NotificationEvent(BaseModel):
    """What the engine hands to a sink."""
    model_config = ConfigDict(frozen=True)

    organization_key: str
    record_kind: RecordKind
    record_id: UUID
    event_type: NotificationType


class StoredNotification(BaseModel):
    """A notification persisted for the owner's inbox."""

    id: UUID = Field(default_factory=uuid4)
    organization_key: str
    record_kind: RecordKind
    record_id: UUID
    event_type: NotificationType
    is_read: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_event(cls, event: NotificationEvent) -> "StoredNotification":
        return cls(
            organization_key=event.organization_key,
            record_kind=event.record_kind,
            record_id=event.record_id,
            event_type=event.event_type,
        )
