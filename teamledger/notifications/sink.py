"""
Notification Sinks

The approval engine tells the owner about transitions that need
attention: a new pending record, a resubmitted edit, a deletion
request, a decline.

CRITICAL: emit() never raises. Delivery is the sink's concern and a
failed delivery must not undo or fail the transition that caused it.
There is no exactly-once guarantee.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

import structlog

from teamledger.models.notification import (
    NotificationEvent,
    NotificationType,
    StoredNotification,
)
from teamledger.models.record import FinanceRecord
from teamledger.services.storage import NotificationStorageInterface, StorageError


logger = structlog.get_logger(__name__)


class NotificationSink(ABC):
    """Receives (organization_key, record_kind, record_id, event_type)."""

    @abstractmethod
    async def notify(self, event: NotificationEvent) -> None:
        """Deliver one event. May raise; callers go through emit()."""
        pass

    async def emit(self, record: FinanceRecord, event_type: NotificationType) -> bool:
        """
        Build and deliver an event for a record.

        Returns True if the sink accepted it.
        """
        event = NotificationEvent(
            organization_key=record.organization_key,
            record_kind=record.kind,
            record_id=record.id,
            event_type=event_type,
        )
        try:
            await self.notify(event)
            return True
        except StorageError as e:
            logger.error(
                "notification_delivery_failed",
                event_type=event_type.value,
                record_id=str(record.id),
                organization_key=record.organization_key,
                error=str(e),
            )
            return False


class NullNotificationSink(NotificationSink):
    """Discards every event."""

    async def notify(self, event: NotificationEvent) -> None:
        return None


class InMemoryNotificationSink(NotificationSink):
    """Keeps delivered events in a list, for tests."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    async def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def for_record(self, record_id: UUID) -> list[NotificationEvent]:
        return [e for e in self.events if e.record_id == record_id]


class StoreNotificationSink(NotificationSink):
    """
    Persists events to the owner's notification inbox.

    Also serves the inbox reads the owner's notification panel needs.
    """

    def __init__(self, storage: NotificationStorageInterface):
        self._storage = storage

    async def notify(self, event: NotificationEvent) -> None:
        await self._storage.append_notification(StoredNotification.from_event(event))

    async def list_for_owner(
        self,
        owner_id: str,
        unread_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[StoredNotification]:
        items = await self._storage.list_notifications(owner_id)
        if unread_only:
            items = [n for n in items if not n.is_read]
        return items[:limit] if limit else items

    async def unread_count(self, owner_id: str) -> int:
        return len(await self.list_for_owner(owner_id, unread_only=True))

    async def mark_read(self, owner_id: str, notification_id: UUID) -> bool:
        return await self._storage.mark_notification_read(owner_id, notification_id)

    async def delete(self, owner_id: str, notification_id: UUID) -> bool:
        return await self._storage.delete_notification(owner_id, notification_id)
