"""Notification sink boundary."""

from teamledger.notifications.sink import (
    InMemoryNotificationSink,
    NotificationSink,
    NullNotificationSink,
    StoreNotificationSink,
)

__all__ = [
    "InMemoryNotificationSink",
    "NotificationSink",
    "NullNotificationSink",
    "StoreNotificationSink",
]
