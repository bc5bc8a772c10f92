"""Services package."""

from teamledger.services.storage import (
    AuditStorageInterface,
    DirectoryStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsStore,
    InMemoryStore,
    NotificationStorageInterface,
    RecordStoreInterface,
    StorageError,
    StoreContext,
)

__all__ = [
    "AuditStorageInterface",
    "DirectoryStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsStore",
    "InMemoryStore",
    "NotificationStorageInterface",
    "RecordStoreInterface",
    "StorageError",
    "StoreContext",
]
