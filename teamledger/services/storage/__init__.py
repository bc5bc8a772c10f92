"""
Storage Services Package

Provides abstract interfaces, declarative row policies and concrete
implementations for data storage. The in-memory store backs tests and
local runs; Google Sheets is the hosted backend.
"""

from teamledger.services.storage.interface import (
    AuditStorageInterface,
    DirectoryStoreInterface,
    DuplicateError,
    NotFoundError,
    NotificationStorageInterface,
    PolicyViolationError,
    RecordStoreInterface,
    StorageError,
    StoreContext,
    StoreUnavailableError,
    VersionConflictError,
)
from teamledger.services.storage.policies import (
    FUND_TOTALS_POLICY,
    RECORD_POLICIES,
    PolicyContext,
    PolicyOperation,
    RowPolicy,
    policy_for,
)
from teamledger.services.storage.memory import InMemoryStore
from teamledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DirectoryStoreInterface",
    "NotificationStorageInterface",
    "RecordStoreInterface",
    "StoreContext",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "PolicyViolationError",
    "StorageError",
    "StoreUnavailableError",
    "VersionConflictError",
    # Row policies
    "FUND_TOTALS_POLICY",
    "RECORD_POLICIES",
    "PolicyContext",
    "PolicyOperation",
    "RowPolicy",
    "policy_for",
    # Implementations
    "InMemoryStore",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsStore",
]
