"""Services package."""

from banker.services.storage import (
    ConflictError,
    ConnectionError,
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    NotFoundError,
    Record,
    RecordStore,
    StorageError,
)

__all__ = [
    # Storage services
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "InMemoryRecordStore",
    "NotFoundError",
    "Record",
    "RecordStore",
    "StorageError",
]
