"""
Storage Services Package

Provides the abstract record store interface and concrete implementations.
Google Sheets is the hosted backend; the in-memory store backs tests and
local development.
"""

from banker.services.storage.interface import (
    ConflictError,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    Record,
    RecordStore,
    StorageError,
)
from banker.services.storage.memory import InMemoryRecordStore
from banker.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    TABLE_COLUMNS,
)

__all__ = [
    # Interface
    "Record",
    "RecordStore",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryRecordStore",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "TABLE_COLUMNS",
]
