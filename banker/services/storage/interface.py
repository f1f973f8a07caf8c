"""
Abstract Record Store Interface

DESIGN DECISION: The ledger core talks to persistence through one small,
generic interface instead of a table-specific repository per model.
This allows us to:
1. Swap the Google Sheets backend for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The only write primitives are single-record create and single-record
conditional update. There are NO multi-record transactions: everything
the core guarantees is built from these two operations.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class Record(BaseModel):
    """
    A single stored record.

    `version` is a revision counter owned by the store. Callers treat it
    as opaque and only hand it back on conditional updates.
    """

    id: str
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    fields: dict[str, Any] = Field(default_factory=dict)


class RecordStore(ABC):
    """
    Abstract interface for keyed-record persistence.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def query(
        self,
        table: str,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[Record]:
        """
        Find records whose fields equal every value in `filter`.

        Args:
            table: Table name
            filter: Field/value equality constraints (None matches all)

        Returns:
            Matching records in creation order

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def get(self, table: str, record_id: str) -> Optional[Record]:
        """
        Retrieve a record by its ID.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def create(
        self,
        table: str,
        fields: dict[str, Any],
        unique_field: Optional[str] = None,
    ) -> Record:
        """
        Create a new record.

        Args:
            table: Table name
            fields: Field values for the new record
            unique_field: If given, creation fails when another record
                already holds the same value for this field
                (create-if-absent).

        Returns:
            The created record (version 1)

        Raises:
            DuplicateError: If `unique_field` collides
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        fields: dict[str, Any],
        expected_version: int,
    ) -> Record:
        """
        Conditionally update a record (compare-and-set).

        The given fields are merged into the stored record only if its
        current version equals `expected_version`. The update is applied
        completely or not at all.

        Returns:
            The updated record with its new version

        Raises:
            ConflictError: If the stored version differs
            NotFoundError: If the record doesn't exist
            StorageError: If the write fails
        """
        pass


def matches(record: Record, filter: Optional[dict[str, Any]]) -> bool:
    """Check a record against an equality filter."""
    if not filter:
        return True
    return all(record.fields.get(key) == value for key, value in filter.items())


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConflictError(StorageError):
    """Conditional update lost: the record changed since it was read."""

    def __init__(self, table: str, record_id: str, expected: int, actual: int):
        self.table = table
        self.record_id = record_id
        self.expected_version = expected
        self.actual_version = actual
        super().__init__(
            f"Version conflict on {table}/{record_id}: "
            f"expected {expected}, found {actual}"
        )


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
