"""
In-Memory Record Store

Used by the test-suite and for local development without a spreadsheet.
Every call yields to the event loop before touching data, so concurrent
callers interleave at the same points they would against a remote
backend.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from banker.services.storage.interface import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    Record,
    RecordStore,
    matches,
)


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed implementation of RecordStore.

    A single asyncio lock makes each create/update atomic. Reads are
    served from copies so callers can never mutate stored state.
    """

    def __init__(self, latency: float = 0.0):
        self._tables: dict[str, dict[str, Record]] = {}
        self._lock = asyncio.Lock()
        self._latency = latency

    def _table(self, table: str) -> dict[str, Record]:
        return self._tables.setdefault(table, {})

    async def _io(self) -> None:
        await asyncio.sleep(self._latency)

    async def query(
        self,
        table: str,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[Record]:
        await self._io()
        return [
            record.model_copy(deep=True)
            for record in self._table(table).values()
            if matches(record, filter)
        ]

    async def get(self, table: str, record_id: str) -> Optional[Record]:
        await self._io()
        record = self._table(table).get(record_id)
        return record.model_copy(deep=True) if record else None

    async def create(
        self,
        table: str,
        fields: dict[str, Any],
        unique_field: Optional[str] = None,
    ) -> Record:
        await self._io()
        async with self._lock:
            rows = self._table(table)
            if unique_field is not None:
                for existing in rows.values():
                    if existing.fields.get(unique_field) == fields.get(unique_field):
                        raise DuplicateError(
                            f"{table} already has {unique_field}={fields.get(unique_field)!r}"
                        )
            record = Record(
                id=f"rec{uuid4().hex[:14]}",
                version=1,
                created_at=datetime.utcnow(),
                fields=dict(fields),
            )
            rows[record.id] = record
            return record.model_copy(deep=True)

    async def update(
        self,
        table: str,
        record_id: str,
        fields: dict[str, Any],
        expected_version: int,
    ) -> Record:
        await self._io()
        async with self._lock:
            stored = self._table(table).get(record_id)
            if stored is None:
                raise NotFoundError(f"Record not found: {table}/{record_id}")
            if stored.version != expected_version:
                raise ConflictError(table, record_id, expected_version, stored.version)
            stored.fields.update(fields)
            stored.version += 1
            return stored.model_copy(deep=True)
