"""
Ledger Recorder

Owns the append-only `ledger` table and the ledger's sequence counter.

Entry IDs come from a counter record in the `sequences` table that is
advanced with compare-and-set, so IDs are strictly increasing even with
concurrent writers. Each entry is created with the sequence as a unique
field: if a create is retried after its response was lost, the second
attempt sees the first one's row instead of writing the entry twice.

Entries are never updated or deleted.
"""

import time
from typing import Callable, Optional

import structlog

from banker.core.errors import ConcurrencyConflictError, LedgerError, LedgerValidationError
from banker.core.retry import Deadline, RetryPolicy, retrying
from banker.models.ledger import LEDGER_TABLE, SEQUENCES_TABLE, LedgerEntry, LedgerFilter
from banker.services.storage import (
    ConflictError,
    DuplicateError,
    Record,
    RecordStore,
    StorageError,
)

logger = structlog.get_logger(__name__)

SEQUENCE_NAME = "ledger"


class LedgerRecorder:
    """Append-only transaction log."""

    def __init__(
        self,
        storage: RecordStore,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            storage: Record store holding the ledger and sequences tables
            policy: Retry budget for sequence allocation and the entry
                write. Give it a generous attempt cap: appends happen
                after balances have already changed.
            clock: Wall clock in seconds, for entry timestamps
        """
        self._storage = storage
        self._policy = policy or RetryPolicy(max_retries=50)
        self._clock = clock

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Record an entry.

        Assigns the next sequence number, the ID derived from it and a
        server timestamp, then writes the entry once.

        Returns:
            The recorded entry

        Raises:
            LedgerValidationError: The entry was already recorded
            ConcurrencyConflictError: The sequence counter stayed contended
            StorageError: The write kept failing
        """
        if entry.sequence is not None:
            raise LedgerValidationError(f"Ledger entry {entry.id} is already recorded")

        sequence = await self._next_sequence()
        recorded = entry.model_copy(
            update={
                "id": LedgerEntry.format_id(sequence),
                "sequence": sequence,
                "timestamp": int(self._clock() * 1000),
            }
        )

        # No deadline here: once money has moved the entry must be written
        async for attempt in retrying(self._policy, Deadline.never(), retry_on=(StorageError,)):
            with attempt:
                try:
                    await self._storage.create(
                        LEDGER_TABLE,
                        recorded.to_fields(),
                        unique_field="Sequence",
                    )
                except DuplicateError:
                    if attempt.retry_state.attempt_number == 1:
                        raise LedgerError(f"Ledger sequence {sequence} is already in use")
                    logger.warning("ledger_append_already_written", sequence=sequence)

        logger.info(
            "ledger_appended",
            entry_id=recorded.id,
            from_user=recorded.from_user,
            to_user=recorded.to_user,
            amount=recorded.amount,
            success=recorded.success,
        )
        return recorded

    async def list_entries(self, filter: Optional[LedgerFilter] = None) -> list[LedgerEntry]:
        """
        List entries in sequence order.

        With `filter.limit` only the most recent entries are returned.
        """
        filter = filter or LedgerFilter()
        constraints = {}
        if filter.from_user is not None:
            constraints["From"] = filter.from_user
        if filter.to_user is not None:
            constraints["To"] = filter.to_user
        if filter.success is not None:
            constraints["Success"] = filter.success

        records = await self._storage.query(LEDGER_TABLE, constraints or None)
        entries = [LedgerEntry.from_record(record) for record in records]
        if filter.user is not None:
            entries = [
                e for e in entries
                if filter.user in (e.from_user, e.to_user)
            ]
        entries.sort(key=lambda e: e.sequence)

        if filter.limit is not None:
            entries = entries[-filter.limit:]
        return entries

    async def pending_credits(self) -> list[LedgerEntry]:
        """Failed entries whose debit still waits for reconciliation."""
        return await self.list_entries(LedgerFilter(success=False))

    async def _counter(self) -> Record:
        records = await self._storage.query(SEQUENCES_TABLE, {"Name": SEQUENCE_NAME})
        if records:
            return records[0]
        try:
            return await self._storage.create(
                SEQUENCES_TABLE,
                {"Name": SEQUENCE_NAME, "Value": 0},
                unique_field="Name",
            )
        except DuplicateError:
            records = await self._storage.query(SEQUENCES_TABLE, {"Name": SEQUENCE_NAME})
            return records[0]

    async def _next_sequence(self) -> int:
        try:
            async for attempt in retrying(self._policy, Deadline.never()):
                with attempt:
                    counter = await self._counter()
                    value = (counter.fields.get("Value") or 0) + 1
                    await self._storage.update(
                        SEQUENCES_TABLE,
                        counter.id,
                        {"Value": value},
                        expected_version=counter.version,
                    )
        except ConflictError as e:
            raise ConcurrencyConflictError("Ledger sequence is contended; giving up") from e
        return value
