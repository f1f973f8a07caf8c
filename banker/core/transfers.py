"""
Transfer Engine

Moves money between two accounts and records the movement in the ledger.

DESIGN DECISION: The store can only update one record at a time, so a
transfer is two compare-and-set writes:

1. DEBIT: read both accounts, check the sender can afford it, CAS the
   sender's balance down. A lost CAS re-reads and re-checks, so the
   affordability check always runs against the balance being replaced.
   Nothing has changed until this write lands.
2. CREDIT: CAS the recipient's balance up. A lost CAS re-reads the
   recipient and retries only this step; the debit is final.

If the credit cannot be applied within the retry budget (or before the
deadline) the debit is NOT rolled back. Instead a success=false ledger
entry records that the sender was debited and the recipient is owed,
and the error surfaces so an operator can reconcile.

Once the debit has committed, a ledger append that keeps failing never
escapes as a plain store error: it becomes UnrecordedTransferError,
which says money moved and carries the entry that is missing.

Rejections at entry (validation, insufficient funds) write nothing.
"""

from typing import Optional
from uuid import UUID

import structlog

from banker.audit import AuditLogger
from banker.core.accounts import AccountStore
from banker.core.errors import (
    ConcurrencyConflictError,
    CreditPendingError,
    DeadlineExceededError,
    InsufficientFundsError,
    LedgerError,
    UnrecordedTransferError,
)
from banker.core.ledger import LedgerRecorder
from banker.core.retry import Deadline, RetryPolicy, retrying
from banker.core.validation import check_amount, check_distinct, check_user
from banker.models.ledger import Account, LedgerEntry
from banker.services.storage import ConflictError, StorageError

logger = structlog.get_logger(__name__)


class TransferEngine:
    """
    Atomic-in-effect two-account transfers.

    Usage:
        engine = TransferEngine(accounts, ledger, policy, banker_id="UBANKER")
        entry = await engine.transfer("alice", "bob", 30, "lunch")
    """

    def __init__(
        self,
        accounts: AccountStore,
        ledger: LedgerRecorder,
        policy: Optional[RetryPolicy] = None,
        banker_id: str = "banker",
        operation_timeout: Optional[float] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._accounts = accounts
        self._ledger = ledger
        self._policy = policy or RetryPolicy()
        self._banker_id = banker_id
        self._operation_timeout = operation_timeout
        self._audit_logger = audit_logger

    @property
    def banker_id(self) -> str:
        return self._banker_id

    def new_deadline(self) -> Deadline:
        """Deadline for one top-level operation, from configuration."""
        return Deadline(self._operation_timeout)

    async def transfer(
        self,
        from_user: str,
        to_user: str,
        amount: int,
        note: str = "",
        admin_note: Optional[str] = None,
        deadline: Optional[Deadline] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """
        Move `amount` from `from_user` to `to_user`.

        Returns:
            The success=true ledger entry for the transfer

        Raises:
            LedgerValidationError: Bad amount, missing user or self-transfer
            InsufficientFundsError: The sender cannot afford it (nothing written)
            ConcurrencyConflictError: The debit kept losing its CAS
            DeadlineExceededError: Deadline passed while retrying
            CreditPendingError: Debited but not credited (see module docstring)
            UnrecordedTransferError: Balances moved but the ledger write failed
            StorageError: The store kept failing before the debit
        """
        check_user(from_user, "from")
        check_user(to_user, "to")
        check_amount(amount)
        check_distinct(from_user, to_user)
        deadline = deadline or self.new_deadline()
        if deadline.expired:
            raise DeadlineExceededError("Deadline passed before the transfer started")

        logger.info("transfer_started", from_user=from_user, to_user=to_user, amount=amount)

        try:
            target = await self._debit(from_user, to_user, amount, deadline)
        except InsufficientFundsError as e:
            logger.info("transfer_rejected", from_user=from_user, balance=e.balance, amount=amount)
            if self._audit_logger:
                await self._audit_logger.log_transfer_rejected(
                    from_user, to_user, amount, str(e), correlation_id
                )
            raise
        except (StorageError, LedgerError) as e:
            logger.warning("transfer_failed", from_user=from_user, to_user=to_user, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_transfer_failed(
                    from_user, to_user, amount, e, correlation_id
                )
            raise

        entry = LedgerEntry(
            from_user=from_user,
            to_user=to_user,
            amount=amount,
            note=note or "",
            success=True,
            admin_note=admin_note,
        )
        await self._credit(target, entry, deadline, correlation_id)

        recorded = await self._append_committed(entry, True, correlation_id)
        logger.info("transfer_completed", entry_id=recorded.id)
        if self._audit_logger:
            await self._audit_logger.log_transfer_completed(recorded, correlation_id)
        return recorded

    async def give(self, to_user: str, amount: int, note: str = "", **kwargs) -> LedgerEntry:
        """Legacy /give: the banker pays `to_user`."""
        return await self.transfer(self._banker_id, to_user, amount, note, **kwargs)

    async def fine(self, from_user: str, amount: int, note: str = "", **kwargs) -> LedgerEntry:
        """Legacy /fine: `from_user` pays the banker."""
        return await self.transfer(from_user, self._banker_id, amount, note, **kwargs)

    async def _debit(
        self,
        from_user: str,
        to_user: str,
        amount: int,
        deadline: Deadline,
    ) -> Account:
        """Commit the sender's side. Returns the recipient as read alongside it."""
        try:
            async for attempt in retrying(self._policy, deadline):
                with attempt:
                    source = await self._accounts.get_balance(from_user)
                    target = await self._accounts.get_balance(to_user)
                    if source.balance - amount < 0:
                        raise InsufficientFundsError(from_user, source.balance, amount)
                    await self._accounts.compare_and_set_balance(
                        from_user, source.version, source.balance - amount
                    )
        except ConflictError as e:
            if deadline.expired:
                raise DeadlineExceededError(f"Deadline passed debiting {from_user}") from e
            raise ConcurrencyConflictError(
                f"Could not debit {from_user} after {self._policy.max_retries} attempts"
            ) from e
        except StorageError as e:
            if deadline.expired:
                raise DeadlineExceededError(f"Deadline passed debiting {from_user}") from e
            raise

        logger.info("debit_committed", user=from_user, amount=amount, balance=source.balance - amount)
        return target

    async def _credit(
        self,
        target: Account,
        entry: LedgerEntry,
        deadline: Deadline,
        correlation_id: Optional[UUID],
    ) -> None:
        """Commit the recipient's side, or record the debit as pending credit."""
        current: Optional[Account] = target
        try:
            async for attempt in retrying(self._policy, deadline):
                with attempt:
                    if current is None:
                        current = await self._accounts.get_balance(entry.to_user)
                    try:
                        await self._accounts.compare_and_set_balance(
                            entry.to_user, current.version, current.balance + entry.amount
                        )
                    except StorageError:
                        logger.debug("credit_conflict", user=entry.to_user)
                        current = None
                        raise
        except (StorageError, LedgerError) as e:
            await self._record_pending_credit(entry, e, deadline, correlation_id)

        logger.info("credit_committed", user=entry.to_user, amount=entry.amount)

    async def _record_pending_credit(
        self,
        entry: LedgerEntry,
        error: Exception,
        deadline: Deadline,
        correlation_id: Optional[UUID],
    ) -> None:
        note = f"Debit committed, credit pending: {type(error).__name__}: {error}"
        if entry.admin_note:
            note = f"{entry.admin_note} | {note}"
        failed = await self._append_committed(
            entry.model_copy(update={"success": False, "admin_note": note}),
            False,
            correlation_id,
        )
        logger.error(
            "credit_pending",
            entry_id=failed.id,
            from_user=entry.from_user,
            to_user=entry.to_user,
            amount=entry.amount,
            error=str(error),
        )
        if self._audit_logger:
            await self._audit_logger.log_credit_pending(failed, error, correlation_id)

        message = (
            f"{entry.from_user} was debited {entry.amount} but {entry.to_user} "
            f"could not be credited (ledger entry {failed.id})"
        )
        if deadline.expired:
            raise DeadlineExceededError(message, pending_entry=failed) from error
        raise CreditPendingError(message, failed) from error

    async def _append_committed(
        self,
        entry: LedgerEntry,
        credited: bool,
        correlation_id: Optional[UUID],
    ) -> LedgerEntry:
        """Append the entry for balances that have already moved."""
        try:
            return await self._ledger.append(entry)
        except (StorageError, LedgerError) as e:
            logger.critical(
                "transfer_unrecorded",
                from_user=entry.from_user,
                to_user=entry.to_user,
                amount=entry.amount,
                credited=credited,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_transfer_unrecorded(entry, credited, e, correlation_id)
            state = "moved" if credited else f"was debited from {entry.from_user} only"
            raise UnrecordedTransferError(
                f"{entry.amount} {state} ({entry.from_user} -> {entry.to_user}) "
                f"but the ledger entry could not be written: {type(e).__name__}: {e}",
                entry,
                credited,
            ) from e
