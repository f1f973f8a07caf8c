"""
Invoice Manager

Owns the `invoices` table and the invoice lifecycle:

    Processing ──pay──▶ Paid
        │
        └────deny────▶ Denied

DESIGN DECISION: Paying is a transfer followed by a status change, and
those two writes hit different records. To stop two concurrent payers
from both transferring, the payer first CLAIMS the invoice: a
compare-and-set that writes a claim token while the invoice is still
Processing. Only one claim can win. The winner transfers and then flips
the status to Paid against the version it claimed at.

TRADEOFFS:
- A payer that dies right after claiming leaves a claim behind. Claims
  carry a timestamp and expire after `claim_ttl` seconds, so the invoice
  becomes payable (or deniable) again.
- Just before any money moves, the payer turns its claim into a
  reconciliation hold ("reconcile:<claim token>") with one more
  compare-and-set. That write fences out a payer whose claim expired
  and was taken over: it cannot lock in, so it never debits. Holds never
  expire; settling or a failure before the debit clears them.
- If the debit committed but the credit did not, the hold names the
  success=false ledger entry ("reconcile:<ledger id>"). If balances
  moved but the ledger write failed, the hold is left as it is. Either
  way the invoice stays Processing until an operator resolves it.
"""

import time
from typing import Callable, Optional, Union
from uuid import UUID, uuid4

import structlog

from banker.audit import AuditLogger
from banker.core.errors import (
    AlreadyProcessedError,
    ConcurrencyConflictError,
    CreditPendingError,
    DeadlineExceededError,
    InvoiceNotFoundError,
    LedgerError,
    UnrecordedTransferError,
)
from banker.core.retry import Deadline, RetryPolicy, retrying
from banker.core.transfers import TransferEngine
from banker.core.validation import check_amount, check_distinct, check_user
from banker.models.ledger import (
    INVOICES_TABLE,
    Invoice,
    InvoiceStatus,
    LedgerEntry,
    PayerRole,
)
from banker.services.storage import ConflictError, RecordStore, StorageError

logger = structlog.get_logger(__name__)

RECONCILE_PREFIX = "reconcile:"

_CLEARED_CLAIM = {"Claim": None, "Claimed At": None}


class InvoiceManager:
    """
    Create, pay, deny and list invoices.

    Usage:
        invoices = InvoiceManager(storage, engine, policy)
        invoice_id = await invoices.create_invoice("shop", "alice", "Coffee", 4)
        entry = await invoices.pay_invoice(invoice_id)
    """

    def __init__(
        self,
        storage: RecordStore,
        transfers: TransferEngine,
        policy: Optional[RetryPolicy] = None,
        claim_ttl: float = 60.0,
        operation_timeout: Optional[float] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._transfers = transfers
        self._policy = policy or RetryPolicy()
        self._claim_ttl = claim_ttl
        self._operation_timeout = operation_timeout
        self._audit_logger = audit_logger
        self._clock = clock

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create_invoice(
        self,
        from_user: str,
        to_user: str,
        reason: str,
        amount: int,
    ) -> str:
        """
        Open an invoice asking `to_user` to pay `from_user`.

        Returns:
            The new invoice ID
        """
        check_user(from_user, "from")
        check_user(to_user, "to")
        check_amount(amount)
        check_distinct(from_user, to_user)

        record = await self._storage.create(
            INVOICES_TABLE,
            {
                "From": from_user,
                "To": to_user,
                "Reason": reason or "",
                "Amount": amount,
                "Status": InvoiceStatus.PROCESSING.value,
                "Entry": None,
                **_CLEARED_CLAIM,
            },
        )
        invoice = Invoice.from_record(record)
        logger.info(
            "invoice_created",
            invoice_id=invoice.id,
            from_user=from_user,
            to_user=to_user,
            amount=amount,
        )
        if self._audit_logger:
            await self._audit_logger.log_invoice_created(invoice)
        return invoice.id

    async def get_invoice(self, invoice_id: str) -> Invoice:
        if not invoice_id:
            raise InvoiceNotFoundError("Invoice ID is required")
        record = await self._storage.get(INVOICES_TABLE, invoice_id)
        if record is None:
            raise InvoiceNotFoundError(f"No invoice {invoice_id}")
        return Invoice.from_record(record)

    async def list_pending_invoices(
        self,
        user: str,
        role: Union[PayerRole, str] = PayerRole.PAYER,
    ) -> list[Invoice]:
        """
        Processing invoices for `user`.

        role="payer" lists invoices the user has to pay, role="payee"
        the ones the user is waiting on.
        """
        check_user(user)
        field = "To" if PayerRole(role) is PayerRole.PAYER else "From"
        records = await self._storage.query(
            INVOICES_TABLE,
            {field: user, "Status": InvoiceStatus.PROCESSING.value},
        )
        return [Invoice.from_record(record) for record in records]

    async def list_invoices(self, status: Optional[InvoiceStatus] = None) -> list[Invoice]:
        filter = {"Status": status.value} if status else None
        records = await self._storage.query(INVOICES_TABLE, filter)
        return [Invoice.from_record(record) for record in records]

    # =========================================================================
    # PAY
    # =========================================================================

    async def pay_invoice(
        self,
        invoice_id: str,
        deadline: Optional[Deadline] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """
        Pay an invoice: funds move from its `to` user to its `from` user.

        Returns:
            The ledger entry of the payment

        Raises:
            InvoiceNotFoundError: No such invoice
            AlreadyProcessedError: The invoice is Paid or Denied
            ConcurrencyConflictError: Another request is paying it
            InsufficientFundsError: The payer cannot afford it; the
                invoice stays Processing
            CreditPendingError / DeadlineExceededError: See TransferEngine
            UnrecordedTransferError: Money moved without a ledger entry;
                the invoice stays on hold
        """
        deadline = deadline or Deadline(self._operation_timeout)
        token = uuid4().hex
        invoice = await self._claim(invoice_id, token, deadline)
        logger.info("invoice_claimed", invoice_id=invoice_id, claim=token)

        try:
            invoice = await self._lock_in(invoice, token, deadline)
        except (LedgerError, StorageError) as e:
            await self._release(invoice)
            await self._payment_failed(invoice.id, e, correlation_id)
            raise

        try:
            entry = await self._transfers.transfer(
                invoice.to_user,
                invoice.from_user,
                invoice.amount,
                invoice.reason,
                admin_note=f"Invoice {invoice.id}",
                deadline=deadline,
                correlation_id=correlation_id,
            )
        except UnrecordedTransferError as e:
            logger.error("invoice_held_for_reconciliation", invoice_id=invoice.id, claim=invoice.claim)
            await self._payment_failed(invoice.id, e, correlation_id)
            raise
        except CreditPendingError as e:
            await self._hold(invoice, e.entry)
            await self._payment_failed(invoice.id, e, correlation_id)
            raise
        except DeadlineExceededError as e:
            if e.pending_entry is not None:
                await self._hold(invoice, e.pending_entry)
            else:
                await self._release(invoice)
            await self._payment_failed(invoice.id, e, correlation_id)
            raise
        except (LedgerError, StorageError) as e:
            # Nothing was debited
            await self._release(invoice)
            await self._payment_failed(invoice.id, e, correlation_id)
            raise

        await self._settle(invoice, entry, correlation_id)
        logger.info("invoice_paid", invoice_id=invoice.id, entry_id=entry.id)
        if self._audit_logger:
            await self._audit_logger.log_invoice_paid(invoice.id, entry, correlation_id)
        return entry

    # =========================================================================
    # DENY
    # =========================================================================

    async def deny_invoice(
        self,
        invoice_id: str,
        deadline: Optional[Deadline] = None,
    ) -> None:
        """
        Move a Processing invoice to Denied.

        Raises:
            InvoiceNotFoundError: No such invoice
            AlreadyProcessedError: The invoice is Paid or Denied
            ConcurrencyConflictError: A payment holds the invoice, or
                conflicts outlasted the retry budget
        """
        deadline = deadline or Deadline(self._operation_timeout)
        try:
            async for attempt in retrying(self._policy, deadline):
                with attempt:
                    invoice = await self.get_invoice(invoice_id)
                    self._check_claimable(invoice)
                    await self._storage.update(
                        INVOICES_TABLE,
                        invoice.id,
                        {"Status": InvoiceStatus.DENIED.value, **_CLEARED_CLAIM},
                        expected_version=invoice.version,
                    )
        except ConflictError as e:
            if deadline.expired:
                raise DeadlineExceededError(f"Deadline passed denying {invoice_id}") from e
            raise ConcurrencyConflictError(f"Invoice {invoice_id} kept changing") from e
        except StorageError as e:
            if deadline.expired:
                raise DeadlineExceededError(f"Deadline passed denying {invoice_id}") from e
            raise

        logger.info("invoice_denied", invoice_id=invoice_id)
        if self._audit_logger:
            await self._audit_logger.log_invoice_denied(invoice_id)

    # =========================================================================
    # OPERATOR
    # =========================================================================

    async def release_hold(self, invoice_id: str) -> Invoice:
        """
        Drop a claim or reconciliation hold once an operator has settled
        the accounts by hand. The status is left unchanged.
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.claim is None:
            return invoice
        record = await self._storage.update(
            INVOICES_TABLE,
            invoice.id,
            dict(_CLEARED_CLAIM),
            expected_version=invoice.version,
        )
        logger.warning("invoice_hold_released", invoice_id=invoice_id, claim=invoice.claim)
        return Invoice.from_record(record)

    def claim_active(self, invoice: Invoice) -> bool:
        """True while a payment claim or reconciliation hold blocks the invoice."""
        if invoice.claim is None:
            return False
        if invoice.claim.startswith(RECONCILE_PREFIX):
            return True
        claimed_at = invoice.claimed_at or 0
        return self._now_ms() - claimed_at < self._claim_ttl * 1000

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _check_claimable(self, invoice: Invoice) -> None:
        if invoice.status.is_terminal:
            raise AlreadyProcessedError(invoice.id, invoice.status)
        if self.claim_active(invoice):
            raise ConcurrencyConflictError(f"Invoice {invoice.id} is being paid")

    async def _claim(self, invoice_id: str, token: str, deadline: Deadline) -> Invoice:
        try:
            async for attempt in retrying(self._policy, deadline):
                with attempt:
                    invoice = await self.get_invoice(invoice_id)
                    self._check_claimable(invoice)
                    record = await self._storage.update(
                        INVOICES_TABLE,
                        invoice.id,
                        {"Claim": token, "Claimed At": self._now_ms()},
                        expected_version=invoice.version,
                    )
        except ConflictError as e:
            if deadline.expired:
                raise DeadlineExceededError(f"Deadline passed claiming {invoice_id}") from e
            raise ConcurrencyConflictError(f"Invoice {invoice_id} kept changing") from e
        except StorageError as e:
            if deadline.expired:
                raise DeadlineExceededError(f"Deadline passed claiming {invoice_id}") from e
            raise
        return Invoice.from_record(record)

    async def _lock_in(self, invoice: Invoice, token: str, deadline: Deadline) -> Invoice:
        """Turn our claim into a hold that cannot expire while money moves."""
        hold = f"{RECONCILE_PREFIX}{token}"
        try:
            async for attempt in retrying(self._policy, deadline, retry_on=(StorageError,)):
                with attempt:
                    try:
                        record = await self._storage.update(
                            INVOICES_TABLE,
                            invoice.id,
                            {"Claim": hold, "Claimed At": self._now_ms()},
                            expected_version=invoice.version,
                        )
                    except ConflictError:
                        current = await self.get_invoice(invoice.id)
                        if current.claim == hold:
                            # An earlier attempt landed but its reply was lost
                            return current
                        if current.status.is_terminal:
                            raise AlreadyProcessedError(current.id, current.status)
                        raise ConcurrencyConflictError(
                            f"Claim on invoice {invoice.id} expired and was taken over"
                        )
        except StorageError as e:
            if deadline.expired:
                raise DeadlineExceededError(f"Deadline passed locking {invoice.id}") from e
            raise
        return Invoice.from_record(record)

    async def _settle(
        self,
        invoice: Invoice,
        entry: LedgerEntry,
        correlation_id: Optional[UUID],
    ) -> None:
        """Flip the held invoice to Paid. Money has already moved."""
        version = invoice.version
        try:
            async for attempt in retrying(self._policy, Deadline.never()):
                with attempt:
                    try:
                        await self._storage.update(
                            INVOICES_TABLE,
                            invoice.id,
                            {
                                "Status": InvoiceStatus.PAID.value,
                                "Entry": entry.id,
                                **_CLEARED_CLAIM,
                            },
                            expected_version=version,
                        )
                    except ConflictError:
                        current = await self.get_invoice(invoice.id)
                        if current.status is InvoiceStatus.PAID and current.entry_id == entry.id:
                            return
                        if current.claim != invoice.claim or current.status.is_terminal:
                            raise ConcurrencyConflictError(
                                f"Lost the hold on invoice {invoice.id} after paying it"
                            )
                        version = current.version
                        raise
        except (StorageError, LedgerError) as e:
            await self._settlement_lost(invoice, entry, e, correlation_id)
            raise

    async def _settlement_lost(
        self,
        invoice: Invoice,
        entry: LedgerEntry,
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.critical(
            "invoice_settle_failed",
            invoice_id=invoice.id,
            entry_id=entry.id,
            error=str(error),
        )
        if self._audit_logger:
            await self._audit_logger.log_invoice_settlement_lost(
                invoice.id, entry, error, correlation_id
            )
        try:
            current = await self.get_invoice(invoice.id)
        except StorageError as e:
            logger.error("invoice_reread_failed", invoice_id=invoice.id, error=str(e))
            return
        if not current.status.is_terminal:
            await self._hold(current, entry)

    async def _release(self, invoice: Invoice) -> None:
        try:
            await self._storage.update(
                INVOICES_TABLE,
                invoice.id,
                dict(_CLEARED_CLAIM),
                expected_version=invoice.version,
            )
        except StorageError as e:
            # The claim still expires after claim_ttl
            logger.warning("invoice_claim_release_failed", invoice_id=invoice.id, error=str(e))

    async def _hold(self, invoice: Invoice, entry: LedgerEntry) -> None:
        try:
            await self._storage.update(
                INVOICES_TABLE,
                invoice.id,
                {"Claim": f"{RECONCILE_PREFIX}{entry.id}", "Claimed At": self._now_ms()},
                expected_version=invoice.version,
            )
        except StorageError as e:
            logger.error(
                "invoice_hold_failed",
                invoice_id=invoice.id,
                entry_id=entry.id,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_error(
                    type(e).__name__,
                    str(e),
                    details={"invoice_id": invoice.id, "entry_id": entry.id},
                )
        else:
            logger.warning("invoice_held_for_reconciliation", invoice_id=invoice.id, entry_id=entry.id)

    async def _payment_failed(
        self,
        invoice_id: str,
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.info("invoice_payment_failed", invoice_id=invoice_id, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_invoice_payment_failed(invoice_id, error, correlation_id)
