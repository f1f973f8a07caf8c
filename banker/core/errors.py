"""
Ledger error taxonomy.

Validation, not-found, already-processed and insufficient-funds errors
are terminal: callers get them immediately and nothing is retried.
Conflicts and storage errors are retried inside the engines and only
surface once the retry budget is spent. Storage errors themselves live
in banker.services.storage.
"""

from typing import Optional

from banker.models.ledger import InvoiceStatus, LedgerEntry
from banker.services.storage import StorageError


class LedgerError(Exception):
    """Base exception for the accounting core."""
    pass


class LedgerValidationError(LedgerError):
    """Malformed or out-of-range input (amount <= 0, missing user, self-transfer)."""
    pass


class InsufficientFundsError(LedgerError):
    """The debit would take the account below zero."""

    def __init__(self, user_id: str, balance: int, amount: int):
        self.user_id = user_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"{user_id} has {balance} and cannot send {amount}"
        )


class AlreadyProcessedError(LedgerError):
    """The invoice has already left the Processing state."""

    def __init__(self, invoice_id: str, status: InvoiceStatus):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(f"Invoice {invoice_id} is already {status.value}")


class LedgerNotFoundError(LedgerError):
    """A referenced record is absent."""
    pass


class AccountNotFoundError(LedgerNotFoundError):
    pass


class InvoiceNotFoundError(LedgerNotFoundError):
    pass


class ConcurrencyConflictError(LedgerError):
    """Compare-and-set retries exhausted, or another caller holds the record."""
    pass


class DeadlineExceededError(LedgerError, TimeoutError):
    """
    The operation's deadline passed while retrying.

    If a debit had already committed, `pending_entry` is the
    success=false ledger entry recording it.
    """

    def __init__(self, message: str, pending_entry: Optional[LedgerEntry] = None):
        self.pending_entry = pending_entry
        super().__init__(message)


class CreditPendingError(StorageError):
    """
    A debit committed but its credit could not be applied.

    `entry` is the success=false ledger entry an operator uses to
    reconcile the two accounts.
    """

    def __init__(self, message: str, entry: LedgerEntry):
        self.entry = entry
        super().__init__(message)


class UnrecordedTransferError(StorageError):
    """
    Balances moved but the ledger entry describing it could not be written.

    `entry` is the entry that should have been appended (it has no ID).
    `credited` tells whether the recipient's side committed too; if it
    is False the sender was debited and the recipient is still owed.
    """

    def __init__(self, message: str, entry: LedgerEntry, credited: bool):
        self.entry = entry
        self.credited = credited
        super().__init__(message)
