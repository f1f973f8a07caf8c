"""
Accounting core: accounts, ledger, transfers and invoices.

Every engine takes its RecordStore and collaborators explicitly;
banker.orchestrator wires them together from settings.
"""

from banker.core.accounts import AccountStore
from banker.core.errors import (
    AccountNotFoundError,
    AlreadyProcessedError,
    ConcurrencyConflictError,
    CreditPendingError,
    DeadlineExceededError,
    InsufficientFundsError,
    InvoiceNotFoundError,
    LedgerError,
    LedgerNotFoundError,
    LedgerValidationError,
    UnrecordedTransferError,
)
from banker.core.invoices import InvoiceManager
from banker.core.ledger import LedgerRecorder
from banker.core.retry import Deadline, RetryPolicy, retrying
from banker.core.transfers import TransferEngine

__all__ = [
    "AccountStore",
    "LedgerRecorder",
    "TransferEngine",
    "InvoiceManager",
    "Deadline",
    "RetryPolicy",
    "retrying",
    "LedgerError",
    "LedgerValidationError",
    "InsufficientFundsError",
    "AlreadyProcessedError",
    "LedgerNotFoundError",
    "AccountNotFoundError",
    "InvoiceNotFoundError",
    "ConcurrencyConflictError",
    "DeadlineExceededError",
    "CreditPendingError",
    "UnrecordedTransferError",
]
