"""
Main Orchestrator for Banker

This module ties together all the components: one record store, the
four accounting engines on top of it, the audit logger and the auth
gate. Nothing in the core reaches for a global; everything is handed in
here.

DESIGN DECISION: There is exactly one engine of each kind per process.
They share one RecordStore, and with it the single-instance assumption
the store's locks rely on. Tests and the operator console build their
own set with an in-memory store.
"""

from typing import Optional

import structlog

from banker.audit import AuditLogger
from banker.auth import AuthGate, StaticAuthGate
from banker.config import Settings, get_settings
from banker.core import (
    AccountStore,
    InvoiceManager,
    LedgerRecorder,
    RetryPolicy,
    TransferEngine,
)
from banker.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    RecordStore,
)

logger = structlog.get_logger(__name__)


class BankComponents:
    """The wired set of engines one process works with."""

    def __init__(
        self,
        storage: RecordStore,
        accounts: AccountStore,
        ledger: LedgerRecorder,
        transfers: TransferEngine,
        invoices: InvoiceManager,
        auth: AuthGate,
        audit_logger: AuditLogger,
    ):
        self.storage = storage
        self.accounts = accounts
        self.ledger = ledger
        self.transfers = transfers
        self.invoices = invoices
        self.auth = auth
        self.audit_logger = audit_logger

    @property
    def banker_id(self) -> str:
        return self.transfers.banker_id


def create_storage(settings: Settings) -> RecordStore:
    """Build the record store selected by APP_STORAGE_BACKEND."""
    backend = settings.app.storage_backend
    if backend == "google_sheets":
        client = GoogleSheetsClient(settings.google_sheets)
        logger.info("storage_selected", backend=backend)
        return GoogleSheetsRecordStore(client)

    logger.warning("storage_selected", backend=backend, persistent=False)
    return InMemoryRecordStore()


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[RecordStore] = None,
    auth: Optional[AuthGate] = None,
) -> BankComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (defaults to get_settings())
        storage: Record store to use instead of the configured backend
        auth: Auth gate to use instead of the configured static one

    Returns:
        The wired BankComponents
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger

    if storage is None:
        storage = create_storage(settings)
    audit_logger = AuditLogger(storage)

    policy = RetryPolicy.from_settings(ledger_settings)
    accounts = AccountStore(
        storage,
        start_balance=ledger_settings.start_balance,
        opening_balances={ledger_settings.banker_id: ledger_settings.banker_opening_balance},
        audit_logger=audit_logger,
    )
    ledger = LedgerRecorder(
        storage,
        policy=RetryPolicy.from_settings(ledger_settings, ledger=True),
    )
    transfers = TransferEngine(
        accounts,
        ledger,
        policy=policy,
        banker_id=ledger_settings.banker_id,
        operation_timeout=ledger_settings.operation_timeout,
        audit_logger=audit_logger,
    )
    invoices = InvoiceManager(
        storage,
        transfers,
        policy=policy,
        claim_ttl=ledger_settings.claim_ttl,
        operation_timeout=ledger_settings.operation_timeout,
        audit_logger=audit_logger,
    )
    if auth is None:
        auth = StaticAuthGate.from_settings(
            settings.auth,
            banker_id=ledger_settings.banker_id,
            audit_logger=audit_logger,
        )

    return BankComponents(
        storage=storage,
        accounts=accounts,
        ledger=ledger,
        transfers=transfers,
        invoices=invoices,
        auth=auth,
        audit_logger=audit_logger,
    )
