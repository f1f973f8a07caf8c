"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data flowing through the system must conform to these schemas.
"""

from banker.models.ledger import (
    ACCOUNTS_TABLE,
    AUDIT_TABLE,
    INVOICES_TABLE,
    LEDGER_TABLE,
    SEQUENCES_TABLE,
    Account,
    Invoice,
    InvoiceStatus,
    LedgerEntry,
    LedgerFilter,
    PayerRole,
)
from banker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Tables
    "ACCOUNTS_TABLE",
    "AUDIT_TABLE",
    "INVOICES_TABLE",
    "LEDGER_TABLE",
    "SEQUENCES_TABLE",
    # Ledger models
    "Account",
    "Invoice",
    "InvoiceStatus",
    "LedgerEntry",
    "LedgerFilter",
    "PayerRole",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
