"""
Core Data Models for Banker

These models define the schemas for everything the accounting core
persists: accounts, ledger entries and invoices.
They are designed to:
1. Enforce the balance/amount invariants at runtime
2. Map one-to-one onto the stored record fields
3. Be serializable for the API and for logging

DESIGN DECISION: Stored field names ("User", "Balance", "Admin Note", ...)
are kept exactly as the hosted spreadsheet columns that existing admins
and bots already read. Python attribute names stay snake_case; the
conversion lives in from_record()/to_fields() on each model.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from banker.services.storage.interface import Record


# =============================================================================
# TABLES
# =============================================================================

ACCOUNTS_TABLE = "bank"
LEDGER_TABLE = "ledger"
INVOICES_TABLE = "invoices"
SEQUENCES_TABLE = "sequences"
AUDIT_TABLE = "audit"


# =============================================================================
# ENUMS
# =============================================================================

class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle status.

    PROCESSING is the only non-terminal state. An invoice leaves it
    exactly once, to PAID or DENIED.
    """
    PROCESSING = "Processing"
    PAID = "Paid"
    DENIED = "Denied"

    @property
    def is_terminal(self) -> bool:
        return self is not InvoiceStatus.PROCESSING


class PayerRole(str, Enum):
    """Which side of an invoice a pending-invoice listing is for."""
    PAYER = "payer"  # invoices the user has to pay (To == user)
    PAYEE = "payee"  # invoices the user is waiting on (From == user)


# =============================================================================
# ACCOUNT
# =============================================================================

class Account(BaseModel):
    """A user's balance together with the version it was read at."""

    user_id: str = Field(..., min_length=1)
    balance: int = Field(..., ge=0)
    version: int
    record_id: str

    @classmethod
    def from_record(cls, record: Record) -> "Account":
        return cls(
            user_id=record.fields["User"],
            balance=record.fields.get("Balance") or 0,
            version=record.version,
            record_id=record.id,
        )


# =============================================================================
# LEDGER
# =============================================================================

class LedgerEntry(BaseModel):
    """
    One money movement.

    Entries are immutable once written (frozen model). `id`, `sequence`
    and `timestamp` are assigned by the ledger recorder on append and are
    None on an entry that has not been recorded yet.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    sequence: Optional[int] = Field(default=None, ge=1)
    from_user: str = Field(..., alias="from", min_length=1)
    to_user: str = Field(..., alias="to", min_length=1)
    amount: int = Field(..., gt=0)
    note: str = ""
    success: bool
    admin_note: Optional[str] = None
    timestamp: Optional[int] = Field(
        default=None,
        description="Milliseconds since the epoch, server assigned"
    )

    @staticmethod
    def format_id(sequence: int) -> str:
        return f"{sequence:010d}"

    def to_fields(self) -> dict[str, Any]:
        return {
            "Sequence": self.sequence,
            "From": self.from_user,
            "To": self.to_user,
            "Amount": self.amount,
            "Note": self.note,
            "Success": self.success,
            "Admin Note": self.admin_note,
            "Timestamp": self.timestamp,
            "Private": False,  # legacy column, still read by old bots
        }

    @classmethod
    def from_record(cls, record: Record) -> "LedgerEntry":
        fields = record.fields
        return cls(
            id=cls.format_id(fields["Sequence"]),
            sequence=fields["Sequence"],
            from_user=fields["From"],
            to_user=fields["To"],
            amount=fields["Amount"],
            note=fields.get("Note") or "",
            success=bool(fields.get("Success")),
            admin_note=fields.get("Admin Note"),
            timestamp=fields.get("Timestamp"),
        )

    def to_public_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class LedgerFilter(BaseModel):
    """Read-side filter for ledger listings."""

    from_user: Optional[str] = None
    to_user: Optional[str] = None
    user: Optional[str] = Field(
        default=None,
        description="Match entries where the user is on either side"
    )
    success: Optional[bool] = None
    limit: Optional[int] = Field(default=None, ge=1)


# =============================================================================
# INVOICE
# =============================================================================

class Invoice(BaseModel):
    """
    A request for payment.

    `from_user` is the payee (receives funds), `to_user` is the payer
    (funds move from here).
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user: str = Field(..., alias="from", min_length=1)
    to_user: str = Field(..., alias="to", min_length=1)
    reason: str = ""
    amount: int = Field(..., gt=0)
    status: InvoiceStatus = InvoiceStatus.PROCESSING
    version: int = 1

    # Payment claim held while one caller is paying the invoice
    claim: Optional[str] = None
    claimed_at: Optional[int] = None

    # Ledger entry that paid the invoice
    entry_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Record) -> "Invoice":
        fields = record.fields
        return cls(
            id=record.id,
            from_user=fields["From"],
            to_user=fields["To"],
            reason=fields.get("Reason") or "",
            amount=fields["Amount"],
            status=InvoiceStatus(fields["Status"]),
            version=record.version,
            claim=fields.get("Claim"),
            claimed_at=fields.get("Claimed At"),
            entry_id=fields.get("Entry"),
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Shape returned to API clients (no concurrency internals)."""
        return self.model_dump(
            by_alias=True,
            mode="json",
            include={"id", "from_user", "to_user", "reason", "amount", "status"},
        )
