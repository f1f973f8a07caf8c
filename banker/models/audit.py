"""
Audit Models for Banker

The ledger records money movements; the audit trail records everything
around them: rejected transfers, invoice decisions, refused API calls,
credits waiting on an operator.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"

    # Transfers
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_REJECTED = "transfer_rejected"
    TRANSFER_FAILED = "transfer_failed"
    CREDIT_PENDING = "credit_pending"
    TRANSFER_UNRECORDED = "transfer_unrecorded"

    # Invoices
    INVOICE_CREATED = "invoice_created"
    INVOICE_PAID = "invoice_paid"
    INVOICE_DENIED = "invoice_denied"
    INVOICE_PAYMENT_FAILED = "invoice_payment_failed"
    INVOICE_SETTLEMENT_LOST = "invoice_settlement_lost"

    # API
    AUTH_DENIED = "auth_denied"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'invoice', 'ledger_entry')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one invoice payment)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_fields(self) -> dict[str, Any]:
        """Convert to the audit table's record fields."""
        return {
            "Event Type": self.event_type.value,
            "Severity": self.severity.value,
            "Entity Type": self.entity_type,
            "Entity Id": self.entity_id,
            "Correlation Id": str(self.correlation_id) if self.correlation_id else None,
            "Description": self.description,
            "Details": json.dumps(self.details) if self.details else None,
            "Error": self.error_message,
            "Timestamp": self.timestamp.isoformat(),
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transfer_completed(entry.id, "alice", "bob", 30)
        event = AuditEventBuilder.invoice_denied(invoice_id)
    """

    @staticmethod
    def account_created(user_id: str, balance: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=user_id,
            description=f"Account opened for {user_id}",
            details={"balance": balance},
        )

    @staticmethod
    def transfer_completed(
        entry_id: str,
        from_user: str,
        to_user: str,
        amount: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_COMPLETED,
            entity_type="ledger_entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Moved {amount} from {from_user} to {to_user}",
            details={"from": from_user, "to": to_user, "amount": amount},
        )

    @staticmethod
    def transfer_rejected(
        from_user: str,
        to_user: str,
        amount: int,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=from_user,
            correlation_id=correlation_id,
            description=f"Transfer of {amount} from {from_user} to {to_user} rejected",
            details={"from": from_user, "to": to_user, "amount": amount, "reason": reason},
        )

    @staticmethod
    def transfer_failed(
        from_user: str,
        to_user: str,
        amount: int,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="account",
            entity_id=from_user,
            correlation_id=correlation_id,
            description=f"Transfer of {amount} from {from_user} to {to_user} failed: {error_type}",
            details={"from": from_user, "to": to_user, "amount": amount},
            error_message=error_message,
        )

    @staticmethod
    def credit_pending(
        entry_id: str,
        from_user: str,
        to_user: str,
        amount: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDIT_PENDING,
            severity=AuditSeverity.CRITICAL,
            entity_type="ledger_entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=(
                f"{from_user} was debited {amount} but {to_user} was not credited; "
                "needs reconciliation"
            ),
            details={"from": from_user, "to": to_user, "amount": amount},
            error_message=error_message,
        )

    @staticmethod
    def transfer_unrecorded(
        from_user: str,
        to_user: str,
        amount: int,
        credited: bool,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        side = "both sides committed" if credited else "only the debit committed"
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_UNRECORDED,
            severity=AuditSeverity.CRITICAL,
            entity_type="account",
            entity_id=from_user,
            correlation_id=correlation_id,
            description=(
                f"Transfer of {amount} from {from_user} to {to_user} is missing from "
                f"the ledger ({side}); needs reconciliation"
            ),
            details={"from": from_user, "to": to_user, "amount": amount, "credited": credited},
            error_message=error_message,
        )

    @staticmethod
    def invoice_created(
        invoice_id: str,
        from_user: str,
        to_user: str,
        amount: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id=invoice_id,
            description=f"Invoice of {amount} from {from_user} to {to_user}",
            details={"from": from_user, "to": to_user, "amount": amount},
        )

    @staticmethod
    def invoice_paid(
        invoice_id: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_PAID,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="Invoice paid",
            details={"ledger_entry_id": entry_id},
        )

    @staticmethod
    def invoice_denied(invoice_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_DENIED,
            entity_type="invoice",
            entity_id=invoice_id,
            description="Invoice denied",
        )

    @staticmethod
    def invoice_payment_failed(
        invoice_id: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_PAYMENT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice payment failed: {error_type}",
            error_message=error_message,
        )

    @staticmethod
    def invoice_settlement_lost(
        invoice_id: str,
        entry_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_SETTLEMENT_LOST,
            severity=AuditSeverity.CRITICAL,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="Invoice was paid but could not be marked Paid; needs reconciliation",
            details={"ledger_entry_id": entry_id},
            error_message=error_message,
        )

    @staticmethod
    def auth_denied(actor_id: Optional[str], scope: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTH_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="app",
            entity_id=actor_id,
            description=f"Scope '{scope}' refused for {actor_id}",
            details={"scope": scope},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
