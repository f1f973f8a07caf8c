"""
Audit Logger

DESIGN DECISION: Every significant ledger action is logged.
This provides:
1. Complete traceability next to the ledger itself
2. Debugging capability
3. A trail for operators reconciling pending credits

The audit logger:
- Is async so it runs inside the same request flow
- Gracefully handles failures (a broken audit sink never fails a transfer)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from banker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from banker.models.ledger import AUDIT_TABLE, Invoice, LedgerEntry
from banker.services.storage import RecordStore


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog's stdlib output to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The record store's audit table (for persistence), if one is given
    """

    def __init__(
        self,
        storage: Optional[RecordStore] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("banker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                await self._storage.create(AUDIT_TABLE, event.to_fields())
                return True
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_created(self, user_id: str, balance: int) -> None:
        await self.log(AuditEventBuilder.account_created(user_id, balance))

    async def log_transfer_completed(
        self,
        entry: LedgerEntry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a committed transfer."""
        event = AuditEventBuilder.transfer_completed(
            entry_id=entry.id,
            from_user=entry.from_user,
            to_user=entry.to_user,
            amount=entry.amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transfer_rejected(
        self,
        from_user: str,
        to_user: str,
        amount: int,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transfer refused before anything was written."""
        event = AuditEventBuilder.transfer_rejected(
            from_user=from_user,
            to_user=to_user,
            amount=amount,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transfer_failed(
        self,
        from_user: str,
        to_user: str,
        amount: int,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transfer_failed(
            from_user=from_user,
            to_user=to_user,
            amount=amount,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_credit_pending(
        self,
        entry: LedgerEntry,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a debit whose matching credit could not be applied."""
        event = AuditEventBuilder.credit_pending(
            entry_id=entry.id,
            from_user=entry.from_user,
            to_user=entry.to_user,
            amount=entry.amount,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transfer_unrecorded(
        self,
        entry: LedgerEntry,
        credited: bool,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log balances that moved without a ledger entry to show for it."""
        event = AuditEventBuilder.transfer_unrecorded(
            from_user=entry.from_user,
            to_user=entry.to_user,
            amount=entry.amount,
            credited=credited,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_invoice_created(self, invoice: Invoice) -> None:
        event = AuditEventBuilder.invoice_created(
            invoice_id=invoice.id,
            from_user=invoice.from_user,
            to_user=invoice.to_user,
            amount=invoice.amount,
        )
        await self.log(event)

    async def log_invoice_paid(
        self,
        invoice_id: str,
        entry: LedgerEntry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.invoice_paid(invoice_id, entry.id, correlation_id)
        )

    async def log_invoice_denied(self, invoice_id: str) -> None:
        await self.log(AuditEventBuilder.invoice_denied(invoice_id))

    async def log_invoice_payment_failed(
        self,
        invoice_id: str,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.invoice_payment_failed(
            invoice_id=invoice_id,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_invoice_settlement_lost(
        self,
        invoice_id: str,
        entry: LedgerEntry,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.invoice_settlement_lost(
            invoice_id=invoice_id,
            entry_id=entry.id,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_auth_denied(self, actor_id: Optional[str], scope: str) -> None:
        await self.log(AuditEventBuilder.auth_denied(actor_id, scope))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step action (e.g., paying an invoice).
    Pass it through all subsequent operations.
    """
    return uuid4()
