"""
Auth Gate

Decides whether an API caller may perform an operation. The accounting
core never calls this; the API layer checks before invoking it.

A caller presents a token. The token belongs to one app, and the app
holds a set of scopes. The check passes when the app holds the requested
scope AND either acts as itself (actor_id is the app) or holds
"manageUser", which lets it act on behalf of other users.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog

from banker.audit import AuditLogger
from banker.config import AuthSettings

logger = structlog.get_logger(__name__)

CHECK_BALANCE = "checkBalance"
TRANSFER = "transfer"
SEND_INVOICE = "sendInvoice"
GET_INVOICES = "getInvoices"
DENY_INVOICE = "denyInvoice"
PAY_INVOICE = "payInvoice"
GIVE = "give"
FINE = "fine"
MANAGE_USER = "manageUser"

ALL_SCOPES = frozenset({
    CHECK_BALANCE,
    TRANSFER,
    SEND_INVOICE,
    GET_INVOICES,
    DENY_INVOICE,
    PAY_INVOICE,
    GIVE,
    FINE,
    MANAGE_USER,
})


class AuthError(Exception):
    """The caller lacks the scope for the operation."""

    def __init__(self, actor_id: Optional[str], scope: str):
        self.actor_id = actor_id
        self.scope = scope
        super().__init__(f"Not allowed to {scope} as {actor_id or 'anonymous'}")


class AuthGate(ABC):
    """Scope check consulted by the API layer."""

    @abstractmethod
    async def check_scope(
        self,
        token: Optional[str],
        actor_id: Optional[str],
        requested_scope: str,
    ) -> bool:
        pass

    async def require_scope(
        self,
        token: Optional[str],
        actor_id: Optional[str],
        requested_scope: str,
    ) -> None:
        """Raise AuthError unless check_scope passes."""
        if not await self.check_scope(token, actor_id, requested_scope):
            raise AuthError(actor_id, requested_scope)


class StaticAuthGate(AuthGate):
    """
    Tokens and scopes from configuration.

    Usage:
        gate = StaticAuthGate(
            tokens={"s3cret": "U0BOT"},
            scopes={"U0BOT": ["checkBalance"]},
        )
        await gate.check_scope("s3cret", "U0BOT", "checkBalance")  # True
    """

    def __init__(
        self,
        tokens: dict[str, str],
        scopes: dict[str, list[str]],
        banker_id: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._tokens = dict(tokens)
        self._scopes = {app: frozenset(granted) for app, granted in scopes.items()}
        self._banker_id = banker_id
        self._audit_logger = audit_logger

    @classmethod
    def from_settings(
        cls,
        settings: AuthSettings,
        banker_id: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> "StaticAuthGate":
        return cls(settings.tokens, settings.scopes, banker_id, audit_logger)

    def scopes_for(self, app_id: str) -> frozenset:
        if self._banker_id is not None and app_id == self._banker_id:
            return ALL_SCOPES
        return self._scopes.get(app_id, frozenset())

    async def check_scope(
        self,
        token: Optional[str],
        actor_id: Optional[str],
        requested_scope: str,
    ) -> bool:
        app_id = self._tokens.get(token) if token else None
        if app_id is None:
            return await self._deny(actor_id, requested_scope, "unknown_token")

        granted = self.scopes_for(app_id)
        if requested_scope not in granted:
            return await self._deny(actor_id, requested_scope, "missing_scope")
        if actor_id != app_id and MANAGE_USER not in granted:
            return await self._deny(actor_id, requested_scope, "foreign_actor")

        logger.debug("auth_granted", app_id=app_id, actor_id=actor_id, scope=requested_scope)
        return True

    async def _deny(self, actor_id: Optional[str], scope: str, reason: str) -> bool:
        logger.info("auth_denied", actor_id=actor_id, scope=scope, reason=reason)
        if self._audit_logger:
            await self._audit_logger.log_auth_denied(actor_id, scope)
        return False
