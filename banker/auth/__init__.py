"""API caller authorization."""

from banker.auth.gate import (
    ALL_SCOPES,
    CHECK_BALANCE,
    DENY_INVOICE,
    FINE,
    GET_INVOICES,
    GIVE,
    MANAGE_USER,
    PAY_INVOICE,
    SEND_INVOICE,
    TRANSFER,
    AuthError,
    AuthGate,
    StaticAuthGate,
)

__all__ = [
    "AuthGate",
    "StaticAuthGate",
    "AuthError",
    "ALL_SCOPES",
    "CHECK_BALANCE",
    "TRANSFER",
    "SEND_INVOICE",
    "GET_INVOICES",
    "DENY_INVOICE",
    "PAY_INVOICE",
    "GIVE",
    "FINE",
    "MANAGE_USER",
]
