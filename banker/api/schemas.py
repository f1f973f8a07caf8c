"""
Pydantic schemas for API requests

Field names match the JSON bodies existing bots already send, so
`from`/`to` are aliases and the legacy routes keep `bot_id`, `send_id`
and `gp`. Identity fields are optional here: a missing caller is an
auth failure (403) and a missing user is rejected by the core (400).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class AuthenticatedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: Optional[str] = None


class BalanceRequest(AuthenticatedRequest):
    app_id: Optional[str] = None
    user: Optional[str] = None


class TransferRequest(AuthenticatedRequest):
    app_id: Optional[str] = None
    from_user: Optional[str] = Field(default=None, alias="from")
    to_user: Optional[str] = Field(default=None, alias="to")
    amount: Optional[StrictInt] = None
    reason: str = ""


class CreateInvoiceRequest(AuthenticatedRequest):
    from_user: Optional[str] = Field(default=None, alias="from")
    to_user: Optional[str] = Field(default=None, alias="to")
    amount: Optional[StrictInt] = None
    reason: str = ""


class PendingInvoicesRequest(AuthenticatedRequest):
    user: Optional[str] = None
    role: str = Field(default="payer", pattern="^(payer|payee)$")


class InvoiceActionRequest(AuthenticatedRequest):
    app_id: Optional[str] = None
    invoice_id: Optional[str] = None


class LegacyRequest(AuthenticatedRequest):
    """Body of the old /give and /fine routes."""

    bot_id: Optional[str] = None
    send_id: Optional[str] = None
    gp: Optional[StrictInt] = None
    reason: str = ""
