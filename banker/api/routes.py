"""
Ledger endpoints

Every route checks the caller's scope first, then makes exactly one core
call. Core errors are not caught here; the handlers registered in
banker.api.app turn them into status codes.
"""

from fastapi import APIRouter, Depends, Request

from banker.audit import create_correlation_id
from banker.auth import (
    CHECK_BALANCE,
    DENY_INVOICE,
    FINE,
    GET_INVOICES,
    GIVE,
    PAY_INVOICE,
    SEND_INVOICE,
    TRANSFER,
)
from banker.api.schemas import (
    BalanceRequest,
    CreateInvoiceRequest,
    InvoiceActionRequest,
    LegacyRequest,
    PendingInvoicesRequest,
    TransferRequest,
)
from banker.orchestrator import BankComponents


router = APIRouter()


def get_components(request: Request) -> BankComponents:
    return request.app.state.components


@router.post("/balance")
async def balance(
    body: BalanceRequest,
    bank: BankComponents = Depends(get_components),
):
    """Balance of a user; unknown users are opened with the start balance."""
    await bank.auth.require_scope(body.token, body.app_id, CHECK_BALANCE)
    account = await bank.accounts.get_balance(body.user)
    return {"balance": account.balance}


@router.post("/transfer")
async def transfer(
    body: TransferRequest,
    bank: BankComponents = Depends(get_components),
):
    await bank.auth.require_scope(body.token, body.app_id, TRANSFER)
    entry = await bank.transfers.transfer(
        body.from_user,
        body.to_user,
        body.amount,
        body.reason,
        correlation_id=create_correlation_id(),
    )
    return entry.to_public_dict()


@router.post("/invoice")
async def create_invoice(
    body: CreateInvoiceRequest,
    bank: BankComponents = Depends(get_components),
):
    """Invoices are sent as their payee (`from`)."""
    await bank.auth.require_scope(body.token, body.from_user, SEND_INVOICE)
    invoice_id = await bank.invoices.create_invoice(
        body.from_user,
        body.to_user,
        body.reason,
        body.amount,
    )
    return {"invoice_id": invoice_id}


@router.post("/pendingInvoices")
async def pending_invoices(
    body: PendingInvoicesRequest,
    bank: BankComponents = Depends(get_components),
):
    await bank.auth.require_scope(body.token, body.user, GET_INVOICES)
    invoices = await bank.invoices.list_pending_invoices(body.user, body.role)
    return [invoice.to_public_dict() for invoice in invoices]


@router.post("/denyInvoice")
async def deny_invoice(
    body: InvoiceActionRequest,
    bank: BankComponents = Depends(get_components),
):
    await bank.auth.require_scope(body.token, body.app_id, DENY_INVOICE)
    await bank.invoices.deny_invoice(body.invoice_id)
    return {"invoice_id": body.invoice_id, "status": "Denied"}


@router.post("/payInvoice")
async def pay_invoice(
    body: InvoiceActionRequest,
    bank: BankComponents = Depends(get_components),
):
    await bank.auth.require_scope(body.token, body.app_id, PAY_INVOICE)
    entry = await bank.invoices.pay_invoice(
        body.invoice_id,
        correlation_id=create_correlation_id(),
    )
    return entry.to_public_dict()


# Legacy routes kept for old bots

@router.post("/give")
async def give(
    body: LegacyRequest,
    bank: BankComponents = Depends(get_components),
):
    """The banker pays `send_id`."""
    await bank.auth.require_scope(body.token, body.bot_id, GIVE)
    entry = await bank.transfers.give(
        body.send_id,
        body.gp,
        body.reason,
        correlation_id=create_correlation_id(),
    )
    return entry.to_public_dict()


@router.post("/fine")
async def fine(
    body: LegacyRequest,
    bank: BankComponents = Depends(get_components),
):
    """`send_id` pays the banker."""
    await bank.auth.require_scope(body.token, body.bot_id, FINE)
    entry = await bank.transfers.fine(
        body.send_id,
        body.gp,
        body.reason,
        correlation_id=create_correlation_id(),
    )
    return entry.to_public_dict()
