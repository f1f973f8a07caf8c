"""Tests for the HTTP API, through FastAPI's TestClient."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from banker.api import create_app
from banker.models import InvoiceStatus

from tests.conftest import BANKER_FUNDS, BANKER_ID, FaultyStore, balance_of, build_components


TOKENS = {
    "banker-token": BANKER_ID,
    "bot-token": "UBOT",
    "alice-token": "alice",
    "bob-token": "bob",
}
SCOPES = {
    "UBOT": ["checkBalance", "transfer", "manageUser", "getInvoices"],
    "alice": ["checkBalance", "getInvoices", "payInvoice", "denyInvoice"],
    "bob": ["sendInvoice", "getInvoices", "denyInvoice", "payInvoice"],
}


@pytest.fixture
def bank():
    return build_components(FaultyStore(), tokens=TOKENS, scopes=SCOPES)


@pytest.fixture
def client(bank) -> TestClient:
    return TestClient(create_app(bank))


def give(client: TestClient, user: str, gp: int):
    response = client.post("/give", json={
        "token": "banker-token",
        "bot_id": BANKER_ID,
        "send_id": user,
        "gp": gp,
        "reason": "seed",
    })
    assert response.status_code == 200, response.text
    return response.json()


def send_invoice(client: TestClient, amount: int = 20) -> str:
    response = client.post("/invoice", json={
        "token": "bob-token",
        "from": "bob",
        "to": "alice",
        "amount": amount,
        "reason": "book",
    })
    assert response.status_code == 200, response.text
    return response.json()["invoice_id"]


class TestHealthAndBalance:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_balance_of_new_user_is_zero(self, client):
        """Test an unknown user is opened, not reported missing."""
        response = client.post("/balance", json={
            "token": "bot-token", "app_id": "UBOT", "user": "newbie",
        })
        assert response.status_code == 200
        assert response.json() == {"balance": 0}

    def test_balance_requires_valid_token(self, client):
        response = client.post("/balance", json={
            "token": "wrong", "app_id": "UBOT", "user": "alice",
        })
        assert response.status_code == 403
        assert response.json()["detail"].startswith("AuthError:")

    def test_balance_for_another_app_is_forbidden(self, client):
        """Test a token cannot act as an app it does not belong to."""
        response = client.post("/balance", json={
            "token": "alice-token", "app_id": "UBOT", "user": "alice",
        })
        assert response.status_code == 403


class TestTransferEndpoint:

    def test_transfer(self, client, bank):
        give(client, "alice", 100)

        response = client.post("/transfer", json={
            "token": "bot-token",
            "app_id": "UBOT",
            "from": "alice",
            "to": "bob",
            "amount": 30,
            "reason": "lunch",
        })

        assert response.status_code == 200, response.text
        body = response.json()
        assert (body["from"], body["to"], body["amount"], body["success"]) == ("alice", "bob", 30, True)
        assert body["note"] == "lunch"
        assert asyncio.run(balance_of(bank, "alice")) == 70
        assert asyncio.run(balance_of(bank, "bob")) == 30

    def test_transfer_insufficient_funds(self, client):
        response = client.post("/transfer", json={
            "token": "bot-token", "app_id": "UBOT",
            "from": "alice", "to": "bob", "amount": 30, "reason": "x",
        })
        assert response.status_code == 402
        assert response.json()["detail"].startswith("InsufficientFundsError:")

    @pytest.mark.parametrize("amount", [0, -1, "abc", 2.5, True])
    def test_transfer_bad_amount(self, client, amount):
        response = client.post("/transfer", json={
            "token": "bot-token", "app_id": "UBOT",
            "from": "alice", "to": "bob", "amount": amount,
        })
        assert response.status_code == 400
        assert "ValidationError" in response.json()["detail"]

    def test_self_transfer(self, client):
        response = client.post("/transfer", json={
            "token": "bot-token", "app_id": "UBOT",
            "from": "alice", "to": "alice", "amount": 5,
        })
        assert response.status_code == 400

    def test_transfer_without_scope(self, client):
        response = client.post("/transfer", json={
            "token": "alice-token", "app_id": "alice",
            "from": "alice", "to": "bob", "amount": 5,
        })
        assert response.status_code == 403


class TestInvoiceEndpoints:

    def test_invoice_lifecycle(self, client, bank):
        """Test create, list, pay, then pay again."""
        give(client, "alice", 70)
        invoice_id = send_invoice(client)

        pending = client.post("/pendingInvoices", json={"token": "alice-token", "user": "alice"})
        assert pending.status_code == 200
        assert pending.json() == [{
            "id": invoice_id,
            "from": "bob",
            "to": "alice",
            "reason": "book",
            "amount": 20,
            "status": "Processing",
        }]

        paid = client.post("/payInvoice", json={
            "token": "alice-token", "app_id": "alice", "invoice_id": invoice_id,
        })
        assert paid.status_code == 200, paid.text
        assert (paid.json()["from"], paid.json()["to"]) == ("alice", "bob")
        assert asyncio.run(balance_of(bank, "alice")) == 50
        assert asyncio.run(balance_of(bank, "bob")) == 20

        again = client.post("/payInvoice", json={
            "token": "alice-token", "app_id": "alice", "invoice_id": invoice_id,
        })
        assert again.status_code == 500
        assert again.json()["detail"].startswith("AlreadyProcessedError:")

        pending = client.post("/pendingInvoices", json={"token": "alice-token", "user": "alice"})
        assert pending.json() == []

    def test_invoice_must_be_sent_as_payee(self, client):
        response = client.post("/invoice", json={
            "token": "bob-token", "from": "carol", "to": "alice", "amount": 5,
        })
        assert response.status_code == 403

    def test_invoice_validation(self, client):
        response = client.post("/invoice", json={
            "token": "bob-token", "from": "bob", "to": "alice", "amount": 0,
        })
        assert response.status_code == 400

    def test_pending_invoices_of_someone_else(self, client):
        response = client.post("/pendingInvoices", json={"token": "alice-token", "user": "bob"})
        assert response.status_code == 403

    def test_pending_invoices_as_payee(self, client):
        invoice_id = send_invoice(client)

        response = client.post("/pendingInvoices", json={
            "token": "bob-token", "user": "bob", "role": "payee",
        })
        assert [i["id"] for i in response.json()] == [invoice_id]

    def test_pay_invoice_insufficient_funds(self, client, bank):
        invoice_id = send_invoice(client)

        response = client.post("/payInvoice", json={
            "token": "alice-token", "app_id": "alice", "invoice_id": invoice_id,
        })

        assert response.status_code == 402
        invoice = asyncio.run(bank.invoices.get_invoice(invoice_id))
        assert invoice.status is InvoiceStatus.PROCESSING

    def test_deny_invoice(self, client, bank):
        invoice_id = send_invoice(client)

        response = client.post("/denyInvoice", json={
            "token": "alice-token", "app_id": "alice", "invoice_id": invoice_id,
        })

        assert response.status_code == 200
        assert response.json()["status"] == "Denied"
        invoice = asyncio.run(bank.invoices.get_invoice(invoice_id))
        assert invoice.status is InvoiceStatus.DENIED

        again = client.post("/denyInvoice", json={
            "token": "alice-token", "app_id": "alice", "invoice_id": invoice_id,
        })
        assert again.status_code == 500
        assert again.json()["detail"].startswith("AlreadyProcessedError:")

    def test_deny_unknown_invoice(self, client):
        response = client.post("/denyInvoice", json={
            "token": "alice-token", "app_id": "alice", "invoice_id": "recmissing",
        })
        assert response.status_code == 404
        assert response.json()["detail"].startswith("InvoiceNotFoundError:")


class TestLegacyEndpoints:

    def test_give(self, client, bank):
        body = give(client, "bob", 50)

        assert (body["from"], body["to"], body["amount"]) == (BANKER_ID, "bob", 50)
        assert asyncio.run(balance_of(bank, BANKER_ID)) == BANKER_FUNDS - 50

    def test_fine(self, client, bank):
        give(client, "bob", 50)

        response = client.post("/fine", json={
            "token": "banker-token", "bot_id": BANKER_ID, "send_id": "bob", "gp": 20, "reason": "spam",
        })

        assert response.status_code == 200
        assert asyncio.run(balance_of(bank, "bob")) == 30

    def test_fine_insufficient_funds(self, client):
        response = client.post("/fine", json={
            "token": "banker-token", "bot_id": BANKER_ID, "send_id": "bob", "gp": 20,
        })
        assert response.status_code == 402

    def test_give_without_scope(self, client):
        response = client.post("/give", json={
            "token": "bot-token", "bot_id": "UBOT", "send_id": "bob", "gp": 20,
        })
        assert response.status_code == 403
