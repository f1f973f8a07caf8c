"""Tests for settings and component wiring."""

import pytest
from pydantic import ValidationError

from banker.config import LedgerSettings, Settings
from banker.orchestrator import create_app_components, create_storage
from banker.services.storage import InMemoryRecordStore


@pytest.fixture
def ledger_env(monkeypatch):
    monkeypatch.setenv("APP_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("LEDGER_BANKER_ID", "UBANK")
    monkeypatch.setenv("LEDGER_BANKER_OPENING_BALANCE", "500")
    monkeypatch.setenv("LEDGER_START_BALANCE", "10")
    monkeypatch.setenv("AUTH_TOKENS", '{"t": "UBOT"}')
    monkeypatch.setenv("AUTH_SCOPES", '{"UBOT": ["checkBalance"]}')


class TestLedgerSettings:

    def test_defaults(self, monkeypatch):
        for name in ("LEDGER_BANKER_ID", "LEDGER_MAX_RETRIES", "LEDGER_CLAIM_TTL"):
            monkeypatch.delenv(name, raising=False)

        settings = LedgerSettings()

        assert settings.banker_id == "banker"
        assert settings.max_retries == 5
        assert settings.claim_ttl > settings.operation_timeout

    def test_backoff_bounds(self):
        with pytest.raises(ValidationError):
            LedgerSettings(base_backoff=1.0, max_backoff=0.5)

    def test_claim_must_outlive_operation(self):
        """Test a claim cannot expire while its payment may still be running."""
        with pytest.raises(ValidationError):
            LedgerSettings(operation_timeout=30.0, claim_ttl=30.0)

        assert LedgerSettings(operation_timeout=None, claim_ttl=5.0).claim_ttl == 5.0


class TestCreateAppComponents:

    def test_memory_backend(self, ledger_env):
        assert isinstance(create_storage(Settings()), InMemoryRecordStore)

    @pytest.mark.asyncio
    async def test_wiring_follows_settings(self, ledger_env):
        bank = create_app_components(Settings())

        assert bank.banker_id == "UBANK"
        assert (await bank.accounts.get_balance("UBANK")).balance == 500
        assert (await bank.accounts.get_balance("alice")).balance == 10
        assert await bank.auth.check_scope("t", "UBOT", "checkBalance")
        assert await bank.auth.check_scope("anything", "UBANK", "give") is False

    @pytest.mark.asyncio
    async def test_give_from_configured_banker(self, ledger_env):
        bank = create_app_components(Settings(), storage=InMemoryRecordStore())

        entry = await bank.transfers.give("alice", 100, "welcome")

        assert entry.from_user == "UBANK"
        assert (await bank.accounts.get_balance("UBANK")).balance == 400
        assert (await bank.accounts.get_balance("alice")).balance == 110
