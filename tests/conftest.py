"""
Shared fixtures.

Every engine runs on the in-memory store. FaultyStore lets a test make
chosen updates or creates fail, which is how conflict storms and store
outages are simulated without a network.
"""

from typing import Callable, Optional

import pytest

from banker.audit import AuditLogger
from banker.auth import StaticAuthGate
from banker.core import (
    AccountStore,
    InvoiceManager,
    LedgerRecorder,
    RetryPolicy,
    TransferEngine,
)
from banker.orchestrator import BankComponents
from banker.services.storage import InMemoryRecordStore, Record, RecordStore


BANKER_ID = "UBANKER"
BANKER_FUNDS = 1_000_000

Fault = Callable[[str, str, dict], Optional[Exception]]


class FaultyStore(InMemoryRecordStore):
    """
    In-memory store with injectable failures.

    Each fault is called with (table, record_id, fields) before the real
    write; if it returns an exception, that exception is raised instead.
    For creates, record_id is None. Faults in `lost_update_replies` run
    after the real update has been applied, so the write lands but the
    caller still sees the error.
    """

    def __init__(self, latency: float = 0.0):
        super().__init__(latency)
        self.update_faults: list[Fault] = []
        self.create_faults: list[Fault] = []
        self.lost_update_replies: list[Fault] = []
        self.update_calls = 0

    async def create(self, table, fields, unique_field=None) -> Record:
        for fault in self.create_faults:
            error = fault(table, None, fields)
            if error is not None:
                await self._io()
                raise error
        return await super().create(table, fields, unique_field)

    async def update(self, table, record_id, fields, expected_version) -> Record:
        self.update_calls += 1
        for fault in self.update_faults:
            error = fault(table, record_id, fields)
            if error is not None:
                await self._io()
                raise error
        record = await super().update(table, record_id, fields, expected_version)
        for fault in self.lost_update_replies:
            error = fault(table, record_id, fields)
            if error is not None:
                raise error
        return record


def fail_times(
    times: Optional[int],
    make_error: Callable[[], Exception],
    table: Optional[str] = None,
    record_id: Optional[str] = None,
) -> Fault:
    """A fault that fires `times` times (forever with None) on matching writes."""
    remaining = [times]

    def fault(t: str, rid: Optional[str], fields: dict) -> Optional[Exception]:
        if table is not None and t != table:
            return None
        if record_id is not None and rid != record_id:
            return None
        if remaining[0] is not None:
            if remaining[0] <= 0:
                return None
            remaining[0] -= 1
        return make_error()

    return fault


def build_components(
    storage: RecordStore,
    policy: Optional[RetryPolicy] = None,
    operation_timeout: Optional[float] = None,
    claim_ttl: float = 60.0,
    tokens: Optional[dict[str, str]] = None,
    scopes: Optional[dict[str, list[str]]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> BankComponents:
    policy = policy or RetryPolicy(max_retries=5, base_backoff=0.0, max_backoff=0.0)
    audit_logger = AuditLogger(storage)
    accounts = AccountStore(
        storage,
        opening_balances={BANKER_ID: BANKER_FUNDS},
        audit_logger=audit_logger,
    )
    ledger = LedgerRecorder(
        storage,
        policy=RetryPolicy(max_retries=50, base_backoff=0.0, max_backoff=0.0),
    )
    transfers = TransferEngine(
        accounts,
        ledger,
        policy=policy,
        banker_id=BANKER_ID,
        operation_timeout=operation_timeout,
        audit_logger=audit_logger,
    )
    extra = {"clock": clock} if clock else {}
    invoices = InvoiceManager(
        storage,
        transfers,
        policy=policy,
        claim_ttl=claim_ttl,
        operation_timeout=operation_timeout,
        audit_logger=audit_logger,
        **extra,
    )
    auth = StaticAuthGate(tokens or {}, scopes or {}, banker_id=BANKER_ID, audit_logger=audit_logger)
    return BankComponents(
        storage=storage,
        accounts=accounts,
        ledger=ledger,
        transfers=transfers,
        invoices=invoices,
        auth=auth,
        audit_logger=audit_logger,
    )


async def set_balance(bank: BankComponents, user: str, balance: int) -> None:
    """Open the account if needed and set its balance directly."""
    account = await bank.accounts.get_balance(user)
    await bank.accounts.compare_and_set_balance(user, account.version, balance)


async def balance_of(bank: BankComponents, user: str) -> int:
    return (await bank.accounts.get_balance(user)).balance


@pytest.fixture
def store() -> FaultyStore:
    return FaultyStore()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_retries=5, base_backoff=0.0, max_backoff=0.0)


@pytest.fixture
def bank(store, policy) -> BankComponents:
    return build_components(store, policy)
