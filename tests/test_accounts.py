"""Tests for AccountStore."""

import asyncio

import pytest

from banker.core import AccountStore, LedgerValidationError
from banker.models import ACCOUNTS_TABLE, AUDIT_TABLE
from banker.services.storage import ConflictError, InMemoryRecordStore, StorageError

from tests.conftest import BANKER_FUNDS, BANKER_ID, FaultyStore, fail_times


class TestAccountStore:
    """Lazy creation and compare-and-set balance updates."""

    @pytest.mark.asyncio
    async def test_unknown_user_is_created_with_zero_balance(self, bank):
        """Test the first read of a user opens the account at 0."""
        account = await bank.accounts.get_balance("alice")

        assert account.user_id == "alice"
        assert account.balance == 0
        assert len(await bank.storage.query(ACCOUNTS_TABLE, {"User": "alice"})) == 1

    @pytest.mark.asyncio
    async def test_second_read_returns_same_account(self, bank):
        """Test get_balance does not create twice."""
        first = await bank.accounts.get_balance("alice")
        second = await bank.accounts.get_balance("alice")

        assert first.record_id == second.record_id
        assert len(await bank.storage.query(ACCOUNTS_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_banker_gets_opening_balance(self, bank):
        """Test the banker account is opened with its configured funds."""
        account = await bank.accounts.get_balance(BANKER_ID)
        assert account.balance == BANKER_FUNDS

    @pytest.mark.asyncio
    async def test_start_balance_applies_to_new_accounts(self):
        """Test a configured start balance is used for everyone else."""
        accounts = AccountStore(InMemoryRecordStore(), start_balance=25)
        assert (await accounts.get_balance("alice")).balance == 25

    @pytest.mark.asyncio
    async def test_concurrent_first_reads_create_one_account(self, bank):
        """Test racing first reads end up with a single zero-balance record."""
        results = await asyncio.gather(
            *[bank.accounts.get_balance("carol") for _ in range(10)]
        )

        records = await bank.storage.query(ACCOUNTS_TABLE, {"User": "carol"})
        assert len(records) == 1
        assert {r.record_id for r in results} == {records[0].id}
        assert all(r.balance == 0 for r in results)

        created = await bank.storage.query(AUDIT_TABLE, {"Event Type": "account_created"})
        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_empty_user_rejected(self, bank):
        """Test a blank user ID is a validation error."""
        for user in ("", "   ", None):
            with pytest.raises(LedgerValidationError):
                await bank.accounts.get_balance(user)

    @pytest.mark.asyncio
    async def test_compare_and_set_balance(self, bank):
        """Test a CAS at the read version commits and returns the new version."""
        account = await bank.accounts.get_balance("alice")

        new_version = await bank.accounts.compare_and_set_balance("alice", account.version, 40)

        assert new_version == account.version + 1
        assert (await bank.accounts.get_balance("alice")).balance == 40

    @pytest.mark.asyncio
    async def test_compare_and_set_with_stale_version_conflicts(self, bank):
        """Test a lost race surfaces as ConflictError and changes nothing."""
        account = await bank.accounts.get_balance("alice")
        await bank.accounts.compare_and_set_balance("alice", account.version, 40)

        with pytest.raises(ConflictError):
            await bank.accounts.compare_and_set_balance("alice", account.version, 99)

        assert (await bank.accounts.get_balance("alice")).balance == 40

    @pytest.mark.asyncio
    async def test_negative_balance_refused(self, bank):
        """Test the store is never asked to hold a negative balance."""
        account = await bank.accounts.get_balance("alice")

        with pytest.raises(LedgerValidationError):
            await bank.accounts.compare_and_set_balance("alice", account.version, -1)

        assert (await bank.accounts.get_balance("alice")).balance == 0

    @pytest.mark.asyncio
    async def test_list_accounts(self, bank):
        for user in ("alice", "bob"):
            await bank.accounts.get_balance(user)

        users = {a.user_id for a in await bank.accounts.list_accounts()}
        assert users == {"alice", "bob"}

    @pytest.mark.asyncio
    async def test_record_id_cache_is_bounded(self):
        """Test remembered record IDs stay within the cache size however many users appear."""
        accounts = AccountStore(InMemoryRecordStore(), cache_size=3)

        for n in range(10):
            account = await accounts.get_balance(f"user{n}")
            await accounts.compare_and_set_balance(f"user{n}", account.version, n)

        assert len(accounts._record_ids) == 3
        assert list(accounts._record_ids) == ["user7", "user8", "user9"]
        # Evicted users are looked up again
        assert (await accounts.get_balance("user0")).balance == 0
        assert (await accounts.get_balance("user4")).balance == 4


class TestLostReplies:
    """Balance writes that land although the store reports a failure."""

    @pytest.mark.asyncio
    async def test_landed_write_is_reported_as_committed(self):
        store = FaultyStore()
        accounts = AccountStore(store)
        account = await accounts.get_balance("alice")
        store.lost_update_replies.append(fail_times(1, lambda: StorageError("connection reset")))

        new_version = await accounts.compare_and_set_balance("alice", account.version, 40)

        current = await accounts.get_balance("alice")
        assert new_version == current.version == account.version + 1
        assert current.balance == 40

    @pytest.mark.asyncio
    async def test_write_that_did_not_land_still_fails(self):
        store = FaultyStore()
        accounts = AccountStore(store)
        account = await accounts.get_balance("alice")
        store.update_faults.append(fail_times(1, lambda: StorageError("503")))

        with pytest.raises(StorageError):
            await accounts.compare_and_set_balance("alice", account.version, 40)

        assert (await accounts.get_balance("alice")).version == account.version

    @pytest.mark.asyncio
    async def test_someone_elses_write_is_not_mistaken_for_ours(self):
        """Test a failed write is not counted when another writer's balance is what landed."""
        store = FaultyStore()
        accounts = AccountStore(store)
        account = await accounts.get_balance("alice")

        def overtaken():
            # Replace our write with another writer's before the error surfaces
            record = store._table(ACCOUNTS_TABLE)[account.record_id]
            record.fields.update({"Balance": 7, "Write Id": "other"})
            return StorageError("connection reset")

        store.lost_update_replies.append(fail_times(1, overtaken))

        with pytest.raises(StorageError):
            await accounts.compare_and_set_balance("alice", account.version, 40)

        assert (await accounts.get_balance("alice")).balance == 7
