"""
Account Store

Owns the `bank` table: one record per user holding that user's balance.

DESIGN DECISION: Balances are only ever changed with a compare-and-set
against the version the caller read. There is no "set balance" and no
lock. A writer that lost a race gets ConflictError and re-reads.

Each balance write also stores a fresh "Write Id". If the store fails a
write after it actually landed (a lost reply), the account is re-read and
the write id tells whether it was ours, so a retry never applies the
same debit or credit twice.

Accounts are created lazily on first reference. Creation uses the
store's create-if-absent primitive, so two callers racing to open the
same account end up reading the same single record.
"""

from collections import OrderedDict
from typing import Optional
from uuid import uuid4

import structlog

from banker.audit import AuditLogger
from banker.core.errors import AccountNotFoundError, LedgerValidationError
from banker.core.validation import check_user
from banker.models.ledger import ACCOUNTS_TABLE, Account
from banker.services.storage import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    RecordStore,
    StorageError,
)

logger = structlog.get_logger(__name__)

RECORD_ID_CACHE_SIZE = 1024


class AccountStore:
    """Get-or-create and optimistic updates for user balances."""

    def __init__(
        self,
        storage: RecordStore,
        start_balance: int = 0,
        opening_balances: Optional[dict[str, int]] = None,
        audit_logger: Optional[AuditLogger] = None,
        cache_size: int = RECORD_ID_CACHE_SIZE,
    ):
        """
        Args:
            storage: Record store holding the accounts table
            start_balance: Balance of a newly created account
            opening_balances: Per-user overrides of start_balance
                (used to fund the banker account)
            audit_logger: Optional audit sink for account creation
            cache_size: How many user -> record ID mappings to remember
        """
        self._storage = storage
        self._start_balance = start_balance
        self._opening_balances = opening_balances or {}
        self._audit_logger = audit_logger
        # Record IDs never change once created; least recently used go first
        self._record_ids: OrderedDict[str, str] = OrderedDict()
        self._cache_size = cache_size

    async def get_balance(self, user_id: str) -> Account:
        """
        Return the user's account, creating it first if absent.

        Returns:
            The account with its balance and the version it was read at
        """
        check_user(user_id)
        account = await self._find(user_id)
        if account is not None:
            return account
        return await self._create(user_id)

    async def compare_and_set_balance(
        self,
        user_id: str,
        expected_version: int,
        new_balance: int,
    ) -> int:
        """
        Set the balance only if the account is still at `expected_version`.

        Returns:
            The account's new version

        Raises:
            ConflictError: Another writer committed first
            LedgerValidationError: new_balance is negative
            AccountNotFoundError: The account record is gone
        """
        if new_balance < 0:
            raise LedgerValidationError(
                f"Refusing to set a negative balance ({new_balance}) for {user_id}"
            )

        record_id = await self._record_id(user_id)
        write_id = uuid4().hex
        try:
            record = await self._storage.update(
                ACCOUNTS_TABLE,
                record_id,
                {"Balance": new_balance, "Write Id": write_id},
                expected_version=expected_version,
            )
        except NotFoundError as e:
            self._record_ids.pop(user_id, None)
            raise AccountNotFoundError(f"No account for {user_id}") from e
        except ConflictError:
            raise
        except StorageError:
            record = await self._landed(record_id, write_id)
            if record is None:
                raise
            logger.warning("balance_write_reply_lost", user=user_id, version=record.version)

        logger.debug(
            "balance_updated",
            user=user_id,
            balance=new_balance,
            version=record.version,
        )
        return record.version

    async def list_accounts(self) -> list[Account]:
        records = await self._storage.query(ACCOUNTS_TABLE)
        return [Account.from_record(record) for record in records]

    async def _find(self, user_id: str) -> Optional[Account]:
        records = await self._storage.query(ACCOUNTS_TABLE, {"User": user_id})
        if not records:
            return None
        if len(records) > 1:
            # Only possible with a backend lacking create-if-absent; oldest wins
            logger.warning("duplicate_accounts", user=user_id, count=len(records))
        account = Account.from_record(records[0])
        self._remember(user_id, account.record_id)
        return account

    async def _create(self, user_id: str) -> Account:
        balance = self._opening_balances.get(user_id, self._start_balance)
        logger.info("account_creating", user=user_id, balance=balance)
        try:
            record = await self._storage.create(
                ACCOUNTS_TABLE,
                {"User": user_id, "Balance": balance},
                unique_field="User",
            )
        except DuplicateError:
            # Lost the creation race; the winner's record is the account
            account = await self._find(user_id)
            if account is None:
                raise AccountNotFoundError(f"No account for {user_id}")
            return account

        account = Account.from_record(record)
        self._remember(user_id, account.record_id)
        if self._audit_logger:
            await self._audit_logger.log_account_created(user_id, balance)
        return account

    async def _landed(self, record_id: str, write_id: str):
        """The account record if our write is the one it holds, else None."""
        try:
            record = await self._storage.get(ACCOUNTS_TABLE, record_id)
        except StorageError as e:
            logger.warning("balance_write_check_failed", record_id=record_id, error=str(e))
            return None
        if record is not None and record.fields.get("Write Id") == write_id:
            return record
        return None

    def _remember(self, user_id: str, record_id: str) -> None:
        self._record_ids[user_id] = record_id
        self._record_ids.move_to_end(user_id)
        while len(self._record_ids) > self._cache_size:
            self._record_ids.popitem(last=False)

    async def _record_id(self, user_id: str) -> str:
        record_id = self._record_ids.get(user_id)
        if record_id is not None:
            self._record_ids.move_to_end(user_id)
        else:
            account = await self._find(user_id)
            if account is None:
                raise AccountNotFoundError(f"No account for {user_id}")
            record_id = account.record_id
        return record_id
