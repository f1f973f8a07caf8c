"""Input checks shared by the engines. All raise LedgerValidationError."""

from typing import Any

from banker.core.errors import LedgerValidationError


def check_user(user_id: Any, field: str = "user") -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise LedgerValidationError(f"{field} must be a non-empty user ID")
    return user_id


def check_amount(amount: Any) -> int:
    # bool is an int subclass; True is not an amount
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise LedgerValidationError(f"amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise LedgerValidationError(f"amount must be positive, got {amount}")
    return amount


def check_distinct(from_user: str, to_user: str) -> None:
    if from_user == to_user:
        raise LedgerValidationError(f"{from_user} cannot send money to themselves")
