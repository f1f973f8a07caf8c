"""
Bounded retry with deadlines.

Every compare-and-set loop in the core is a tenacity AsyncRetrying built
here, so attempt caps, exponential backoff and deadline handling are the
same everywhere.
"""

import time
from typing import Callable, Optional

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from banker.config import LedgerSettings
from banker.services.storage import ConflictError, StorageError


class RetryPolicy(BaseModel):
    """Attempt cap and backoff bounds for one CAS loop."""

    max_retries: int = Field(default=5, ge=1)
    base_backoff: float = Field(default=0.05, ge=0.0)
    max_backoff: float = Field(default=2.0, ge=0.0)

    @classmethod
    def from_settings(cls, settings: LedgerSettings, ledger: bool = False) -> "RetryPolicy":
        """Build the engine policy, or the ledger-write policy with `ledger=True`."""
        return cls(
            max_retries=settings.ledger_max_retries if ledger else settings.max_retries,
            base_backoff=settings.base_backoff,
            max_backoff=settings.max_backoff,
        )


class Deadline:
    """
    Absolute point in time after which an operation stops retrying.

    A Deadline with no timeout never expires.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def stop(self, retry_state: RetryCallState) -> bool:
        """tenacity stop condition."""
        return self.expired


def retrying(
    policy: RetryPolicy,
    deadline: Deadline,
    retry_on: tuple[type[BaseException], ...] = (ConflictError, StorageError),
) -> AsyncRetrying:
    """
    Build the retry loop for one CAS step.

    Usage:
        async for attempt in retrying(policy, deadline):
            with attempt:
                ...

    When the budget or the deadline runs out, the last exception is
    re-raised for the caller to translate.
    """
    backoff = wait_exponential(multiplier=policy.base_backoff, max=policy.max_backoff)

    def wait(retry_state: RetryCallState) -> float:
        delay = backoff(retry_state)
        remaining = deadline.remaining()
        # Never sleep past the deadline
        return delay if remaining is None else min(delay, remaining)

    return AsyncRetrying(
        stop=stop_any(stop_after_attempt(policy.max_retries), deadline.stop),
        wait=wait,
        retry=retry_if_exception_type(retry_on),
        reraise=True,
    )
