"""
Retry Policy for Store Operations

DESIGN DECISION: One policy object decides how every store call is
retried, instead of each call site wrapping its own timeout/retry loop.
The policy is parameterized by attempt count, base delay, max delay,
per-attempt timeout and a retryable-error predicate, and is applied
uniformly by RetryingDataStore.

Writes are shielded from cancellation of the caller: once a write has
started it runs to completion even if the caller goes away. Reads may
be abandoned freely.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import uuid4

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from budgetflow.config import StoreSettings
from budgetflow.services.storage.interface import (
    UNIQUE_CONSTRAINTS,
    ConflictError,
    DataStore,
    DuplicateError,
    Filter,
    Row,
    TransientStoreError,
    same_values,
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)


def is_transient(error: BaseException) -> bool:
    """Default retryable-error predicate."""
    return isinstance(error, TransientStoreError)


class RetryPolicy:
    """
    Bounded exponential backoff with a per-attempt timeout.

    The n-th retry waits base_delay * 2**(n-1) seconds, capped at max_delay.
    A timed-out attempt counts as a TransientStoreError.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 8.0,
        timeout: Optional[float] = 5.0,
        retryable: Callable[[BaseException], bool] = is_transient,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.retryable = retryable

    @classmethod
    def from_settings(cls, settings: StoreSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
            timeout=settings.timeout_seconds,
        )

    def _retry_logger(self, context: str) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "store_operation_retry",
                operation=context,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                error=str(error),
            )
        return log_retry

    async def _attempt(self, operation: Callable[[], Awaitable[T]], context: str) -> T:
        if self.timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientStoreError(f"{context} timed out after {self.timeout}s", e) from e

    async def call(self, operation: Callable[[], Awaitable[T]], context: str = "") -> T:
        """
        Run `operation` under this policy.

        Non-retryable errors propagate immediately; retryable ones are
        re-raised unchanged after the last attempt.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(self.retryable),
            before_sleep=self._retry_logger(context),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._attempt(operation, context)


class RetryingDataStore(DataStore):
    """DataStore decorator that applies one RetryPolicy to every call."""

    def __init__(self, inner: DataStore, policy: Optional[RetryPolicy] = None):
        self._inner = inner
        self._policy = policy or RetryPolicy()

    @property
    def inner(self) -> DataStore:
        return self._inner

    async def query(
        self,
        collection: str,
        filters: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        return await self._policy.call(
            lambda: self._inner.query(collection, filters, order_by, descending, limit),
            context=f"query {collection}",
        )

    async def insert(self, collection: str, row: Row) -> Row:
        """
        Insert with retries.

        The id is fixed before the first attempt so every retry writes the
        same row. A timed-out attempt may still have landed; when a retry
        then collides with it, the stored row is returned instead of the
        DuplicateError.
        """
        row = {**row, "id": str(row.get("id") or uuid4())}
        attempts = 0

        async def attempt() -> Row:
            nonlocal attempts
            attempts += 1
            try:
                return await self._inner.insert(collection, row)
            except DuplicateError:
                if attempts == 1:
                    raise
                stored = await self._inner.get(collection, row["id"])
                unique_fields = {
                    field: row.get(field) for field in UNIQUE_CONSTRAINTS.get(collection, ())
                }
                if stored is None or not same_values(stored, unique_fields):
                    raise
                logger.info("store_insert_already_applied", collection=collection, row_id=row["id"])
                return stored

        return await asyncio.shield(self._policy.call(attempt, context=f"insert {collection}"))

    async def update(
        self,
        collection: str,
        row_id: str,
        patch: Row,
        expected: Optional[list[Filter]] = None,
    ) -> Row:
        """
        Update with retries.

        A conditional update whose earlier attempt timed out but landed
        sees a conflict on retry; when the stored row already carries the
        patch, that row is returned.
        """
        attempts = 0

        async def attempt() -> Row:
            nonlocal attempts
            attempts += 1
            try:
                return await self._inner.update(collection, row_id, patch, expected)
            except ConflictError:
                if attempts == 1:
                    raise
                stored = await self._inner.get(collection, row_id)
                if stored is None or not same_values(stored, patch):
                    raise
                logger.info("store_update_already_applied", collection=collection, row_id=str(row_id))
                return stored

        return await asyncio.shield(self._policy.call(attempt, context=f"update {collection}"))

    async def delete(self, collection: str, row_id: str) -> bool:
        return await asyncio.shield(self._policy.call(
            lambda: self._inner.delete(collection, row_id),
            context=f"delete {collection}",
        ))
