"""
Retry support for writers that collide on the same stock balance row.

Only ``ConcurrencyError`` is retried.  Business rejections (insufficient
stock, validation, not found) reproduce on retry and are returned as-is.
Each retry starts from a rolled-back session, so the whole read-compute-
write sequence runs again against fresh state, and the idempotency check
inside it keeps a retried request from applying twice.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stock_kernel.exceptions import ConcurrencyError, TransactionConflictError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.concurrency")

T = TypeVar("T")

# Driver/ORM errors that mean "another writer got there first".
CONFLICT_ERRORS = (IntegrityError, OperationalError, StaleDataError)


def run_with_retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
    on_retry: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute ``func`` and retry on concurrency conflicts.

    Args:
        func: The full unit of work.  Must be safe to run again from scratch.
        attempts: Total attempts, first try included.
        backoff_base: Sleep before retry n (0-based) is backoff_base * 2**n.
        on_retry: Called after each failed attempt, before sleeping
            (typically ``session.rollback``).
        sleep: Injectable for tests.

    Raises:
        TransactionConflictError: when every attempt conflicted.  ``attempts``
            on the error records how many were made.
    """
    last_exc: ConcurrencyError | None = None
    for attempt in range(attempts):
        try:
            return func()
        except ConcurrencyError as exc:
            last_exc = exc
            if on_retry is not None:
                on_retry()
            if attempt >= attempts - 1:
                break
            delay = backoff_base * (2 ** attempt)
            logger.warning(
                "transaction_conflict_retry",
                extra={
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "backoff_seconds": delay,
                    "error": str(exc),
                },
            )
            sleep(delay)

    entity_type = getattr(last_exc, "entity_type", "unknown")
    entity_id = getattr(last_exc, "entity_id", "unknown")
    raise TransactionConflictError(entity_type, entity_id, attempts=attempts) from last_exc
