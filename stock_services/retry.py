"""
stock_services.retry -- Re-run a unit of work after a lock conflict.

Responsibility:
    Lot rows are locked FOR UPDATE, so two transactions costing the same
    product can deadlock or fail to serialize.  The kernel translates those
    aborts into ConcurrencyConflictError; this helper re-runs the whole unit
    of work in a fresh session and transaction, up to a bounded number of
    attempts.

Architecture position:
    Services -- caller-side.  Kernel services never retry: they run inside
    a transaction they do not own.

Failure modes:
    - The last ConcurrencyConflictError is re-raised once attempts run out.
    - Any other exception propagates on the first attempt.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.db.engine import session_scope
from stock_kernel.exceptions import ConcurrencyConflictError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def run_with_retry(
    session_factory: sessionmaker[Session] | None,
    work: Callable[[Session], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """
    Run ``work(session)`` in its own transaction, retrying on conflicts.

    Each attempt gets a new session from *session_factory* (the engine's
    default factory when None) that is committed on success and rolled back
    on failure, so no attempt sees another's partial state.

    Raises:
        ValueError: max_attempts < 1.
        ConcurrencyConflictError: Still conflicting after max_attempts.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    attempt = 0
    while True:
        attempt += 1
        try:
            with session_scope(session_factory) as session:
                result = work(session)
        except ConcurrencyConflictError as exc:
            if attempt >= max_attempts:
                logger.error(
                    "retry_attempts_exhausted",
                    extra={"attempts": attempt, "operation": exc.operation},
                )
                raise
            logger.warning(
                "retrying_after_conflict",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "operation": exc.operation,
                },
            )
            continue
        if attempt > 1:
            logger.info("retry_succeeded", extra={"attempts": attempt})
        return result
