"""Database retry logic with retryable vs non-retryable error classification."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from recipe_queue.core.errors import ErrorCategory, ErrorClassification

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_SQLSTATES = {"40001": "Serialization failure - transaction conflict", "40P01": "Deadlock detected"}

_INTEGRITY_VIOLATIONS = {
  "23000": "integrity constraint violation",
  "23001": "restrict violation",
  "23502": "not null violation",
  "23503": "foreign key violation",
  "23505": "unique violation",
  "23514": "check constraint violation",
  "23P01": "exclusion constraint violation",
}

_CONNECTIVITY_MARKERS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection")


def extract_sqlstate(exc: BaseException) -> str | None:
  """Extract the Postgres SQLSTATE from a SQLAlchemy exception."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    # asyncpg exposes sqlstate, psycopg exposes pgcode
    for attribute in ("sqlstate", "pgcode"):
      value = getattr(exc.orig, attribute, None)
      if value:
        return str(value)
  return None


def is_db_failure(exc: BaseException) -> bool:
  return isinstance(exc, DBAPIError)


def classify_db_failure(exc: BaseException) -> ErrorClassification:
  """
  Classify a database failure as retryable or non-retryable.

  Primary signal: Postgres SQLSTATE
  Fallback: exception type and message patterns

  Retryable: 40001 serialization failure, 40P01 deadlock, dropped connections.
  Non-retryable: 23xxx integrity violations, 42xxx schema errors, 28xxx auth errors,
  lock/statement timeouts and anything unrecognised.
  """
  sqlstate = extract_sqlstate(exc)

  if sqlstate in _RETRYABLE_SQLSTATES:
    return ErrorClassification(category=ErrorCategory.DATABASE, retryable=True, reason=_RETRYABLE_SQLSTATES[sqlstate], sqlstate=sqlstate)

  # Lock contention and cancelled statements point at a query to fix, not a blip.
  if sqlstate in {"55P03", "57014"}:
    return ErrorClassification(category=ErrorCategory.DATABASE, retryable=False, reason="Lock not available or statement canceled", sqlstate=sqlstate)

  if sqlstate and sqlstate.startswith("23"):
    specific = _INTEGRITY_VIOLATIONS.get(sqlstate, "integrity constraint violation")
    return ErrorClassification(category=ErrorCategory.DATABASE, retryable=False, reason=f"Integrity violation: {specific}", sqlstate=sqlstate)

  if sqlstate and sqlstate.startswith("42"):
    return ErrorClassification(category=ErrorCategory.PROGRAMMING, retryable=False, reason="Schema/SQL error (undefined table/column, syntax error)", sqlstate=sqlstate)

  if sqlstate and sqlstate.startswith("28"):
    return ErrorClassification(category=ErrorCategory.CONFIGURATION, retryable=False, reason="Authentication/permission error", sqlstate=sqlstate)

  if isinstance(exc, IntegrityError):
    return ErrorClassification(category=ErrorCategory.DATABASE, retryable=False, reason="Integrity constraint violation (detected by exception type)", sqlstate=sqlstate)

  if isinstance(exc, OperationalError):
    error_msg = str(exc).lower()
    if any(marker in error_msg for marker in _CONNECTIVITY_MARKERS):
      return ErrorClassification(category=ErrorCategory.NETWORK, retryable=True, reason="Transient connection/network error", sqlstate=sqlstate)
    return ErrorClassification(category=ErrorCategory.DATABASE, retryable=False, reason="Operational error (unknown cause)", sqlstate=sqlstate)

  return ErrorClassification(category=ErrorCategory.DATABASE, retryable=False, reason=f"Unknown database error: {type(exc).__name__}", sqlstate=sqlstate)


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 3, initial_backoff_ms: int = 50, max_backoff_ms: int = 1000, jitter: bool = True) -> T:
  """
  Run an idempotent database operation, retrying serialization conflicts, deadlocks and dropped connections.

  Args:
    operation_name: Human-readable name for logging (e.g., "completion_increment")
    func: Async callable opening its own transaction
    max_attempts: Maximum number of attempts including the first one
    initial_backoff_ms: Starting backoff delay in milliseconds
    max_backoff_ms: Maximum backoff delay in milliseconds
    jitter: Spread retries by up to +25% of the delay

  Raises:
    The original exception if non-retryable or out of attempts
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      result = await func()
    except DBAPIError as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed: operation=%s, attempt=%d/%d, category=%s, sqlstate=%s, retryable=%s, reason=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category.value,
        classification.sqlstate or "none",
        classification.retryable,
        classification.reason,
      )
      if not classification.retryable or attempt >= max_attempts:
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      if jitter:
        backoff_ms += random.uniform(0, backoff_ms * 0.25)
      logger.info("Retrying DB operation after backoff: operation=%s, attempt=%d/%d, backoff_ms=%.1f", operation_name, attempt, max_attempts, backoff_ms)
      await asyncio.sleep(backoff_ms / 1000.0)
      continue

    if attempt > 1:
      logger.info("DB operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt, max_attempts)
    return result
