"""Maps exceptions raised inside jobs to an ErrorClassification."""

from __future__ import annotations

import asyncio

import httpx
import pydantic

from recipe_queue.core.errors import (
  ActionExecutionError,
  ActionTimeoutError,
  BroadcastError,
  CompletionTrackingError,
  ErrorCategory,
  ErrorClassification,
  MissingDependencyError,
  TransientError,
  UnknownActionError,
  ValidationError,
)
from recipe_queue.utils.db_retry import classify_db_failure, is_db_failure

# Message keywords used when the exception type says nothing useful.
_KEYWORD_CATEGORIES: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
  (ErrorCategory.VALIDATION, ("validation", "invalid", "required")),
  (ErrorCategory.TIMEOUT, ("timeout", "timed out")),
  (ErrorCategory.NETWORK, ("network", "connection", "econnrefused", "econnreset")),
)


def classify_error(exc: BaseException) -> ErrorClassification:
  """Classify a failure for logging and for the action and queue retry decisions."""
  if isinstance(exc, ActionExecutionError):
    return exc.classification

  if isinstance(exc, (ValidationError, pydantic.ValidationError)):
    return ErrorClassification(category=ErrorCategory.VALIDATION, retryable=False, reason=str(exc))

  if isinstance(exc, UnknownActionError):
    return ErrorClassification(category=ErrorCategory.UNKNOWN_ACTION, retryable=False, reason=str(exc))

  if isinstance(exc, MissingDependencyError):
    return ErrorClassification(category=ErrorCategory.CONFIGURATION, retryable=False, reason=str(exc))

  if isinstance(exc, BroadcastError):
    return ErrorClassification(category=ErrorCategory.BROADCAST, retryable=False, reason=str(exc))

  if isinstance(exc, (ActionTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
    return ErrorClassification(category=ErrorCategory.TIMEOUT, retryable=True, reason=str(exc) or type(exc).__name__)

  if isinstance(exc, CompletionTrackingError):
    return ErrorClassification(category=ErrorCategory.DATABASE, retryable=True, reason=str(exc))

  if isinstance(exc, TransientError):
    return ErrorClassification(category=ErrorCategory.TRANSIENT, retryable=True, reason=str(exc))

  if is_db_failure(exc):
    return classify_db_failure(exc)

  if isinstance(exc, httpx.HTTPStatusError):
    status_code = exc.response.status_code
    retryable = status_code >= 500 or status_code == 429
    return ErrorClassification(category=ErrorCategory.NETWORK, retryable=retryable, reason=f"HTTP {status_code} from {exc.request.url}")

  if isinstance(exc, (httpx.TransportError, ConnectionError)):
    return ErrorClassification(category=ErrorCategory.NETWORK, retryable=True, reason=str(exc) or type(exc).__name__)

  if isinstance(exc, (AttributeError, TypeError, KeyError, IndexError, NotImplementedError)):
    return ErrorClassification(category=ErrorCategory.PROGRAMMING, retryable=False, reason=f"Programming error: {type(exc).__name__}: {exc}")

  message = str(exc).lower()
  for category, keywords in _KEYWORD_CATEGORIES:
    if any(keyword in message for keyword in keywords):
      return ErrorClassification(category=category, retryable=category is not ErrorCategory.VALIDATION, reason=str(exc))

  if isinstance(exc, OSError):
    return ErrorClassification(category=ErrorCategory.NETWORK, retryable=True, reason=str(exc) or type(exc).__name__)

  return ErrorClassification(category=ErrorCategory.UNKNOWN, retryable=False, reason=f"{type(exc).__name__}: {exc}")
