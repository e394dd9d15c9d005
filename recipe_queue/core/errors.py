"""Error taxonomy shared by actions, workers and the completion tracker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
  """Categories used to tag failures in logs and to pick a retry policy."""

  VALIDATION = "validation"
  TRANSIENT = "transient"
  TIMEOUT = "timeout"
  NETWORK = "network"
  DATABASE = "database"
  CONFIGURATION = "configuration"
  UNKNOWN_ACTION = "unknown_action"
  BROADCAST = "broadcast"
  PROGRAMMING = "programming"
  UNKNOWN = "unknown"


# Failures in these categories go straight to the dead-letter state.
FATAL_CATEGORIES = frozenset({ErrorCategory.VALIDATION, ErrorCategory.CONFIGURATION, ErrorCategory.UNKNOWN_ACTION})


@dataclass(frozen=True)
class ErrorClassification:
  """Classification result for a failure raised inside a job."""

  category: ErrorCategory
  retryable: bool
  reason: str
  sqlstate: str | None = None

  @property
  def requeue(self) -> bool:
    """Whether the queue should schedule another attempt of the whole job."""
    return self.category not in FATAL_CATEGORIES


class PipelineError(Exception):
  """Base class for errors raised by the pipeline framework."""


class ValidationError(PipelineError):
  """Job data failed validation. Never retried."""

  def __init__(self, message: str, *, field: str | None = None, value: Any = None) -> None:
    super().__init__(message)
    self.field = field
    self.value = value


class TransientError(PipelineError):
  """I/O style failure that may succeed on a later attempt."""


class ActionTimeoutError(TransientError):
  """An action did not finish within its configured timeout."""

  def __init__(self, action_name: str, timeout_seconds: float) -> None:
    super().__init__(f"Action '{action_name}' timed out after {timeout_seconds:.2f}s")
    self.action_name = action_name
    self.timeout_seconds = timeout_seconds


class CircuitOpenError(TransientError):
  """A circuit breaker rejected the call without running the action."""


class UnknownActionError(PipelineError, LookupError):
  """Raised when a pipeline asks for an action name that was never registered."""

  def __init__(self, name: str, available: list[str] | None = None) -> None:
    known = ", ".join(available or []) or "none"
    super().__init__(f"Unknown action '{name}'. Registered actions: {known}")
    self.name = name


class DuplicateActionError(PipelineError, ValueError):
  """Raised when an action name is registered twice."""

  def __init__(self, name: str) -> None:
    super().__init__(f"Action '{name}' is already registered")
    self.name = name


class MissingDependencyError(PipelineError):
  """A collaborator required by an action is not configured."""


class BroadcastError(PipelineError):
  """Status broadcast failed. Logged by callers, never fails a job."""


class CompletionTrackingError(PipelineError):
  """Recording a unit completion against a note failed."""


class ActionExecutionError(PipelineError):
  """Wraps a failure raised by an action with its job and classification."""

  def __init__(self, message: str, *, operation: str, action_name: str, job_id: str | None, cause: BaseException, classification: ErrorClassification) -> None:
    super().__init__(message)
    self.operation = operation
    self.action_name = action_name
    self.job_id = job_id
    self.cause = cause
    self.classification = classification
