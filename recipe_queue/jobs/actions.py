"""Action base class and the wrappers that add timeout, retry and error handling."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar

import pybreaker

from recipe_queue.core.classifier import classify_error
from recipe_queue.core.errors import ActionExecutionError, ActionTimeoutError, CircuitOpenError, ErrorCategory, ErrorClassification
from recipe_queue.jobs.models import ActionContext, ActionResult
from recipe_queue.jobs.retry import RetryPolicy

logger = logging.getLogger(__name__)

Classifier = Callable[[BaseException], ErrorClassification]
Sleep = Callable[[float], Awaitable[Any]]


class Action(ABC):
  """A named, stateless unit of work run as one step of a job pipeline.

  ``execute`` may run more than once for the same input (action retries, queue retries),
  so implementations must tolerate repeated side effects.
  """

  name: ClassVar[str]
  retryable: bool = True
  priority: int = 0
  always_run: bool = False

  @abstractmethod
  async def execute(self, data: Any, deps: Any, context: ActionContext) -> Any:
    """Run the step and return the (possibly augmented) job data."""

  async def execute_with_timing(self, data: Any, deps: Any, context: ActionContext) -> ActionResult:
    """Run execute and report the outcome and duration. Never raises."""
    started = time.perf_counter()
    try:
      result = await self.execute(data, deps, context)
    except Exception as exc:  # noqa: BLE001
      return ActionResult(success=False, duration_ms=(time.perf_counter() - started) * 1000, error=exc)
    return ActionResult(success=True, duration_ms=(time.perf_counter() - started) * 1000, data=result)

  def __repr__(self) -> str:
    return f"<{type(self).__name__} {self.name}>"


class ActionWrapper(Action):
  """Decorates another action; keeps its name and flags."""

  def __init__(self, inner: Action) -> None:
    self.inner = inner
    self.name = inner.name  # type: ignore[misc]
    self.retryable = inner.retryable
    self.priority = inner.priority
    self.always_run = inner.always_run

  def unwrap(self) -> Action:
    action: Action = self
    while isinstance(action, ActionWrapper):
      action = action.inner
    return action


class TimeoutAction(ActionWrapper):
  def __init__(self, inner: Action, timeout_seconds: float) -> None:
    super().__init__(inner)
    self.timeout_seconds = timeout_seconds

  async def execute(self, data: Any, deps: Any, context: ActionContext) -> Any:
    try:
      return await asyncio.wait_for(self.inner.execute(data, deps, context), timeout=self.timeout_seconds)
    except asyncio.TimeoutError as exc:
      raise ActionTimeoutError(self.name, self.timeout_seconds) from exc


class RetryingAction(ActionWrapper):
  """Retries retryable failures with exponential backoff."""

  def __init__(self, inner: Action, policy: RetryPolicy, *, classifier: Classifier = classify_error, sleep: Sleep = asyncio.sleep) -> None:
    super().__init__(inner)
    self.policy = policy
    self.classifier = classifier
    self.sleep = sleep

  async def execute(self, data: Any, deps: Any, context: ActionContext) -> Any:
    retry = 0
    while True:
      try:
        return await self.inner.execute(data, deps, context)
      except Exception as exc:
        classification = self.classifier(exc)
        if not (self.retryable and classification.retryable) or not self.policy.should_retry(retry):
          raise
        delay_ms = self.policy.compute_backoff_ms(retry)
        retry += 1
        logger.warning(
          "[%s] job=%s action=%s failed (%s), retry %d/%d in %.0fms: %s",
          context.operation.upper(),
          context.job_id,
          self.name,
          classification.category.value,
          retry,
          self.policy.max_retries,
          delay_ms,
          exc,
        )
        await self.sleep(delay_ms / 1000.0)


class ErrorHandlingAction(ActionWrapper):
  """Classifies and logs failures, then re-raises them as ActionExecutionError."""

  def __init__(self, inner: Action, classifier: Classifier = classify_error) -> None:
    super().__init__(inner)
    self.classifier = classifier

  async def execute(self, data: Any, deps: Any, context: ActionContext) -> Any:
    try:
      return await self.inner.execute(data, deps, context)
    except ActionExecutionError:
      raise
    except Exception as exc:
      classification = self.classifier(exc)
      logger.error(
        "[%s] job=%s action=%s failed: category=%s retryable=%s reason=%s",
        context.operation.upper(),
        context.job_id,
        self.name,
        classification.category.value,
        classification.retryable,
        classification.reason,
      )
      raise ActionExecutionError(f"Action '{self.name}' failed: {exc}", operation=context.operation, action_name=self.name, job_id=context.job_id, cause=exc, classification=classification) from exc


# Only outages of the protected service trip a breaker; bad payloads and bugs never do.
_OUTAGE_CATEGORIES = frozenset({ErrorCategory.TRANSIENT, ErrorCategory.TIMEOUT, ErrorCategory.NETWORK})


def is_outage(exc: BaseException) -> bool:
  return classify_error(exc).category in _OUTAGE_CATEGORIES


def _not_an_outage(exc: BaseException) -> bool:
  return not is_outage(exc)


def build_circuit_breaker(*, name: str, fail_max: int = 5, reset_timeout_seconds: float = 60.0) -> pybreaker.CircuitBreaker:
  """Breaker that opens after ``fail_max`` consecutive outages and half-opens after the cool-down.

  Excluded failures (validation, configuration, programming errors) count as calls that reached
  the service, so they never move the breaker towards open.
  """
  return pybreaker.CircuitBreaker(fail_max=fail_max, reset_timeout=reset_timeout_seconds, exclude=[_not_an_outage], name=name)


class CircuitBreakerAction(ActionWrapper):
  def __init__(self, inner: Action, breaker: pybreaker.CircuitBreaker) -> None:
    super().__init__(inner)
    self.breaker = breaker

  async def execute(self, data: Any, deps: Any, context: ActionContext) -> Any:
    try:
      with self.breaker.calling():
        return await self.inner.execute(data, deps, context)
    except pybreaker.CircuitBreakerError as exc:
      logger.warning("[%s] job=%s action=%s rejected: circuit %s is %s (%d consecutive failures)", context.operation.upper(), context.job_id, self.name, self.breaker.name, self.breaker.current_state, self.breaker.fail_counter)
      raise CircuitOpenError(f"Circuit open for '{self.name}': {exc}") from exc


def with_timeout(action: Action, timeout_seconds: float) -> Action:
  return TimeoutAction(action, timeout_seconds)


def with_retry(action: Action, policy: RetryPolicy, *, classifier: Classifier = classify_error, sleep: Sleep = asyncio.sleep) -> Action:
  return RetryingAction(action, policy, classifier=classifier, sleep=sleep)


def with_error_handling(action: Action, classifier: Classifier = classify_error) -> Action:
  return ErrorHandlingAction(action, classifier)


def with_circuit_breaker(action: Action, breaker: pybreaker.CircuitBreaker) -> Action:
  return CircuitBreakerAction(action, breaker)
