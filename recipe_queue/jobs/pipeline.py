"""Builds the ordered action list for one job."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

import pybreaker

from recipe_queue.jobs.actions import Action, Sleep, with_circuit_breaker, with_error_handling, with_retry, with_timeout
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData
from recipe_queue.jobs.retry import RetryPolicy


def action_names(pipeline: Sequence[Action]) -> list[str]:
  return [action.name for action in pipeline]


def _is_count(value: Any) -> bool:
  return isinstance(value, int) and not isinstance(value, bool)


class PipelineBuilder(ABC):
  """Turns job data into a pipeline.

  Order: optional ``broadcast_processing`` (needs a note id), optional count update (needs an
  import id plus integer index and total), the domain actions, then exactly one terminal action.
  The plan depends only on the job data, so a retried job gets the same pipeline.
  """

  include_status_actions: ClassVar[bool] = False
  count_action: ClassVar[str | None] = None
  count_fields: ClassVar[tuple[str, str] | None] = None
  terminal_action: ClassVar[str] = ActionName.COMPLETION_STATUS.value

  def __init__(self, factory: ActionFactory, *, retry_policy: RetryPolicy, action_timeout_seconds: float | None = None, circuit_breakers: Mapping[str, pybreaker.CircuitBreaker] | None = None, sleep: Sleep = asyncio.sleep) -> None:
    self.factory = factory
    self.retry_policy = retry_policy
    self.action_timeout_seconds = action_timeout_seconds
    self.circuit_breakers = dict(circuit_breakers or {})
    self.sleep = sleep

  @abstractmethod
  def domain_actions(self, data: BaseJobData) -> list[str]:
    """Names of the processing actions for this job, in order."""

  def has_count_tracking(self, data: BaseJobData) -> bool:
    if self.count_action is None or self.count_fields is None or not data.import_id:
      return False
    current_field, total_field = self.count_fields
    return _is_count(getattr(data, current_field, None)) and _is_count(getattr(data, total_field, None))

  def plan(self, data: BaseJobData) -> list[str]:
    """Action names for the job, without instantiating anything."""
    names: list[str] = []
    if self.include_status_actions and data.note_id:
      names.append(ActionName.BROADCAST_PROCESSING.value)
    if self.has_count_tracking(data):
      names.append(str(self.count_action))
    names.extend(self.domain_actions(data))
    names.append(self.terminal_action)
    return names

  def build(self, data: BaseJobData, context: ActionContext, dependencies: Any) -> list[Action]:
    names = self.plan(data)
    pipeline = [self.create_wrapped_action(name, dependencies) for name in names[:-1]]
    terminal = self.create_error_handled_action(names[-1], dependencies)
    if not terminal.always_run:
      raise TypeError(f"Terminal action '{terminal.name}' must run after failures (always_run=True)")
    pipeline.append(terminal)
    return pipeline

  def create_wrapped_action(self, name: str, dependencies: Any) -> Action:
    """Timeout inside circuit breaker inside retry inside error handling."""
    action = self.factory.create(name, dependencies)
    if self.action_timeout_seconds:
      action = with_timeout(action, self.action_timeout_seconds)
    breaker = self.circuit_breakers.get(name)
    if breaker is not None:
      action = with_circuit_breaker(action, breaker)
    action = with_retry(action, self.retry_policy, sleep=self.sleep)
    return with_error_handling(action)

  def create_error_handled_action(self, name: str, dependencies: Any) -> Action:
    action = self.factory.create(name, dependencies)
    if self.action_timeout_seconds:
      action = with_timeout(action, self.action_timeout_seconds)
    return with_error_handling(action)
