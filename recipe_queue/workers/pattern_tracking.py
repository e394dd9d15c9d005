"""Pattern tracking worker: count how often each ingredient rule sequence appears."""

from __future__ import annotations

import logging

from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData, PatternTrackingJobData, QueueName
from recipe_queue.jobs.pipeline import PipelineBuilder
from recipe_queue.jobs.worker import BaseWorker

logger = logging.getLogger(__name__)


class TrackPatternAction(Action):
  name = ActionName.TRACK_PATTERN.value

  async def execute(self, data: PatternTrackingJobData, deps: WorkerDependencies, context: ActionContext) -> PatternTrackingJobData:
    count = await deps.recipes.record_pattern(rule_ids=data.rule_ids, example_line=data.example_line, occurrence_key=context.job_id)
    return data.model_copy(update={"occurrence_count": count})


class PatternCompletionStatusAction(Action):
  """Pattern jobs are not note units; this only logs the outcome."""

  name = ActionName.PATTERN_COMPLETION_STATUS.value
  retryable = False
  always_run = True

  async def execute(self, data: PatternTrackingJobData, deps: WorkerDependencies, context: ActionContext) -> PatternTrackingJobData:
    if context.processing_failure is not None:
      logger.warning("[PATTERNS] job=%s failed to track %s: %s", context.job_id, "+".join(data.rule_ids), context.processing_failure.reason)
    else:
      logger.info("[PATTERNS] job=%s pattern %s seen %s time(s)", context.job_id, "+".join(data.rule_ids), data.occurrence_count)
    return data


class PatternPipelineBuilder(PipelineBuilder):
  terminal_action = ActionName.PATTERN_COMPLETION_STATUS.value

  def domain_actions(self, data: BaseJobData) -> list[str]:
    return [ActionName.TRACK_PATTERN.value]


def register_pattern_actions(factory: ActionFactory) -> None:
  for action_class in (TrackPatternAction, PatternCompletionStatusAction):
    factory.register(action_class.name, action_class)


class PatternTrackingWorker(BaseWorker):
  queue_name = QueueName.PATTERNS
  builder_class = PatternPipelineBuilder

  def register_actions(self, factory: ActionFactory) -> None:
    register_pattern_actions(factory)
