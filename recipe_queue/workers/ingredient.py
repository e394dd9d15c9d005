"""Ingredient worker: parse one ingredient line, save it, queue pattern tracking."""

from __future__ import annotations

import logging

from recipe_queue.core.errors import ValidationError
from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData, IngredientJobData, PatternTrackingJobData, QueueName
from recipe_queue.jobs.pipeline import PipelineBuilder
from recipe_queue.jobs.worker import BaseWorker
from recipe_queue.storage.queue_repo import JobOptions
from recipe_queue.workers.shared import CompletionStatusAction, UpdateCountAction

logger = logging.getLogger(__name__)


class UpdateIngredientCountAction(UpdateCountAction):
  name = ActionName.UPDATE_INGREDIENT_COUNT.value
  current_field = "current_ingredient_index"
  total_field = "total_ingredients"
  noun = "ingredients"
  event_context = "ingredient_processing"


class ProcessIngredientLineAction(Action):
  name = ActionName.PROCESS_INGREDIENT_LINE.value

  async def execute(self, data: IngredientJobData, deps: WorkerDependencies, context: ActionContext) -> IngredientJobData:
    if not data.reference.strip():
      raise ValidationError("Ingredient reference is empty", field="reference", value=data.reference)
    result = await deps.parsers.ingredient.parse(data.reference)
    logger.debug("[INGREDIENTS] job=%s line=%s parsed as %s with %d segment(s)", context.job_id, data.ingredient_line_id, result.parse_status, len(result.segments))
    return data.model_copy(update={"parse_result": result})


class SaveIngredientLineAction(Action):
  name = ActionName.SAVE_INGREDIENT_LINE.value

  async def execute(self, data: IngredientJobData, deps: WorkerDependencies, context: ActionContext) -> IngredientJobData:
    if data.parse_result is None:
      raise ValidationError("save_ingredient_line requires a parse result", field="parseResult")
    await deps.recipes.update_ingredient_line(data.ingredient_line_id, result=data.parse_result)
    return data


class SchedulePatternTrackingAction(Action):
  """Queues a pattern-tracking job for the rule sequence that matched this line."""

  name = ActionName.SCHEDULE_PATTERN_TRACKING.value

  async def execute(self, data: IngredientJobData, deps: WorkerDependencies, context: ActionContext) -> IngredientJobData:
    rule_ids = data.parse_result.rule_ids if data.parse_result is not None else []
    if not rule_ids:
      return data
    payload = PatternTrackingJobData(note_id=data.note_id, import_id=data.import_id, rule_ids=rule_ids, example_line=data.reference)
    await deps.queue(QueueName.PATTERNS).add("track-pattern", payload.to_payload(), JobOptions(job_id=f"{context.job_id}:pattern"))
    return data


class IngredientPipelineBuilder(PipelineBuilder):
  count_action = ActionName.UPDATE_INGREDIENT_COUNT.value
  count_fields = ("current_ingredient_index", "total_ingredients")

  def domain_actions(self, data: BaseJobData) -> list[str]:
    return [ActionName.PROCESS_INGREDIENT_LINE.value, ActionName.SAVE_INGREDIENT_LINE.value, ActionName.SCHEDULE_PATTERN_TRACKING.value]


def register_ingredient_actions(factory: ActionFactory) -> None:
  for action_class in (UpdateIngredientCountAction, ProcessIngredientLineAction, SaveIngredientLineAction, SchedulePatternTrackingAction, CompletionStatusAction):
    factory.register(action_class.name, action_class)


class IngredientWorker(BaseWorker):
  queue_name = QueueName.INGREDIENTS
  builder_class = IngredientPipelineBuilder

  def register_actions(self, factory: ActionFactory) -> None:
    register_ingredient_actions(factory)
