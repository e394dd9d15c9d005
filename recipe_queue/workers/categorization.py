"""Categorization worker: assign a category and tags to a saved note."""

from __future__ import annotations

import logging

from recipe_queue.core.errors import ValidationError
from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData, CategorizationJobData, QueueName
from recipe_queue.jobs.pipeline import PipelineBuilder
from recipe_queue.jobs.worker import BaseWorker
from recipe_queue.workers.shared import BroadcastProcessingAction, CompletionStatusAction

logger = logging.getLogger(__name__)


class ProcessCategorizationAction(Action):
  name = ActionName.PROCESS_CATEGORIZATION.value

  async def execute(self, data: CategorizationJobData, deps: WorkerDependencies, context: ActionContext) -> CategorizationJobData:
    title = data.title
    if title is None and data.note_id:
      title = await deps.recipes.get_note_title(data.note_id)
    result = await deps.parsers.categorizer.categorize(title=title, ingredients=data.ingredients)
    logger.info("[CATEGORIZATION] job=%s note=%s category=%s tags=%d", context.job_id, data.note_id, result.category or "-", len(result.tags))
    return data.model_copy(update={"result": result, "title": title})


class SaveCategorizationAction(Action):
  name = ActionName.SAVE_CATEGORIZATION.value

  async def execute(self, data: CategorizationJobData, deps: WorkerDependencies, context: ActionContext) -> CategorizationJobData:
    if data.result is None or data.note_id is None:
      raise ValidationError("save_categorization requires a result and a note id", field="result")
    await deps.recipes.save_categorization(note_id=data.note_id, result=data.result)
    return data


class CategorizationPipelineBuilder(PipelineBuilder):
  include_status_actions = True

  def domain_actions(self, data: BaseJobData) -> list[str]:
    return [ActionName.PROCESS_CATEGORIZATION.value, ActionName.SAVE_CATEGORIZATION.value]


def register_categorization_actions(factory: ActionFactory) -> None:
  for action_class in (BroadcastProcessingAction, ProcessCategorizationAction, SaveCategorizationAction, CompletionStatusAction):
    factory.register(action_class.name, action_class)


class CategorizationWorker(BaseWorker):
  queue_name = QueueName.CATEGORIZATION
  builder_class = CategorizationPipelineBuilder

  def register_actions(self, factory: ActionFactory) -> None:
    register_categorization_actions(factory)
