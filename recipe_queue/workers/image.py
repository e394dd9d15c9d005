"""Image worker: process one source image and store the result on the note."""

from __future__ import annotations

import logging

from recipe_queue.core.errors import ValidationError
from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData, ImageJobData, QueueName
from recipe_queue.jobs.pipeline import PipelineBuilder
from recipe_queue.jobs.worker import BaseWorker
from recipe_queue.workers.shared import BroadcastProcessingAction, CompletionStatusAction

logger = logging.getLogger(__name__)


class ProcessImageAction(Action):
  name = ActionName.PROCESS_IMAGE.value

  async def execute(self, data: ImageJobData, deps: WorkerDependencies, context: ActionContext) -> ImageJobData:
    if data.note_id is None:
      raise ValidationError("Image jobs require a note id", field="noteId")
    if data.source.url is None and data.source.data is None:
      raise ValidationError("Image source has neither a url nor inline data", field="source")
    processed = await deps.parsers.image.process(note_id=data.note_id, image_index=data.image_index, source=data.source)
    logger.info("[IMAGES] job=%s note=%s image %d stored as %s", context.job_id, data.note_id, data.image_index, processed.storage_key)
    return data.model_copy(update={"processed_image": processed})


class SaveImageAction(Action):
  name = ActionName.SAVE_IMAGE.value

  async def execute(self, data: ImageJobData, deps: WorkerDependencies, context: ActionContext) -> ImageJobData:
    if data.processed_image is None or data.note_id is None:
      raise ValidationError("save_image requires a processed image", field="processedImage")
    image_id = await deps.recipes.save_image(note_id=data.note_id, image_index=data.image_index, image=data.processed_image)
    return data.model_copy(update={"saved_image_id": image_id})


class ImagePipelineBuilder(PipelineBuilder):
  include_status_actions = True

  def domain_actions(self, data: BaseJobData) -> list[str]:
    return [ActionName.PROCESS_IMAGE.value, ActionName.SAVE_IMAGE.value]


def register_image_actions(factory: ActionFactory) -> None:
  for action_class in (BroadcastProcessingAction, ProcessImageAction, SaveImageAction, CompletionStatusAction):
    factory.register(action_class.name, action_class)


class ImageWorker(BaseWorker):
  queue_name = QueueName.IMAGES
  builder_class = ImagePipelineBuilder
  # The image processor calls out to remote storage.
  circuit_breaker_actions = (ActionName.PROCESS_IMAGE.value,)

  def register_actions(self, factory: ActionFactory) -> None:
    register_image_actions(factory)
