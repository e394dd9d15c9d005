"""Note worker: clean and parse the HTML, save the note, fan out the follow-up jobs."""

from __future__ import annotations

import logging

from recipe_queue.core.errors import ValidationError
from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData, CategorizationJobData, ImageJobData, IngredientJobData, InstructionJobData, NoteJobData, QueueName
from recipe_queue.jobs.pipeline import PipelineBuilder
from recipe_queue.jobs.worker import BaseWorker, JobFailure
from recipe_queue.notifications.events import ProcessingEvent
from recipe_queue.schema.recipes import NoteStatus
from recipe_queue.storage.queue_repo import JobOptions, QueueJobRecord
from recipe_queue.utils.ids import note_id_for_job
from recipe_queue.workers.shared import BroadcastProcessingAction

logger = logging.getLogger(__name__)

_HTML_ACTIONS = {ActionName.CLEAN_HTML.value, ActionName.PARSE_HTML.value}


class CleanHtmlAction(Action):
  name = ActionName.CLEAN_HTML.value

  async def execute(self, data: NoteJobData, deps: WorkerDependencies, context: ActionContext) -> NoteJobData:
    cleaned = await deps.parsers.html.clean(data.content)
    logger.debug("[NOTES] job=%s cleaned HTML %d -> %d chars", context.job_id, len(data.content), len(cleaned))
    return data.model_copy(update={"content": cleaned})


class ParseHtmlAction(Action):
  name = ActionName.PARSE_HTML.value

  async def execute(self, data: NoteJobData, deps: WorkerDependencies, context: ActionContext) -> NoteJobData:
    parsed = await deps.parsers.html.parse(data.content)
    logger.info("[NOTES] job=%s parsed '%s': %d ingredients, %d instructions, %d images", context.job_id, parsed.title or "untitled", len(parsed.ingredients), len(parsed.instructions), len(parsed.images))
    return data.model_copy(update={"parsed_file": parsed})


class SaveNoteAction(Action):
  name = ActionName.SAVE_NOTE.value

  async def execute(self, data: NoteJobData, deps: WorkerDependencies, context: ActionContext) -> NoteJobData:
    if data.parsed_file is None:
      raise ValidationError("save_note requires a parsed file", field="parsedFile")
    note_id = data.note_id or note_id_for_job(context.job_id)
    saved = await deps.recipes.create_note(note_id=note_id, import_id=data.import_id, parsed=data.parsed_file, file_name=data.file_name)
    context.note_id = note_id
    return data.model_copy(update={"note_id": note_id, "saved_note": saved})


class ScheduleAllFollowupTasksAction(Action):
  """Creates the note's completion counter, then enqueues one job per unit of work."""

  name = ActionName.SCHEDULE_ALL_FOLLOWUP_TASKS.value

  async def execute(self, data: NoteJobData, deps: WorkerDependencies, context: ActionContext) -> NoteJobData:
    saved = data.saved_note
    if saved is None or data.parsed_file is None or data.note_id is None:
      raise ValidationError("schedule_all_followup_tasks requires a saved note", field="savedNote")

    images = data.parsed_file.images
    categorize = deps.categorization_enabled
    total_units = len(saved.ingredient_lines) + len(saved.instruction_lines) + len(images) + (1 if categorize else 0)
    # The counter must exist before any child job can report against it.
    await deps.completion.initialize_note(data.note_id, data.import_id, total_units, html_file_name=data.file_name)

    common = {"note_id": data.note_id, "import_id": data.import_id}
    prefix = context.job_id
    scheduled = 0

    ingredients_queue = deps.queue(QueueName.INGREDIENTS)
    for position, line in enumerate(saved.ingredient_lines, start=1):
      payload = IngredientJobData(**common, ingredient_line_id=line.id, reference=line.reference, block_index=line.block_index, line_index=line.line_index, current_ingredient_index=position, total_ingredients=len(saved.ingredient_lines))
      await ingredients_queue.add("process-ingredient-line", payload.to_payload(), JobOptions(job_id=f"{prefix}:ingredient:{line.id}"))
      scheduled += 1

    instructions_queue = deps.queue(QueueName.INSTRUCTIONS)
    for position, line in enumerate(saved.instruction_lines, start=1):
      payload = InstructionJobData(**common, instruction_line_id=line.id, original_text=line.original_text, line_index=line.line_index, current_instruction_index=position, total_instructions=len(saved.instruction_lines))
      await instructions_queue.add("process-instruction-line", payload.to_payload(), JobOptions(job_id=f"{prefix}:instruction:{line.id}"))
      scheduled += 1

    if images:
      images_queue = deps.queue(QueueName.IMAGES)
      for index, source in enumerate(images):
        payload = ImageJobData(**common, image_index=index, total_images=len(images), source=source)
        await images_queue.add("process-image", payload.to_payload(), JobOptions(job_id=f"{prefix}:image:{index}"))
        scheduled += 1

    if categorize:
      payload = CategorizationJobData(**common, title=saved.title, ingredients=[line.reference for line in saved.ingredient_lines])
      await deps.queue(QueueName.CATEGORIZATION).add("process-categorization", payload.to_payload(), JobOptions(job_id=f"{prefix}:categorization"))
      scheduled += 1

    logger.info("[NOTES] job=%s note=%s scheduled %d follow-up job(s) for %d unit(s)", context.job_id, data.note_id, scheduled, total_units)
    return data.model_copy(update={"scheduled_jobs": scheduled, "total_units": total_units})


class NoteCompletionStatusAction(Action):
  """Reports how many units the note is waiting for once scheduling is done."""

  name = ActionName.NOTE_COMPLETION_STATUS.value
  retryable = False
  always_run = True

  async def execute(self, data: NoteJobData, deps: WorkerDependencies, context: ActionContext) -> NoteJobData:
    if context.processing_failure is not None or data.note_id is None:
      return data
    state = await deps.completion.get_state(data.note_id)
    if state is None or state.is_complete or not data.import_id:
      return data
    event = ProcessingEvent(
      import_id=data.import_id,
      note_id=data.note_id,
      message=f"Scheduled {data.scheduled_jobs or 0} follow-up job(s); waiting for {state.total_units - state.completed_units} unit(s)",
      context="note_scheduling",
      current_count=state.completed_units,
      total_count=state.total_units,
      indent_level=1,
    )
    await deps.broadcast(event)
    return data


class NotePipelineBuilder(PipelineBuilder):
  include_status_actions = True
  terminal_action = ActionName.NOTE_COMPLETION_STATUS.value

  def domain_actions(self, data: BaseJobData) -> list[str]:
    return [ActionName.CLEAN_HTML.value, ActionName.PARSE_HTML.value, ActionName.SAVE_NOTE.value, ActionName.SCHEDULE_ALL_FOLLOWUP_TASKS.value]


def register_note_actions(factory: ActionFactory) -> None:
  for action_class in (BroadcastProcessingAction, CleanHtmlAction, ParseHtmlAction, SaveNoteAction, ScheduleAllFollowupTasksAction, NoteCompletionStatusAction):
    factory.register(action_class.name, action_class)


class NoteWorker(BaseWorker):
  queue_name = QueueName.NOTES
  builder_class = NotePipelineBuilder

  def register_actions(self, factory: ActionFactory) -> None:
    register_note_actions(factory)

  def error_code_for(self, failure: JobFailure) -> str:
    if failure.action_name in _HTML_ACTIONS:
      return "HTML_PARSE_ERROR"
    return super().error_code_for(failure)

  async def on_job_failed(self, job: QueueJobRecord, data: BaseJobData | None, context: ActionContext, failure: JobFailure) -> None:
    """Mark the note failed, then broadcast the failure."""
    note_id = data.note_id if data is not None else context.note_id
    if note_id:
      try:
        await self.dependencies.recipes.mark_note_status(note_id, NoteStatus.FAILED, error_message=failure.classification.reason, error_code=self.error_code_for(failure))
      except Exception:  # noqa: BLE001
        logger.warning("Failed to mark note %s as failed", note_id, exc_info=True)
    await super().on_job_failed(job, data, context, failure)
