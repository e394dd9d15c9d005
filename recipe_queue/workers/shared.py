"""Actions shared by several workers: status broadcasts, running counts, completion checks."""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData
from recipe_queue.notifications.events import ProcessingEvent, ProgressEvent

logger = logging.getLogger(__name__)


class BroadcastProcessingAction(Action):
  name = ActionName.BROADCAST_PROCESSING.value
  retryable = False

  async def execute(self, data: BaseJobData, deps: WorkerDependencies, context: ActionContext) -> BaseJobData:
    if not data.import_id:
      return data
    event = ProcessingEvent(import_id=data.import_id, note_id=data.note_id, message=f"Processing {context.operation}", context=f"{context.operation}_processing", indent_level=1, metadata={"jobId": context.job_id})
    await deps.broadcast(event)
    return data


class UpdateCountAction(Action):
  """Broadcasts ``current/total`` for one unit type. Subclasses name the fields."""

  current_field: ClassVar[str]
  total_field: ClassVar[str]
  noun: ClassVar[str]
  event_context: ClassVar[str]
  retryable = False

  async def execute(self, data: BaseJobData, deps: WorkerDependencies, context: ActionContext) -> BaseJobData:
    current: int = getattr(data, self.current_field)
    total: int = getattr(data, self.total_field)
    if not data.import_id:
      return data
    event = ProgressEvent(
      import_id=data.import_id,
      note_id=data.note_id,
      message=f"Processing {current}/{total} {self.noun}",
      context=self.event_context,
      current_count=current,
      total_count=total,
      indent_level=1,
      metadata={"isComplete": current >= total},
    )
    await deps.broadcast(event)
    return data


class CompletionStatusAction(Action):
  """Records this job's unit against its note, even when processing failed earlier."""

  name = ActionName.COMPLETION_STATUS.value
  retryable = False
  always_run = True

  async def execute(self, data: BaseJobData, deps: WorkerDependencies, context: ActionContext) -> Any:
    if not data.note_id:
      logger.debug("[%s] job=%s has no note id; nothing to record", context.operation.upper(), context.job_id)
      return data
    succeeded = context.processing_failure is None
    state = await deps.completion.record_unit_completion(data.note_id, unit_key=data.unit_key(), succeeded=succeeded)
    if state is not None:
      logger.info("[%s] job=%s note=%s progress %d/%d%s", context.operation.upper(), context.job_id, data.note_id, state.completed_units, state.total_units, " (complete)" if state.transitioned else "")
    return data
