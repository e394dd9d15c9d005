"""Instruction worker: normalize one instruction line and save it."""

from __future__ import annotations

import logging

from recipe_queue.core.errors import ValidationError
from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionContext, ActionName, BaseJobData, InstructionJobData, QueueName
from recipe_queue.jobs.pipeline import PipelineBuilder
from recipe_queue.jobs.worker import BaseWorker
from recipe_queue.workers.shared import CompletionStatusAction, UpdateCountAction

logger = logging.getLogger(__name__)


class UpdateInstructionCountAction(UpdateCountAction):
  name = ActionName.UPDATE_INSTRUCTION_COUNT.value
  current_field = "current_instruction_index"
  total_field = "total_instructions"
  noun = "instructions"
  event_context = "instruction_processing"


class ProcessInstructionLineAction(Action):
  name = ActionName.PROCESS_INSTRUCTION_LINE.value

  async def execute(self, data: InstructionJobData, deps: WorkerDependencies, context: ActionContext) -> InstructionJobData:
    result = await deps.parsers.instruction.parse(data.original_text)
    logger.debug("[INSTRUCTIONS] job=%s line=%s parsed as %s", context.job_id, data.instruction_line_id, result.parse_status)
    return data.model_copy(update={"parse_result": result})


class SaveInstructionLineAction(Action):
  name = ActionName.SAVE_INSTRUCTION_LINE.value

  async def execute(self, data: InstructionJobData, deps: WorkerDependencies, context: ActionContext) -> InstructionJobData:
    if data.parse_result is None:
      raise ValidationError("save_instruction_line requires a parse result", field="parseResult")
    await deps.recipes.update_instruction_line(data.instruction_line_id, result=data.parse_result)
    return data


class InstructionPipelineBuilder(PipelineBuilder):
  count_action = ActionName.UPDATE_INSTRUCTION_COUNT.value
  count_fields = ("current_instruction_index", "total_instructions")

  def domain_actions(self, data: BaseJobData) -> list[str]:
    return [ActionName.PROCESS_INSTRUCTION_LINE.value, ActionName.SAVE_INSTRUCTION_LINE.value]


def register_instruction_actions(factory: ActionFactory) -> None:
  for action_class in (UpdateInstructionCountAction, ProcessInstructionLineAction, SaveInstructionLineAction, CompletionStatusAction):
    factory.register(action_class.name, action_class)


class InstructionWorker(BaseWorker):
  queue_name = QueueName.INSTRUCTIONS
  builder_class = InstructionPipelineBuilder

  def register_actions(self, factory: ActionFactory) -> None:
    register_instruction_actions(factory)
