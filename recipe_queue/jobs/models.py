"""Job payloads, queue and action names, and per-execution records."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from recipe_queue.core.errors import ErrorClassification
from recipe_queue.services.contracts import CategorizationResult, ImageSource, IngredientParseResult, InstructionParseResult, ParsedHtmlFile, ProcessedImage
from recipe_queue.storage.recipes_repo import SavedNote


class QueueName(str, Enum):
  NOTES = "notes"
  INGREDIENTS = "ingredients"
  INSTRUCTIONS = "instructions"
  IMAGES = "images"
  CATEGORIZATION = "categorization"
  PATTERNS = "patterns"


class ActionName(str, Enum):
  """Registered action names. Values are the names used in logs and the factory."""

  BROADCAST_PROCESSING = "broadcast_processing"
  COMPLETION_STATUS = "completion_status"

  CLEAN_HTML = "clean_html"
  PARSE_HTML = "parse_html"
  SAVE_NOTE = "save_note"
  SCHEDULE_ALL_FOLLOWUP_TASKS = "schedule_all_followup_tasks"
  NOTE_COMPLETION_STATUS = "note_completion_status"

  UPDATE_INGREDIENT_COUNT = "update_ingredient_count"
  PROCESS_INGREDIENT_LINE = "process_ingredient_line"
  SAVE_INGREDIENT_LINE = "save_ingredient_line"
  SCHEDULE_PATTERN_TRACKING = "schedule_pattern_tracking"

  UPDATE_INSTRUCTION_COUNT = "update_instruction_count"
  PROCESS_INSTRUCTION_LINE = "process_instruction_line"
  SAVE_INSTRUCTION_LINE = "save_instruction_line"

  PROCESS_IMAGE = "process_image"
  SAVE_IMAGE = "save_image"

  PROCESS_CATEGORIZATION = "process_categorization"
  SAVE_CATEGORIZATION = "save_categorization"

  TRACK_PATTERN = "track_pattern"
  PATTERN_COMPLETION_STATUS = "pattern_completion_status"


class BaseJobData(BaseModel):
  """Fields every job payload carries. Wire form uses camelCase keys."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore")

  job_id: str | None = None
  note_id: str | None = None
  import_id: str | None = None
  metadata: dict[str, Any] = Field(default_factory=dict)

  def unit_key(self) -> str | None:
    """Key identifying this job's unit of note work, stable across retries."""
    return None

  def to_payload(self) -> dict[str, Any]:
    return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class NoteJobData(BaseJobData):
  content: str
  file_name: str | None = None
  source_url: str | None = None
  parsed_file: ParsedHtmlFile | None = None
  saved_note: SavedNote | None = None
  scheduled_jobs: int | None = None
  total_units: int | None = None

  @field_validator("content")
  @classmethod
  def _content_not_blank(cls, value: str) -> str:
    if not value.strip():
      raise ValueError("content must not be empty")
    return value


class IngredientJobData(BaseJobData):
  ingredient_line_id: str
  reference: str
  block_index: int = 0
  line_index: int
  current_ingredient_index: int | None = None
  total_ingredients: int | None = None
  parse_result: IngredientParseResult | None = None

  def unit_key(self) -> str | None:
    return f"ingredient:{self.ingredient_line_id}"


class InstructionJobData(BaseJobData):
  instruction_line_id: str
  original_text: str
  line_index: int
  current_instruction_index: int | None = None
  total_instructions: int | None = None
  parse_result: InstructionParseResult | None = None

  def unit_key(self) -> str | None:
    return f"instruction:{self.instruction_line_id}"


class ImageJobData(BaseJobData):
  image_index: int
  total_images: int | None = None
  source: ImageSource
  processed_image: ProcessedImage | None = None
  saved_image_id: str | None = None

  def unit_key(self) -> str | None:
    return f"image:{self.image_index}"


class CategorizationJobData(BaseJobData):
  title: str | None = None
  ingredients: list[str] = Field(default_factory=list)
  result: CategorizationResult | None = None

  def unit_key(self) -> str | None:
    return "categorization"


class PatternTrackingJobData(BaseJobData):
  rule_ids: list[str]
  example_line: str | None = None
  occurrence_count: int | None = None

  @field_validator("rule_ids")
  @classmethod
  def _rule_ids_present(cls, value: list[str]) -> list[str]:
    if not value:
      raise ValueError("ruleIds must contain at least one rule")
    return value


JOB_DATA_MODELS: dict[QueueName, type[BaseJobData]] = {
  QueueName.NOTES: NoteJobData,
  QueueName.INGREDIENTS: IngredientJobData,
  QueueName.INSTRUCTIONS: InstructionJobData,
  QueueName.IMAGES: ImageJobData,
  QueueName.CATEGORIZATION: CategorizationJobData,
  QueueName.PATTERNS: PatternTrackingJobData,
}


@dataclass
class ActionContext:
  """Per-execution context owned by the worker for one job."""

  job_id: str
  queue_name: str
  worker_name: str
  operation: str
  attempt_number: int
  retry_count: int
  start_time: float
  note_id: str | None = None
  import_id: str | None = None
  processing_failure: ErrorClassification | None = None

  def elapsed_ms(self) -> float:
    return (time.monotonic() - self.start_time) * 1000


@dataclass(frozen=True)
class ActionResult:
  """Uniform outcome of one action execution."""

  success: bool
  duration_ms: float
  data: Any = None
  error: BaseException | None = None
