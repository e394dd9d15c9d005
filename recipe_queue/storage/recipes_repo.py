"""Storage interfaces for notes and their parsed children."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from recipe_queue.schema.recipes import NoteStatus
from recipe_queue.services.contracts import CategorizationResult, IngredientParseResult, InstructionParseResult, ParsedHtmlFile, ProcessedImage


@dataclass(frozen=True)
class SavedIngredientLine:
  id: str
  reference: str
  block_index: int
  line_index: int


@dataclass(frozen=True)
class SavedInstructionLine:
  id: str
  original_text: str
  line_index: int


@dataclass(frozen=True)
class SavedNote:
  """Identifiers assigned when a parsed note is persisted."""

  note_id: str
  title: str | None
  ingredient_lines: list[SavedIngredientLine] = field(default_factory=list)
  instruction_lines: list[SavedInstructionLine] = field(default_factory=list)


class RecipeRepository(Protocol):
  """Repository contract for recipe notes."""

  async def create_note(self, *, note_id: str, import_id: str | None, parsed: ParsedHtmlFile, file_name: str | None) -> SavedNote:
    """Persist a parsed note with pending ingredient and instruction lines. Idempotent on note_id."""

  async def update_ingredient_line(self, line_id: str, *, result: IngredientParseResult) -> None:
    """Store the parse result for one ingredient line."""

  async def update_instruction_line(self, line_id: str, *, result: InstructionParseResult) -> None:
    """Store the parse result for one instruction line."""

  async def save_image(self, *, note_id: str, image_index: int, image: ProcessedImage) -> str:
    """Upsert the processed image for a note slot and return its id."""

  async def save_categorization(self, *, note_id: str, result: CategorizationResult) -> None:
    """Upsert the note's category and tags."""

  async def record_pattern(self, *, rule_ids: list[str], example_line: str | None, occurrence_key: str | None = None) -> int:
    """Count one more occurrence of a rule sequence and return the new count.

    A repeated ``occurrence_key`` for the same sequence is not counted again.
    """

  async def mark_note_status(self, note_id: str, status: NoteStatus, *, error_message: str | None = None, error_code: str | None = None) -> None:
    """Set the note's processing status."""

  async def refresh_parsing_error_count(self, note_id: str) -> int:
    """Recount ingredient lines that did not parse cleanly and store the total on the note."""

  async def get_note_title(self, note_id: str) -> str | None:
    """Title used in completion messages."""
