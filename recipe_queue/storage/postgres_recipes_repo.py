"""Postgres-backed recipe repository using SQLAlchemy."""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert

from recipe_queue.core.database import Database
from recipe_queue.schema.recipes import Note, NoteCategory, NoteImage, NoteStatus, ParsedIngredientLine, ParsedInstructionLine, ParsingPattern, ParsingPatternOccurrence
from recipe_queue.services.contracts import CategorizationResult, IngredientParseResult, InstructionParseResult, ParsedHtmlFile, ProcessedImage, dump_contract
from recipe_queue.storage.recipes_repo import SavedIngredientLine, SavedInstructionLine, SavedNote
from recipe_queue.utils.db_retry import execute_with_retry
from recipe_queue.utils.ids import generate_record_id

logger = logging.getLogger(__name__)

_CLEAN_PARSE_STATUSES = ("CORRECT", "PENDING")


def pattern_key(rule_ids: list[str]) -> str:
  return "|".join(rule_ids)


class PostgresRecipeRepository:
  """Persist notes, parsed lines, images, categories and patterns to Postgres."""

  def __init__(self, database: Database) -> None:
    self._database = database

  async def create_note(self, *, note_id: str, import_id: str | None, parsed: ParsedHtmlFile, file_name: str | None) -> SavedNote:
    async with self._database.session() as session:
      existing = await session.get(Note, note_id)
      if existing is not None:
        # Queue retry of a note job that already saved: return what is stored.
        return await self._load_saved_note(note_id)

      session.add(Note(id=note_id, import_id=import_id, title=parsed.title, html_file_name=file_name, source_url=parsed.source_url, contents=parsed.contents, status=NoteStatus.PROCESSING))
      ingredient_lines = [SavedIngredientLine(id=generate_record_id(), reference=item.reference, block_index=item.block_index, line_index=item.line_index) for item in parsed.ingredients]
      instruction_lines = [SavedInstructionLine(id=generate_record_id(), original_text=item.original_text, line_index=item.line_index) for item in parsed.instructions]
      # Flush the note first so children satisfy the foreign key.
      await session.flush()
      session.add_all([ParsedIngredientLine(id=line.id, note_id=note_id, block_index=line.block_index, line_index=line.line_index, reference=line.reference) for line in ingredient_lines])
      session.add_all([ParsedInstructionLine(id=line.id, note_id=note_id, line_index=line.line_index, original_text=line.original_text) for line in instruction_lines])
      await session.commit()
    logger.info("Saved note %s with %d ingredient and %d instruction lines", note_id, len(ingredient_lines), len(instruction_lines))
    return SavedNote(note_id=note_id, title=parsed.title, ingredient_lines=ingredient_lines, instruction_lines=instruction_lines)

  async def _load_saved_note(self, note_id: str) -> SavedNote:
    async with self._database.session() as session:
      note = await session.get(Note, note_id)
      ingredients = (await session.execute(select(ParsedIngredientLine).where(ParsedIngredientLine.note_id == note_id).order_by(ParsedIngredientLine.block_index, ParsedIngredientLine.line_index))).scalars().all()
      instructions = (await session.execute(select(ParsedInstructionLine).where(ParsedInstructionLine.note_id == note_id).order_by(ParsedInstructionLine.line_index))).scalars().all()
    return SavedNote(
      note_id=note_id,
      title=note.title if note is not None else None,
      ingredient_lines=[SavedIngredientLine(id=row.id, reference=row.reference, block_index=row.block_index, line_index=row.line_index) for row in ingredients],
      instruction_lines=[SavedInstructionLine(id=row.id, original_text=row.original_text, line_index=row.line_index) for row in instructions],
    )

  async def update_ingredient_line(self, line_id: str, *, result: IngredientParseResult) -> None:
    async with self._database.session() as session:
      stmt = update(ParsedIngredientLine).where(ParsedIngredientLine.id == line_id).values(parse_status=result.parse_status, rule_ids_json=list(result.rule_ids), segments_json=[dump_contract(segment) for segment in result.segments])
      await session.execute(stmt)
      await session.commit()

  async def update_instruction_line(self, line_id: str, *, result: InstructionParseResult) -> None:
    async with self._database.session() as session:
      stmt = update(ParsedInstructionLine).where(ParsedInstructionLine.id == line_id).values(parse_status=result.parse_status, normalized_text=result.normalized_text)
      await session.execute(stmt)
      await session.commit()

  async def save_image(self, *, note_id: str, image_index: int, image: ProcessedImage) -> str:
    async with self._database.session() as session:
      stmt = (
        insert(NoteImage)
        .values(id=generate_record_id(), note_id=note_id, image_index=image_index, storage_key=image.storage_key, content_type=image.content_type, width=image.width, height=image.height, size_bytes=image.size_bytes)
        .on_conflict_do_update(constraint="ux_note_images_note_index", set_={"storage_key": image.storage_key, "content_type": image.content_type, "width": image.width, "height": image.height, "size_bytes": image.size_bytes})
        .returning(NoteImage.id)
      )
      image_id = (await session.execute(stmt)).scalar_one()
      await session.commit()
    return image_id

  async def save_categorization(self, *, note_id: str, result: CategorizationResult) -> None:
    async with self._database.session() as session:
      stmt = insert(NoteCategory).values(note_id=note_id, category=result.category, tags_json=list(result.tags))
      stmt = stmt.on_conflict_do_update(index_elements=[NoteCategory.note_id], set_={"category": stmt.excluded.category, "tags_json": stmt.excluded.tags_json, "updated_at": func.now()})
      await session.execute(stmt)
      await session.commit()

  async def record_pattern(self, *, rule_ids: list[str], example_line: str | None, occurrence_key: str | None = None) -> int:
    key = pattern_key(rule_ids)

    async def _record() -> int:
      async with self._database.session() as session:
        stmt = insert(ParsingPattern).values(pattern_key=key, rule_ids_json=list(rule_ids), occurrence_count=1, example_line=example_line)
        stmt = stmt.on_conflict_do_update(index_elements=[ParsingPattern.pattern_key], set_={"occurrence_count": ParsingPattern.occurrence_count + 1, "updated_at": func.now()}).returning(ParsingPattern.occurrence_count)
        count = (await session.execute(stmt)).scalar_one()
        if occurrence_key is not None:
          # A redelivered tracking job rolls its increment back and reports the stored count.
          claim = insert(ParsingPatternOccurrence).values(pattern_key=key, occurrence_key=occurrence_key).on_conflict_do_nothing(constraint="ux_parsing_pattern_occurrences_pattern_occurrence").returning(ParsingPatternOccurrence.id)
          if (await session.execute(claim)).scalar_one_or_none() is None:
            await session.rollback()
            stored = (await session.execute(select(ParsingPattern.occurrence_count).where(ParsingPattern.pattern_key == key))).scalar_one()
            logger.info("Pattern %s already counted for %s", key, occurrence_key)
            return int(stored)
        await session.commit()
        return int(count)

    return await execute_with_retry(operation_name="record_pattern", func=_record)

  async def mark_note_status(self, note_id: str, status: NoteStatus, *, error_message: str | None = None, error_code: str | None = None) -> None:
    async with self._database.session() as session:
      await session.execute(update(Note).where(Note.id == note_id).values(status=status, error_message=error_message, error_code=error_code))
      await session.commit()

  async def refresh_parsing_error_count(self, note_id: str) -> int:
    async with self._database.session() as session:
      errors = select(func.count()).select_from(ParsedIngredientLine).where(ParsedIngredientLine.note_id == note_id, ParsedIngredientLine.parse_status.not_in(_CLEAN_PARSE_STATUSES)).scalar_subquery()
      stmt = update(Note).where(Note.id == note_id).values(parsing_error_count=errors).returning(Note.parsing_error_count)
      count = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
    return int(count or 0)

  async def get_note_title(self, note_id: str) -> str | None:
    async with self._database.session() as session:
      return (await session.execute(select(Note.title).where(Note.id == note_id))).scalar_one_or_none()
