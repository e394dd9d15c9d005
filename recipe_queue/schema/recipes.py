from __future__ import annotations

import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from recipe_queue.core.database import Base


class NoteStatus(str, Enum):
  PENDING = "PENDING"
  PROCESSING = "PROCESSING"
  COMPLETED = "COMPLETED"
  FAILED = "FAILED"


class Note(Base):
  __tablename__ = "notes"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  import_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  title: Mapped[str | None] = mapped_column(String, nullable=True)
  html_file_name: Mapped[str | None] = mapped_column(String, nullable=True)
  source_url: Mapped[str | None] = mapped_column(String, nullable=True)
  contents: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[NoteStatus] = mapped_column(SAEnum(NoteStatus, name="note_status"), nullable=False, default=NoteStatus.PENDING)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_code: Mapped[str | None] = mapped_column(String, nullable=True)
  parsing_error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ParsedIngredientLine(Base):
  __tablename__ = "parsed_ingredient_lines"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True)
  block_index: Mapped[int] = mapped_column(Integer, nullable=False)
  line_index: Mapped[int] = mapped_column(Integer, nullable=False)
  reference: Mapped[str] = mapped_column(Text, nullable=False)
  parse_status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
  rule_ids_json: Mapped[list | None] = mapped_column(JSONB, nullable=True)
  segments_json: Mapped[list | None] = mapped_column(JSONB, nullable=True)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ParsedInstructionLine(Base):
  __tablename__ = "parsed_instruction_lines"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True)
  line_index: Mapped[int] = mapped_column(Integer, nullable=False)
  original_text: Mapped[str] = mapped_column(Text, nullable=False)
  normalized_text: Mapped[str | None] = mapped_column(Text, nullable=True)
  parse_status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class NoteImage(Base):
  __tablename__ = "note_images"
  __table_args__ = (UniqueConstraint("note_id", "image_index", name="ux_note_images_note_index"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True)
  image_index: Mapped[int] = mapped_column(Integer, nullable=False)
  storage_key: Mapped[str] = mapped_column(String, nullable=False)
  content_type: Mapped[str | None] = mapped_column(String, nullable=True)
  width: Mapped[int | None] = mapped_column(Integer, nullable=True)
  height: Mapped[int | None] = mapped_column(Integer, nullable=True)
  size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class NoteCategory(Base):
  __tablename__ = "note_categories"

  note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True)
  category: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  tags_json: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ParsingPattern(Base):
  __tablename__ = "parsing_patterns"

  pattern_key: Mapped[str] = mapped_column(String, primary_key=True)
  rule_ids_json: Mapped[list] = mapped_column(JSONB, nullable=False)
  occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  example_line: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ParsingPatternOccurrence(Base):
  """One counted occurrence of a pattern; the key is the tracking job id."""

  __tablename__ = "parsing_pattern_occurrences"
  __table_args__ = (UniqueConstraint("pattern_key", "occurrence_key", name="ux_parsing_pattern_occurrences_pattern_occurrence"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  pattern_key: Mapped[str] = mapped_column(ForeignKey("parsing_patterns.pattern_key", ondelete="CASCADE"), nullable=False)
  occurrence_key: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
