from __future__ import annotations

import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from recipe_queue.core.database import Base


class NoteCompletionCounter(Base):
  __tablename__ = "note_completion_counters"
  __table_args__ = (
    CheckConstraint("total_units >= 0", name="ck_note_completion_total_non_negative"),
    CheckConstraint("completed_units <= total_units", name="ck_note_completion_not_over_total"),
  )

  note_id: Mapped[str] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True)
  import_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  html_file_name: Mapped[str | None] = mapped_column(String, nullable=True)
  total_units: Mapped[int] = mapped_column(Integer, nullable=False)
  completed_units: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  failed_units: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class NoteCompletionUnit(Base):
  __tablename__ = "note_completion_units"
  __table_args__ = (UniqueConstraint("note_id", "unit_key", name="ux_note_completion_units_note_unit"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  note_id: Mapped[str] = mapped_column(ForeignKey("note_completion_counters.note_id", ondelete="CASCADE"), nullable=False, index=True)
  unit_key: Mapped[str] = mapped_column(String, nullable=False)
  succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
