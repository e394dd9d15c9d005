"""Postgres-backed completion counters with a single-statement increment."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Update, case, func, select, update
from sqlalchemy.dialects.postgresql import insert

from recipe_queue.core.database import Database
from recipe_queue.schema.completion import NoteCompletionCounter, NoteCompletionUnit
from recipe_queue.storage.completion_repo import CounterSnapshot, IncrementOutcome
from recipe_queue.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)

_RETURNING = (
  NoteCompletionCounter.note_id,
  NoteCompletionCounter.import_id,
  NoteCompletionCounter.total_units,
  NoteCompletionCounter.completed_units,
  NoteCompletionCounter.failed_units,
  NoteCompletionCounter.html_file_name,
  NoteCompletionCounter.completed_at,
)


def _snapshot(row: Any) -> CounterSnapshot:
  return CounterSnapshot(
    note_id=row.note_id,
    import_id=row.import_id,
    total_units=row.total_units,
    completed_units=row.completed_units,
    failed_units=row.failed_units,
    html_file_name=row.html_file_name,
    completed_at=row.completed_at,
  )


def build_increment_statement(note_id: str, *, succeeded: bool) -> Update:
  """UPDATE ... RETURNING that adds one unit unless the counter is already full.

  SET expressions see the pre-update row, so ``completed_units + 1 = total_units`` is the
  increment that completes the note.
  """
  reaches_total = NoteCompletionCounter.completed_units + 1 >= NoteCompletionCounter.total_units
  return (
    update(NoteCompletionCounter)
    .where(NoteCompletionCounter.note_id == note_id, NoteCompletionCounter.completed_units < NoteCompletionCounter.total_units)
    .values(
      completed_units=NoteCompletionCounter.completed_units + 1,
      failed_units=NoteCompletionCounter.failed_units + (0 if succeeded else 1),
      completed_at=case((reaches_total, func.now()), else_=NoteCompletionCounter.completed_at),
      updated_at=func.now(),
    )
    .returning(*_RETURNING)
  )


def build_unit_recovery_statement(note_id: str, unit_key: str) -> Update:
  """Mark a unit recorded as failed as succeeded; returns a row only when it flipped."""
  return (
    update(NoteCompletionUnit)
    .where(NoteCompletionUnit.note_id == note_id, NoteCompletionUnit.unit_key == unit_key, NoteCompletionUnit.succeeded.is_(False))
    .values(succeeded=True)
    .returning(NoteCompletionUnit.id)
  )


def build_failed_unit_correction_statement(note_id: str) -> Update:
  return (
    update(NoteCompletionCounter)
    .where(NoteCompletionCounter.note_id == note_id, NoteCompletionCounter.failed_units > 0)
    .values(failed_units=NoteCompletionCounter.failed_units - 1, updated_at=func.now())
    .returning(*_RETURNING)
  )


class PostgresCompletionRepository:
  """Persist note completion counters to Postgres."""

  def __init__(self, database: Database) -> None:
    self._database = database

  async def create_counter(self, *, note_id: str, import_id: str | None, total_units: int, html_file_name: str | None = None) -> tuple[CounterSnapshot, bool]:
    if total_units < 0:
      raise ValueError("total_units must be >= 0")
    async with self._database.session() as session:
      stmt = (
        insert(NoteCompletionCounter)
        .values(note_id=note_id, import_id=import_id, html_file_name=html_file_name, total_units=total_units, completed_units=0, failed_units=0, completed_at=func.now() if total_units == 0 else None)
        .on_conflict_do_nothing(index_elements=[NoteCompletionCounter.note_id])
        .returning(*_RETURNING)
      )
      row = (await session.execute(stmt)).one_or_none()
      await session.commit()
      if row is not None:
        return _snapshot(row), True
      existing = (await session.execute(select(*_RETURNING).where(NoteCompletionCounter.note_id == note_id))).one()
      return _snapshot(existing), False

  async def increment(self, note_id: str, *, unit_key: str | None = None, succeeded: bool = True) -> IncrementOutcome | None:
    async def _increment() -> IncrementOutcome | None:
      async with self._database.session() as session:
        current = (await session.execute(select(*_RETURNING).where(NoteCompletionCounter.note_id == note_id))).one_or_none()
        if current is None:
          return None

        if unit_key is not None:
          # Same transaction as the increment, so a rolled-back increment forgets the key too.
          claim = insert(NoteCompletionUnit).values(note_id=note_id, unit_key=unit_key, succeeded=succeeded).on_conflict_do_nothing(constraint="ux_note_completion_units_note_unit").returning(NoteCompletionUnit.id)
          if (await session.execute(claim)).scalar_one_or_none() is None:
            # A later success for a unit counted as failed moves it out of failed_units.
            if succeeded and (await session.execute(build_unit_recovery_statement(note_id, unit_key))).scalar_one_or_none() is not None:
              corrected = (await session.execute(build_failed_unit_correction_statement(note_id))).one_or_none()
              await session.commit()
              logger.info("Unit %s of note %s succeeded after an earlier failure", unit_key, note_id)
              return IncrementOutcome(snapshot=_snapshot(corrected or current), transitioned=False, duplicate=True)
            await session.rollback()
            return IncrementOutcome(snapshot=_snapshot(current), transitioned=False, duplicate=True)

        row = (await session.execute(build_increment_statement(note_id, succeeded=succeeded))).one_or_none()
        await session.commit()
        if row is None:
          # Counter already full: late or duplicate delivery.
          latest = (await session.execute(select(*_RETURNING).where(NoteCompletionCounter.note_id == note_id))).one()
          return IncrementOutcome(snapshot=_snapshot(latest), transitioned=False, duplicate=True)
        snapshot = _snapshot(row)
        return IncrementOutcome(snapshot=snapshot, transitioned=snapshot.completed_units == snapshot.total_units, duplicate=False)

    return await execute_with_retry(operation_name="completion_increment", func=_increment)

  async def get(self, note_id: str) -> CounterSnapshot | None:
    async with self._database.session() as session:
      row = (await session.execute(select(*_RETURNING).where(NoteCompletionCounter.note_id == note_id))).one_or_none()
    return _snapshot(row) if row is not None else None
