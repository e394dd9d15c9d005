"""Storage interfaces for per-note completion counters."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class CounterSnapshot:
  """State of one note's completion counter."""

  note_id: str
  import_id: str | None
  total_units: int
  completed_units: int
  failed_units: int = 0
  html_file_name: str | None = None
  completed_at: datetime.datetime | None = None

  @property
  def is_complete(self) -> bool:
    return self.completed_units >= self.total_units


@dataclass(frozen=True)
class IncrementOutcome:
  """Result of one atomic increment attempt.

  ``transitioned`` is true only for the increment whose returned value reached the total.
  ``duplicate`` marks calls that changed nothing: the counter was already full or the
  unit key had been recorded before.
  """

  snapshot: CounterSnapshot
  transitioned: bool
  duplicate: bool


class CompletionCounterRepository(Protocol):
  """Repository contract for completion counters."""

  async def create_counter(self, *, note_id: str, import_id: str | None, total_units: int, html_file_name: str | None = None) -> tuple[CounterSnapshot, bool]:
    """Create the counter if missing; return it and whether this call created it."""

  async def increment(self, note_id: str, *, unit_key: str | None = None, succeeded: bool = True) -> IncrementOutcome | None:
    """Atomically add one completed unit; None when the note has no counter."""

  async def get(self, note_id: str) -> CounterSnapshot | None:
    """Fetch a counter without modifying it."""
