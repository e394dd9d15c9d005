"""Fan-in of unit completions into a single note-completed transition."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from recipe_queue.core.errors import CompletionTrackingError
from recipe_queue.notifications.contracts import BroadcastResult, StatusBroadcaster
from recipe_queue.notifications.events import CompletedEvent, StatusEvent
from recipe_queue.notifications.service import safe_broadcast
from recipe_queue.schema.recipes import NoteStatus
from recipe_queue.storage.completion_repo import CompletionCounterRepository, CounterSnapshot
from recipe_queue.storage.recipes_repo import RecipeRepository

logger = logging.getLogger(__name__)

COMPLETION_MESSAGE = "Note processing completed successfully"
COMPLETION_CONTEXT = "note_completion"


@dataclass(frozen=True)
class CompletionState:
  """Counter state returned to callers of the tracker."""

  note_id: str
  completed_units: int
  total_units: int
  is_complete: bool
  import_id: str | None = None
  failed_units: int = 0
  transitioned: bool = False
  duplicate: bool = False

  @classmethod
  def from_snapshot(cls, snapshot: CounterSnapshot, *, transitioned: bool = False, duplicate: bool = False) -> CompletionState:
    return cls(note_id=snapshot.note_id, completed_units=snapshot.completed_units, total_units=snapshot.total_units, is_complete=snapshot.is_complete, import_id=snapshot.import_id, failed_units=snapshot.failed_units, transitioned=transitioned, duplicate=duplicate)


class CompletionTracker:
  """Records finished units per note and fires the completed event exactly once.

  All coordination goes through the repository's atomic increment: the call whose increment
  returns ``completed == total`` is the only one that broadcasts. Broadcast and status-update
  failures are logged and never propagate, so bookkeeping always advances.
  """

  def __init__(self, *, repository: CompletionCounterRepository, broadcaster: StatusBroadcaster, recipes: RecipeRepository | None = None) -> None:
    self._repository = repository
    self._broadcaster = broadcaster
    self._recipes = recipes

  async def initialize_note(self, note_id: str, import_id: str | None, total_units: int, *, html_file_name: str | None = None) -> CompletionState:
    """Create the note's counter. A note with no units is complete immediately."""
    snapshot, created = await self._repository.create_counter(note_id=note_id, import_id=import_id, total_units=total_units, html_file_name=html_file_name)
    if not created:
      logger.info("Completion counter for note %s already exists (%d/%d)", note_id, snapshot.completed_units, snapshot.total_units)
      return CompletionState.from_snapshot(snapshot, duplicate=True)

    logger.info("Tracking completion for note %s: %d unit(s)", note_id, total_units)
    if snapshot.total_units == 0:
      await self._on_note_completed(snapshot)
      return CompletionState.from_snapshot(snapshot, transitioned=True)
    return CompletionState.from_snapshot(snapshot)

  async def record_unit_completion(self, note_id: str, *, unit_key: str | None = None, succeeded: bool = True) -> CompletionState | None:
    """Count one finished unit and return the post-increment state; None for an untracked note."""
    try:
      outcome = await self._repository.increment(note_id, unit_key=unit_key, succeeded=succeeded)
    except Exception as exc:
      raise CompletionTrackingError(f"Failed to record completion for note {note_id}: {exc}") from exc

    if outcome is None:
      logger.warning("No completion counter for note %s; unit %s not recorded", note_id, unit_key or "-")
      return None

    snapshot = outcome.snapshot
    if outcome.duplicate:
      logger.info("Ignoring duplicate completion for note %s (unit=%s, %d/%d)", note_id, unit_key or "-", snapshot.completed_units, snapshot.total_units)
      return CompletionState.from_snapshot(snapshot, duplicate=True)

    logger.debug("Note %s progress %d/%d (unit=%s, succeeded=%s)", note_id, snapshot.completed_units, snapshot.total_units, unit_key or "-", succeeded)
    if outcome.transitioned:
      await self._on_note_completed(snapshot)
    return CompletionState.from_snapshot(snapshot, transitioned=outcome.transitioned)

  async def get_state(self, note_id: str) -> CompletionState | None:
    snapshot = await self._repository.get(note_id)
    return CompletionState.from_snapshot(snapshot) if snapshot is not None else None

  async def _on_note_completed(self, snapshot: CounterSnapshot) -> None:
    logger.info("Note %s completed: %d unit(s), %d failed", snapshot.note_id, snapshot.total_units, snapshot.failed_units)
    title: str | None = None
    parsing_errors: int | None = None
    if self._recipes is not None:
      try:
        await self._recipes.mark_note_status(snapshot.note_id, NoteStatus.COMPLETED)
        parsing_errors = await self._recipes.refresh_parsing_error_count(snapshot.note_id)
        title = await self._recipes.get_note_title(snapshot.note_id)
      except Exception:  # noqa: BLE001
        logger.warning("Failed to finalize note %s after completion", snapshot.note_id, exc_info=True)

    if not snapshot.import_id:
      logger.info("Note %s has no import id; skipping completion broadcast", snapshot.note_id)
      return

    metadata: dict[str, object] = {"totalUnits": snapshot.total_units, "completedUnits": snapshot.completed_units, "failedUnits": snapshot.failed_units}
    if title is not None:
      metadata["noteTitle"] = title
    if parsing_errors is not None:
      metadata["parsingErrors"] = parsing_errors
    if snapshot.html_file_name is not None:
      metadata["htmlFileName"] = snapshot.html_file_name
    event = CompletedEvent(import_id=snapshot.import_id, note_id=snapshot.note_id, message=COMPLETION_MESSAGE, context=COMPLETION_CONTEXT, indent_level=0, metadata=metadata)
    await self.broadcast(event)

  async def broadcast(self, event: StatusEvent) -> BroadcastResult:
    return await safe_broadcast(self._broadcaster, event)
