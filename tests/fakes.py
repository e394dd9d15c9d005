"""In-memory queues, repositories and collaborators used by the tests."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime, timedelta
from typing import Any

from recipe_queue.jobs.retry import RetryPolicy
from recipe_queue.notifications.contracts import BroadcastResult
from recipe_queue.notifications.events import StatusEvent
from recipe_queue.schema.recipes import NoteStatus
from recipe_queue.services.contracts import CategorizationResult, ImageSource, IngredientParseResult, InstructionParseResult, ParsedHtmlFile, ParsedIngredient, ParsedInstruction, ProcessedImage
from recipe_queue.services.parsers import ParserSuite, PassthroughInstructionParser
from recipe_queue.storage.completion_repo import CounterSnapshot, IncrementOutcome
from recipe_queue.storage.queue_repo import JobOptions, QueueJobRecord
from recipe_queue.storage.recipes_repo import SavedIngredientLine, SavedInstructionLine, SavedNote
from recipe_queue.utils.ids import generate_job_id


class InMemoryJobQueue:
  """Queue fake with the same retry and dead-letter rules as the Postgres queue."""

  def __init__(self, name: str, *, retry_policy: RetryPolicy | None = None, default_attempts: int = 3) -> None:
    self.name = name
    self.retry_policy = retry_policy or RetryPolicy()
    self.default_attempts = default_attempts
    self.jobs: dict[str, QueueJobRecord] = {}
    self.removed: list[str] = []
    self.retry_delays_ms: list[float] = []
    self.released: list[str] = []
    self.closed = False

  async def add(self, job_name: str, data: dict[str, Any], options: JobOptions | None = None) -> QueueJobRecord:
    options = options or JobOptions()
    if options.job_id is not None and options.job_id in self.jobs:
      return self.jobs[options.job_id]
    now = datetime.now(UTC)
    record = QueueJobRecord(
      id=options.job_id or generate_job_id(),
      queue_name=self.name,
      job_name=job_name,
      data=dict(data),
      status="waiting",
      attempts_made=0,
      max_attempts=options.attempts or self.default_attempts,
      priority=options.priority,
      backoff_ms=options.backoff_ms,
      available_at=now + timedelta(milliseconds=options.delay_ms),
      created_at=now,
    )
    self.jobs[record.id] = record
    return record

  async def claim(self, *, worker_id: str) -> QueueJobRecord | None:
    now = datetime.now(UTC)
    waiting = [job for job in self.jobs.values() if job.status == "waiting" and (job.available_at is None or job.available_at <= now)]
    if self.closed or not waiting:
      return None
    job = sorted(waiting, key=lambda item: -item.priority)[0]
    claimed = dataclasses.replace(job, status="active", attempts_made=job.attempts_made + 1)
    self.jobs[job.id] = claimed
    return claimed

  async def complete(self, job_id: str, *, result: dict[str, Any] | None = None) -> None:
    self.jobs[job_id] = dataclasses.replace(self.jobs[job_id], status="completed", result=result)

  async def fail(self, job_id: str, *, error: str, requeue: bool) -> QueueJobRecord | None:
    job = self.jobs[job_id]
    if requeue and job.attempts_made < job.max_attempts:
      delay_ms = self.retry_policy.compute_backoff_ms(max(job.attempts_made - 1, 0))
      self.retry_delays_ms.append(delay_ms)
      # Available immediately so tests can claim the retry without sleeping.
      updated = dataclasses.replace(job, status="waiting", last_error=error, available_at=datetime.now(UTC))
    else:
      updated = dataclasses.replace(job, status="failed", last_error=error)
    self.jobs[job_id] = updated
    return updated

  async def release(self, job_id: str) -> None:
    self.released.append(job_id)
    job = self.jobs.get(job_id)
    if job is not None and job.status == "active":
      self.jobs[job_id] = dataclasses.replace(job, status="waiting", attempts_made=max(job.attempts_made - 1, 0))

  async def counts(self) -> dict[str, int]:
    counts = {"waiting": 0, "active": 0, "completed": 0, "failed": 0}
    for job in self.jobs.values():
      counts[job.status] += 1
    return counts

  async def close(self) -> None:
    self.closed = True

  def by_status(self, status: str) -> list[QueueJobRecord]:
    return [job for job in self.jobs.values() if job.status == status]


class InMemoryCompletionRepository:
  """Counter fake; the lock stands in for the row-level atomicity of the UPDATE."""

  def __init__(self) -> None:
    self.counters: dict[str, CounterSnapshot] = {}
    self.units: dict[tuple[str, str], bool] = {}
    self.increments = 0
    self._lock = asyncio.Lock()

  async def create_counter(self, *, note_id: str, import_id: str | None, total_units: int, html_file_name: str | None = None) -> tuple[CounterSnapshot, bool]:
    async with self._lock:
      existing = self.counters.get(note_id)
      if existing is not None:
        return existing, False
      snapshot = CounterSnapshot(note_id=note_id, import_id=import_id, total_units=total_units, completed_units=0, html_file_name=html_file_name)
      self.counters[note_id] = snapshot
      return snapshot, True

  async def increment(self, note_id: str, *, unit_key: str | None = None, succeeded: bool = True) -> IncrementOutcome | None:
    async with self._lock:
      snapshot = self.counters.get(note_id)
      if snapshot is None:
        return None
      if unit_key is not None:
        recorded = self.units.get((note_id, unit_key))
        if recorded is not None:
          if succeeded and not recorded and snapshot.failed_units > 0:
            snapshot = dataclasses.replace(snapshot, failed_units=snapshot.failed_units - 1)
            self.counters[note_id] = snapshot
          self.units[(note_id, unit_key)] = recorded or succeeded
          return IncrementOutcome(snapshot=snapshot, transitioned=False, duplicate=True)
        self.units[(note_id, unit_key)] = succeeded
      if snapshot.completed_units >= snapshot.total_units:
        return IncrementOutcome(snapshot=snapshot, transitioned=False, duplicate=True)
      # Yield inside the critical section so unsynchronized callers would interleave.
      await asyncio.sleep(0)
      updated = dataclasses.replace(snapshot, completed_units=snapshot.completed_units + 1, failed_units=snapshot.failed_units + (0 if succeeded else 1))
      self.counters[note_id] = updated
      self.increments += 1
      return IncrementOutcome(snapshot=updated, transitioned=updated.completed_units == updated.total_units, duplicate=False)

  async def get(self, note_id: str) -> CounterSnapshot | None:
    return self.counters.get(note_id)


class RecordingBroadcaster:
  """Collects events; ``fail_on`` names statuses whose broadcast raises."""

  def __init__(self, *, fail_on: set[str] | None = None, delay_seconds: float = 0.0) -> None:
    self.events: list[StatusEvent] = []
    self.fail_on = fail_on or set()
    self.delay_seconds = delay_seconds
    self.closed = False

  async def add_status_event_and_broadcast(self, event: StatusEvent) -> BroadcastResult:
    if self.delay_seconds:
      await asyncio.sleep(self.delay_seconds)
    self.events.append(event)
    if event.status.value in self.fail_on:
      raise RuntimeError(f"broadcast of {event.status.value} failed")
    return BroadcastResult(success=True)

  async def close(self) -> None:
    self.closed = True

  def of_status(self, status: str) -> list[StatusEvent]:
    return [event for event in self.events if event.status.value == status]


class InMemoryRecipeRepository:
  def __init__(self) -> None:
    self.notes: dict[str, SavedNote] = {}
    self.statuses: dict[str, NoteStatus] = {}
    self.error_codes: dict[str, str | None] = {}
    self.ingredient_results: dict[str, IngredientParseResult] = {}
    self.instruction_results: dict[str, InstructionParseResult] = {}
    self.images: dict[tuple[str, int], ProcessedImage] = {}
    self.categories: dict[str, CategorizationResult] = {}
    self.patterns: dict[str, int] = {}
    self.pattern_occurrences: set[tuple[str, str]] = set()

  async def create_note(self, *, note_id: str, import_id: str | None, parsed: ParsedHtmlFile, file_name: str | None) -> SavedNote:
    if note_id in self.notes:
      return self.notes[note_id]
    saved = SavedNote(
      note_id=note_id,
      title=parsed.title,
      ingredient_lines=[SavedIngredientLine(id=f"{note_id}-ing-{index}", reference=item.reference, block_index=item.block_index, line_index=item.line_index) for index, item in enumerate(parsed.ingredients)],
      instruction_lines=[SavedInstructionLine(id=f"{note_id}-ins-{index}", original_text=item.original_text, line_index=item.line_index) for index, item in enumerate(parsed.instructions)],
    )
    self.notes[note_id] = saved
    self.statuses[note_id] = NoteStatus.PROCESSING
    return saved

  async def update_ingredient_line(self, line_id: str, *, result: IngredientParseResult) -> None:
    self.ingredient_results[line_id] = result

  async def update_instruction_line(self, line_id: str, *, result: InstructionParseResult) -> None:
    self.instruction_results[line_id] = result

  async def save_image(self, *, note_id: str, image_index: int, image: ProcessedImage) -> str:
    self.images[(note_id, image_index)] = image
    return f"{note_id}-img-{image_index}"

  async def save_categorization(self, *, note_id: str, result: CategorizationResult) -> None:
    self.categories[note_id] = result

  async def record_pattern(self, *, rule_ids: list[str], example_line: str | None, occurrence_key: str | None = None) -> int:
    key = "|".join(rule_ids)
    if occurrence_key is not None:
      if (key, occurrence_key) in self.pattern_occurrences:
        return self.patterns[key]
      self.pattern_occurrences.add((key, occurrence_key))
    self.patterns[key] = self.patterns.get(key, 0) + 1
    return self.patterns[key]

  async def mark_note_status(self, note_id: str, status: NoteStatus, *, error_message: str | None = None, error_code: str | None = None) -> None:
    self.statuses[note_id] = status
    self.error_codes[note_id] = error_code

  async def refresh_parsing_error_count(self, note_id: str) -> int:
    return sum(1 for result in self.ingredient_results.values() if result.parse_status not in ("CORRECT", "PENDING"))

  async def get_note_title(self, note_id: str) -> str | None:
    note = self.notes.get(note_id)
    return note.title if note is not None else None


class StubHtmlParser:
  """Returns a fixed parse; ``fail_with`` makes parse raise."""

  def __init__(self, parsed: ParsedHtmlFile | None = None, *, fail_with: Exception | None = None) -> None:
    self.parsed = parsed or sample_parsed_file()
    self.fail_with = fail_with

  async def clean(self, html: str) -> str:
    return html.strip()

  async def parse(self, html: str) -> ParsedHtmlFile:
    if self.fail_with is not None:
      raise self.fail_with
    return self.parsed


class StubIngredientParser:
  def __init__(self, *, rule_ids: list[str] | None = None, fail_with: Exception | None = None) -> None:
    self.rule_ids = rule_ids if rule_ids is not None else ["amount", "unit", "ingredient"]
    self.fail_with = fail_with
    self.calls: list[str] = []

  async def parse(self, reference: str) -> IngredientParseResult:
    self.calls.append(reference)
    if self.fail_with is not None:
      raise self.fail_with
    return IngredientParseResult(parse_status="CORRECT", rule_ids=self.rule_ids)


class StubImageProcessor:
  async def process(self, *, note_id: str, image_index: int, source: ImageSource) -> ProcessedImage:
    return ProcessedImage(storage_key=f"notes/{note_id}/{image_index}.jpg", content_type="image/jpeg")


class StubCategorizer:
  async def categorize(self, *, title: str | None, ingredients: list[str]) -> CategorizationResult:
    return CategorizationResult(category="dinner", tags=["quick"])


def sample_parsed_file(*, ingredients: int = 2, instructions: int = 1, images: int = 1) -> ParsedHtmlFile:
  return ParsedHtmlFile(
    title="Weeknight Pasta",
    ingredients=[ParsedIngredient(reference=f"{index + 1} cup flour", block_index=0, line_index=index) for index in range(ingredients)],
    instructions=[ParsedInstruction(original_text=f"Step {index + 1}", line_index=index) for index in range(instructions)],
    images=[ImageSource(url=f"https://example.com/{index}.jpg") for index in range(images)],
  )


def make_parsers(**overrides: Any) -> ParserSuite:
  values: dict[str, Any] = {"html": StubHtmlParser(), "ingredient": StubIngredientParser(), "instruction": PassthroughInstructionParser(), "image": StubImageProcessor(), "categorizer": StubCategorizer()}
  values.update(overrides)
  return ParserSuite(**values)


def make_job(data: dict[str, Any], *, queue_name: str = "ingredients", job_id: str = "job-1", attempts_made: int = 1, max_attempts: int = 3) -> QueueJobRecord:
  return QueueJobRecord(id=job_id, queue_name=queue_name, job_name="test", data=data, status="active", attempts_made=attempts_made, max_attempts=max_attempts)


async def no_sleep(_: float) -> None:
  return None

