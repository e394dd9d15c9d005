import asyncio

import pybreaker
import pytest

from recipe_queue.core.errors import CompletionTrackingError, ErrorCategory, TransientError, ValidationError
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ImageJobData, IngredientJobData, PatternTrackingJobData
from recipe_queue.jobs.retry import RetryPolicy
from recipe_queue.services.contracts import ImageSource, IngredientParseResult
from recipe_queue.storage.queue_repo import JobOptions
from recipe_queue.workers.image import ImageWorker
from recipe_queue.workers.ingredient import IngredientWorker, ProcessIngredientLineAction, SaveIngredientLineAction
from recipe_queue.workers.pattern_tracking import PatternTrackingWorker
from recipe_queue.workers.shared import CompletionStatusAction
from tests.fakes import StubIngredientParser, make_parsers, no_sleep


def ingredient_payload(line_id: str = "line-1", **overrides) -> dict:
  values = {"note_id": "note-1", "import_id": "import-1", "ingredient_line_id": line_id, "reference": "1 cup flour", "line_index": 0, "current_ingredient_index": 1, "total_ingredients": 1}
  values.update(overrides)
  return IngredientJobData(**values).to_payload()


def make_worker(queues, dependencies, **kwargs) -> IngredientWorker:
  kwargs.setdefault("retry_policy", RetryPolicy(max_retries=2, backoff_ms=10, max_backoff_ms=100))
  return IngredientWorker(queue=queues["ingredients"], dependencies=dependencies, sleep=no_sleep, worker_name="ingredients-test", **kwargs)


async def claim(queue):
  job = await queue.claim(worker_id="test")
  assert job is not None
  return job


@pytest.mark.anyio
async def test_successful_job_runs_actions_in_order(queues, dependencies, tracker, recipes, broadcaster, completion_repo):
  await tracker.initialize_note("note-1", "import-1", 1)
  worker = make_worker(queues, dependencies)
  await queues["ingredients"].add("process-ingredient-line", ingredient_payload())

  outcome = await worker.process_job(await claim(queues["ingredients"]))

  assert outcome.succeeded is True
  assert outcome.actions == ("update_ingredient_count", "process_ingredient_line", "save_ingredient_line", "schedule_pattern_tracking", "completion_status")
  assert recipes.ingredient_results["line-1"].parse_status == "CORRECT"
  assert len(queues["patterns"].jobs) == 1
  assert queues["ingredients"].by_status("completed")[0].id == outcome.job_id
  assert completion_repo.counters["note-1"].completed_units == 1
  assert len(broadcaster.of_status("COMPLETED")) == 1
  progress = [event for event in broadcaster.events if event.context == "ingredient_processing"]
  assert progress[0].to_wire()["currentCount"] == 1


@pytest.mark.anyio
async def test_invalid_payload_fails_without_requeue(queues, dependencies, broadcaster):
  worker = make_worker(queues, dependencies)
  await queues["ingredients"].add("process-ingredient-line", {"noteId": "note-1", "importId": "import-1", "lineIndex": 0})

  outcome = await worker.process_job(await claim(queues["ingredients"]))

  assert outcome.succeeded is False
  assert outcome.requeued is False
  assert outcome.failure.classification.category is ErrorCategory.VALIDATION
  assert queues["ingredients"].by_status("failed")
  failed_events = broadcaster.of_status("FAILED")
  assert len(failed_events) == 1
  assert failed_events[0].to_wire()["metadata"]["errorType"] == "validation"


class IncompleteIngredientWorker(IngredientWorker):
  def register_actions(self, factory: ActionFactory) -> None:
    for action_class in (ProcessIngredientLineAction, SaveIngredientLineAction, CompletionStatusAction):
      factory.register(action_class.name, action_class)


@pytest.mark.anyio
async def test_unknown_action_is_fatal(queues, dependencies):
  worker = IncompleteIngredientWorker(queue=queues["ingredients"], dependencies=dependencies, retry_policy=RetryPolicy(), sleep=no_sleep)
  await queues["ingredients"].add("process-ingredient-line", ingredient_payload())

  outcome = await worker.process_job(await claim(queues["ingredients"]))

  assert outcome.failure.classification.category is ErrorCategory.UNKNOWN_ACTION
  assert outcome.requeued is False
  assert queues["ingredients"].by_status("failed")


@pytest.mark.anyio
async def test_processing_failure_still_counts_the_unit(queues, broadcaster, tracker, recipes, completion_repo):
  parser = StubIngredientParser(fail_with=TransientError("parser unavailable"))
  deps = WorkerDependencies(broadcaster=broadcaster, completion=tracker, recipes=recipes, parsers=make_parsers(ingredient=parser), queues=queues)
  await tracker.initialize_note("note-1", "import-1", 1)
  worker = make_worker(queues, deps)
  await queues["ingredients"].add("process-ingredient-line", ingredient_payload())

  outcome = await worker.process_job(await claim(queues["ingredients"]))

  # One call plus two in-action retries.
  assert len(parser.calls) == 3
  assert outcome.succeeded is False
  assert outcome.failure.action_name == "process_ingredient_line"
  assert outcome.failure.stage == "processing"
  assert outcome.requeued is True
  assert "line-1" not in recipes.ingredient_results
  counter = completion_repo.counters["note-1"]
  assert (counter.completed_units, counter.failed_units) == (1, 1)
  assert len(broadcaster.of_status("COMPLETED")) == 1


@pytest.mark.anyio
async def test_requeued_job_does_not_count_its_unit_twice(queues, broadcaster, tracker, recipes, completion_repo):
  parser = StubIngredientParser(fail_with=TransientError("parser unavailable"))
  deps = WorkerDependencies(broadcaster=broadcaster, completion=tracker, recipes=recipes, parsers=make_parsers(ingredient=parser), queues=queues)
  await tracker.initialize_note("note-1", "import-1", 2)
  worker = make_worker(queues, deps, retry_policy=RetryPolicy(max_retries=0))
  await queues["ingredients"].add("process-ingredient-line", ingredient_payload())

  first = await worker.process_job(await claim(queues["ingredients"]))
  second = await worker.process_job(await claim(queues["ingredients"]))

  assert first.requeued is True and second.requeued is True
  assert completion_repo.counters["note-1"].completed_units == 1
  assert broadcaster.of_status("COMPLETED") == []


@pytest.mark.anyio
async def test_job_is_dead_lettered_after_max_attempts(queues, broadcaster, tracker, recipes):
  parser = StubIngredientParser(fail_with=TransientError("parser unavailable"))
  deps = WorkerDependencies(broadcaster=broadcaster, completion=tracker, recipes=recipes, parsers=make_parsers(ingredient=parser), queues=queues)
  worker = make_worker(queues, deps, retry_policy=RetryPolicy(max_retries=0))
  queue = queues["ingredients"]
  await queue.add("process-ingredient-line", ingredient_payload(), JobOptions(attempts=3))

  outcomes = [await worker.process_job(await claim(queue)) for _ in range(3)]

  assert [outcome.requeued for outcome in outcomes] == [True, True, False]
  assert queue.retry_delays_ms == [1000.0, 2000.0]
  assert await queue.claim(worker_id="test") is None
  assert len(broadcaster.of_status("FAILED")) == 1
  assert broadcaster.of_status("FAILED")[0].to_wire()["metadata"]["errorCode"] == "QUEUE_JOB_FAILED"


class SlowIngredientParser:
  async def parse(self, reference: str) -> IngredientParseResult:
    await asyncio.sleep(1)
    return IngredientParseResult(parse_status="CORRECT")


@pytest.mark.anyio
async def test_action_timeout_is_classified(queues, broadcaster, tracker, recipes):
  deps = WorkerDependencies(broadcaster=broadcaster, completion=tracker, recipes=recipes, parsers=make_parsers(ingredient=SlowIngredientParser()), queues=queues)
  worker = make_worker(queues, deps, retry_policy=RetryPolicy(max_retries=0), action_timeout_seconds=0.02)
  await queues["ingredients"].add("process-ingredient-line", ingredient_payload())

  outcome = await worker.process_job(await claim(queues["ingredients"]))

  assert outcome.failure.classification.category is ErrorCategory.TIMEOUT
  assert outcome.requeued is True


class SelectiveParser:
  async def parse(self, reference: str) -> IngredientParseResult:
    await asyncio.sleep(0.005)
    if "bad" in reference:
      raise ValidationError("unparseable line", field="reference", value=reference)
    return IngredientParseResult(parse_status="CORRECT")


@pytest.mark.anyio
async def test_concurrent_jobs_are_isolated(queues, broadcaster, tracker, recipes, completion_repo):
  deps = WorkerDependencies(broadcaster=broadcaster, completion=tracker, recipes=recipes, parsers=make_parsers(ingredient=SelectiveParser()), queues=queues)
  await tracker.initialize_note("note-1", "import-1", 6)
  worker = make_worker(queues, deps, concurrency=3, poll_interval_seconds=0.01)
  queue = queues["ingredients"]
  for index in range(6):
    reference = "bad line" if index == 2 else f"{index} eggs"
    await queue.add("process-ingredient-line", ingredient_payload(f"line-{index}", reference=reference, current_ingredient_index=index + 1, total_ingredients=6))

  await worker.start()
  assert worker.status().running is True
  for _ in range(200):
    counts = await queue.counts()
    if counts["waiting"] == 0 and counts["active"] == 0:
      break
    await asyncio.sleep(0.01)
  await worker.close()

  counts = await queue.counts()
  assert (counts["completed"], counts["failed"]) == (5, 1)
  assert completion_repo.counters["note-1"].completed_units == 6
  assert len(broadcaster.of_status("COMPLETED")) == 1
  status = worker.status()
  assert (status.running, status.processed, status.failed) == (False, 5, 1)


class BlockingParser:
  def __init__(self) -> None:
    self.started = asyncio.Event()

  async def parse(self, reference: str) -> IngredientParseResult:
    self.started.set()
    await asyncio.sleep(10)
    return IngredientParseResult(parse_status="CORRECT")


@pytest.mark.anyio
async def test_close_releases_jobs_still_running_after_the_timeout(queues, broadcaster, tracker, recipes):
  parser = BlockingParser()
  deps = WorkerDependencies(broadcaster=broadcaster, completion=tracker, recipes=recipes, parsers=make_parsers(ingredient=parser), queues=queues)
  worker = make_worker(queues, deps, concurrency=1, poll_interval_seconds=0.01, shutdown_timeout_seconds=0.05)
  queue = queues["ingredients"]
  job = await queue.add("process-ingredient-line", ingredient_payload())

  await worker.start()
  await asyncio.wait_for(parser.started.wait(), timeout=1)
  await worker.close()

  assert queue.released == [job.id]
  assert queue.jobs[job.id].status == "waiting"
  assert worker.status().in_flight == 0


@pytest.mark.anyio
async def test_completion_failure_after_processing_requeues(queues, dependencies, tracker, recipes, monkeypatch):
  async def broken_record(note_id, *, unit_key=None, succeeded=True):
    raise CompletionTrackingError(f"Failed to record completion for note {note_id}: connection reset")

  await tracker.initialize_note("note-1", "import-1", 1)
  monkeypatch.setattr(tracker, "record_unit_completion", broken_record)
  worker = make_worker(queues, dependencies)
  await queues["ingredients"].add("process-ingredient-line", ingredient_payload())

  outcome = await worker.process_job(await claim(queues["ingredients"]))

  assert recipes.ingredient_results["line-1"].parse_status == "CORRECT"
  assert outcome.succeeded is False
  assert outcome.failure.stage == "completion"
  assert outcome.failure.action_name == "completion_status"
  assert outcome.failure.classification.category is ErrorCategory.DATABASE
  assert outcome.requeued is True
  assert queues["ingredients"].by_status("waiting")


def image_payload(index: int, source: ImageSource, total: int) -> dict:
  return ImageJobData(note_id="note-1", import_id="import-1", image_index=index, total_images=total, source=source).to_payload()


@pytest.mark.anyio
async def test_malformed_images_do_not_open_the_image_circuit(queues, dependencies, tracker, recipes):
  await tracker.initialize_note("note-1", "import-1", 6)
  worker = ImageWorker(queue=queues["images"], dependencies=dependencies, retry_policy=RetryPolicy(max_retries=2, backoff_ms=10, max_backoff_ms=100), sleep=no_sleep)
  queue = queues["images"]
  for index in range(5):
    await queue.add("process-image", image_payload(index, ImageSource(), total=6))
  await queue.add("process-image", image_payload(5, ImageSource(url="https://example.com/5.jpg"), total=6))

  outcomes = [await worker.process_job(await claim(queue)) for _ in range(6)]

  assert [outcome.failure.classification.category for outcome in outcomes[:5]] == [ErrorCategory.VALIDATION] * 5
  assert outcomes[5].succeeded is True
  assert ("note-1", 5) in recipes.images
  breaker = worker.builder.circuit_breakers["process_image"]
  assert breaker.current_state == pybreaker.STATE_CLOSED


@pytest.mark.anyio
async def test_redelivered_pattern_job_counts_once(queues, dependencies, recipes):
  worker = PatternTrackingWorker(queue=queues["patterns"], dependencies=dependencies, retry_policy=RetryPolicy(), sleep=no_sleep)
  payload = PatternTrackingJobData(note_id="note-1", import_id="import-1", rule_ids=["amount", "unit", "ingredient"], example_line="1 cup flour").to_payload()
  await queues["patterns"].add("track-pattern", payload)
  await queues["patterns"].add("track-pattern", payload)
  first_job = await claim(queues["patterns"])

  first = await worker.process_job(first_job)
  # Acknowledgement lost: the same job runs again.
  again = await worker.process_job(first_job)
  other = await worker.process_job(await claim(queues["patterns"]))

  assert first.succeeded and again.succeeded and other.succeeded
  assert recipes.patterns == {"amount|unit|ingredient": 2}
