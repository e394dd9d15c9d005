"""End-to-end import: note job fans out, every queue drains, the note completes once."""

from __future__ import annotations

import dataclasses

import pytest

from recipe_queue.config import DEFAULT_QUEUES
from recipe_queue.jobs.models import NoteJobData
from recipe_queue.schema.recipes import NoteStatus
from recipe_queue.storage.queue_repo import JobOptions
from recipe_queue.utils.ids import note_id_for_job
from tests.fakes import StubHtmlParser, StubIngredientParser, make_parsers, sample_parsed_file


async def drain(container) -> int:
  """Claim and process jobs across all queues until none are runnable."""
  processed = 0
  while True:
    progressed = False
    for name in DEFAULT_QUEUES:
      job = await container.queues[name].claim(worker_id="flow-test")
      if job is None:
        continue
      await container.workers[name].process_job(job)
      processed += 1
      progressed = True
    if not progressed:
      return processed


async def submit_note(container, *, job_id: str = "job-note-1", import_id: str = "import-1"):
  data = NoteJobData(import_id=import_id, content="<html><h1>Weeknight Pasta</h1></html>", file_name="pasta.html")
  return await container.queues["notes"].add("process-note", data.to_payload(), JobOptions(job_id=job_id))


@pytest.fixture
def flow(container):
  container.create_workers(DEFAULT_QUEUES)
  return container


@pytest.mark.anyio
async def test_import_completes_note_once(flow, queues, broadcaster, recipes, completion_repo) -> None:
  await submit_note(flow)

  processed = await drain(flow)

  note_id = note_id_for_job("job-note-1")
  # 1 note, 2 ingredients, 1 instruction, 1 image, 1 categorization, 2 pattern jobs.
  assert processed == 8
  counter = completion_repo.counters[note_id]
  assert (counter.total_units, counter.completed_units, counter.failed_units) == (5, 5, 0)
  completed = broadcaster.of_status("COMPLETED")
  assert len(completed) == 1
  assert completed[0].note_id == note_id
  assert completed[0].metadata["noteTitle"] == "Weeknight Pasta"
  assert completed[0].metadata["htmlFileName"] == "pasta.html"
  assert recipes.statuses[note_id] is NoteStatus.COMPLETED
  assert recipes.categories[note_id].category == "dinner"
  assert recipes.patterns == {"amount|unit|ingredient": 2}
  assert not broadcaster.of_status("FAILED")
  for name in DEFAULT_QUEUES:
    assert not queues[name].by_status("waiting"), name


@pytest.mark.anyio
async def test_redelivered_note_job_does_not_duplicate_children(flow, queues, broadcaster, completion_repo) -> None:
  await submit_note(flow)
  job = await queues["notes"].claim(worker_id="flow-test")
  await flow.workers["notes"].process_job(job)

  # A crash after scheduling redelivers the same job.
  await flow.workers["notes"].process_job(dataclasses.replace(job, attempts_made=2))

  assert len(queues["ingredients"].jobs) == 2
  assert len(queues["instructions"].jobs) == 1
  assert len(queues["images"].jobs) == 1
  assert len(queues["categorization"].jobs) == 1

  await drain(flow)

  note_id = note_id_for_job("job-note-1")
  assert completion_repo.counters[note_id].completed_units == 5
  assert len(broadcaster.of_status("COMPLETED")) == 1


@pytest.mark.anyio
async def test_failed_units_still_complete_the_note(flow, queues, broadcaster, completion_repo) -> None:
  flow.parsers = make_parsers(ingredient=StubIngredientParser(fail_with=ValueError("unparseable line")))
  flow.workers.clear()
  flow.create_workers(DEFAULT_QUEUES)
  await submit_note(flow)

  await drain(flow)

  note_id = note_id_for_job("job-note-1")
  counter = completion_repo.counters[note_id]
  assert (counter.completed_units, counter.failed_units) == (5, 2)
  assert len(broadcaster.of_status("COMPLETED")) == 1
  assert broadcaster.of_status("COMPLETED")[0].metadata["failedUnits"] == 2
  assert not queues["patterns"].jobs


@pytest.mark.anyio
async def test_note_without_units_completes_immediately(flow, queues, broadcaster, completion_repo) -> None:
  empty = sample_parsed_file(ingredients=0, instructions=0, images=0)
  flow.parsers = make_parsers(html=StubHtmlParser(empty))
  flow.settings = dataclasses.replace(flow.settings, categorization_enabled=False)
  flow.workers.clear()
  flow.create_workers(DEFAULT_QUEUES)
  await submit_note(flow)

  processed = await drain(flow)

  note_id = note_id_for_job("job-note-1")
  assert processed == 1
  assert completion_repo.counters[note_id].total_units == 0
  assert len(broadcaster.of_status("COMPLETED")) == 1
  assert all(not queues[name].jobs for name in DEFAULT_QUEUES if name != "notes")


@pytest.mark.anyio
async def test_unparseable_html_fails_note(flow, queues, broadcaster, recipes) -> None:
  flow.parsers = make_parsers(html=StubHtmlParser(fail_with=ValueError("invalid markup")))
  flow.workers.clear()
  flow.create_workers(DEFAULT_QUEUES)
  await submit_note(flow)

  await drain(flow)

  failed = broadcaster.of_status("FAILED")
  assert failed
  assert failed[-1].to_wire()["metadata"]["errorCode"] == "HTML_PARSE_ERROR"
  assert queues["notes"].by_status("failed")
  assert not queues["ingredients"].jobs
  assert not broadcaster.of_status("COMPLETED")
