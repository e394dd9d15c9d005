"""Queue consumer that runs one action pipeline per job."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

import pydantic

from recipe_queue.core.classifier import classify_error
from recipe_queue.core.errors import ErrorClassification, ValidationError
from recipe_queue.core.logging import job_logger, truncate_for_logging
from recipe_queue.jobs.actions import Action, Sleep, build_circuit_breaker
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import JOB_DATA_MODELS, ActionContext, BaseJobData, QueueName
from recipe_queue.jobs.pipeline import PipelineBuilder, action_names
from recipe_queue.jobs.retry import RetryPolicy
from recipe_queue.notifications.events import FailedEvent
from recipe_queue.storage.queue_repo import JobQueue, QueueJobRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobFailure:
  """The failure that ended a job, and which stage raised it."""

  action_name: str
  stage: str
  error: BaseException
  classification: ErrorClassification


@dataclass(frozen=True)
class JobOutcome:
  job_id: str
  succeeded: bool
  actions: tuple[str, ...] = ()
  duration_ms: float = 0.0
  failure: JobFailure | None = None
  requeued: bool = False


@dataclass(frozen=True)
class WorkerStatus:
  name: str
  queue: str
  running: bool
  concurrency: int
  in_flight: int
  processed: int
  failed: int


class BaseWorker(ABC):
  """Claims jobs from one queue and runs each through its pipeline.

  Actions of one job run strictly in order. After the first failing action the remaining
  actions are skipped except ``always_run`` ones (the completion check), then the job is
  reported failed so the queue can retry it with backoff. Up to ``concurrency`` jobs run at
  once, each with its own context; a failing job never affects the others.
  """

  queue_name: ClassVar[QueueName]
  builder_class: ClassVar[type[PipelineBuilder]]
  circuit_breaker_actions: ClassVar[tuple[str, ...]] = ()

  def __init__(self, *, queue: JobQueue, dependencies: WorkerDependencies, retry_policy: RetryPolicy, concurrency: int = 5, poll_interval_seconds: float = 1.0, action_timeout_seconds: float | None = None, shutdown_timeout_seconds: float = 30.0, worker_name: str | None = None, sleep: Sleep = asyncio.sleep) -> None:
    if concurrency <= 0:
      raise ValueError("concurrency must be positive")
    self.queue = queue
    self.dependencies = dependencies
    self.concurrency = concurrency
    self.poll_interval_seconds = poll_interval_seconds
    self.shutdown_timeout_seconds = shutdown_timeout_seconds
    self.worker_name = worker_name or f"{self.operation}-{socket.gethostname()}-{os.getpid()}"
    self.action_factory = ActionFactory()
    self.register_actions(self.action_factory)
    breakers = {name: build_circuit_breaker(name=f"{self.operation}:{name}") for name in self.circuit_breaker_actions}
    self.builder = self.builder_class(self.action_factory, retry_policy=retry_policy, action_timeout_seconds=action_timeout_seconds, circuit_breakers=breakers, sleep=sleep)
    self._stopping = asyncio.Event()
    self._tasks: list[asyncio.Task[None]] = []
    self._in_flight: dict[str, QueueJobRecord] = {}
    self._processed = 0
    self._failed = 0

  @property
  def operation(self) -> str:
    return self.queue_name.value

  @abstractmethod
  def register_actions(self, factory: ActionFactory) -> None:
    """Register every action this worker's pipelines may use."""

  def parse_job_data(self, raw: dict[str, Any]) -> BaseJobData:
    model = JOB_DATA_MODELS[self.queue_name]
    try:
      return model.model_validate(raw)
    except pydantic.ValidationError as exc:
      raise ValidationError(f"Invalid {self.operation} job data: {exc.error_count()} error(s): {exc.errors(include_url=False)}") from exc

  def create_context(self, job: QueueJobRecord) -> ActionContext:
    return ActionContext(
      job_id=job.id,
      queue_name=self.queue_name.value,
      worker_name=self.worker_name,
      operation=self.operation,
      attempt_number=job.attempts_made,
      retry_count=job.retry_count,
      start_time=time.monotonic(),
      note_id=job.data.get("noteId"),
      import_id=job.data.get("importId"),
    )

  def build_pipeline(self, data: BaseJobData, context: ActionContext) -> list[Action]:
    return self.builder.build(data, context, self.dependencies)

  async def process_job(self, job: QueueJobRecord) -> JobOutcome:
    """Run one claimed job to completion and report the result to the queue. Never raises."""
    context = self.create_context(job)
    log = job_logger(logger, operation=self.operation, job_id=job.id, note_id=context.note_id)
    try:
      return await self._run(job, context, log)
    except Exception as exc:  # noqa: BLE001
      # Bookkeeping itself failed (queue or broadcaster outage); leave retry to the queue.
      log.exception("Unexpected error while processing job")
      failure = JobFailure(action_name="-", stage="worker", error=exc, classification=classify_error(exc))
      try:
        await self._report_failure(job, None, context, failure, log)
      except Exception:  # noqa: BLE001
        log.exception("Failed to report job failure; the claim expires after the lock timeout")
      return JobOutcome(job_id=job.id, succeeded=False, failure=failure, duration_ms=context.elapsed_ms())

  async def _run(self, job: QueueJobRecord, context: ActionContext, log: logging.LoggerAdapter) -> JobOutcome:
    log.info("Starting attempt %d/%d", job.attempts_made, job.max_attempts)
    try:
      data = self.parse_job_data(job.data)
      pipeline = self.build_pipeline(data, context)
    except Exception as exc:
      failure = JobFailure(action_name="build_pipeline", stage="setup", error=exc, classification=classify_error(exc))
      log.error("Cannot build pipeline: category=%s reason=%s", failure.classification.category.value, failure.classification.reason)
      requeued = await self._report_failure(job, None, context, failure, log)
      return JobOutcome(job_id=job.id, succeeded=False, failure=failure, requeued=requeued, duration_ms=context.elapsed_ms())

    names = tuple(action_names(pipeline))
    log.info("Executing %d actions: %s", len(names), ", ".join(names))

    failure: JobFailure | None = None
    for index, action in enumerate(pipeline, start=1):
      if failure is not None and not action.always_run:
        log.info("Skipping action %d/%d %s after failure in %s", index, len(names), action.name, failure.action_name)
        continue
      result = await action.execute_with_timing(data, self.dependencies, context)
      if result.success:
        if result.data is not None:
          data = result.data
        log.info("Action %d/%d %s completed in %.0fms", index, len(names), action.name, result.duration_ms)
        continue

      classification = classify_error(result.error)
      stage = "completion" if action.always_run else "processing"
      log.error("Action %d/%d %s failed in %.0fms (%s, %s): %s", index, len(names), action.name, result.duration_ms, stage, classification.category.value, result.error)
      if failure is None:
        failure = JobFailure(action_name=action.name, stage=stage, error=result.error, classification=classification)
        context.processing_failure = classification

    duration_ms = context.elapsed_ms()
    if failure is not None:
      requeued = await self._report_failure(job, data, context, failure, log)
      return JobOutcome(job_id=job.id, succeeded=False, actions=names, duration_ms=duration_ms, failure=failure, requeued=requeued)

    await self.queue.complete(job.id, result={"actions": list(names), "durationMs": round(duration_ms, 1)})
    self._processed += 1
    log.info("Completed in %.0fms", duration_ms)
    log.debug("Final job data: %s", truncate_for_logging(data.to_payload()))
    return JobOutcome(job_id=job.id, succeeded=True, actions=names, duration_ms=duration_ms)

  async def _report_failure(self, job: QueueJobRecord, data: BaseJobData | None, context: ActionContext, failure: JobFailure, log: logging.LoggerAdapter) -> bool:
    """Hand the failure to the queue; returns True when another attempt was scheduled."""
    self._failed += 1
    message = f"{failure.stage}:{failure.action_name}: {failure.error}"
    record = await self.queue.fail(job.id, error=message, requeue=failure.classification.requeue)
    requeued = record is not None and record.status == "waiting"
    if requeued:
      log.warning("Job failed (%s), requeued for attempt %d/%d", failure.classification.category.value, job.attempts_made + 1, job.max_attempts)
      return True
    log.error("Job failed permanently (%s): %s", failure.classification.category.value, failure.classification.reason)
    await self.on_job_failed(job, data, context, failure)
    return False

  def error_code_for(self, failure: JobFailure) -> str:
    if failure.stage == "processing":
      return "QUEUE_JOB_FAILED"
    return "UNKNOWN_ERROR"

  async def on_job_failed(self, job: QueueJobRecord, data: BaseJobData | None, context: ActionContext, failure: JobFailure) -> None:
    """Broadcast a permanent failure for the job's note, if it belongs to an import."""
    import_id = data.import_id if data is not None else context.import_id
    if not import_id:
      return
    note_id = data.note_id if data is not None else context.note_id
    event = FailedEvent(
      import_id=import_id,
      note_id=note_id,
      message=f"{self.operation} job failed: {failure.classification.reason}",
      context=f"{self.operation}_processing",
      indent_level=2,
      error_code=self.error_code_for(failure),
      error_type=failure.classification.category.value,
      metadata={"jobId": job.id, "action": failure.action_name, "attempts": job.attempts_made},
    )
    await self.dependencies.broadcast(event)

  async def start(self) -> None:
    if self._tasks:
      return
    self._stopping.clear()
    self._tasks = [asyncio.create_task(self._consume(slot), name=f"{self.worker_name}:{slot}") for slot in range(self.concurrency)]
    logger.info("Worker %s started with %d consumer(s) on queue %s", self.worker_name, self.concurrency, self.queue_name.value)

  async def _consume(self, slot: int) -> None:
    consumer_id = f"{self.worker_name}:{slot}"
    while not self._stopping.is_set():
      try:
        job = await self.queue.claim(worker_id=consumer_id)
      except Exception:  # noqa: BLE001
        logger.exception("Failed to claim job from %s", self.queue_name.value)
        await self._idle()
        continue
      if job is None:
        await self._idle()
        continue
      # Left in place on cancellation so close() can release the claim.
      self._in_flight[job.id] = job
      await self.process_job(job)
      self._in_flight.pop(job.id, None)

  async def _idle(self) -> None:
    try:
      await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval_seconds)
    except asyncio.TimeoutError:
      pass

  async def close(self) -> None:
    """Stop claiming, let in-flight jobs finish within the shutdown timeout, release the rest."""
    self._stopping.set()
    tasks, self._tasks = self._tasks, []
    if tasks:
      _, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout_seconds)
      for task in pending:
        task.cancel()
      if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning("Worker %s cancelled %d consumer(s) after %.1fs", self.worker_name, len(pending), self.shutdown_timeout_seconds)
    for job_id in list(self._in_flight):
      try:
        await self.queue.release(job_id)
      except Exception:  # noqa: BLE001
        logger.warning("Failed to release job %s on %s", job_id, self.queue_name.value, exc_info=True)
      self._in_flight.pop(job_id, None)
    logger.info("Worker %s closed (processed=%d failed=%d)", self.worker_name, self._processed, self._failed)

  def status(self) -> WorkerStatus:
    return WorkerStatus(name=self.worker_name, queue=self.queue_name.value, running=bool(self._tasks) and not self._stopping.is_set(), concurrency=self.concurrency, in_flight=len(self._in_flight), processed=self._processed, failed=self._failed)
