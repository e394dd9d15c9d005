"""Postgres-backed job queue using SKIP LOCKED claims."""

from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, or_, select

from recipe_queue.core.database import Database
from recipe_queue.jobs.retry import RetryPolicy
from recipe_queue.schema.queue import QueueJob
from recipe_queue.storage.queue_repo import JobOptions, QueueJobRecord
from recipe_queue.utils.db_retry import execute_with_retry
from recipe_queue.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

MAX_ERROR_CHARS = 4000


def _now() -> datetime:
  return datetime.now(UTC)


def _to_record(row: QueueJob) -> QueueJobRecord:
  return QueueJobRecord(
    id=row.id,
    queue_name=row.queue_name,
    job_name=row.job_name,
    data=dict(row.data_json or {}),
    status=row.status,  # type: ignore[arg-type]
    attempts_made=row.attempts_made,
    max_attempts=row.max_attempts,
    priority=row.priority,
    backoff_ms=row.backoff_ms,
    last_error=row.last_error,
    available_at=row.available_at,
    created_at=row.created_at,
    result=row.result_json,
  )


class PostgresJobQueue:
  """One named queue stored in the shared ``queue_jobs`` table."""

  def __init__(self, *, database: Database, name: str, retry_policy: RetryPolicy, default_attempts: int, lock_timeout_seconds: int) -> None:
    self.name = name
    self._database = database
    self._retry_policy = retry_policy
    self._default_attempts = default_attempts
    self._lock_timeout = timedelta(seconds=lock_timeout_seconds)
    self._closed = False

  async def add(self, job_name: str, data: dict[str, Any], options: JobOptions | None = None) -> QueueJobRecord:
    if self._closed:
      raise RuntimeError(f"Queue '{self.name}' is closed")
    options = options or JobOptions()
    now = _now()
    row = QueueJob(
      id=options.job_id or generate_job_id(),
      queue_name=self.name,
      job_name=job_name,
      data_json=data,
      status="waiting",
      priority=options.priority,
      attempts_made=0,
      max_attempts=options.attempts or self._default_attempts,
      backoff_ms=options.backoff_ms,
      remove_on_complete=options.remove_on_complete,
      remove_on_fail=options.remove_on_fail,
      available_at=now + timedelta(milliseconds=options.delay_ms),
      created_at=now,
    )
    async with self._database.session() as session:
      # Caller-chosen ids make re-enqueueing from a retried parent job a no-op.
      if options.job_id is not None:
        existing = await session.get(QueueJob, options.job_id)
        if existing is not None:
          logger.debug("Job %s already enqueued on %s", options.job_id, self.name)
          return _to_record(existing)
      session.add(row)
      await session.commit()
    logger.debug("Enqueued job %s on %s (%s)", row.id, self.name, job_name)
    return _to_record(row)

  async def claim(self, *, worker_id: str) -> QueueJobRecord | None:
    if self._closed:
      return None
    now = _now()
    async with self._database.session() as session:
      # Stale active rows belong to a worker that died mid-job.
      runnable = or_(and_(QueueJob.status == "waiting", QueueJob.available_at <= now), and_(QueueJob.status == "active", QueueJob.locked_at < now - self._lock_timeout))
      stmt = select(QueueJob).where(QueueJob.queue_name == self.name, runnable).order_by(QueueJob.priority.desc(), QueueJob.available_at.asc(), QueueJob.created_at.asc()).with_for_update(skip_locked=True).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      row.status = "active"
      row.attempts_made += 1
      row.locked_by = worker_id
      row.locked_at = now
      await session.commit()
      return _to_record(row)

  async def complete(self, job_id: str, *, result: dict[str, Any] | None = None) -> None:
    async def _complete() -> None:
      async with self._database.session() as session:
        row = await session.get(QueueJob, job_id, with_for_update=True)
        if row is None:
          logger.warning("Cannot complete unknown job %s on %s", job_id, self.name)
          return
        if row.remove_on_complete:
          await session.execute(delete(QueueJob).where(QueueJob.id == job_id))
        else:
          row.status = "completed"
          row.result_json = result
          row.finished_at = _now()
          row.locked_by = None
          row.locked_at = None
        await session.commit()

    await execute_with_retry(operation_name="queue_complete", func=_complete)

  def _policy_for(self, row: QueueJob) -> RetryPolicy:
    if row.backoff_ms is None:
      return self._retry_policy
    return dataclasses.replace(self._retry_policy, backoff_ms=row.backoff_ms, max_backoff_ms=max(row.backoff_ms, self._retry_policy.max_backoff_ms))

  async def fail(self, job_id: str, *, error: str, requeue: bool) -> QueueJobRecord | None:
    async def _fail() -> QueueJobRecord | None:
      async with self._database.session() as session:
        row = await session.get(QueueJob, job_id, with_for_update=True)
        if row is None:
          logger.warning("Cannot fail unknown job %s on %s", job_id, self.name)
          return None
        now = _now()
        row.last_error = error[:MAX_ERROR_CHARS]
        row.locked_by = None
        row.locked_at = None
        if requeue and row.attempts_made < row.max_attempts:
          delay_ms = self._policy_for(row).compute_backoff_ms(max(row.attempts_made - 1, 0))
          row.status = "waiting"
          row.available_at = now + timedelta(milliseconds=delay_ms)
          logger.info("Job %s on %s will retry in %.0fms (attempt %d/%d)", job_id, self.name, delay_ms, row.attempts_made, row.max_attempts)
        elif row.remove_on_fail:
          await session.execute(delete(QueueJob).where(QueueJob.id == job_id))
          await session.commit()
          logger.error("Job %s on %s failed permanently and was removed", job_id, self.name)
          return None
        else:
          row.status = "failed"
          row.finished_at = now
          logger.error("Job %s on %s failed permanently after %d attempt(s)", job_id, self.name, row.attempts_made)
        await session.commit()
        return _to_record(row)

    return await execute_with_retry(operation_name="queue_fail", func=_fail)

  async def release(self, job_id: str) -> None:
    async with self._database.session() as session:
      row = await session.get(QueueJob, job_id, with_for_update=True)
      if row is None or row.status != "active":
        return
      row.status = "waiting"
      row.attempts_made = max(row.attempts_made - 1, 0)
      row.locked_by = None
      row.locked_at = None
      await session.commit()

  async def counts(self) -> dict[str, int]:
    async with self._database.session() as session:
      stmt = select(QueueJob.status, func.count()).where(QueueJob.queue_name == self.name).group_by(QueueJob.status)
      rows = (await session.execute(stmt)).all()
    counts = {"waiting": 0, "active": 0, "completed": 0, "failed": 0}
    counts.update({status: int(count) for status, count in rows})
    return counts

  async def close(self) -> None:
    self._closed = True
    logger.info("Queue %s closed", self.name)
