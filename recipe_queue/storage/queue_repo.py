"""Storage interfaces for the job queues."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

JobState = Literal["waiting", "active", "completed", "failed"]


@dataclass(frozen=True)
class JobOptions:
  """Per-job enqueue options. None means the queue default."""

  priority: int = 0
  delay_ms: int = 0
  attempts: int | None = None
  backoff_ms: int | None = None
  remove_on_complete: bool = False
  remove_on_fail: bool = False
  job_id: str | None = None


@dataclass(frozen=True)
class QueueJobRecord:
  """A job as stored in a queue."""

  id: str
  queue_name: str
  job_name: str
  data: dict[str, Any]
  status: JobState
  attempts_made: int
  max_attempts: int
  priority: int = 0
  backoff_ms: int | None = None
  last_error: str | None = None
  available_at: datetime.datetime | None = None
  created_at: datetime.datetime | None = None
  result: dict[str, Any] | None = field(default=None, compare=False)

  @property
  def retry_count(self) -> int:
    """Attempts made before the current one."""
    return max(self.attempts_made - 1, 0)


class JobQueue(Protocol):
  """Contract for one named queue."""

  name: str

  async def add(self, job_name: str, data: dict[str, Any], options: JobOptions | None = None) -> QueueJobRecord:
    """Enqueue a job and return the stored record."""

  async def claim(self, *, worker_id: str) -> QueueJobRecord | None:
    """Lock the next runnable job for this worker, or return None."""

  async def complete(self, job_id: str, *, result: dict[str, Any] | None = None) -> None:
    """Mark a claimed job as done."""

  async def fail(self, job_id: str, *, error: str, requeue: bool) -> QueueJobRecord | None:
    """Record a failed attempt; requeue with backoff while attempts remain."""

  async def release(self, job_id: str) -> None:
    """Return a claimed job to the waiting state without counting the attempt."""

  async def counts(self) -> dict[str, int]:
    """Number of jobs per state."""

  async def close(self) -> None:
    """Stop accepting work and release resources."""
