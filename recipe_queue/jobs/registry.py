"""Wiring for queues, repositories, the broadcaster and the workers of one process."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any

from recipe_queue.config import DEFAULT_QUEUES, Settings
from recipe_queue.core.database import Database
from recipe_queue.jobs.completion import CompletionTracker
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.retry import RetryPolicy
from recipe_queue.jobs.worker import BaseWorker
from recipe_queue.notifications.contracts import StatusBroadcaster
from recipe_queue.notifications.factory import build_status_broadcaster
from recipe_queue.services.parsers import ParserSuite, build_parsers
from recipe_queue.storage.postgres_completion_repo import PostgresCompletionRepository
from recipe_queue.storage.postgres_queue_repo import PostgresJobQueue
from recipe_queue.storage.postgres_recipes_repo import PostgresRecipeRepository
from recipe_queue.storage.queue_repo import JobQueue
from recipe_queue.storage.recipes_repo import RecipeRepository
from recipe_queue.workers.categorization import CategorizationWorker
from recipe_queue.workers.image import ImageWorker
from recipe_queue.workers.ingredient import IngredientWorker
from recipe_queue.workers.instruction import InstructionWorker
from recipe_queue.workers.note import NoteWorker
from recipe_queue.workers.pattern_tracking import PatternTrackingWorker

logger = logging.getLogger(__name__)

WORKER_CLASSES: dict[str, type[BaseWorker]] = {
  "notes": NoteWorker,
  "ingredients": IngredientWorker,
  "instructions": InstructionWorker,
  "images": ImageWorker,
  "categorization": CategorizationWorker,
  "patterns": PatternTrackingWorker,
}


@dataclass
class ServiceContainer:
  """Everything a process needs to enqueue and consume jobs.

  Queues exist for every queue name so any worker can schedule follow-up jobs. Workers
  exist only for the queues enabled in this process.
  """

  settings: Settings
  database: Database | None
  queues: dict[str, JobQueue]
  broadcaster: StatusBroadcaster
  tracker: CompletionTracker
  recipes: RecipeRepository
  parsers: ParserSuite
  workers: dict[str, BaseWorker] = field(default_factory=dict)
  _closed: bool = field(default=False, init=False, repr=False)

  def dependencies(self) -> WorkerDependencies:
    return WorkerDependencies(broadcaster=self.broadcaster, completion=self.tracker, recipes=self.recipes, parsers=self.parsers, queues=self.queues, categorization_enabled=self.settings.categorization_enabled)

  def create_workers(self, queue_names: Iterable[str] | None = None) -> dict[str, BaseWorker]:
    """Instantiate one worker per enabled queue and keep them on the container."""
    names = tuple(queue_names) if queue_names is not None else self.settings.enabled_queues
    dependencies = self.dependencies()
    retry_policy = RetryPolicy.from_settings(self.settings)
    for name in names:
      if name in self.workers:
        continue
      worker_class = WORKER_CLASSES[name]
      self.workers[name] = worker_class(
        queue=self.queues[name],
        dependencies=dependencies,
        retry_policy=retry_policy,
        concurrency=self.settings.concurrency_for(name),
        poll_interval_seconds=self.settings.poll_interval_seconds,
        action_timeout_seconds=self.settings.action_timeout_seconds,
        shutdown_timeout_seconds=self.settings.shutdown_timeout_seconds,
      )
    return self.workers

  async def start_workers(self) -> None:
    for worker in self.workers.values():
      await worker.start()
    logger.info("Started %d worker(s): %s", len(self.workers), ", ".join(self.workers) or "-")

  async def _close_all(self, label: str, closers: list[Awaitable[Any]]) -> int:
    if not closers:
      return 0
    timeout = self.settings.shutdown_timeout_seconds
    results = await asyncio.gather(*(asyncio.wait_for(closer, timeout=timeout) for closer in closers), return_exceptions=True)
    errors = [result for result in results if isinstance(result, BaseException)]
    for error in errors:
      logger.error("Error closing %s: %s", label, error, exc_info=error)
    return len(errors)

  async def close(self) -> None:
    """Close workers, then queues, then the database and broadcaster. Never raises."""
    if self._closed:
      return
    self._closed = True
    errors = await self._close_all("worker", [worker.close() for worker in self.workers.values()])
    errors += await self._close_all("queue", [queue.close() for queue in self.queues.values()])
    if self.database is not None:
      try:
        await self.database.close()
      except Exception as exc:  # noqa: BLE001
        errors += 1
        logger.error("Error closing database: %s", exc, exc_info=True)
    close_broadcaster = getattr(self.broadcaster, "close", None)
    if close_broadcaster is not None:
      try:
        await close_broadcaster()
      except Exception as exc:  # noqa: BLE001
        errors += 1
        logger.error("Error closing broadcaster: %s", exc, exc_info=True)
    if errors:
      logger.warning("Service container closed with %d error(s)", errors)
    else:
      logger.info("Service container closed")


def build_container(settings: Settings) -> ServiceContainer:
  """Build the Postgres-backed container for the given settings."""
  database = Database.from_settings(settings)
  retry_policy = RetryPolicy.from_settings(settings)
  queues: dict[str, JobQueue] = {
    name: PostgresJobQueue(database=database, name=name, retry_policy=retry_policy, default_attempts=settings.job_attempts, lock_timeout_seconds=settings.job_lock_timeout_seconds) for name in DEFAULT_QUEUES
  }
  broadcaster = build_status_broadcaster(settings)
  recipes = PostgresRecipeRepository(database)
  tracker = CompletionTracker(repository=PostgresCompletionRepository(database), broadcaster=broadcaster, recipes=recipes)
  container = ServiceContainer(settings=settings, database=database, queues=queues, broadcaster=broadcaster, tracker=tracker, recipes=recipes, parsers=build_parsers(settings))
  logger.info("Service container ready (environment=%s queues=%s)", settings.environment, ",".join(settings.enabled_queues))
  return container
