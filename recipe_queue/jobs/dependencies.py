"""Dependency bundle handed to every action."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from recipe_queue.core.errors import MissingDependencyError
from recipe_queue.jobs.completion import CompletionTracker
from recipe_queue.jobs.models import QueueName
from recipe_queue.notifications.contracts import BroadcastResult, StatusBroadcaster
from recipe_queue.notifications.events import StatusEvent
from recipe_queue.notifications.service import safe_broadcast
from recipe_queue.services.parsers import ParserSuite
from recipe_queue.storage.queue_repo import JobQueue
from recipe_queue.storage.recipes_repo import RecipeRepository


@dataclass(frozen=True)
class WorkerDependencies:
  """Collaborators shared by the workers of one process. Holds no per-job state."""

  broadcaster: StatusBroadcaster
  completion: CompletionTracker
  recipes: RecipeRepository
  parsers: ParserSuite
  queues: Mapping[str, JobQueue] = field(default_factory=dict)
  categorization_enabled: bool = True

  def queue(self, name: QueueName | str) -> JobQueue:
    key = name.value if isinstance(name, QueueName) else name
    queue = self.queues.get(key)
    if queue is None:
      raise MissingDependencyError(f"Queue '{key}' is not enabled in this process")
    return queue

  async def broadcast(self, event: StatusEvent) -> BroadcastResult:
    return await safe_broadcast(self.broadcaster, event)
