"""Shared fixtures built from the in-memory fakes."""

from __future__ import annotations

import pytest

from recipe_queue.config import DEFAULT_QUEUES, Settings
from recipe_queue.jobs.completion import CompletionTracker
from recipe_queue.jobs.dependencies import WorkerDependencies
from recipe_queue.jobs.registry import ServiceContainer
from recipe_queue.services.parsers import ParserSuite
from tests.fakes import InMemoryCompletionRepository, InMemoryJobQueue, InMemoryRecipeRepository, RecordingBroadcaster, make_parsers


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
  return RecordingBroadcaster()


@pytest.fixture
def completion_repo() -> InMemoryCompletionRepository:
  return InMemoryCompletionRepository()


@pytest.fixture
def recipes() -> InMemoryRecipeRepository:
  return InMemoryRecipeRepository()


@pytest.fixture
def tracker(completion_repo, broadcaster, recipes) -> CompletionTracker:
  return CompletionTracker(repository=completion_repo, broadcaster=broadcaster, recipes=recipes)


@pytest.fixture
def queues() -> dict[str, InMemoryJobQueue]:
  return {name: InMemoryJobQueue(name) for name in DEFAULT_QUEUES}


@pytest.fixture
def parsers() -> ParserSuite:
  return make_parsers()


@pytest.fixture
def dependencies(broadcaster, tracker, recipes, parsers, queues) -> WorkerDependencies:
  return WorkerDependencies(broadcaster=broadcaster, completion=tracker, recipes=recipes, parsers=parsers, queues=queues)


@pytest.fixture
def settings() -> Settings:
  return Settings(poll_interval_seconds=0.01, shutdown_timeout_seconds=1.0, backoff_ms=10, max_backoff_ms=100)


@pytest.fixture
def container(settings, queues, broadcaster, tracker, recipes, parsers) -> ServiceContainer:
  return ServiceContainer(settings=settings, database=None, queues=queues, broadcaster=broadcaster, tracker=tracker, recipes=recipes, parsers=parsers)
