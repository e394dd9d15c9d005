"""FastAPI lifespan: logging, service container, optional in-process workers."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from recipe_queue.config import Settings, get_settings
from recipe_queue.core.logging import _initialize_logging
from recipe_queue.jobs.registry import ServiceContainer, build_container

ContainerFactory = Callable[[Settings], ServiceContainer]


def build_lifespan(container_factory: ContainerFactory | None = None) -> Callable[[FastAPI], AsyncIterator[None]]:
  """Return a lifespan that builds the container with ``container_factory`` (Postgres by default)."""
  factory = container_factory or build_container

  @asynccontextmanager
  async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger = logging.getLogger("recipe_queue.core.lifespan")
    try:
      _initialize_logging(settings)
    except Exception:  # noqa: BLE001
      logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

    container = factory(settings)
    app.state.container = container
    if settings.run_workers_in_api:
      container.create_workers()
      await container.start_workers()
    logger.info("Startup complete (workers in process: %s).", "yes" if container.workers else "no")

    try:
      yield
    finally:
      await container.close()

  return lifespan  # type: ignore[return-value]
