from __future__ import annotations

from fastapi import FastAPI

from recipe_queue import __version__
from recipe_queue.api.routes import health, imports, notes
from recipe_queue.core.lifespan import ContainerFactory, build_lifespan


def create_app(container_factory: ContainerFactory | None = None) -> FastAPI:
  """Build the API. Tests pass a factory that returns a container of in-memory fakes."""
  application = FastAPI(title="recipe-queue", version=__version__, lifespan=build_lifespan(container_factory))
  application.include_router(health.router, tags=["health"])
  application.include_router(imports.router, prefix="/v1/imports", tags=["imports"])
  application.include_router(notes.router, prefix="/v1/notes", tags=["notes"])
  return application


app = create_app()
