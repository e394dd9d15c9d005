"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from recipe_queue.jobs.registry import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
  """Return the service container created by the lifespan."""
  container = getattr(request.app.state, "container", None)
  if container is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up")
  return container
