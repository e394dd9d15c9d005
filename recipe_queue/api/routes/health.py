import dataclasses
import logging

from fastapi import APIRouter, Depends

from recipe_queue import __version__
from recipe_queue.api.deps import get_container
from recipe_queue.api.models import HealthResponse, WorkerStatusResponse
from recipe_queue.jobs.registry import ServiceContainer

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:  # noqa: B008
  """Report database reachability, worker status and queue depth."""
  database_ok = await container.database.ping() if container.database is not None else False
  workers = [WorkerStatusResponse(**dataclasses.asdict(worker.status())) for worker in container.workers.values()]
  queues: dict[str, dict[str, int]] = {}
  if database_ok:
    for name, queue in container.queues.items():
      try:
        queues[name] = await queue.counts()
      except Exception:  # noqa: BLE001
        logger.warning("Failed to read counts for queue %s", name, exc_info=True)
  return HealthResponse(status="ok" if database_ok else "degraded", version=__version__, database=database_ok, workers=workers, queues=queues)
