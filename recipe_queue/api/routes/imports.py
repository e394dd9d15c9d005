import logging

from fastapi import APIRouter, Depends, status

from recipe_queue.api.deps import get_container
from recipe_queue.api.models import ImportRequest, ImportResponse
from recipe_queue.jobs.models import NoteJobData, QueueName
from recipe_queue.jobs.registry import ServiceContainer
from recipe_queue.storage.queue_repo import JobOptions
from recipe_queue.utils.ids import generate_import_id, generate_job_id

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=ImportResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_import(request: ImportRequest, container: ServiceContainer = Depends(get_container)) -> ImportResponse:  # noqa: B008
  """Queue one note job per submitted HTML file."""
  import_id = generate_import_id()
  queue = container.queues[QueueName.NOTES.value]
  job_ids: list[str] = []
  for item in request.files:
    job_id = generate_job_id()
    data = NoteJobData(import_id=import_id, content=item.content, file_name=item.file_name, source_url=item.source_url)
    record = await queue.add("process-note", data.to_payload(), JobOptions(job_id=job_id))
    job_ids.append(record.id)
  logger.info("Import %s queued %d note job(s)", import_id, len(job_ids))
  return ImportResponse(import_id=import_id, job_ids=job_ids)
