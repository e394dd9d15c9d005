import logging

from fastapi import APIRouter, Depends, HTTPException, status

from recipe_queue.api.deps import get_container
from recipe_queue.api.models import CompletionResponse
from recipe_queue.jobs.registry import ServiceContainer

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{note_id}/completion", response_model=CompletionResponse)
async def get_note_completion(note_id: str, container: ServiceContainer = Depends(get_container)) -> CompletionResponse:  # noqa: B008
  """Return the completion counter for a note."""
  state = await container.tracker.get_state(note_id)
  if state is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note is not tracked")
  return CompletionResponse(note_id=state.note_id, import_id=state.import_id, total_units=state.total_units, completed_units=state.completed_units, failed_units=state.failed_units, is_complete=state.is_complete)
