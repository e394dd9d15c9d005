"""Best-effort status broadcasting with a bounded wait."""

from __future__ import annotations

import asyncio
import logging

from recipe_queue.notifications.contracts import BroadcastResult, StatusBroadcaster, StatusSender
from recipe_queue.notifications.events import StatusEvent

logger = logging.getLogger(__name__)


class StatusBroadcastService:
  """Sends status events through a transport; never raises to the caller."""

  def __init__(self, *, sender: StatusSender, timeout_seconds: float) -> None:
    self._sender = sender
    self._timeout_seconds = timeout_seconds

  async def add_status_event_and_broadcast(self, event: StatusEvent) -> BroadcastResult:
    """Publish one event, turning transport failures and timeouts into a failed result."""
    payload = event.to_wire()
    try:
      await asyncio.wait_for(self._sender.send(payload), timeout=self._timeout_seconds)
    except asyncio.TimeoutError:
      logger.warning("Status broadcast timed out after %.1fs: note=%s status=%s", self._timeout_seconds, event.note_id, payload["status"])
      return BroadcastResult(success=False, error=f"timed out after {self._timeout_seconds:.1f}s")
    except Exception as exc:  # noqa: BLE001
      # Broadcasting is best-effort: callers log the result and keep going.
      logger.warning("Status broadcast failed: note=%s status=%s error=%s", event.note_id, payload["status"], exc)
      return BroadcastResult(success=False, error=str(exc) or type(exc).__name__)
    logger.debug("Status broadcast sent: note=%s status=%s context=%s", event.note_id, payload["status"], event.context)
    return BroadcastResult(success=True)

  async def close(self) -> None:
    await self._sender.close()


async def safe_broadcast(broadcaster: StatusBroadcaster, event: StatusEvent) -> BroadcastResult:
  """Publish an event through any broadcaster, logging instead of raising on failure."""
  try:
    result = await broadcaster.add_status_event_and_broadcast(event)
  except Exception as exc:  # noqa: BLE001
    logger.error("Status broadcast raised for note %s (%s): %s", event.note_id, event.context, exc)
    return BroadcastResult(success=False, error=str(exc) or type(exc).__name__)
  if not result.success:
    logger.warning("Status broadcast failed for note %s (%s): %s", event.note_id, event.context, result.error)
  return result
