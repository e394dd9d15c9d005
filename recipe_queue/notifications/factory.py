"""Factory for the configured status broadcaster."""

from __future__ import annotations

import logging

from recipe_queue.config import Settings
from recipe_queue.notifications.senders import HttpStatusSender, LoggingStatusSender
from recipe_queue.notifications.service import StatusBroadcastService

logger = logging.getLogger(__name__)


def build_status_broadcaster(settings: Settings) -> StatusBroadcastService:
  """Build a broadcaster for the configured transport."""
  if settings.broadcast_url:
    logger.info("Broadcasting status events to %s", settings.broadcast_url)
    sender = HttpStatusSender(url=settings.broadcast_url, timeout_seconds=settings.broadcast_timeout_seconds)
  else:
    logger.info("RECIPE_QUEUE_BROADCAST_URL not set; status events are logged only")
    sender = LoggingStatusSender()
  return StatusBroadcastService(sender=sender, timeout_seconds=settings.broadcast_timeout_seconds)
