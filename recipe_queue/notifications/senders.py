"""Transports for serialized status events."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class HttpStatusSender:
  """POSTs each event to the endpoint that fans it out to connected clients."""

  def __init__(self, *, url: str, timeout_seconds: float, client: httpx.AsyncClient | None = None) -> None:
    self._url = url
    self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
    self._owns_client = client is None

  async def send(self, payload: dict[str, Any]) -> None:
    response = await self._client.post(self._url, json=payload)
    response.raise_for_status()

  async def close(self) -> None:
    if self._owns_client:
      await self._client.aclose()


class LoggingStatusSender:
  """Writes events to the log when no broadcast endpoint is configured."""

  async def send(self, payload: dict[str, Any]) -> None:
    logger.info("Status event: status=%s note=%s context=%s message=%s", payload.get("status"), payload.get("noteId"), payload.get("context"), payload.get("message"))

  async def close(self) -> None:
    return None
