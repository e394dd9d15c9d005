"""Contracts for publishing note status events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from recipe_queue.notifications.events import StatusEvent


@dataclass(frozen=True)
class BroadcastResult:
  """Definite outcome of one broadcast attempt."""

  success: bool
  error: str | None = None


class StatusBroadcaster(Protocol):
  """Publishes status events; implementations return a result instead of raising."""

  async def add_status_event_and_broadcast(self, event: StatusEvent) -> BroadcastResult:
    """Publish one event and report whether it was delivered."""


class StatusSender(Protocol):
  """Transport that delivers a wire payload, raising on failure."""

  async def send(self, payload: dict[str, Any]) -> None:
    """Deliver one serialized event."""

  async def close(self) -> None:
    """Release transport resources."""
