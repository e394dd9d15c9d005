"""Typed status events for note processing, one class per status kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from recipe_queue.schema.recipes import NoteStatus


@dataclass(frozen=True, kw_only=True)
class StatusEvent:
  """Progress or terminal state for a note, as published to observers."""

  status: ClassVar[NoteStatus]

  import_id: str
  note_id: str | None = None
  message: str | None = None
  context: str | None = None
  current_count: int | None = None
  total_count: int | None = None
  indent_level: int | None = None
  metadata: dict[str, Any] = field(default_factory=dict)

  def to_wire(self) -> dict[str, Any]:
    """Serialize to the camelCase wire shape; only None values are omitted."""
    payload: dict[str, Any] = {"importId": self.import_id, "status": self.status.value}
    optional = {
      "noteId": self.note_id,
      "message": self.message,
      "context": self.context,
      "currentCount": self.current_count,
      "totalCount": self.total_count,
      "indentLevel": self.indent_level,
    }
    for key, value in optional.items():
      if value is not None:
        payload[key] = value
    if self.metadata:
      payload["metadata"] = dict(self.metadata)
    return payload


@dataclass(frozen=True, kw_only=True)
class ProcessingEvent(StatusEvent):
  """Work on a note (or one of its units) has started."""

  status: ClassVar[NoteStatus] = NoteStatus.PROCESSING


@dataclass(frozen=True, kw_only=True)
class ProgressEvent(StatusEvent):
  """A running count of processed units."""

  status: ClassVar[NoteStatus] = NoteStatus.PROCESSING

  current_count: int
  total_count: int

  def __post_init__(self) -> None:
    if self.current_count < 0 or self.total_count < 0:
      raise ValueError("Progress counts must be non-negative")


@dataclass(frozen=True, kw_only=True)
class CompletedEvent(StatusEvent):
  status: ClassVar[NoteStatus] = NoteStatus.COMPLETED


@dataclass(frozen=True, kw_only=True)
class FailedEvent(StatusEvent):
  """A job failed for good; carries the classified error."""

  status: ClassVar[NoteStatus] = NoteStatus.FAILED

  error_code: str
  error_type: str
  severity: str | None = None

  def to_wire(self) -> dict[str, Any]:
    payload = super().to_wire()
    error: dict[str, Any] = {"errorCode": self.error_code, "errorType": self.error_type}
    if self.severity is not None:
      error["severity"] = self.severity
    payload["metadata"] = {**payload.get("metadata", {}), **error}
    return payload
