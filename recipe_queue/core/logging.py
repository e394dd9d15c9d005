import json
import logging
import logging.handlers
import sys
import time
import traceback
from collections.abc import MutableMapping
from pathlib import Path
from types import TracebackType
from typing import Any

from recipe_queue.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
MAX_LOGGED_CHARS = 500

_LOG_FILE_PATH: Path | None = None
_LOGGING_INITIALIZED = False


class TruncatedFormatter(logging.Formatter):
  """Formatter that truncates the stack trace to the last few lines."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    # Keep header + last 5 lines of traceback
    if len(lines) > 6:
      return "".join(lines[:1] + ["    ...\n"] + lines[-5:])
    return "".join(lines)


class JobLoggerAdapter(logging.LoggerAdapter):
  """Prefixes every message with the operation and job id of the current job."""

  def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
    extra = self.extra or {}
    prefix = f"[{str(extra.get('operation', 'job')).upper()}] job={extra.get('job_id') or '-'}"
    kwargs.setdefault("extra", {}).update(extra)
    return f"{prefix} {msg}", kwargs


def job_logger(logger: logging.Logger, *, operation: str, job_id: str | None, note_id: str | None = None) -> JobLoggerAdapter:
  """Return a logger adapter bound to one job execution."""
  return JobLoggerAdapter(logger, {"operation": operation, "job_id": job_id, "note_id": note_id})


def truncate_for_logging(value: Any, max_chars: int = MAX_LOGGED_CHARS) -> str:
  """Render a payload for log output, bounded to max_chars."""
  if isinstance(value, str):
    rendered = value
  else:
    try:
      rendered = json.dumps(value, default=str, sort_keys=True)
    except (TypeError, ValueError):
      rendered = repr(value)
  if len(rendered) <= max_chars:
    return rendered
  return f"{rendered[:max_chars]}... ({len(rendered) - max_chars} more chars)"


def _build_handlers(settings: Settings) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create the stdout and rotating file handlers."""
  log_dir = Path(settings.log_dir).resolve()
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  log_path = log_dir / f"recipe_queue_{time.strftime('%Y%m%d_%H%M%S')}.log"

  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)

  # Backups as recipe_queue_x.log-1 instead of recipe_queue_x.log.1
  def custom_namer(default_name: str) -> str:
    base_filename, _, num = default_name.rpartition(".")
    if num.isdigit():
      return f"{base_filename}-{num}"
    return default_name

  file_handler.namer = custom_namer
  file_handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return stream, file_handler, log_path


def setup_logging(settings: Settings) -> Path:
  """Route all loggers, including uvicorn's, through our handlers."""
  stream_handler, file_handler, log_path = _build_handlers(settings)
  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    log = logging.getLogger(logger_name)
    log.handlers = [stream_handler, file_handler]
    log.propagate = False

  level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level, logging.INFO)
  logging.basicConfig(level=level, handlers=[stream_handler, file_handler], force=True)
  # SQL echo is controlled by the engine, keep the logger itself quiet.
  logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
  logging.getLogger("httpx").setLevel(logging.WARNING)
  return log_path


def _initialize_logging(settings: Settings) -> None:
  """Initialize logging once per process and log where it goes."""
  global _LOG_FILE_PATH, _LOGGING_INITIALIZED
  if _LOGGING_INITIALIZED:
    return
  _LOG_FILE_PATH = setup_logging(settings)
  _LOGGING_INITIALIZED = True
  logging.getLogger("recipe_queue.core.logging").info("Logging initialized. Writing to %s", _LOG_FILE_PATH)
