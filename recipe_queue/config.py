"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from recipe_queue.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

ENV_PREFIX = "RECIPE_QUEUE_"
DEFAULT_QUEUES = ("notes", "ingredients", "instructions", "images", "categorization", "patterns")


@dataclass(frozen=True)
class Settings:
  """Typed settings for the recipe queue service and its workers."""

  environment: str = "development"
  debug: bool = False
  pg_dsn: str | None = None
  pg_connect_timeout: int = 10
  log_dir: str = "./logs"
  log_level: str = "INFO"
  log_max_bytes: int = 10 * 1024 * 1024
  log_backup_count: int = 5
  max_retries: int = 3
  backoff_ms: int = 1000
  max_backoff_ms: int = 30000
  backoff_multiplier: float = 2.0
  retry_jitter: float = 0.0
  job_attempts: int = 3
  worker_concurrency: int = 5
  queue_concurrency: dict[str, int] = field(default_factory=dict, hash=False)
  poll_interval_seconds: float = 1.0
  action_timeout_seconds: float | None = None
  job_lock_timeout_seconds: int = 600
  shutdown_timeout_seconds: float = 30.0
  enabled_queues: tuple[str, ...] = DEFAULT_QUEUES
  run_workers_in_api: bool = False
  broadcast_url: str | None = None
  broadcast_timeout_seconds: float = 5.0
  categorization_enabled: bool = True
  html_parser: str | None = None
  ingredient_parser: str | None = None
  instruction_parser: str | None = None
  image_processor: str | None = None
  categorizer: str | None = None

  def concurrency_for(self, queue_name: str) -> int:
    """Return the consumer count for a queue, falling back to the worker default."""
    return self.queue_concurrency.get(queue_name, self.worker_concurrency)


def _env(name: str, default: str | None = None) -> str | None:
  return os.getenv(f"{ENV_PREFIX}{name}", default)


def _parse_bool(raw: str | None, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _parse_positive_int(name: str, raw: str | None, default: int) -> int:
  if raw is None or raw.strip() == "":
    return default
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{ENV_PREFIX}{name} must be an integer.") from exc
  if value <= 0:
    raise ValueError(f"{ENV_PREFIX}{name} must be a positive integer.")
  return value


def _parse_non_negative_int(name: str, raw: str | None, default: int) -> int:
  if raw is None or raw.strip() == "":
    return default
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{ENV_PREFIX}{name} must be an integer.") from exc
  if value < 0:
    raise ValueError(f"{ENV_PREFIX}{name} must be >= 0.")
  return value


def _parse_float(name: str, raw: str | None, default: float) -> float:
  if raw is None or raw.strip() == "":
    return default
  try:
    value = float(raw)
  except ValueError as exc:
    raise ValueError(f"{ENV_PREFIX}{name} must be a number.") from exc
  if value < 0:
    raise ValueError(f"{ENV_PREFIX}{name} must be >= 0.")
  return value


def _parse_optional_float(name: str, raw: str | None) -> float | None:
  if raw is None or raw.strip() == "":
    return None
  value = _parse_float(name, raw, 0.0)
  if value <= 0:
    raise ValueError(f"{ENV_PREFIX}{name} must be positive when provided.")
  return value


def _parse_queue_list(raw: str | None) -> tuple[str, ...]:
  if raw is None or raw.strip() == "":
    return DEFAULT_QUEUES
  queues = tuple(item.strip().lower() for item in raw.split(",") if item.strip())
  unknown = [queue for queue in queues if queue not in DEFAULT_QUEUES]
  if unknown:
    raise ValueError(f"{ENV_PREFIX}ENABLED_QUEUES contains unknown queues: {', '.join(unknown)}")
  return queues


def _parse_queue_concurrency() -> dict[str, int]:
  # Per-queue overrides, e.g. RECIPE_QUEUE_CONCURRENCY_INGREDIENTS=10.
  overrides: dict[str, int] = {}
  for queue in DEFAULT_QUEUES:
    name = f"CONCURRENCY_{queue.upper()}"
    raw = _env(name)
    if raw is not None and raw.strip() != "":
      overrides[queue] = _parse_positive_int(name, raw, 1)
  return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = (_env("ENV", "development") or "development").strip().lower()

  # Toggle SQL echo and verbose diagnostics outside production.
  debug = _parse_bool(_env("DEBUG"))

  max_backoff_ms = _parse_positive_int("MAX_BACKOFF_MS", _env("MAX_BACKOFF_MS"), 30000)
  backoff_ms = _parse_positive_int("BACKOFF_MS", _env("BACKOFF_MS"), 1000)
  if backoff_ms > max_backoff_ms:
    raise ValueError(f"{ENV_PREFIX}BACKOFF_MS must not exceed {ENV_PREFIX}MAX_BACKOFF_MS.")
  backoff_multiplier = _parse_float("BACKOFF_MULTIPLIER", _env("BACKOFF_MULTIPLIER"), 2.0)
  if backoff_multiplier <= 1:
    raise ValueError(f"{ENV_PREFIX}BACKOFF_MULTIPLIER must be greater than 1.")

  return Settings(
    environment=environment,
    debug=debug,
    pg_dsn=_optional_str(_env("PG_DSN")),
    pg_connect_timeout=_parse_positive_int("PG_CONNECT_TIMEOUT", _env("PG_CONNECT_TIMEOUT"), 10),
    log_dir=_optional_str(_env("LOG_DIR")) or "./logs",
    log_level=(_optional_str(_env("LOG_LEVEL")) or "INFO").upper(),
    log_max_bytes=_parse_positive_int("LOG_MAX_BYTES", _env("LOG_MAX_BYTES"), 10 * 1024 * 1024),
    log_backup_count=_parse_positive_int("LOG_BACKUP_COUNT", _env("LOG_BACKUP_COUNT"), 5),
    max_retries=_parse_non_negative_int("MAX_RETRIES", _env("MAX_RETRIES"), 3),
    backoff_ms=backoff_ms,
    max_backoff_ms=max_backoff_ms,
    backoff_multiplier=backoff_multiplier,
    retry_jitter=_parse_float("RETRY_JITTER", _env("RETRY_JITTER"), 0.0),
    job_attempts=_parse_positive_int("JOB_ATTEMPTS", _env("JOB_ATTEMPTS"), 3),
    worker_concurrency=_parse_positive_int("WORKER_CONCURRENCY", _env("WORKER_CONCURRENCY"), 5),
    queue_concurrency=_parse_queue_concurrency(),
    poll_interval_seconds=_parse_float("POLL_INTERVAL_SECONDS", _env("POLL_INTERVAL_SECONDS"), 1.0),
    action_timeout_seconds=_parse_optional_float("ACTION_TIMEOUT_SECONDS", _env("ACTION_TIMEOUT_SECONDS")),
    job_lock_timeout_seconds=_parse_positive_int("JOB_LOCK_TIMEOUT_SECONDS", _env("JOB_LOCK_TIMEOUT_SECONDS"), 600),
    shutdown_timeout_seconds=_parse_float("SHUTDOWN_TIMEOUT_SECONDS", _env("SHUTDOWN_TIMEOUT_SECONDS"), 30.0),
    enabled_queues=_parse_queue_list(_env("ENABLED_QUEUES")),
    run_workers_in_api=_parse_bool(_env("RUN_WORKERS_IN_API")),
    broadcast_url=_optional_str(_env("BROADCAST_URL")),
    broadcast_timeout_seconds=_parse_float("BROADCAST_TIMEOUT_SECONDS", _env("BROADCAST_TIMEOUT_SECONDS"), 5.0),
    categorization_enabled=_parse_bool(_env("CATEGORIZATION_ENABLED"), default=True),
    html_parser=_optional_str(_env("HTML_PARSER")),
    ingredient_parser=_optional_str(_env("INGREDIENT_PARSER")),
    instruction_parser=_optional_str(_env("INSTRUCTION_PARSER")),
    image_processor=_optional_str(_env("IMAGE_PROCESSOR")),
    categorizer=_optional_str(_env("CATEGORIZER")),
  )
