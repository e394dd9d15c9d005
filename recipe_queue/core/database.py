from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from recipe_queue.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
  pass


def normalize_database_url(pg_dsn: str) -> str:
  """Point plain postgres DSNs at the asyncpg driver."""
  for prefix in ("postgresql://", "postgres://"):
    if pg_dsn.startswith(prefix):
      return pg_dsn.replace(prefix, "postgresql+asyncpg://", 1)
  return pg_dsn


class Database:
  """Owns the async engine and session factory for one process."""

  def __init__(self, engine: AsyncEngine) -> None:
    self.engine = engine
    self.session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)

  @classmethod
  def from_settings(cls, settings: Settings) -> Database:
    if not settings.pg_dsn:
      raise RuntimeError("Database connection is not configured (RECIPE_QUEUE_PG_DSN is missing).")
    engine = create_async_engine(normalize_database_url(settings.pg_dsn), echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
    return cls(engine)

  def session(self) -> AsyncSession:
    return self.session_factory()

  async def ping(self) -> bool:
    """Return True when a trivial query succeeds."""
    try:
      async with self.engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
    except Exception:  # noqa: BLE001
      logger.warning("Database ping failed", exc_info=True)
      return False
    return True

  async def close(self) -> None:
    await self.engine.dispose()
    logger.info("Database engine disposed")

