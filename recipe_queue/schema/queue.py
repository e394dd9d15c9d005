from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from recipe_queue.core.database import Base


class QueueJob(Base):
  __tablename__ = "queue_jobs"
  __table_args__ = (
    Index("ix_queue_jobs_claimable", "queue_name", "priority", "available_at", postgresql_where=text("status = 'waiting'")),
    Index("ix_queue_jobs_active_lock", "queue_name", "locked_at", postgresql_where=text("status = 'active'")),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  queue_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
  job_name: Mapped[str] = mapped_column(String, nullable=False)
  data_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="waiting")
  priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
  backoff_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
  remove_on_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  remove_on_fail: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  available_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
  locked_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  result_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
  finished_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
