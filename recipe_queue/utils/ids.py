"""Identifier helpers for jobs, imports and notes."""

from __future__ import annotations

import uuid


def generate_job_id() -> str:
  """Return a new queue job identifier."""
  return f"job-{uuid.uuid4().hex}"


def generate_import_id() -> str:
  """Return a new import batch identifier."""
  return str(uuid.uuid4())


def generate_record_id() -> str:
  """Return a new primary key for recipe records."""
  return str(uuid.uuid4())


def note_id_for_job(job_id: str) -> str:
  """Stable note id for a note job, so a retried job reuses the same note."""
  return str(uuid.uuid5(uuid.NAMESPACE_URL, f"recipe-queue:note:{job_id}"))
