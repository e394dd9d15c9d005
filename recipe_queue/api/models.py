from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImportFile(ApiModel):
  """One HTML document to import."""

  file_name: StrictStr | None = Field(default=None, max_length=512, description="Original file name, used in status messages.")
  content: StrictStr = Field(min_length=1, description="Raw recipe HTML.")
  source_url: StrictStr | None = Field(default=None, description="URL the recipe was exported from.")


class ImportRequest(ApiModel):
  files: list[ImportFile] = Field(min_length=1, max_length=500)


class ImportResponse(ApiModel):
  import_id: str
  job_ids: list[str]


class CompletionResponse(ApiModel):
  note_id: str
  import_id: str | None = None
  total_units: int
  completed_units: int
  failed_units: int
  is_complete: bool


class WorkerStatusResponse(ApiModel):
  name: str
  queue: str
  running: bool
  concurrency: int
  in_flight: int
  processed: int
  failed: int


class HealthResponse(ApiModel):
  status: str
  version: str
  database: bool
  workers: list[WorkerStatusResponse] = Field(default_factory=list)
  queues: dict[str, dict[str, int]] = Field(default_factory=dict)
