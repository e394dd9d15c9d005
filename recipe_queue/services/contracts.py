"""Contracts for the parsing and media collaborators used by the actions."""

from __future__ import annotations

from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ParseStatus = Literal["PENDING", "CORRECT", "INCORRECT", "ERROR"]


class ContractModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ParsedIngredient(ContractModel):
  reference: str
  block_index: int
  line_index: int


class ParsedInstruction(ContractModel):
  original_text: str
  line_index: int


class ImageSource(ContractModel):
  url: str | None = None
  data: str | None = None
  content_type: str | None = None
  file_name: str | None = None


class ParsedHtmlFile(ContractModel):
  """Structured result of parsing one recipe document."""

  title: str | None = None
  contents: str | None = None
  source_url: str | None = None
  ingredients: list[ParsedIngredient] = Field(default_factory=list)
  instructions: list[ParsedInstruction] = Field(default_factory=list)
  images: list[ImageSource] = Field(default_factory=list)


class IngredientSegment(ContractModel):
  rule: str
  type: str
  value: str
  processing_time_ms: float | None = None


class IngredientParseResult(ContractModel):
  parse_status: ParseStatus
  segments: list[IngredientSegment] = Field(default_factory=list)
  rule_ids: list[str] = Field(default_factory=list)
  error_message: str | None = None


class InstructionParseResult(ContractModel):
  parse_status: ParseStatus
  normalized_text: str | None = None
  error_message: str | None = None


class ProcessedImage(ContractModel):
  storage_key: str
  content_type: str | None = None
  width: int | None = None
  height: int | None = None
  size_bytes: int | None = None


class CategorizationResult(ContractModel):
  category: str | None = None
  tags: list[str] = Field(default_factory=list)
  confidence: float | None = None


class HtmlParser(Protocol):
  """Cleans and parses raw recipe HTML."""

  async def clean(self, html: str) -> str: ...

  async def parse(self, html: str) -> ParsedHtmlFile: ...


class IngredientParser(Protocol):
  async def parse(self, reference: str) -> IngredientParseResult: ...


class InstructionParser(Protocol):
  async def parse(self, text: str) -> InstructionParseResult: ...


class ImageProcessor(Protocol):
  async def process(self, *, note_id: str, image_index: int, source: ImageSource) -> ProcessedImage: ...


class Categorizer(Protocol):
  async def categorize(self, *, title: str | None, ingredients: list[str]) -> CategorizationResult: ...


def dump_contract(model: ContractModel) -> dict[str, Any]:
  """Serialize a contract model to its camelCase JSON form."""
  return model.model_dump(by_alias=True, mode="json", exclude_none=True)
