"""Builds the parsing collaborators from dotted import paths in settings."""

from __future__ import annotations

import importlib
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from recipe_queue.config import Settings
from recipe_queue.core.errors import MissingDependencyError
from recipe_queue.services.contracts import Categorizer, HtmlParser, ImageProcessor, IngredientParser, InstructionParser, InstructionParseResult

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class UnconfiguredCollaborator:
  """Stands in for a collaborator whose import path is not set; every call fails."""

  def __init__(self, role: str, setting: str) -> None:
    self.role = role
    self.setting = setting

  def __getattr__(self, name: str) -> Callable[..., Any]:
    if name.startswith("_"):
      raise AttributeError(name)

    async def _unconfigured(*args: Any, **kwargs: Any) -> Any:
      raise MissingDependencyError(f"No {self.role} configured; set RECIPE_QUEUE_{self.setting} to a 'module:attr' factory.")

    return _unconfigured


class PassthroughInstructionParser:
  """Collapses whitespace and accepts the line as written."""

  async def parse(self, text: str) -> InstructionParseResult:
    normalized = _WHITESPACE.sub(" ", text).strip()
    if not normalized:
      return InstructionParseResult(parse_status="INCORRECT", normalized_text=None, error_message="Instruction line is empty")
    return InstructionParseResult(parse_status="CORRECT", normalized_text=normalized)


@dataclass(frozen=True)
class ParserSuite:
  html: HtmlParser
  ingredient: IngredientParser
  instruction: InstructionParser
  image: ImageProcessor
  categorizer: Categorizer


def load_callable(path: str) -> Callable[..., Any]:
  """Import 'package.module:attr' and return the callable it names."""
  module_name, _, attr = path.rpartition(":")
  if not module_name or not attr:
    raise ValueError(f"Invalid callable path '{path}'. Expected 'module:attr'.")
  module = importlib.import_module(module_name)
  target = getattr(module, attr, None)
  if target is None:
    raise AttributeError(f"{module_name!r} has no attribute {attr!r}")
  if not callable(target):
    raise TypeError(f"{path!r} is not callable.")
  return target


def _build(path: str | None, *, role: str, setting: str, default: Any = None) -> Any:
  if path is None:
    if default is not None:
      return default
    logger.warning("No %s configured (RECIPE_QUEUE_%s); jobs that need it will fail without retry", role, setting)
    return UnconfiguredCollaborator(role, setting)
  # The path names a factory; calling it yields the collaborator instance.
  instance = load_callable(path)()
  logger.info("Loaded %s from %s", role, path)
  return instance


def build_parsers(settings: Settings) -> ParserSuite:
  """Instantiate every collaborator named in settings."""
  return ParserSuite(
    html=_build(settings.html_parser, role="HTML parser", setting="HTML_PARSER"),
    ingredient=_build(settings.ingredient_parser, role="ingredient parser", setting="INGREDIENT_PARSER"),
    instruction=_build(settings.instruction_parser, role="instruction parser", setting="INSTRUCTION_PARSER", default=PassthroughInstructionParser()),
    image=_build(settings.image_processor, role="image processor", setting="IMAGE_PROCESSOR"),
    categorizer=_build(settings.categorizer, role="categorizer", setting="CATEGORIZER"),
  )
