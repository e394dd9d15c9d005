"""Registry mapping action names to constructors."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from recipe_queue.core.errors import DuplicateActionError, UnknownActionError
from recipe_queue.jobs.actions import Action

logger = logging.getLogger(__name__)

ActionConstructor = Callable[..., Action]


def _takes_dependencies(constructor: ActionConstructor) -> bool:
  try:
    parameters = inspect.signature(constructor).parameters.values()
  except (TypeError, ValueError):
    return False
  positional = [p for p in parameters if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty]
  return len(positional) == 1


def _key(name: str | Enum) -> str:
  return name.value if isinstance(name, Enum) else name


class ActionFactory:
  """Creates actions by name.

  Registering a name twice raises DuplicateActionError unless ``force=True`` is passed,
  in which case the new constructor replaces the old one.
  """

  def __init__(self) -> None:
    self._constructors: dict[str, tuple[ActionConstructor, bool]] = {}

  def register(self, name: str | Enum, constructor: ActionConstructor, *, force: bool = False) -> None:
    key = _key(name)
    if key in self._constructors and not force:
      raise DuplicateActionError(key)
    self._constructors[key] = (constructor, _takes_dependencies(constructor))

  def create(self, name: str | Enum, dependencies: Any = None) -> Action:
    key = _key(name)
    entry = self._constructors.get(key)
    if entry is None:
      raise UnknownActionError(key, self.list())
    constructor, takes_dependencies = entry
    action = constructor(dependencies) if takes_dependencies else constructor()
    if action.name != key:
      logger.debug("Action registered as '%s' reports name '%s'", key, action.name)
    return action

  def is_registered(self, name: str | Enum) -> bool:
    return _key(name) in self._constructors

  def list(self) -> list[str]:
    return sorted(self._constructors)

  def __len__(self) -> int:
    return len(self._constructors)
