import pytest

from recipe_queue.core.errors import DuplicateActionError, UnknownActionError
from recipe_queue.jobs.actions import Action
from recipe_queue.jobs.factory import ActionFactory
from recipe_queue.jobs.models import ActionName
from recipe_queue.workers.categorization import register_categorization_actions
from recipe_queue.workers.image import register_image_actions
from recipe_queue.workers.ingredient import register_ingredient_actions
from recipe_queue.workers.instruction import register_instruction_actions
from recipe_queue.workers.note import register_note_actions
from recipe_queue.workers.pattern_tracking import register_pattern_actions


class EchoAction(Action):
  name = "echo"

  async def execute(self, data, deps, context):
    return data


class OtherEchoAction(EchoAction):
  pass


class ConfiguredAction(Action):
  name = "configured"

  def __init__(self, deps):
    self.deps = deps

  async def execute(self, data, deps, context):
    return data


def test_register_and_create():
  factory = ActionFactory()
  factory.register("echo", EchoAction)

  action = factory.create("echo")

  assert isinstance(action, EchoAction)
  assert factory.is_registered("echo")
  assert factory.list() == ["echo"]
  assert len(factory) == 1


def test_duplicate_registration_is_rejected():
  factory = ActionFactory()
  factory.register("echo", EchoAction)

  with pytest.raises(DuplicateActionError):
    factory.register("echo", OtherEchoAction)

  assert type(factory.create("echo")) is EchoAction


def test_force_replaces_registration():
  factory = ActionFactory()
  factory.register("echo", EchoAction)
  factory.register("echo", OtherEchoAction, force=True)

  assert type(factory.create("echo")) is OtherEchoAction


def test_unknown_action_lists_available_names():
  factory = ActionFactory()
  factory.register("echo", EchoAction)

  with pytest.raises(UnknownActionError) as exc_info:
    factory.create("missing")

  assert "missing" in str(exc_info.value)
  assert "echo" in str(exc_info.value)


def test_constructor_taking_dependencies_receives_them():
  factory = ActionFactory()
  factory.register(ActionName.SAVE_NOTE, ConfiguredAction)
  deps = object()

  action = factory.create("save_note", deps)

  assert action.deps is deps


@pytest.mark.parametrize("register", [register_note_actions, register_ingredient_actions, register_instruction_actions, register_image_actions, register_categorization_actions, register_pattern_actions])
def test_every_worker_action_rejects_a_second_registration(register):
  factory = ActionFactory()
  register(factory)

  for name in factory.list():
    with pytest.raises(DuplicateActionError):
      factory.register(name, EchoAction)
