import pytest

from recipe_queue.config import Settings
from recipe_queue.core.errors import MissingDependencyError
from recipe_queue.services.parsers import PassthroughInstructionParser, UnconfiguredCollaborator, build_parsers, load_callable
from tests.fakes import StubCategorizer


def test_load_callable_resolves_module_attr():
  assert load_callable("tests.fakes:StubCategorizer") is StubCategorizer


@pytest.mark.parametrize(("path", "error"), [("tests.fakes", ValueError), ("tests.fakes:missing", AttributeError), ("recipe_queue.config:ENV_PREFIX", TypeError)])
def test_load_callable_rejects_bad_paths(path, error):
  with pytest.raises(error):
    load_callable(path)


def test_build_parsers_instantiates_configured_factories():
  suite = build_parsers(Settings(categorizer="tests.fakes:StubCategorizer"))

  assert isinstance(suite.categorizer, StubCategorizer)
  assert isinstance(suite.instruction, PassthroughInstructionParser)
  assert isinstance(suite.html, UnconfiguredCollaborator)


@pytest.mark.anyio
async def test_unconfigured_collaborator_fails_as_configuration_error():
  suite = build_parsers(Settings())

  with pytest.raises(MissingDependencyError, match="RECIPE_QUEUE_HTML_PARSER"):
    await suite.html.parse("<html></html>")


@pytest.mark.anyio
async def test_passthrough_instruction_parser():
  parser = PassthroughInstructionParser()

  assert (await parser.parse("  Boil   the\nwater ")).normalized_text == "Boil the water"
  assert (await parser.parse("   ")).parse_status == "INCORRECT"
