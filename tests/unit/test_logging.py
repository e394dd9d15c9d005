import logging
import sys

from recipe_queue.core.logging import TruncatedFormatter, job_logger, truncate_for_logging


def test_job_logger_prefixes_operation_and_job(caplog):
  log = job_logger(logging.getLogger("recipe_queue.test"), operation="ingredients", job_id="job-7", note_id="note-1")

  with caplog.at_level(logging.INFO, logger="recipe_queue.test"):
    log.info("Action %d/%d done", 1, 3)

  record = caplog.records[-1]
  assert record.getMessage() == "[INGREDIENTS] job=job-7 Action 1/3 done"
  assert record.note_id == "note-1"


def test_truncate_for_logging_bounds_payloads():
  assert truncate_for_logging({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'
  assert truncate_for_logging("x" * 12, max_chars=5) == "xxxxx... (7 more chars)"


def test_truncated_formatter_keeps_tail_of_traceback():
  def nested(depth: int) -> None:
    if depth == 0:
      raise RuntimeError("deep failure")
    nested(depth - 1)

  try:
    nested(10)
  except RuntimeError:
    rendered = TruncatedFormatter().formatException(sys.exc_info())

  assert rendered.startswith("Traceback")
  assert "    ...\n" in rendered
  assert rendered.rstrip().endswith("RuntimeError: deep failure")
