import asyncio
import time

import pybreaker
import pytest

from recipe_queue.core.errors import ActionExecutionError, ActionTimeoutError, CircuitOpenError, ErrorCategory, TransientError, ValidationError
from recipe_queue.jobs.actions import Action, build_circuit_breaker, with_circuit_breaker, with_error_handling, with_retry, with_timeout
from recipe_queue.jobs.models import ActionContext
from recipe_queue.jobs.retry import RetryPolicy


def make_context() -> ActionContext:
  return ActionContext(job_id="job-1", queue_name="ingredients", worker_name="test", operation="ingredients", attempt_number=1, retry_count=0, start_time=time.monotonic())


class FlakyAction(Action):
  """Fails ``failures`` times, then returns the data."""

  name = "flaky"

  def __init__(self, failures: int, error: Exception | None = None) -> None:
    self.failures = failures
    self.error = error or TransientError("temporarily unavailable")
    self.calls = 0

  async def execute(self, data, deps, context):
    self.calls += 1
    if self.calls <= self.failures:
      raise self.error
    return data


class SlowAction(Action):
  name = "slow"

  async def execute(self, data, deps, context):
    await asyncio.sleep(1)
    return data


class RecordingSleep:
  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, seconds: float) -> None:
    self.delays.append(seconds)


@pytest.mark.anyio
async def test_execute_with_timing_never_raises():
  result = await FlakyAction(failures=1).execute_with_timing({"a": 1}, None, make_context())

  assert result.success is False
  assert isinstance(result.error, TransientError)
  assert result.duration_ms >= 0


@pytest.mark.anyio
async def test_retry_recovers_with_increasing_delays():
  sleep = RecordingSleep()
  inner = FlakyAction(failures=3)
  action = with_retry(inner, RetryPolicy(max_retries=3, backoff_ms=100, max_backoff_ms=10000), sleep=sleep)

  result = await action.execute("data", None, make_context())

  assert result == "data"
  assert inner.calls == 4
  assert sleep.delays == [0.1, 0.2, 0.4]


@pytest.mark.anyio
async def test_retry_gives_up_after_max_retries():
  sleep = RecordingSleep()
  inner = FlakyAction(failures=10)
  action = with_retry(inner, RetryPolicy(max_retries=2, backoff_ms=100), sleep=sleep)

  with pytest.raises(TransientError):
    await action.execute("data", None, make_context())

  assert inner.calls == 3
  assert len(sleep.delays) == 2


@pytest.mark.anyio
async def test_retry_skips_non_retryable_errors():
  sleep = RecordingSleep()
  inner = FlakyAction(failures=1, error=ValidationError("bad line"))
  action = with_retry(inner, RetryPolicy(), sleep=sleep)

  with pytest.raises(ValidationError):
    await action.execute("data", None, make_context())

  assert inner.calls == 1
  assert sleep.delays == []


@pytest.mark.anyio
async def test_retry_respects_action_retryable_flag():
  inner = FlakyAction(failures=1)
  inner.retryable = False
  action = with_retry(inner, RetryPolicy(), sleep=RecordingSleep())

  with pytest.raises(TransientError):
    await action.execute("data", None, make_context())

  assert inner.calls == 1


@pytest.mark.anyio
async def test_timeout_raises_action_timeout_error():
  action = with_timeout(SlowAction(), 0.01)

  with pytest.raises(ActionTimeoutError):
    await action.execute("data", None, make_context())


@pytest.mark.anyio
async def test_error_handling_wraps_with_classification():
  action = with_error_handling(FlakyAction(failures=1, error=ValidationError("missing reference", field="reference")))

  with pytest.raises(ActionExecutionError) as exc_info:
    await action.execute("data", None, make_context())

  error = exc_info.value
  assert error.classification.category is ErrorCategory.VALIDATION
  assert error.classification.requeue is False
  assert error.action_name == "flaky"
  assert isinstance(error.__cause__, ValidationError)


@pytest.mark.anyio
async def test_wrappers_keep_name_and_flags():
  inner = FlakyAction(failures=0)
  inner.always_run = True

  wrapped = with_error_handling(with_retry(with_timeout(inner, 5), RetryPolicy()))

  assert wrapped.name == "flaky"
  assert wrapped.always_run is True
  assert wrapped.unwrap() is inner


@pytest.mark.anyio
async def test_circuit_breaker_rejects_calls_once_open():
  breaker = build_circuit_breaker(name="images:process_image", fail_max=2, reset_timeout_seconds=60)
  inner = FlakyAction(failures=10)
  action = with_circuit_breaker(inner, breaker)
  context = make_context()

  # The tripping failure may surface as the original error or as the open circuit.
  for _ in range(2):
    with pytest.raises((TransientError, CircuitOpenError)):
      await action.execute("data", None, context)
  assert breaker.current_state == pybreaker.STATE_OPEN

  with pytest.raises(CircuitOpenError):
    await action.execute("data", None, context)
  assert inner.calls == 2


@pytest.mark.anyio
async def test_circuit_breaker_closes_after_successful_trial_call():
  breaker = build_circuit_breaker(name="images:process_image", fail_max=2, reset_timeout_seconds=0)
  inner = FlakyAction(failures=2)
  action = with_circuit_breaker(inner, breaker)
  context = make_context()

  for _ in range(2):
    with pytest.raises((TransientError, CircuitOpenError)):
      await action.execute("data", None, context)

  assert await action.execute("data", None, context) == "data"
  assert breaker.current_state == pybreaker.STATE_CLOSED
  assert inner.calls == 3


@pytest.mark.anyio
async def test_circuit_breaker_ignores_validation_failures():
  breaker = build_circuit_breaker(name="images:process_image", fail_max=2, reset_timeout_seconds=60)
  inner = FlakyAction(failures=5, error=ValidationError("image has no source"))
  action = with_circuit_breaker(inner, breaker)
  context = make_context()

  for _ in range(5):
    with pytest.raises(ValidationError):
      await action.execute("data", None, context)

  assert breaker.current_state == pybreaker.STATE_CLOSED
  assert breaker.fail_counter == 0
  assert await action.execute("data", None, context) == "data"
