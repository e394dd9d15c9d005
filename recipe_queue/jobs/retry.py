"""Exponential backoff policy shared by action retries and queue retries."""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field

from recipe_queue.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
  """Retry budget and backoff curve.

  The delay before retry ``n`` (0-based) is ``backoff_ms * multiplier**n``, grown by up to
  ``jitter`` (a fraction, additive only) and capped at ``max_backoff_ms``. Additive jitter keeps
  the sequence strictly increasing until it reaches the cap.
  """

  max_retries: int = 3
  backoff_ms: int = 1000
  max_backoff_ms: int = 30000
  multiplier: float = 2.0
  jitter: float = 0.0
  random_source: Callable[[], float] = field(default=random.random, compare=False, repr=False)

  def __post_init__(self) -> None:
    if self.max_retries < 0:
      raise ValueError("max_retries must be >= 0")
    if self.backoff_ms <= 0 or self.max_backoff_ms < self.backoff_ms:
      raise ValueError("backoff_ms must be positive and not exceed max_backoff_ms")
    if self.multiplier <= 1.0:
      raise ValueError("multiplier must be > 1 for delays to grow")
    if not 0.0 <= self.jitter < self.multiplier - 1.0:
      raise ValueError("jitter must be in [0, multiplier - 1)")

  @classmethod
  def from_settings(cls, settings: Settings) -> RetryPolicy:
    return cls(max_retries=settings.max_retries, backoff_ms=settings.backoff_ms, max_backoff_ms=settings.max_backoff_ms, multiplier=settings.backoff_multiplier, jitter=settings.retry_jitter)

  def compute_backoff_ms(self, retry: int) -> float:
    """Delay in milliseconds before retry number ``retry`` (0 for the first retry)."""
    if retry < 0:
      raise ValueError("retry must be >= 0")
    delay = self.backoff_ms * (self.multiplier**retry)
    if self.jitter:
      delay *= 1.0 + self.jitter * self.random_source()
    return float(min(delay, self.max_backoff_ms))

  def should_retry(self, retry_count: int) -> bool:
    return retry_count < self.max_retries
