"""Run queue workers until SIGINT or SIGTERM.

    python -m recipe_queue --queue ingredients --queue instructions
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal

from recipe_queue.config import DEFAULT_QUEUES, get_settings
from recipe_queue.core.logging import _initialize_logging
from recipe_queue.jobs.registry import build_container

logger = logging.getLogger("recipe_queue.worker")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(prog="recipe_queue", description="Run recipe import queue workers.")
  parser.add_argument("--queue", action="append", choices=DEFAULT_QUEUES, dest="queues", help="Queue to consume; repeat for several. Defaults to RECIPE_QUEUE_ENABLED_QUEUES.")
  parser.add_argument("--concurrency", type=int, default=None, help="Consumers per queue, overriding the configured concurrency.")
  return parser.parse_args(argv)


async def _run(queues: list[str] | None, concurrency: int | None) -> None:
  settings = get_settings()
  if concurrency is not None:
    if concurrency <= 0:
      raise SystemExit("--concurrency must be positive")
    settings = dataclasses.replace(settings, worker_concurrency=concurrency, queue_concurrency={})
  _initialize_logging(settings)

  stop = asyncio.Event()
  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, stop.set)

  container = build_container(settings)
  try:
    container.create_workers(queues or settings.enabled_queues)
    await container.start_workers()
    await stop.wait()
    logger.info("Shutdown signal received; stopping workers.")
  finally:
    await container.close()


def main(argv: list[str] | None = None) -> None:
  args = _parse_args(argv)
  asyncio.run(_run(args.queues, args.concurrency))


if __name__ == "__main__":
  main()
