"""Retry logic for rate-limited provider calls."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from flowvision.ai.errors import is_rate_limit_error

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_DELAYS: tuple[float, ...] = (1.0, 2.0, 4.0)


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args, delays: Sequence[float] = DEFAULT_DELAYS, jitter: float = 0.5, **kwargs) -> T:
  """
  Execute a coroutine function, retrying only rate-limit and quota errors.

  Each delay in `delays` is one retry; the final attempt propagates its error.
  """
  for attempt, delay in enumerate(delays):
    try:
      return await func(*args, **kwargs)
    except Exception as exc:
      # Non-retryable errors propagate immediately.
      if not is_rate_limit_error(exc):
        raise
      wait = delay + random.uniform(0, jitter) if jitter > 0 else delay
      logger.warning("Rate limited (attempt %d/%d): %s. Retrying in %.2fs", attempt + 1, len(delays) + 1, exc, wait)
      await asyncio.sleep(wait)

  # Final attempt
  return await func(*args, **kwargs)
