"""Progress publication to per-operation subscribers."""

from __future__ import annotations

import logging
from collections.abc import Callable

from flowvision.operations.models import Progress

logger = logging.getLogger(__name__)

ProgressSubscriber = Callable[[Progress], None]


class ProgressNotifier:
  """Per-operation subscriber registry with best-effort synchronous delivery.

  Subscribers are plain callables, so any transport (polling cache, push
  channel, SSE queue) attaches the same way without touching the scheduler.
  """

  def __init__(self) -> None:
    self._subscribers: dict[str, list[ProgressSubscriber]] = {}

  def subscribe(self, operation_id: str, callback: ProgressSubscriber) -> Callable[[], None]:
    """Register a callback for an operation and return a function that removes it."""
    self._subscribers.setdefault(operation_id, []).append(callback)

    def _unsubscribe() -> None:
      callbacks = self._subscribers.get(operation_id)
      if callbacks and callback in callbacks:
        callbacks.remove(callback)
        if not callbacks:
          del self._subscribers[operation_id]

    return _unsubscribe

  def publish(self, progress: Progress) -> int:
    """Invoke every callback for the operation; return how many ran without raising."""
    delivered = 0
    # Iterate over a copy so callbacks may unsubscribe while being notified.
    for callback in list(self._subscribers.get(progress.operation_id, ())):
      try:
        callback(progress)
      except Exception:
        logger.exception("Progress subscriber failed for operation %s", progress.operation_id)
        continue
      delivered += 1
    return delivered

  def discard(self, operation_id: str) -> None:
    """Forget every subscription for an operation."""
    self._subscribers.pop(operation_id, None)

  def subscriber_count(self, operation_id: str) -> int:
    return len(self._subscribers.get(operation_id, ()))
