"""Short-lived operation store for polling clients."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace

from flowvision.operations.models import OperationResult, OperationStatus, Progress

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class OperationStore:
  """Maps operation ids to their latest progress and final result.

  Status transitions are one-directional: nothing leaves a terminal status and
  nothing returns to `queued` after processing starts. Percentages never
  decrease. Terminal entries expire `retention_seconds` after they settle.
  """

  def __init__(self, *, retention_seconds: float = 60.0, clock: Clock = time.time) -> None:
    if retention_seconds < 0:
      raise ValueError("Retention window must not be negative.")
    self._retention_seconds = retention_seconds
    self._clock = clock
    self._progress: dict[str, Progress] = {}
    self._results: dict[str, OperationResult] = {}
    self._purge_at: dict[str, float] = {}
    self._purged: list[str] = []

  def __len__(self) -> int:
    return len(self._progress)

  def __contains__(self, operation_id: str) -> bool:
    self._expire(operation_id)
    return operation_id in self._progress

  def apply(self, progress: Progress) -> Progress | None:
    """Record a progress update; return the stored snapshot, or None if the transition is not allowed."""
    operation_id = progress.operation_id
    self._expire(operation_id)
    current = self._progress.get(operation_id)

    if current is not None:
      if current.status.is_terminal:
        return None
      if progress.status is OperationStatus.QUEUED and current.status is not OperationStatus.QUEUED:
        return None
      # Keep the recorded percentage monotonic even when a caller reports a lower value.
      if progress.percentage < current.percentage:
        progress = replace(progress, percentage=current.percentage)

    self._progress[operation_id] = progress
    if progress.status.is_terminal:
      self._purge_at[operation_id] = self._clock() + self._retention_seconds
    return progress

  def record_completion(self, progress: Progress, result: OperationResult) -> Progress | None:
    """Store a completed progress snapshot together with its result."""
    if progress.status is not OperationStatus.COMPLETED:
      raise ValueError("A result can only be stored with a completed progress snapshot.")
    applied = self.apply(progress)
    if applied is not None:
      self._results[progress.operation_id] = result
    return applied

  def get_progress(self, operation_id: str) -> Progress | None:
    self._expire(operation_id)
    return self._progress.get(operation_id)

  def get_result(self, operation_id: str) -> OperationResult | None:
    self._expire(operation_id)
    return self._results.get(operation_id)

  def sweep(self) -> list[str]:
    """Purge every entry whose retention window has elapsed.

    Returns the ids purged since the previous sweep, including ones expired
    lazily by reads, so owners can release per-operation resources.
    """
    now = self._clock()
    expired = [operation_id for operation_id, deadline in self._purge_at.items() if now >= deadline]
    for operation_id in expired:
      self._purge(operation_id)
    purged, self._purged = self._purged, []
    if purged:
      logger.debug("Purged %d operations past retention", len(purged))
    return purged

  def _expire(self, operation_id: str) -> None:
    deadline = self._purge_at.get(operation_id)
    if deadline is not None and self._clock() >= deadline:
      self._purge(operation_id)

  def _purge(self, operation_id: str) -> None:
    self._progress.pop(operation_id, None)
    self._results.pop(operation_id, None)
    self._purge_at.pop(operation_id, None)
    self._purged.append(operation_id)
