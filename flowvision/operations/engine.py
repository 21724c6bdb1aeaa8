"""Asynchronous AI operation engine: priority queue, bounded workers, cache, progress."""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from flowvision.ai.errors import DuplicateOperationError, InvalidOperationError, OperationNotFoundError, ProviderFailureError, ProviderUnavailableError
from flowvision.ai.providers.base import CompletionProvider
from flowvision.config import MAX_AI_WORKERS, Settings
from flowvision.operations.cache import ResultCache, compute_fingerprint
from flowvision.operations.models import PRIORITIES, Operation, OperationResult, OperationStatus, Progress, QueueStatus
from flowvision.operations.notifier import ProgressNotifier, ProgressSubscriber
from flowvision.operations.processors import KindRegistry, KindSpec, ProcessorRequest, build_default_registry
from flowvision.operations.store import OperationStore

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class EngineConfig:
  """Injected engine tuning; `max_workers` bounds concurrent provider calls."""

  max_workers: int = 1
  retention_seconds: float = 60.0
  provider_timeout_seconds: float = 30.0
  tick_interval_seconds: float = 0.1
  cache_high_water_mark: int = 100
  cache_hit_delay_seconds: float = 0.05
  queue_healthy_limit: int = 10

  def __post_init__(self) -> None:
    if not 1 <= self.max_workers <= MAX_AI_WORKERS:
      raise ValueError(f"max_workers must be between 1 and {MAX_AI_WORKERS}.")
    if self.retention_seconds < 0:
      raise ValueError("retention_seconds must not be negative.")
    if self.provider_timeout_seconds <= 0:
      raise ValueError("provider_timeout_seconds must be positive.")
    if self.tick_interval_seconds <= 0:
      raise ValueError("tick_interval_seconds must be positive.")
    if self.cache_high_water_mark <= 0:
      raise ValueError("cache_high_water_mark must be positive.")
    if self.cache_hit_delay_seconds < 0:
      raise ValueError("cache_hit_delay_seconds must not be negative.")
    if self.queue_healthy_limit <= 0:
      raise ValueError("queue_healthy_limit must be positive.")

  @classmethod
  def from_settings(cls, settings: Settings) -> EngineConfig:
    return cls(
      max_workers=settings.ai_max_workers,
      retention_seconds=settings.ai_retention_seconds,
      provider_timeout_seconds=settings.ai_provider_timeout_seconds,
      tick_interval_seconds=settings.ai_tick_seconds,
      cache_high_water_mark=settings.ai_cache_high_water_mark,
      cache_hit_delay_seconds=settings.ai_cache_hit_delay_seconds,
      queue_healthy_limit=settings.ai_queue_healthy_limit,
    )


@dataclass(eq=False)
class _Scheduled:
  """Queue entry; identity equality so cancellation removes exactly this entry."""

  operation: Operation
  spec: KindSpec
  fingerprint: str
  estimated_duration: float


class OperationEngine:
  """Owns the pending queue, the operation store and the result cache.

  All state changes happen on the event loop thread without awaiting in
  between, so the queue and store have a single writer. Only the processor
  (and thus the provider call) suspends. Enqueue requires a running loop.
  """

  def __init__(self, provider: CompletionProvider | None, *, config: EngineConfig | None = None, registry: KindRegistry | None = None, clock: Clock = time.time) -> None:
    self._provider = provider
    self._config = config or EngineConfig()
    self._registry = registry or build_default_registry()
    self._clock = clock
    self._store = OperationStore(retention_seconds=self._config.retention_seconds, clock=clock)
    self._cache = ResultCache(high_water_mark=self._config.cache_high_water_mark, clock=clock)
    self._notifier = ProgressNotifier()
    self._high: deque[_Scheduled] = deque()
    self._standard: deque[_Scheduled] = deque()
    self._pending: dict[str, _Scheduled] = {}
    self._active: dict[str, asyncio.Task[None]] = {}
    self._cancelled: set[str] = set()
    self._ticker: asyncio.Task[None] | None = None
    self._closed = False

  @property
  def config(self) -> EngineConfig:
    return self._config

  @property
  def registry(self) -> KindRegistry:
    return self._registry

  @property
  def cache(self) -> ResultCache:
    return self._cache

  @property
  def notifier(self) -> ProgressNotifier:
    return self._notifier

  @property
  def provider_available(self) -> bool:
    return self._provider is not None

  def enqueue(self, operation: Operation, subscriber: ProgressSubscriber | None = None) -> str:
    """Accept an operation for asynchronous processing and return its id.

    Raises `ProviderUnavailableError`, `UnknownKindError` or
    `InvalidOperationError` synchronously; processing failures are only
    reported through progress.
    """
    if self._provider is None:
      raise ProviderUnavailableError()
    if self._closed:
      raise ProviderUnavailableError("AI operation engine is stopped; no new operations are accepted.")
    spec = self._registry.resolve(operation.kind)
    _validate_operation(operation)
    if self._is_tracked(operation.id):
      raise DuplicateOperationError(operation.id)
    try:
      fingerprint = compute_fingerprint(operation.kind, operation.input, operation.context)
    except (TypeError, ValueError) as exc:
      raise InvalidOperationError(f"Operation input and context must be JSON-compatible: {exc}") from exc

    loop = asyncio.get_running_loop()
    now = self._clock()
    if subscriber is not None:
      self._notifier.subscribe(operation.id, subscriber)

    cached = self._cache.get(fingerprint)
    if cached is not None:
      result = replace(cached, operation_id=operation.id, payload=copy.deepcopy(cached.payload), cached=True)
      progress = Progress(operation_id=operation.id, percentage=100, status=OperationStatus.COMPLETED, message="Retrieved from cache", started_at=now, estimated_completion=now, current_step="cache_retrieval")
      self._store.record_completion(progress, result)
      # Deliver the completion on a later loop turn so callers see the same asynchronous contract as a miss.
      loop.call_later(self._config.cache_hit_delay_seconds, self._notifier.publish, progress)
      logger.info("Cache hit for operation %s kind=%s", operation.id, operation.kind)
      return operation.id

    estimated_duration = operation.estimated_duration or spec.default_duration
    scheduled = _Scheduled(operation=operation, spec=spec, fingerprint=fingerprint, estimated_duration=estimated_duration)
    if operation.priority == "high":
      self._high.append(scheduled)
    else:
      self._standard.append(scheduled)
    self._pending[operation.id] = scheduled

    self._transition(Progress(operation_id=operation.id, percentage=0, status=OperationStatus.QUEUED, message="Operation queued for processing", started_at=now, estimated_completion=now + estimated_duration))
    logger.info("Queued operation %s kind=%s priority=%s queue_length=%d", operation.id, operation.kind, operation.priority, len(self._pending))
    self._drain()
    return operation.id

  def cancel(self, operation_id: str) -> bool:
    """Cancel a pending or running operation; return False when it is unknown or already settled."""
    scheduled = self._pending.pop(operation_id, None)
    if scheduled is not None:
      band = self._high if scheduled.operation.priority == "high" else self._standard
      band.remove(scheduled)
      self._transition(self._cancelled_progress(operation_id))
      logger.info("Cancelled queued operation %s", operation_id)
      return True

    if operation_id in self._active:
      if operation_id in self._cancelled:
        return True
      if not self._transition(self._cancelled_progress(operation_id)):
        # Settled between completion and task teardown.
        return False
      # The provider call keeps running; its result is discarded when it arrives.
      self._cancelled.add(operation_id)
      logger.info("Cancelled running operation %s; in-flight call will be discarded", operation_id)
      return True

    return False

  def get_progress(self, operation_id: str) -> Progress | None:
    """Return the latest progress, a synthesized queued snapshot for pending work, or None."""
    progress = self._store.get_progress(operation_id)
    if progress is None and operation_id in self._pending:
      scheduled = self._pending[operation_id]
      now = self._clock()
      return Progress(operation_id=operation_id, percentage=0, status=OperationStatus.QUEUED, message="Operation in queue", started_at=now, estimated_completion=now + scheduled.estimated_duration)
    return progress

  def get_result(self, operation_id: str) -> OperationResult | None:
    return self._store.get_result(operation_id)

  def subscribe(self, operation_id: str, subscriber: ProgressSubscriber) -> Callable[[], None]:
    """Attach an additional progress subscriber to a tracked operation.

    Raises `OperationNotFoundError` for ids the engine does not track, since
    only tracked ids have their subscriptions discarded on purge.
    """
    if not self._is_tracked(operation_id):
      raise OperationNotFoundError(operation_id)
    return self._notifier.subscribe(operation_id, subscriber)

  def queue_status(self) -> QueueStatus:
    queue_length = len(self._pending)
    return QueueStatus(
      queue_length=queue_length,
      active_workers=len(self._active),
      max_workers=self._config.max_workers,
      cache_size=len(self._cache),
      draining=bool(self._active),
      healthy=queue_length < self._config.queue_healthy_limit,
      tracked_operations=len(self._store) + len(self._pending),
      cache_stats=self._cache.stats(),
    )

  def start(self) -> None:
    """Start the fixed-interval ticker that sweeps expired entries and drains the queue."""
    if self._ticker is None or self._ticker.done():
      self._closed = False
      self._ticker = asyncio.get_running_loop().create_task(self._tick_loop(), name="ai-operation-ticker")

  async def stop(self) -> None:
    """Stop the ticker, abandon in-flight executions and fail queued work.

    Abandoned operations settle as failed so they purge after retention like
    any other terminal operation. `enqueue` is rejected until `start()`.
    """
    self._closed = True
    abandoned = list(self._pending) + [operation_id for operation_id in self._active if operation_id not in self._cancelled]
    self._pending.clear()
    self._high.clear()
    self._standard.clear()
    tasks = list(self._active.values())
    if self._ticker is not None:
      tasks.append(self._ticker)
      self._ticker = None
    for task in tasks:
      task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    for operation_id in abandoned:
      self._fail(operation_id, "Operation failed: AI operation engine stopped before it completed")
    if abandoned:
      logger.info("Engine stopped; abandoned %d operations", len(abandoned))

  async def _tick_loop(self) -> None:
    while True:
      await asyncio.sleep(self._config.tick_interval_seconds)
      self.sweep()
      self._drain()

  def sweep(self) -> list[str]:
    """Purge operations past retention and drop their subscriptions."""
    purged = self._store.sweep()
    for operation_id in purged:
      self._notifier.discard(operation_id)
    return purged

  def _drain(self) -> None:
    if self._closed:
      return
    loop = asyncio.get_running_loop()
    while len(self._active) < self._config.max_workers:
      scheduled = self._pop_next()
      if scheduled is None:
        return
      operation_id = scheduled.operation.id
      task = loop.create_task(self._execute(scheduled), name=f"ai-operation:{operation_id}")
      self._active[operation_id] = task
      task.add_done_callback(functools.partial(self._on_finished, operation_id))

  def _pop_next(self) -> _Scheduled | None:
    band = self._high if self._high else self._standard
    if not band:
      return None
    scheduled = band.popleft()
    del self._pending[scheduled.operation.id]
    return scheduled

  def _on_finished(self, operation_id: str, task: asyncio.Task[None]) -> None:
    self._active.pop(operation_id, None)
    self._cancelled.discard(operation_id)
    if not task.cancelled() and task.exception() is not None:
      logger.error("Execution task crashed for operation %s", operation_id, exc_info=task.exception())
    # Each finished operation immediately frees a slot for the next one.
    self._drain()

  async def _execute(self, scheduled: _Scheduled) -> None:
    operation = scheduled.operation
    started_at = self._clock()
    estimated_completion = started_at + scheduled.estimated_duration

    def report(percentage: float, message: str, step: str | None = None) -> None:
      if operation.id in self._cancelled:
        return
      self._transition(Progress(operation_id=operation.id, percentage=percentage, status=OperationStatus.PROCESSING, message=message, started_at=started_at, estimated_completion=estimated_completion, current_step=step))

    report(10, "Initializing AI processing", "initialization")
    logger.info("Processing operation %s kind=%s", operation.id, operation.kind)
    request = ProcessorRequest(operation_id=operation.id, kind=operation.kind, input=operation.input, context=operation.context, provider=self._provider)

    timeout = self._config.provider_timeout_seconds
    try:
      output = await asyncio.wait_for(scheduled.spec.processor(request, report), timeout=timeout)
    except asyncio.TimeoutError:
      self._fail(operation.id, f"Operation failed: AI provider timed out after {timeout:g}s", timed_out=True)
      return
    except Exception as exc:  # noqa: BLE001
      # Providers flag their own transport timeouts so both paths report the same step.
      timed_out = isinstance(exc, ProviderFailureError) and exc.timed_out
      self._fail(operation.id, f"Operation failed: {exc}", timed_out=timed_out)
      return

    if operation.id in self._cancelled:
      logger.info("Discarding result of cancelled operation %s", operation.id)
      return

    finished_at = self._clock()
    result = OperationResult(operation_id=operation.id, payload=output.payload, processing_seconds=finished_at - started_at, model=output.model, tokens_used=output.tokens_used, cached=False, confidence=_extract_confidence(output.payload))
    progress = Progress(operation_id=operation.id, percentage=100, status=OperationStatus.COMPLETED, message="Operation completed successfully", started_at=started_at, estimated_completion=finished_at, current_step="completed")
    applied = self._store.record_completion(progress, result)
    if applied is None:
      return
    self._cache.put(scheduled.fingerprint, result, kind=operation.kind, ttl=scheduled.spec.cache_ttl)
    self._notifier.publish(applied)
    logger.info("Completed operation %s in %.2fs tokens=%d model=%s", operation.id, result.processing_seconds, result.tokens_used, result.model)

  def _fail(self, operation_id: str, message: str, *, timed_out: bool = False) -> None:
    if operation_id in self._cancelled:
      logger.info("Ignoring failure of cancelled operation %s: %s", operation_id, message)
      return
    logger.warning("Operation %s failed: %s", operation_id, message)
    self._transition(self._terminal_progress(operation_id, OperationStatus.FAILED, message, "timed_out" if timed_out else "failed"))

  def _cancelled_progress(self, operation_id: str) -> Progress:
    return self._terminal_progress(operation_id, OperationStatus.CANCELLED, "Operation cancelled by user", "cancelled")

  def _terminal_progress(self, operation_id: str, status: OperationStatus, message: str, step: str) -> Progress:
    current = self._store.get_progress(operation_id)
    started_at = current.started_at if current is not None else self._clock()
    # The store keeps the last percentage, so 0 here never moves progress backwards.
    return Progress(operation_id=operation_id, percentage=0, status=status, message=message, started_at=started_at, current_step=step)

  def _transition(self, progress: Progress) -> bool:
    applied = self._store.apply(progress)
    if applied is None:
      return False
    self._notifier.publish(applied)
    return True

  def _is_tracked(self, operation_id: str) -> bool:
    return operation_id in self._pending or operation_id in self._active or operation_id in self._store


def _validate_operation(operation: Operation) -> None:
  if not isinstance(operation.id, str) or not operation.id.strip():
    raise InvalidOperationError("Operation id must be a non-empty string.")
  if operation.priority not in PRIORITIES:
    raise InvalidOperationError(f"Unsupported priority {operation.priority!r}; use one of {', '.join(PRIORITIES)}.")
  payload = operation.input
  if payload is None or (isinstance(payload, (str, Mapping, list)) and not payload) or (isinstance(payload, str) and not payload.strip()):
    raise InvalidOperationError("Operation input must not be empty.")
  if not isinstance(payload, (str, Mapping, list)):
    raise InvalidOperationError("Operation input must be text, an object or a list.")
  if operation.context is not None and not isinstance(operation.context, Mapping):
    raise InvalidOperationError("Operation context must be an object when provided.")
  if operation.estimated_duration is not None and operation.estimated_duration <= 0:
    raise InvalidOperationError("Estimated duration must be positive when provided.")


def _extract_confidence(payload: Any) -> float | None:
  if not isinstance(payload, Mapping):
    return None
  value = payload.get("confidence")
  if isinstance(value, bool) or not isinstance(value, (int, float)):
    return None
  return float(value)
