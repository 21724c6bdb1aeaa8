"""Host-facing operation service: builds operations from requests and shapes responses."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status

from flowvision.ai.errors import OperationNotFoundError
from flowvision.api.models import CacheClearResponse, CacheStatsResponse, CancelResponse, OperationAcceptedResponse, OperationRequest, ProgressResponse, QueueStatusResponse, ResultPendingResponse, ResultResponse
from flowvision.operations.engine import OperationEngine
from flowvision.operations.models import Operation, OperationStatus
from flowvision.services.context import ContextSource
from flowvision.utils.ids import generate_operation_id

logger = logging.getLogger(__name__)

PROFILE_CONTEXT_KEY = "business_profile"


def build_operation(request: OperationRequest, context_source: ContextSource | None = None) -> Operation:
  """Turn a validated request into an engine operation, attaching profile context."""
  context: dict[str, Any] | None = dict(request.context) if request.context is not None else None
  profile = context_source.load() if context_source is not None else None
  if profile:
    context = context or {}
    # Caller-supplied profile data wins over the configured default.
    context.setdefault(PROFILE_CONTEXT_KEY, profile)

  operation_id = request.operation_id or generate_operation_id(request.kind)
  return Operation(id=operation_id, kind=request.kind, input=request.input, context=context, priority=request.priority, estimated_duration=request.estimated_duration_seconds)


def submit_operation(engine: OperationEngine, request: OperationRequest, context_source: ContextSource | None = None) -> OperationAcceptedResponse:
  operation = build_operation(request, context_source)
  operation_id = engine.enqueue(operation)
  progress = engine.get_progress(operation_id)
  op_status = progress.status if progress is not None else OperationStatus.QUEUED
  estimated = operation.estimated_duration or engine.registry.resolve(operation.kind).default_duration
  return OperationAcceptedResponse(operation_id=operation_id, status=op_status, kind=operation.kind, estimated_duration_seconds=estimated)


def get_progress(engine: OperationEngine, operation_id: str) -> ProgressResponse:
  progress = engine.get_progress(operation_id)
  if progress is None:
    raise OperationNotFoundError(operation_id)
  return ProgressResponse(**progress.as_dict())


def get_result(engine: OperationEngine, operation_id: str) -> ResultResponse | ResultPendingResponse:
  """Return the final result, a pending snapshot, or raise for unknown and unsuccessful operations."""
  result = engine.get_result(operation_id)
  if result is not None:
    return ResultResponse(
      operation_id=result.operation_id,
      result=result.payload,
      confidence=result.confidence,
      processing_seconds=result.processing_seconds,
      model=result.model,
      tokens_used=result.tokens_used,
      cached=result.cached,
    )

  progress = engine.get_progress(operation_id)
  if progress is None:
    raise OperationNotFoundError(operation_id)
  if progress.status in (OperationStatus.FAILED, OperationStatus.CANCELLED):
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"operation_id": operation_id, "status": progress.status.value, "message": progress.message})
  return ResultPendingResponse(operation_id=operation_id, status=progress.status, progress=progress.percentage, message=progress.message)


def cancel_operation(engine: OperationEngine, operation_id: str) -> CancelResponse:
  if not engine.cancel(operation_id):
    raise OperationNotFoundError(operation_id)
  return CancelResponse(operation_id=operation_id)


def queue_status(engine: OperationEngine) -> QueueStatusResponse:
  snapshot = engine.queue_status()
  return QueueStatusResponse(
    queue_length=snapshot.queue_length,
    active_workers=snapshot.active_workers,
    max_workers=snapshot.max_workers,
    cache_size=snapshot.cache_size,
    draining=snapshot.draining,
    healthy=snapshot.healthy,
    tracked_operations=snapshot.tracked_operations,
    provider_available=engine.provider_available,
    cache=CacheStatsResponse(**snapshot.cache_stats),
  )


def cache_stats(engine: OperationEngine) -> CacheStatsResponse:
  return CacheStatsResponse(**engine.cache.stats())


def clear_cache(engine: OperationEngine, kind: str | None = None) -> CacheClearResponse:
  if kind is not None:
    # Validates the kind; raises UnknownKindError for typos.
    engine.registry.resolve(kind)
  cleared = engine.cache.clear(kind)
  logger.info("Cleared %d cache entries kind=%s", cleared, kind or "*")
  return CacheClearResponse(cleared=cleared, kind=kind)
