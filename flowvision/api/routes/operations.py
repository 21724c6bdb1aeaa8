import logging

from fastapi import APIRouter, Depends, Response, status

from flowvision.api.deps import get_context_source, get_engine
from flowvision.api.models import CacheClearResponse, CacheStatsResponse, CancelResponse, OperationAcceptedResponse, OperationRequest, ProgressResponse, QueueStatusResponse, ResultPendingResponse, ResultResponse
from flowvision.operations.engine import OperationEngine
from flowvision.services import operations as operation_service
from flowvision.services.context import ContextSource

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/operations", response_model=OperationAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_operation(  # noqa: B008
  request: OperationRequest,
  engine: OperationEngine = Depends(get_engine),  # noqa: B008
  context_source: ContextSource | None = Depends(get_context_source),  # noqa: B008
) -> OperationAcceptedResponse:
  """Queue an AI operation and return its id for polling."""
  return operation_service.submit_operation(engine, request, context_source)


@router.get("/progress/{operation_id}", response_model=ProgressResponse)
async def get_progress(operation_id: str, engine: OperationEngine = Depends(get_engine)) -> ProgressResponse:  # noqa: B008
  """Return the latest progress snapshot."""
  return operation_service.get_progress(engine, operation_id)


@router.get("/result/{operation_id}", response_model=ResultResponse | ResultPendingResponse)
async def get_result(operation_id: str, response: Response, engine: OperationEngine = Depends(get_engine)) -> ResultResponse | ResultPendingResponse:  # noqa: B008
  """Return the final result, or 202 with the current status while still running."""
  outcome = operation_service.get_result(engine, operation_id)
  if isinstance(outcome, ResultPendingResponse):
    response.status_code = status.HTTP_202_ACCEPTED
  return outcome


@router.post("/cancel/{operation_id}", response_model=CancelResponse)
async def cancel_operation(operation_id: str, engine: OperationEngine = Depends(get_engine)) -> CancelResponse:  # noqa: B008
  """Cancel a queued or running operation."""
  return operation_service.cancel_operation(engine, operation_id)


@router.get("/queue-status", response_model=QueueStatusResponse)
async def queue_status(engine: OperationEngine = Depends(get_engine)) -> QueueStatusResponse:  # noqa: B008
  return operation_service.queue_status(engine)


@router.get("/cache", response_model=CacheStatsResponse)
async def cache_stats(engine: OperationEngine = Depends(get_engine)) -> CacheStatsResponse:  # noqa: B008
  return operation_service.cache_stats(engine)


@router.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(kind: str | None = None, engine: OperationEngine = Depends(get_engine)) -> CacheClearResponse:  # noqa: B008
  """Clear cached results, optionally for one kind only."""
  return operation_service.clear_cache(engine, kind)
