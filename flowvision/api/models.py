from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from flowvision.operations.models import OperationStatus


class OperationRequest(BaseModel):
  """Request payload for submitting an AI operation."""

  kind: StrictStr = Field(min_length=1, description="Operation kind.", examples=["content_analysis"])
  input: StrictStr | dict[str, Any] | list[Any] = Field(description="Opaque operation input; text or structured data.", examples=["Customers report slow checkout on mobile."])
  context: dict[str, Any] | None = Field(default=None, description="Optional structured context used in the prompt and cache key.")
  priority: Literal["high", "normal", "low"] = Field(default="normal", description="Queue priority band.")
  operation_id: StrictStr | None = Field(default=None, min_length=1, max_length=200, description="Optional caller-supplied id; generated when omitted.")
  estimated_duration_seconds: float | None = Field(default=None, gt=0, description="Optional duration hint for the estimated completion time.")
  model_config = ConfigDict(extra="forbid")


class OperationAcceptedResponse(BaseModel):
  """Response returned when an operation is accepted."""

  operation_id: str
  status: OperationStatus
  kind: str
  estimated_duration_seconds: float


class ProgressResponse(BaseModel):
  """Pollable progress snapshot."""

  operation_id: str
  progress: float = Field(ge=0, le=100)
  status: OperationStatus
  message: str
  started_at: float
  estimated_completion: float | None = None
  current_step: str | None = None


class ResultResponse(BaseModel):
  """Final result of a completed operation."""

  operation_id: str
  status: Literal[OperationStatus.COMPLETED] = OperationStatus.COMPLETED
  result: Any
  confidence: float | None = None
  processing_seconds: float
  model: str
  tokens_used: int
  cached: bool


class ResultPendingResponse(BaseModel):
  """Returned with 202 while the operation has not settled yet."""

  operation_id: str
  status: OperationStatus
  progress: float
  message: str


class CancelResponse(BaseModel):
  operation_id: str
  status: Literal[OperationStatus.CANCELLED] = OperationStatus.CANCELLED


class CacheStatsResponse(BaseModel):
  """Result cache counters."""

  size: int
  hits: int
  misses: int
  evictions: int


class CacheClearResponse(BaseModel):
  cleared: int
  kind: str | None = None


class QueueStatusResponse(BaseModel):
  """Engine diagnostics."""

  queue_length: int
  active_workers: int
  max_workers: int
  cache_size: int
  draining: bool
  healthy: bool
  tracked_operations: int
  provider_available: bool
  cache: CacheStatsResponse
