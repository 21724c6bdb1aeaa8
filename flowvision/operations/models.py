"""Domain models for asynchronous AI operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Priority = Literal["high", "normal", "low"]
PRIORITIES: tuple[str, ...] = ("high", "normal", "low")


class OperationKind(str, Enum):
  """Built-in operation kinds."""

  CONTENT_ANALYSIS = "content_analysis"
  RECOMMENDATION_GENERATION = "recommendation_generation"
  CLUSTERING = "clustering"
  INSIGHT_SYNTHESIS = "insight_synthesis"


class OperationStatus(str, Enum):
  """Progress lifecycle states."""

  QUEUED = "queued"
  PROCESSING = "processing"
  COMPLETED = "completed"
  FAILED = "failed"
  CANCELLED = "cancelled"

  @property
  def is_terminal(self) -> bool:
    return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({OperationStatus.COMPLETED, OperationStatus.FAILED, OperationStatus.CANCELLED})


@dataclass(frozen=True)
class Operation:
  """A unit of AI work submitted once by a caller."""

  id: str
  kind: str
  input: Any
  context: dict[str, Any] | None = None
  priority: Priority = "normal"
  estimated_duration: float | None = None


@dataclass(frozen=True)
class Progress:
  """Pollable snapshot of an operation's execution state."""

  operation_id: str
  percentage: float
  status: OperationStatus
  message: str
  started_at: float
  estimated_completion: float | None = None
  current_step: str | None = None

  def as_dict(self) -> dict[str, Any]:
    """Serialize the snapshot for logging or API responses."""
    return {
      "operation_id": self.operation_id,
      "progress": self.percentage,
      "status": self.status.value,
      "message": self.message,
      "started_at": self.started_at,
      "estimated_completion": self.estimated_completion,
      "current_step": self.current_step,
    }


@dataclass(frozen=True)
class OperationResult:
  """Immutable output of a successfully completed operation."""

  operation_id: str
  payload: Any
  processing_seconds: float
  model: str
  tokens_used: int
  cached: bool = False
  confidence: float | None = None


@dataclass
class CacheEntry:
  """Cached result keyed by fingerprint; logically absent once expired."""

  result: OperationResult
  kind: str
  created_at: float
  ttl: float
  hits: int = 0

  def is_expired(self, now: float) -> bool:
    return now > self.created_at + self.ttl


@dataclass(frozen=True)
class QueueStatus:
  """Diagnostic snapshot of the engine."""

  queue_length: int
  active_workers: int
  max_workers: int
  cache_size: int
  draining: bool
  healthy: bool
  tracked_operations: int
  cache_stats: dict[str, int] = field(default_factory=dict)
