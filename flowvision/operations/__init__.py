"""Operation queue, scheduler, store, cache and progress notifier."""

from flowvision.operations.engine import EngineConfig, OperationEngine
from flowvision.operations.models import Operation, OperationKind, OperationResult, OperationStatus, Progress, QueueStatus

__all__ = ["EngineConfig", "Operation", "OperationEngine", "OperationKind", "OperationResult", "OperationStatus", "Progress", "QueueStatus"]
