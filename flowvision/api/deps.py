"""Shared FastAPI dependencies for the operation routes."""

from __future__ import annotations

from fastapi import Request

from flowvision.operations.engine import OperationEngine
from flowvision.services.context import ContextSource


def get_engine(request: Request) -> OperationEngine:
  """Return the engine owned by the running application."""
  return request.app.state.operation_engine


def get_context_source(request: Request) -> ContextSource | None:
  return getattr(request.app.state, "context_source", None)
