"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_operation_id(kind: str) -> str:
  """Return a new operation identifier prefixed with its kind."""
  return f"{kind}-{uuid.uuid4()}"


def generate_request_id() -> str:
  """Return a new request correlation identifier."""
  return uuid.uuid4().hex
