"""Error taxonomy for the asynchronous AI operation engine."""

from __future__ import annotations

from typing import Iterable

_RATE_LIMIT_HINTS: tuple[str, ...] = (
  "429",
  "too many requests",
  "rate limit",
  "resource exhausted",
  "quota exceeded",
)


class OperationError(Exception):
  """Base class for engine errors surfaced to the host."""


class ProviderUnavailableError(OperationError):
  """Raised when no completion provider is configured."""

  def __init__(self, message: str = "AI provider unavailable: no completion provider is configured.") -> None:
    super().__init__(message)


class ProviderFailureError(OperationError):
  """Raised when a provider call was made but errored or timed out."""

  def __init__(self, message: str, *, timed_out: bool = False) -> None:
    super().__init__(message)
    self.timed_out = timed_out


class UnknownKindError(OperationError):
  """Raised when an operation names a kind with no registered processor."""

  def __init__(self, kind: str) -> None:
    super().__init__(f"Unknown operation kind: {kind!r}.")
    self.kind = kind


class OperationNotFoundError(OperationError):
  """Raised when an operation id is not (or no longer) tracked."""

  def __init__(self, operation_id: str) -> None:
    super().__init__(f"Operation not found: {operation_id!r}.")
    self.operation_id = operation_id


class InvalidOperationError(OperationError):
  """Raised when an operation payload is malformed."""


class DuplicateOperationError(InvalidOperationError):
  """Raised when an operation id is already tracked by the engine."""

  def __init__(self, operation_id: str) -> None:
    super().__init__(f"Operation id already in use: {operation_id!r}.")
    self.operation_id = operation_id


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def is_rate_limit_error(exc: BaseException) -> bool:
  """Return True when an exception indicates a retryable rate limit or quota response."""
  # SDK errors carry an HTTP status; fall back to message hints for wrapped errors.
  if getattr(exc, "status_code", None) == 429:
    return True
  return _match_hint(str(exc).lower(), _RATE_LIMIT_HINTS)
