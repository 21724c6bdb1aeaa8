from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from flowvision.ai.errors import DuplicateOperationError, InvalidOperationError, OperationError, OperationNotFoundError, ProviderUnavailableError, UnknownKindError
from flowvision.config import Settings, get_settings

logger = logging.getLogger("uvicorn.error")

# Most specific first; DuplicateOperationError subclasses InvalidOperationError.
_OPERATION_ERROR_STATUS: tuple[tuple[type[OperationError], int], ...] = (
  (ProviderUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
  (UnknownKindError, status.HTTP_400_BAD_REQUEST),
  (DuplicateOperationError, status.HTTP_409_CONFLICT),
  (InvalidOperationError, status.HTTP_400_BAD_REQUEST),
  (OperationNotFoundError, status.HTTP_404_NOT_FOUND),
)


def _settings(request: Request) -> Settings:
  return getattr(request.app.state, "settings", None) or get_settings()


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"detail": detail}
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


def _sanitize_http_detail(detail: Any) -> Any:
  """Drop payload-bearing keys from an HTTPException detail before logging it."""
  if isinstance(detail, dict):
    return {key: _sanitize_http_detail(value) for key, value in detail.items() if key not in {"input", "context", "payload", "body"}}
  if isinstance(detail, list):
    return [_sanitize_http_detail(item) for item in detail]
  return detail


def operation_error_status(exc: OperationError) -> int:
  for error_type, status_code in _OPERATION_ERROR_STATUS:
    if isinstance(exc, error_type):
      return status_code
  return status.HTTP_500_INTERNAL_SERVER_ERROR


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Catch unhandled errors and return a generic body with the request id."""
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors without leaking payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle HTTPExceptions without exposing 5xx diagnostics to callers."""
  settings = _settings(request)
  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail, exc_info=True)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  if settings.log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, _sanitize_http_detail(exc.detail))

  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=getattr(exc, "headers", None))


async def operation_exception_handler(request: Request, exc: OperationError) -> JSONResponse:
  """Map engine errors onto client-facing status codes."""
  request_id = getattr(request.state, "request_id", None)
  status_code = operation_error_status(exc)
  if isinstance(exc, OperationNotFoundError):
    # Polling for purged operations is routine.
    logger.debug("Operation lookup miss request_id=%s path=%s operation_id=%s", request_id, request.url.path, exc.operation_id)
  elif status_code >= 500:
    logger.warning("Operation error request_id=%s path=%s error_type=%s detail=%s", request_id, request.url.path, type(exc).__name__, exc)
  elif _settings(request).log_http_4xx:
    logger.warning("Operation rejected request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, status_code, exc)
  return JSONResponse(status_code=status_code, content=_error_payload(str(exc), request_id=request_id))
