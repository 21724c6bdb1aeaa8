"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from flowvision.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

MAX_AI_WORKERS = 32


@dataclass(frozen=True)
class Settings:
  """Typed settings for the FlowVision AI service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  openai_api_key: str | None
  openai_base_url: str | None
  openai_model: str
  ai_max_workers: int
  ai_retention_seconds: float
  ai_provider_timeout_seconds: float
  ai_tick_seconds: float
  ai_cache_high_water_mark: int
  ai_cache_hit_delay_seconds: float
  ai_queue_healthy_limit: int
  business_profile: dict[str, Any] | None = field(default=None, hash=False)


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  # CORS is optional for the engine service; an unset value disables the middleware.
  if not raw:
    return ()

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("FLOWVISION_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(raw: str | None, name: str) -> dict[str, Any] | None:
  if not raw or not raw.strip():
    return None
  try:
    value = json.loads(raw)
  except json.JSONDecodeError as exc:
    raise ValueError(f"{name} must be a JSON object.") from exc
  if not isinstance(value, dict):
    raise ValueError(f"{name} must be a JSON object.")
  return value


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_positive_int(name: str, default: str) -> int:
  raw = os.getenv(name, default)
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be a positive integer.") from exc
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_non_negative_float(name: str, default: str) -> float:
  raw = os.getenv(name, default)
  try:
    value = float(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be a non-negative number.") from exc
  if value < 0:
    raise ValueError(f"{name} must be a non-negative number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("FLOWVISION_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("FLOWVISION_DEBUG"))

  log_max_bytes = _parse_positive_int("FLOWVISION_LOG_MAX_BYTES", "5242880")  # 5MB default

  log_backup_count = int(os.getenv("FLOWVISION_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("FLOWVISION_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("FLOWVISION_LOG_HTTP_4XX"))

  # Worker count bounds concurrent provider load, so it is capped rather than left open.
  ai_max_workers = _parse_positive_int("FLOWVISION_AI_MAX_WORKERS", "1")
  if ai_max_workers > MAX_AI_WORKERS:
    raise ValueError(f"FLOWVISION_AI_MAX_WORKERS must not exceed {MAX_AI_WORKERS}.")

  ai_retention_seconds = _parse_non_negative_float("FLOWVISION_AI_RETENTION_SECONDS", "60")
  ai_provider_timeout_seconds = _parse_non_negative_float("FLOWVISION_AI_PROVIDER_TIMEOUT_SECONDS", "30")
  if ai_provider_timeout_seconds == 0:
    raise ValueError("FLOWVISION_AI_PROVIDER_TIMEOUT_SECONDS must be greater than zero.")

  ai_tick_seconds = _parse_non_negative_float("FLOWVISION_AI_TICK_SECONDS", "0.1")
  if ai_tick_seconds == 0:
    raise ValueError("FLOWVISION_AI_TICK_SECONDS must be greater than zero.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("FLOWVISION_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    openai_base_url=_optional_str(os.getenv("FLOWVISION_OPENAI_BASE_URL")),
    openai_model=(os.getenv("FLOWVISION_OPENAI_MODEL") or "gpt-4").strip(),
    ai_max_workers=ai_max_workers,
    ai_retention_seconds=ai_retention_seconds,
    ai_provider_timeout_seconds=ai_provider_timeout_seconds,
    ai_tick_seconds=ai_tick_seconds,
    ai_cache_high_water_mark=_parse_positive_int("FLOWVISION_AI_CACHE_HIGH_WATER_MARK", "100"),
    ai_cache_hit_delay_seconds=_parse_non_negative_float("FLOWVISION_AI_CACHE_HIT_DELAY_SECONDS", "0.05"),
    ai_queue_healthy_limit=_parse_positive_int("FLOWVISION_AI_QUEUE_HEALTHY_LIMIT", "10"),
    business_profile=_parse_json_dict(os.getenv("FLOWVISION_BUSINESS_PROFILE"), "FLOWVISION_BUSINESS_PROFILE"),
  )


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
