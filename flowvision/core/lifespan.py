from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from flowvision.ai.providers import build_completion_provider
from flowvision.config import Settings, get_settings
from flowvision.core.logging import initialize_logging
from flowvision.operations.engine import EngineConfig, OperationEngine

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> OperationEngine:
  """Build the operation engine from settings; it stays usable without a provider."""
  provider = build_completion_provider(settings)
  return OperationEngine(provider, config=EngineConfig.from_settings(settings))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, then run the engine ticker for the lifetime of the app."""
  settings: Settings = getattr(app.state, "settings", None) or get_settings()

  try:
    initialize_logging(settings)
  except RuntimeError:
    # File logging is optional; stdout handlers still receive records.
    logger.warning("Logging setup failed; continuing with default handlers.", exc_info=True)

  engine: OperationEngine | None = getattr(app.state, "operation_engine", None)
  if engine is None:
    engine = build_engine(settings)
    app.state.operation_engine = engine

  engine.start()
  logger.info("Operation engine started max_workers=%d provider_available=%s", engine.config.max_workers, engine.provider_available)
  try:
    yield
  finally:
    await engine.stop()
    logger.info("Operation engine stopped")
