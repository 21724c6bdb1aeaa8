from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from flowvision.ai.errors import OperationError
from flowvision.api.routes import operations
from flowvision.config import Settings, get_settings
from flowvision.core.exceptions import global_exception_handler, http_exception_handler, operation_exception_handler, request_validation_exception_handler
from flowvision.core.lifespan import build_engine, lifespan
from flowvision.core.middleware import RequestLoggingMiddleware
from flowvision.operations.engine import OperationEngine
from flowvision.services.context import ContextSource, build_context_source

VERSION = "0.1.0"


def create_app(settings: Settings | None = None, *, engine: OperationEngine | None = None, context_source: ContextSource | None = None) -> FastAPI:
  """Build the application; the engine is created eagerly so it exists before the first request."""
  settings = settings or get_settings()
  app = FastAPI(title="FlowVision AI Engine", version=VERSION, lifespan=lifespan)
  app.state.settings = settings
  app.state.operation_engine = engine or build_engine(settings)
  app.state.context_source = context_source or build_context_source(settings)

  if settings.allowed_origins:
    app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-request-id"])

  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(OperationError, operation_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

  app.add_middleware(RequestLoggingMiddleware)

  @app.get("/health", include_in_schema=False)
  async def health_check() -> dict[str, str]:
    """Return a simple health status."""
    return {"status": "ok", "version": VERSION}

  app.include_router(operations.router, prefix="/v1/ai", tags=["ai-operations"])
  return app


app = create_app()
