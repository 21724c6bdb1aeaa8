"""Shared fixtures: deterministic provider, manual clock, engine and HTTP client."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from flowvision.ai.providers.base import Completion
from flowvision.config import Settings
from flowvision.main import create_app
from flowvision.operations.engine import EngineConfig, OperationEngine
from flowvision.services.context import StaticContextSource

DEFAULT_COMPLETION = '{"category": "Performance", "priority": "high", "impact": "Checkout abandonment", "confidence": 0.9}'


class ManualClock:
  """Clock that only moves when a test advances it."""

  def __init__(self, start: float = 1_000.0) -> None:
    self.now = start

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


class FakeProvider:
  """In-process completion provider; optionally blocks every call until `release()`."""

  name = "fake"

  def __init__(self, text: str = DEFAULT_COMPLETION, *, gated: bool = False) -> None:
    self.text = text
    self.errors: list[Exception] = []
    self.prompts: list[str] = []
    self.in_flight = 0
    self._gate = asyncio.Event()
    if not gated:
      self._gate.set()

  def release(self) -> None:
    self._gate.set()

  async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> Completion:
    self.prompts.append(prompt)
    self.in_flight += 1
    try:
      await self._gate.wait()
    finally:
      self.in_flight -= 1
    if self.errors:
      raise self.errors.pop(0)
    return Completion(text=self.text, tokens_used=42, model="fake-model")


def make_settings(**overrides: object) -> Settings:
  values: dict[str, object] = {
    "environment": "test",
    "debug": False,
    "allowed_origins": (),
    "log_max_bytes": 1024,
    "log_backup_count": 1,
    "log_http_4xx": False,
    "openai_api_key": None,
    "openai_base_url": None,
    "openai_model": "gpt-4",
    "ai_max_workers": 1,
    "ai_retention_seconds": 60.0,
    "ai_provider_timeout_seconds": 30.0,
    "ai_tick_seconds": 0.1,
    "ai_cache_high_water_mark": 100,
    "ai_cache_hit_delay_seconds": 0.0,
    "ai_queue_healthy_limit": 10,
    "business_profile": None,
  }
  values.update(overrides)
  return Settings(**values)  # type: ignore[arg-type]


async def settle(engine: OperationEngine, *, max_turns: int = 1_000) -> None:
  """Yield to the loop until the engine has no pending or active work."""
  for _ in range(max_turns):
    status = engine.queue_status()
    if status.queue_length == 0 and status.active_workers == 0:
      # A few more turns let delayed cache-hit notifications fire.
      await spin(5)
      return
    await asyncio.sleep(0)
  raise AssertionError("engine did not settle")


async def spin(turns: int = 10) -> None:
  for _ in range(turns):
    await asyncio.sleep(0)


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def clock() -> ManualClock:
  return ManualClock()


@pytest.fixture
def provider() -> FakeProvider:
  return FakeProvider()


@pytest.fixture
def engine_config() -> EngineConfig:
  return EngineConfig(cache_hit_delay_seconds=0.0)


@pytest.fixture
def engine(provider: FakeProvider, engine_config: EngineConfig, clock: ManualClock) -> OperationEngine:
  return OperationEngine(provider, config=engine_config, clock=clock)


@pytest.fixture
def settings() -> Settings:
  return make_settings()


@pytest.fixture
def context_source() -> StaticContextSource:
  return StaticContextSource(None)


@pytest.fixture
async def async_client(settings: Settings, engine: OperationEngine, context_source: StaticContextSource) -> AsyncIterator[AsyncClient]:
  app = create_app(settings, engine=engine, context_source=context_source)
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  await engine.stop()
