"""Per-kind operation processors and the registry the engine dispatches through."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from flowvision.ai import prompts
from flowvision.ai.errors import ProviderFailureError, UnknownKindError
from flowvision.ai.json_parser import parse_json_with_fallback
from flowvision.ai.providers.base import CompletionProvider
from flowvision.operations.models import OperationKind

logger = logging.getLogger(__name__)

MINUTE = 60.0


class ProgressReporter(Protocol):
  """Callback processors use to publish intermediate progress."""

  def __call__(self, percentage: float, message: str, step: str | None = None) -> None: ...


@dataclass(frozen=True)
class ProcessorRequest:
  """Inputs handed to a processor for one operation."""

  operation_id: str
  kind: str
  input: Any
  context: Mapping[str, Any] | None
  provider: CompletionProvider


@dataclass(frozen=True)
class ProcessorOutput:
  """Payload and usage returned by a processor."""

  payload: Any
  tokens_used: int
  model: str


Processor = Callable[[ProcessorRequest, ProgressReporter], Awaitable[ProcessorOutput]]
PromptBuilder = Callable[[Any, Mapping[str, Any] | None], str]
FallbackBuilder = Callable[[str], dict[str, Any]]


@dataclass(frozen=True)
class KindSpec:
  """Processor plus scheduling and caching parameters for one kind."""

  kind: str
  processor: Processor
  default_duration: float
  cache_ttl: float


class KindRegistry:
  """Registry mapping operation kinds to their specs."""

  def __init__(self) -> None:
    self._specs: dict[str, KindSpec] = {}

  def register(self, kind: str, processor: Processor, *, default_duration: float, cache_ttl: float) -> KindSpec:
    """Register (or replace) the processor for a kind."""
    if not kind or not kind.strip():
      raise ValueError("Kind must be a non-empty string.")
    if default_duration <= 0:
      raise ValueError("Default duration must be positive.")
    if cache_ttl < 0:
      raise ValueError("Cache TTL must not be negative.")
    spec = KindSpec(kind=kind, processor=processor, default_duration=default_duration, cache_ttl=cache_ttl)
    self._specs[kind] = spec
    return spec

  def resolve(self, kind: str) -> KindSpec:
    """Return the spec for a kind or raise `UnknownKindError`."""
    spec = self._specs.get(kind)
    if spec is None:
      raise UnknownKindError(kind)
    return spec

  def __contains__(self, kind: object) -> bool:
    return kind in self._specs

  def kinds(self) -> list[str]:
    return sorted(self._specs)


def completion_processor(build_prompt: PromptBuilder, *, max_tokens: int, temperature: float, fallback: FallbackBuilder, result_key: str | None = None) -> Processor:
  """Build a processor that runs one provider call and parses its JSON answer.

  `result_key` wraps a bare JSON array answer under that key; `fallback`
  turns non-JSON text into a payload instead of failing the operation.
  """

  async def _process(request: ProcessorRequest, report: ProgressReporter) -> ProcessorOutput:
    prompt = build_prompt(request.input, request.context)
    report(60, "Generating AI insights", "ai_processing")
    completion = await request.provider.complete(prompt, max_tokens=max_tokens, temperature=temperature)
    report(90, "Finalizing results", "finalization")

    text = completion.text.strip()
    if not text:
      raise ProviderFailureError("No response from AI provider.")

    try:
      parsed = parse_json_with_fallback(text)
    except json.JSONDecodeError:
      logger.info("Non-JSON completion for operation %s; using %s fallback payload", request.operation_id, request.kind)
      parsed = fallback(text)

    if isinstance(parsed, list) and result_key is not None:
      parsed = {result_key: parsed}
    return ProcessorOutput(payload=parsed, tokens_used=completion.tokens_used, model=completion.model)

  return _process


def _analysis_fallback(text: str) -> dict[str, Any]:
  return {"category": "General", "priority": "medium", "impact": text[:200], "rootCause": "Analysis pending", "recommendations": ["Further investigation needed"], "estimatedEffort": "Medium", "confidence": 0.7}


def _recommendation_fallback(text: str) -> dict[str, Any]:
  return {"title": "Generated Initiative", "description": text[:500], "priority": "medium", "confidence": 0.6}


def _clustering_fallback(text: str) -> dict[str, Any]:
  return {"clusters": [], "summary": text[:500], "confidence": 0.5}


def _insight_fallback(text: str) -> dict[str, Any]:
  return {"insights": [text[:500]], "trends": [], "confidence": 0.6}


def build_default_registry() -> KindRegistry:
  """Return a registry with the built-in kinds."""
  registry = KindRegistry()
  registry.register(
    OperationKind.CONTENT_ANALYSIS.value,
    completion_processor(prompts.content_analysis_prompt, max_tokens=1000, temperature=0.3, fallback=_analysis_fallback),
    default_duration=4.0,
    cache_ttl=30 * MINUTE,
  )
  registry.register(
    OperationKind.RECOMMENDATION_GENERATION.value,
    completion_processor(prompts.recommendation_prompt, max_tokens=1500, temperature=0.5, fallback=_recommendation_fallback, result_key="recommendations"),
    default_duration=6.0,
    cache_ttl=60 * MINUTE,
  )
  registry.register(
    OperationKind.CLUSTERING.value,
    completion_processor(prompts.clustering_prompt, max_tokens=1500, temperature=0.2, fallback=_clustering_fallback, result_key="clusters"),
    default_duration=8.0,
    cache_ttl=15 * MINUTE,
  )
  registry.register(
    OperationKind.INSIGHT_SYNTHESIS.value,
    completion_processor(prompts.insight_prompt, max_tokens=1200, temperature=0.4, fallback=_insight_fallback, result_key="insights"),
    default_duration=5.0,
    cache_ttl=45 * MINUTE,
  )
  return registry
