"""Prompt builders for each built-in operation kind."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

_TEXT_KEYS = ("description", "text", "content")


def render_input(payload: Any) -> str:
  """Render an operation input as prompt text."""
  if isinstance(payload, str):
    return payload.strip()
  if isinstance(payload, Mapping):
    # Lead with the free-text field when present so the model sees it first.
    for key in _TEXT_KEYS:
      value = payload.get(key)
      if isinstance(value, str) and value.strip():
        rest = {k: v for k, v in payload.items() if k != key}
        if not rest:
          return value.strip()
        return f"{value.strip()}\n\nDetails: {_dump(rest)}"
  return _dump(payload)


def _dump(value: Any) -> str:
  return json.dumps(value, ensure_ascii=False, default=str)


def _context_block(context: Mapping[str, Any] | None) -> str:
  if not context:
    return ""
  return f"\nContext: {_dump(context)}\n"


def content_analysis_prompt(payload: Any, context: Mapping[str, Any] | None) -> str:
  return f"""Analyze this business issue and provide structured insights:

Issue Description: {render_input(payload)}
{_context_block(context)}
Respond with JSON only, in this format:
{{
  "category": "string",
  "priority": "high|medium|low",
  "impact": "string",
  "rootCause": "string",
  "recommendations": ["string"],
  "estimatedEffort": "string",
  "confidence": 0.95
}}"""


def recommendation_prompt(payload: Any, context: Mapping[str, Any] | None) -> str:
  return f"""Propose an initiative that addresses the following issues:

Issues: {render_input(payload)}
{_context_block(context)}
Respond with JSON only, in this format:
{{
  "title": "string",
  "description": "string",
  "priority": "high|medium|low",
  "estimatedDuration": "string",
  "successMetrics": ["string"],
  "confidence": 0.85
}}"""


def clustering_prompt(payload: Any, context: Mapping[str, Any] | None) -> str:
  return f"""Group the following issues into clusters of related root causes:

Issues: {render_input(payload)}
{_context_block(context)}
Respond with JSON only, in this format:
{{
  "clusters": [{{"name": "string", "theme": "string", "members": ["string"]}}],
  "confidence": 0.8
}}"""


def insight_prompt(payload: Any, context: Mapping[str, Any] | None) -> str:
  return f"""Synthesize strategic insights and trends from this data:

Data: {render_input(payload)}
{_context_block(context)}
Respond with JSON only, in this format:
{{
  "insights": ["string"],
  "trends": ["string"],
  "confidence": 0.9
}}"""
