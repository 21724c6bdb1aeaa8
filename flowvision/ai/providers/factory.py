from __future__ import annotations

import logging

from flowvision.ai.providers.base import CompletionProvider
from flowvision.ai.providers.openai import OpenAICompletionProvider
from flowvision.config import Settings

logger = logging.getLogger(__name__)


def build_completion_provider(settings: Settings) -> CompletionProvider | None:
  """Return the configured completion provider, or None when no API key is set."""
  if not settings.openai_api_key:
    logger.warning("OPENAI_API_KEY not set - AI operations will be rejected as provider unavailable.")
    return None
  return OpenAICompletionProvider(settings.openai_api_key, model=settings.openai_model, base_url=settings.openai_base_url)
