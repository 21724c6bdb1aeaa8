"""OpenAI-compatible completion provider using the openai SDK."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

from openai import APITimeoutError, AsyncOpenAI, OpenAIError

from flowvision.ai.backoff import DEFAULT_DELAYS, retry_with_backoff
from flowvision.ai.errors import ProviderFailureError
from flowvision.ai.providers.base import Completion

logger = logging.getLogger(__name__)


class OpenAICompletionProvider:
  """Chat-completions adapter; `base_url` lets OpenAI-compatible gateways stand in."""

  _DEFAULT_MODEL: Final[str] = "gpt-4"

  def __init__(self, api_key: str, *, model: str | None = None, base_url: str | None = None, retry_delays: Sequence[float] = DEFAULT_DELAYS, retry_jitter: float = 0.5, client: AsyncOpenAI | None = None) -> None:
    if not api_key:
      raise ValueError("An API key is required for the OpenAI completion provider.")
    self.name: str = "openai"
    self.model: str = model or self._DEFAULT_MODEL
    self._retry_delays = tuple(retry_delays)
    self._retry_jitter = retry_jitter
    # Retries are handled here so the SDK's own retry loop does not stretch the engine timeout.
    self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

  async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> Completion:
    """Run one chat completion and return its text and token usage."""
    try:
      response = await retry_with_backoff(self._client.chat.completions.create, delays=self._retry_delays, jitter=self._retry_jitter, model=self.model, messages=[{"role": "user", "content": prompt}], max_tokens=max_tokens, temperature=temperature)
    except APITimeoutError as exc:
      raise ProviderFailureError(f"OpenAI request timed out: {exc}", timed_out=True) from exc
    except OpenAIError as exc:
      raise ProviderFailureError(f"OpenAI request failed: {exc}") from exc

    content = ""
    if response.choices:
      content = response.choices[0].message.content or ""
    tokens_used = response.usage.total_tokens if response.usage else 0
    logger.debug("OpenAI completion model=%s tokens=%s chars=%d", response.model or self.model, tokens_used, len(content))
    return Completion(text=content, tokens_used=tokens_used, model=response.model or self.model)
