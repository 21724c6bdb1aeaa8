"""Base interface for completion providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Completion:
  """Text returned by one provider call plus its resource usage."""

  text: str
  tokens_used: int
  model: str


class CompletionProvider(Protocol):
  """Single external completion call; implementations hold no operation state."""

  name: str

  async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> Completion:
    """Return a completion for the prompt or raise `ProviderFailureError`."""
    ...
