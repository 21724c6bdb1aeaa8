"""Read-only business context attached to operation inputs."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Protocol

from flowvision.config import Settings


class ContextSource(Protocol):
  """Supplies opaque profile metadata; the engine never inspects its schema."""

  def load(self) -> Mapping[str, Any] | None: ...


class StaticContextSource:
  """Context source backed by a fixed profile loaded from configuration."""

  def __init__(self, profile: Mapping[str, Any] | None) -> None:
    self._profile = dict(profile) if profile else None

  def load(self) -> dict[str, Any] | None:
    # Copies keep callers from mutating the shared profile.
    return copy.deepcopy(self._profile)


def build_context_source(settings: Settings) -> ContextSource:
  return StaticContextSource(settings.business_profile)
