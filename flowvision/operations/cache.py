"""Result cache keyed by operation fingerprints with per-kind TTLs."""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any

from flowvision.operations.models import CacheEntry, OperationResult

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def compute_fingerprint(kind: str, payload: Any, context: Any | None) -> str:
  """Return a deterministic content hash of (kind, input, context).

  Values are rewritten into a type-tagged canonical form before hashing, so
  `{1: "a"}` and `{"1": "a"}` never share a key and mappings with mixed key
  types still sort. Context presence is encoded separately so `None` and
  `{}` never collide. Raises `TypeError` for values with no JSON-like form.
  """
  document = [kind, _canonical(payload), context is not None, _canonical(context)]
  canonical = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
  return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _canonical(value: Any) -> Any:
  # Scalars keep their JSON form; every JSON array in the output is a [tag, body] pair.
  if value is None or isinstance(value, (bool, int, float, str)):
    return value
  if isinstance(value, Mapping):
    items = [[[type(key).__name__, _canonical(key)], _canonical(item)] for key, item in value.items()]
    items.sort(key=lambda pair: _sort_token(pair[0]))
    return ["map", items]
  if isinstance(value, list):
    return ["list", [_canonical(item) for item in value]]
  if isinstance(value, tuple):
    return ["tuple", [_canonical(item) for item in value]]
  if isinstance(value, (set, frozenset)):
    return ["set", sorted((_canonical(item) for item in value), key=_sort_token)]
  raise TypeError(f"Cannot fingerprint a value of type {type(value).__name__}.")


def _sort_token(value: Any) -> str:
  return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class ResultCache:
  """In-memory result cache with lazy expiry and a high-water-mark sweep."""

  def __init__(self, *, high_water_mark: int = 100, clock: Clock = time.time) -> None:
    if high_water_mark <= 0:
      raise ValueError("Cache high-water mark must be positive.")
    self._entries: dict[str, CacheEntry] = {}
    self._high_water_mark = high_water_mark
    self._clock = clock
    self._hits = 0
    self._misses = 0
    self._evictions = 0

  def __len__(self) -> int:
    return len(self._entries)

  def get(self, fingerprint: str) -> OperationResult | None:
    """Return the cached result, or None when missing or expired."""
    entry = self._entries.get(fingerprint)
    if entry is None:
      self._misses += 1
      return None

    # Expired entries are evicted on lookup even if the sweep has not reached them.
    if entry.is_expired(self._clock()):
      del self._entries[fingerprint]
      self._evictions += 1
      self._misses += 1
      return None

    entry.hits += 1
    self._hits += 1
    return entry.result

  def put(self, fingerprint: str, result: OperationResult, *, kind: str, ttl: float) -> None:
    """Store a result for `ttl` seconds and sweep once the high-water mark is passed."""
    if ttl <= 0:
      return
    # The entry owns its payload; callers may still hold and mutate the original result.
    self._entries[fingerprint] = CacheEntry(result=replace(result, payload=copy.deepcopy(result.payload), cached=False), kind=kind, created_at=self._clock(), ttl=ttl)
    if len(self._entries) > self._high_water_mark:
      self.sweep()

  def sweep(self) -> int:
    """Evict every expired entry and return how many were removed."""
    now = self._clock()
    expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
    for key in expired:
      del self._entries[key]
    self._evictions += len(expired)
    if expired:
      logger.debug("Cache sweep evicted %d expired entries", len(expired))
    return len(expired)

  def clear(self, kind: str | None = None) -> int:
    """Drop all entries, or only those of one kind; return how many were removed."""
    if kind is None:
      removed = len(self._entries)
      self._entries.clear()
      return removed
    keys = [key for key, entry in self._entries.items() if entry.kind == kind]
    for key in keys:
      del self._entries[key]
    return len(keys)

  def stats(self) -> dict[str, int]:
    """Return hit/miss/eviction counters and current size."""
    return {"size": len(self._entries), "hits": self._hits, "misses": self._misses, "evictions": self._evictions}
