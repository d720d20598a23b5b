"""Recency maps and fingerprint caches used to avoid duplicate prods.

All timestamps are milliseconds from whichever clock the owner uses.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FINGERPRINT_PREFIX = 30
DEFAULT_TTL_MS = 5 * 60 * 1000
DEFAULT_MAX_ENTRIES = 100


def normalize_key(text: str) -> str:
    """Trim and lower-case; inner whitespace is kept as typed."""
    return text.strip().lower()


def fingerprint(text: str) -> str:
    """Cheap content fingerprint: normalized prefix plus normalized length."""
    norm = normalize_key(text)
    return f"{norm[:FINGERPRINT_PREFIX]}-{len(norm)}"


def _now_ms() -> float:
    return time.monotonic() * 1000


class RecencyMap:
    """Key → last-seen timestamp, for "seen this recently?" guards."""

    def __init__(self) -> None:
        self._seen: dict[str, float] = {}

    def has_recent(self, key: str, max_age_ms: float, now: float) -> bool:
        ts = self._seen.get(key)
        return ts is not None and now - ts < max_age_ms

    def mark_now(self, key: str, now: float) -> None:
        self._seen[key] = now

    def cleanup_older_than(self, max_age_ms: float, now: float) -> int:
        stale = [key for key, ts in self._seen.items() if now - ts > max_age_ms]
        for key in stale:
            del self._seen[key]
        return len(stale)

    def clear(self) -> None:
        self._seen.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)


class FingerprintCache(Generic[T]):
    """TTL cache keyed by :func:`fingerprint` of the input text.

    When the cache grows past ``max_entries`` the oldest half is dropped.
    """

    def __init__(
        self,
        ttl_ms: float = DEFAULT_TTL_MS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self._clock = clock or _now_ms
        self._entries: dict[str, tuple[float, T]] = {}

    def get(self, text: str) -> T | None:
        key = fingerprint(text)
        entry = self._entries.get(key)
        if entry is None:
            return None
        ts, value = entry
        if self._clock() - ts >= self.ttl_ms:
            del self._entries[key]
            return None
        return value

    def put(self, text: str, value: T) -> None:
        self.cleanup()
        self._entries[fingerprint(text)] = (self._clock(), value)
        if len(self._entries) > self.max_entries:
            self._evict_oldest_half()

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        stale = [key for key, (ts, _) in self._entries.items() if now - ts > self.ttl_ms]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def _evict_oldest_half(self) -> None:
        ordered = sorted(self._entries.items(), key=lambda kv: kv[1][0])
        for key, _ in ordered[: self.max_entries // 2]:
            del self._entries[key]
        logger.debug("Fingerprint cache over capacity; %d entries remain", len(self._entries))

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, text: object) -> bool:
        return isinstance(text, str) and self.get(text) is not None

    def __len__(self) -> int:
        return len(self._entries)
