"""Sentence position mapping.

Actual measurement belongs to whatever renders the text (a browser, a
GUI toolkit). This module only defines that capability and memoizes it.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Protocol, runtime_checkable

from refract.writing.models import Sentence, SentencePosition

logger = logging.getLogger(__name__)

CACHE_SIZE_LIMIT = 50


@runtime_checkable
class PositionMeasurer(Protocol):
    """Anything able to report on-screen geometry for sentences."""

    def measure_positions(
        self, sentences: list[Sentence], viewport: Any
    ) -> list[SentencePosition]: ...


class CachedPositionMapper:
    """Memoizes a measurer keyed by text length and sentence IDs.

    Each instance owns its cache so separate editing sessions never see
    each other's measurements.
    """

    def __init__(self, measurer: PositionMeasurer, limit: int = CACHE_SIZE_LIMIT) -> None:
        self._measurer = measurer
        self._limit = limit
        self._cache: OrderedDict[str, list[SentencePosition]] = OrderedDict()

    @staticmethod
    def cache_key(text: str, sentences: list[Sentence]) -> str:
        return f"{len(text)}:{','.join(s.id for s in sentences)}"

    def measure(self, text: str, sentences: list[Sentence], viewport: Any) -> list[SentencePosition]:
        if not sentences:
            return []
        key = self.cache_key(text, sentences)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        positions = self._measurer.measure_positions(sentences, viewport)
        self._cache[key] = positions
        if len(self._cache) > self._limit:
            oldest, _ = self._cache.popitem(last=False)
            logger.debug("Evicted position cache entry %s", oldest)
        return positions

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
