"""Local persistence for the last analysis: themes, text and sentences.

Everything lives in one JSON object on disk, keyed the way a browser's
local storage would be. A corrupt file is treated as empty.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from refract.themes.models import Theme
from refract.writing.models import Sentence

logger = logging.getLogger(__name__)

THEMES_KEY = "refract-themes"
TEXT_KEY = "refract-text"
SENTENCES_KEY = "refract-sentences"


def _is_current_theme(raw: Any) -> bool:
    """Themes saved before per-chunk correlations existed are stale."""
    if not isinstance(raw, dict):
        return False
    chunks = raw.get("chunks")
    if not isinstance(chunks, list):
        return False
    for chunk in chunks:
        correlation = chunk.get("correlation") if isinstance(chunk, dict) else None
        if isinstance(correlation, bool) or not isinstance(correlation, (int, float)):
            return False
    return True


class ThemeStore:
    """Key/value JSON store for the latest themes, text and sentences."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Corrupt store at %s, starting fresh", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Unexpected store format at %s, starting fresh", self.path)
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get(self, key: str) -> Any:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    def save_themes(self, themes: list[Theme]) -> None:
        self.set(THEMES_KEY, [theme.to_wire() for theme in themes])

    def load_themes(self) -> list[Theme] | None:
        """Saved themes, or None when nothing usable is stored.

        Stale entries (any chunk without a numeric correlation) are
        removed from the store.
        """
        raw = self.get(THEMES_KEY)
        if raw is None:
            return None
        if not isinstance(raw, list) or not all(_is_current_theme(t) for t in raw):
            logger.info("Discarding stale themes in %s", self.path)
            self.remove(THEMES_KEY)
            return None
        try:
            return [Theme.model_validate(t) for t in raw]
        except ValidationError:
            logger.warning("Invalid themes in %s, discarding", self.path)
            self.remove(THEMES_KEY)
            return None

    def save_text(self, text: str) -> None:
        self.set(TEXT_KEY, text)

    def load_text(self) -> str | None:
        value = self.get(TEXT_KEY)
        return value if isinstance(value, str) else None

    def save_sentences(self, sentences: list[Sentence]) -> None:
        self.set(SENTENCES_KEY, [sentence.to_wire() for sentence in sentences])

    def load_sentences(self) -> list[Sentence] | None:
        raw = self.get(SENTENCES_KEY)
        if not isinstance(raw, list):
            return None
        try:
            return [Sentence.model_validate(s) for s in raw]
        except ValidationError:
            logger.warning("Invalid sentences in %s, discarding", self.path)
            self.remove(SENTENCES_KEY)
            return None

    def clear(self) -> None:
        for key in (THEMES_KEY, TEXT_KEY, SENTENCES_KEY):
            self.remove(key)
