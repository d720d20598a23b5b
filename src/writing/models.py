"""Writing models: sentences and their on-screen geometry. Pure data, no I/O."""

from __future__ import annotations

from refract.shared.models import WireModel


class Sentence(WireModel):
    """A sentence span of the source text.

    ``start_index``/``end_index`` are exact bounds into the original string,
    so ``text == source[start_index:end_index]``.
    """

    id: str
    text: str
    start_index: int
    end_index: int

    @property
    def length(self) -> int:
        return self.end_index - self.start_index


class SentencePosition(WireModel):
    """Pixel geometry of a rendered sentence."""

    sentence_id: str
    top: float
    left: float
    width: float
    height: float
