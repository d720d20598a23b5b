"""Highlight ranges and render segments derived from themes.

Ranges come from theme chunks mapped back to sentence offsets. Segments
partition the text at every range boundary, so switching the active
themes only repaints segments and never moves a boundary.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from refract.themes.models import (
    DEFAULT_HIGHLIGHT_COLOR,
    HighlightRange,
    SegmentMeta,
    SegmentPaint,
    Theme,
)
from refract.writing.models import Sentence

STAGGER_PER_CHUNK = 0.04
MIN_CHUNK_CORRELATION = 0.55
FLAT_SPREAD = 0.15
STRETCH_LOW = 0.3
STRETCH_HIGH = 0.9
FLAT_INTENSITY = 0.6


def normalize_correlation(correlation: float) -> float:
    """Map cosine similarity in ``[-1, 1]`` onto ``[0, 1]``."""
    return min(1.0, max(0.0, (correlation + 1) / 2))


def correlation_intensities(correlations: list[float]) -> list[float]:
    """Turn one theme's chunk correlations into render intensities.

    When the normalized values are bunched together (spread under 0.15)
    they are stretched onto ``[0.3, 0.9]`` so strong and weak passages
    stay distinguishable. Identical values all get 0.6.
    """
    normalized = [normalize_correlation(c) for c in correlations]
    if not normalized:
        return []
    low, high = min(normalized), max(normalized)
    spread = high - low
    if spread >= FLAT_SPREAD:
        return normalized
    if spread == 0:
        return [FLAT_INTENSITY] * len(normalized)
    scale = (STRETCH_HIGH - STRETCH_LOW) / spread
    return [STRETCH_LOW + (value - low) * scale for value in normalized]


def ranges_from_themes(
    themes: Iterable[Theme] | None,
    sentence_map: Mapping[str, Sentence],
    filter_ids: set[str] | None = None,
) -> list[HighlightRange]:
    """Highlight ranges for every theme chunk whose sentence is known, sorted by start."""
    if not themes:
        return []

    ranges: list[HighlightRange] = []
    for theme in themes:
        if filter_ids is not None and theme.id not in filter_ids:
            continue
        if not theme.chunks:
            continue
        color = theme.color or DEFAULT_HIGHLIGHT_COLOR
        intensities = correlation_intensities([chunk.correlation for chunk in theme.chunks])
        for chunk, intensity in zip(theme.chunks, intensities):
            sentence = sentence_map.get(chunk.sentence_id)
            if sentence is None:
                continue
            ranges.append(
                HighlightRange(
                    start=sentence.start_index,
                    end=sentence.end_index,
                    color=color,
                    theme_id=theme.id,
                    intensity=intensity,
                )
            )

    ranges.sort(key=lambda r: r.start)
    return ranges


def build_cut_points(text: str, ranges: Iterable[HighlightRange]) -> list[int]:
    """Sorted, de-duplicated boundaries, always including 0 and ``len(text)``."""
    cuts = {0, len(text)}
    for r in ranges:
        cuts.add(r.start)
        cuts.add(r.end)
    return sorted(cuts)


def create_segments(cuts: list[int]) -> list[SegmentMeta]:
    return [
        SegmentMeta(start=start, end=end)
        for start, end in zip(cuts, cuts[1:])
        if end > start
    ]


def compute_segment_paint_state(
    segments: list[SegmentMeta], ranges: list[HighlightRange]
) -> list[SegmentPaint]:
    """Paint each segment with the first range that fully contains it."""
    painted: list[SegmentPaint] = []
    for segment in segments:
        paint = SegmentPaint()
        for r in ranges:
            if r.start <= segment.start and r.end >= segment.end:
                paint = SegmentPaint(color=r.color, intensity=r.intensity, theme_id=r.theme_id)
                break
        painted.append(paint)
    return painted


def assign_chunk_indices(paint: list[SegmentPaint]) -> list[int]:
    """Number runs of adjacent active segments in document order; -1 if inactive."""
    indices = [-1] * len(paint)
    current = -1
    for i, state in enumerate(paint):
        if state.active:
            if i == 0 or not paint[i - 1].active:
                current += 1
            indices[i] = current
    return indices


def reverse_chunk_indices(indices: list[int]) -> list[int]:
    """Same runs numbered from the end, for hide animations."""
    last = max(indices, default=-1)
    return [last - i if i >= 0 else -1 for i in indices]


def stagger_delays(indices: list[int], per_chunk: float = STAGGER_PER_CHUNK) -> list[float]:
    """Animation delay in seconds for each segment; inactive segments get 0."""
    return [i * per_chunk if i >= 0 else 0.0 for i in indices]
