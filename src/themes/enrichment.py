"""Merge generated theme data into clusters and shape the response."""

from __future__ import annotations

from refract.themes.highlight import MIN_CHUNK_CORRELATION
from refract.themes.models import (
    DEFAULT_CLUSTER_COLOR,
    ClusterResult,
    Theme,
    ThemeChunk,
    ThemeData,
)

MISSING_THEME_CONFIDENCE = 0.5


def enrich_clusters(clusters: list[ClusterResult], themes: list[ThemeData]) -> list[ClusterResult]:
    """Copy label, description and colour from the matching theme.

    Confidence becomes the lower of the cluster's and the theme's.
    """
    by_id = {theme.cluster_id: theme for theme in themes}
    enriched: list[ClusterResult] = []
    for cluster in clusters:
        theme = by_id.get(cluster.id)
        theme_confidence = theme.confidence if theme and theme.confidence else MISSING_THEME_CONFIDENCE
        enriched.append(
            cluster.model_copy(
                update={
                    "label": theme.label if theme and theme.label else cluster.label,
                    "description": theme.description if theme else "",
                    "confidence": min(cluster.confidence, theme_confidence),
                    "color": theme.color if theme and theme.color else DEFAULT_CLUSTER_COLOR,
                }
            )
        )
    return enriched


def select_top_clusters(clusters: list[ClusterResult], limit: int = 3) -> list[ClusterResult]:
    """Keep the *limit* clusters with the highest confidence times size."""
    ranked = sorted(clusters, key=lambda c: c.confidence * len(c.chunks), reverse=True)
    return ranked[:limit]


def format_clusters_for_response(
    clusters: list[ClusterResult], min_correlation: float = MIN_CHUNK_CORRELATION
) -> list[Theme]:
    """Themes carrying only chunks at or above *min_correlation*."""
    themes: list[Theme] = []
    for cluster in clusters:
        kept = [
            ThemeChunk(text=chunk.text, sentence_id=chunk.sentence_id, correlation=chunk.correlation)
            for chunk in cluster.chunks
            if chunk.correlation is not None and chunk.correlation >= min_correlation
        ]
        themes.append(
            Theme(
                id=cluster.id,
                label=cluster.label,
                description=cluster.description or "",
                confidence=cluster.confidence,
                chunk_count=len(kept),
                color=cluster.color or DEFAULT_CLUSTER_COLOR,
                chunks=kept,
            )
        )
    return themes
