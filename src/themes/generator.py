"""Theme labelling for clusters.

The model proposes a label, description, confidence and colour per
cluster. Its answer is reconciled against the real cluster IDs, and any
cluster it misses (or every cluster, if the call fails) gets a palette
fallback theme, so clusters never come back unlabelled.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from refract.config import ThemesSectionConfig
from refract.shared.llm import LLMError, call_claude_async, strip_json_fences
from refract.themes.models import ClusterResult, ThemeData
from refract.themes.prompts import (
    MAX_LABEL_CHARS,
    THEME_SYSTEM_PROMPT,
    ClusterSummary,
    get_theme_user_prompt,
)

logger = logging.getLogger(__name__)

FALLBACK_PALETTE = [
    "#3B82F6", "#8B5CF6", "#10B981", "#F59E0B", "#EF4444", "#EC4899",
    "#06B6D4", "#84CC16", "#F97316", "#6366F1", "#A855F7", "#14B8A6",
    "#F472B6", "#34D399", "#FBBF24", "#A78BFA", "#60A5FA", "#F87171",
]
FALLBACK_DESCRIPTION = "A collection of related thoughts and experiences"
FALLBACK_CONFIDENCE = 0.5
DEFAULT_THEME_CONFIDENCE = 0.8


def fallback_themes(clusters: list[ClusterResult]) -> list[ThemeData]:
    """Generic themes, one per cluster, coloured from the palette by position."""
    return [
        ThemeData(
            cluster_id=cluster.id,
            label=f"Theme {index + 1}",
            description=FALLBACK_DESCRIPTION,
            confidence=FALLBACK_CONFIDENCE,
            color=FALLBACK_PALETTE[index % len(FALLBACK_PALETTE)],
        )
        for index, cluster in enumerate(clusters)
    ]


def summarize_clusters(clusters: list[ClusterResult], texts_per_cluster: int = 6) -> list[ClusterSummary]:
    return [
        ClusterSummary(
            id=cluster.id,
            index=index + 1,
            texts=[chunk.text for chunk in cluster.chunks[:texts_per_cluster]],
            chunk_count=len(cluster.chunks),
        )
        for index, cluster in enumerate(clusters)
    ]


def reconcile_themes(clusters: list[ClusterResult], suggestions: list[dict[str, Any]]) -> list[ThemeData]:
    """Map model suggestions onto real cluster IDs.

    An unknown ``clusterId`` falls back to the cluster at the same position.
    Later suggestions for an already-claimed cluster are skipped. Clusters
    left without a theme get fallback themes.
    """
    known = [cluster.id for cluster in clusters]
    known_set = set(known)
    resolved: dict[str, ThemeData] = {}

    for index, suggestion in enumerate(suggestions):
        suggested = suggestion.get("clusterId")
        if suggested in known_set:
            cluster_id = suggested
        elif index < len(known):
            cluster_id = known[index]
            logger.warning("Unknown cluster id %r, using position %d (%s)", suggested, index, cluster_id)
        else:
            logger.warning("Dropping extra theme suggestion %r", suggestion.get("theme"))
            continue

        if cluster_id in resolved:
            logger.warning("Duplicate theme for %s, skipping", cluster_id)
            continue

        label = str(suggestion.get("theme") or "").strip()[:MAX_LABEL_CHARS].strip()
        if not label:
            continue
        confidence = suggestion.get("confidence")
        color = suggestion.get("color")
        resolved[cluster_id] = ThemeData(
            cluster_id=cluster_id,
            label=label,
            description=str(suggestion.get("description") or f"Theme representing {label.lower()}"),
            confidence=float(confidence) if isinstance(confidence, (int, float)) and confidence else DEFAULT_THEME_CONFIDENCE,
            color=str(color) if color else FALLBACK_PALETTE[known.index(cluster_id) % len(FALLBACK_PALETTE)],
        )

    missing = [cluster for cluster in clusters if cluster.id not in resolved]
    if missing:
        logger.info("Adding fallback themes for %s", [c.id for c in missing])
        for theme in fallback_themes(missing):
            resolved[theme.cluster_id] = theme

    return list(resolved.values())


class ThemeGenerator:
    """Labels clusters through the LLM, never failing outright."""

    def __init__(self, config: ThemesSectionConfig) -> None:
        self._config = config

    async def generate(self, clusters: list[ClusterResult], full_text: str | None = None) -> list[ThemeData]:
        if not clusters:
            return []

        summaries = summarize_clusters(clusters, self._config.texts_per_cluster)
        user_prompt = get_theme_user_prompt(summaries, full_text, self._config.max_context_chars)
        try:
            raw = await call_claude_async(
                THEME_SYSTEM_PROMPT,
                user_prompt,
                model=self._config.model,
                timeout=self._config.claude_timeout,
                max_tokens=2048,
                label="themes",
            )
            data = json.loads(strip_json_fences(raw))
        except (LLMError, ValueError) as exc:
            logger.warning("Theme generation failed, using fallback themes: %s", exc)
            return fallback_themes(clusters)

        suggestions = data.get("themes") if isinstance(data, dict) else data
        if not isinstance(suggestions, list):
            logger.warning("Theme response had no theme list, using fallback themes")
            return fallback_themes(clusters)

        themes = reconcile_themes(clusters, [s for s in suggestions if isinstance(s, dict)])
        logger.info("Generated %d themes for %d clusters", len(themes), len(clusters))
        return themes
