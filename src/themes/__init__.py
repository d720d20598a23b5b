"""Theme analysis: embeddings, clustering, labelling and highlights."""

from refract.themes.clustering import choose_cluster_count, cluster, cosine_similarity
from refract.themes.embeddings import (
    EmbeddingError,
    EmbeddingProvider,
    create_embedder,
    embed_chunks,
    to_chunks,
)
from refract.themes.enrichment import (
    enrich_clusters,
    format_clusters_for_response,
    select_top_clusters,
)
from refract.themes.generator import ThemeGenerator, fallback_themes, reconcile_themes
from refract.themes.highlight import (
    assign_chunk_indices,
    build_cut_points,
    compute_segment_paint_state,
    create_segments,
    ranges_from_themes,
)
from refract.themes.models import (
    ClusterResult,
    EmbeddingsRequest,
    EmbeddingsResponse,
    HighlightRange,
    TextChunk,
    Theme,
    ThemeData,
)
from refract.themes.services import analyze
from refract.themes.store import ThemeStore

__all__ = [
    "ClusterResult",
    "EmbeddingError",
    "EmbeddingProvider",
    "EmbeddingsRequest",
    "EmbeddingsResponse",
    "HighlightRange",
    "TextChunk",
    "Theme",
    "ThemeData",
    "ThemeGenerator",
    "ThemeStore",
    "analyze",
    "assign_chunk_indices",
    "build_cut_points",
    "choose_cluster_count",
    "cluster",
    "compute_segment_paint_state",
    "cosine_similarity",
    "create_embedder",
    "create_segments",
    "embed_chunks",
    "enrich_clusters",
    "fallback_themes",
    "format_clusters_for_response",
    "ranges_from_themes",
    "reconcile_themes",
    "select_top_clusters",
    "to_chunks",
]
