"""Theme analysis pipeline: embed, cluster, label, enrich and format.

Orchestrates the pieces in ``refract.themes`` for one request. Failures
come back as an ``EmbeddingsResponse`` with ``error`` set and an HTTP-style
status, never as an exception.
"""

from __future__ import annotations

import logging

from refract.config import RefractConfig
from refract.themes.clustering import RandomSource, choose_cluster_count, cluster
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
from refract.themes.generator import ThemeGenerator
from refract.themes.models import EmbeddingsRequest, EmbeddingsResponse

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NO_SENTENCES_ERROR = "No sentences provided"
EMBEDDINGS_FAILED_ERROR = "Failed to generate embeddings"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


async def analyze(
    request: EmbeddingsRequest,
    config: RefractConfig,
    embedder: EmbeddingProvider | None = None,
    generator: ThemeGenerator | None = None,
    rng: RandomSource | None = None,
) -> tuple[int, EmbeddingsResponse]:
    """Run the theme pipeline for *request*.

    Returns ``(status, response)``: 400 when there are no sentences (the
    embedder is never called), 500 when embedding or clustering fails,
    200 otherwise. Theme labelling itself cannot fail; the generator
    falls back to palette themes. Without an *embedder* one is built
    from config.
    """
    if not request.sentences:
        return 400, EmbeddingsResponse(error=NO_SENTENCES_ERROR)

    generator = generator or ThemeGenerator(config.themes)
    chunks = to_chunks(request.sentences)

    try:
        if embedder is None:
            embedder = create_embedder(config.embeddings)
        embedded = await embed_chunks(chunks, embedder)
        k = min(choose_cluster_count(len(embedded.chunks)), config.themes.max_clusters)
        clusters = cluster(embedded.chunks, embedded.embeddings, k=k, rng=rng)
    except (EmbeddingError, ImportError, ValueError) as exc:
        logger.error("Theme analysis failed: %s", exc)
        return 500, EmbeddingsResponse(error=EMBEDDINGS_FAILED_ERROR)

    themes = await generator.generate(clusters, request.full_text)
    enriched = enrich_clusters(clusters, themes)
    top = select_top_clusters(enriched, limit=config.themes.max_clusters)
    formatted = format_clusters_for_response(top, config.themes.min_chunk_correlation)

    logger.info(
        "Analyzed %d sentences into %d themes (%d tokens)",
        len(request.sentences),
        len(formatted),
        embedded.usage.tokens,
    )
    return 200, EmbeddingsResponse(clusters=top, themes=formatted, usage=embedded.usage)
