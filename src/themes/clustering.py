"""K-means over cosine similarity with k-means++ seeding.

Small inputs only (a few dozen sentences), so plain numpy is enough.
Pass ``rng`` (anything with ``random() -> float`` in ``[0, 1)``) for
deterministic results.
"""

from __future__ import annotations

import logging
import random
from typing import Protocol

import numpy as np

from refract.themes.models import ClusterResult, TextChunk

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10
MAX_CLUSTERS = 3
MIN_CLUSTERS = 2


class RandomSource(Protocol):
    def random(self) -> float: ...


def cosine_similarity(a: np.ndarray | list[float], b: np.ndarray | list[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero length."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.size == 0 or vb.size == 0:
        return 0.0
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def similarity_matrix(embeddings: list[list[float]]) -> np.ndarray:
    """Pairwise cosine similarities, zero rows for zero vectors."""
    matrix = np.asarray(embeddings, dtype=float)
    if matrix.size == 0:
        return np.zeros((0, 0))
    norms = np.linalg.norm(matrix, axis=1)
    safe = np.where(norms == 0.0, 1.0, norms)
    unit = matrix / safe[:, None]
    unit[norms == 0.0] = 0.0
    return unit @ unit.T


def choose_cluster_count(n_chunks: int) -> int:
    """Roughly one cluster per three chunks, clamped to 2..3."""
    return min(MAX_CLUSTERS, max(MIN_CLUSTERS, n_chunks // 3))


def _seed_centroids(vectors: np.ndarray, k: int, rng: RandomSource) -> list[np.ndarray]:
    n = len(vectors)
    first = min(int(rng.random() * n), n - 1)
    centroids = [vectors[first].copy()]
    for _ in range(1, k):
        # distance = 1 - best similarity to any chosen centroid
        distances = [
            min(1.0 - cosine_similarity(v, c) for c in centroids) for v in vectors
        ]
        remaining = rng.random() * sum(distances)
        selected = 0
        for j, d in enumerate(distances):
            remaining -= d
            if remaining <= 0:
                selected = j
                break
        centroids.append(vectors[selected].copy())
    return centroids


def _assign(vectors: np.ndarray, centroids: list[np.ndarray]) -> list[int]:
    assignments: list[int] = []
    for v in vectors:
        best, best_sim = 0, cosine_similarity(v, centroids[0])
        for j in range(1, len(centroids)):
            sim = cosine_similarity(v, centroids[j])
            if sim > best_sim:
                best, best_sim = j, sim
        assignments.append(best)
    return assignments


def cluster(
    chunks: list[TextChunk],
    embeddings: list[list[float]],
    k: int = MAX_CLUSTERS,
    rng: RandomSource | None = None,
) -> list[ClusterResult]:
    """Group *chunks* into at most *k* clusters by embedding similarity.

    Fewer chunks than *k* yields a single "Main Theme" cluster with
    confidence 1.0. Otherwise clusters are sorted by size times confidence,
    largest and tightest first. Member chunks carry their similarity to
    the final centroid in ``correlation``.
    """
    if len(chunks) != len(embeddings):
        raise ValueError(f"{len(chunks)} chunks but {len(embeddings)} embeddings")

    if len(chunks) < k:
        centroid = list(embeddings[0]) if embeddings else []
        members = [
            c.model_copy(update={"correlation": cosine_similarity(e, centroid) if centroid else 1.0})
            for c, e in zip(chunks, embeddings)
        ]
        return [
            ClusterResult(
                id="cluster-0",
                label="Main Theme",
                chunks=members,
                centroid=centroid,
                confidence=1.0,
            )
        ]

    rng = rng or random.Random()
    vectors = np.asarray(embeddings, dtype=float)
    centroids = _seed_centroids(vectors, k, rng)

    assignments = [0] * len(vectors)
    for iteration in range(MAX_ITERATIONS):
        previous = assignments
        assignments = _assign(vectors, centroids)
        for j in range(k):
            members = vectors[[i for i, a in enumerate(assignments) if a == j]]
            if len(members):
                centroids[j] = members.mean(axis=0)
        if assignments == previous:
            logger.debug("k-means converged after %d iterations", iteration + 1)
            break

    results: list[ClusterResult] = []
    for j in range(k):
        indices = [i for i, a in enumerate(assignments) if a == j]
        if not indices:
            continue
        sims = [cosine_similarity(vectors[i], centroids[j]) for i in indices]
        members = [
            chunks[i].model_copy(update={"correlation": sim}) for i, sim in zip(indices, sims)
        ]
        results.append(
            ClusterResult(
                id=f"cluster-{j}",
                label=f"Cluster {j + 1}",
                chunks=members,
                centroid=[float(x) for x in centroids[j]],
                confidence=sum(sims) / len(sims),
            )
        )

    results.sort(key=lambda c: len(c.chunks) * c.confidence, reverse=True)
    logger.info("Clustered %d chunks into %d clusters", len(chunks), len(results))
    return results
