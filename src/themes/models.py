"""Theme pipeline models: chunks, clusters, themes and highlight ranges.

Pure data, no I/O. Wire names are camelCase (see ``WireModel``).
"""

from __future__ import annotations

from pydantic import Field

from refract.shared.models import WireModel
from refract.writing.models import Sentence

DEFAULT_CLUSTER_COLOR = "#3b82f6"
DEFAULT_HIGHLIGHT_COLOR = "#93c5fd"


class TextChunk(WireModel):
    """Unit of text sent for embedding; one per sentence for now."""

    id: str
    text: str
    sentence_id: str
    embedding: list[float] | None = None
    # cosine similarity to the centroid of the cluster it ended up in
    correlation: float | None = None


class Usage(WireModel):
    tokens: int = 0
    cost: float = 0.0


class EmbeddingResult(WireModel):
    chunks: list[TextChunk] = Field(default_factory=list)
    embeddings: list[list[float]] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)


class ClusterResult(WireModel):
    """A k-means cluster. ``confidence`` is the mean member-to-centroid similarity."""

    id: str
    label: str
    chunks: list[TextChunk]
    centroid: list[float]
    confidence: float
    color: str | None = None
    description: str | None = None


class ThemeData(WireModel):
    """Label, description and colour proposed for one cluster."""

    cluster_id: str
    label: str
    description: str
    confidence: float
    color: str


class ThemeChunk(WireModel):
    text: str
    sentence_id: str
    correlation: float


class Theme(WireModel):
    """A labelled cluster as returned to clients."""

    id: str
    label: str
    description: str = ""
    confidence: float
    chunk_count: int
    color: str = DEFAULT_CLUSTER_COLOR
    chunks: list[ThemeChunk] = Field(default_factory=list)


class EmbeddingsRequest(WireModel):
    sentences: list[Sentence]
    full_text: str | None = None


class EmbeddingsResponse(WireModel):
    clusters: list[ClusterResult] = Field(default_factory=list)
    themes: list[Theme] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    error: str | None = None


class HighlightRange(WireModel):
    start: int
    end: int
    color: str
    theme_id: str
    intensity: float


class SegmentMeta(WireModel):
    """A span between two adjacent cut points."""

    start: int
    end: int


class SegmentPaint(WireModel):
    """How a segment is painted given the active ranges."""

    color: str | None = None
    intensity: float = 0.0
    theme_id: str | None = None

    @property
    def active(self) -> bool:
        return self.color is not None
