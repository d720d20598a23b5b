"""Embedding providers and the chunk-embedding step.

Two providers: the OpenAI embeddings API when ``OPENAI_API_KEY`` is set,
otherwise a local sentence-transformers model. Both are optional installs
(``pip install refract[embeddings]``) and are imported on first use.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from refract.config import EmbeddingsSectionConfig
from refract.themes.models import EmbeddingResult, TextChunk, Usage
from refract.writing.models import Sentence

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"
SENTENCE_TRANSFORMERS_MODEL = "all-MiniLM-L6-v2"


class EmbeddingError(Exception):
    """Raised when an embedding provider fails."""


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that turns a batch of texts into vectors."""

    @property
    def model_name(self) -> str: ...

    @property
    def cost_per_token(self) -> float: ...

    def embed(self, texts: list[str]) -> tuple[np.ndarray, int]:
        """Return ``(vectors, tokens_used)``; vectors has one row per text."""
        ...


class OpenAIEmbedder:
    """Embeddings through the OpenAI API."""

    def __init__(self, model_name: str | None = None, cost_per_token: float = 0.00002) -> None:
        self._model_name = model_name or OPENAI_EMBEDDING_MODEL
        self._cost_per_token = cost_per_token
        self._client: Any = None

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                from openai import OpenAI
            except ImportError as exc:
                raise ImportError(
                    "openai is required for OpenAI embeddings. "
                    "Install with: pip install 'refract[embeddings]'"
                ) from exc
            self._client = OpenAI(api_key=os.environ.get("OPENAI_API_KEY"))
        return self._client

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def cost_per_token(self) -> float:
        return self._cost_per_token

    def embed(self, texts: list[str]) -> tuple[np.ndarray, int]:
        if not texts:
            return np.array([]), 0
        response = self.client.embeddings.create(input=texts, model=self._model_name)
        vectors = np.array([item.embedding for item in response.data], dtype=float)
        tokens = getattr(response.usage, "total_tokens", 0) or 0
        return vectors, int(tokens)


class SentenceTransformerEmbedder:
    """Local embeddings with sentence-transformers; costs nothing per token."""

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or SENTENCE_TRANSFORMERS_MODEL
        self._model: SentenceTransformer | None = None

    @property
    def model(self) -> SentenceTransformer:
        """Lazy-load the model on first access."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:
                raise ImportError(
                    "sentence-transformers is required when OPENAI_API_KEY is not set. "
                    "Install with: pip install 'refract[embeddings]'"
                ) from exc
            self._model = SentenceTransformer(self._model_name)
        return self._model

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def cost_per_token(self) -> float:
        return 0.0

    def embed(self, texts: list[str]) -> tuple[np.ndarray, int]:
        if not texts:
            return np.array([]), 0
        vectors = self.model.encode(texts, convert_to_numpy=True)
        tokens = sum(len(text.split()) for text in texts)
        return np.asarray(vectors, dtype=float), tokens


def create_embedder(config: EmbeddingsSectionConfig) -> EmbeddingProvider:
    """Pick a provider from config; ``auto`` prefers OpenAI when a key is present."""
    provider = config.provider
    if provider == "auto":
        provider = "openai" if os.environ.get("OPENAI_API_KEY", "").strip() else "sentence-transformers"
    if provider == "openai":
        return OpenAIEmbedder(config.model, cost_per_token=config.cost_per_token)
    if provider == "sentence-transformers":
        return SentenceTransformerEmbedder(config.model)
    raise ValueError(f"Unknown embedding provider: {config.provider}")


def to_chunks(sentences: list[Sentence]) -> list[TextChunk]:
    """One chunk per sentence."""
    return [
        TextChunk(id=f"chunk-{sentence.id}", text=sentence.text, sentence_id=sentence.id)
        for sentence in sentences
    ]


async def embed_chunks(chunks: list[TextChunk], provider: EmbeddingProvider) -> EmbeddingResult:
    """Attach embeddings to *chunks*.

    Empty input returns an empty result without touching the provider.

    Raises:
        EmbeddingError: If the provider fails or returns the wrong shape.
    """
    if not chunks:
        return EmbeddingResult()

    texts = [chunk.text for chunk in chunks]
    logger.info("Embedding %d chunks with %s", len(texts), provider.model_name)
    try:
        vectors, tokens = await asyncio.to_thread(provider.embed, texts)
    except ImportError:
        raise
    except Exception as exc:
        raise EmbeddingError(f"Embedding failed ({provider.model_name}): {exc}") from exc

    if len(vectors) != len(chunks):
        raise EmbeddingError(
            f"Expected {len(chunks)} embeddings, got {len(vectors)} ({provider.model_name})"
        )

    embeddings = [[float(x) for x in row] for row in vectors]
    with_vectors = [
        chunk.model_copy(update={"embedding": vector}) for chunk, vector in zip(chunks, embeddings)
    ]
    return EmbeddingResult(
        chunks=with_vectors,
        embeddings=embeddings,
        usage=Usage(tokens=tokens, cost=tokens * provider.cost_per_token),
    )
