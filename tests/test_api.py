"""Tests for refract.api: prod and embeddings request handlers."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from refract.api import (
    INVALID_REQUEST_ERROR,
    MISSING_PARAGRAPH_ERROR,
    handle_embeddings_request,
    handle_prod_request,
)
from refract.config import RefractConfig
from refract.prods.generator import ProdGenerator
from refract.prods.models import ProdResponse
from refract.themes.generator import ThemeGenerator


class FixedRandom:
    def random(self) -> float:
        return 0.5


class AxisEmbedder:
    """Sentences mentioning work point one way, everything else the other."""

    model_name = "axis"
    cost_per_token = 0.00002

    def embed(self, texts: list[str]) -> tuple[np.ndarray, int]:
        rows = [[0.1, 1.0] if "work" in t.lower() else [1.0, 0.1] for t in texts]
        return np.array(rows), 4 * len(texts)


def _make_prod_generator(response: ProdResponse | None = None) -> MagicMock:
    generator = MagicMock(spec=ProdGenerator)
    generator.generate = AsyncMock(return_value=response or ProdResponse(selected_prod="Why then?", confidence=0.8))
    return generator


def _make_theme_generator() -> MagicMock:
    generator = MagicMock(spec=ThemeGenerator)
    generator.generate = AsyncMock(return_value=[])
    return generator


def _sentences_body() -> dict:
    return {
        "sentences": [
            {"id": "a", "text": "I love the sea.", "startIndex": 0, "endIndex": 15},
            {"id": "b", "text": "The beach calms me.", "startIndex": 16, "endIndex": 35},
            {"id": "c", "text": "Work is relentless.", "startIndex": 36, "endIndex": 55},
            {"id": "d", "text": "My work inbox never empties.", "startIndex": 56, "endIndex": 84},
        ],
        "fullText": "I love the sea. The beach calms me. Work is relentless. My work inbox never empties.",
    }


# ---------------------------------------------------------------------------
# handle_prod_request
# ---------------------------------------------------------------------------


class TestHandleProdRequest:
    @pytest.mark.asyncio
    async def test_malformed_json(self):
        status, body = await handle_prod_request("{not json", _make_prod_generator(), RefractConfig())
        assert status == 400
        assert body["error"] == INVALID_REQUEST_ERROR
        assert "details" in body

    @pytest.mark.asyncio
    async def test_missing_field(self):
        status, body = await handle_prod_request({"fullText": "x"}, _make_prod_generator(), RefractConfig())
        assert status == 400
        assert body["error"] == INVALID_REQUEST_ERROR
        assert body["details"][0]["loc"] == ["lastParagraph"]

    @pytest.mark.asyncio
    async def test_blank_paragraph(self):
        status, body = await handle_prod_request({"lastParagraph": "   "}, _make_prod_generator(), RefractConfig())
        assert status == 400
        assert body == {"error": MISSING_PARAGRAPH_ERROR}

    @pytest.mark.asyncio
    @patch.dict("os.environ", {"ANTHROPIC_API_KEY": ""})
    async def test_no_credentials_soft_skip(self):
        generator = _make_prod_generator()

        status, body = await handle_prod_request(
            {"lastParagraph": "I felt lost today."}, generator, RefractConfig()
        )

        assert status == 200
        assert body == {"selectedProd": "", "confidence": 0.0, "shouldSkip": True}
        generator.generate.assert_not_called()

    @pytest.mark.asyncio
    @patch.dict("os.environ", {"ANTHROPIC_API_KEY": "sk-test"})
    async def test_generates_prod(self):
        generator = _make_prod_generator()

        status, body = await handle_prod_request(
            json.dumps({"lastParagraph": "I felt lost today.", "keywords": ["lost"]}),
            generator,
            RefractConfig(),
        )

        assert status == 200
        assert body == {"selectedProd": "Why then?", "confidence": 0.8, "shouldSkip": False}
        request = generator.generate.call_args.args[0]
        assert request.last_paragraph == "I felt lost today."
        assert request.keywords == ["lost"]

    @pytest.mark.asyncio
    @patch.dict("os.environ", {"ANTHROPIC_API_KEY": "sk-test"})
    async def test_accepts_bytes(self):
        status, _ = await handle_prod_request(
            b'{"lastParagraph": "I felt lost today."}', _make_prod_generator(), RefractConfig()
        )
        assert status == 200


# ---------------------------------------------------------------------------
# handle_embeddings_request
# ---------------------------------------------------------------------------


class TestHandleEmbeddingsRequest:
    @pytest.mark.asyncio
    async def test_empty_sentences(self):
        status, body = await handle_embeddings_request(
            {"sentences": []}, RefractConfig(), embedder=AxisEmbedder(), generator=_make_theme_generator()
        )
        assert status == 400
        assert body == {
            "clusters": [],
            "themes": [],
            "usage": {"tokens": 0, "cost": 0.0},
            "error": "No sentences provided",
        }

    @pytest.mark.asyncio
    async def test_invalid_body(self):
        status, body = await handle_embeddings_request(
            {"sentences": "nope"}, RefractConfig(), embedder=AxisEmbedder(), generator=_make_theme_generator()
        )
        assert status == 400
        assert body["error"] == INVALID_REQUEST_ERROR
        assert body["clusters"] == []
        assert body["details"]

    @pytest.mark.asyncio
    async def test_success_shape(self):
        status, body = await handle_embeddings_request(
            _sentences_body(),
            RefractConfig(),
            embedder=AxisEmbedder(),
            generator=_make_theme_generator(),
            rng=FixedRandom(),
        )

        assert status == 200
        assert "error" not in body
        assert len(body["clusters"]) == 2
        assert body["usage"] == {"tokens": 16, "cost": pytest.approx(16 * 0.00002)}
        theme = body["themes"][0]
        assert set(theme) == {"id", "label", "description", "confidence", "chunkCount", "color", "chunks"}
        assert theme["chunkCount"] == 2
        assert set(theme["chunks"][0]) == {"text", "sentenceId", "correlation"}

    @pytest.mark.asyncio
    @patch("refract.api.analyze", new_callable=AsyncMock)
    async def test_unexpected_error_is_500(self, mock_analyze):
        mock_analyze.side_effect = RuntimeError("boom")

        status, body = await handle_embeddings_request(_sentences_body(), RefractConfig())

        assert status == 500
        assert body["error"] == "Failed to generate embeddings"
        assert body["themes"] == []
