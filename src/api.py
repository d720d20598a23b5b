"""Request handlers for the prod and embeddings endpoints.

Each handler takes a decoded (or raw JSON) request body and returns
``(status_code, body)``. Handlers never raise: malformed bodies become
400 responses and upstream failures become fallbacks or 500 responses.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from refract.config import RefractConfig
from refract.prods.generator import ProdGenerator
from refract.prods.models import ProdRequest, ProdResponse
from refract.themes.clustering import RandomSource
from refract.themes.embeddings import EmbeddingProvider
from refract.themes.generator import ThemeGenerator
from refract.themes.models import EmbeddingsRequest, EmbeddingsResponse
from refract.themes.services import EMBEDDINGS_FAILED_ERROR, analyze

logger = logging.getLogger(__name__)

INVALID_REQUEST_ERROR = "Invalid request format"
MISSING_PARAGRAPH_ERROR = "lastParagraph is required"

Body = dict[str, Any] | str | bytes


def _decode(body: Body) -> Any:
    if isinstance(body, (str, bytes)):
        return json.loads(body)
    return body


def _validation_details(exc: Exception) -> Any:
    if isinstance(exc, ValidationError):
        return json.loads(exc.json(include_url=False))
    return str(exc)


def _embeddings_body(response: EmbeddingsResponse) -> dict[str, Any]:
    body = response.to_wire()
    if body.get("error") is None:
        body.pop("error", None)
    return body


async def handle_prod_request(
    body: Body,
    generator: ProdGenerator,
    config: RefractConfig,
) -> tuple[int, dict[str, Any]]:
    """Answer a prod request with ``{selectedProd, confidence, shouldSkip}``.

    Without a model credential no call is attempted and the answer is a
    soft skip.
    """
    try:
        request = ProdRequest.model_validate(_decode(body))
    except (ValidationError, ValueError) as exc:
        logger.warning("Rejected prod request: %s", exc)
        return 400, {"error": INVALID_REQUEST_ERROR, "details": _validation_details(exc)}

    if not request.last_paragraph.strip():
        return 400, {"error": MISSING_PARAGRAPH_ERROR}

    if not config.has_prod_credentials():
        logger.debug("No model credential configured, skipping prod")
        return 200, ProdResponse.soft_skip().to_wire()

    response = await generator.generate(request)
    return 200, response.to_wire()


async def handle_embeddings_request(
    body: Body,
    config: RefractConfig,
    embedder: EmbeddingProvider | None = None,
    generator: ThemeGenerator | None = None,
    rng: RandomSource | None = None,
) -> tuple[int, dict[str, Any]]:
    """Answer an embeddings request with ``{clusters, themes, usage}``."""
    try:
        request = EmbeddingsRequest.model_validate(_decode(body))
    except (ValidationError, ValueError) as exc:
        logger.warning("Rejected embeddings request: %s", exc)
        payload = _embeddings_body(EmbeddingsResponse(error=INVALID_REQUEST_ERROR))
        payload["details"] = _validation_details(exc)
        return 400, payload

    try:
        status, response = await analyze(request, config, embedder, generator, rng)
    except Exception:
        logger.exception("Embeddings request failed")
        return 500, _embeddings_body(EmbeddingsResponse(error=EMBEDDINGS_FAILED_ERROR))

    return status, _embeddings_body(response)
