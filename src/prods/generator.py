"""Prod generation through the LLM boundary.

:meth:`ProdGenerator.generate` never raises for upstream problems. A
timeout becomes a soft skip (nothing shown); any other failure becomes
the generic fallback prod.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from refract.config import RefractConfig
from refract.prods.dedup import FingerprintCache
from refract.prods.models import ProdRequest, ProdResponse
from refract.prods.prompts import PROD_SYSTEM_PROMPT, get_prod_user_prompt
from refract.shared.llm import LLMError, LLMTimeoutError, call_claude_async, strip_json_fences

logger = logging.getLogger(__name__)

CONTEXT_CHARS = 400


def parse_prod_response(raw: str) -> ProdResponse:
    """Parse model output into a ProdResponse.

    Raises:
        ValueError: If the output is not a JSON object with usable fields.
    """
    data = json.loads(strip_json_fences(raw))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    confidence = data.get("confidence", 0.0)
    if isinstance(confidence, (int, float)):
        data["confidence"] = min(1.0, max(0.0, float(confidence)))
    if data.get("selectedProd") is None:
        data["selectedProd"] = ""
    return ProdResponse.model_validate(data)


class ProdGenerator:
    """Asks the model for one prod per request, caching answers by fingerprint."""

    def __init__(self, config: RefractConfig, cache: FingerprintCache[ProdResponse] | None = None) -> None:
        self._config = config
        self._cache: FingerprintCache[ProdResponse] = cache or FingerprintCache(
            ttl_ms=config.dedup.ttl_seconds * 1000,
            max_entries=config.dedup.max_entries,
        )

    @property
    def cache(self) -> FingerprintCache[ProdResponse]:
        return self._cache

    async def generate(self, request: ProdRequest) -> ProdResponse:
        cached = self._cache.get(request.last_paragraph)
        if cached is not None:
            logger.debug("Returning cached prod for %r", request.last_paragraph[:40])
            return cached

        user_prompt = get_prod_user_prompt(
            request.last_paragraph,
            context=request.full_text[-CONTEXT_CHARS:] if request.full_text else "",
            keywords=request.keywords,
            recent_prods=request.recent_prods,
        )
        try:
            raw = await call_claude_async(
                PROD_SYSTEM_PROMPT,
                user_prompt,
                model=self._config.llm.model,
                timeout=self._config.queue.request_timeout,
                max_tokens=256,
                label="prod",
            )
        except LLMTimeoutError as exc:
            logger.warning("Prod request timed out, skipping: %s", exc)
            return ProdResponse.soft_skip()
        except LLMError as exc:
            logger.warning("Prod generation failed, using fallback: %s", exc)
            return ProdResponse.fallback()

        try:
            response = parse_prod_response(raw)
        except (ValueError, ValidationError) as exc:
            logger.warning("Unparseable prod response, using fallback: %s", exc)
            return ProdResponse.fallback()

        logger.debug(
            "Generated prod %r (confidence %.2f) for %r",
            response.selected_prod,
            response.confidence,
            request.last_paragraph[:40],
        )
        self._cache.put(request.last_paragraph, response)
        return response
