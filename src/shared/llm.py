"""Shared LLM calling utilities.

Centralizes all Claude invocations with two backends:
1. Anthropic API (preferred, uses ANTHROPIC_API_KEY)
2. Subprocess ``claude -p`` (fallback)

Prod and theme generation are latency-sensitive, so an async wrapper
with a hard timeout is provided on top of the blocking call.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess

import anthropic

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base error for LLM calls."""


class LLMTimeoutError(LLMError):
    """The model did not answer within the allowed time."""


# ---------------------------------------------------------------------------
# Model name mapping
# ---------------------------------------------------------------------------

_MODEL_MAP: dict[str, str] = {
    "sonnet": "claude-sonnet-4-6",
    "haiku": "claude-haiku-4-5-20251001",
    "opus": "claude-opus-4-6",
}

_DEFAULT_MODEL = "claude-haiku-4-5-20251001"


def _resolve_model(model: str | None) -> str:
    """Resolve a short model name to an API model ID."""
    if model is None:
        return _DEFAULT_MODEL
    return _MODEL_MAP.get(model, model)


# ---------------------------------------------------------------------------
# Internal: Anthropic API
# ---------------------------------------------------------------------------


def _call_anthropic_api(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: int = 60,
    max_tokens: int = 1024,
    label: str = "prod",
) -> str:
    """Call Claude via the Anthropic API."""
    api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
    if not api_key:
        raise LLMError("ANTHROPIC_API_KEY not set")

    client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
    resolved_model = _resolve_model(model)

    logger.debug("Calling Anthropic API model=%s (%s)", resolved_model, label)

    kwargs: dict[str, object] = {
        "model": resolved_model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": user_prompt}],
    }
    if system_prompt.strip():
        kwargs["system"] = system_prompt

    try:
        response = client.messages.create(**kwargs)  # type: ignore[arg-type]
    except anthropic.APITimeoutError as exc:
        raise LLMTimeoutError(f"Anthropic API timed out after {timeout}s (label={label})") from exc

    text_parts: list[str] = []
    for block in response.content:
        if block.type == "text":
            text_parts.append(block.text)

    result = "".join(text_parts).strip()
    if not result:
        raise LLMError(f"Anthropic API returned empty response (label={label})")
    return result


# ---------------------------------------------------------------------------
# Internal: subprocess fallback
# ---------------------------------------------------------------------------


def _call_subprocess(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: int = 60,
    label: str = "prod",
) -> str:
    """Call Claude via subprocess (``claude -p``) fallback."""
    cmd = ["claude", "-p"]
    if model:
        cmd.extend(["--model", model])

    full_prompt = f"{system_prompt}\n\n{user_prompt}"

    # Filter CLAUDECODE env var to prevent recursive Claude invocations
    env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

    logger.debug("Calling Claude CLI subprocess (%s)", label)

    try:
        result = subprocess.run(
            cmd,
            input=full_prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as exc:
        raise LLMError(
            f"Claude CLI not found, is 'claude' on the PATH? (label={label})"
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise LLMTimeoutError(f"Claude CLI timed out after {timeout}s (label={label})") from exc
    except OSError as exc:
        raise LLMError(f"Claude CLI could not be started (label={label}): {exc}") from exc

    if result.returncode != 0:
        raise LLMError(
            f"Claude CLI failed (exit {result.returncode}, label={label}): {result.stderr[:500]}"
        )

    return result.stdout.strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def call_claude(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: int = 60,
    max_tokens: int = 1024,
    label: str = "prod",
) -> str:
    """Call Claude and return the response text.

    Priority order:
    1. Anthropic API (if ANTHROPIC_API_KEY is set, unless REFRACT_USE_CLI=1)
    2. Subprocess ``claude -p``

    Args:
        system_prompt: System prompt for the LLM.
        user_prompt: User/content prompt.
        model: Optional model override (e.g. "sonnet", "haiku", "opus").
        timeout: Timeout in seconds.
        max_tokens: Completion budget for the API backend.
        label: Label for logging.

    Returns:
        The LLM response text (stripped).

    Raises:
        LLMTimeoutError: When the backend timed out.
        LLMError: On any other failure.
    """
    use_cli = os.environ.get("REFRACT_USE_CLI", "").strip() == "1"

    api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
    if api_key and not use_cli:
        try:
            return _call_anthropic_api(
                system_prompt,
                user_prompt,
                model=model,
                timeout=timeout,
                max_tokens=max_tokens,
                label=label,
            )
        except LLMError:
            raise
        except Exception as exc:
            raise LLMError(f"Anthropic API failed (label={label}): {exc}") from exc

    return _call_subprocess(
        system_prompt,
        user_prompt,
        model=model,
        timeout=timeout,
        label=label,
    )


async def call_claude_async(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: float = 15.0,
    max_tokens: int = 1024,
    label: str = "prod",
) -> str:
    """Run :func:`call_claude` off the event loop with a hard deadline.

    Cancelling the awaiting task abandons the result; the worker thread
    finishes on its own and its answer is discarded.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(
                call_claude,
                system_prompt,
                user_prompt,
                model=model,
                timeout=max(1, int(timeout)),
                max_tokens=max_tokens,
                label=label,
            ),
            timeout=timeout,
        )
    except TimeoutError as exc:
        raise LLMTimeoutError(f"No response within {timeout}s (label={label})") from exc


# ---------------------------------------------------------------------------
# JSON output helpers
# ---------------------------------------------------------------------------

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def strip_json_fences(text: str) -> str:
    """Strip markdown code fences from LLM JSON output.

    Falls back to the outermost ``{...}`` or ``[...]`` span, whichever
    starts first.
    """
    text = text.strip()
    match = _JSON_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()

    candidates: list[tuple[int, str, str]] = []
    for start_char, end_char in (("{", "}"), ("[", "]")):
        start = text.find(start_char)
        if start != -1:
            candidates.append((start, start_char, end_char))
    candidates.sort()

    for start, _start_char, end_char in candidates:
        end = text.rfind(end_char)
        if end > start:
            return text[start : end + 1]

    return text
