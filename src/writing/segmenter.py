"""Heuristic sentence segmentation with stable, content-addressed IDs."""

from __future__ import annotations

import re

from refract.writing.models import Sentence

_TERMINALS = frozenset(".!?")
_NON_WORD_RE = re.compile(r"[^\w]")
_WHITESPACE_RE = re.compile(r"\s+")

_PUNCT_ONLY_RE = re.compile(r"^[.,!?;:\s-]+$")
_TRIVIAL_RE = re.compile(r"^(\d+|hello|hi|hey|thanks|ok|okay)\.?$", re.IGNORECASE)
_LINKISH_RE = re.compile(r"^(https?://|/[\w/]+|[\w.-]+@[\w.-]+)", re.IGNORECASE)

MIN_PROCESS_LENGTH = 12
MIN_PROCESS_CONTENT = 8


def normalize_text(text: str) -> str:
    """Trim, lower-case and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def sentence_id(text: str, start_index: int) -> str:
    """Build the ID for a sentence starting at *start_index*.

    Only the first 20 normalized characters feed the hash, so a sentence
    that keeps growing at its end keeps the same ID.
    """
    content_hash = _NON_WORD_RE.sub("", normalize_text(text)[:20])[:10]
    return f"sentence-{start_index}-{content_hash}"


def _make_sentence(source: str, start: int, end: int) -> Sentence | None:
    raw = source[start:end]
    stripped = raw.lstrip()
    start += len(raw) - len(stripped)
    stripped = stripped.rstrip()
    if not stripped:
        return None
    return Sentence(
        id=sentence_id(stripped, start),
        text=stripped,
        start_index=start,
        end_index=start + len(stripped),
    )


def segment(text: str) -> list[Sentence]:
    """Split *text* into sentences.

    A sentence ends at ``.``, ``!`` or ``?`` followed by whitespace or the
    end of the string, and at any line break (``\\r\\n`` counts once).
    Whatever follows the last boundary becomes the final sentence.
    """
    if not text.strip():
        return []

    sentences: list[Sentence] = []
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in _TERMINALS and (i == n - 1 or text[i + 1].isspace()):
            sentence = _make_sentence(text, start, i + 1)
            if sentence is not None:
                sentences.append(sentence)
            start = i + 1
        elif ch in "\r\n":
            sentence = _make_sentence(text, start, i)
            if sentence is not None:
                sentences.append(sentence)
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
            start = i + 1
        i += 1

    tail = _make_sentence(text, start, n)
    if tail is not None:
        sentences.append(tail)
    return sentences


def last_sentence(text: str) -> Sentence | None:
    sentences = segment(text)
    return sentences[-1] if sentences else None


def resolve_latest_sentence(text: str, sentence: Sentence) -> Sentence:
    """Find the current version of *sentence* in *text*.

    Matches on start offset first, then on normalized content, and falls
    back to the last sentence. Returns *sentence* unchanged if *text* has
    no sentences at all.
    """
    sentences = segment(text)
    if not sentences:
        return sentence
    for candidate in sentences:
        if candidate.start_index == sentence.start_index:
            return candidate
    wanted = normalize_text(sentence.text)
    for candidate in sentences:
        if normalize_text(candidate.text) == wanted:
            return candidate
    return sentences[-1]


def should_process_sentence(text: str) -> bool:
    """Cheap filter for sentences not worth a prod.

    Rejects fragments, punctuation runs, greetings, bare numbers, and
    anything that starts like a URL, path or e-mail address.
    """
    trimmed = text.strip()
    if len(trimmed) < MIN_PROCESS_LENGTH:
        return False
    if _PUNCT_ONLY_RE.match(trimmed):
        return False
    if _TRIVIAL_RE.match(trimmed):
        return False
    if _LINKISH_RE.match(trimmed):
        return False
    return len(_WHITESPACE_RE.sub("", trimmed)) >= MIN_PROCESS_CONTENT
