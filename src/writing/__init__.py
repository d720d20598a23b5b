"""Live writing analysis: segmentation, topic tracking and prod triggers."""

from refract.writing.models import Sentence, SentencePosition
from refract.writing.segmenter import (
    normalize_text,
    resolve_latest_sentence,
    segment,
    should_process_sentence,
)
from refract.writing.triggers import TriggerEngine, TriggerReason

__all__ = [
    "Sentence",
    "SentencePosition",
    "TriggerEngine",
    "TriggerReason",
    "normalize_text",
    "resolve_latest_sentence",
    "segment",
    "should_process_sentence",
]
