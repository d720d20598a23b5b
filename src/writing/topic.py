"""Topic-shift detection over the most recent stretch of writing.

Keywords from the tail of the text are compared to the previous set with
Jaccard overlap, smoothed with an exponential moving average. A shift is
declared after the smoothed overlap stays low for a few updates in a row.
"""

from __future__ import annotations

import logging
import string
import time
from collections import Counter

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

KEYWORD_WINDOW = 600
KEYWORD_LIMIT = 15
SHIFT_THRESHOLD = 0.3
MIN_CONSECUTIVE = 2
EMA_ALPHA = 0.5
RESET_EMA = 0.5

_STRIP_TABLE = str.maketrans("", "", string.punctuation + "’‘“”")

_STOPWORDS: frozenset[str] = frozenset(
    """
    a about above after again against all also am an and any are as at be because been
    before being below between both but by can could did do does doing down during each
    even ever every few for from further get got had has have having he her here hers
    herself him himself his how however i if in into is it its itself just like make
    made me more most much must my myself no nor not now of off on once only or other
    our ours ourselves out over own really same she should so some still such than that
    the their theirs them themselves then there these they thing things think this those
    through to too under until up upon us very was way we were what when where which
    while who whom why will with would yet you your yours yourself yourselves
    """.split()
)


class TopicState(BaseModel):
    """Smoothed keyword overlap between successive updates."""

    keywords: list[str] = Field(default_factory=list)
    ema_overlap: float = RESET_EMA
    low_count: int = 0
    last_update: float = 0.0


def _singular(word: str) -> str:
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def extract_keywords(text: str, limit: int = KEYWORD_LIMIT) -> list[str]:
    """Most frequent content words in the last few hundred characters."""
    if not text.strip():
        return []
    window = text[-KEYWORD_WINDOW:]
    counts: Counter[str] = Counter()
    for raw in window.lower().split():
        word = raw.translate(_STRIP_TABLE)
        if len(word) < 3 or word in _STOPWORDS or word.isdigit():
            continue
        counts[_singular(word)] += 1
    # Counter.most_common keeps first-seen order for ties
    return [word for word, _ in counts.most_common(limit)]


def jaccard_overlap(a: list[str] | set[str], b: list[str] | set[str]) -> float:
    """Jaccard index of two keyword collections; two empty sets overlap fully."""
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    intersection = len(set_a & set_b)
    return intersection / (len(set_a) + len(set_b) - intersection)


def update_topic_state(
    keywords: list[str],
    state: TopicState,
    now: float | None = None,
    *,
    threshold: float = SHIFT_THRESHOLD,
    min_consecutive: int = MIN_CONSECUTIVE,
    alpha: float = EMA_ALPHA,
) -> tuple[bool, TopicState]:
    """Fold a new keyword set into *state*.

    Returns ``(shift, new_state)``. On a shift the EMA restarts at 0.5 so
    the new topic needs its own run of low overlap before shifting again.
    """
    now = time.time() if now is None else now
    overlap = jaccard_overlap(keywords, state.keywords)
    ema = (1 - alpha) * state.ema_overlap + alpha * overlap
    low_count = state.low_count + 1 if ema < threshold else 0

    if low_count >= min_consecutive:
        return True, TopicState(keywords=list(keywords), ema_overlap=RESET_EMA, last_update=now)
    return False, TopicState(
        keywords=list(keywords), ema_overlap=ema, low_count=low_count, last_update=now
    )


class TopicTracker:
    """Keeps topic state for one editing session and counts topic versions."""

    def __init__(self) -> None:
        self.state = TopicState()
        self.version = 0

    def update(self, text: str, now: float | None = None) -> bool:
        """Re-extract keywords from *text*; True when the topic just shifted."""
        keywords = extract_keywords(text)
        if not keywords:
            return False
        shift, self.state = update_topic_state(keywords, self.state, now)
        if shift:
            self.version += 1
            logger.info("Topic shift detected (version %d): %s", self.version, self.state.keywords[:5])
        return shift

    def reset(self) -> None:
        self.state = TopicState()
        self.version = 0
