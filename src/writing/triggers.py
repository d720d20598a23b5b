"""Prod trigger decisions while the user is typing.

The engine owns every timer involved (settling debounce and idle
watchdog) and cancels them through one path, so nothing fires against
text that has since changed or against a closed session.

Timers come from anything with ``call_later(delay_seconds, callback)``
returning a handle with ``cancel()``: a running asyncio loop in the live
app, :class:`ManualTimers` in tests and in replay.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from refract.config import TimingConfig
from refract.writing.models import Sentence
from refract.writing.segmenter import segment

logger = logging.getLogger(__name__)

TriggerCallback = Callable[[str, Sentence, bool], None]

_HARD_TERMINALS = frozenset(".!?;:")


class TriggerReason(StrEnum):
    PUNCTUATION = "punctuation"
    SOFT_COMMA = "softComma"
    CHAR_THRESHOLD = "charThreshold"
    SETTLING = "settling"
    WATCHDOG = "watchdog"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


def should_trigger(
    text: str,
    last_sentence: Sentence,
    *,
    last_trigger_at: float | None,
    now: float,
    config: TimingConfig,
) -> bool:
    """Gate every non-forced trigger on cooldown and minimum input size."""
    if last_trigger_at is not None and now - last_trigger_at < config.cooldown_ms:
        return False
    if (
        len(text) < config.early_text_min_chars
        and len(last_sentence.text) < config.early_sentence_min_chars
    ):
        return False
    return True


def trigger_reason(
    text: str,
    last_sentence: Sentence,
    last_trigger_char_pos: int,
    config: TimingConfig,
) -> TriggerReason | None:
    """Pick why a trigger should fire right now, or None to wait for settling."""
    trimmed = text.rstrip()
    if text.endswith("\n") or trimmed[-1:] in _HARD_TERMINALS:
        return TriggerReason.PUNCTUATION

    chars_since = max(0, len(text) - last_trigger_char_pos)
    if (
        trimmed.endswith(",")
        and len(last_sentence.text) >= config.soft_punct_min_len
        and chars_since >= config.soft_punct_min_chars_since
    ):
        return TriggerReason.SOFT_COMMA

    if chars_since >= config.char_trigger:
        return TriggerReason.CHAR_THRESHOLD
    return None


@dataclass
class TriggerState:
    """Mutable per-session trigger bookkeeping (times in milliseconds)."""

    last_trigger_at: float | None = None
    last_trigger_char_pos: int = 0
    last_input_at: float = 0.0
    watchdog_armed: bool = True
    idle_lock: bool = False
    fired: list[TriggerReason] = field(default_factory=list)


class TriggerEngine:
    """Decides when to ask for a prod for the sentence being written.

    Call :meth:`on_text_change` on every edit and :meth:`start` once to arm
    the idle watchdog. ``on_trigger(full_text, sentence, force)`` is invoked
    synchronously after the cooldown bookkeeping has been updated.
    """

    def __init__(
        self,
        config: TimingConfig,
        on_trigger: TriggerCallback,
        *,
        timers: Timers | None = None,
        clock: Callable[[], float] | None = None,
        enabled: bool = True,
    ) -> None:
        self.config = config
        self.enabled = enabled
        self._on_trigger = on_trigger
        self._timers = timers
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self.state = TriggerState(last_input_at=self._clock())
        self._text = ""
        self._sentences: list[Sentence] = []
        self._settling: TimerHandle | None = None
        self._watchdog: TimerHandle | None = None
        self._closed = False

    # -- public API ----------------------------------------------------

    def on_text_change(self, text: str, sentences: list[Sentence] | None = None) -> None:
        """Record a keystroke and re-evaluate trigger conditions."""
        if self._closed:
            return
        self._text = text
        self._sentences = sentences if sentences is not None else segment(text)
        self.state.last_input_at = self._clock()
        self.state.watchdog_armed = True
        self.state.idle_lock = False
        self._cancel_settling()
        self._evaluate()

    def should_trigger(self, text: str, last_sentence: Sentence, now: float | None = None) -> bool:
        return should_trigger(
            text,
            last_sentence,
            last_trigger_at=self.state.last_trigger_at,
            now=self._clock() if now is None else now,
            config=self.config,
        )

    def trigger_reason(self, text: str, last_sentence: Sentence) -> TriggerReason | None:
        return trigger_reason(text, last_sentence, self.state.last_trigger_char_pos, self.config)

    def check_idle(self, now: float | None = None) -> bool:
        """Force a prod once the user has been idle long enough.

        Returns True when the watchdog fired. Disarms until the next edit.
        """
        if self._closed or not self.state.watchdog_armed:
            return False
        now = self._clock() if now is None else now
        if now - self.state.last_input_at < self.config.watchdog_idle_ms:
            return False

        sentences = self._sentences or segment(self._text)
        if not sentences:
            return False
        logger.debug("Watchdog forcing prod after %.0fms idle", now - self.state.last_input_at)
        self.state.watchdog_armed = False
        return self._fire(self._text, sentences[-1], TriggerReason.WATCHDOG, force=True)

    def start(self) -> None:
        """Arm the periodic idle check."""
        if self._watchdog is None and not self._closed:
            self._schedule_watchdog()

    def close(self) -> None:
        """Cancel all timers; the engine ignores further input."""
        self._closed = True
        self._cancel_settling()
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    @property
    def settling_pending(self) -> bool:
        return self._settling is not None

    # -- internals -----------------------------------------------------

    def _get_timers(self) -> Timers:
        if self._timers is None:
            self._timers = asyncio.get_running_loop()
        return self._timers

    def _evaluate(self) -> None:
        if self.state.idle_lock:
            return
        if not self._text.strip() or not self._sentences:
            return
        last = self._sentences[-1]
        if not last.text.strip():
            return
        if not self.should_trigger(self._text, last):
            return

        reason = self.trigger_reason(self._text, last)
        if reason is not None:
            self._fire(self._text, last, reason)
            return

        logger.debug("Waiting %dms for typing to settle", self.config.settling_ms)
        self._settling = self._get_timers().call_later(
            self.config.settling_ms / 1000, self._on_settled
        )

    def _on_settled(self) -> None:
        self._settling = None
        if self._closed:
            return
        text, sentences = self._text, self._sentences
        if not text.strip() or not sentences:
            return
        last = sentences[-1]
        if not self.should_trigger(text, last):
            return
        self._fire(text, last, TriggerReason.SETTLING)

    def _fire(self, text: str, sentence: Sentence, reason: TriggerReason, *, force: bool = False) -> bool:
        if not self.enabled:
            logger.debug("Prods disabled; skipping %s trigger", reason)
            return False

        self.state.last_trigger_at = self._clock()
        self.state.last_trigger_char_pos = len(text)
        self.state.fired.append(reason)
        if force:
            self.state.idle_lock = True
        logger.debug("Trigger fired via %s for %r", reason, sentence.text[:40])
        self._on_trigger(text, sentence, force)
        return True

    def _cancel_settling(self) -> None:
        if self._settling is not None:
            self._settling.cancel()
            self._settling = None

    def _schedule_watchdog(self) -> None:
        self._watchdog = self._get_timers().call_later(
            self.config.watchdog_interval_ms / 1000, self._watchdog_tick
        )

    def _watchdog_tick(self) -> None:
        if self._closed:
            return
        self.check_idle()
        self._schedule_watchdog()


class _ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Deterministic timer queue driven by :meth:`advance`.

    Doubles as the clock (milliseconds) for an engine, so a whole typing
    session can be replayed without sleeping.
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = start_ms
        self._seq = 0
        self._queue: list[tuple[float, int, _ManualHandle, Callable[[], Any]]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], Any]) -> _ManualHandle:
        handle = _ManualHandle()
        self._seq += 1
        heapq.heappush(self._queue, (self._now + delay * 1000, self._seq, handle, callback))
        return handle

    def advance(self, ms: float) -> None:
        """Move time forward, running due callbacks in order."""
        target = self._now + ms
        while self._queue and self._queue[0][0] <= target:
            due, _seq, handle, callback = heapq.heappop(self._queue)
            self._now = due
            if not handle.cancelled:
                callback()
        self._now = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)
