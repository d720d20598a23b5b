"""Schedules prod requests: guards, rate limiting, concurrency and results.

One :class:`ProdScheduler` per editing session owns its queue state,
dedup guards and rate-limit timestamp. Queue transitions go through
:func:`~refract.prods.queue.queue_reducer` only.

Requests run as asyncio tasks. Responses may arrive in any order; each
item is settled independently by its own ID.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from refract.config import RefractConfig
from refract.prods.dedup import RecencyMap, normalize_key
from refract.prods.generator import ProdGenerator
from refract.prods.models import (
    FALLBACK_PROD_TEXT,
    ClearQueue,
    CompleteProcessing,
    Enqueue,
    FailProcessing,
    Prod,
    ProdRequest,
    ProdResponse,
    QueueAction,
    QueueItem,
    QueueState,
    QueueStatus,
    StartProcessing,
)
from refract.prods.queue import queue_reducer
from refract.writing.models import Sentence
from refract.writing.segmenter import resolve_latest_sentence, should_process_sentence

logger = logging.getLogger(__name__)

RECENT_TEXT_CHARS = 300
RECENT_PRODS_CONTEXT = 3
MIN_GUARD_RETENTION_MS = 30_000

ProdCallback = Callable[[Prod], None]


def _now_ms() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    """Enforces a minimum spacing between outbound calls."""

    def __init__(self, min_interval_ms: float, clock: Callable[[], float] | None = None) -> None:
        self.min_interval_ms = min_interval_ms
        self.next_available_at = 0.0
        self._clock = clock or _now_ms

    def reserve(self) -> float:
        """Claim the next slot; returns how many ms the caller must wait."""
        now = self._clock()
        wait = max(0.0, self.next_available_at - now)
        self.next_available_at = now + wait + self.min_interval_ms
        return wait

    async def wait(self) -> None:
        delay = self.reserve()
        if delay > 0:
            await asyncio.sleep(delay / 1000)


@dataclass
class InFlight:
    item_id: str
    sentence_id: str
    topic_version: int
    task: asyncio.Task[None]


class ProdScheduler:
    """Turns trigger events into at most a few concurrent prod requests."""

    def __init__(
        self,
        config: RefractConfig,
        generator: ProdGenerator,
        *,
        on_prod: ProdCallback | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._generator = generator
        self._on_prod = on_prod
        self._clock = clock or _now_ms
        self._limiter = RateLimiter(config.timing.rate_limit_ms, self._clock)

        self.state = QueueState()
        self.prods: list[Prod] = []
        self.filtered_sentences: list[Sentence] = []
        self.topic_version = 0
        self.topic_keywords: list[str] = []

        self._display_guard = RecencyMap()
        self._enqueue_guard = RecencyMap()
        self._inflight: dict[str, InFlight] = {}
        self._last_batch_at: float | None = None
        self._wakeup: asyncio.TimerHandle | None = None
        self._seq = 0
        self._closed = False

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    # -- queue -------------------------------------------------------------

    def dispatch(self, action: QueueAction) -> QueueState:
        self.state = queue_reducer(self.state, action)
        return self.state

    def enqueue(self, full_text: str, sentence: Sentence, force: bool = False) -> QueueItem | None:
        """Queue a prod request for *sentence* unless a guard rejects it.

        Returns the queued item, or None when the request was suppressed.
        """
        if self._closed:
            return None
        sentence = resolve_latest_sentence(full_text, sentence)
        now = self._clock()
        dedup = self._config.dedup
        display_ms = dedup.display_guard_seconds * 1000
        enqueue_ms = dedup.enqueue_guard_seconds * 1000
        normalized = normalize_key(sentence.text)

        if self._display_guard.has_recent(normalized, display_ms, now):
            logger.debug("Prod shown recently for this text, skipping: %r", sentence.text[:50])
            return None

        self._enqueue_guard.cleanup_older_than(max(enqueue_ms, MIN_GUARD_RETENTION_MS), now)
        if self._enqueue_guard.has_recent(sentence.id, enqueue_ms, now):
            logger.debug("Sentence queued recently, skipping: %r", sentence.text[:50])
            return None

        if not force and not should_process_sentence(sentence.text):
            logger.debug("Sentence filtered out: %r", sentence.text[:50])
            return None

        for inflight in list(self._inflight.values()):
            if inflight.sentence_id == sentence.id:
                logger.debug("Cancelling superseded request %s", inflight.item_id)
                inflight.task.cancel()
                del self._inflight[inflight.item_id]
                self.dispatch(CompleteProcessing(item_id=inflight.item_id))

        if any(p.sentence_id == sentence.id for p in self.prods):
            logger.debug("Prod already exists for sentence %s", sentence.id)
            return None

        if any(normalize_key(item.sentence.text) == normalized for item in self.state.items):
            logger.debug("Sentence already in queue: %r", sentence.text[:50])
            return None

        self._enqueue_guard.mark_now(sentence.id, now)
        if not any(s.id == sentence.id for s in self.filtered_sentences):
            self.filtered_sentences.append(sentence)

        self._seq += 1
        item = QueueItem(
            id=f"queue-{sentence.id}-{self._seq}",
            full_text=full_text,
            sentence=sentence,
            timestamp=now,
            force=force,
        )
        logger.debug("Enqueued %s (force=%s)", item.id, force)
        self.dispatch(Enqueue(item=item))
        self._pump()
        return item

    def _pump(self) -> None:
        """Start pending items while slots are free and the throttle allows."""
        if self._closed:
            return
        pending = self.state.with_status(QueueStatus.PENDING)
        if not pending:
            return
        processing = len(self.state.with_status(QueueStatus.PROCESSING))
        slots = self._config.queue.max_parallel - processing
        if slots <= 0:
            logger.debug("Queue at capacity (%d/%d)", processing, self._config.queue.max_parallel)
            return

        now = self._clock()
        throttle_ms = self._config.queue.throttle_ms
        if self._last_batch_at is not None and now - self._last_batch_at < throttle_ms:
            if self._wakeup is None:
                delay = throttle_ms - (now - self._last_batch_at)
                self._wakeup = asyncio.get_running_loop().call_later(delay / 1000, self._on_wakeup)
            return

        self._last_batch_at = now
        loop = asyncio.get_running_loop()
        for item in pending[:slots]:
            self.dispatch(StartProcessing(item_id=item.id))
            task = loop.create_task(self._process(item))
            self._inflight[item.id] = InFlight(
                item_id=item.id,
                sentence_id=item.sentence.id,
                topic_version=self.topic_version,
                task=task,
            )

    def _on_wakeup(self) -> None:
        self._wakeup = None
        self._pump()

    async def _process(self, item: QueueItem) -> None:
        started_version = self.topic_version
        request = ProdRequest(
            last_paragraph=item.sentence.text,
            full_text=item.full_text[-RECENT_TEXT_CHARS:],
            keywords=list(self.topic_keywords),
            recent_prods=[p.text for p in self.prods[-RECENT_PRODS_CONTEXT:]],
        )
        response: ProdResponse | None = None
        try:
            await self._limiter.wait()
            response = await self._generator.generate(request)
        except asyncio.CancelledError:
            logger.debug("Request for %s cancelled", item.id)
            self.dispatch(CompleteProcessing(item_id=item.id))
            raise
        except Exception as exc:
            logger.warning("Prod request for %s failed: %s", item.id, exc)
            self.dispatch(FailProcessing(item_id=item.id))
        finally:
            inflight = self._inflight.get(item.id)
            if inflight is not None and inflight.task is asyncio.current_task():
                del self._inflight[item.id]

        if response is not None:
            self._settle(item, response, started_version)
        self._pump()

    def _settle(self, item: QueueItem, response: ProdResponse, started_version: int) -> None:
        if self.state.get(item.id) is None:
            logger.debug("Item %s left the queue before its response arrived", item.id)
            return
        if started_version != self.topic_version:
            logger.debug("Discarding prod for %s after topic change", item.id)
            self.dispatch(CompleteProcessing(item_id=item.id))
            return

        threshold = self._config.queue.confidence_threshold
        if not item.force and (response.should_skip or response.confidence < threshold):
            logger.debug(
                "Low confidence (%.2f) or skip for %r", response.confidence, item.sentence.text[:50]
            )
            self.dispatch(CompleteProcessing(item_id=item.id))
            return

        text = response.selected_prod.strip()
        if not text:
            if not item.force:
                logger.debug("Empty prod for %s", item.id)
                self.dispatch(FailProcessing(item_id=item.id))
                return
            text = FALLBACK_PROD_TEXT

        now = self._clock()
        display_ms = self._config.dedup.display_guard_seconds * 1000
        self._display_guard.cleanup_older_than(display_ms, now)
        self._display_guard.mark_now(normalize_key(item.sentence.text), now)

        prod = Prod(
            id=f"prod-{item.sentence.id}-{int(now)}",
            text=text,
            sentence_id=item.sentence.id,
            source_text=item.sentence.text,
            timestamp=now,
        )
        self.prods.append(prod)
        self.dispatch(CompleteProcessing(item_id=item.id))
        logger.info("Prod ready for %s: %s", item.sentence.id, text)
        if self._on_prod is not None:
            self._on_prod(prod)

    # -- cancellation and housekeeping ------------------------------------

    def cancel_all(self) -> int:
        """Cancel every in-flight request; returns how many were cancelled."""
        count = len(self._inflight)
        for inflight in self._inflight.values():
            inflight.task.cancel()
        self._inflight.clear()
        if count:
            logger.debug("Cancelled %d in-flight prod requests", count)
        return count

    def clear_queue(self) -> None:
        self.cancel_all()
        if self._wakeup is not None:
            self._wakeup.cancel()
            self._wakeup = None
        self.dispatch(ClearQueue())

    def handle_topic_shift(self, version: int | None = None, keywords: list[str] | None = None) -> None:
        """Drop everything queued for the old topic and reset the guards."""
        logger.info("Topic shift: clearing prod queue")
        self.topic_version = self.topic_version + 1 if version is None else version
        if keywords is not None:
            self.topic_keywords = list(keywords)
        self.clear_queue()
        self._enqueue_guard.clear()
        self._display_guard.clear()

    def clear_all(self) -> None:
        self.clear_queue()
        self.prods.clear()
        self.filtered_sentences.clear()
        self._enqueue_guard.clear()
        self._display_guard.clear()

    def pin_prod(self, prod_id: str) -> bool:
        for prod in self.prods:
            if prod.id == prod_id:
                prod.pinned = True
                return True
        return False

    def remove_prod(self, prod_id: str) -> bool:
        before = len(self.prods)
        self.prods = [p for p in self.prods if p.id != prod_id]
        return len(self.prods) != before

    async def drain(self) -> None:
        """Wait until nothing is in flight and nothing is waiting on the throttle."""
        while True:
            tasks = [inflight.task for inflight in self._inflight.values()]
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
                continue
            if self._wakeup is not None and self.state.with_status(QueueStatus.PENDING):
                await asyncio.sleep(self._config.queue.throttle_ms / 1000)
                continue
            return

    def close(self) -> None:
        self._closed = True
        self.clear_queue()
