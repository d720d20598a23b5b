"""One editing session: segmentation, topic tracking, triggers and prods."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from refract.config import RefractConfig
from refract.prods.generator import ProdGenerator
from refract.prods.models import Prod
from refract.prods.scheduler import ProdScheduler
from refract.writing.models import Sentence
from refract.writing.segmenter import segment
from refract.writing.topic import TopicTracker
from refract.writing.triggers import Timers, TriggerEngine

logger = logging.getLogger(__name__)


@dataclass
class TriggerEvent:
    """A trigger that fired, as seen by the session."""

    at: float
    reason: str
    sentence: Sentence
    force: bool
    enqueued: bool


class WritingSession:
    """Feeds each edit through the segmenter, topic tracker and trigger engine.

    Fired triggers become prod requests only when ``request_prods`` is true,
    which by default means a model credential is configured. Every fired
    trigger is recorded in :attr:`events` either way.
    """

    def __init__(
        self,
        config: RefractConfig,
        *,
        generator: ProdGenerator | None = None,
        request_prods: bool | None = None,
        timers: Timers | None = None,
        clock: Callable[[], float] | None = None,
        on_prod: Callable[[Prod], None] | None = None,
    ) -> None:
        self.config = config
        self.request_prods = config.has_prod_credentials() if request_prods is None else request_prods
        self.text = ""
        self.sentences: list[Sentence] = []
        self.events: list[TriggerEvent] = []
        self.topic = TopicTracker()
        self.scheduler = ProdScheduler(config, generator or ProdGenerator(config), on_prod=on_prod)
        self.triggers = TriggerEngine(config.timing, self._on_trigger, timers=timers, clock=clock)

    @property
    def prods(self) -> list[Prod]:
        return self.scheduler.prods

    def start(self) -> None:
        """Arm the idle watchdog."""
        self.triggers.start()

    def update(self, text: str) -> list[Sentence]:
        """Process an edit; returns the re-segmented sentences."""
        self.text = text
        self.sentences = segment(text)
        if text.strip() and self.topic.update(text):
            self.scheduler.handle_topic_shift(self.topic.version, self.topic.state.keywords)
        self.triggers.on_text_change(text, self.sentences)
        return self.sentences

    def close(self) -> None:
        self.triggers.close()
        self.scheduler.close()

    def _on_trigger(self, text: str, sentence: Sentence, force: bool) -> None:
        enqueued = False
        if self.request_prods:
            enqueued = self.scheduler.enqueue(text, sentence, force=force) is not None
        reason = self.triggers.state.fired[-1] if self.triggers.state.fired else ""
        self.events.append(
            TriggerEvent(
                at=self.triggers.state.last_trigger_at or 0.0,
                reason=str(reason),
                sentence=sentence,
                force=force,
                enqueued=enqueued,
            )
        )
        logger.debug("Trigger %s for %s (enqueued=%s)", reason, sentence.id, enqueued)
