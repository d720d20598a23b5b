"""Tests for refract.prods.scheduler: guards, concurrency and settling of prod requests."""

from __future__ import annotations

import asyncio

import pytest

from refract.config import RefractConfig
from refract.prods.models import FALLBACK_PROD_TEXT, Prod, ProdRequest, ProdResponse, QueueStatus
from refract.prods.scheduler import ProdScheduler, RateLimiter
from refract.writing.segmenter import segment

TEXT = "I felt nervous before the interview today."
OTHER_TEXTS = [
    "My sister called me late last night.",
    "The garden finally started blooming again.",
    "I keep postponing the difficult conversation.",
]


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeGenerator:
    """Returns a fixed response; optionally waits on a gate first."""

    def __init__(self, response: ProdResponse | None = None, error: Exception | None = None) -> None:
        self.response = response or ProdResponse(selected_prod="What made you nervous?", confidence=0.9)
        self.error = error
        self.gate: asyncio.Event | None = None
        self.requests: list[ProdRequest] = []

    async def generate(self, request: ProdRequest) -> ProdResponse:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response


def _make_config(**queue) -> RefractConfig:
    return RefractConfig.model_validate(
        {
            "timing": {"rate_limit_ms": 0},
            "queue": {"throttle_ms": 0, **queue},
        }
    )


def _make_scheduler(generator: FakeGenerator | None = None, config: RefractConfig | None = None):
    clock = _Clock(1_000_000.0)
    shown: list[Prod] = []
    scheduler = ProdScheduler(
        config or _make_config(),
        generator or FakeGenerator(),  # type: ignore[arg-type]
        on_prod=shown.append,
        clock=clock,
    )
    return scheduler, clock, shown


def _last(text: str):
    return segment(text)[-1]


class TestRateLimiter:
    def test_spaces_reservations(self):
        clock = _Clock(0.0)
        limiter = RateLimiter(75, clock)
        assert limiter.reserve() == 0
        assert limiter.reserve() == 75
        assert limiter.reserve() == 150

    def test_slot_frees_up_over_time(self):
        clock = _Clock(0.0)
        limiter = RateLimiter(75, clock)
        limiter.reserve()
        clock.now = 100
        assert limiter.reserve() == 0


class TestEnqueueGuards:
    """Guards that run before anything reaches the queue."""

    @pytest.mark.asyncio
    async def test_happy_path_produces_prod(self):
        scheduler, _clock, shown = _make_scheduler()

        item = scheduler.enqueue(TEXT, _last(TEXT))
        assert item is not None
        await scheduler.drain()

        assert [p.text for p in scheduler.prods] == ["What made you nervous?"]
        assert shown == scheduler.prods
        assert scheduler.prods[0].sentence_id == item.sentence.id
        assert scheduler.state.items == []
        assert scheduler.state.is_processing is False
        assert scheduler.filtered_sentences == [item.sentence]

    @pytest.mark.asyncio
    async def test_filtered_sentence_rejected(self):
        scheduler, _clock, _shown = _make_scheduler()
        assert scheduler.enqueue("Too short.", _last("Too short.")) is None

    @pytest.mark.asyncio
    async def test_force_bypasses_filter(self):
        scheduler, _clock, _shown = _make_scheduler()
        assert scheduler.enqueue("Too short.", _last("Too short."), force=True) is not None
        await scheduler.drain()
        assert len(scheduler.prods) == 1

    @pytest.mark.asyncio
    async def test_enqueue_guard_blocks_repeat(self):
        generator = FakeGenerator()
        generator.gate = asyncio.Event()
        scheduler, _clock, _shown = _make_scheduler(generator)

        assert scheduler.enqueue(TEXT, _last(TEXT)) is not None
        assert scheduler.enqueue(TEXT, _last(TEXT)) is None

        generator.gate.set()
        await scheduler.drain()
        assert len(generator.requests) == 1

    @pytest.mark.asyncio
    async def test_display_guard_blocks_recent_text(self):
        scheduler, clock, _shown = _make_scheduler()
        scheduler.enqueue(TEXT, _last(TEXT))
        await scheduler.drain()

        clock.now += 1000
        assert scheduler.enqueue(TEXT, _last(TEXT)) is None

    @pytest.mark.asyncio
    async def test_existing_prod_blocks_after_guards_expire(self):
        scheduler, clock, _shown = _make_scheduler()
        scheduler.enqueue(TEXT, _last(TEXT))
        await scheduler.drain()

        clock.now += 20_000
        assert scheduler.enqueue(TEXT, _last(TEXT)) is None
        assert len(scheduler.prods) == 1

    @pytest.mark.asyncio
    async def test_request_context(self):
        generator = FakeGenerator()
        scheduler, _clock, _shown = _make_scheduler(generator)
        scheduler.topic_keywords = ["interview", "nervous"]
        long_text = "x" * 500 + ". " + TEXT

        scheduler.enqueue(long_text, _last(long_text))
        await scheduler.drain()

        request = generator.requests[0]
        assert request.last_paragraph == TEXT
        assert len(request.full_text) == 300
        assert request.full_text.endswith(TEXT)
        assert request.keywords == ["interview", "nervous"]


class TestSettling:
    """How responses turn into prods, or don't."""

    @pytest.mark.asyncio
    async def test_low_confidence_dropped(self):
        generator = FakeGenerator(ProdResponse(selected_prod="Why?", confidence=0.2))
        scheduler, _clock, shown = _make_scheduler(generator)

        scheduler.enqueue(TEXT, _last(TEXT))
        await scheduler.drain()

        assert scheduler.prods == []
        assert shown == []
        assert scheduler.state.items == []

    @pytest.mark.asyncio
    async def test_should_skip_dropped(self):
        generator = FakeGenerator(ProdResponse(selected_prod="Why?", confidence=0.9, should_skip=True))
        scheduler, _clock, _shown = _make_scheduler(generator)

        scheduler.enqueue(TEXT, _last(TEXT))
        await scheduler.drain()
        assert scheduler.prods == []

    @pytest.mark.asyncio
    async def test_empty_text_dropped(self):
        generator = FakeGenerator(ProdResponse(selected_prod="  ", confidence=0.9))
        scheduler, _clock, _shown = _make_scheduler(generator)

        scheduler.enqueue(TEXT, _last(TEXT))
        await scheduler.drain()
        assert scheduler.prods == []
        assert scheduler.state.items == []

    @pytest.mark.asyncio
    async def test_forced_empty_gets_fallback(self):
        generator = FakeGenerator(ProdResponse.soft_skip())
        scheduler, _clock, _shown = _make_scheduler(generator)

        scheduler.enqueue(TEXT, _last(TEXT), force=True)
        await scheduler.drain()
        assert [p.text for p in scheduler.prods] == [FALLBACK_PROD_TEXT]

    @pytest.mark.asyncio
    async def test_topic_change_discards_response(self):
        generator = FakeGenerator()
        generator.gate = asyncio.Event()
        scheduler, _clock, _shown = _make_scheduler(generator)

        scheduler.enqueue(TEXT, _last(TEXT))
        await asyncio.sleep(0)
        scheduler.topic_version += 1
        generator.gate.set()
        await scheduler.drain()

        assert scheduler.prods == []
        assert scheduler.state.items == []


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_max_parallel_and_newest_pending_wins(self):
        generator = FakeGenerator()
        generator.gate = asyncio.Event()
        scheduler, _clock, _shown = _make_scheduler(generator, _make_config(max_parallel=2))

        for text in [TEXT, *OTHER_TEXTS]:
            scheduler.enqueue(text, _last(text))

        assert scheduler.in_flight == 2
        pending = scheduler.state.with_status(QueueStatus.PENDING)
        assert [item.sentence.text for item in pending] == [OTHER_TEXTS[-1]]

        generator.gate.set()
        await scheduler.drain()

        assert len(scheduler.prods) == 3
        assert scheduler.state.items == []

    @pytest.mark.asyncio
    async def test_failed_requests_free_their_slots(self):
        generator = FakeGenerator(error=PermissionError("claude not executable"))
        scheduler, _clock, shown = _make_scheduler(generator, _make_config(max_parallel=2))

        for text in [TEXT, *OTHER_TEXTS]:
            scheduler.enqueue(text, _last(text))
        await scheduler.drain()

        assert [r.last_paragraph for r in generator.requests] == [TEXT, OTHER_TEXTS[0], OTHER_TEXTS[-1]]
        assert scheduler.state.items == []
        assert scheduler.in_flight == 0
        assert scheduler.prods == []
        assert shown == []

        generator.error = None
        later = "Tomorrow I will finally call the landlord."
        assert scheduler.enqueue(later, _last(later)) is not None
        await scheduler.drain()
        assert [p.source_text for p in scheduler.prods] == [later]

    @pytest.mark.asyncio
    async def test_throttle_holds_second_batch(self):
        generator = FakeGenerator()
        generator.gate = asyncio.Event()
        scheduler, clock, _shown = _make_scheduler(generator, _make_config(throttle_ms=2000))

        scheduler.enqueue(TEXT, _last(TEXT))
        clock.now += 100
        scheduler.enqueue(OTHER_TEXTS[0], _last(OTHER_TEXTS[0]))

        assert scheduler.in_flight == 1
        assert len(scheduler.state.with_status(QueueStatus.PENDING)) == 1
        scheduler.close()

    @pytest.mark.asyncio
    async def test_superseded_request_cancelled(self):
        generator = FakeGenerator()
        generator.gate = asyncio.Event()
        scheduler, clock, _shown = _make_scheduler(generator)

        first = "Earlier thought. I have been thinking about moving"
        scheduler.enqueue(first, _last(first))
        await asyncio.sleep(0)
        assert scheduler.in_flight == 1

        clock.now += 16_000
        generator.gate = None
        grown = first + " to a smaller town."
        item = scheduler.enqueue(grown, _last(grown))
        await scheduler.drain()

        assert item is not None
        assert len(scheduler.prods) == 1
        assert scheduler.prods[0].source_text == "I have been thinking about moving to a smaller town."
        assert scheduler.state.items == []


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_topic_shift_cancels_and_clears(self):
        generator = FakeGenerator()
        generator.gate = asyncio.Event()
        scheduler, _clock, _shown = _make_scheduler(generator)

        scheduler.enqueue(TEXT, _last(TEXT))
        await asyncio.sleep(0)
        scheduler.handle_topic_shift(keywords=["garden"])

        assert scheduler.in_flight == 0
        assert scheduler.state.items == []
        assert scheduler.topic_version == 1
        assert scheduler.topic_keywords == ["garden"]

        # guards were reset, so the same sentence can be queued again
        generator.gate = None
        assert scheduler.enqueue(TEXT, _last(TEXT)) is not None
        await scheduler.drain()
        assert len(scheduler.prods) == 1

    @pytest.mark.asyncio
    async def test_pin_and_remove(self):
        scheduler, _clock, _shown = _make_scheduler()
        scheduler.enqueue(TEXT, _last(TEXT))
        await scheduler.drain()
        prod_id = scheduler.prods[0].id

        assert scheduler.pin_prod(prod_id) is True
        assert scheduler.prods[0].pinned is True
        assert scheduler.pin_prod("missing") is False
        assert scheduler.remove_prod(prod_id) is True
        assert scheduler.prods == []

    @pytest.mark.asyncio
    async def test_clear_all(self):
        scheduler, _clock, _shown = _make_scheduler()
        scheduler.enqueue(TEXT, _last(TEXT))
        await scheduler.drain()

        scheduler.clear_all()
        assert scheduler.prods == []
        assert scheduler.filtered_sentences == []
        assert scheduler.enqueue(TEXT, _last(TEXT)) is not None
        scheduler.close()

    @pytest.mark.asyncio
    async def test_closed_scheduler_ignores_enqueue(self):
        scheduler, _clock, _shown = _make_scheduler()
        scheduler.close()
        assert scheduler.enqueue(TEXT, _last(TEXT)) is None
