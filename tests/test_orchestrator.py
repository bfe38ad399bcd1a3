from __future__ import annotations

import asyncio
import random
import uuid
from datetime import datetime
from typing import Any

import pytest

from app.config import Settings
from app.models import CatalogDetails, CatalogItem, GeneratedPost, PostPayload, TrendingTopic
from app.services.orchestrator import GenerationFault, SynthesisOrchestrator, sentiment_for
from app.state import SynthesisStage, ViewState


def _topic(tmdb_id: int, title: str, rating: float | None = 8.0) -> TrendingTopic:
    return TrendingTopic(id=tmdb_id, title=title, category="Cinema", volume="High", rating=rating)


def _post(tmdb_id: int, title: str = "Existing") -> GeneratedPost:
    return GeneratedPost(
        id=f"post-{tmdb_id}",
        tmdb_id=tmdb_id,
        title=title,
        preview="p",
        content="c",
        image="i",
        sentiment=60,
        category="Drama",
        created_at=datetime(2024, 1, 1),
    )


class FakeCatalog:
    def __init__(self, topics: list[TrendingTopic] | None = None, details: CatalogDetails | None = None):
        self.topics = topics or []
        self.details = details or CatalogDetails()
        self.topic_calls = 0
        self.detail_calls: list[int] = []

    async def fetch_trending_topics(self) -> list[TrendingTopic]:
        self.topic_calls += 1
        return list(self.topics)

    async def fetch_details(self, tmdb_id: int) -> CatalogDetails:
        self.detail_calls.append(tmdb_id)
        return self.details


class FakeSynthesizer:
    def __init__(self, error: Exception | None = None, gate: asyncio.Event | None = None):
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, int, float]] = []

    async def generate_post(self, title: str, tmdb_id: int, rating: float, details: CatalogDetails) -> PostPayload:
        self.calls.append((title, tmdb_id, rating))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return PostPayload(
            title=f"Review of {title}",
            preview="A hook.",
            content="<h2>Verdict</h2>",
            sentiment=80,
            category="Sci-Fi",
            keywords=["a", "b"],
        )


class FakeStore:
    def __init__(self, posts: list[GeneratedPost] | None = None, list_gate: asyncio.Event | None = None):
        self.posts = list(posts or [])
        self.list_gate = list_gate
        self.inserted: list[dict[str, Any]] = []

    async def list_recent(self, limit: int | None = None) -> list[GeneratedPost]:
        snapshot = list(self.posts)
        if self.list_gate is not None:
            await self.list_gate.wait()
        return snapshot

    async def find_by_tmdb_id(self, tmdb_id: int) -> GeneratedPost | None:
        return next((post for post in self.posts if post.tmdb_id == tmdb_id), None)

    async def insert(self, payload: dict[str, Any]) -> GeneratedPost:
        self.inserted.append(payload)
        post = GeneratedPost(id=uuid.uuid4().hex, **payload)
        self.posts.insert(0, post)
        return post


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "PUBLISH_RESET_DELAY": 0.01,
        "MANUAL_RESET_DELAY": 0.01,
        "ARCHIVE_RESET_DELAY": 0.01,
        "AUTOPILOT_INTERVAL": 3600,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _orchestrator(
    *,
    state: ViewState | None = None,
    catalog: FakeCatalog | None = None,
    synthesizer: FakeSynthesizer | None = None,
    store: FakeStore | None = None,
    **overrides: Any,
) -> tuple[SynthesisOrchestrator, ViewState, FakeCatalog, FakeSynthesizer, FakeStore]:
    state = state or ViewState()
    catalog = catalog or FakeCatalog()
    synthesizer = synthesizer or FakeSynthesizer()
    store = store or FakeStore()
    orchestrator = SynthesisOrchestrator(
        _settings(**overrides),
        state,
        catalog,  # type: ignore[arg-type]
        synthesizer,  # type: ignore[arg-type]
        store,  # type: ignore[arg-type]
        rng=random.Random(7),
    )
    return orchestrator, state, catalog, synthesizer, store


@pytest.mark.parametrize(
    ("rating", "expected"),
    [(8.36, 84), (7.25, 73), (0.04, 0), (12.0, 100), (-1.0, 0)],
)
def test_sentiment_rounds_halves_up_and_clamps(rating, expected):
    assert sentiment_for(rating) == expected


def test_sync_selects_only_uncovered_topic():
    async def _scenario():
        orchestrator, state, catalog, synthesizer, store = _orchestrator(
            catalog=FakeCatalog([_topic(1, "A"), _topic(2, "B")]),
            store=FakeStore([_post(1)]),
        )
        await orchestrator.load_posts()
        post = await orchestrator.sync_now()
        snapshot = (state.stage, state.progress, state.status)
        return post, snapshot, state, catalog, synthesizer

    post, snapshot, state, catalog, synthesizer = asyncio.run(_scenario())

    assert post is not None and post.tmdb_id == 2
    assert [call[1] for call in synthesizer.calls] == [2]
    assert catalog.topic_calls == 1
    assert state.ai_posts[0].id == post.id
    assert state.selected_post == post
    assert state.last_attempted is not None and state.last_attempted.id == 2
    assert snapshot == (SynthesisStage.PUBLISHED, 100, 'PUBLISHED: "B"')
    assert not state.is_generating


def test_reload_keeps_post_published_during_store_query():
    async def _scenario():
        gate = asyncio.Event()
        orchestrator, state, *_rest = _orchestrator(
            store=FakeStore([_post(1, "Stored")], list_gate=gate)
        )
        loading = asyncio.create_task(orchestrator.load_posts())
        await asyncio.sleep(0)
        published = await orchestrator.generate_for(CatalogItem(id=9, title="Nine"))
        after_publish = [post.tmdb_id for post in state.ai_posts]
        gate.set()
        await loading
        return published, after_publish, state

    published, after_publish, state = asyncio.run(_scenario())

    assert published is not None
    assert after_publish == [9]
    assert [post.tmdb_id for post in state.ai_posts] == [9, 1]
    assert state.covered_ids() == {1, 9}


def test_archive_complete_when_every_topic_is_covered():
    async def _scenario():
        orchestrator, state, *_rest = _orchestrator(
            catalog=FakeCatalog([_topic(1, "A")]),
            store=FakeStore([_post(1)]),
        )
        await orchestrator.load_posts()
        result = await orchestrator.sync_now()
        snapshot = (state.stage, state.progress, state.status)
        await asyncio.sleep(0.05)
        return result, snapshot, state

    result, snapshot, state = asyncio.run(_scenario())

    assert result is None
    assert snapshot == (
        SynthesisStage.ARCHIVE_COMPLETE,
        100,
        "ARCHIVE_COMPLETE: All trending topics recorded.",
    )
    assert state.stage is SynthesisStage.IDLE
    assert state.progress == 0


def test_second_request_is_dropped_while_generation_in_flight():
    async def _scenario():
        gate = asyncio.Event()
        orchestrator, state, _catalog, synthesizer, _store = _orchestrator(
            synthesizer=FakeSynthesizer(gate=gate)
        )
        first = asyncio.create_task(orchestrator.generate_for(CatalogItem(id=10, title="Ten")))
        while not synthesizer.calls:
            await asyncio.sleep(0)
        busy = (orchestrator.in_flight, state.is_generating)
        dropped = await orchestrator.generate_for(CatalogItem(id=11, title="Eleven"))
        skipped = await orchestrator.sync_now()
        gate.set()
        published = await first
        return busy, dropped, skipped, published, synthesizer

    busy, dropped, skipped, published, synthesizer = asyncio.run(_scenario())

    assert busy == (True, True)
    assert dropped is None
    assert skipped is None
    assert published is not None and published.tmdb_id == 10
    assert [call[1] for call in synthesizer.calls] == [10]


def test_generate_for_returns_cached_post_without_synthesis():
    async def _scenario():
        orchestrator, state, catalog, synthesizer, _store = _orchestrator(
            store=FakeStore([_post(42, "Stored")])
        )
        state.set_posts([_post(5, "In memory")])
        from_memory = await orchestrator.generate_for(CatalogItem(id=5, title="Five"))
        from_store = await orchestrator.generate_for(_topic(42, "Forty two"))
        return from_memory, from_store, state, catalog, synthesizer

    from_memory, from_store, state, catalog, synthesizer = asyncio.run(_scenario())

    assert from_memory is not None and from_memory.title == "In memory"
    assert from_store is not None and from_store.title == "Stored"
    assert state.selected_post == from_store
    assert state.covered_ids() == {5, 42}
    assert synthesizer.calls == []
    assert catalog.detail_calls == []


def test_existing_post_is_selected_directly():
    async def _scenario():
        orchestrator, state, *_rest = _orchestrator()
        post = _post(3)
        result = await orchestrator.generate_for(post)
        return post, result, state

    post, result, state = asyncio.run(_scenario())

    assert result is post
    assert state.selected_post is post


def test_manual_failure_sets_error_and_retry_recovers():
    async def _scenario():
        synthesizer = FakeSynthesizer(error=RuntimeError("model exploded"))
        orchestrator, state, _catalog, _synth, store = _orchestrator(synthesizer=synthesizer)
        target = CatalogItem(id=77, title="Seventy Seven", vote_average=6.5)
        with pytest.raises(GenerationFault):
            await orchestrator.generate_for(target)
        failed = (state.stage, state.progress, state.status, state.has_error, state.is_generating)
        synthesizer.error = None
        retried = await orchestrator.retry_last()
        return failed, retried, state, store

    failed, retried, state, store = asyncio.run(_scenario())

    assert failed == (
        SynthesisStage.ERROR,
        0,
        "SYNTHESIS_ERROR: Process interrupted.",
        True,
        False,
    )
    assert retried is not None and retried.tmdb_id == 77
    assert retried.sentiment == 65
    assert not state.has_error
    assert len(store.inserted) == 1


def test_retry_without_attempt_raises():
    orchestrator, *_rest = _orchestrator()

    with pytest.raises(ValueError):
        asyncio.run(orchestrator.retry_last())


def test_record_uses_detail_artwork_and_default_rating():
    async def _scenario():
        catalog = FakeCatalog(details=CatalogDetails(backdrop_path="/detail.jpg", runtime=120))
        orchestrator, _state, _catalog, synthesizer, store = _orchestrator(catalog=catalog)
        await orchestrator.generate_for(CatalogItem(id=1234, title="Unrated", poster_path="/p.jpg"))
        fallback_store = FakeStore()
        fallback, *_ = _orchestrator(store=fallback_store)
        await fallback.generate_for(CatalogItem(id=1234, title="Bare"))
        return synthesizer, store, fallback_store

    synthesizer, store, fallback_store = asyncio.run(_scenario())

    record = store.inserted[0]
    assert record["image"] == "https://image.tmdb.org/t/p/w1280/detail.jpg"
    assert record["sentiment"] == 70
    assert record["tmdb_id"] == 1234
    assert synthesizer.calls == [("Unrated", 1234, 7.0)]
    assert fallback_store.inserted[0]["image"] == "https://image.tmdb.org/t/p/original/234"


def test_published_status_resets_after_delay():
    async def _scenario():
        orchestrator, state, *_rest = _orchestrator()
        await orchestrator.generate_for(CatalogItem(id=9, title="Nine"))
        published = state.stage
        await asyncio.sleep(0.05)
        return published, state

    published, state = asyncio.run(_scenario())

    assert published is SynthesisStage.PUBLISHED
    assert state.stage is SynthesisStage.IDLE
    assert state.progress == 0


def test_autopilot_tick_failure_is_contained():
    async def _scenario():
        orchestrator, state, *_rest = _orchestrator(
            catalog=FakeCatalog([_topic(1, "A")]),
            synthesizer=FakeSynthesizer(error=RuntimeError("down")),
        )
        state.update(is_autopilot_active=True)
        result = await orchestrator.run_autopilot_tick()
        return result, state

    result, state = asyncio.run(_scenario())

    assert result is None
    assert state.status == "SYSTEM_FAULT: Protocol failed."
    assert state.has_error
    assert not state.is_generating


def test_autopilot_tick_is_noop_when_inactive():
    orchestrator, state, catalog, *_rest = _orchestrator(catalog=FakeCatalog([_topic(1, "A")]))

    assert asyncio.run(orchestrator.run_autopilot_tick()) is None
    assert catalog.topic_calls == 0


def test_autopilot_runs_immediately_and_stops_cleanly():
    async def _scenario():
        orchestrator, state, _catalog, synthesizer, _store = _orchestrator(
            catalog=FakeCatalog([_topic(1, "A"), _topic(2, "B")])
        )
        await orchestrator.start_autopilot()
        first_task = orchestrator._autopilot_task
        await orchestrator.start_autopilot()
        same_task = orchestrator._autopilot_task is first_task
        for _ in range(50):
            if state.ai_posts:
                break
            await asyncio.sleep(0.01)
        await orchestrator.stop_autopilot()
        running_after_stop = orchestrator.autopilot_running
        await orchestrator.close()
        return same_task, running_after_stop, state, synthesizer

    same_task, running_after_stop, state, synthesizer = asyncio.run(_scenario())

    assert same_task
    assert not running_after_stop
    assert not state.is_autopilot_active
    assert len(synthesizer.calls) == 1
    assert len(state.ai_posts) == 1
    assert state.selected_post is None


def _autopilot_loops() -> list[asyncio.Task[Any]]:
    return [
        task
        for task in asyncio.all_tasks()
        if not task.done()
        and getattr(task.get_coro(), "__qualname__", "") == "SynthesisOrchestrator._autopilot_loop"
    ]


def test_autopilot_keeps_cadence_while_pipeline_is_busy():
    async def _scenario():
        gate = asyncio.Event()
        orchestrator, state, _catalog, synthesizer, _store = _orchestrator(
            catalog=FakeCatalog([_topic(1, "A"), _topic(2, "B")]),
            synthesizer=FakeSynthesizer(gate=gate),
            AUTOPILOT_INTERVAL=0.02,
        )
        ticks: list[float] = []
        run_tick = orchestrator.run_autopilot_tick

        async def _counting_tick():
            ticks.append(asyncio.get_running_loop().time())
            return await run_tick()

        orchestrator.run_autopilot_tick = _counting_tick  # type: ignore[method-assign]
        await orchestrator.start_autopilot()
        await asyncio.sleep(0.15)
        busy_ticks = len(ticks)
        busy_calls = len(synthesizer.calls)
        gate.set()
        for _ in range(50):
            if state.ai_posts:
                break
            await asyncio.sleep(0.01)
        await orchestrator.close()
        return busy_ticks, busy_calls, state

    busy_ticks, busy_calls, state = asyncio.run(_scenario())

    assert busy_ticks >= 3
    assert busy_calls == 1
    assert len(state.ai_posts) >= 1
    assert not state.is_generating


def test_autopilot_toggling_leaves_one_recurring_task():
    async def _scenario():
        orchestrator, state, *_rest = _orchestrator(AUTOPILOT_INTERVAL=0.01)
        for _ in range(5):
            await orchestrator.start_autopilot()
            await orchestrator.start_autopilot()
            await orchestrator.stop_autopilot()
        stopped_loops = len(_autopilot_loops())
        await orchestrator.start_autopilot()
        await orchestrator.start_autopilot()
        await asyncio.sleep(0.05)
        running_loops = len(_autopilot_loops())
        active = state.is_autopilot_active
        await orchestrator.close()
        return stopped_loops, running_loops, active, len(_autopilot_loops())

    stopped_loops, running_loops, active, closed_loops = asyncio.run(_scenario())

    assert stopped_loops == 0
    assert running_loops == 1
    assert active
    assert closed_loops == 0
