"""Generation lifecycle for AI-written reviews.

The orchestrator decides which title to review next, runs the
details -> synthesis -> persistence pipeline, reports progress through the
shared :class:`~app.state.ViewState`, and drives the autopilot timer. A single
in-flight flag admits one pipeline at a time across manual and autopilot
callers; a request arriving while it is set is dropped, not queued.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from contextlib import suppress
from datetime import datetime
from typing import Any, Union

from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..models import CatalogDetails, CatalogItem, GeneratedPost, PostPayload, TrendingTopic
from ..state import SynthesisStage, ViewState
from ..utils import build_image_url
from .openrouter import OpenRouterClient
from .post_store import PostStore
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

DEFAULT_RATING = 7.0

Target = Union[CatalogItem, TrendingTopic]


class GenerationFault(RuntimeError):
    """Raised when synthesis or persistence fails inside the pipeline."""


class SynthesisOrchestrator:
    """Coordinates target selection, the generation pipeline and autopilot."""

    def __init__(
        self,
        settings: Settings,
        state: ViewState,
        catalog: TMDBClient,
        synthesizer: OpenRouterClient,
        store: PostStore,
        *,
        rng: random.Random | None = None,
    ):
        self._settings = settings
        self._state = state
        self._catalog = catalog
        self._synthesizer = synthesizer
        self._store = store
        self._random = rng or random.Random()
        self._in_flight = False
        self._autopilot_task: asyncio.Task[None] | None = None
        self._tick_tasks: set[asyncio.Task[Any]] = set()
        self._reset_handle: asyncio.TimerHandle | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def autopilot_running(self) -> bool:
        return self._autopilot_task is not None and not self._autopilot_task.done()

    async def load_posts(self) -> list[GeneratedPost]:
        """Merge the stored posts into the in-memory collection, newest first.

        Posts already in memory are kept even when the store snapshot misses
        them; a pipeline may publish while the query is suspended.
        """

        try:
            posts = await self._store.list_recent()
        except SQLAlchemyError:
            logger.exception("Loading stored posts failed")
            return list(self._state.ai_posts)
        loaded = [post.model_copy(update={"is_ai": True}) for post in posts]
        loaded_ids = {post.id for post in loaded}
        kept = [post for post in self._state.ai_posts if post.id not in loaded_ids]
        merged = sorted([*kept, *loaded], key=lambda post: post.created_at, reverse=True)
        self._state.set_posts(merged)
        return merged

    async def refresh_topics(self) -> list[TrendingTopic]:
        topics = await self._catalog.fetch_trending_topics()
        self._state.update(trending_topics=topics)
        return topics

    async def start_autopilot(self) -> None:
        """Run a tick now and then every ``AUTOPILOT_INTERVAL`` seconds."""

        self._state.update(is_autopilot_active=True)
        if self.autopilot_running:
            return
        logger.info(
            "Autopilot enabled with a %.1fs interval",
            self._settings.autopilot_interval_seconds,
        )
        self._autopilot_task = asyncio.create_task(self._autopilot_loop())

    async def stop_autopilot(self) -> None:
        """Cancel the pending recurrence; a tick already running finishes."""

        self._state.update(is_autopilot_active=False)
        task, self._autopilot_task = self._autopilot_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("Autopilot disabled")

    async def close(self) -> None:
        await self.stop_autopilot()
        for task in list(self._tick_tasks):
            task.cancel()
        for task in list(self._tick_tasks):
            with suppress(asyncio.CancelledError):
                await task
        self._cancel_reset()

    async def _autopilot_loop(self) -> None:
        # Fixed cadence: ticks are spawned, never awaited, so a slow pipeline
        # does not shift the schedule. Overlaps are dropped by the in-flight flag.
        while True:
            task = asyncio.create_task(self.run_autopilot_tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self._settings.autopilot_interval_seconds)

    async def run_autopilot_tick(self) -> GeneratedPost | None:
        """Generate a post for a fresh trending topic; never raises."""

        if not self._state.is_autopilot_active:
            return None
        try:
            return await self._run_selection(manual=False)
        except GenerationFault:
            # Already logged and reflected in the session; the next tick starts over.
            return None
        except Exception as exc:  # pragma: no cover - background safety net
            logger.exception("Autopilot tick failed: %s", exc)
            return None

    async def sync_now(self) -> GeneratedPost | None:
        """Run the autopilot selection once on demand, raising on failure."""

        return await self._run_selection(manual=True)

    async def generate_for(
        self, target: CatalogItem | TrendingTopic | GeneratedPost
    ) -> GeneratedPost | None:
        """Return the post for ``target``, generating it on a cache miss.

        Returns ``None`` when another pipeline is already in flight.
        """

        if isinstance(target, GeneratedPost):
            self._state.update(selected_post=target)
            return target

        try:
            existing = await self._find_existing(target.id)
        except SQLAlchemyError as exc:
            logger.exception("Archive lookup failed for %s", target.id)
            self._state.update(last_attempted=target)
            self._fail("SYNTHESIS_ERROR: Archive lookup failed.")
            raise GenerationFault(f"Archive lookup failed for {target.title}") from exc
        if existing is not None:
            self._state.update(selected_post=existing)
            return existing

        if not self._acquire():
            logger.info("Generation already in flight; dropping request for %s", target.id)
            return None
        try:
            self._cancel_reset()
            self._state.set_stage(
                SynthesisStage.SCANNING,
                f'Scanning archive for "{target.title}"...',
                has_error=False,
                last_attempted=target,
            )
            return await self._synthesize(target, manual=True)
        finally:
            self._release()

    async def retry_last(self) -> GeneratedPost | None:
        """Re-run generation for the last attempted target."""

        target = self._state.last_attempted
        if target is None:
            raise ValueError("No generation has been attempted yet")
        return await self.generate_for(target)

    async def _run_selection(self, *, manual: bool) -> GeneratedPost | None:
        if not self._acquire():
            logger.info("Generation already in flight; skipping %s run", "manual" if manual else "autopilot")
            return None
        try:
            self._cancel_reset()
            self._state.set_stage(
                SynthesisStage.SCANNING,
                "Manual sync initiated..." if manual else "Auto-pilot scanning...",
                has_error=False,
            )
            topics = self._state.trending_topics
            if not topics:
                topics = await self.refresh_topics()

            covered = self._state.covered_ids()
            fresh = [topic for topic in topics if topic.id not in covered]
            if not fresh:
                self._state.set_stage(
                    SynthesisStage.ARCHIVE_COMPLETE,
                    "ARCHIVE_COMPLETE: All trending topics recorded.",
                )
                self._schedule_reset(self._settings.archive_reset_delay_seconds)
                return None

            topic = self._random.choice(fresh)
            self._state.update(last_attempted=topic)
            return await self._synthesize(topic, manual=manual)
        finally:
            self._release()

    async def _synthesize(self, target: Target, *, manual: bool) -> GeneratedPost:
        """Run the pipeline for ``target``; the caller holds the in-flight flag."""

        rating = self._rating_for(target)
        try:
            # Checked under the in-flight flag so no other pipeline can insert in between.
            existing = await self._find_existing(target.id)
            if existing is not None:
                logger.info("Post for %s already archived; skipping synthesis", target.id)
                post = existing
            else:
                self._state.set_stage(
                    SynthesisStage.FETCHING_DETAILS,
                    "Harvesting metadata..." if manual else f"Processing: {target.title}...",
                )
                details = await self._catalog.fetch_details(target.id)

                self._state.set_stage(
                    SynthesisStage.WRITING,
                    f'Generating report for "{target.title}"...'
                    if manual
                    else "Writing deep-dive review...",
                )
                payload = await self._synthesizer.generate_post(
                    target.title, target.id, rating, details
                )

                self._state.set_stage(SynthesisStage.FINALIZING, "Finalizing record...")
                post = await self._store.insert(
                    self._build_record(target, payload, details, rating)
                )
        except Exception as exc:
            logger.exception("Generation failed for %s (%s)", target.title, target.id)
            self._fail(
                "SYNTHESIS_ERROR: Process interrupted."
                if manual
                else "SYSTEM_FAULT: Protocol failed."
            )
            raise GenerationFault(f"Generation failed for {target.title}") from exc

        post = post.model_copy(update={"is_ai": True})
        self._state.prepend_post(post)
        extra: dict[str, Any] = {"selected_post": post} if manual else {}
        self._state.set_stage(
            SynthesisStage.PUBLISHED, f'PUBLISHED: "{target.title}"', **extra
        )
        self._schedule_reset(
            self._settings.manual_reset_delay_seconds
            if manual
            else self._settings.publish_reset_delay_seconds
        )
        logger.info("Published post %s for %s", post.id, target.title)
        return post

    async def _find_existing(self, tmdb_id: int) -> GeneratedPost | None:
        cached = self._state.find_post(tmdb_id=tmdb_id)
        if cached is not None:
            return cached
        stored = await self._store.find_by_tmdb_id(tmdb_id)
        if stored is None:
            return None
        stored = stored.model_copy(update={"is_ai": True})
        self._state.prepend_post(stored)
        return stored

    def _build_record(
        self,
        target: Target,
        payload: PostPayload,
        details: CatalogDetails,
        rating: float,
    ) -> dict[str, Any]:
        return {
            "tmdb_id": target.id,
            "title": payload.title,
            "content": payload.content,
            "preview": payload.preview,
            "image": self._image_url(target, details),
            "sentiment": sentiment_for(rating),
            "category": payload.category,
            "keywords": list(payload.keywords),
            "budget": payload.budget,
            "revenue": payload.revenue,
            "runtime": payload.runtime,
            "status": payload.status,
            "tagline": payload.tagline,
            "created_at": datetime.utcnow(),
        }

    def _image_url(self, target: Target, details: CatalogDetails) -> str:
        base_url = self._settings.tmdb_image_url
        for path in (
            details.backdrop_path,
            details.poster_path,
            target.backdrop_path,
            target.poster_path,
        ):
            url = build_image_url(path, f"{base_url}/w1280")
            if url:
                return url
        return f"{base_url}/original/{target.id % 1000}"

    @staticmethod
    def _rating_for(target: Target) -> float:
        if isinstance(target, TrendingTopic):
            rating = target.rating
        else:
            rating = target.vote_average
        return rating or DEFAULT_RATING

    def _acquire(self) -> bool:
        if self._in_flight:
            return False
        self._in_flight = True
        self._state.update(is_generating=True)
        return True

    def _release(self) -> None:
        self._in_flight = False
        self._state.update(is_generating=False)

    def _fail(self, status: str) -> None:
        self._cancel_reset()
        self._state.set_stage(SynthesisStage.ERROR, status, has_error=True)

    def _schedule_reset(self, delay: float) -> None:
        self._cancel_reset()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(delay, self._reset_progress)

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _reset_progress(self) -> None:
        self._reset_handle = None
        if self._state.stage in (SynthesisStage.PUBLISHED, SynthesisStage.ARCHIVE_COMPLETE):
            self._state.set_stage(SynthesisStage.IDLE)


def sentiment_for(rating: float) -> int:
    """Map a 0-10 rating onto a 0-100 score, rounding halves up."""

    return max(0, min(100, math.floor(rating * 10 + 0.5)))
