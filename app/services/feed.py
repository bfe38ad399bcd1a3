"""Feed composition: merge catalog pages with generated posts.

:func:`compose_feed` is a pure projection from the catalog collection, the
post collection and the active filters onto an ordered, duplicate-free list
of :class:`FeedEntry` records. :class:`FeedEngine` drives the inputs of that
projection (pagination, genre filter, debounced search) and keeps the
composed list current by recomputing it on every relevant state change.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Literal, Sequence

from ..config import Settings
from ..genres import ALL_GENRES, is_all_genres
from ..models import CatalogItem, GeneratedPost
from ..state import ViewState
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

EntryKind = Literal["ai", "tmdb"]

_FEED_INPUTS = frozenset({"movies", "ai_posts", "search_query", "selected_genre", "page"})


@dataclass(frozen=True, slots=True)
class FeedEntry:
    """A rendered-list element: either a generated post or a raw catalog item."""

    kind: EntryKind
    id: int | str
    payload: CatalogItem | GeneratedPost

    @property
    def key(self) -> str:
        return f"{self.kind}-{self.id}"

    @classmethod
    def of(cls, item: CatalogItem | GeneratedPost) -> "FeedEntry":
        if isinstance(item, GeneratedPost):
            return cls(kind="ai", id=item.id, payload=item)
        return cls(kind="tmdb", id=item.id, payload=item)


def _matches_query(item: CatalogItem | GeneratedPost, query: str) -> bool:
    if isinstance(item, GeneratedPost):
        description = item.preview
    else:
        description = item.overview
    return query in (item.title or "").casefold() or query in (description or "").casefold()


def _matches_genre(post: GeneratedPost, genre: str) -> bool:
    if is_all_genres(genre):
        return True
    return (post.category or "").casefold() == genre.strip().casefold()


def compose_feed(
    movies: Sequence[CatalogItem],
    posts: Sequence[GeneratedPost],
    *,
    search_query: str = "",
    selected_genre: str = ALL_GENRES,
    page: int = 1,
    injection_limit: int = 4,
) -> list[FeedEntry]:
    """Return the ordered feed for the given inputs."""

    lookup: dict[int, GeneratedPost] = {}
    for post in posts:
        lookup.setdefault(post.tmdb_id, post)

    merged: list[CatalogItem | GeneratedPost] = [
        lookup.get(movie.id, movie) for movie in movies
    ]

    query = search_query.strip().casefold()
    if query:
        merged = [item for item in merged if _matches_query(item, query)]
    elif page == 1:
        on_page = {movie.id for movie in movies}
        injected = [
            post
            for post in posts
            if post.tmdb_id not in on_page and _matches_genre(post, selected_genre)
        ][:injection_limit]
        merged = [*injected, *merged]

    entries: list[FeedEntry] = []
    seen: set[str] = set()
    for item in merged:
        entry = FeedEntry.of(item)
        if entry.key in seen:
            continue
        seen.add(entry.key)
        entries.append(entry)
    return entries


class FeedEngine:
    """Owns pagination, filter changes and debounced search for the feed.

    Catalog fetches are single-flight per request generation. Every filter or
    query change starts a new generation, so a response that resolves after
    its filter changed is discarded instead of committed.
    """

    def __init__(self, settings: Settings, state: ViewState, catalog: TMDBClient):
        self._settings = settings
        self._state = state
        self._catalog = catalog
        self._generation = 0
        self._loading_generation: int | None = None
        self._debounce_task: asyncio.Task[bool] | None = None
        self._entries: list[FeedEntry] = []
        self._unsubscribe = state.subscribe(self._on_state_change)
        self._recompute()

    @property
    def entries(self) -> tuple[FeedEntry, ...]:
        return tuple(self._entries)

    async def load_page(self, page: int) -> bool:
        """Fetch ``page`` of the active genre; page 1 replaces, later pages append."""

        genre = self._state.selected_genre

        async def _fetch() -> list[CatalogItem]:
            return await self._catalog.fetch_catalog_page(genre, page)

        return await self._guarded_fetch(_fetch, append=page > 1, label=f"page {page} of {genre}")

    async def request_next_page(self) -> bool:
        """Advance pagination when the end-of-list sentinel becomes visible."""

        if self._state.is_loading or self._loading_generation is not None:
            return False
        if self._state.has_search:
            return False
        next_page = self._state.page + 1
        self._state.update(page=next_page)
        return await self.load_page(next_page)

    async def set_filter(self, genre: str) -> bool:
        """Switch genre: clear the catalog and reset to page 1 before fetching."""

        self._cancel_debounce()
        self._generation += 1
        self._state.update(
            selected_genre=genre.strip() or ALL_GENRES,
            search_query="",
            page=1,
            movies=[],
        )
        return await self.load_page(1)

    def set_search_query(self, query: str) -> asyncio.Task[bool]:
        """Commit ``query`` once it has been stable for the debounce period."""

        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(self._commit_after_quiet(query))
        return self._debounce_task

    async def commit_search_query(self, query: str) -> bool:
        """Apply ``query`` immediately, bypassing the debounce."""

        if query.strip() == self._state.search_query.strip():
            return False
        had_search = self._state.has_search
        self._generation += 1
        self._state.update(search_query=query)
        if query.strip():
            return await self._run_search(query)
        if had_search:
            self._state.update(page=1)
            return await self.load_page(1)
        return False

    async def apply_category_search(self, query: str) -> bool:
        """Commit a curated sub-category: set the query and reset the genre together."""

        self._cancel_debounce()
        self._generation += 1
        self._state.update(search_query=query, selected_genre=ALL_GENRES)
        if not query.strip():
            self._state.update(page=1)
            return await self.load_page(1)
        return await self._run_search(query)

    async def reload(self) -> bool:
        """Re-run the active search, or reload page 1 of the active genre."""

        self._generation += 1
        if self._state.has_search:
            return await self._run_search(self._state.search_query)
        self._state.update(page=1)
        return await self.load_page(1)

    async def close(self) -> None:
        task = self._cancel_debounce()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
        self._unsubscribe()

    async def _commit_after_quiet(self, query: str) -> bool:
        await asyncio.sleep(self._settings.search_debounce_seconds)
        self._debounce_task = None
        return await self.commit_search_query(query)

    async def _run_search(self, query: str) -> bool:
        async def _fetch() -> list[CatalogItem]:
            return await self._catalog.search(query)

        return await self._guarded_fetch(_fetch, append=False, label=f"search {query!r}")

    async def _guarded_fetch(
        self,
        fetch: Callable[[], Awaitable[Iterable[CatalogItem]]],
        *,
        append: bool,
        label: str,
    ) -> bool:
        generation = self._generation
        if self._loading_generation == generation:
            logger.debug("Catalog fetch in flight; dropping %s", label)
            return False
        self._loading_generation = generation
        self._state.update(is_loading=True)
        try:
            items = list(await fetch())
        finally:
            if self._loading_generation == generation:
                self._loading_generation = None
                self._state.update(is_loading=False)

        if generation != self._generation:
            logger.debug("Discarding stale response for %s", label)
            return False
        if append:
            self._state.append_movies(items)
        else:
            self._state.set_movies(items)
        return True

    def _cancel_debounce(self) -> asyncio.Task[bool] | None:
        task, self._debounce_task = self._debounce_task, None
        if task is not None and not task.done():
            task.cancel()
            return task
        return None

    def _on_state_change(self, changed: frozenset[str]) -> None:
        if changed & _FEED_INPUTS:
            self._recompute()

    def _recompute(self) -> None:
        state = self._state
        self._entries = compose_feed(
            state.movies,
            state.ai_posts,
            search_query=state.search_query,
            selected_genre=state.selected_genre,
            page=state.page,
            injection_limit=self._settings.feed_injection_limit,
        )
