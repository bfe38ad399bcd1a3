"""Shared mutable view state with change notifications.

Both the synthesis orchestrator and the feed engine read and write a single
``ViewState`` instance. It carries no business rules of its own beyond id
deduplication of the catalog collection; every mutation goes through
:meth:`ViewState.update` so subscribers observe each change exactly once.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Iterable

from .genres import ALL_GENRES
from .models import CatalogItem, GeneratedPost, TrendingTopic

Listener = Callable[[frozenset[str]], None]


class SynthesisStage(str, enum.Enum):
    """Generation lifecycle stages and the progress value each one reports."""

    IDLE = "idle"
    SCANNING = "scanning"
    FETCHING_DETAILS = "fetching_details"
    WRITING = "writing"
    FINALIZING = "finalizing"
    PUBLISHED = "published"
    ARCHIVE_COMPLETE = "archive_complete"
    ERROR = "error"

    @property
    def progress(self) -> int:
        return _STAGE_PROGRESS[self]


_STAGE_PROGRESS: dict[SynthesisStage, int] = {
    SynthesisStage.IDLE: 0,
    SynthesisStage.SCANNING: 10,
    SynthesisStage.FETCHING_DETAILS: 25,
    SynthesisStage.WRITING: 50,
    SynthesisStage.FINALIZING: 80,
    SynthesisStage.PUBLISHED: 100,
    SynthesisStage.ARCHIVE_COMPLETE: 100,
    SynthesisStage.ERROR: 0,
}

READY_STATUS = "System Ready: Connection Secure."


def dedupe_by_id(items: Iterable[CatalogItem]) -> list[CatalogItem]:
    """Drop repeated catalog ids, keeping the first occurrence."""

    seen: set[int] = set()
    unique: list[CatalogItem] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


@dataclass(eq=False)
class ViewState:
    """Injectable store for feed, filter, pagination and session fields."""

    movies: list[CatalogItem] = field(default_factory=list)
    ai_posts: list[GeneratedPost] = field(default_factory=list)
    trending_topics: list[TrendingTopic] = field(default_factory=list)
    search_query: str = ""
    selected_genre: str = ALL_GENRES
    page: int = 1
    is_loading: bool = False
    is_autopilot_active: bool = False
    is_generating: bool = False
    status: str = READY_STATUS
    stage: SynthesisStage = SynthesisStage.IDLE
    progress: int = 0
    has_error: bool = False
    last_attempted: CatalogItem | TrendingTopic | None = None
    selected_post: GeneratedPost | None = None
    _listeners: list[Listener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, **changes: Any) -> None:
        """Apply ``changes`` atomically and notify subscribers once."""

        if not changes:
            return
        unknown = set(changes) - _FIELD_NAMES
        if unknown:
            raise AttributeError(f"Unknown view state fields: {sorted(unknown)}")
        if "movies" in changes:
            changes["movies"] = dedupe_by_id(changes["movies"])
        for name, value in changes.items():
            setattr(self, name, value)
        changed = frozenset(changes)
        for listener in list(self._listeners):
            listener(changed)

    def set_movies(self, items: Iterable[CatalogItem]) -> None:
        self.update(movies=list(items))

    def append_movies(self, items: Iterable[CatalogItem]) -> None:
        self.update(movies=[*self.movies, *items])

    def set_posts(self, posts: Iterable[GeneratedPost]) -> None:
        self.update(ai_posts=list(posts))

    def prepend_post(self, post: GeneratedPost) -> None:
        remaining = [existing for existing in self.ai_posts if existing.id != post.id]
        self.update(ai_posts=[post, *remaining])

    def replace_post(self, post: GeneratedPost) -> None:
        self.update(
            ai_posts=[post if existing.id == post.id else existing for existing in self.ai_posts]
        )

    def set_stage(self, stage: SynthesisStage, status: str | None = None, **extra: Any) -> None:
        changes: dict[str, Any] = {"stage": stage, "progress": stage.progress}
        if status is not None:
            changes["status"] = status
        changes.update(extra)
        self.update(**changes)

    def covered_ids(self) -> set[int]:
        return {post.tmdb_id for post in self.ai_posts}

    def find_post(self, *, tmdb_id: int | None = None, post_id: str | None = None) -> GeneratedPost | None:
        for post in self.ai_posts:
            if tmdb_id is not None and post.tmdb_id == tmdb_id:
                return post
            if post_id is not None and post.id == post_id:
                return post
        return None

    def find_movie(self, tmdb_id: int) -> CatalogItem | None:
        for movie in self.movies:
            if movie.id == tmdb_id:
                return movie
        return None

    def find_topic(self, tmdb_id: int) -> TrendingTopic | None:
        for topic in self.trending_topics:
            if topic.id == tmdb_id:
                return topic
        return None

    @property
    def has_search(self) -> bool:
        return bool(self.search_query.strip())


_FIELD_NAMES = frozenset(
    item.name for item in fields(ViewState) if not item.name.startswith("_")
)
