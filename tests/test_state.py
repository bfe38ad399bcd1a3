from __future__ import annotations

from datetime import datetime

import pytest

from app.models import CatalogItem, GeneratedPost
from app.state import READY_STATUS, SynthesisStage, ViewState


def _post(post_id: str, tmdb_id: int) -> GeneratedPost:
    return GeneratedPost(
        id=post_id,
        tmdb_id=tmdb_id,
        title=f"Post {post_id}",
        preview="p",
        content="c",
        image="i",
        sentiment=50,
        created_at=datetime(2024, 1, 1),
    )


def test_initial_state_is_ready():
    state = ViewState()

    assert state.status == READY_STATUS
    assert state.stage is SynthesisStage.IDLE
    assert state.progress == 0
    assert state.page == 1


def test_stage_progress_values():
    assert [stage.progress for stage in SynthesisStage] == [0, 10, 25, 50, 80, 100, 100, 0]


def test_update_notifies_once_with_changed_fields():
    state = ViewState()
    seen: list[frozenset[str]] = []
    unsubscribe = state.subscribe(seen.append)

    state.update(search_query="heat", selected_genre="All")
    unsubscribe()
    state.update(page=2)

    assert seen == [frozenset({"search_query", "selected_genre"})]


def test_update_rejects_unknown_fields():
    with pytest.raises(AttributeError):
        ViewState().update(nonsense=True)


def test_movies_are_deduplicated_across_appends():
    state = ViewState()
    state.set_movies([CatalogItem(id=5), CatalogItem(id=6)])
    state.append_movies([CatalogItem(id=6), CatalogItem(id=7)])

    assert [movie.id for movie in state.movies] == [5, 6, 7]


def test_set_stage_updates_progress_and_extras():
    state = ViewState()
    state.set_stage(SynthesisStage.WRITING, "Writing...", has_error=False)

    assert state.progress == 50
    assert state.status == "Writing..."

    state.set_stage(SynthesisStage.IDLE)
    assert state.status == "Writing..."
    assert state.progress == 0


def test_post_helpers():
    state = ViewState()
    state.set_posts([_post("a", 1)])
    state.prepend_post(_post("b", 2))
    state.prepend_post(_post("a", 1))

    assert [post.id for post in state.ai_posts] == ["a", "b"]
    assert state.covered_ids() == {1, 2}
    assert state.find_post(tmdb_id=2).id == "b"
    assert state.find_post(post_id="missing") is None

    state.replace_post(_post("b", 2).model_copy(update={"title": "Renamed"}))
    assert state.find_post(post_id="b").title == "Renamed"
