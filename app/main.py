"""Entry point for the FastAPI-powered MovieUltra feed service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from .config import settings
from .database import Database
from .genres import ALL_GENRES, CATEGORY_SHORTCUTS, FEED_CATEGORIES
from .models import CatalogItem, GeneratedPost, TrendingTopic
from .services.feed import FeedEngine, FeedEntry
from .services.narration import AudioFault, NarrationService
from .services.openai import OpenAISpeechClient
from .services.openrouter import OpenRouterClient
from .services.orchestrator import GenerationFault, SynthesisOrchestrator
from .services.post_store import PostStore
from .services.tmdb import TMDBClient
from .state import ViewState

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class FilterRequest(BaseModel):
    genre: str = Field(default=ALL_GENRES, max_length=64)


class SearchRequest(BaseModel):
    query: str = Field(default="", max_length=200)
    immediate: bool = False


class GenerateRequest(BaseModel):
    tmdb_id: int | None = Field(
        default=None, validation_alias=AliasChoices("tmdbId", "tmdb_id", "movieId")
    )
    post_id: str | None = Field(
        default=None, validation_alias=AliasChoices("postId", "post_id")
    )

    @model_validator(mode="after")
    def _require_target(self) -> "GenerateRequest":
        if self.tmdb_id is None and not self.post_id:
            raise ValueError("Either tmdbId or postId is required")
        return self


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    openrouter_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.openrouter_api_url),
            timeout=httpx.Timeout(90.0, connect=10.0),
        )
    )
    speech_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.speech_api_url),
            timeout=httpx.Timeout(120.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    state = ViewState()
    catalog = TMDBClient(settings, tmdb_http)
    store = PostStore(database.session_factory)
    orchestrator = SynthesisOrchestrator(
        settings, state, catalog, OpenRouterClient(settings, openrouter_http), store
    )
    feed = FeedEngine(settings, state, catalog)
    narration = NarrationService(
        settings, state, OpenAISpeechClient(settings, speech_http), store
    )

    fastapi_app.state.view_state = state
    fastapi_app.state.catalog = catalog
    fastapi_app.state.post_store = store
    fastapi_app.state.orchestrator = orchestrator
    fastapi_app.state.feed = feed
    fastapi_app.state.narration = narration
    fastapi_app.state.database = database

    await asyncio.gather(
        orchestrator.load_posts(), orchestrator.refresh_topics(), feed.load_page(1)
    )
    logger.info(
        "Loaded %s stored posts and %s catalog items", len(state.ai_posts), len(state.movies)
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await orchestrator.close()
        await feed.close()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie browsing feed with AI-written reviews",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _service(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{name} not initialised")
    return service


def serialise_entry(entry: FeedEntry) -> dict[str, Any]:
    return {
        "key": entry.key,
        "kind": entry.kind,
        "item": entry.payload.model_dump(mode="json"),
    }


def serialise_session(state: ViewState) -> dict[str, Any]:
    last = state.last_attempted
    return {
        "status": state.status,
        "stage": state.stage.value,
        "progress": state.progress,
        "hasError": state.has_error,
        "autopilot": state.is_autopilot_active,
        "generating": state.is_generating,
        "lastAttempted": (
            {"tmdbId": last.id, "title": last.title} if last is not None else None
        ),
    }


def register_routes(fastapi_app: FastAPI) -> None:
    def _state() -> ViewState:
        return _service(fastapi_app, "view_state", ViewState)

    def _feed() -> FeedEngine:
        return _service(fastapi_app, "feed", FeedEngine)

    def _orchestrator() -> SynthesisOrchestrator:
        return _service(fastapi_app, "orchestrator", SynthesisOrchestrator)

    def _feed_payload() -> dict[str, Any]:
        state = _state()
        return {
            "entries": [serialise_entry(entry) for entry in _feed().entries],
            "page": state.page,
            "genre": state.selected_genre,
            "query": state.search_query,
            "loading": state.is_loading,
            "session": serialise_session(state),
        }

    async def _parse(request: Request, model: type[BaseModel]) -> Any:
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_context=False)
            ) from exc

    async def _run_generation(action) -> JSONResponse:
        state = _state()
        try:
            post = await action()
        except GenerationFault as exc:
            raise HTTPException(
                status_code=502,
                detail={"status": state.status, "retryable": True},
            ) from exc
        if post is None and state.is_generating:
            raise HTTPException(status_code=409, detail="Generation already in progress")
        return JSONResponse(
            {
                "post": post.model_dump(mode="json") if post is not None else None,
                "session": serialise_session(state),
            }
        )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/categories")
    async def categories() -> dict[str, list[str]]:
        return {"genres": list(FEED_CATEGORIES), "shortcuts": list(CATEGORY_SHORTCUTS)}

    @fastapi_app.get("/api/feed")
    async def feed() -> dict[str, Any]:
        return _feed_payload()

    @fastapi_app.post("/api/feed/filter")
    async def set_filter(request: Request) -> dict[str, Any]:
        body: FilterRequest = await _parse(request, FilterRequest)
        await _feed().set_filter(body.genre)
        return _feed_payload()

    @fastapi_app.post("/api/feed/search")
    async def set_search(request: Request) -> dict[str, Any]:
        body: SearchRequest = await _parse(request, SearchRequest)
        if body.immediate:
            await _feed().commit_search_query(body.query)
        else:
            _feed().set_search_query(body.query)
        return _feed_payload()

    @fastapi_app.post("/api/feed/shortcut")
    async def category_shortcut(request: Request) -> dict[str, Any]:
        body: SearchRequest = await _parse(request, SearchRequest)
        await _feed().apply_category_search(body.query)
        return _feed_payload()

    @fastapi_app.post("/api/feed/next")
    async def next_page() -> dict[str, Any]:
        advanced = await _feed().request_next_page()
        return {**_feed_payload(), "advanced": advanced}

    @fastapi_app.post("/api/feed/refresh")
    async def refresh() -> dict[str, Any]:
        orchestrator = _orchestrator()
        await asyncio.gather(
            orchestrator.load_posts(), orchestrator.refresh_topics(), _feed().reload()
        )
        return _feed_payload()

    @fastapi_app.get("/api/session")
    async def session() -> dict[str, Any]:
        return serialise_session(_state())

    @fastapi_app.get("/api/topics")
    async def topics() -> dict[str, Any]:
        return {
            "topics": [topic.model_dump(mode="json") for topic in _state().trending_topics]
        }

    @fastapi_app.post("/api/autopilot/start")
    async def start_autopilot() -> dict[str, Any]:
        await _orchestrator().start_autopilot()
        return serialise_session(_state())

    @fastapi_app.post("/api/autopilot/stop")
    async def stop_autopilot() -> dict[str, Any]:
        await _orchestrator().stop_autopilot()
        return serialise_session(_state())

    @fastapi_app.post("/api/sync")
    async def sync_now() -> JSONResponse:
        return await _run_generation(_orchestrator().sync_now)

    @fastapi_app.post("/api/generate")
    async def generate(request: Request) -> JSONResponse:
        body: GenerateRequest = await _parse(request, GenerateRequest)
        state = _state()
        target: CatalogItem | TrendingTopic | GeneratedPost | None = None
        if body.post_id:
            target = state.find_post(post_id=body.post_id)
            if target is None:
                store = _service(fastapi_app, "post_store", PostStore)
                target = await store.get(body.post_id)
        elif body.tmdb_id is not None:
            target = (
                state.find_post(tmdb_id=body.tmdb_id)
                or state.find_movie(body.tmdb_id)
                or state.find_topic(body.tmdb_id)
            )
            if target is None:
                # The card may belong to a page replaced by a filter change.
                store = _service(fastapi_app, "post_store", PostStore)
                target = await store.find_by_tmdb_id(body.tmdb_id)
            if target is None:
                catalog = _service(fastapi_app, "catalog", TMDBClient)
                details = await catalog.fetch_details(body.tmdb_id)
                target = details.to_item(body.tmdb_id)
        if target is None:
            raise HTTPException(status_code=404, detail="Unknown generation target")
        resolved = target
        return await _run_generation(lambda: _orchestrator().generate_for(resolved))

    @fastapi_app.post("/api/generate/retry")
    async def retry() -> JSONResponse:
        if _state().last_attempted is None:
            raise HTTPException(status_code=400, detail="Nothing to retry")
        return await _run_generation(_orchestrator().retry_last)

    @fastapi_app.get("/api/movies/{tmdb_id}/videos")
    async def videos(tmdb_id: int) -> dict[str, Any]:
        catalog = _service(fastapi_app, "catalog", TMDBClient)
        clips = await catalog.fetch_videos(tmdb_id)
        return {"videos": [clip.model_dump(mode="json") for clip in clips]}

    @fastapi_app.get("/api/posts/{post_id}/narration")
    async def narration(post_id: str) -> Response:
        state = _state()
        post = state.find_post(post_id=post_id)
        if post is None:
            store = _service(fastapi_app, "post_store", PostStore)
            post = await store.get(post_id)
        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        service = _service(fastapi_app, "narration", NarrationService)
        try:
            clip = await service.narrate(post)
        except AudioFault as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return Response(
            content=clip.to_wav(),
            media_type="audio/wav",
            headers={"X-Audio-Duration": f"{clip.duration_seconds:.2f}"},
        )


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
