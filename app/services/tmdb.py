"""Catalog gateway backed by The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..genres import genre_id_for
from ..models import CatalogDetails, CatalogItem, TrendingTopic, Video

logger = logging.getLogger(__name__)

KEYWORD_DISCOVER_LIMIT = 3


class TransientFetchFault(RuntimeError):
    """Raised when a TMDB request fails; callers degrade to empty results."""


class TMDBClient:
    """Client for the catalog pages, details and trending topics of TMDB.

    Every public method swallows :class:`TransientFetchFault` and returns an
    empty result so the feed degrades gracefully instead of blocking.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def fetch_trending_page(self, page: int = 1) -> list[CatalogItem]:
        """Return one page of today's trending movies."""

        try:
            data = await self._get("/trending/movie/day", page=page)
        except TransientFetchFault as exc:
            logger.warning("TMDB trending fetch failed (page %s): %s", page, exc)
            return []
        return self._parse_items(data.get("results"))

    async def fetch_catalog_page(self, genre: str | None, page: int = 1) -> list[CatalogItem]:
        """Return a page of movies for ``genre``; "All" or unknown names use trending."""

        genre_id = genre_id_for(genre)
        if genre_id is None:
            return await self.fetch_trending_page(page)
        try:
            data = await self._get(
                "/discover/movie",
                page=page,
                with_genres=genre_id,
                sort_by="popularity.desc",
            )
        except TransientFetchFault as exc:
            logger.warning("TMDB category fetch failed for %s (page %s): %s", genre, page, exc)
            return []
        return self._parse_items(data.get("results"))

    async def search(self, query: str) -> list[CatalogItem]:
        """Search titles and merge in popular matches for the top keywords."""

        query = query.strip()
        if not query:
            return []
        try:
            title_data = await self._get("/search/movie", query=query)
            results = self._parse_items(title_data.get("results"))

            keyword_data = await self._get("/search/keyword", query=query)
            keywords = [
                entry.get("id")
                for entry in (keyword_data.get("results") or [])[:KEYWORD_DISCOVER_LIMIT]
                if isinstance(entry, dict) and entry.get("id") is not None
            ]
            if keywords:
                discover_data = await self._get(
                    "/discover/movie",
                    with_keywords="|".join(str(keyword) for keyword in keywords),
                    sort_by="popularity.desc",
                )
                seen = {item.id for item in results}
                for item in self._parse_items(discover_data.get("results")):
                    if item.id not in seen:
                        results.append(item)
                        seen.add(item.id)
        except TransientFetchFault as exc:
            logger.warning("TMDB search failed for %r: %s", query, exc)
            return []
        return results

    async def fetch_details(self, tmdb_id: int) -> CatalogDetails:
        """Return budget, runtime, artwork and genre names for a movie."""

        try:
            data = await self._get(f"/movie/{tmdb_id}")
        except TransientFetchFault as exc:
            logger.warning("TMDB details fetch failed for %s: %s", tmdb_id, exc)
            return CatalogDetails()
        try:
            return CatalogDetails.from_tmdb(data)
        except ValidationError as exc:
            logger.warning("TMDB details for %s could not be parsed: %s", tmdb_id, exc)
            return CatalogDetails()

    async def fetch_videos(self, tmdb_id: int) -> list[Video]:
        """Return YouTube clips for a movie with the first trailer leading."""

        try:
            data = await self._get(f"/movie/{tmdb_id}/videos")
        except TransientFetchFault as exc:
            logger.warning("TMDB videos fetch failed for %s: %s", tmdb_id, exc)
            return []

        videos: list[Video] = []
        for entry in data.get("results") or []:
            if not isinstance(entry, dict) or entry.get("site") != "YouTube":
                continue
            try:
                videos.append(Video.model_validate(entry))
            except ValidationError:
                continue

        trailer = next((video for video in videos if video.type == "Trailer"), None)
        if trailer is None:
            return videos
        return [trailer, *(video for video in videos if video.key != trailer.key)]

    async def fetch_trending_topics(self) -> list[TrendingTopic]:
        """Return this week's trending titles bucketed by popularity."""

        try:
            data = await self._get("/trending/all/week")
        except TransientFetchFault as exc:
            logger.warning("TMDB topics fetch failed: %s", exc)
            return []

        topics: list[TrendingTopic] = []
        for entry in (data.get("results") or [])[: self._settings.trending_topic_limit]:
            if not isinstance(entry, dict) or entry.get("id") is None:
                continue
            title = entry.get("title") or entry.get("name")
            if not title:
                continue
            topics.append(
                TrendingTopic(
                    id=int(entry["id"]),
                    title=str(title),
                    category="Series" if entry.get("media_type") == "tv" else "Cinema",
                    volume=TrendingTopic.volume_for(entry.get("popularity")),
                    rating=entry.get("vote_average"),
                    backdrop_path=entry.get("backdrop_path"),
                    poster_path=entry.get("poster_path"),
                )
            )
        return topics

    async def _get(self, path: str, **params: Any) -> dict[str, Any]:
        query = {key: value for key, value in params.items() if value is not None}
        if self._settings.tmdb_api_key:
            query["api_key"] = self._settings.tmdb_api_key
        try:
            response = await self._client.get(path, params=query)
        except httpx.HTTPError as exc:
            raise TransientFetchFault(f"{exc.__class__.__name__} for {path}") from exc
        if response.status_code >= 400:
            raise TransientFetchFault(
                f"TMDB responded {response.status_code} for {path}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise TransientFetchFault(f"TMDB returned invalid JSON for {path}") from exc
        if not isinstance(data, dict):
            raise TransientFetchFault(f"TMDB returned an unexpected payload for {path}")
        return data

    @staticmethod
    def _parse_items(results: object) -> list[CatalogItem]:
        items: list[CatalogItem] = []
        if not isinstance(results, list):
            return items
        for entry in results:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(CatalogItem.model_validate(entry))
            except ValidationError:
                continue
        return items
