"""Integration helpers for the OpenRouter API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import CatalogDetails, PostPayload
from ..utils import extract_json_object

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are MovieUltra, an AI film critic that writes long-form cinematic analysis. "
    "You always respond with a single JSON object that matches the documented schema "
    "and never include commentary outside JSON."
)

REVIEW_REQUEST_TEMPLATE = """
Perform a high-end cinematic analysis of the movie "{title}" (TMDB ID: {tmdb_id}).
Context: It has a rating of {rating}/10, budget of {budget}, and genres: {genres}.
Release date: {release_date}. Production status: {status}. Runtime: {runtime}.

Respond strictly with JSON following this structure:
{{
  "title": "A dramatic headline",
  "preview": "A 1-sentence captivating hook",
  "content": "A detailed review in HTML. Use <h2> for sections such as Narrative Architecture, Visual Language and Critical Verdict. Use <strong> for emphasis.",
  "sentiment": 0,
  "category": "The primary genre from the provided list",
  "keywords": ["five", "technical", "or", "thematic", "tags"],
  "tagline": "A short catchy movie tagline",
  "runtime": 0,
  "budget": 0,
  "revenue": 0,
  "status": "Production status"
}}

"sentiment" is a number from 0 to 100 reflecting the critical reception.
"""


class OpenRouterClient:
    """Client responsible for requesting structured reviews from OpenRouter."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def generate_post(
        self,
        title: str,
        tmdb_id: int,
        rating: float,
        details: CatalogDetails,
    ) -> PostPayload:
        """Generate a review payload for a single title."""

        api_key = self._settings.openrouter_api_key
        if not api_key:
            raise RuntimeError("OpenRouter API key is required to generate posts")

        payload = {
            "model": self._settings.openrouter_model,
            "temperature": 0.8,
            "max_output_tokens": 4_000,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": self._build_prompt(title, tmdb_id, rating, details),
                },
            ],
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": self._settings.app_name,
        }

        response = await self._client.post("/chat/completions", json=payload, headers=headers)
        if response.status_code >= 400:
            raise RuntimeError(response.text)

        data = response.json()
        content = self._message_content(data)
        parsed = extract_json_object(content)
        try:
            return PostPayload.model_validate(parsed)
        except ValidationError as exc:
            raise RuntimeError(f"Model returned an incomplete review for {title}") from exc

    @staticmethod
    def _message_content(data: dict[str, Any]) -> str:
        choices = data.get("choices", [])
        if not choices:
            raise RuntimeError("Model returned no choices")
        message = choices[0].get("message", {})
        content = message.get("content")
        if not isinstance(content, str):
            raise RuntimeError("Model response missing content")
        return content

    @staticmethod
    def _build_prompt(
        title: str, tmdb_id: int, rating: float, details: CatalogDetails
    ) -> str:
        return REVIEW_REQUEST_TEMPLATE.format(
            title=title,
            tmdb_id=tmdb_id,
            rating=rating,
            budget=details.budget_label(),
            genres=", ".join(details.genre_names) or "General Cinema",
            release_date=details.release_date or "unknown",
            status=details.status or "unknown",
            runtime=f"{details.runtime} minutes" if details.runtime else "unknown",
        )
