"""Utility helpers for the MovieUltra service."""

from __future__ import annotations

import html
import json
import re
from typing import Any


JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)
HTML_TAG_RE = re.compile(r"<[^>]*>?")
WHITESPACE_RE = re.compile(r"\s+")


def extract_json_object(content: str) -> dict[str, Any]:
    """Extract and parse the first JSON object from the model response."""

    match = JSON_BLOCK_RE.search(content)
    if match:
        payload = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        payload = match.group(0)

    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc


def strip_html(value: str) -> str:
    """Return plain text with tags removed and whitespace collapsed."""

    text = HTML_TAG_RE.sub(" ", value or "")
    text = html.unescape(text)
    return WHITESPACE_RE.sub(" ", text).strip()


def build_image_url(path: str | None, base_url: str) -> str | None:
    """Join a TMDB image path onto a sized base URL."""

    if not path:
        return None
    if path.startswith("http"):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base_url.rstrip('/')}{path}"
