"""Narration synthesis through an OpenAI-compatible speech endpoint.

The client requests raw ``pcm`` output: 24 kHz, 16-bit little-endian, mono.
"""

from __future__ import annotations

import logging

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

PCM_SAMPLE_RATE = 24_000
PCM_SAMPLE_WIDTH = 2
PCM_CHANNELS = 1

NARRATOR_INSTRUCTIONS = (
    "Read this cinematic movie review with a professional, deep-toned narrator voice. "
    "Be dramatic and clear."
)


class OpenAISpeechClient:
    """Client responsible for talking to the ``/audio/speech`` endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def synthesize(self, text: str) -> bytes:
        """Return raw PCM audio for ``text``."""

        api_key = self._settings.speech_api_key
        if not api_key:
            raise RuntimeError("Speech API key is required to synthesize narration")
        if not text.strip():
            raise ValueError("Narration text is empty")

        payload = {
            "model": self._settings.speech_model,
            "voice": self._settings.speech_voice,
            "input": text,
            "instructions": NARRATOR_INSTRUCTIONS,
            "response_format": "pcm",
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        response = await self._client.post("/audio/speech", json=payload, headers=headers)
        if response.status_code >= 400:
            raise RuntimeError(response.text)
        audio = response.content
        if not audio:
            raise RuntimeError("Audio generation failed: no data returned")
        logger.debug("Synthesized %s bytes of narration", len(audio))
        return audio
