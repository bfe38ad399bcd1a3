"""Narrated audio for generated posts, cached on the post after first use."""

from __future__ import annotations

import base64
import binascii
import io
import logging
import wave
from dataclasses import dataclass

from ..config import Settings
from ..models import GeneratedPost
from ..state import ViewState
from ..utils import strip_html
from .openai import PCM_CHANNELS, PCM_SAMPLE_RATE, PCM_SAMPLE_WIDTH, OpenAISpeechClient
from .post_store import PostStore

logger = logging.getLogger(__name__)


class AudioFault(RuntimeError):
    """Raised when narration cannot be synthesized or decoded."""


@dataclass(frozen=True, slots=True)
class NarrationClip:
    """Decoded narration ready to hand to a player."""

    pcm: bytes
    sample_rate: int = PCM_SAMPLE_RATE
    channels: int = PCM_CHANNELS
    sample_width: int = PCM_SAMPLE_WIDTH

    @property
    def frame_count(self) -> int:
        return len(self.pcm) // (self.sample_width * self.channels)

    @property
    def duration_seconds(self) -> float:
        return self.frame_count / self.sample_rate

    def to_wav(self) -> bytes:
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as writer:
            writer.setnchannels(self.channels)
            writer.setsampwidth(self.sample_width)
            writer.setframerate(self.sample_rate)
            writer.writeframes(self.pcm)
        return buffer.getvalue()

    @classmethod
    def from_base64(cls, encoded: str) -> "NarrationClip":
        try:
            pcm = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AudioFault("Stored narration is not valid base64") from exc
        frame_size = PCM_SAMPLE_WIDTH * PCM_CHANNELS
        usable = len(pcm) - len(pcm) % frame_size
        if usable <= 0:
            raise AudioFault("Narration contains no audio frames")
        return cls(pcm=pcm[:usable])


def narration_text(post: GeneratedPost, limit: int) -> str:
    """Headline, teaser and the opening of the body as plain text."""

    body = strip_html(post.content)[:limit]
    return f"{post.title}. {post.preview}. {body}".strip()


class NarrationService:
    """Synthesizes narration on first request and stores it on the post."""

    def __init__(
        self,
        settings: Settings,
        state: ViewState,
        speech: OpenAISpeechClient,
        store: PostStore,
    ):
        self._settings = settings
        self._state = state
        self._speech = speech
        self._store = store

    async def narrate(self, post: GeneratedPost) -> NarrationClip:
        try:
            encoded = post.audio_base64
            if not encoded:
                pcm = await self._speech.synthesize(
                    narration_text(post, self._settings.narration_text_limit)
                )
                encoded = base64.b64encode(pcm).decode("ascii")
                await self._store.update_audio(post.id, encoded)
                self._state.replace_post(post.model_copy(update={"audio_base64": encoded}))
                logger.info("Cached narration for post %s", post.id)
            return NarrationClip.from_base64(encoded)
        except AudioFault:
            logger.warning("Narration for post %s could not be decoded", post.id)
            raise
        except Exception as exc:
            logger.exception("Narration failed for post %s", post.id)
            raise AudioFault(f"Narration failed for {post.title}") from exc
