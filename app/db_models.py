"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _new_post_id() -> str:
    return uuid.uuid4().hex


class PostRecord(Base):
    """A generated review persisted for a single TMDB title."""

    __tablename__ = "movie_blogs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_post_id)
    # Indexed but not unique: uniqueness is checked by the orchestrator before insert.
    tmdb_id: Mapped[int] = mapped_column(Integer, index=True)
    title: Mapped[str] = mapped_column(String(255))
    preview: Mapped[str] = mapped_column(Text)
    content: Mapped[str] = mapped_column(Text)
    image: Mapped[str] = mapped_column(String(512))
    sentiment: Mapped[int] = mapped_column(Integer, default=0)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    keywords: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    budget: Mapped[int | None] = mapped_column(Integer, nullable=True)
    revenue: Mapped[int | None] = mapped_column(Integer, nullable=True)
    runtime: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tagline: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_base64: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )
