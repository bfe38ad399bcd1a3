"""Persistence for generated posts."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import PostRecord
from ..models import GeneratedPost

logger = logging.getLogger(__name__)


class PostStore:
    """Append-only collection of generated posts keyed by id and TMDB id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_recent(self, limit: int | None = None) -> list[GeneratedPost]:
        """Return stored posts, newest first."""

        async with self._session_factory() as session:
            stmt = select(PostRecord).order_by(PostRecord.created_at.desc())
            if limit:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [self._to_post(record) for record in records]

    async def find_by_tmdb_id(self, tmdb_id: int) -> GeneratedPost | None:
        async with self._session_factory() as session:
            stmt = (
                select(PostRecord)
                .where(PostRecord.tmdb_id == tmdb_id)
                .order_by(PostRecord.created_at.asc())
                .limit(1)
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()
        if record is None:
            return None
        return self._to_post(record)

    async def get(self, post_id: str) -> GeneratedPost | None:
        async with self._session_factory() as session:
            record = await session.get(PostRecord, post_id)
        if record is None:
            return None
        return self._to_post(record)

    async def insert(self, payload: dict[str, Any]) -> GeneratedPost:
        """Persist ``payload`` and return the stored post."""

        values = dict(payload)
        values.setdefault("created_at", datetime.utcnow())
        async with self._session_factory() as session:
            record = PostRecord(**values)
            session.add(record)
            await session.commit()
            await session.refresh(record)
        logger.info("Stored post %s for TMDB id %s", record.id, record.tmdb_id)
        return self._to_post(record)

    async def update_audio(self, post_id: str, audio_base64: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(PostRecord)
                .where(PostRecord.id == post_id)
                .values(audio_base64=audio_base64)
            )
            await session.commit()

    @staticmethod
    def _to_post(record: PostRecord) -> GeneratedPost:
        return GeneratedPost.model_validate(record)
