"""Database utilities for the MovieUltra service."""

from __future__ import annotations

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Register ORM tables on the shared metadata before creating them.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure columns added after the first release exist on older tables."""

        inspector = inspect(sync_connection)
        if "movie_blogs" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("movie_blogs")
        }

        def _ensure_column(name: str, ddl: str) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            existing_columns.add(name)

        _ensure_column(
            "audio_base64",
            "ALTER TABLE movie_blogs ADD COLUMN audio_base64 TEXT",
        )
        for column in ("budget", "revenue", "runtime"):
            _ensure_column(
                column, f"ALTER TABLE movie_blogs ADD COLUMN {column} INTEGER"
            )
        _ensure_column("status", "ALTER TABLE movie_blogs ADD COLUMN status VARCHAR(64)")
        _ensure_column("tagline", "ALTER TABLE movie_blogs ADD COLUMN tagline TEXT")

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

