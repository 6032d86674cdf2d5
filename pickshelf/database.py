"""Database utilities for the PickShelf service."""

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

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Registers the mapped tables on ``Base.metadata``.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = inspector.get_table_names()
        if "channels" not in table_names:
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("channels")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "media_type",
            "ALTER TABLE channels ADD COLUMN media_type VARCHAR(16) DEFAULT 'movie'",
            "UPDATE channels SET media_type = 'movie' WHERE media_type IS NULL",
        )
        _ensure_column(
            "item_count",
            "ALTER TABLE channels ADD COLUMN item_count INTEGER",
        )
        _ensure_column(
            "library_name",
            "ALTER TABLE channels ADD COLUMN library_name VARCHAR(255)",
        )
        _ensure_column(
            "is_active",
            "ALTER TABLE channels ADD COLUMN is_active BOOLEAN DEFAULT 1",
            "UPDATE channels SET is_active = 1 WHERE is_active IS NULL",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()
