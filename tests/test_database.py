from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from pickshelf.database import Database


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a legacy channels table lacking the newer columns."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE channels (
                        id VARCHAR(64) PRIMARY KEY,
                        owner_id VARCHAR(64),
                        name VARCHAR(255),
                        genre_filters JSON,
                        text_preferences TEXT,
                        example_item_ids JSON,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    "INSERT INTO channels (id, owner_id, name) "
                    "VALUES ('legacy', 'user-1', 'Old Channel')"
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_missing_channel_columns(tmp_path) -> None:
    """Schema migrations should backfill the newer channel columns."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        columns = {column["name"] for column in inspector.get_columns("channels")}
        tables = set(inspector.get_table_names())
        with inspector_engine.connect() as connection:
            row = connection.execute(
                text("SELECT media_type, is_active FROM channels WHERE id = 'legacy'")
            ).one()
    finally:
        inspector_engine.dispose()

    assert {"media_type", "item_count", "library_name", "is_active"} <= columns
    assert {"recommendation_runs", "strm_libraries", "item_embeddings"} <= tables
    assert row.media_type == "movie"
    assert row.is_active == 1


def test_create_all_is_repeatable(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'fresh.db'}")

    async def _run() -> None:
        await database.create_all()
        await database.create_all()
        await database.dispose()

    asyncio.run(_run())
