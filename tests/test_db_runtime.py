import pytest
from sqlalchemy import inspect, text

from chatbot_app.db import (
    create_rotation_engine,
    get_rotation_database_url,
    open_rotation_database,
)


@pytest.mark.asyncio
async def test_sqlite_rotation_engine_uses_wal(tmp_path) -> None:
    engine = create_rotation_engine(f"sqlite+aiosqlite:///{tmp_path / 'rotation.db'}")

    try:
        async with engine.connect() as conn:
            journal_mode = (
                await conn.execute(text("PRAGMA journal_mode"))
            ).scalar_one_or_none()
            busy_timeout = (
                await conn.execute(text("PRAGMA busy_timeout"))
            ).scalar_one_or_none()

        assert str(journal_mode).lower() == "wal"
        assert int(busy_timeout) == 5000
    finally:
        await engine.dispose()


def test_database_sits_next_to_rotation_state(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.delenv("ROTATION_DATABASE_URL", raising=False)
    monkeypatch.setenv("ROTATION_STATE_PATH", str(tmp_path / "state" / "key_rotation.json"))

    url = get_rotation_database_url()

    assert url == f"sqlite+aiosqlite:///{tmp_path / 'state' / 'key_rotation.db'}"
    assert (tmp_path / "state").is_dir()


def test_explicit_database_url_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROTATION_DATABASE_URL", "postgresql+asyncpg://u:p@db/rotation")

    assert get_rotation_database_url() == "postgresql+asyncpg://u:p@db/rotation"


@pytest.mark.asyncio
async def test_open_rotation_database_creates_tables(tmp_path) -> None:
    engine, session_maker = await open_rotation_database(
        f"sqlite+aiosqlite:///{tmp_path / 'rotation.db'}"
    )

    try:
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert {"rotation_indexes", "failover_events"} <= set(tables)
        async with session_maker() as session:
            assert (await session.execute(text("SELECT 1"))).scalar_one() == 1
    finally:
        await engine.dispose()
