"""
Database for the `sql` rotation backend.

The rotation tables live in their own SQLite file next to the JSON state
file unless ROTATION_DATABASE_URL points somewhere else.
"""

import logging
import os
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chatbot_app.db_models import Base
from chatbot_app.settings import get_rotation_state_path

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 5000


def get_rotation_database_url() -> str:
    configured = (os.getenv("ROTATION_DATABASE_URL") or "").strip()
    if configured:
        return configured
    db_path = get_rotation_state_path().with_suffix(".db")
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{db_path}"


def create_rotation_engine(database_url: str) -> AsyncEngine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_async_engine(url, pool_pre_ping=True)

    engine = create_async_engine(
        url, connect_args={"timeout": SQLITE_BUSY_TIMEOUT_MS / 1000}
    )

    # Worker processes increment the same rows concurrently
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    return engine


async def open_rotation_database(
    database_url: Optional[str] = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the engine, make sure the rotation tables exist, return both handles."""
    database_url = database_url or get_rotation_database_url()
    engine = create_rotation_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(
        "Rotation database ready at %s",
        make_url(database_url).render_as_string(hide_password=True),
    )
    return engine, async_sessionmaker(engine, expire_on_commit=False)
