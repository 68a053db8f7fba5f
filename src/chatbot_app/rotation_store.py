import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from review_library.types import FailoverEvent

from chatbot_app.db_models import FailoverEventRecord, RotationIndex

logger = logging.getLogger(__name__)


def get_failover_retention_days() -> int:
    raw = os.getenv("FAILOVER_RETENTION_DAYS", "30")
    try:
        days = int(raw)
    except ValueError:
        days = 30
    return max(1, days)


async def prune_failover_events(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    retention_days: int | None = None,
) -> int:
    active_retention_days = retention_days or get_failover_retention_days()
    cutoff = datetime.utcnow() - timedelta(days=active_retention_days)
    async with session_maker() as session:
        result = await session.execute(
            delete(FailoverEventRecord).where(FailoverEventRecord.timestamp < cutoff)
        )
        await session.commit()
        deleted = result.rowcount if result.rowcount is not None else 0

    if deleted > 0:
        logger.info(
            "Pruned %d failover events older than %d days",
            deleted,
            active_retention_days,
        )
    return deleted


class SqlRotationStore:
    """
    Rotation indexes kept in the `rotation_indexes` table.

    Each increment is a read-modify-write inside one transaction, serialized
    per pool within the process. Failover events are appended to
    `failover_events` for later inspection.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._pool_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, pool_name: str) -> asyncio.Lock:
        if pool_name not in self._pool_locks:
            self._pool_locks[pool_name] = asyncio.Lock()
        return self._pool_locks[pool_name]

    async def get(self, pool_name: str) -> int:
        async with self._session_maker() as session:
            value = await session.scalar(
                select(RotationIndex.key_index).where(RotationIndex.pool_name == pool_name)
            )
        return max(0, value or 0)

    async def set(self, pool_name: str, index: int) -> None:
        async with self._lock_for(pool_name):
            async with self._session_maker() as session:
                async with session.begin():
                    row = await session.get(RotationIndex, pool_name)
                    if row is None:
                        session.add(RotationIndex(pool_name=pool_name, key_index=max(0, index)))
                    else:
                        row.key_index = max(0, index)

    async def increment(self, pool_name: str, key_count: int, steps: int = 1) -> int:
        async with self._lock_for(pool_name):
            async with self._session_maker() as session:
                async with session.begin():
                    row = await session.scalar(
                        select(RotationIndex)
                        .where(RotationIndex.pool_name == pool_name)
                        .with_for_update()
                    )
                    if row is None:
                        row = RotationIndex(pool_name=pool_name, key_index=0)
                        session.add(row)
                    next_index = ((row.key_index or 0) + steps) % key_count
                    row.key_index = next_index
        return next_index

    async def record_failover(self, event: FailoverEvent) -> None:
        try:
            async with self._session_maker() as session:
                session.add(
                    FailoverEventRecord(
                        timestamp=datetime.utcfromtimestamp(event.timestamp),
                        pool_name=event.pool_name,
                        failed_index=event.failed_index,
                        status_code=event.status,
                        key_count=event.key_count,
                    )
                )
                await session.commit()
        except Exception:
            logger.exception("Failed to record failover event for pool %s", event.pool_name)

    async def recent_failovers(
        self, pool_name: str, limit: int = 50
    ) -> list[FailoverEventRecord]:
        async with self._session_maker() as session:
            result = await session.scalars(
                select(FailoverEventRecord)
                .where(FailoverEventRecord.pool_name == pool_name)
                .order_by(FailoverEventRecord.id.desc())
                .limit(limit)
            )
            return list(result)

    async def failover_history(self, pool_name: str, limit: int = 50) -> list[FailoverEvent]:
        """Persisted failover events for a pool, oldest first."""
        records = await self.recent_failovers(pool_name, limit=limit)
        return [
            FailoverEvent(
                pool_name=record.pool_name,
                failed_index=record.failed_index,
                status=record.status_code,
                key_count=record.key_count,
                timestamp=record.timestamp.replace(tzinfo=timezone.utc).timestamp(),
            )
            for record in reversed(records)
        ]
