# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Round-robin rotation state for API key pools.

The rotator keeps one index per pool name. The index is read before a
multi-key request and advanced only after a successful one, to just past
the key that served it. Failed requests leave it untouched, and failover
events are diagnostics only.
"""

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Protocol, Union

import aiofiles
from filelock import FileLock

from .constants import FAILOVER_HISTORY_SIZE
from .error_handler import is_failover_status
from .key_pool import normalize_keys, sanitize_pool_name
from .types import FailoverEvent

lib_logger = logging.getLogger("review_library")


def _coerce_index(value: Any) -> int:
    try:
        index = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, index)


class RotationStore(Protocol):
    """Durable pool-name -> index storage. `increment` must be atomic per pool."""

    async def get(self, pool_name: str) -> int: ...

    async def set(self, pool_name: str, index: int) -> None: ...

    async def increment(
        self, pool_name: str, key_count: int, steps: int = 1
    ) -> int: ...


class InMemoryRotationStore:
    """
    Process-local rotation state with one asyncio lock per pool.
    """

    def __init__(self, initial: Optional[Dict[str, int]] = None):
        self._indexes: Dict[str, int] = dict(initial or {})
        self._pool_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, pool_name: str) -> asyncio.Lock:
        if pool_name not in self._pool_locks:
            self._pool_locks[pool_name] = asyncio.Lock()
        return self._pool_locks[pool_name]

    async def get(self, pool_name: str) -> int:
        return _coerce_index(self._indexes.get(pool_name, 0))

    async def set(self, pool_name: str, index: int) -> None:
        async with self._lock_for(pool_name):
            self._indexes[pool_name] = _coerce_index(index)

    async def increment(self, pool_name: str, key_count: int, steps: int = 1) -> int:
        async with self._lock_for(pool_name):
            next_index = (_coerce_index(self._indexes.get(pool_name, 0)) + steps) % key_count
            self._indexes[pool_name] = next_index
            return next_index


class JsonRotationStore:
    """
    Rotation state persisted to a JSON file.

    Writes go through a FileLock so several worker processes sharing the
    file never lose an increment, and land via a temp file and rename.
    Unreadable files are logged and treated as empty.
    """

    SCHEMA_VERSION = 1

    def __init__(self, file_path: Union[str, Path] = "key_rotation.json"):
        self.file_path = Path(file_path)
        self.file_lock = FileLock(f"{self.file_path}.lock")
        self._data_lock = asyncio.Lock()

    async def _load(self) -> Dict[str, int]:
        if not self.file_path.exists():
            return {}
        try:
            async with aiofiles.open(self.file_path, "r", encoding="utf-8") as f:
                content = await f.read()
            if not content:
                return {}
            data = json.loads(content)
        except (json.JSONDecodeError, OSError) as e:
            lib_logger.error(f"Failed to load rotation state from {self.file_path}: {e}")
            return {}
        pools = data.get("pools", {}) if isinstance(data, dict) else {}
        if not isinstance(pools, dict):
            return {}
        return {str(name): _coerce_index(index) for name, index in pools.items()}

    async def _save(self, pools: Dict[str, int]) -> None:
        data = {
            "schema_version": self.SCHEMA_VERSION,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "pools": pools,
        }
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.file_path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2))
        temp_path.replace(self.file_path)

    async def get(self, pool_name: str) -> int:
        async with self._data_lock:
            pools = await self._load()
        return pools.get(pool_name, 0)

    async def set(self, pool_name: str, index: int) -> None:
        async with self._data_lock:
            with self.file_lock:
                pools = await self._load()
                pools[pool_name] = _coerce_index(index)
                await self._save(pools)

    async def increment(self, pool_name: str, key_count: int, steps: int = 1) -> int:
        async with self._data_lock:
            with self.file_lock:
                pools = await self._load()
                next_index = (pools.get(pool_name, 0) + steps) % key_count
                pools[pool_name] = next_index
                await self._save(pools)
        return next_index


class KeyRotator:
    """
    Tracks where the next request for each key pool should start.

    Pool names are normalized to lowercase [a-z0-9_-] before they reach the
    store, so "Local First Straico" and "localfirststraico" share state.
    """

    def __init__(
        self,
        store: Optional[RotationStore] = None,
        debug: bool = False,
        history_size: int = FAILOVER_HISTORY_SIZE,
    ):
        self.store = store if store is not None else InMemoryRotationStore()
        self.debug = debug
        self._failover_events: Deque[FailoverEvent] = deque(maxlen=history_size)

    @staticmethod
    def should_failover(status_code: int) -> bool:
        return is_failover_status(status_code)

    async def get_current_index(self, pool_name: str) -> int:
        return await self.store.get(sanitize_pool_name(pool_name))

    async def increment_index(
        self, pool_name: str, key_count: int, steps: int = 1
    ) -> None:
        """
        Advance the pool pointer, by one unless told otherwise.

        Rotation only matters with more than one key. A request that failed
        over before succeeding passes `steps` = keys tried, so the pointer
        lands just past the key that worked. This departs from plain
        round-robin, which always advances by one and so, after a failover,
        starts the next request on a key that was just rejected. The
        default `steps=1` keeps the plain +1 contract.
        """
        if key_count <= 1:
            return
        await self.store.increment(sanitize_pool_name(pool_name), key_count, max(1, steps))

    async def reset_index(self, pool_name: str) -> None:
        await self.store.set(sanitize_pool_name(pool_name), 0)

    async def get_next_key(self, pool_name: str, keys: Any) -> Optional[str]:
        """
        Return the key at the stored index and advance the pointer in one step.

        For callers that want plain round-robin without failover.
        """
        keys = normalize_keys(keys)
        if not keys:
            return None
        count = len(keys)
        if count == 1:
            return keys[0]

        next_index = await self.store.increment(sanitize_pool_name(pool_name), count)
        index = (next_index - 1) % count
        self.log_key_usage(pool_name, index, count)
        return keys[index]

    async def log_failover(
        self, pool_name: str, failed_index: int, status_code: int, key_count: int
    ) -> FailoverEvent:
        """Record that a key failed over. Leaves the rotation index alone."""
        event = FailoverEvent(
            pool_name=sanitize_pool_name(pool_name),
            failed_index=failed_index,
            status=int(status_code),
            key_count=key_count,
        )
        self._failover_events.append(event)

        if self.debug:
            lib_logger.warning(
                f"API key failover: pool={event.pool_name}, key {failed_index + 1}/{key_count} "
                f"failed with status {event.status}, trying next key"
            )

        record = getattr(self.store, "record_failover", None)
        if record is not None:
            try:
                await record(event)
            except Exception as e:
                lib_logger.error(
                    f"Failed to persist failover event for pool={event.pool_name}: {e}"
                )
        return event

    def log_key_usage(self, pool_name: str, index: int, count: int) -> None:
        if self.debug:
            lib_logger.info(
                f"API key rotation: pool={sanitize_pool_name(pool_name)}, using key {index + 1}/{count}"
            )

    @property
    def failover_events(self) -> List[FailoverEvent]:
        return list(self._failover_events)

    def failover_events_for(self, pool_name: str) -> List[FailoverEvent]:
        name = sanitize_pool_name(pool_name)
        return [e for e in self._failover_events if e.pool_name == name]

    async def failover_history(self, pool_name: str, limit: int = 50) -> List[FailoverEvent]:
        """
        Failover events for a pool, oldest first.

        Reads the store's persisted history when it keeps one, so events from
        earlier processes show up too. Falls back to this process's events.
        """
        name = sanitize_pool_name(pool_name)
        persisted = getattr(self.store, "failover_history", None)
        if persisted is not None:
            try:
                return await persisted(name, limit=limit)
            except Exception as e:
                lib_logger.error(f"Failed to read failover history for pool={name}: {e}")
        return self.failover_events_for(name)[-limit:]
