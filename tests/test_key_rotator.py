import asyncio
import json

import pytest

from review_library.key_rotator import (
    InMemoryRotationStore,
    JsonRotationStore,
    KeyRotator,
)


@pytest.mark.asyncio
async def test_increment_wraps_around() -> None:
    rotator = KeyRotator()

    for _ in range(3):
        await rotator.increment_index("openrouter", 3)

    assert await rotator.get_current_index("openrouter") == 0


@pytest.mark.asyncio
async def test_single_key_pool_never_moves() -> None:
    rotator = KeyRotator()

    await rotator.increment_index("straico", 1)
    await rotator.increment_index("straico", 0)

    assert await rotator.get_current_index("straico") == 0


@pytest.mark.asyncio
async def test_increment_by_keys_tried() -> None:
    rotator = KeyRotator(store=InMemoryRotationStore({"openrouter": 1}))

    await rotator.increment_index("openrouter", 3, steps=2)

    assert await rotator.get_current_index("openrouter") == 0


@pytest.mark.asyncio
async def test_pool_names_are_sanitized() -> None:
    rotator = KeyRotator()

    await rotator.increment_index("Local First Straico", 2)

    assert await rotator.get_current_index("localfirststraico") == 1


@pytest.mark.asyncio
async def test_get_next_key_round_robin() -> None:
    rotator = KeyRotator()
    keys = ["k0", "k1", "k2"]

    picked = [await rotator.get_next_key("pool", keys) for _ in range(4)]

    assert picked == ["k0", "k1", "k2", "k0"]
    assert await rotator.get_next_key("pool", []) is None
    assert await rotator.get_next_key("solo", ["only"]) == "only"


@pytest.mark.asyncio
async def test_reset_index() -> None:
    rotator = KeyRotator(store=InMemoryRotationStore({"anthropic": 2}))

    await rotator.reset_index("anthropic")

    assert await rotator.get_current_index("anthropic") == 0


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost() -> None:
    rotator = KeyRotator()

    await asyncio.gather(*(rotator.increment_index("busy", 1000) for _ in range(50)))

    assert await rotator.get_current_index("busy") == 50


@pytest.mark.asyncio
async def test_log_failover_keeps_index_and_records_event() -> None:
    rotator = KeyRotator(debug=True)

    event = await rotator.log_failover("OpenRouter", 1, 429, 3)

    assert event.pool_name == "openrouter"
    assert event.failed_index == 1
    assert event.status == 429
    assert rotator.failover_events_for("openrouter") == [event]
    assert await rotator.get_current_index("openrouter") == 0


@pytest.mark.asyncio
async def test_failover_history_without_persisted_log_uses_process_events() -> None:
    rotator = KeyRotator()
    first = await rotator.log_failover("openrouter", 0, 429, 3)
    await rotator.log_failover("anthropic", 0, 401, 2)
    second = await rotator.log_failover("openrouter", 1, 403, 3)

    assert await rotator.failover_history("OpenRouter") == [first, second]
    assert await rotator.failover_history("openrouter", limit=1) == [second]


def test_should_failover() -> None:
    assert KeyRotator.should_failover(401)
    assert KeyRotator.should_failover(403)
    assert KeyRotator.should_failover(429)
    assert not KeyRotator.should_failover(400)
    assert not KeyRotator.should_failover(500)


@pytest.mark.asyncio
async def test_json_store_persists_across_instances(tmp_path) -> None:
    path = tmp_path / "state" / "key_rotation.json"
    first = KeyRotator(store=JsonRotationStore(path))

    await first.increment_index("openrouter", 3)
    await first.increment_index("openrouter", 3)

    second = KeyRotator(store=JsonRotationStore(path))
    assert await second.get_current_index("openrouter") == 2

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["schema_version"] == 1
    assert data["pools"] == {"openrouter": 2}


@pytest.mark.asyncio
async def test_json_store_treats_corrupt_file_as_empty(tmp_path) -> None:
    path = tmp_path / "key_rotation.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonRotationStore(path)

    assert await store.get("openrouter") == 0
    assert await store.increment("openrouter", 2) == 1
