import pytest

from review_library.key_pool import (
    ApiKeyPool,
    count_keys,
    normalize_keys,
    sanitize_key_pool,
    sanitize_pool_name,
)


def test_single_string_is_trimmed() -> None:
    assert normalize_keys("  sk-1 ") == ["sk-1"]


def test_list_keeps_order_and_duplicates() -> None:
    assert normalize_keys(["a", "", "  ", 3, None, " b ", "a"]) == ["a", "b", "a"]


@pytest.mark.parametrize("value", [None, 42, {"key": "x"}, "", "   ", []])
def test_unusable_values_give_empty_pool(value) -> None:
    assert normalize_keys(value) == []
    assert count_keys(value) == 0


def test_sanitize_key_pool_strips_tags_and_control_chars() -> None:
    assert sanitize_key_pool(["<b>sk-1</b>", "sk-\x002", "  "]) == ["sk-1", "sk- 2"]
    assert sanitize_key_pool("<i>sk-9</i>\n") == ["sk-9"]
    assert sanitize_key_pool(7) == []


def test_sanitize_pool_name() -> None:
    assert sanitize_pool_name("Local_First Straico!") == "local_firststraico"
    assert sanitize_pool_name("query-reformulation") == "query-reformulation"


def test_api_key_pool_from_value() -> None:
    pool = ApiKeyPool.from_value("openrouter", [" k1 ", "", "k2"])

    assert pool.name == "openrouter"
    assert pool.keys == ("k1", "k2")
    assert len(pool) == 2
    assert bool(pool)
    assert pool.key_at(3) == "k2"


def test_empty_pool_is_falsy() -> None:
    pool = ApiKeyPool.from_value("straico", None)

    assert not pool
    assert len(pool) == 0
