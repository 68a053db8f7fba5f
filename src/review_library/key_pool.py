# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
API key pool normalization.

A pool value comes from configuration as either a single string or a list
of strings. Normalization keeps input order and duplicates (pasting a key
twice doubles its rotation weight) and drops everything that is not a
non-empty string.
"""

import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from .error_handler import strip_tags

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]+")
_POOL_NAME_RE = re.compile(r"[^a-z0-9_\-]")


def normalize_keys(value: Any) -> List[str]:
    """
    Normalize a raw pool value into a list of trimmed, non-empty keys.

    Examples:
        >>> normalize_keys("  sk-1 ")
        ['sk-1']
        >>> normalize_keys(["a", "", "  ", 3, "a"])
        ['a', 'a']
        >>> normalize_keys(None)
        []
    """
    if isinstance(value, str):
        value = value.strip()
        return [value] if value else []

    if not isinstance(value, (list, tuple)):
        return []

    keys = []
    for key in value:
        if isinstance(key, str):
            key = key.strip()
            if key:
                keys.append(key)
    return keys


def count_keys(value: Any) -> int:
    return len(normalize_keys(value))


def _sanitize_text_field(value: str) -> str:
    value = strip_tags(value)
    value = _CONTROL_CHARS_RE.sub(" ", value)
    return " ".join(value.split())


def sanitize_key_pool(value: Any) -> List[str]:
    """
    Sanitize a pool value loaded from configuration.

    Stricter than normalize_keys: tags and control characters are removed
    from each entry before the usual trimming and filtering. Used by
    ApiKeyPool.from_value, so every configured pool goes through it.
    """
    if isinstance(value, str):
        return normalize_keys(_sanitize_text_field(value))
    if isinstance(value, (list, tuple)):
        return normalize_keys(
            [_sanitize_text_field(k) for k in value if isinstance(k, str)]
        )
    return []


def sanitize_pool_name(pool_name: str) -> str:
    """Lowercase and keep only [a-z0-9_-], the way pool names are stored."""
    return _POOL_NAME_RE.sub("", str(pool_name).lower())


@dataclass(frozen=True)
class ApiKeyPool:
    """An ordered set of credentials addressed by a stable pool name."""

    name: str
    keys: Tuple[str, ...] = ()

    @classmethod
    def from_value(cls, name: str, value: Any) -> "ApiKeyPool":
        return cls(name=sanitize_pool_name(name), keys=tuple(sanitize_key_pool(value)))

    def __len__(self) -> int:
        return len(self.keys)

    def __bool__(self) -> bool:
        return bool(self.keys)

    def key_at(self, index: int) -> Optional[str]:
        """Returns the key at `index` modulo the pool size."""
        if not self.keys:
            return None
        return self.keys[int(index) % len(self.keys)]
