"""
Key-value abstraction for profile records.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production. Values are opaque strings; callers own the
serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis


class KeyValueClient(Protocol):
    """Minimal get/put/delete interface over string values."""

    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


@dataclass
class InMemoryKeyValueClient:
    """Dict-backed store for testing/dev."""

    items: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def put(self, key: str, value: str) -> None:
        self.items[key] = value

    def delete(self, key: str) -> None:
        self.items.pop(key, None)

    def reset(self) -> None:
        self.items.clear()


@dataclass
class RedisKeyValueClient:
    """Redis-backed store; every key is namespaced under ``key_prefix``."""

    url: str
    key_prefix: str = "users:"
    client: redis.Redis | None = None

    def __post_init__(self):
        if self.client is None:
            self.client = redis.Redis.from_url(self.url)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        value = self.client.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def put(self, key: str, value: str) -> None:
        self.client.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))
