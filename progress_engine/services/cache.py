"""Local key-value cache mirror.

The synchronizer and orchestrator never touch a global store; they are
handed a ``CacheStore``.  Same pattern as the repos: a Protocol, an
in-memory implementation for tests and single-process use, and a Redis
implementation shared across API instances.

The interface is deliberately small and synchronous:

    get_item(key) -> str | None
    set_item(key, value)
    remove_item(key)
    keys() -> list[str]

Stores that can send many commands in one round trip also implement
``BatchCacheStore.apply``; the synchronizer uses it for the wholesale
rebuild when available.

Implementations may raise on any call (quota exceeded, connection
lost).  The Redis store raises SyncError; callers decide how to
recover, see cache_sync.py.
"""

from __future__ import annotations

import re
from typing import Literal, Protocol, runtime_checkable

import redis

from progress_engine.core.errors import SyncError

# (action, key, value); value is None for removals
CacheOp = tuple[Literal["remove", "write"], str, str | None]

# Redis glob metacharacters, escaped with a backslash in MATCH patterns
_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


@runtime_checkable
class CacheStore(Protocol):
    def get_item(self, key: str) -> str | None:
        """Fetch a value.  Returns None when the key is absent."""
        ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None:
        """Delete a key; a missing key is not an error."""
        ...

    def keys(self) -> list[str]: ...


@runtime_checkable
class BatchCacheStore(CacheStore, Protocol):
    def apply(self, ops: list[CacheOp]) -> list[SyncError | None]:
        """Run every op, returning one outcome per op (None = succeeded)."""
        ...


class InMemoryCacheStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._store: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._store.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._store[key] = value

    def remove_item(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._store)

    def snapshot(self) -> dict[str, str]:
        return dict(self._store)


def escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class RedisCacheStore:
    """Redis-backed mirror, one namespace per learner.

    Keys are stored as ``cache:{namespace}:{key}`` so that learners never
    see each other's entries and ``keys()`` can scan a single prefix.
    """

    _PREFIX = "cache:"

    def __init__(self, redis_client, namespace: str) -> None:
        self._redis = redis_client
        self._prefix = f"{self._PREFIX}{namespace}:"

    def get_item(self, key: str) -> str | None:
        try:
            return self._redis.get(f"{self._prefix}{key}")
        except redis.RedisError as e:
            raise SyncError(f"redis GET {key} failed: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        try:
            self._redis.set(f"{self._prefix}{key}", value)
        except redis.RedisError as e:
            raise SyncError(f"redis SET {key} failed: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._redis.delete(f"{self._prefix}{key}")
        except redis.RedisError as e:
            raise SyncError(f"redis DEL {key} failed: {e}") from e

    def keys(self) -> list[str]:
        # SCAN rather than KEYS: cursor-based, never blocks the server
        # for the whole keyspace.
        start = len(self._prefix)
        pattern = f"{escape_glob(self._prefix)}*"
        try:
            return [
                raw[start:]
                for raw in self._redis.scan_iter(match=pattern, count=100)
                if raw.startswith(self._prefix)
            ]
        except redis.RedisError as e:
            raise SyncError(f"redis SCAN failed: {e}") from e

    def apply(self, ops: list[CacheOp]) -> list[SyncError | None]:
        """Send all ops in one non-transactional pipeline."""
        if not ops:
            return []

        pipe = self._redis.pipeline(transaction=False)
        for action, key, value in ops:
            if action == "remove":
                pipe.delete(f"{self._prefix}{key}")
            else:
                pipe.set(f"{self._prefix}{key}", value)

        try:
            replies = pipe.execute(raise_on_error=False)
        except redis.RedisError as e:
            failure = SyncError(f"redis pipeline failed: {e}")
            return [failure] * len(ops)

        outcomes: list[SyncError | None] = []
        for (action, key, _), reply in zip(ops, replies):
            if isinstance(reply, Exception):
                verb = "DEL" if action == "remove" else "SET"
                outcomes.append(SyncError(f"redis {verb} {key} failed: {reply}"))
            else:
                outcomes.append(None)
        return outcomes
