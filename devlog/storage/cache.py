"""
Idempotent cache for expensive inference calls.

A call is identified by (action identity, version tag, arguments). The
arguments are canonicalized to JSON with sorted keys and hashed with sha256,
so equal inputs map to the same key in any process. Within the TTL a stored
value is returned without recomputing. Concurrent requests for one key share
a single in-flight computation. Failures are never stored.

Key: CacheLayer.fetch() does the lookup, ActionCache binds one named
computation, and MemoryCacheStore / SQLiteCacheStore hold the entries.
"""

from __future__ import annotations

import dataclasses
import json
import sqlite3
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from hashlib import sha256
from typing import Any, Generic, Protocol, TypeVar

from cachetools import TLRUCache
from pydantic import BaseModel

from devlog.config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS
from devlog.infrastructure.database import Database, retry_on_db_lock
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Cache entry with value and expiry timestamp (epoch seconds)."""

    key: str
    value: Any
    expires_at: float
    created_at: float


class CacheStore(Protocol):
    def get(self, key: str, now: float) -> CacheEntry | None: ...

    def put(self, entry: CacheEntry) -> None: ...

    def delete(self, key: str) -> None: ...

    def purge_expired(self, now: float) -> int: ...


# ============================================================================
# Fingerprinting
# ============================================================================


def canonicalize(value: Any) -> Any:
    """Reduce a value to plain JSON types with a deterministic shape."""
    if isinstance(value, BaseModel):
        return canonicalize(value.model_dump(mode="json", by_alias=True, exclude_none=True))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return canonicalize(dataclasses.asdict(value))
    if isinstance(value, Mapping):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def fingerprint(action_identity: str, version: str, args: Any) -> str:
    """sha256 over the canonical JSON of (action, version, args)."""
    payload = {"action": action_identity, "version": version, "args": canonicalize(args)}
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return sha256(encoded.encode("utf-8")).hexdigest()


def cache_key(action_identity: str, version: str, args: Any) -> str:
    return f"{action_identity}:{version}:{fingerprint(action_identity, version, args)}"


# ============================================================================
# Stores
# ============================================================================


class MemoryCacheStore:
    """Process-local store; entries expire individually via TLRUCache."""

    def __init__(self, maxsize: int = CACHE_MAX_ENTRIES, timer: Callable[[], float] = time.time):
        self._cache: TLRUCache[str, CacheEntry] = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, _now: entry.expires_at,
            timer=timer,
        )
        self._lock = threading.Lock()

    def get(self, key: str, now: float) -> CacheEntry | None:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None or entry.expires_at <= now:
            return None
        return entry

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            self._cache[entry.key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [k for k, entry in self._cache.items() if entry.expires_at <= now]
            for k in expired:
                self._cache.pop(k, None)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class SQLiteCacheStore:
    """Durable store backed by the ai_cache table; survives restarts."""

    def __init__(self, db: Database):
        self.db = db

    @retry_on_db_lock()
    def get(self, key: str, now: float) -> CacheEntry | None:
        row = self.db.execute(
            "SELECT key, value, expires_at, created_at FROM ai_cache WHERE key = ?",
            (key,),
            fetch="one",
        )
        if row is None or row["expires_at"] <= now:
            return None
        return CacheEntry(
            key=row["key"],
            value=json.loads(row["value"]),
            expires_at=row["expires_at"],
            created_at=row["created_at"],
        )

    def put(self, entry: CacheEntry) -> None:
        """
        Side Effects:
            - Upserts one ai_cache row; a write failure is logged, not raised
        """
        try:
            self._put(entry)
        except sqlite3.Error as e:
            counter("cache.store.write_error")
            logger.warning("Failed to persist cache entry %s: %s", entry.key[:40], e)

    @retry_on_db_lock()
    def _put(self, entry: CacheEntry) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO ai_cache (key, value, expires_at, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at,
                    created_at = excluded.created_at
                """,
                (entry.key, json.dumps(entry.value), entry.expires_at, entry.created_at),
            )

    @retry_on_db_lock()
    def delete(self, key: str) -> None:
        self.db.execute("DELETE FROM ai_cache WHERE key = ?", (key,), fetch="none")

    @retry_on_db_lock()
    def purge_expired(self, now: float) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM ai_cache WHERE expires_at <= ?", (now,))
            return cursor.rowcount


# ============================================================================
# Cache layer
# ============================================================================


class CacheLayer:
    """Fingerprint lookup with TTL and single-flight computation."""

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._inflight: dict[str, Future[Any]] = {}
        self._lock = threading.Lock()

    def purge_expired(self) -> int:
        """Drop stale entries from the store; returns how many were removed."""
        removed = self.store.purge_expired(self.clock())
        if removed:
            log_event("cache.purged", removed=removed)
        return removed

    def fetch(
        self,
        action_identity: str,
        version: str,
        args: Mapping[str, Any],
        compute: Callable[[Mapping[str, Any]], Any],
        ttl_seconds: float | None = None,
    ) -> Any:
        """
        Return the cached value for (action, version, args), computing it on a miss.

        Exactly one caller computes a given key at a time; concurrent callers
        for the same key wait for that result (or its exception). compute()
        must return a JSON-serializable value.

        Side Effects:
            - Calls compute() on a miss and stores its result
            - Increments cache.{action}.hit/miss/shared/write/error counters
        """
        key = cache_key(action_identity, version, args)

        entry = self.store.get(key, self.clock())
        if entry is not None:
            counter(f"cache.{action_identity}.hit")
            return entry.value

        with self._lock:
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future

        if not leader:
            counter(f"cache.{action_identity}.shared")
            return future.result()

        try:
            # A previous leader may have stored the value since our first lookup
            entry = self.store.get(key, self.clock())
            if entry is not None:
                counter(f"cache.{action_identity}.hit")
                value = entry.value
            else:
                counter(f"cache.{action_identity}.miss")
                value = compute(args)
                now = self.clock()
                ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
                self.store.put(CacheEntry(key=key, value=value, expires_at=now + ttl, created_at=now))
                counter(f"cache.{action_identity}.write")
        except BaseException as exc:
            counter(f"cache.{action_identity}.error")
            log_event("cache.compute_failed", action=action_identity, error=str(exc))
            future.set_exception(exc)
            raise
        else:
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._inflight.pop(key, None)


class ActionCache(Generic[T]):
    """A named, versioned computation routed through a CacheLayer."""

    def __init__(
        self,
        layer: CacheLayer,
        name: str,
        version: str,
        compute: Callable[[Mapping[str, Any]], T],
        ttl_seconds: float | None = None,
    ):
        self.layer = layer
        self.name = name
        self.version = version
        self.compute = compute
        self.ttl_seconds = ttl_seconds

    def fetch(self, args: Mapping[str, Any]) -> T:
        return self.layer.fetch(self.name, self.version, args, self.compute, self.ttl_seconds)

    def key(self, args: Mapping[str, Any]) -> str:
        return cache_key(self.name, self.version, args)
