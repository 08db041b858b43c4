from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import redis

from .config import ComposerSettings


@dataclass
class CacheEntry:
    key: str
    value: Any
    expiry: float


class CacheStore:
    # Backends doing network I/O are called off the event loop by async callers.
    blocking_io = False

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def get(self, key: str) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def keys_matching(self, pattern: str) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    """Process-local store with per-entry expiry.

    Expired entries are evicted lazily: a lookup strictly past the expiry
    deletes the entry and reports a miss. Every operation completes without
    yielding to the event loop, so concurrent tasks never observe a partial write.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, expiry=self._clock() + ttl_seconds)

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expiry:
            del self._entries[key]
            return None
        return entry.value

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys_matching(self, pattern: str) -> List[str]:
        return [key for key in self._entries if pattern in key]

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore(CacheStore):
    blocking_io = True

    def __init__(self, client: "redis.Redis", prefix: str = "composer:") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "composer:") -> "RedisCacheStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.client.set(self.prefix + key, json.dumps(value, default=str), ex=max(1, int(ttl_seconds)))

    def get(self, key: str) -> Any:
        raw = self.client.get(self.prefix + key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            self.client.delete(self.prefix + key)
            return None

    def delete(self, key: str) -> None:
        self.client.delete(self.prefix + key)

    def keys_matching(self, pattern: str) -> List[str]:
        escaped = _escape_glob(pattern)
        keys: List[str] = []
        for key in self.client.scan_iter(match=f"{self.prefix}*{escaped}*"):
            name = key.decode("utf-8") if isinstance(key, bytes) else str(key)
            keys.append(name[len(self.prefix) :])
        return keys


def _escape_glob(pattern: str) -> str:
    return "".join(f"\\{ch}" if ch in "*?[]\\" else ch for ch in pattern)


def build_cache_store(settings: ComposerSettings, client: Optional["redis.Redis"] = None) -> CacheStore:
    backend = (settings.cache_backend or "memory").lower()
    if backend == "redis":
        if client is not None:
            return RedisCacheStore(client)
        return RedisCacheStore.from_url(settings.redis_url)
    if backend != "memory":
        raise ValueError(f"unknown_cache_backend:{backend}")
    return MemoryCacheStore()
