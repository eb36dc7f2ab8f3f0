"""
Key/value caches for expensive remote calls.

Used by the video stage for two maps:
  asset cache — content fingerprint → Hedra asset id
  video cache — (image, audio, character type, topic) → stored video reference

Backends are synchronous. Async callers go through asyncio.to_thread.

Entries are append-only. Two writers racing on the same key both do the
upload and the last put wins, which is harmless.

Backends:
  InMemoryCache  — plain dict, per instance
  JsonFileCache  — dict snapshot rewritten to disk on every new entry
  RedisCache     — shared across processes
"""

import os
import json
import time
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

CACHE_BACKEND = os.getenv("CACHE_BACKEND", "file")
ASSET_CACHE_FILE = os.getenv("HEDRA_ASSET_CACHE_FILE", "hedra-asset-cache.json")
VIDEO_CACHE_FILE = os.getenv("HEDRA_VIDEO_CACHE_FILE", "hedra-video-cache.json")
REDIS_URL = os.getenv("REDIS_URL", "")

_ttl_env = os.getenv("CACHE_TTL_SECONDS", "")
CACHE_TTL_SECONDS: Optional[float] = float(_ttl_env) if _ttl_env else None


class KeyValueCache(ABC):

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        ...

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════

class InMemoryCache(KeyValueCache):
    """
    Dict cache with optional expiry.

    Each entry is stored as (value, expires_at). expires_at is None when the
    cache has no TTL.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[str, Optional[float]]] = {}

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: str) -> None:
        expires_at = self._clock() + self.ttl_seconds if self.ttl_seconds else None
        self._entries[key] = (value, expires_at)

    def __len__(self) -> int:
        return len(self._entries)


# ═════════════════════════════════════════════════════════════════════════════
# JSON file snapshot
# ═════════════════════════════════════════════════════════════════════════════

class JsonFileCache(InMemoryCache):
    """
    In-memory cache loaded from a JSON file at start and rewritten on every put.

    The file only saves uploads across restarts. Read or write failures are
    logged and the cache keeps working from memory.

    File format: {key: value} or {key: {"value": ..., "expires_at": ...}}.
    """

    def __init__(
        self,
        path: str | Path,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self.path = Path(path)
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Error loading cache file {self.path}: {e}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Ignoring cache file {self.path}: expected an object")
            return

        for key, entry in data.items():
            if isinstance(entry, dict):
                value = entry.get("value")
                expires_at = entry.get("expires_at")
            else:
                value, expires_at = entry, None
            if isinstance(value, str):
                self._entries[key] = (value, expires_at)

        logger.info(f"Loaded {len(self._entries)} cached entries from {self.path}")

    def _save(self):
        snapshot = {
            key: value if expires_at is None else {"value": value, "expires_at": expires_at}
            for key, (value, expires_at) in self._entries.items()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            logger.warning(f"Error saving cache file {self.path}: {e}")

    def put(self, key: str, value: str) -> None:
        super().put(key, value)
        self._save()


# ═════════════════════════════════════════════════════════════════════════════
# Redis
# ═════════════════════════════════════════════════════════════════════════════

class RedisCache(KeyValueCache):
    """Cache in Redis string keys under a namespace prefix."""

    def __init__(self, redis_client, prefix: str, ttl_seconds: Optional[float] = None):
        self._redis = redis_client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[str]:
        value = self._redis.get(self._key(key))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def put(self, key: str, value: str) -> None:
        if self.ttl_seconds:
            self._redis.set(self._key(key), value, px=max(1, int(self.ttl_seconds * 1000)))
        else:
            self._redis.set(self._key(key), value)


_redis_client = None


def _get_redis():
    global _redis_client
    if _redis_client is None:
        if not REDIS_URL:
            raise RuntimeError("REDIS_URL must be set when CACHE_BACKEND=redis")
        import redis
        _redis_client = redis.from_url(REDIS_URL, decode_responses=False)
    return _redis_client


def build_cache(name: str, backend: Optional[str] = None) -> KeyValueCache:
    """
    Build one of the named caches ("asset" or "video") for the configured backend.
    """
    backend = (backend or CACHE_BACKEND).lower()
    if backend == "memory":
        return InMemoryCache(ttl_seconds=CACHE_TTL_SECONDS)
    if backend == "file":
        path = ASSET_CACHE_FILE if name == "asset" else VIDEO_CACHE_FILE
        return JsonFileCache(path, ttl_seconds=CACHE_TTL_SECONDS)
    if backend == "redis":
        return RedisCache(_get_redis(), prefix=f"hedra:{name}", ttl_seconds=CACHE_TTL_SECONDS)
    raise ValueError(f"Unknown CACHE_BACKEND: {backend}")
