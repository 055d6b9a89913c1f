"""
Redis client with in-memory fallback
Provides the key-value store used by the engagement buffer
"""
import logging
import threading
import time
import urllib.parse
from typing import Optional, Dict, Any

import redis

logger = logging.getLogger(__name__)


def get_redis_client() -> Optional[Any]:
    """
    Get Redis client if configured and reachable

    Returns:
        Redis client instance or None if Redis not available
    """
    from ..config import config

    if not config.REDIS_URL:
        return None

    try:
        parsed = urllib.parse.urlparse(config.REDIS_URL)

        client = redis.Redis(
            host=parsed.hostname or 'localhost',
            port=parsed.port or 6379,
            password=parsed.password,
            db=int(parsed.path.lstrip('/')) if parsed.path and parsed.path != '/' else 0,
            ssl=parsed.scheme == 'rediss',
            decode_responses=True,  # Automatically decode responses to strings
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30
        )

        client.ping()
        logger.info(f"Redis connection established: {parsed.hostname}:{parsed.port or 6379}")
        return client
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Redis connection failed: {e}. Using in-memory fallback.")
        return None


class InMemoryKeyValueStore:
    """
    Process-local stand-in for the handful of Redis commands the engagement
    buffer uses (HSET/HGETALL/HSCAN/HDEL/HLEN, SET NX PX, GET, DEL)

    Only safe for a single process; staging/prod require REDIS_URL.
    """

    def __init__(self):
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._values: Dict[str, tuple] = {}
        self._lock = threading.RLock()

    def hset(self, name: str, key: str, value: str) -> int:
        with self._lock:
            bucket = self._hashes.setdefault(name, {})
            is_new = key not in bucket
            bucket[key] = value
            return 1 if is_new else 0

    def hgetall(self, name: str) -> Dict[str, str]:
        with self._lock:
            return dict(self._hashes.get(name, {}))

    def hscan(self, name: str, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None):
        with self._lock:
            items = list(self._hashes.get(name, {}).items())
        count = count or 10
        page = dict(items[cursor:cursor + count])
        next_cursor = cursor + count if cursor + count < len(items) else 0
        return next_cursor, page

    def hdel(self, name: str, *keys: str) -> int:
        with self._lock:
            bucket = self._hashes.get(name, {})
            removed = 0
            for key in keys:
                if key in bucket:
                    del bucket[key]
                    removed += 1
            return removed

    def hlen(self, name: str) -> int:
        with self._lock:
            return len(self._hashes.get(name, {}))

    def set(self, name: str, value: str, nx: bool = False, px: Optional[int] = None):
        with self._lock:
            self._expire(name)
            if nx and name in self._values:
                return None
            expires_at = time.monotonic() + px / 1000.0 if px else None
            self._values[name] = (value, expires_at)
            return True

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            self._expire(name)
            entry = self._values.get(name)
            return entry[0] if entry else None

    def delete(self, *names: str) -> int:
        with self._lock:
            removed = 0
            for name in names:
                if self._values.pop(name, None) is not None:
                    removed += 1
                if self._hashes.pop(name, None) is not None:
                    removed += 1
            return removed

    def compare_and_delete(self, name: str, expected: str) -> int:
        """Delete a key only if it still holds the expected value"""
        with self._lock:
            self._expire(name)
            entry = self._values.get(name)
            if entry and entry[0] == expected:
                del self._values[name]
                return 1
            return 0

    def _expire(self, name: str) -> None:
        entry = self._values.get(name)
        if entry and entry[1] is not None and entry[1] <= time.monotonic():
            del self._values[name]


# Global store instance
_kv_store: Optional[Any] = None


def get_kv_store():
    """
    Redis client when available, otherwise a process-wide in-memory store
    """
    global _kv_store

    if _kv_store is None:
        client = get_redis_client()
        if client is not None:
            _kv_store = client
        else:
            _kv_store = InMemoryKeyValueStore()
            logger.info("Using in-memory key-value store (Redis not available)")
    return _kv_store


def reset_kv_store() -> None:
    """Drop the cached store so the next call reconnects"""
    global _kv_store
    _kv_store = None


def scan_hash(store, name: str, limit: int) -> Dict[str, str]:
    """Read up to `limit` entries from a hash without loading all of it"""
    entries: Dict[str, str] = {}
    cursor = 0
    while True:
        cursor, page = store.hscan(name, cursor=cursor, count=limit)
        for field, value in page.items():
            entries[field] = value
            if len(entries) >= limit:
                return entries
        if cursor == 0:
            return entries
