"""Snapshot store contract and its Redis / in-memory implementations."""
from abc import ABC, abstractmethod
from fnmatch import fnmatchcase
from typing import Dict, Iterable, List, Optional, Tuple, Union
import logging
import threading
import time

import redis

logger = logging.getLogger(__name__)

# Redis hands back raw bytes; callers decode keys and values themselves
StoredKey = Union[str, bytes]
StoredValue = Union[str, bytes]


class StoreError(Exception):
    """Transient store failure (connectivity, timeout, server error)."""


class SnapshotBatch(ABC):
    """Write batch: queue any number of sets, then execute once."""

    @abstractmethod
    def set(self, key: str, value: str, ttl_s: int):
        """Queue a set-with-expiry."""
        pass

    @abstractmethod
    def execute(self):
        """Send all queued writes. Raises StoreError on failure."""
        pass

    def __len__(self) -> int:
        return 0


class SnapshotStore(ABC):
    """Key-value store with per-key expiry."""

    @abstractmethod
    def batch(self) -> SnapshotBatch:
        pass

    @abstractmethod
    def scan_keys(self, pattern: str) -> List[StoredKey]:
        """All keys matching a glob-style pattern."""
        pass

    @abstractmethod
    def get(self, key: StoredKey) -> Optional[StoredValue]:
        """Value for key, or None when absent or expired."""
        pass

    def get_many(self, keys: List[StoredKey]) -> List[Optional[StoredValue]]:
        """Values for several keys, in order."""
        return [self.get(key) for key in keys]

    def ping(self) -> bool:
        return True

    def close(self):
        pass


class RedisBatch(SnapshotBatch):
    """Non-transactional pipeline of SET ... EX commands."""

    def __init__(self, client: redis.Redis):
        self._pipe = client.pipeline(transaction=False)
        self._size = 0

    def set(self, key: str, value: str, ttl_s: int):
        self._pipe.set(key, value, ex=ttl_s)
        self._size += 1

    def execute(self):
        try:
            self._pipe.execute()
        except redis.RedisError as e:
            raise StoreError(f"Redis batch of {self._size} writes failed: {e}") from e
        finally:
            self._pipe.reset()

    def __len__(self) -> int:
        return self._size


class RedisSnapshotStore(SnapshotStore):
    """SnapshotStore backed by a Redis server."""

    def __init__(self, client: redis.Redis, scan_count: int = 500):
        self.client = client
        self.scan_count = scan_count

    @classmethod
    def from_url(
        cls,
        url: str,
        socket_timeout_s: float = 5.0,
        socket_connect_timeout_s: float = 10.0,
        scan_count: int = 500
    ) -> "RedisSnapshotStore":
        logger.info(f"Connecting to Redis at: {url}")
        client = redis.Redis.from_url(
            url,
            decode_responses=False,
            socket_timeout=socket_timeout_s,
            socket_connect_timeout=socket_connect_timeout_s,
        )
        return cls(client, scan_count=scan_count)

    def batch(self) -> RedisBatch:
        return RedisBatch(self.client)

    def scan_keys(self, pattern: str) -> List[StoredKey]:
        try:
            return list(self.client.scan_iter(match=pattern, count=self.scan_count))
        except redis.RedisError as e:
            raise StoreError(f"Redis scan for '{pattern}' failed: {e}") from e

    def get(self, key: StoredKey) -> Optional[StoredValue]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"Redis get for '{key}' failed: {e}") from e

    def get_many(self, keys: List[StoredKey]) -> List[Optional[StoredValue]]:
        if not keys:
            return []
        try:
            return self.client.mget(keys)
        except redis.RedisError as e:
            raise StoreError(f"Redis mget of {len(keys)} keys failed: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def close(self):
        self.client.close()


class InMemoryBatch(SnapshotBatch):
    def __init__(self, store: "InMemorySnapshotStore"):
        self._store = store
        self._pending: List[Tuple[str, str, int]] = []

    def set(self, key: str, value: str, ttl_s: int):
        self._pending.append((key, value, ttl_s))

    def execute(self):
        self._store._apply(self._pending)
        self._pending = []

    def __len__(self) -> int:
        return len(self._pending)


class InMemorySnapshotStore(SnapshotStore):
    """
    Process-local store with lazy expiry.

    Used when no Redis is configured and in tests. ``clock`` returns
    seconds and can be replaced to control expiry.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[StoredValue, float]] = {}
        self._lock = threading.Lock()

    def _apply(self, writes: Iterable[Tuple[str, str, int]]):
        now = self._clock()
        with self._lock:
            for key, value, ttl_s in writes:
                self._data[key] = (value, now + ttl_s)

    def _purge_expired(self):
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]

    def batch(self) -> InMemoryBatch:
        return InMemoryBatch(self)

    def scan_keys(self, pattern: str) -> List[StoredKey]:
        with self._lock:
            self._purge_expired()
            return [k for k in self._data if fnmatchcase(k, pattern)]

    def get(self, key: StoredKey) -> Optional[StoredValue]:
        with self._lock:
            self._purge_expired()
            entry = self._data.get(key)
            return entry[0] if entry is not None else None

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires, or None when absent."""
        with self._lock:
            self._purge_expired()
            entry = self._data.get(key)
            return entry[1] - self._clock() if entry is not None else None

    def put(self, key: str, value: StoredValue, ttl_s: int = 1800):
        """Write a single key directly."""
        self._apply([(key, value, ttl_s)])
