"""
Key-value storage backends for the receipt collection.

The receipt store treats storage as get/set/delete of an opaque string per key,
plus an atomic read-modify-write used by every mutating operation.
"""
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from scanpay.config import Config
from scanpay.redis_client import RedisClient, get_redis_client

Transform = Callable[[Optional[str]], Optional[str]]


class KeyValueStorage(ABC):
    """Persistent string storage, atomic per key"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def update(self, key: str, transform: Transform) -> Optional[str]:
        """Replace the value under ``key`` with ``transform(current)`` atomically"""

    def ping(self) -> bool:
        return True


class MemoryStorage(KeyValueStorage):
    """Process-local storage, used for tests and storage-less deployments"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def update(self, key: str, transform: Transform) -> Optional[str]:
        with self._lock:
            new_value = transform(self._data.get(key))
            if new_value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = new_value
            return new_value


class RedisStorage(KeyValueStorage):
    """Storage backed by a Redis string key per collection"""

    def __init__(self, redis_client: Optional[RedisClient] = None):
        self.redis = redis_client or get_redis_client()

    def get(self, key: str) -> Optional[str]:
        return self.redis.get(key)

    def set(self, key: str, value: str) -> None:
        self.redis.set(key, value)

    def delete(self, key: str) -> None:
        self.redis.delete(key)

    def update(self, key: str, transform: Transform) -> Optional[str]:
        return self.redis.watch_update(key, transform)

    def ping(self) -> bool:
        return bool(self.redis.ping())


def get_storage(backend: Optional[str] = None) -> KeyValueStorage:
    """Build the storage backend named by STORAGE_BACKEND"""
    backend = (backend or Config.STORAGE_BACKEND).lower()
    if backend == "memory":
        return MemoryStorage()
    if backend == "redis":
        return RedisStorage()
    raise ValueError(f"Unknown storage backend: {backend}")
