import time
from typing import Callable, Dict, Tuple
from urllib.parse import urlparse

from errors import JobNotFound


class JobStore:
    """
    TTL-keyed record store for job status.

    put() is a full overwrite (last write wins) and restarts the TTL.
    get() raises JobNotFound for expired and unknown ids alike.
    """

    async def connect(self):
        pass

    async def close(self):
        pass

    async def put(self, job_id: str, record: dict, ttl: int):
        raise NotImplementedError

    async def get(self, job_id: str) -> dict:
        raise NotImplementedError

    async def purge_expired(self) -> int:
        """Drop records past their TTL; returns how many went."""
        raise NotImplementedError


class MemoryJobStore(JobStore):
    """Single-process store, for development and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._items: Dict[str, Tuple[float, dict]] = {}

    async def put(self, job_id: str, record: dict, ttl: int):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._items[job_id] = (self._clock() + ttl, dict(record))

    async def get(self, job_id: str) -> dict:
        item = self._items.get(job_id)
        if item is None:
            raise JobNotFound(job_id)
        expires_at, record = item
        if self._clock() >= expires_at:
            del self._items[job_id]
            raise JobNotFound(job_id)
        return dict(record)

    async def purge_expired(self) -> int:
        now = self._clock()
        dead = [k for k, (expires_at, _) in self._items.items() if now >= expires_at]
        for k in dead:
            del self._items[k]
        return len(dead)

    def __len__(self):
        return len(self._items)


def open_job_store(url: str) -> JobStore:
    scheme = urlparse(url).scheme.lower()

    if scheme == "memory":
        return MemoryJobStore()

    if scheme in ("redis", "rediss"):
        from db.redis_store import RedisJobStore
        return RedisJobStore(url)

    if scheme in ("postgres", "postgresql"):
        from db.postgres_store import PostgresJobStore
        return PostgresJobStore(url)

    raise ValueError(f"unsupported job store url: {url!r}")
