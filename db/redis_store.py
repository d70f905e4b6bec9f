import json

from redis.asyncio import Redis

from db.job_store import JobStore
from errors import JobNotFound


class RedisJobStore(JobStore):
    """job:<id> -> JSON record, expiry handled by Redis itself (SETEX)."""

    key_prefix = "job:"

    def __init__(self, url: str, client: Redis = None):
        self.url = url
        self.client = client

    def _key(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    async def connect(self):
        if self.client is None:
            self.client = Redis.from_url(self.url)

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def put(self, job_id: str, record: dict, ttl: int):
        await self.connect()
        await self.client.setex(self._key(job_id), ttl, json.dumps(record))

    async def get(self, job_id: str) -> dict:
        await self.connect()
        raw = await self.client.get(self._key(job_id))
        if raw is None:
            raise JobNotFound(job_id)
        return json.loads(raw)

    async def purge_expired(self) -> int:
        # Redis expires keys on its own
        return 0
