import json

import asyncpg

from db.job_store import JobStore
from errors import JobNotFound


class PostgresJobStore(JobStore):
    """
    Job records in a single table; expiry is a timestamp column so
    expired rows read exactly like missing ones until purge_expired() drops them.
    """

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.pool = None

    # -------------------- CONNECTION --------------------

    async def connect(self):
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.dsn)
            await self.ensure_schema()

    async def close(self):
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def ensure_schema(self):
        q = """
        CREATE TABLE IF NOT EXISTS render_jobs (
            job_id     TEXT PRIMARY KEY,
            record     JSONB NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
        async with self.pool.acquire() as con:
            await con.execute(q)

    # -------------------- JOBS --------------------

    async def put(self, job_id: str, record: dict, ttl: int):
        await self.connect()
        q = """
        INSERT INTO render_jobs (job_id, record, expires_at, updated_at)
        VALUES ($1, $2::jsonb, NOW() + ($3 * INTERVAL '1 second'), NOW())
        ON CONFLICT (job_id)
        DO UPDATE SET
            record     = EXCLUDED.record,
            expires_at = EXCLUDED.expires_at,
            updated_at = NOW()
        """
        async with self.pool.acquire() as con:
            await con.execute(q, job_id, json.dumps(record), ttl)

    async def get(self, job_id: str) -> dict:
        await self.connect()
        q = """
        SELECT record
        FROM render_jobs
        WHERE job_id = $1
          AND expires_at > NOW()
        """
        async with self.pool.acquire() as con:
            raw = await con.fetchval(q, job_id)
        if raw is None:
            raise JobNotFound(job_id)
        return json.loads(raw) if isinstance(raw, str) else dict(raw)

    async def purge_expired(self) -> int:
        await self.connect()
        q = "DELETE FROM render_jobs WHERE expires_at <= NOW()"
        async with self.pool.acquire() as con:
            status = await con.execute(q)
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(status.split()[-1])
