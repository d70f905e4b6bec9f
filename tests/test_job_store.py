import json
import unittest
from unittest.mock import AsyncMock, MagicMock

from db.job_store import MemoryJobStore, open_job_store
from db.postgres_store import PostgresJobStore
from db.redis_store import RedisJobStore
from errors import JobNotFound

from fakes import FakeClock

RECORD = {"jobId": "abc", "status": "pending", "createdAt": "2026-01-01T00:00:00Z"}


class TestMemoryJobStore(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.store = MemoryJobStore(clock=self.clock)

    async def test_put_then_get(self):
        await self.store.put("abc", RECORD, ttl=3600)
        self.assertEqual(await self.store.get("abc"), RECORD)

    async def test_put_is_full_overwrite(self):
        await self.store.put("abc", RECORD, ttl=3600)
        await self.store.put("abc", {"jobId": "abc", "status": "processing"}, ttl=3600)
        self.assertEqual(await self.store.get("abc"), {"jobId": "abc", "status": "processing"})

    async def test_expired_and_unknown_look_the_same(self):
        await self.store.put("abc", RECORD, ttl=60)
        self.clock.advance(60)

        with self.assertRaises(JobNotFound) as expired:
            await self.store.get("abc")
        with self.assertRaises(JobNotFound) as unknown:
            await self.store.get("never-existed")

        self.assertIs(type(expired.exception), type(unknown.exception))
        self.assertEqual(len(self.store), 0)

    async def test_rewrite_extends_ttl(self):
        await self.store.put("abc", RECORD, ttl=60)
        self.clock.advance(50)
        await self.store.put("abc", RECORD, ttl=60)
        self.clock.advance(50)
        self.assertEqual((await self.store.get("abc"))["status"], "pending")

    async def test_returned_record_is_a_copy(self):
        await self.store.put("abc", RECORD, ttl=60)
        got = await self.store.get("abc")
        got["status"] = "completed"
        self.assertEqual((await self.store.get("abc"))["status"], "pending")

    async def test_purge_expired_drops_dead_records_without_reads(self):
        for i in range(1000):
            await self.store.put(f"old-{i}", RECORD, ttl=60)
        self.clock.advance(10000)
        await self.store.put("fresh", RECORD, ttl=60)

        self.assertEqual(await self.store.purge_expired(), 1000)
        self.assertEqual(len(self.store), 1)
        self.assertEqual((await self.store.get("fresh"))["status"], "pending")

    async def test_ttl_must_be_positive(self):
        with self.assertRaises(ValueError):
            await self.store.put("abc", RECORD, ttl=0)


class TestRedisJobStore(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.client = AsyncMock()
        self.store = RedisJobStore("redis://localhost:6379/0", client=self.client)

    async def test_put_uses_setex_with_job_prefix(self):
        await self.store.put("abc", RECORD, ttl=3600)
        self.client.setex.assert_awaited_once_with("job:abc", 3600, json.dumps(RECORD))

    async def test_get_decodes_json(self):
        self.client.get.return_value = json.dumps(RECORD).encode()
        self.assertEqual(await self.store.get("abc"), RECORD)
        self.client.get.assert_awaited_once_with("job:abc")

    async def test_missing_key_is_not_found(self):
        self.client.get.return_value = None
        with self.assertRaises(JobNotFound):
            await self.store.get("abc")

    async def test_purge_expired_leaves_expiry_to_redis(self):
        self.assertEqual(await self.store.purge_expired(), 0)
        self.client.delete.assert_not_called()

    async def test_close_releases_client(self):
        await self.store.close()
        self.client.aclose.assert_awaited_once()
        self.assertIsNone(self.store.client)


class TestPostgresJobStore(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.con = AsyncMock()
        self.pool = MagicMock()
        self.pool.acquire.return_value.__aenter__ = AsyncMock(return_value=self.con)
        self.pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)

        self.store = PostgresJobStore("postgresql://user@localhost/renderer")
        self.store.pool = self.pool

    async def test_put_upserts_with_expiry(self):
        await self.store.put("abc", RECORD, ttl=3600)

        q, job_id, payload, ttl = self.con.execute.await_args.args
        self.assertIn("ON CONFLICT (job_id)", q)
        self.assertIn("expires_at", q)
        self.assertEqual((job_id, json.loads(payload), ttl), ("abc", RECORD, 3600))

    async def test_get_filters_expired_rows(self):
        self.con.fetchval.return_value = json.dumps(RECORD)
        self.assertEqual(await self.store.get("abc"), RECORD)

        q, job_id = self.con.fetchval.await_args.args
        self.assertIn("expires_at > NOW()", q)
        self.assertEqual(job_id, "abc")

    async def test_missing_row_is_not_found(self):
        self.con.fetchval.return_value = None
        with self.assertRaises(JobNotFound):
            await self.store.get("abc")

    async def test_purge_expired_returns_deleted_count(self):
        self.con.execute.return_value = "DELETE 3"
        self.assertEqual(await self.store.purge_expired(), 3)


class TestOpenJobStore(unittest.TestCase):
    def test_picks_backend_by_scheme(self):
        self.assertIsInstance(open_job_store("memory://"), MemoryJobStore)
        self.assertIsInstance(open_job_store("redis://localhost:6379/0"), RedisJobStore)
        self.assertIsInstance(open_job_store("postgresql://u@localhost/db"), PostgresJobStore)
        self.assertIsInstance(open_job_store("postgres://u@localhost/db"), PostgresJobStore)

    def test_unknown_scheme(self):
        with self.assertRaises(ValueError):
            open_job_store("ftp://example.com")


if __name__ == "__main__":
    unittest.main()
