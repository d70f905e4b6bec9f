import asyncio
import unittest

from errors import BackendUnavailable, RenderError
from models import RenderSpec, Viewport
from renderer.pool import RenderPool

from fakes import FakeClock, FakeEngine, failing_engine

VP = Viewport(400, 300)
SPEC = RenderSpec(content="<h1>x</h1>", viewport=VP)


class TestRenderPool(unittest.IsolatedAsyncioTestCase):

    async def test_concurrent_renders_never_exceed_pool_size(self):
        engine = FakeEngine(delay=0.01)
        pool = RenderPool(lambda: engine, size=3)

        async def one():
            async with pool.slot(VP) as slot:
                await slot.render(SPEC)

        await asyncio.gather(*(one() for _ in range(15)))

        self.assertEqual(engine.renders, 15)
        self.assertEqual(engine.peak_active, 3)
        self.assertEqual(pool.peak_in_use, 3)
        self.assertEqual(pool.in_use, 0)

    async def test_engine_is_launched_once_and_shared(self):
        engine = FakeEngine()
        calls = []

        def factory():
            calls.append(1)
            return engine

        pool = RenderPool(factory, size=2)
        for _ in range(5):
            async with pool.slot(VP) as slot:
                await slot.render(SPEC)

        self.assertEqual(len(calls), 1)
        self.assertEqual(engine.started, 1)
        self.assertEqual(engine.sessions_opened, 5)
        self.assertEqual(engine.sessions_closed, 5)

    async def test_waiters_are_served_in_arrival_order(self):
        pool = RenderPool(FakeEngine, size=1)
        first = await pool.acquire(VP)
        order = []

        async def waiter(i):
            async with pool.slot(VP):
                order.append(i)

        tasks = []
        for i in range(4):
            tasks.append(asyncio.create_task(waiter(i)))
            await asyncio.sleep(0)  # let it reach the queue before the next one

        await pool.release(first)
        await asyncio.gather(*tasks)
        self.assertEqual(order, [0, 1, 2, 3])

    async def test_launch_failure_is_not_retried_on_every_acquire(self):
        clock = FakeClock()
        engines = []

        def factory():
            e = FakeEngine(fail_start=len(engines) == 0)
            engines.append(e)
            return e

        pool = RenderPool(factory, size=2, launch_retry_interval=30, clock=clock)

        for _ in range(3):
            with self.assertRaises(BackendUnavailable):
                await pool.acquire(VP)
        self.assertEqual(len(engines), 1)
        self.assertEqual(pool.in_use, 0)

        clock.advance(31)
        slot = await pool.acquire(VP)
        self.assertEqual(len(engines), 2)
        await pool.release(slot)

    async def test_no_slot_leak_after_many_failures(self):
        engine = failing_engine()
        pool = RenderPool(lambda: engine, size=2)

        for _ in range(1000):
            with self.assertRaises(RenderError):
                async with pool.slot(VP) as slot:
                    await slot.render(SPEC)

        self.assertEqual(pool.in_use, 0)
        self.assertEqual(engine.sessions_opened, 1000)
        self.assertEqual(engine.sessions_closed, 1000)

        a = await pool.acquire(VP, timeout=0.1)
        b = await pool.acquire(VP, timeout=0.1)
        await pool.release(a)
        await pool.release(b)

    async def test_release_is_idempotent(self):
        pool = RenderPool(FakeEngine, size=1)
        slot = await pool.acquire(VP)
        await pool.release(slot)
        await pool.release(slot)
        self.assertEqual(pool.in_use, 0)

        again = await pool.acquire(VP, timeout=0.1)
        # a double release would have left a second permit behind
        with self.assertRaises(BackendUnavailable):
            await pool.acquire(VP, timeout=0.05)
        await pool.release(again)

    async def test_acquire_timeout_raises_backend_unavailable(self):
        pool = RenderPool(FakeEngine, size=1, acquire_timeout=0.05)
        held = await pool.acquire(VP)
        with self.assertRaises(BackendUnavailable):
            await pool.acquire(VP)
        await pool.release(held)

    async def test_session_failure_gives_permit_back(self):
        engine = FakeEngine(fail_sessions=True)
        pool = RenderPool(lambda: engine, size=1)
        with self.assertRaises(BackendUnavailable):
            await pool.acquire(VP)
        self.assertEqual(pool.in_use, 0)

        engine.fail_sessions = False
        slot = await pool.acquire(VP, timeout=0.1)
        await pool.release(slot)

    async def test_render_after_release_is_rejected(self):
        pool = RenderPool(FakeEngine, size=1)
        slot = await pool.acquire(VP)
        await pool.release(slot)
        with self.assertRaises(RuntimeError):
            await slot.render(SPEC)

    async def test_cancelled_acquire_during_engine_launch_returns_permit(self):
        engines = []

        class SlowStartEngine(FakeEngine):
            async def start(self):
                await super().start()
                await asyncio.sleep(3600)

        def factory():
            e = SlowStartEngine() if not engines else FakeEngine()
            engines.append(e)
            return e

        pool = RenderPool(factory, size=1)
        waiting = asyncio.create_task(pool.acquire(VP))
        await asyncio.sleep(0.01)
        waiting.cancel()
        await asyncio.gather(waiting, return_exceptions=True)

        self.assertTrue(waiting.cancelled())
        self.assertEqual(pool.in_use, 0)
        slot = await pool.acquire(VP, timeout=0.1)
        self.assertEqual(len(engines), 2)
        await pool.release(slot)

    async def test_stats_track_slots_in_use(self):
        pool = RenderPool(FakeEngine, size=2)
        slot = await pool.acquire(VP)
        self.assertEqual(pool.stats(), {"size": 2, "in_use": 1, "peak_in_use": 1})
        await pool.release(slot)
        self.assertEqual(pool.stats()["in_use"], 0)

    async def test_close_shuts_engine_and_rejects_acquire(self):
        engine = FakeEngine()
        pool = RenderPool(lambda: engine, size=1)
        async with pool.slot(VP):
            pass
        await pool.close()

        self.assertTrue(engine.closed)
        with self.assertRaises(BackendUnavailable):
            await pool.acquire(VP)

    def test_size_must_be_positive(self):
        with self.assertRaises(ValueError):
            RenderPool(FakeEngine, size=0)


if __name__ == "__main__":
    unittest.main()
