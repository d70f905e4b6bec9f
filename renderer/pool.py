import asyncio
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from errors import BackendUnavailable
from logger import get_logger
from models import Viewport

log = get_logger("pool")

_UNSET = object()


class RenderSlot:
    """One checked-out unit of render capacity. Release it exactly once via the pool."""

    def __init__(self, pool: "RenderPool", session):
        self._pool = pool
        self.session = session
        self.released = False

    async def render(self, spec) -> bytes:
        if self.released:
            raise RuntimeError("render slot used after release")
        return await self.session.render(spec)


class RenderPool:
    """
    Bounded set of isolated browser sessions on top of one shared engine.

    - size is a hard ceiling; callers past it queue on the semaphore (FIFO)
    - the engine is launched lazily on the first acquire and shared
    - a failed launch is remembered: acquires fail fast with BackendUnavailable
      until launch_retry_interval has passed
    """

    def __init__(
        self,
        engine_factory: Callable,
        size: int = 2,
        acquire_timeout: Optional[float] = None,
        launch_retry_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if size < 1:
            raise ValueError("pool size must be >= 1")
        self.size = size
        self.acquire_timeout = acquire_timeout
        self.launch_retry_interval = launch_retry_interval

        self._engine_factory = engine_factory
        self._clock = clock
        self._engine = None
        self._engine_lock = asyncio.Lock()
        self._launch_error: Optional[BaseException] = None
        self._launch_failed_at = 0.0

        self._sem = asyncio.Semaphore(size)
        self._closed = False
        self.in_use = 0
        self.peak_in_use = 0

    # -------------------- ENGINE --------------------

    async def _ensure_engine(self):
        if self._engine is not None:
            return self._engine

        async with self._engine_lock:
            if self._engine is not None:
                return self._engine

            if self._launch_error is not None:
                if self._clock() - self._launch_failed_at < self.launch_retry_interval:
                    raise BackendUnavailable(f"browser engine failed to start: {self._launch_error}")

            engine = self._engine_factory()
            try:
                await engine.start()
            except Exception as e:
                self._launch_error = e
                self._launch_failed_at = self._clock()
                log.error(f"[POOL] engine launch failed: {e}")
                raise BackendUnavailable(f"browser engine failed to start: {e}") from e

            self._launch_error = None
            self._engine = engine
            return engine

    # -------------------- SLOTS --------------------

    async def acquire(self, viewport: Viewport, timeout=_UNSET) -> RenderSlot:
        if self._closed:
            raise BackendUnavailable("render pool is shut down")

        timeout = self.acquire_timeout if timeout is _UNSET else timeout
        try:
            if timeout is None:
                await self._sem.acquire()
            else:
                await asyncio.wait_for(self._sem.acquire(), timeout)
        except asyncio.TimeoutError:
            raise BackendUnavailable(f"no render slot free after {timeout}s") from None

        # the permit goes back on every failure, cancellation included
        try:
            engine = await self._ensure_engine()
            session = await engine.new_session(viewport)
        except BackendUnavailable:
            self._sem.release()
            raise
        except Exception as e:
            self._sem.release()
            raise BackendUnavailable(f"could not open browser session: {e}") from e
        except BaseException:
            self._sem.release()
            raise

        self.in_use += 1
        self.peak_in_use = max(self.peak_in_use, self.in_use)
        return RenderSlot(self, session)

    async def release(self, slot: RenderSlot):
        if slot.released:
            return
        slot.released = True
        try:
            await slot.session.close()
        except Exception as e:
            log.warning(f"[POOL] session close failed: {e}")
        finally:
            self.in_use -= 1
            self._sem.release()

    @asynccontextmanager
    async def slot(self, viewport: Viewport, timeout=_UNSET):
        s = await self.acquire(viewport, timeout=timeout)
        try:
            yield s
        finally:
            await self.release(s)

    def stats(self) -> dict:
        return {"size": self.size, "in_use": self.in_use, "peak_in_use": self.peak_in_use}

    async def close(self):
        self._closed = True
        async with self._engine_lock:
            if self._engine is not None:
                engine, self._engine = self._engine, None
                await engine.close()
