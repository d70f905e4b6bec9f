import asyncio
from typing import Dict, Optional, Set

from db.job_store import JobStore
from errors import RenderTimeoutError, describe_error
from logger import ctx, get_logger
from models import Artifact, JobRecord, JobState, RenderSpec
from renderer.pool import RenderPool
from storage.artifact_store import ArtifactStore
from utils import new_job_id, utc_now_iso

log = get_logger("dispatcher")

DEFAULT_JOB_TTL = 3600


class JobDispatcher:
    """
    Turns render specs into tracked jobs.

    submit() writes the pending record before handing out the id and spawns
    one task per job; tasks only contend on the pool. A job is written by
    its own task only: the task claims the id when it writes `processing`
    and gives the claim up with the single terminal write.
    """

    def __init__(
        self,
        pool: RenderPool,
        store: JobStore,
        artifacts: ArtifactStore,
        *,
        job_ttl: int = DEFAULT_JOB_TTL,
        render_timeout: Optional[float] = 30.0,
        expose_errors: bool = False,
    ):
        self.pool = pool
        self.store = store
        self.artifacts = artifacts
        self.job_ttl = job_ttl
        self.render_timeout = render_timeout
        self.expose_errors = expose_errors

        self._tasks: Set[asyncio.Task] = set()
        self._claimed: Dict[str, JobRecord] = {}
        self._accepting = True

    # -------------------- SYNC PATH --------------------

    async def render_now(self, spec: RenderSpec, request_id: str = "") -> Artifact:
        log.info(f"[RENDER] {spec.source} -> {spec.format} {spec.viewport.width}x{spec.viewport.height}",
                 extra=ctx(request_id or "sync"))
        async with self.pool.slot(spec.viewport) as slot:
            data = await self._render(slot, spec)
        log.info(f"[RENDER] done size={len(data)} bytes", extra=ctx(request_id or "sync"))
        return Artifact(
            data=data,
            content_type=spec.content_type,
            format=spec.format,
            width=spec.viewport.width,
            height=spec.viewport.height,
        )

    async def _render(self, slot, spec: RenderSpec) -> bytes:
        if self.render_timeout is None:
            return await slot.render(spec)
        try:
            return await asyncio.wait_for(slot.render(spec), self.render_timeout)
        except asyncio.TimeoutError:
            raise RenderTimeoutError(f"render timed out after {self.render_timeout}s") from None

    # -------------------- ASYNC PATH --------------------

    async def submit(self, spec: RenderSpec) -> str:
        if not self._accepting:
            raise RuntimeError("dispatcher is shutting down")

        job_id = new_job_id()
        record = JobRecord.pending(job_id, spec, created_at=utc_now_iso())
        await self.store.put(job_id, record.to_dict(), self.job_ttl)

        task = asyncio.create_task(self._execute(record, spec), name=f"render-job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        log.info(f"[JOB] queued {spec.source} -> {spec.format}", extra=ctx(job_id))
        return job_id

    async def _write(self, record: JobRecord):
        await self.store.put(record.job_id, record.to_dict(), self.job_ttl)

    async def _claim(self, record: JobRecord) -> JobRecord:
        if record.job_id in self._claimed:
            raise RuntimeError(f"job {record.job_id} is already being processed")
        processing = record.advance(JobState.PROCESSING, started_at=utc_now_iso())
        await self._write(processing)
        # claimed only once `processing` is stored
        self._claimed[record.job_id] = processing
        return processing

    async def _finish(self, job_id: str, state: JobState, **changes):
        # pop() makes a second terminal write for the same job impossible
        current = self._claimed.pop(job_id)
        await self._write(current.advance(state, **changes))

    async def _execute(self, record: JobRecord, spec: RenderSpec):
        job_id = record.job_id
        try:
            await self._claim(record)
        except Exception as e:
            log.error(f"[JOB] could not mark processing: {e}", extra=ctx(job_id))
            return

        try:
            async with self.pool.slot(spec.viewport) as slot:
                log.info("[JOB] rendering", extra=ctx(job_id))
                data = await self._render(slot, spec)
            await self.artifacts.save(job_id, spec.format, data)

        except asyncio.CancelledError:
            log.warning("[JOB] interrupted by shutdown", extra=ctx(job_id))
            await self._fail_quietly(job_id, "interrupted by shutdown")
            raise

        except Exception as e:
            message = describe_error(e, self.expose_errors)
            log.error(f"[JOB] failed: {e}", extra=ctx(job_id))
            await self._fail_quietly(job_id, message)
            return

        try:
            await self._finish(
                job_id,
                JobState.COMPLETED,
                completed_at=utc_now_iso(),
                size=len(data),
                content_type=spec.content_type,
                download_url=f"/download/{job_id}",
            )
        except Exception as e:
            log.error(f"[JOB] could not record completion: {e}", extra=ctx(job_id))
            return
        log.info(f"[JOB] completed size={len(data)} bytes", extra=ctx(job_id))

    async def _fail_quietly(self, job_id: str, message: str):
        try:
            await self._finish(job_id, JobState.FAILED, failed_at=utc_now_iso(), error=message)
        except Exception as e:
            # job stays `processing` until its TTL runs out
            log.error(f"[JOB] could not record failure: {e}", extra=ctx(job_id))

    # -------------------- LIFECYCLE --------------------

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def join(self):
        """Wait until every submitted job has reached a terminal write."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: Optional[float] = 10.0):
        self._accepting = False
        if not self._tasks:
            return

        pending = list(self._tasks)
        log.info(f"[DISPATCHER] waiting for {len(pending)} job(s)")
        _, still_running = await asyncio.wait(pending, timeout=timeout)

        for t in still_running:
            t.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
