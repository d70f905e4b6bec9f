import asyncio
import base64
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from api.gateway import JobGateway
from config import Settings
from db.job_store import JobStore, open_job_store
from errors import InputError, JobNotFound, describe_error
from logger import ctx, get_logger, setup_logger
from models import Artifact
from renderer.engine import PlaywrightEngine
from renderer.pool import RenderPool
from storage.artifact_store import ArtifactStore
from utils import build_spec, new_job_id, utc_now_iso
from workers.dispatcher import JobDispatcher

SERVICE_NAME = "Playwright HTML Renderer"

log = get_logger("api")


class RenderOptions(BaseModel):
    width: int | None = None
    height: int | None = None
    format: str | None = None
    waitFor: int | None = None


class RenderRequest(BaseModel):
    html: str | None = None
    options: RenderOptions | None = None


class RenderUrlRequest(BaseModel):
    url: str | None = None
    options: RenderOptions | None = None


def _spec_from(content: str | None, source: str, options: RenderOptions | None):
    o = options or RenderOptions()
    return build_spec(content, source=source, width=o.width, height=o.height, fmt=o.format, wait_for=o.waitFor)


def _artifact_payload(artifact: Artifact, request_id: str) -> dict:
    return {
        "imageBase64": base64.b64encode(artifact.data).decode("ascii"),
        "contentType": artifact.content_type,
        "size": artifact.size,
        "format": artifact.format,
        "width": artifact.width,
        "height": artifact.height,
        "requestId": request_id,
    }


def _render_failure(title: str, exc: Exception, settings: Settings) -> JSONResponse:
    return JSONResponse({"error": title, "message": describe_error(exc, settings.expose_errors)}, status_code=500)


async def sweep_expired(store: JobStore, artifacts: ArtifactStore, job_ttl: float, interval_s: float):
    """One pass: drop dead job records, then image files whose record is surely gone."""
    try:
        purged = await store.purge_expired()
        if purged:
            log.info(f"[API] purged {purged} expired job record(s)")
    except Exception as e:
        log.warning(f"[API] job record sweep failed: {e}")

    # a file is written just before its `completed` record, so keep it one
    # extra sweep interval past the TTL
    try:
        await artifacts.purge_older_than(job_ttl + interval_s)
    except Exception as e:
        log.warning(f"[API] artifact sweep failed: {e}")


async def _sweep_loop(store: JobStore, artifacts: ArtifactStore, job_ttl: float, interval_s: float):
    while True:
        await sweep_expired(store, artifacts, job_ttl, interval_s)
        await asyncio.sleep(interval_s)


def create_app(
    settings: Optional[Settings] = None,
    engine_factory: Optional[Callable] = None,
    job_store: Optional[JobStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if engine_factory is None:
        def engine_factory():
            return PlaywrightEngine(browser_args=settings.browser_args)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logger(log_file=settings.log_file, level=settings.log_level)

        store = job_store if job_store is not None else open_job_store(settings.job_store_url)
        await store.connect()

        artifacts = ArtifactStore(settings.artifact_dir)
        artifacts.ensure_dirs()

        pool = RenderPool(
            engine_factory,
            size=settings.pool_size,
            acquire_timeout=settings.acquire_timeout,
            launch_retry_interval=settings.launch_retry_interval,
        )
        dispatcher = JobDispatcher(
            pool,
            store,
            artifacts,
            job_ttl=settings.job_ttl,
            render_timeout=settings.render_timeout,
            expose_errors=settings.expose_errors,
        )

        app.state.settings = settings
        app.state.pool = pool
        app.state.dispatcher = dispatcher
        app.state.gateway = JobGateway(store, artifacts)

        sweeper = None
        if settings.artifact_sweep_interval > 0:
            sweeper = asyncio.create_task(
                _sweep_loop(store, artifacts, settings.job_ttl, settings.artifact_sweep_interval)
            )

        log.info(f"[API] {SERVICE_NAME} ready (pool={settings.pool_size}, ttl={settings.job_ttl}s)")
        try:
            yield
        finally:
            log.info("[API] shutting down")
            if sweeper is not None:
                sweeper.cancel()
                await asyncio.gather(sweeper, return_exceptions=True)
            await dispatcher.shutdown()
            await pool.close()
            await store.close()

    app = FastAPI(title="HTML Renderer API", lifespan=lifespan)

    # -------------------- ERRORS --------------------

    @app.exception_handler(InputError)
    async def input_error(request: Request, exc: InputError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        body = {"error": "Invalid request body"}
        if settings.expose_errors:
            body["details"] = jsonable_encoder(exc.errors())
        return JSONResponse(body, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        log.exception(f"[API] unhandled error on {request.url.path}")
        body = {"error": "Internal server error"}
        if settings.expose_errors:
            body["message"] = str(exc)
        return JSONResponse(body, status_code=500)

    # -------------------- SERVICE --------------------

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": utc_now_iso()}

    @app.get("/status")
    async def status(request: Request):
        return {
            "status": "running",
            "service": SERVICE_NAME,
            "timestamp": utc_now_iso(),
            "pool": request.app.state.pool.stats(),
            "activeJobs": request.app.state.dispatcher.active_jobs,
        }

    # -------------------- SYNC RENDER --------------------

    @app.post("/render")
    async def render_html(req: RenderRequest, request: Request):
        spec = _spec_from(req.html, "html", req.options)
        request_id = new_job_id()
        try:
            artifact = await request.app.state.dispatcher.render_now(spec, request_id)
        except Exception as e:
            log.error(f"[API] render failed: {e}", extra=ctx(request_id))
            return _render_failure("Failed to render HTML", e, settings)
        return {"success": True, "data": _artifact_payload(artifact, request_id)}

    @app.post("/render-url")
    async def render_url(req: RenderUrlRequest, request: Request):
        spec = _spec_from(req.url, "url", req.options)
        request_id = new_job_id()
        try:
            artifact = await request.app.state.dispatcher.render_now(spec, request_id)
        except Exception as e:
            log.error(f"[API] url render failed: {e}", extra=ctx(request_id))
            return _render_failure("Failed to render URL", e, settings)
        data = _artifact_payload(artifact, request_id)
        data["url"] = spec.content
        return {"success": True, "data": data}

    # -------------------- ASYNC JOBS --------------------

    @app.post("/render-async")
    async def render_async(req: RenderRequest, request: Request):
        spec = _spec_from(req.html, "html", req.options)
        try:
            job_id = await request.app.state.dispatcher.submit(spec)
        except Exception as e:
            log.error(f"[API] could not queue job: {e}")
            return JSONResponse({"error": "Failed to queue render job"}, status_code=500)
        return {"success": True, "jobId": job_id, "statusUrl": f"/render-async/{job_id}"}

    @app.get("/render-async/{job_id}")
    async def job_status(job_id: str, request: Request):
        try:
            return await request.app.state.gateway.get_status(job_id)
        except JobNotFound:
            return JSONResponse({"error": "Job not found or expired"}, status_code=404)
        except Exception as e:
            log.error(f"[API] status lookup failed: {e}", extra=ctx(job_id))
            return JSONResponse({"error": "Failed to get job status"}, status_code=500)

    @app.get("/download/{job_id}")
    async def download(job_id: str, request: Request):
        try:
            data, content_type, filename = await request.app.state.gateway.download(job_id)
        except JobNotFound:
            return JSONResponse({"error": "Image not found"}, status_code=404)
        except Exception as e:
            log.error(f"[API] download failed: {e}", extra=ctx(job_id))
            return JSONResponse({"error": "Failed to download image"}, status_code=500)
        return Response(
            content=data,
            media_type=content_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


app = create_app()
