import asyncio
from typing import Optional

import aiofiles
import aiohttp

TERMINAL_STATES = ("completed", "failed")


class RendererClientError(Exception):
    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class RendererClient:
    """
    Async client for the renderer service.

        async with RendererClient("http://localhost:3000") as rc:
            job = await rc.render_async("<h1>hi</h1>", {"width": 400, "height": 300})
            done = await rc.wait_for_job(job["jobId"])
    """

    def __init__(self, base_url: str = "http://localhost:3000", timeout_s: int = 60):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def _request(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        await self.open()
        async with self._session.request(method, f"{self.base_url}{path}", json=body) as resp:
            try:
                payload = await resp.json(content_type=None)
            except ValueError:
                text = await resp.text()
                raise RendererClientError(f"Invalid JSON response: {text[:200]}", resp.status)

            if resp.status >= 400:
                msg = (payload or {}).get("error") or f"HTTP {resp.status}"
                raise RendererClientError(msg, resp.status)
            return payload

    # -------------------- RENDER --------------------

    async def render_html(self, html: str, options: Optional[dict] = None) -> dict:
        return await self._request("POST", "/render", {"html": html, "options": options or {}})

    async def render_url(self, url: str, options: Optional[dict] = None) -> dict:
        return await self._request("POST", "/render-url", {"url": url, "options": options or {}})

    async def render_async(self, html: str, options: Optional[dict] = None) -> dict:
        return await self._request("POST", "/render-async", {"html": html, "options": options or {}})

    # -------------------- JOBS --------------------

    async def get_job_status(self, job_id: str) -> dict:
        return await self._request("GET", f"/render-async/{job_id}")

    async def wait_for_job(self, job_id: str, interval: float = 1.0, max_attempts: int = 10) -> dict:
        """Polls until the job is completed or failed; raises TimeoutError otherwise."""
        for attempt in range(max_attempts):
            job = await self.get_job_status(job_id)
            if job.get("status") in TERMINAL_STATES:
                return job
            if attempt + 1 < max_attempts:
                await asyncio.sleep(interval)
        raise TimeoutError(f"job {job_id} not finished after {max_attempts} polls")

    async def download_image(self, job_id: str, output_path: str) -> int:
        await self.open()
        async with self._session.get(f"{self.base_url}/download/{job_id}") as resp:
            if resp.status != 200:
                raise RendererClientError(f"Failed to download: {resp.status}", resp.status)
            data = await resp.read()

        async with aiofiles.open(output_path, "wb") as f:
            await f.write(data)
        return len(data)

    # -------------------- SERVICE --------------------

    async def health(self) -> dict:
        return await self._request("GET", "/health")

    async def status(self) -> dict:
        return await self._request("GET", "/status")
