import unittest
from unittest.mock import AsyncMock, patch

from client import RendererClient


class TestRendererClient(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.client = RendererClient("http://renderer:3000/")

    async def test_base_url_is_normalised(self):
        self.assertEqual(self.client.base_url, "http://renderer:3000")

    async def test_render_calls_post_expected_bodies(self):
        with patch.object(self.client, "_request", AsyncMock(return_value={"success": True})) as req:
            await self.client.render_html("<p>x</p>", {"width": 400})
            req.assert_awaited_with("POST", "/render", {"html": "<p>x</p>", "options": {"width": 400}})

            await self.client.render_url("https://example.com")
            req.assert_awaited_with("POST", "/render-url", {"url": "https://example.com", "options": {}})

            await self.client.render_async("<p>x</p>")
            req.assert_awaited_with("POST", "/render-async", {"html": "<p>x</p>", "options": {}})

            await self.client.get_job_status("abc")
            req.assert_awaited_with("GET", "/render-async/abc")

    async def test_wait_for_job_returns_terminal_record(self):
        states = [{"status": "pending"}, {"status": "processing"}, {"status": "completed", "size": 10}]
        with patch.object(self.client, "_request", AsyncMock(side_effect=states)) as req:
            job = await self.client.wait_for_job("abc", interval=0)

        self.assertEqual(job, {"status": "completed", "size": 10})
        self.assertEqual(req.await_count, 3)

    async def test_wait_for_job_returns_failed_too(self):
        with patch.object(self.client, "_request", AsyncMock(return_value={"status": "failed", "error": "x"})):
            job = await self.client.wait_for_job("abc", interval=0)
        self.assertEqual(job["status"], "failed")

    async def test_wait_for_job_gives_up(self):
        with patch.object(self.client, "_request", AsyncMock(return_value={"status": "processing"})) as req:
            with self.assertRaises(TimeoutError):
                await self.client.wait_for_job("abc", interval=0, max_attempts=4)
        self.assertEqual(req.await_count, 4)


if __name__ == "__main__":
    unittest.main()
