import os
import time
from typing import Optional

import aiofiles
import aiofiles.os

from logger import get_logger
from utils import file_extension

log = get_logger("artifacts")


def _safe_job_id(job_id: str) -> str:
    # job ids are uuids; anything with path separators never maps to a file
    if not job_id or "/" in job_id or "\\" in job_id or job_id.startswith("."):
        raise ValueError(f"invalid job id: {job_id!r}")
    return job_id


class ArtifactStore:
    def __init__(self, base_dir: str = "uploads"):
        self.base_dir = base_dir

    def ensure_dirs(self):
        os.makedirs(self.base_dir, exist_ok=True)

    def path_for(self, job_id: str, fmt: str) -> str:
        return os.path.join(self.base_dir, f"{_safe_job_id(job_id)}.{file_extension(fmt)}")

    async def save(self, job_id: str, fmt: str, data: bytes) -> str:
        self.ensure_dirs()
        path = self.path_for(job_id, fmt)
        tmp_path = f"{path}.part"

        # write then rename: a reader never sees a half-written image
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(tmp_path, path)
        return path

    async def load(self, job_id: str, fmt: str) -> Optional[bytes]:
        try:
            path = self.path_for(job_id, fmt)
        except ValueError:
            return None
        if not os.path.exists(path):
            return None
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def purge_older_than(self, max_age_s: float) -> int:
        if not os.path.isdir(self.base_dir):
            return 0

        cutoff = time.time() - max_age_s
        removed = 0
        for name in os.listdir(self.base_dir):
            path = os.path.join(self.base_dir, name)
            try:
                if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                    await aiofiles.os.remove(path)
                    removed += 1
            except FileNotFoundError:
                pass

        if removed:
            log.info(f"[STORE] purged {removed} expired artifact(s) from {self.base_dir}")
        return removed
