from typing import Tuple

from db.job_store import JobStore
from errors import JobNotFound
from models import JobRecord, JobState
from storage.artifact_store import ArtifactStore
from utils import file_extension


class JobGateway:
    """Read side: status projection and artifact download, never writes."""

    def __init__(self, store: JobStore, artifacts: ArtifactStore):
        self.store = store
        self.artifacts = artifacts

    async def get_record(self, job_id: str) -> JobRecord:
        return JobRecord.from_dict(await self.store.get(job_id))

    async def get_status(self, job_id: str) -> dict:
        return (await self.get_record(job_id)).to_dict()

    async def download(self, job_id: str) -> Tuple[bytes, str, str]:
        """
        Returns (bytes, content_type, filename). Unknown, expired, unfinished
        and failed jobs all raise the same JobNotFound.
        """
        record = await self.get_record(job_id)
        if record.state is not JobState.COMPLETED:
            raise JobNotFound(job_id)

        data = await self.artifacts.load(job_id, record.format)
        if data is None:
            raise JobNotFound(job_id)

        content_type = record.content_type or f"image/{record.format}"
        return data, content_type, f"rendered-{job_id}.{file_extension(record.format)}"
