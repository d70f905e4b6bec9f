from dataclasses import dataclass, replace, asdict
from enum import Enum
from typing import Optional

from errors import InvalidTransition


SUPPORTED_FORMATS = ("png", "jpeg")
FORMAT_ALIASES = {"jpg": "jpeg"}


class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# pending -> processing -> {completed | failed}
_NEXT_STATES = {
    JobState.PENDING: {JobState.PROCESSING},
    JobState.PROCESSING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int


@dataclass(frozen=True)
class RenderSpec:
    content: str
    viewport: Viewport
    source: str = "html"  # "html" | "url"
    format: str = "png"
    wait_for_ms: int = 0

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"

    @property
    def is_url(self) -> bool:
        return self.source == "url"


@dataclass
class Artifact:
    data: bytes
    content_type: str
    format: str
    width: int
    height: int
    size: int = 0

    def __post_init__(self):
        if not self.size:
            self.size = len(self.data)


# dataclass field -> wire key
_WIRE_KEYS = {
    "job_id": "jobId",
    "state": "status",
    "created_at": "createdAt",
    "started_at": "startedAt",
    "completed_at": "completedAt",
    "failed_at": "failedAt",
    "source": "source",
    "format": "format",
    "width": "width",
    "height": "height",
    "size": "size",
    "content_type": "contentType",
    "download_url": "downloadUrl",
    "error": "error",
}


@dataclass(frozen=True)
class JobRecord:
    job_id: str
    state: JobState
    created_at: str

    source: str = "html"
    format: str = "png"
    width: int = 0
    height: int = 0

    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None

    size: Optional[int] = None
    content_type: Optional[str] = None
    download_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def pending(cls, job_id: str, spec: RenderSpec, created_at: str) -> "JobRecord":
        return cls(
            job_id=job_id,
            state=JobState.PENDING,
            created_at=created_at,
            source=spec.source,
            format=spec.format,
            width=spec.viewport.width,
            height=spec.viewport.height,
        )

    def advance(self, state: JobState, **changes) -> "JobRecord":
        if state not in _NEXT_STATES[self.state]:
            raise InvalidTransition(
                f"job {self.job_id}: {self.state.value} -> {state.value} is not allowed"
            )
        changes.pop("created_at", None)
        return replace(self, state=state, **changes)

    def to_dict(self) -> dict:
        out = {}
        for name, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, JobState):
                value = value.value
            out[_WIRE_KEYS[name]] = value
        return out

    @classmethod
    def from_dict(cls, raw: dict) -> "JobRecord":
        by_wire = {v: k for k, v in _WIRE_KEYS.items()}
        kwargs = {by_wire[k]: v for k, v in raw.items() if k in by_wire}
        kwargs["state"] = JobState(kwargs["state"])
        return cls(**kwargs)
