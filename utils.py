import uuid
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from errors import InputError
from models import FORMAT_ALIASES, SUPPORTED_FORMATS, RenderSpec, Viewport


DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_FORMAT = "png"
DEFAULT_WAIT_HTML_MS = 1000
DEFAULT_WAIT_URL_MS = 2000


def new_job_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_format(fmt: Optional[str]) -> str:
    f = (fmt or DEFAULT_FORMAT).strip().lower()
    f = FORMAT_ALIASES.get(f, f)
    if f not in SUPPORTED_FORMATS:
        raise InputError(f"Unsupported format '{fmt}' (expected one of: {', '.join(SUPPORTED_FORMATS)})")
    return f


def file_extension(fmt: str) -> str:
    return "jpg" if fmt == "jpeg" else fmt


def _is_http_url(url: str) -> bool:
    p = urlparse(url)
    return p.scheme in ("http", "https") and bool(p.netloc)


def build_spec(
    content: Optional[str],
    *,
    source: str = "html",
    width: Optional[int] = None,
    height: Optional[int] = None,
    fmt: Optional[str] = None,
    wait_for: Optional[int] = None,
) -> RenderSpec:
    """Validate raw request values and apply the per-source defaults."""
    if not content:
        raise InputError("HTML content is required" if source == "html" else "URL is required")

    if source == "url" and not _is_http_url(content):
        raise InputError("URL must be an absolute http(s) URL")

    width = DEFAULT_WIDTH if width is None else int(width)
    height = DEFAULT_HEIGHT if height is None else int(height)
    if width <= 0 or height <= 0:
        raise InputError("width and height must be positive integers")

    if wait_for is None:
        wait_for = DEFAULT_WAIT_URL_MS if source == "url" else DEFAULT_WAIT_HTML_MS
    wait_for = int(wait_for)
    if wait_for < 0:
        raise InputError("waitFor must be >= 0")

    return RenderSpec(
        content=content,
        viewport=Viewport(width=width, height=height),
        source=source,
        format=normalize_format(fmt),
        wait_for_ms=wait_for,
    )
