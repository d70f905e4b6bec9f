import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000

    pool_size: int = 2
    acquire_timeout: Optional[float] = None  # None -> wait for a slot forever
    render_timeout: float = 30.0
    launch_retry_interval: float = 30.0
    browser_args: List[str] = field(
        default_factory=lambda: ["--no-sandbox", "--disable-setuid-sandbox"]
    )

    job_ttl: int = 3600
    job_store_url: str = "redis://localhost:6379/0"

    artifact_dir: str = "uploads"
    artifact_sweep_interval: float = 300.0

    app_env: str = "production"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def expose_errors(self) -> bool:
        return self.app_env == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        d = cls()
        args = os.getenv("BROWSER_ARGS")
        return cls(
            host=os.getenv("HOST", d.host),
            port=_env_int("PORT", d.port),
            pool_size=_env_int("POOL_SIZE", d.pool_size),
            acquire_timeout=_env_float("ACQUIRE_TIMEOUT", d.acquire_timeout),
            render_timeout=_env_float("RENDER_TIMEOUT", d.render_timeout),
            launch_retry_interval=_env_float("LAUNCH_RETRY_INTERVAL", d.launch_retry_interval),
            browser_args=[a.strip() for a in args.split(",") if a.strip()] if args is not None else d.browser_args,
            job_ttl=_env_int("JOB_TTL", d.job_ttl),
            job_store_url=os.getenv("JOB_STORE_URL", d.job_store_url),
            artifact_dir=os.getenv("ARTIFACT_DIR", d.artifact_dir),
            artifact_sweep_interval=_env_float("ARTIFACT_SWEEP_INTERVAL", d.artifact_sweep_interval),
            app_env=os.getenv("APP_ENV", d.app_env),
            log_level=os.getenv("LOG_LEVEL", d.log_level),
            log_file=os.getenv("LOG_FILE") or None,
        )
