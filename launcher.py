import os
import signal
import subprocess
import sys
import time

from config import Settings
from logger import setup_logger


def build_command(settings: Settings) -> list:
    return [
        sys.executable, "-m", "uvicorn", "api.main:app",
        "--host", settings.host,
        "--port", str(settings.port),
    ]


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def run_renderer_service(settings: Settings = None) -> int:
    settings = settings or Settings.from_env()
    log = setup_logger(log_file=settings.log_file, level=settings.log_level)

    # SIGTERM (docker stop) takes the same path as Ctrl+C
    signal.signal(signal.SIGTERM, _raise_interrupt)

    log.info(f"[LAUNCHER] starting API on http://{settings.host}:{settings.port}")
    proc = subprocess.Popen(build_command(settings), stdout=None, stderr=None)

    exit_code = 0
    try:
        while True:
            time.sleep(1)
            code = proc.poll()
            if code is not None:
                log.error(f"[LAUNCHER] API process exited unexpectedly (exit code {code})")
                exit_code = code or 1
                break
    except KeyboardInterrupt:
        log.info("[LAUNCHER] shutdown signal received, stopping API")
    finally:
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=30)
            except subprocess.TimeoutExpired:
                log.warning(f"[LAUNCHER] API (PID {proc.pid}) did not stop in time, killing it")
                proc.kill()
                proc.wait()

    log.info("[LAUNCHER] stopped")
    return exit_code


if __name__ == "__main__":
    os.chdir(os.path.dirname(os.path.abspath(__file__)))
    sys.exit(run_renderer_service())
