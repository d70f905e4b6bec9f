import logging
import sys
from datetime import datetime, timezone

ROOT_LOGGER = "renderer"


class ServiceFormatter(logging.Formatter):
    """
    [ 2026-01-06 05:32:41 UTC ] : INFO : <job or request id> : Message
    """

    def format(self, record):
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        context = getattr(record, "context", "service")
        line = f"[ {ts} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logger(name: str = ROOT_LOGGER, log_file=None, level=logging.INFO) -> logging.Logger:
    """Sets up the service logger; module loggers from get_logger() propagate to it."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers when the app is created more than once.
    if logger.handlers:
        return logger

    logger.propagate = False
    formatter = ServiceFormatter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        fh = logging.FileHandler(log_file)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def ctx(job_id: str) -> dict:
    return {"context": job_id}
