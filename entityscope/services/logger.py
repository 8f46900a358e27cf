"""Centralized logging service using loguru."""

import logging
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from entityscope.config import settings

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "asyncio",
)


def configure_logging(*, level: str | None = None, log_dir: str | None = None) -> None:
    """Install console and file handlers. Called by hosts, never by the engine."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[run_id]}</cyan> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=(level or settings.app_log_level).upper(),
        colorize=True,
    )

    directory = log_dir if log_dir is not None else settings.log_dir
    if directory:
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / "entityscope_{time:YYYY-MM-DD}.log",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[run_id]} | {name}:{function}:{line} - {message}",
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
        )
    logger.configure(extra={"run_id": "-"})

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


@dataclass(frozen=True)
class RunLog:
    """Logging handle for one run, passed explicitly to each component.

    ``verbose`` decides whether progress goes out at INFO or DEBUG.
    Failures are always WARNING.
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    verbose: bool = False

    @property
    def logger(self):
        return logger.bind(run_id=self.run_id)

    def progress(self, message: str) -> None:
        self.logger.log("INFO" if self.verbose else "DEBUG", message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)


def log_run_step(
    run: RunLog,
    step_type: str,
    status: str,
    data: Optional[dict[str, Any]] = None,
) -> None:
    """Log a pipeline step."""
    step_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "run_id": run.run_id,
        "step_type": step_type,
        "status": status,
        "data": data,
    }
    if status == "failed":
        run.logger.error(f"RUN_STEP_FAILED: {step_data}")
    elif run.verbose:
        run.logger.info(f"RUN_STEP: {step_data}")
    else:
        run.logger.debug(f"RUN_STEP: {step_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
