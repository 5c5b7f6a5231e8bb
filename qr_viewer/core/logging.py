"""
Logging

structlog on top of stdlib logging, one JSON object per line (coloured
console output for local runs). Anything logged while a detection runs
carries the upload id and stage it belongs to.

    {"event": "detection_completed", "upload_id": "550e8400-...", "stage": "detection",
     "service": "qr-upload-viewer", "version": "1.0.0", "level": "info",
     "timestamp": "2024-05-20T10:00:00.000000Z", "codes_found": 1}
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog

upload_id_var: ContextVar[Optional[str]] = ContextVar("upload_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

SERVICE_NAME = "qr-upload-viewer"

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "PIL", "asyncio", "multipart")


class ServiceContext:
    """structlog processor adding service identity and the active upload."""

    def __init__(self, version: str):
        self.version = version

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict["service"] = SERVICE_NAME
        event_dict["version"] = self.version

        upload_id = upload_id_var.get()
        if upload_id:
            event_dict.setdefault("upload_id", upload_id)
        stage = stage_var.get()
        if stage:
            event_dict.setdefault("stage", stage)
        return event_dict


def setup_logging(log_level: str = "INFO", json_format: bool = True, app_version: str = "1.0.0"):
    """
    Configure stdlib logging and structlog once per process.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_format: JSON lines when True, coloured console output otherwise
        app_version: Version stamped on every entry
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            ServiceContext(app_version),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def log_context(upload_id: Optional[str] = None, stage: Optional[str] = None) -> Iterator[None]:
    """Attach upload_id and stage to every entry logged inside the block."""
    tokens = []
    if upload_id:
        tokens.append((upload_id_var, upload_id_var.set(upload_id)))
    if stage:
        tokens.append((stage_var, stage_var.set(stage)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
