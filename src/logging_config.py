"""JSON structured logging for the API server and the CLI."""

import logging
import sys
from typing import TextIO

from pythonjsonlogger.json import JsonFormatter

# SDK loggers that emit a line per HTTP request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "google_genai", "firecrawl")


def setup_logging(log_level: str = "INFO", stream: TextIO | None = None) -> None:
    """Send every log record as one JSON object per line to *stream* (stdout by default).

    The CLI passes stderr so its own progress output on stdout stays readable.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={
            "asctime": "timestamp",
            "levelname": "level",
            "name": "logger",
        },
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.addHandler(handler)
        uv_logger.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
