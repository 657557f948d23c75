import logging
import os
import sys
from typing import TextIO

RED = "\033[0;31m"
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
BLUE = "\033[0;34m"
RESET = "\033[0m"

LEVEL_LABELS = {
    logging.DEBUG: ("DEBUG", BLUE),
    logging.INFO: ("INFO", GREEN),
    logging.WARNING: ("WARN", YELLOW),
    logging.ERROR: ("ERROR", RED),
    logging.CRITICAL: ("ERROR", RED),
}


class OperatorFormatter(logging.Formatter):
    """Render records as `[LEVEL] message`, optionally colorizing the label."""

    def __init__(self, *, use_color: bool = False):
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        label, color = LEVEL_LABELS.get(record.levelno, (record.levelname, ""))
        message = super().format(record)
        if self.use_color and color:
            return f"{color}[{label}]{RESET} {message}"
        return f"[{label}] {message}"


def stream_supports_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def configure_logging(verbose: bool = False, stream: TextIO | None = None) -> None:  # noqa: FBT001, FBT002
    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(OperatorFormatter(use_color=stream_supports_color(stream)))
    logger = logging.getLogger("keycloak_deploy")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
