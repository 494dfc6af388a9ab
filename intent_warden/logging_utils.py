from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

DEFAULT_LOG_PATH = ".orchestration/intent-warden.log"
PACKAGE_LOGGER = "intent_warden"

_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def parse_level(value: Any, default: int = logging.INFO) -> int:
    """Map ``debug``/``INFO``/``20``-style config values to a logging level."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text.upper())
    return level if isinstance(level, int) else default


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Attach the warden's handlers to the ``intent_warden`` logger.

    Only the package logger is touched, so a host that embeds the warden
    keeps its own root configuration; records still propagate to it.
    Denials, approvals and hook faults all land in one file next to the
    trace log, tagged with the thread so post-stage observer output
    (``warden-post-N``) can be told apart from the caller's. If the
    requested path is not writable we fall back to a file in the current
    working directory.

    Returns the actual file path being used.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    # A second call only adjusts the level.
    if getattr(logger, "_intent_warden_configured", False):
        return getattr(logger, "_intent_warden_log_path", log_path)

    chosen_path = log_path
    fmt = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    file_handler: Optional[logging.Handler] = None
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        fallback = str(Path.cwd() / "intent-warden.log")
        file_handler = logging.FileHandler(fallback, encoding="utf-8")
        chosen_path = fallback
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        console.setLevel(logging.WARNING)
        logger.addHandler(console)

    setattr(logger, "_intent_warden_configured", True)
    setattr(logger, "_intent_warden_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s, level=%s)",
        log_path,
        chosen_path,
        logging.getLevelName(level),
    )
    return chosen_path
