"""
Logging configuration for fleettop.

Provides the same line format for the dashboard and the host agent.
"""

import logging
import sys
from pathlib import Path

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    component_name: str,
    level: int | str = logging.INFO,
    log_file: str | None = None,
    console: bool = True,
    handlers: list[logging.Handler] | None = None,
) -> logging.Logger:
    """
    Configure the root logger for a fleettop component.

    Args:
        component_name: Component identifier (e.g. 'dashboard', 'agent').
        level: Logging level name or number.
        log_file: Optional file path for log output.
        console: Whether to log to stdout. The dashboard turns this off so
            log lines do not draw over the terminal UI.
        handlers: Extra handlers to attach, such as Textual's TextualHandler.
    """
    format_string = f"[%(asctime)s] [{component_name.upper()}] %(levelname)s %(name)s - %(message)s"
    formatter = logging.Formatter(format_string, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)

    all_handlers: list[logging.Handler] = list(handlers or [])
    if console:
        all_handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        all_handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in all_handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)

    # Suppress chatty third-party loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    logger = logging.getLogger(f"fleettop.{component_name}")
    logger.debug("Logging initialized (level=%s)", logging.getLevelName(root.level))
    return logger
