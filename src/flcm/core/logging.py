"""Centralized logging configuration for FLCM."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Final

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["console", "setup_logging"]

_MANAGED_ATTR: Final[str] = "_flcm_managed"
_FILE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

console = Console(stderr=True)


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, level.upper(), logging.INFO)


def setup_logging(level: str | int = "INFO", log_file: Path | None = None, *, rich: bool = True) -> None:
    """Configure the root logger once.

    Calling it again replaces the handlers it installed earlier and leaves
    foreign handlers alone.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _MANAGED_ATTR, False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = []
    if rich:
        console_handler: logging.Handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    handlers.append(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        setattr(handler, _MANAGED_ATTR, True)
        root_logger.addHandler(handler)
    root_logger.setLevel(_resolve_level(level))

    # Quieten down noisy libraries
    logging.getLogger("pydantic").setLevel(logging.WARNING)
    logging.getLogger("markdown_it").setLevel(logging.WARNING)
    logging.captureWarnings(True)
