"""
Updater console output: rich log lines, an optional plain-text log file
and the install progress bar. All of it goes through one Console so the
bar and log lines do not tear each other.
"""

import logging
from pathlib import Path
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TransferSpeedColumn,
)

console = Console(stderr=True)

FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_loggers = []


def setup_logger(name: str = "PatchClient") -> logging.Logger:
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = RichHandler(console=console, show_time=True, show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    if logger not in _loggers:
        _loggers.append(logger)

    return logger


def set_debug_mode(enabled: bool):
    level = logging.DEBUG if enabled else logging.INFO
    for logger in _loggers:
        logger.setLevel(level)


def attach_log_file(path: Path) -> logging.FileHandler:
    """
    Mirror every client logger into a plain-text file, so a failed update
    on a player's machine leaves something to send back.
    Returns the handler; pass it to detach_log_file when done.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    for logger in _loggers:
        logger.addHandler(handler)
    return handler


def detach_log_file(handler: logging.FileHandler):
    for logger in _loggers:
        if handler in logger.handlers:
            logger.removeHandler(handler)
    handler.close()


def install_progress() -> Progress:
    """Transient progress bar sized in bytes; tasks carry a filename field."""
    return Progress(
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(bar_width=40, complete_style="bold #85FF52", finished_style="bold #85FF52"),
        TaskProgressColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TextColumn("[bold yellow]{task.fields[filename]}"),
        console=console,
        transient=True,
    )
