import logging
from rich.logging import RichHandler
from rich.console import Console
from rich.theme import Theme

custom_theme = Theme({
    "logging.level.debug": "cyan",
    "logging.level.info": "bold #FFFFFF on #61AD00",
    "logging.level.warning": "bold #FFFFFF on #DB6900",
    "logging.level.error": "bold #FFFFFF on #d70000",
    "logging.level.critical": "bold #FFFFFF on red",
    "log.time": "#A3A3A3",
})

console = Console(theme=custom_theme, stderr=True)

# Keep track of loggers to update levels dynamically
_loggers: list[logging.Logger] = []


def setup_logger(name: str = "PatchServer") -> logging.Logger:
    """
    Setup a server logger rendered through RichHandler.
    Names follow the "PatchServer.<Component>" convention.
    """
    logger = logging.getLogger(name)

    # Avoid adding duplicate handlers
    if not logger.handlers:
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            omit_repeated_times=False,
            show_path=False,
            markup=False,
            enable_link_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    # Keep propagation on so pytest's caplog still sees records
    logger.propagate = True

    if logger not in _loggers:
        _loggers.append(logger)

    return logger


def set_log_level(level: str | int):
    """Apply a level (name or number) to every registered logger."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    for logger in _loggers:
        logger.setLevel(level)
