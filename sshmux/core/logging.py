"""
Logging for sshmux

Every module logs through ``get_logger(__name__)``, i.e. below the "sshmux"
logger. The package only attaches a NullHandler; applications (and the CLI)
call ``setup_logging()`` to get Rich output on stderr and an optional file.
"""
import logging
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "sshmux"

# Thread name matters: channels of one session are driven from several threads
FILE_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"

# paramiko logs every packet type at DEBUG
_NOISY_LOGGERS = ("paramiko", "paramiko.transport", "paramiko.transport.sftp")

# Consoles look up sys.stdout/sys.stderr on every write, so redirection
# (pytest capture, contextlib.redirect_stdout) is honoured
_stdout_console = Console()
_stderr_console = Console(stderr=True)

# Handlers added by setup_logging(), removed again on the next call
_installed: List[logging.Handler] = []

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    rich_tracebacks: bool = True,
    quiet_paramiko: bool = True,
) -> None:
    """
    Route log records to a Rich handler on stderr (and optionally a file).

    Calling it again replaces the handlers of the previous call; handlers
    that something else installed on the root logger are left alone.

    Args:
        level: Logging level name; unknown names fall back to INFO
        log_file: Also append records to this file
        rich_tracebacks: Render exception tracebacks with Rich
        quiet_paramiko: Keep paramiko's loggers at WARNING or above
    """
    log_level = _parse_level(level)
    root_logger = logging.getLogger()

    while _installed:
        handler = _installed.pop()
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    console_handler = RichHandler(
        console=_stderr_console,
        level=log_level,
        show_path=log_level <= logging.DEBUG,
        rich_tracebacks=rich_tracebacks,
        markup=False,
    )
    _installed.append(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        _installed.append(file_handler)

    for handler in _installed:
        root_logger.addHandler(handler)

    noisy_level = max(log_level, logging.WARNING) if quiet_paramiko else logging.NOTSET
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass ``__name__``"""
    return logging.getLogger(name)


def get_stdout_console() -> Console:
    """Console for user-facing output (command results, listings)"""
    return _stdout_console


def get_stderr_console() -> Console:
    """Console for errors, progress and log records"""
    return _stderr_console
