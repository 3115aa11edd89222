"""
Core infrastructure layer
"""
from .constants import *
from .exceptions import *
from .logging import setup_logging, get_logger, get_stdout_console, get_stderr_console
from .interfaces import ConnectionFactory
from .waiter import Deadline, Direction, WaitResult, WouldBlock, Until, wait, retry, bounded
from .utils import (
    load_ssh_config,
    load_private_key,
    format_fingerprint,
    join_remote_path,
    require_path,
    file_type_name,
    mode_to_perm,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "get_stdout_console",
    "get_stderr_console",
    "ConnectionFactory",
    "Deadline",
    "Direction",
    "WaitResult",
    "WouldBlock",
    "Until",
    "wait",
    "retry",
    "bounded",
    "load_ssh_config",
    "load_private_key",
    "format_fingerprint",
    "join_remote_path",
    "require_path",
    "file_type_name",
    "mode_to_perm",
]
