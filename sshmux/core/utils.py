"""
Core utility functions
"""
import posixpath
import stat
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import paramiko

from .constants import SSH_CONFIG_PATH, DEFAULT_SSH_PORT
from .exceptions import ConfigError, AuthError
from .logging import get_logger

logger = get_logger(__name__)


# ============================================================
# SSH Config Management
# ============================================================

def load_ssh_config(hostname: str, config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration for specified Host from ~/.ssh/config.

    Args:
        hostname: Host name in SSH configuration
        config_path: Alternative ssh_config file

    Returns:
        Dictionary containing host, user, port, key_file

    Raises:
        ConfigError: If the ssh_config file doesn't exist
    """
    path = Path(config_path or SSH_CONFIG_PATH).expanduser()
    if not path.exists():
        raise ConfigError(f"{path} does not exist")

    ssh_config = paramiko.SSHConfig.from_path(str(path))
    entry = ssh_config.lookup(hostname)

    return {
        "host": entry.get("hostname", hostname),
        "user": entry.get("user", None),
        "port": int(entry.get("port", DEFAULT_SSH_PORT)),
        "key_file": entry.get("identityfile", [None])[0],
    }


# ============================================================
# SSH Key Management
# ============================================================

# Order matters: the first class that parses the file wins
_KEY_CLASSES: Tuple[type, ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


def load_private_key(path: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """
    Load a private key file, probing Ed25519, ECDSA and RSA in that order.

    Raises:
        AuthError: If the file is missing or no key type can parse it
    """
    p = Path(path).expanduser()
    if not p.is_file():
        raise AuthError(f"Private key not found: {p}")

    last_error: Optional[Exception] = None
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key_file(str(p), password=passphrase)
        except paramiko.PasswordRequiredException as e:
            raise AuthError(f"Private key {p} is encrypted and no passphrase was given") from e
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
            continue

    raise AuthError(f"Failed to load private key at {p}: {last_error}") from last_error


def format_fingerprint(digest: bytes) -> str:
    """Format a raw digest as colon separated upper-case hex (AA:BB:...)"""
    return ":".join(f"{b:02X}" for b in digest)


# ============================================================
# Remote Path Utilities
# ============================================================

def join_remote_path(cwd: Optional[str], path: str) -> str:
    """
    Resolve a remote path against a working directory.

    Absolute paths are returned normalized; relative paths are joined to
    ``cwd`` (or returned as-is when there is no working directory yet).
    """
    if path.startswith("/"):
        return posixpath.normpath(path)
    if not cwd:
        return path
    return posixpath.normpath(posixpath.join(cwd, path))


def require_path(path: str, what: str = "path") -> str:
    """Reject empty path arguments before any I/O"""
    if not path:
        raise ValueError(f"{what} must not be empty")
    return path


# ============================================================
# Mode Decoding
# ============================================================

_TYPE_CHARS = (
    (stat.S_ISBLK, "b", "BLOCK_DEVICE"),
    (stat.S_ISDIR, "d", "DIRECTORY"),
    (stat.S_ISCHR, "c", "CHARACTER_DEVICE"),
    (stat.S_ISFIFO, "p", "FIFO"),
    (stat.S_ISLNK, "l", "SYMBOLIC_LINK"),
    (stat.S_ISSOCK, "s", "SOCKET"),
    (stat.S_ISREG, "-", "REGULAR"),
)


def file_type_name(mode: int) -> Tuple[str, str]:
    """Return (type character, type name) for a st_mode value"""
    for check, char, name in _TYPE_CHARS:
        if check(mode):
            return char, name
    return "?", "UNKNOWN"


def _exec_char(mode: int, exec_bit: int, special_bit: int, set_char: str) -> str:
    if mode & special_bit:
        return set_char if mode & exec_bit else set_char.upper()
    return "x" if mode & exec_bit else "-"


def mode_to_perm(mode: int) -> str:
    """
    Render a st_mode value as an ``ls -l`` style permission string.

    setuid/setgid show as s/S in the execute slot, the sticky bit as t/T.

    >>> mode_to_perm(0o100755)
    '-rwxr-xr-x'
    """
    type_char, _ = file_type_name(mode)
    return "".join((
        type_char,
        "r" if mode & stat.S_IRUSR else "-",
        "w" if mode & stat.S_IWUSR else "-",
        _exec_char(mode, stat.S_IXUSR, stat.S_ISUID, "s"),
        "r" if mode & stat.S_IRGRP else "-",
        "w" if mode & stat.S_IWGRP else "-",
        _exec_char(mode, stat.S_IXGRP, stat.S_ISGID, "s"),
        "r" if mode & stat.S_IROTH else "-",
        "w" if mode & stat.S_IWOTH else "-",
        _exec_char(mode, stat.S_IXOTH, stat.S_ISVTX, "t"),
    ))
