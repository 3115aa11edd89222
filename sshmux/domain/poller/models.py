"""
Poller domain models
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any, Union

from ...core.exceptions import ConfigError
from ..sftp.models import FileStat

SORT_MODES = ("none", "name", "mtime")
AFTER_ACTIONS = ("none", "delete", "move")


@dataclass
class PollerConfig:
    """Directory poller configuration"""
    path: str = "."
    mask: Optional[str] = None  # glob matched against the file name
    regex: Optional[str] = None
    min_age: int = 0  # seconds since last modification
    sort: str = "none"
    binary: bool = True
    encoding: str = "utf-8"
    after: str = "none"
    move_to: Optional[str] = None
    interval: float = 10.0  # seconds between polls
    error_delay: float = 30.0  # seconds to back off after a failed poll
    max_files: int = 0  # per poll, 0 for no limit
    timeout_ms: Optional[int] = None

    def validate(self) -> None:
        """Validate configuration"""
        if not self.path:
            raise ConfigError("Poller path must not be empty")
        if self.sort not in SORT_MODES:
            raise ConfigError(f"Invalid sort: {self.sort}, must be one of {', '.join(SORT_MODES)}")
        if self.after not in AFTER_ACTIONS:
            raise ConfigError(f"Invalid after action: {self.after}, must be one of {', '.join(AFTER_ACTIONS)}")
        if self.after == "move" and not self.move_to:
            raise ConfigError("after='move' requires move_to")
        if self.min_age < 0 or self.max_files < 0:
            raise ConfigError("min_age and max_files must not be negative")
        if self.interval <= 0 or self.error_delay < 0:
            raise ConfigError("interval must be positive and error_delay non-negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "path": self.path,
            "mask": self.mask,
            "regex": self.regex,
            "min_age": self.min_age,
            "sort": self.sort,
            "binary": self.binary,
            "encoding": self.encoding,
            "after": self.after,
            "move_to": self.move_to,
            "interval": self.interval,
            "error_delay": self.error_delay,
            "max_files": self.max_files,
            "timeout_ms": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PollerConfig":
        """Create from dictionary"""
        return cls(
            path=data.get("path", "."),
            mask=data.get("mask"),
            regex=data.get("regex"),
            min_age=int(data.get("min_age", 0)),
            sort=data.get("sort", "none"),
            binary=bool(data.get("binary", True)),
            encoding=data.get("encoding", "utf-8"),
            after=data.get("after", "none"),
            move_to=data.get("move_to"),
            interval=float(data.get("interval", 10.0)),
            error_delay=float(data.get("error_delay", 30.0)),
            max_files=int(data.get("max_files", 0)),
            timeout_ms=data.get("timeout_ms"),
        )


@dataclass
class PolledFile:
    """A retrieved file handed to the poller callback"""
    stat: FileStat
    data: Union[bytes, str]
