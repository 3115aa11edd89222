"""
Channel domain models
"""
from dataclasses import dataclass
from enum import Enum, IntEnum


class ChannelState(str, Enum):
    """Channel lifecycle; EOF_SENT and EOF_RECEIVED may happen in either order"""
    OPENED = "opened"
    REQUESTED = "requested"
    ACTIVE = "active"
    EOF_SENT = "eof_sent"
    EOF_RECEIVED = "eof_received"
    CLOSED = "closed"


class Stream(IntEnum):
    """Channel data streams"""
    STDOUT = 0
    STDERR = 1


class ExtendedData(str, Enum):
    """What happens to stderr (extended) data"""
    NORMAL = "normal"  # kept on Stream.STDERR
    MERGE = "merge"  # delivered on Stream.STDOUT
    IGNORE = "ignore"  # dropped


@dataclass
class CommandResult:
    """Command execution result"""
    exit_code: int
    stdout: str
    stderr: str
    success: bool = True

    def __post_init__(self):
        """Set success based on exit_code"""
        self.success = self.exit_code == 0

    def __str__(self) -> str:
        """String representation"""
        if self.success:
            return self.stdout
        return f"Error (exit code {self.exit_code}): {self.stderr}"
