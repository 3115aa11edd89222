"""
sshmux - SSH session, channel and SFTP engine

One authenticated transport per host, with every operation bounded by a
millisecond timeout:
- Command execution and interactive shells over multiplexed channels
- SCP upload and download over a single channel
- SFTP file operations with a persistent working directory
- A directory poller and named connections built on top
"""

__version__ = "0.1.0"

# Export core components
from .core import (
    setup_logging,
    get_logger,
    load_ssh_config,
    Deadline,
)
from .core.exceptions import (
    SSHMuxError,
    ConnectError,
    HandshakeError,
    AuthError,
    TimeoutError,
    ProtocolError,
    StateError,
    ConfigError,
)

# Export domain models
from .domain.session import (
    AuthState,
    SessionConfig,
    SessionInfo,
    TransportSession,
)

from .domain.channel import (
    Channel,
    ChannelState,
    CommandResult,
    ExtendedData,
    Stream,
)

from .domain.sftp import (
    FileType,
    FileStat,
    DirectoryListing,
    SftpSession,
)

from .domain.poller import (
    PollerConfig,
    PolledFile,
    SftpPoller,
)

__all__ = [
    # Version
    "__version__",
    # Utilities
    "setup_logging",
    "get_logger",
    "load_ssh_config",
    "Deadline",
    # Errors
    "SSHMuxError",
    "ConnectError",
    "HandshakeError",
    "AuthError",
    "TimeoutError",
    "ProtocolError",
    "StateError",
    "ConfigError",
    # Session
    "AuthState",
    "SessionConfig",
    "SessionInfo",
    "TransportSession",
    # Channel
    "Channel",
    "ChannelState",
    "CommandResult",
    "ExtendedData",
    "Stream",
    # SFTP
    "FileType",
    "FileStat",
    "DirectoryListing",
    "SftpSession",
    # Poller
    "PollerConfig",
    "PolledFile",
    "SftpPoller",
]
