"""
Unified exception definitions
"""
from typing import Optional


class SSHMuxError(Exception):
    """Base exception class"""
    pass


class ConnectError(SSHMuxError):
    """DNS/TCP failure, or the connection was lost mid-session"""
    pass


class HandshakeError(SSHMuxError):
    """SSH protocol negotiation failed"""
    pass


class AuthError(SSHMuxError):
    """No configured authentication method succeeded"""
    pass


class TimeoutError(SSHMuxError):
    """
    Operation exceeded its deadline.

    Recoverable for channel and SFTP operations (the handle stays usable),
    fatal while connecting.
    """

    def __init__(self, message: str, operation: Optional[str] = None, timeout_ms: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.timeout_ms = timeout_ms


class ProtocolError(SSHMuxError):
    """Server-reported SSH/SFTP error"""

    def __init__(self, message: str, code: Optional[int] = None, path: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.path = path


class StateError(SSHMuxError):
    """Operation on a closed, disconnected or torn-down handle"""
    pass


class ConfigError(SSHMuxError):
    """Configuration error"""
    pass
