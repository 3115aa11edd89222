"""
Session domain models
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any

from ...core.constants import (
    DEFAULT_SSH_PORT,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_TIMEOUT_MS,
)
from ...core.exceptions import ConfigError


class AuthState(str, Enum):
    """Transport session lifecycle"""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    DEAD = "dead"


# Keys reported by info()["methods"]
METHOD_KEYS = (
    "KEX",
    "HOSTKEY",
    "CRYPT_CS",
    "CRYPT_SC",
    "MAC_CS",
    "MAC_SC",
    "COMP_CS",
    "COMP_SC",
)


@dataclass
class SessionConfig:
    """Transport session configuration"""
    host: str
    user: Optional[str] = None
    port: int = DEFAULT_SSH_PORT
    password: Optional[str] = None
    key_file: Optional[str] = None
    passphrase: Optional[str] = None
    use_default_keys: bool = False
    known_hosts: Optional[str] = None  # verify the host key against this file when set
    keepalive_interval: int = 0  # seconds, 0 disables
    transport_keepalive: bool = False
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def validate(self) -> None:
        """Validate configuration"""
        if not self.host:
            raise ConfigError("host must not be empty")
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"Invalid port: {self.port}")
        if self.keepalive_interval < 0:
            raise ConfigError(f"Invalid keepalive_interval: {self.keepalive_interval}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (the password is never exported)"""
        return {
            "host": self.host,
            "user": self.user,
            "port": self.port,
            "key_file": self.key_file,
            "use_default_keys": self.use_default_keys,
            "known_hosts": self.known_hosts,
            "keepalive_interval": self.keepalive_interval,
            "transport_keepalive": self.transport_keepalive,
            "connect_timeout_ms": self.connect_timeout_ms,
            "timeout_ms": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionConfig":
        """Create from dictionary"""
        if "host" not in data:
            raise ConfigError("Missing 'host' in session configuration")
        return cls(
            host=data["host"],
            user=data.get("user"),
            port=int(data.get("port", DEFAULT_SSH_PORT)),
            password=data.get("password"),
            key_file=data.get("key_file"),
            passphrase=data.get("passphrase"),
            use_default_keys=bool(data.get("use_default_keys", False)),
            known_hosts=data.get("known_hosts"),
            keepalive_interval=int(data.get("keepalive_interval", 0)),
            transport_keepalive=bool(data.get("transport_keepalive", False)),
            connect_timeout_ms=int(data.get("connect_timeout_ms", DEFAULT_CONNECT_TIMEOUT_MS)),
            timeout_ms=int(data.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
        )


@dataclass
class SessionStats:
    """Per-session usage counters"""
    bytes_transferred: int = 0
    commands_executed: int = 0
    start_time: float = field(default_factory=time.time)

    def add_transferred_bytes(self, bytes_count: int) -> None:
        """Add to transferred bytes counter"""
        self.bytes_transferred += bytes_count

    def increment_command_count(self) -> None:
        """Increment command counter"""
        self.commands_executed += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "bytes_transferred": self.bytes_transferred,
            "commands_executed": self.commands_executed,
            "start_time": self.start_time,
        }


@dataclass
class SessionInfo:
    """Snapshot returned by TransportSession.info()"""
    connected: bool
    authenticated: bool
    host: str
    port: int
    user: Optional[str]
    key_file: Optional[str] = None
    fingerprint: Optional[str] = None
    auth_method: Optional[str] = None
    methods: Dict[str, Optional[str]] = field(default_factory=dict)
    sftp_path: Optional[str] = None
    stats: SessionStats = field(default_factory=SessionStats)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "connected": self.connected,
            "authenticated": self.authenticated,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "key_file": self.key_file,
            "fingerprint": self.fingerprint,
            "auth_method": self.auth_method,
            "methods": dict(self.methods),
            "sftp_path": self.sftp_path,
            "stats": self.stats.to_dict(),
        }
