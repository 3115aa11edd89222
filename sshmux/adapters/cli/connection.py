"""
Connection factory implementation
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Iterator

from ...core.constants import DEFAULT_SSH_PORT, DEFAULT_CONNECT_TIMEOUT_MS, DEFAULT_TIMEOUT_MS
from ...core.exceptions import ConfigError
from ...core.interfaces import ConnectionFactory
from ...core.logging import get_logger
from ...core.utils import load_ssh_config
from ...domain.session import TransportSession

logger = get_logger(__name__)


@dataclass
class ConnectionParams:
    """Parameters of one named connection"""
    host: str
    user: Optional[str] = None
    port: Optional[int] = None
    password: Optional[str] = None
    key_file: Optional[str] = None
    passphrase: Optional[str] = None
    known_hosts: Optional[str] = None
    use_default_keys: bool = True
    timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    op_timeout_ms: int = DEFAULT_TIMEOUT_MS
    keepalive: int = 0
    ssh_config: bool = True  # resolve host as an ~/.ssh/config alias

    def resolved(self) -> "ConnectionParams":
        """
        Fill host, user, port and key file from ~/.ssh/config when the host
        is an alias there; explicit values always win.
        """
        if not self.ssh_config:
            return self
        try:
            entry = load_ssh_config(self.host)
        except ConfigError:
            return self

        return ConnectionParams(
            host=entry.get("host") or self.host,
            user=self.user or entry.get("user"),
            port=self.port or entry.get("port"),
            password=self.password,
            key_file=self.key_file or entry.get("key_file"),
            passphrase=self.passphrase,
            known_hosts=self.known_hosts,
            use_default_keys=self.use_default_keys,
            timeout_ms=self.timeout_ms,
            op_timeout_ms=self.op_timeout_ms,
            keepalive=self.keepalive,
            ssh_config=False,
        )

    def to_session(self) -> TransportSession:
        """Build an unconnected TransportSession"""
        params = self.resolved()
        return TransportSession(
            params.host,
            user=params.user,
            port=params.port or DEFAULT_SSH_PORT,
            password=params.password,
            key_file=params.key_file,
            passphrase=params.passphrase,
            known_hosts=params.known_hosts,
            use_default_keys=params.use_default_keys,
            keepalive_interval=params.keepalive,
            connect_timeout_ms=params.timeout_ms,
            timeout_ms=params.op_timeout_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (the password is never exported)"""
        return {
            "host": self.host,
            "user": self.user,
            "port": self.port,
            "key_file": self.key_file,
            "known_hosts": self.known_hosts,
            "use_default_keys": self.use_default_keys,
            "timeout_ms": self.timeout_ms,
            "op_timeout_ms": self.op_timeout_ms,
            "keepalive": self.keepalive,
            "ssh_config": self.ssh_config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionParams":
        """Create from dictionary (a TOML table or merged configuration)"""
        if not data.get("host"):
            raise ConfigError("Connection is missing 'host'")
        port = data.get("port")
        return cls(
            host=data["host"],
            user=data.get("user"),
            port=int(port) if port is not None else None,
            password=data.get("password"),
            key_file=data.get("key_file"),
            passphrase=data.get("passphrase"),
            known_hosts=data.get("known_hosts"),
            use_default_keys=bool(data.get("use_default_keys", True)),
            timeout_ms=int(data.get("connect_timeout_ms", DEFAULT_CONNECT_TIMEOUT_MS)),
            op_timeout_ms=int(data.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
            keepalive=int(data.get("keepalive_interval", 0)),
            ssh_config=bool(data.get("ssh_config", True)),
        )


class RemoteConnectionFactory(ConnectionFactory):
    """
    Named connections to TransportSessions.

    ``create()`` always returns a new connected session owned by the caller;
    ``get()`` returns a shared one, reconnecting it in place when it died so
    its SFTP session (and working directory) survive.
    """

    def __init__(self, connections: Optional[Dict[str, ConnectionParams]] = None):
        self._params: Dict[str, ConnectionParams] = dict(connections or {})
        self._sessions: Dict[str, TransportSession] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RemoteConnectionFactory":
        """
        Build from a merged configuration: every ``[connections.<name>]``
        table, plus a ``default`` connection when a top-level host is set.
        """
        connections: Dict[str, ConnectionParams] = {}
        for name, table in (config.get("connections") or {}).items():
            if not isinstance(table, dict):
                raise ConfigError(f"[connections.{name}] must be a table")
            connections[name] = ConnectionParams.from_dict(table)
        if config.get("host") and "default" not in connections:
            connections["default"] = ConnectionParams.from_dict(config)
        return cls(connections)

    def add(self, name: str, params: ConnectionParams) -> None:
        with self._lock:
            self._params[name] = params

    def remove(self, name: str) -> None:
        """Forget a connection, disconnecting its shared session"""
        with self._lock:
            self._params.pop(name, None)
            session = self._sessions.pop(name, None)
        if session is not None:
            session.disconnect()

    def names(self) -> List[str]:
        return sorted(self._params)

    def params(self, name: str) -> ConnectionParams:
        try:
            return self._params[name]
        except KeyError:
            raise ConfigError(f"Unknown connection: {name}") from None

    def create(self, name: str) -> TransportSession:
        """
        Create and connect a new session.

        Raises:
            ConfigError: If the name is unknown
            AuthError, ConnectError, HandshakeError, TimeoutError: From connect()
        """
        params = self.params(name)
        session = params.to_session()
        session.connect(params.timeout_ms)
        logger.debug(f"Connection '{name}' created")
        return session

    def get(self, name: str) -> TransportSession:
        """Return the shared live session for ``name``, (re)connecting it if needed"""
        params = self.params(name)
        with self._lock:
            session = self._sessions.get(name)
            if session is not None and session.is_alive():
                return session
            if session is None:
                session = params.to_session()
                self._sessions[name] = session
            else:
                logger.info(f"Reconnecting '{name}'")
            session.connect(params.timeout_ms)
            return session

    def close_all(self) -> None:
        """Disconnect every shared session"""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.disconnect()


@contextmanager
def open_session(context: Dict[str, Any]) -> Iterator[TransportSession]:
    """
    Connect the connection selected on the command line for one command.

    Args:
        context: CLI context object with the merged ``config`` and the
            ``connection`` name
    """
    factory = RemoteConnectionFactory.from_config(context["config"])
    session = factory.create(context["connection"])
    try:
        yield session
    finally:
        session.disconnect()
