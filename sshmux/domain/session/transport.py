"""
Transport session: one TCP socket, one SSH transport, many child handles
"""
import errno
import getpass
import math
import os
import socket
import threading
import time
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Tuple, Union, BinaryIO, TYPE_CHECKING

import paramiko

from ...core.constants import (
    DEFAULT_SSH_PORT,
    DEFAULT_DISCONNECT_TIMEOUT_MS,
    DEFAULT_FILE_MODE,
    DEFAULT_KEY_FILES,
    DEFAULT_TERM,
)
from ...core.exceptions import (
    SSHMuxError,
    ConnectError,
    HandshakeError,
    AuthError,
    TimeoutError,
    ProtocolError,
    StateError,
)
from ...core.logging import get_logger
from ...core.utils import load_private_key, format_fingerprint
from ...core.waiter import Deadline, Direction, WaitResult, wait
from .models import METHOD_KEYS, AuthState, SessionConfig, SessionInfo, SessionStats

if TYPE_CHECKING:
    from ..channel.channel import Channel
    from ..channel.models import CommandResult
    from ..sftp.models import FileStat
    from ..sftp.session import SftpSession

logger = get_logger(__name__)

_CONNECT_IN_PROGRESS = (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY)

# Errors paramiko surfaces when the connection underneath it fails
TRANSPORT_ERRORS = (paramiko.SSHException, EOFError, OSError)


class TransportSession:
    """
    Owns one TCP socket and one authenticated paramiko transport.

    Child handles (channels, the SFTP subsystem) register here and are closed
    before the socket is released. Every protocol call made through this
    session or its children is serialized by ``lock``; waiting for readiness
    happens outside the lock.

    Example:
        with TransportSession("example.org", "deploy", key_file="~/.ssh/id_ed25519") as s:
            print(s.run("uname -a").stdout)
    """

    def __init__(
        self,
        host: str,
        user: Optional[str] = None,
        port: int = DEFAULT_SSH_PORT,
        password: Optional[str] = None,
        key_file: Optional[str] = None,
        passphrase: Optional[str] = None,
        **options: Any,
    ) -> None:
        self.config = SessionConfig(
            host=host,
            user=user,
            port=port,
            password=password,
            key_file=key_file,
            passphrase=passphrase,
            **options,
        )
        self.config.validate()

        self.lock = threading.RLock()
        self.stats = SessionStats()

        self._sock: Optional[socket.socket] = None
        self._transport: Optional[paramiko.Transport] = None
        self._state = AuthState.UNAUTHENTICATED
        self._auth_method: Optional[str] = None
        self._key_file_used: Optional[str] = None
        self._children: Dict[int, Any] = {}
        self._sftp: Optional["SftpSession"] = None
        self._last_activity = time.monotonic()

    # ============================================================
    # Properties
    # ============================================================

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def user(self) -> str:
        return self.config.user or getpass.getuser()

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def last_activity(self) -> float:
        """Monotonic timestamp of the last protocol activity"""
        return self._last_activity

    @property
    def transport(self) -> Optional[paramiko.Transport]:
        return self._transport

    # ============================================================
    # Credentials
    # ============================================================

    def set_user(self, user: str) -> None:
        self._check_not_connected("user")
        self.config.user = user

    def set_password(self, password: Optional[str]) -> None:
        self._check_not_connected("password")
        self.config.password = password

    def set_key(self, key_file: Optional[str], passphrase: Optional[str] = None) -> None:
        self._check_not_connected("key file")
        self.config.key_file = key_file
        self.config.passphrase = passphrase

    def _check_not_connected(self, what: str) -> None:
        if self._state in (AuthState.AUTHENTICATING, AuthState.AUTHENTICATED):
            raise StateError(f"Cannot change {what} while connected to {self.host}:{self.port}")

    def _resolve_key_file(self) -> Optional[str]:
        """Configured key file, or the first readable default key when enabled"""
        if self.config.key_file:
            return self.config.key_file
        if not self.config.use_default_keys:
            return None
        for candidate in DEFAULT_KEY_FILES:
            path = Path(candidate).expanduser()
            if path.is_file() and os.access(path, os.R_OK):
                return str(path)
        return None

    # ============================================================
    # Connection lifecycle
    # ============================================================

    def connect(self, timeout_ms: Optional[int] = None) -> None:
        """
        Open the TCP connection, negotiate SSH and authenticate.

        Args:
            timeout_ms: Overall deadline in milliseconds (default 60000,
                negative for no deadline)

        Raises:
            AuthError: If no credentials are configured or none was accepted
            ConnectError: If DNS or TCP fails
            HandshakeError: If SSH negotiation or host key verification fails
            TimeoutError: If the deadline passes
        """
        with self.lock:
            if self._state is AuthState.AUTHENTICATED and self.is_alive():
                logger.debug(f"Already connected to {self.host}:{self.port}")
                return

            key_file = self._resolve_key_file()
            if self.config.password is None and key_file is None:
                raise AuthError(
                    f"No credentials configured for {self.user}@{self.host}: set a password or a key file"
                )

            # Leftovers of a dead connection go first
            if self._transport is not None or self._children:
                self._shutdown(Deadline(DEFAULT_DISCONNECT_TIMEOUT_MS))

            deadline = Deadline(self.config.connect_timeout_ms if timeout_ms is None else timeout_ms)
            self._auth_method = None
            self._key_file_used = None
            logger.info(f"Connecting to {self.user}@{self.host}:{self.port}")

            sock: Optional[socket.socket] = None
            transport: Optional[paramiko.Transport] = None
            try:
                sock = self._open_socket(deadline)
                transport = self._handshake(sock, deadline)
                self._authenticate(transport, key_file, deadline)
            except BaseException:
                self._state = AuthState.UNAUTHENTICATED
                if transport is not None:
                    transport.close()
                if sock is not None:
                    sock.close()
                raise

            self._sock = sock
            self._transport = transport
            self._state = AuthState.AUTHENTICATED
            self.stats = SessionStats()
            self.touch()

            if self.config.transport_keepalive and self.config.keepalive_interval > 0:
                transport.set_keepalive(self.config.keepalive_interval)

            logger.info(f"Connected to {self.host}:{self.port} ({self._auth_method})")

    def _open_socket(self, deadline: Deadline) -> socket.socket:
        """Non-blocking TCP connect bounded by the deadline"""
        try:
            addresses = socket.getaddrinfo(self.host, self.port, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise ConnectError(f"Cannot resolve {self.host}: {e}") from e

        last_error: Optional[ConnectError] = None
        for family, socktype, proto, _, address in addresses:
            sock = socket.socket(family, socktype, proto)
            try:
                self._connect_socket(sock, address, deadline)
            except ConnectError as e:
                sock.close()
                last_error = e
                continue
            except BaseException:
                sock.close()
                raise
            sock.setblocking(True)
            return sock

        raise last_error or ConnectError(f"No usable address for {self.host}:{self.port}")

    def _connect_socket(self, sock: socket.socket, address: Tuple, deadline: Deadline) -> None:
        sock.setblocking(False)
        err = sock.connect_ex(address)
        if err not in _CONNECT_IN_PROGRESS:
            raise ConnectError(f"Connection to {address[0]}:{address[1]} failed: {os.strerror(err)}")

        if err != 0:
            result = wait(sock, Direction.WRITE, deadline)
            if result is WaitResult.TIMED_OUT:
                raise self._timeout("connect", deadline)
            if result is WaitResult.SOCKET_ERROR:
                raise ConnectError(f"Connection to {address[0]}:{address[1]} failed")
            err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)

        if err:
            raise ConnectError(f"Connection to {address[0]}:{address[1]} failed: {os.strerror(err)}")

    def _handshake(self, sock: socket.socket, deadline: Deadline) -> paramiko.Transport:
        """Negotiate the SSH transport; paramiko runs it on its own reader thread"""
        transport = _Transport(sock)
        remaining = deadline.remaining()
        if remaining is not None:
            transport.banner_timeout = remaining
            transport.handshake_timeout = remaining

        done = threading.Event()
        try:
            transport.start_client(event=done)
            result = wait(done, Direction.READ, deadline)
            if result is WaitResult.TIMED_OUT:
                raise self._timeout("handshake", deadline)

            if not transport.is_active():
                # paramiko's own banner timer can fire right at our deadline
                if deadline.expired:
                    raise self._timeout("handshake", deadline)
                error = transport.get_exception()
                raise HandshakeError(f"SSH negotiation with {self.host}:{self.port} failed: {error}")

            if self.config.known_hosts:
                self._verify_host_key(transport)
        except paramiko.SSHException as e:
            transport.close()
            raise HandshakeError(f"SSH negotiation with {self.host}:{self.port} failed: {e}") from e
        except SSHMuxError:
            transport.close()
            raise

        return transport

    def _verify_host_key(self, transport: paramiko.Transport) -> None:
        path = Path(self.config.known_hosts).expanduser()
        host_keys = paramiko.HostKeys()
        try:
            host_keys.load(str(path))
        except OSError as e:
            raise HandshakeError(f"Cannot read known hosts file {path}: {e}") from e

        lookup = self.host if self.port == DEFAULT_SSH_PORT else f"[{self.host}]:{self.port}"
        key = transport.get_remote_server_key()
        if not host_keys.check(lookup, key):
            raise HandshakeError(
                f"Host key for {lookup} ({format_fingerprint(key.get_fingerprint())}) "
                f"is unknown or does not match {path}"
            )

    # ============================================================
    # Authentication
    # ============================================================

    def _authenticate(self, transport: paramiko.Transport, key_file: Optional[str], deadline: Deadline) -> None:
        """Public key first, then password, then keyboard-interactive with the password"""
        self._state = AuthState.AUTHENTICATING
        user = self.user
        tried: List[str] = []
        allowed: Optional[List[str]] = None

        if key_file is not None:
            key = load_private_key(key_file, self.config.passphrase)
            tried.append("publickey")
            ok, allowed = self._auth_attempt(
                transport, "publickey", lambda ev: transport.auth_publickey(user, key, ev), deadline
            )
            if ok:
                self._auth_method = "publickey"
                self._key_file_used = key_file
                return

        password = self.config.password
        if password is not None:
            if allowed is None or "password" in allowed:
                tried.append("password")
                ok, offered = self._auth_attempt(
                    transport, "password", lambda ev: transport.auth_password(user, password, ev), deadline
                )
                if ok:
                    self._auth_method = "password"
                    return
                allowed = offered or allowed

            if allowed is not None and "keyboard-interactive" in allowed:
                tried.append("keyboard-interactive")
                if self._auth_interactive(transport, user, password, deadline):
                    self._auth_method = "keyboard-interactive"
                    return

        offered_text = ", ".join(allowed) if allowed else "unknown"
        raise AuthError(
            f"Authentication failed for {user}@{self.host}: tried {', '.join(tried) or 'nothing'}; "
            f"server allows {offered_text}"
        )

    def _auth_attempt(
        self,
        transport: paramiko.Transport,
        method: str,
        start: Callable[[threading.Event], Any],
        deadline: Deadline,
    ) -> Tuple[bool, Optional[List[str]]]:
        """
        Run one asynchronous paramiko auth request.

        Returns:
            (success, methods the server says it allows, when it told us)
        """
        done = threading.Event()
        try:
            start(done)
        except paramiko.SSHException as e:
            raise ConnectError(f"Connection lost during {method} authentication: {e}") from e

        result = wait(done, Direction.READ, deadline)
        if result is WaitResult.TIMED_OUT:
            raise self._timeout("authenticate", deadline)

        if transport.is_authenticated():
            return True, None

        error = transport.get_exception()
        if not transport.is_active():
            raise ConnectError(f"Connection lost during {method} authentication: {error}")

        allowed = getattr(error, "allowed_types", None)
        logger.debug(f"{method} authentication rejected (allowed: {allowed})")
        return False, list(allowed) if allowed is not None else None

    def _auth_interactive(
        self, transport: paramiko.Transport, user: str, password: str, deadline: Deadline
    ) -> bool:
        def answer(title: str, instructions: str, prompts: List[Tuple[str, bool]]) -> List[str]:
            return [password for _ in prompts]

        transport.auth_timeout = deadline.remaining()
        try:
            transport.auth_interactive(user, answer)
        except paramiko.AuthenticationException as e:
            if deadline.expired:
                raise self._timeout("authenticate", deadline) from e
            logger.debug(f"keyboard-interactive authentication rejected: {e}")
            return False
        except paramiko.SSHException as e:
            raise ConnectError(f"Connection lost during keyboard-interactive authentication: {e}") from e
        return transport.is_authenticated()

    # ============================================================
    # Teardown
    # ============================================================

    def disconnect(self, timeout_ms: Optional[int] = None) -> None:
        """
        Close every child handle, then the transport and the socket.

        Idempotent. Child close problems are logged, never raised.
        """
        with self.lock:
            if self._transport is None and not self._children:
                return

            deadline = Deadline(DEFAULT_DISCONNECT_TIMEOUT_MS if timeout_ms is None else timeout_ms)
            logger.info(f"Disconnecting from {self.host}:{self.port}")
            self._shutdown(deadline)

    def _shutdown(self, deadline: Deadline) -> None:
        """Two-phase teardown: children first, socket second"""
        self._close_children(deadline)
        self._release_transport()
        self._state = AuthState.DEAD

    def _close_children(self, deadline: Deadline) -> None:
        for child in list(self._children.values()):
            try:
                child._teardown(deadline)
            except (SSHMuxError, *TRANSPORT_ERRORS) as e:
                logger.warning(f"Error closing {child!r}: {e}")
            finally:
                self.unregister_child(child)

    def _release_transport(self) -> None:
        """Close the transport and socket; refused while any child is registered"""
        if self._children:
            raise StateError(
                f"Refusing to close the connection to {self.host}: {len(self._children)} child handle(s) still open"
            )

        transport, self._transport = self._transport, None
        sock, self._sock = self._sock, None
        if transport is not None:
            transport.close()
        if sock is not None:
            sock.close()

    def _mark_dead(self, reason: str) -> None:
        if self._state is not AuthState.DEAD:
            logger.warning(f"Session {self.host}:{self.port} is dead: {reason}")
        self._state = AuthState.DEAD

    # ============================================================
    # Liveness and keepalive
    # ============================================================

    def is_alive(self) -> bool:
        """Cheap liveness probe, never raises"""
        if self._state is not AuthState.AUTHENTICATED:
            return False
        transport = self._transport
        if transport is None or not transport.is_active():
            self._mark_dead("transport is no longer active")
            return False
        return True

    def touch(self) -> None:
        """Record protocol activity"""
        self._last_activity = time.monotonic()

    def keepalive(self) -> int:
        """
        Send a keepalive no-op if one is due.

        Returns:
            Seconds until the next keepalive is due (0 when keepalive is disabled)

        Raises:
            ConnectError: If sending fails; the session is then DEAD
            StateError: If the session is not connected
        """
        interval = self.config.keepalive_interval
        if interval <= 0:
            return 0

        with self.lock:
            transport = self.require_transport()
            due = self._last_activity + interval
            now = time.monotonic()
            if now < due:
                return int(math.ceil(due - now))

            try:
                transport.send_ignore()
            except TRANSPORT_ERRORS as e:
                self._mark_dead(f"keepalive failed: {e}")
                raise ConnectError(f"Keepalive to {self.host}:{self.port} failed: {e}") from e

            if not transport.is_active():
                self._mark_dead("keepalive failed: transport closed")
                raise ConnectError(f"Keepalive to {self.host}:{self.port} failed: transport closed")

            self.touch()
            return interval

    # ============================================================
    # Helpers shared with child handles
    # ============================================================

    def require_transport(self) -> paramiko.Transport:
        """
        Return the live transport.

        Raises:
            StateError: If the session is dead or was never connected
            ConnectError: The first time a lost connection is noticed
        """
        if self._state is AuthState.DEAD:
            raise StateError(f"Session {self.host}:{self.port} is dead")
        if self._state is not AuthState.AUTHENTICATED or self._transport is None:
            raise StateError(f"Session {self.host}:{self.port} is not connected")
        if not self._transport.is_active():
            self._mark_dead("transport is no longer active")
            raise ConnectError(f"Connection to {self.host}:{self.port} was lost")
        return self._transport

    def deadline(self, timeout_ms: Optional[int]) -> Deadline:
        """Deadline for a non-connect operation"""
        return Deadline(self.config.timeout_ms if timeout_ms is None else timeout_ms)

    def map_error(self, operation: str, error: BaseException, deadline: Optional[Deadline] = None) -> SSHMuxError:
        """Translate a paramiko/socket failure into the sshmux error taxonomy"""
        if deadline is not None and deadline.expired:
            return self._timeout(operation, deadline)
        transport = self._transport
        if transport is None or not transport.is_active():
            self._mark_dead(f"{operation}: {error}")
            return ConnectError(f"Connection to {self.host}:{self.port} lost during {operation}: {error}")
        if isinstance(error, paramiko.ChannelException):
            return ProtocolError(f"{operation} rejected by server: {error.text}", code=error.code)
        return ProtocolError(f"{operation} failed: {error}")

    def _timeout(self, operation: str, deadline: Deadline) -> TimeoutError:
        return TimeoutError(
            f"{operation} on {self.host}:{self.port} timed out after {deadline.timeout_ms}ms",
            operation=operation,
            timeout_ms=deadline.timeout_ms,
        )

    def register_child(self, child: Any) -> None:
        with self.lock:
            self._children[id(child)] = child

    def unregister_child(self, child: Any) -> None:
        with self.lock:
            self._children.pop(id(child), None)

    @property
    def child_count(self) -> int:
        return len(self._children)

    # ============================================================
    # Channels
    # ============================================================

    def open_raw_channel(
        self,
        deadline: Deadline,
        kind: str = "session",
        dest: Optional[Tuple[str, int]] = None,
        source: Optional[Tuple[str, int]] = None,
    ) -> paramiko.Channel:
        """Open a bare paramiko channel within the deadline"""
        with self.lock:
            transport = self.require_transport()
            remaining = deadline.remaining()
            try:
                chan = transport.open_channel(kind, dest_addr=dest, src_addr=source, timeout=remaining)
            except TRANSPORT_ERRORS as e:
                raise self.map_error(f"open {kind} channel", e, deadline) from e
            self.touch()
            return chan

    def open_channel(self, timeout_ms: Optional[int] = None) -> "Channel":
        """Open a plain session channel (no request sent yet)"""
        from ..channel.channel import Channel

        chan = self.open_raw_channel(self.deadline(timeout_ms))
        return Channel(self, chan)

    def open_direct_tcpip(
        self,
        host: str,
        port: int,
        source_host: str = "127.0.0.1",
        source_port: int = 22,
        timeout_ms: Optional[int] = None,
    ) -> "Channel":
        """Open a channel forwarded by the server to host:port"""
        from ..channel.channel import Channel

        chan = self.open_raw_channel(
            self.deadline(timeout_ms), "direct-tcpip", dest=(host, port), source=(source_host, source_port)
        )
        return Channel(self, chan, active=True)

    def exec(self, command: str, timeout_ms: Optional[int] = None) -> "Channel":
        """Open a channel and start a command on it"""
        from ..channel.channel import Channel

        deadline = self.deadline(timeout_ms)
        channel = Channel(self, self.open_raw_channel(deadline))
        try:
            channel._exec(command, deadline)
        except BaseException:
            channel.close(timeout_ms=0)
            raise
        return channel

    def shell(self, term: Optional[str] = DEFAULT_TERM, timeout_ms: Optional[int] = None) -> "Channel":
        """Open a channel with an interactive shell (after a pty request when term is set)"""
        from ..channel.channel import Channel

        deadline = self.deadline(timeout_ms)
        channel = Channel(self, self.open_raw_channel(deadline))
        try:
            if term:
                channel._request_pty(term, 80, 24, deadline)
            channel._shell(deadline)
        except BaseException:
            channel.close(timeout_ms=0)
            raise
        return channel

    def run(self, command: str, timeout_ms: Optional[int] = None) -> "CommandResult":
        """Run a command to completion and collect stdout, stderr and exit status"""
        from ..channel.models import CommandResult

        channel = self.exec(command, timeout_ms)
        with channel:
            stdout, stderr = channel.collect(timeout_ms)
        return CommandResult(exit_code=channel.get_exit_status(), stdout=stdout, stderr=stderr)

    # ============================================================
    # SCP
    # ============================================================

    def scp_put(
        self,
        path: str,
        size: int,
        mode: int = DEFAULT_FILE_MODE,
        atime: Optional[int] = None,
        mtime: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> "Channel":
        """Start an SCP upload; write exactly ``size`` bytes, then send_eof() and close()"""
        from ..channel.scp import scp_put

        return scp_put(self, path, size, mode, atime, mtime, timeout_ms)

    def scp_get(self, path: str, timeout_ms: Optional[int] = None) -> Tuple["Channel", "FileStat"]:
        """Start an SCP download; read ``stat.size`` bytes, then close()"""
        from ..channel.scp import scp_get

        return scp_get(self, path, timeout_ms)

    def scp_download(self, path: str, sink: Union[BinaryIO, Callable[[bytes], Any]],
                     timeout_ms: Optional[int] = None) -> "FileStat":
        from ..channel.scp import scp_download

        return scp_download(self, path, sink, timeout_ms)

    def scp_upload(
        self,
        source: Union[bytes, BinaryIO],
        path: str,
        size: Optional[int] = None,
        mode: int = DEFAULT_FILE_MODE,
        atime: Optional[int] = None,
        mtime: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> int:
        from ..channel.scp import scp_upload

        return scp_upload(self, source, path, size, mode, atime, mtime, timeout_ms)

    # ============================================================
    # SFTP
    # ============================================================

    def sftp(self) -> "SftpSession":
        """The SFTP session of this connection (opened lazily on first use)"""
        from ..sftp.session import SftpSession

        with self.lock:
            if self._sftp is None:
                self._sftp = SftpSession(self)
            return self._sftp

    # ============================================================
    # Introspection
    # ============================================================

    def fingerprint(self) -> str:
        """MD5 fingerprint of the server host key (AA:BB:... format)"""
        with self.lock:
            transport = self.require_transport()
            return format_fingerprint(transport.get_remote_server_key().get_fingerprint())

    def methods(self) -> Dict[str, Optional[str]]:
        """Negotiated algorithms"""
        with self.lock:
            transport = self.require_transport()
            return _negotiated_methods(transport)

    def info(self) -> SessionInfo:
        """Connection snapshot, never raises"""
        with self.lock:
            transport = self._transport
            connected = transport is not None and transport.is_active()
            fingerprint = None
            methods: Dict[str, Optional[str]] = {}
            if connected:
                fingerprint = format_fingerprint(transport.get_remote_server_key().get_fingerprint())
                methods = _negotiated_methods(transport)

            return SessionInfo(
                connected=connected,
                authenticated=connected and self._state is AuthState.AUTHENTICATED,
                host=self.host,
                port=self.port,
                user=self.user,
                key_file=self._key_file_used or self.config.key_file,
                fingerprint=fingerprint,
                auth_method=self._auth_method if connected else None,
                methods=methods,
                sftp_path=self._sftp.path if self._sftp is not None else None,
                stats=self.stats,
            )

    # ============================================================
    # Context manager
    # ============================================================

    def __enter__(self) -> "TransportSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return f"TransportSession({self.user}@{self.host}:{self.port}, {self._state.value})"


class _Transport(paramiko.Transport):
    """paramiko.Transport that remembers the agreed key exchange after it completes"""

    agreed_kex: Optional[str] = None

    def _parse_kex_init(self, m):
        super()._parse_kex_init(m)
        engine = type(self.kex_engine)
        self.agreed_kex = next((name for name in self.preferred_kex if self._kex_info.get(name) is engine), None)


def _negotiated_methods(transport: paramiko.Transport) -> Dict[str, Optional[str]]:
    values = (
        getattr(transport, "agreed_kex", None),
        getattr(transport, "host_key_type", None),
        getattr(transport, "local_cipher", None),
        getattr(transport, "remote_cipher", None),
        getattr(transport, "local_mac", None),
        getattr(transport, "remote_mac", None),
        getattr(transport, "local_compression", None),
        getattr(transport, "remote_compression", None),
    )
    return dict(zip(METHOD_KEYS, values))
