"""
Multiplexed channel over a TransportSession
"""
import codecs
import os
import socket
import weakref
from typing import Optional, Dict, Tuple, Union, Callable, TYPE_CHECKING

import paramiko
from paramiko.common import cMSG_CHANNEL_REQUEST

from ...core.constants import CHANNEL_READ_SIZE, DEFAULT_TERM
from ...core.exceptions import SSHMuxError, ProtocolError, StateError, TimeoutError
from ...core.logging import get_logger
from ...core.waiter import Deadline, Direction, Until, WaitResult, WouldBlock, retry, wait
from ..session.transport import TRANSPORT_ERRORS
from .models import ChannelState, ExtendedData, Stream

if TYPE_CHECKING:
    from ..session.transport import TransportSession

logger = get_logger(__name__)

CHANNEL_WRITE_SIZE = 32768


def send_request(
    session: "TransportSession",
    chan: paramiko.Channel,
    kind: str,
    deadline: Deadline,
    fill: Optional[Callable[[paramiko.Message], None]] = None,
    want_reply: bool = True,
) -> None:
    """
    Send a channel request and wait for the server's answer within the deadline.

    The message goes out under the session lock; the wait for the reply does
    not hold it, unless the caller already does. On timeout the channel is
    closed, since a late reply could still change its state.

    Args:
        session: Session the channel belongs to
        chan: Open paramiko channel
        kind: Request type ("exec", "pty-req", "subsystem", ...)
        deadline: Absolute deadline for the reply
        fill: Appends the request-specific fields to the message
        want_reply: False for requests the server never answers ("env")

    Raises:
        TimeoutError: If no reply arrived in time (the channel is closed)
        ProtocolError: If the server refused the request
    """
    message = paramiko.Message()
    message.add_byte(cMSG_CHANNEL_REQUEST)
    with session.lock:
        session.require_transport()
        if chan.closed:
            raise ProtocolError(f"{kind} request failed: channel is not open")
        message.add_int(chan.remote_chanid)
        message.add_string(kind)
        message.add_boolean(want_reply)
        if fill is not None:
            fill(message)
        if want_reply:
            chan._event_pending()
        try:
            chan.transport._send_user_message(message)
        except TRANSPORT_ERRORS as e:
            raise session.map_error(f"{kind} request", e, deadline) from e
        session.touch()

    if not want_reply:
        return

    if wait(chan.event, Direction.READ, deadline) is not WaitResult.READY:
        with session.lock:
            try:
                chan.close()
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Error closing channel {chan.get_id()} after {kind} timeout: {e}")
        raise TimeoutError(
            f"{kind} request timed out after {deadline.timeout_ms}ms",
            operation=f"{kind} request",
            timeout_ms=deadline.timeout_ms,
        )

    if not chan.event_ready:
        # paramiko closes the channel on refusal; a lost transport closes it too
        with session.lock:
            session.require_transport()
        raise ProtocolError(f"{kind} request rejected by server")


class Channel:
    """
    One logical stream (command, shell, SCP, direct-tcpip) of a session.

    The channel keeps a weak reference to its session and never outlives
    it: once the session is disconnected every call raises StateError.
    Bytes that arrived but were not asked for yet stay buffered per stream,
    so a timed-out read loses nothing.
    """

    def __init__(
        self,
        session: "TransportSession",
        chan: paramiko.Channel,
        encoding: str = "utf-8",
        active: bool = False,
    ) -> None:
        self._session_ref = weakref.ref(session)
        self._chan = chan
        self._state = ChannelState.ACTIVE if active else ChannelState.OPENED
        self._eof_sent = False
        self._eof_trailer: Optional[bytes] = None
        self._exit_status: Optional[int] = None
        self._expects_status = False
        self._extended = ExtendedData.NORMAL
        self._buffers: Dict[Stream, bytearray] = {Stream.STDOUT: bytearray(), Stream.STDERR: bytearray()}
        self.set_encoding(encoding)

        # Never let paramiko block; readiness waits go through the waiter
        chan.settimeout(0.0)
        chan.fileno()
        session.register_child(self)

    # ============================================================
    # Properties
    # ============================================================

    @property
    def state(self) -> ChannelState:
        if self._state is not ChannelState.ACTIVE:
            return self._state
        if self._eof_sent:
            return ChannelState.EOF_SENT
        if self._chan.eof_received:
            return ChannelState.EOF_RECEIVED
        return ChannelState.ACTIVE

    @property
    def channel_id(self) -> int:
        return self._chan.get_id()

    @property
    def encoding(self) -> str:
        return self._encoding

    def set_encoding(self, encoding: str) -> None:
        """Change the text encoding used by read()/write() of str data"""
        codecs.lookup(encoding)
        self._encoding = encoding
        self._decoders = {
            stream: codecs.getincrementaldecoder(encoding)(errors="replace") for stream in Stream
        }

    # ============================================================
    # Internal helpers
    # ============================================================

    def _live(self) -> "TransportSession":
        if self._state is ChannelState.CLOSED:
            raise StateError("Channel is closed")
        session = self._session_ref()
        if session is None:
            raise StateError("Channel's session no longer exists")
        return session

    def _check_open(self, session: "TransportSession") -> None:
        """Called under the session lock before every protocol call"""
        if self._state is ChannelState.CLOSED:
            raise StateError("Channel is closed")
        session.require_transport()

    def _pump(self, session: "TransportSession") -> None:
        """Move everything paramiko has buffered into the local stream buffers"""
        chan = self._chan
        received = 0
        while chan.recv_ready():
            data = chan.recv(CHANNEL_READ_SIZE)
            if not data:
                break
            self._buffers[Stream.STDOUT] += data
            received += len(data)
        while chan.recv_stderr_ready():
            data = chan.recv_stderr(CHANNEL_READ_SIZE)
            if not data:
                break
            received += len(data)
            if self._extended is not ExtendedData.IGNORE:
                self._buffers[Stream.STDOUT if self._extended is ExtendedData.MERGE else Stream.STDERR] += data
        if received:
            session.stats.add_transferred_bytes(received)
            session.touch()

    def _remote_done(self) -> bool:
        return self._chan.eof_received or self._chan.closed

    def _send_window_open(self) -> bool:
        return self._chan.closed or self._chan.out_window_size > 0

    def _request(
        self,
        kind: str,
        deadline: Deadline,
        fill: Optional[Callable[[paramiko.Message], None]] = None,
        activate: bool = True,
        want_reply: bool = True,
    ) -> None:
        """Send a channel request that must happen before the channel is active"""
        session = self._live()
        with session.lock:
            self._check_open(session)
            if self._state is not ChannelState.OPENED:
                raise StateError(f"Cannot request {kind}: channel is already {self._state.value}")
            if activate:
                self._state = ChannelState.REQUESTED

        try:
            send_request(session, self._chan, kind, deadline, fill, want_reply)
        except SSHMuxError:
            if self._chan.closed:
                self._state = ChannelState.CLOSED
                session.unregister_child(self)
            elif activate:
                self._state = ChannelState.OPENED
            raise

        if activate:
            self._state = ChannelState.ACTIVE
            self._expects_status = True

    # ============================================================
    # Requests
    # ============================================================

    def exec(self, command: str, timeout_ms: Optional[int] = None) -> None:
        """Start a command on this channel"""
        self._exec(command, self._deadline(timeout_ms))

    def _exec(self, command: str, deadline: Deadline) -> None:
        logger.debug(f"exec: {command}")
        self._request("exec", deadline, lambda m: m.add_string(command))
        session = self._session_ref()
        if session is not None:
            session.stats.increment_command_count()

    def shell(self, timeout_ms: Optional[int] = None) -> None:
        """Start an interactive shell on this channel"""
        self._shell(self._deadline(timeout_ms))

    def _shell(self, deadline: Deadline) -> None:
        self._request("shell", deadline)

    def subsystem(self, name: str, timeout_ms: Optional[int] = None) -> None:
        """Start a named subsystem on this channel"""
        self._request("subsystem", self._deadline(timeout_ms), lambda m: m.add_string(name))

    def request_pty(
        self, term: str = DEFAULT_TERM, width: int = 80, height: int = 24, timeout_ms: Optional[int] = None
    ) -> None:
        """Request a pseudo terminal; must precede shell()/exec()"""
        self._request_pty(term, width, height, self._deadline(timeout_ms))

    def _request_pty(self, term: str, width: int, height: int, deadline: Deadline) -> None:
        def fill(m: paramiko.Message) -> None:
            m.add_string(term)
            m.add_int(width)
            m.add_int(height)
            m.add_int(0)
            m.add_int(0)
            m.add_string(bytes())

        self._request("pty-req", deadline, fill, activate=False)

    def set_env(self, name: str, value: str) -> None:
        """Set an environment variable for the command/shell; servers may ignore it"""

        def fill(m: paramiko.Message) -> None:
            m.add_string(name)
            m.add_string(value)

        self._request("env", self._deadline(None), fill, activate=False, want_reply=False)

    def request_x11(
        self,
        screen_number: int = 0,
        auth_protocol: str = "MIT-MAGIC-COOKIE-1",
        auth_cookie: Optional[str] = None,
        single_connection: bool = False,
        handler: Optional[Callable[[paramiko.Channel, Tuple[str, int]], None]] = None,
        timeout_ms: Optional[int] = None,
    ) -> str:
        """
        Ask the server to forward X11 connections for this channel.

        Must precede shell()/exec(). Forwarded connections are passed to
        ``handler(channel, (address, port))`` on paramiko's reader thread;
        without a handler they queue up on the transport.

        Args:
            screen_number: X11 screen number
            auth_protocol: X11 authentication protocol name
            auth_cookie: Hex cookie sent to the server (random 128 bits by default)
            single_connection: Forward only the first X11 connection
            handler: Callback for forwarded X11 channels
            timeout_ms: Deadline for the server's answer

        Returns:
            The cookie that was sent
        """
        cookie = auth_cookie if auth_cookie is not None else os.urandom(16).hex()

        def fill(m: paramiko.Message) -> None:
            m.add_boolean(single_connection)
            m.add_string(auth_protocol)
            m.add_string(cookie)
            m.add_int(screen_number)

        self._request("x11-req", self._deadline(timeout_ms), fill, activate=False)
        self._chan.transport._set_x11_handler(handler)
        return cookie

    # ============================================================
    # Extended data
    # ============================================================

    @property
    def extended_data(self) -> ExtendedData:
        return self._extended

    def _set_extended(self, mode: ExtendedData) -> None:
        session = self._live()
        with session.lock:
            self._check_open(session)
            self._chan.set_combine_stderr(mode is ExtendedData.MERGE)
            pending = self._buffers[Stream.STDERR]
            if mode is ExtendedData.MERGE:
                self._buffers[Stream.STDOUT] += pending
                pending.clear()
            elif mode is ExtendedData.IGNORE:
                pending.clear()
            self._extended = mode

    def extended_data_normal(self) -> None:
        """Keep stderr data on its own stream (the default)"""
        self._set_extended(ExtendedData.NORMAL)

    def extended_data_merge(self, merge: bool = True) -> None:
        """Deliver stderr data on the stdout stream"""
        self._set_extended(ExtendedData.MERGE if merge else ExtendedData.NORMAL)

    def extended_data_ignore(self) -> None:
        """Discard stderr data, including anything already buffered"""
        self._set_extended(ExtendedData.IGNORE)

    # ============================================================
    # Reading
    # ============================================================

    def _take(self, stream: Stream, minimum: int, maximum: Optional[int], deadline: Deadline, operation: str) -> bytes:
        session = self._live()

        def attempt() -> bytes:
            with session.lock:
                self._check_open(session)
                # Check before pumping: any data preceding EOF is buffered by then
                done = self._remote_done()
                self._pump(session)
                buffer = self._buffers[stream]
                if len(buffer) >= minimum or done:
                    count = len(buffer) if maximum is None else min(maximum, len(buffer))
                    data = bytes(buffer[:count])
                    del buffer[:count]
                    return data
            raise WouldBlock(self._chan, Direction.READ)

        return retry(attempt, deadline, operation)

    def _deadline(self, timeout_ms: Optional[int]) -> Deadline:
        return self._live().deadline(timeout_ms)

    def _decode(self, stream: Stream, data: bytes) -> str:
        return self._decoders[stream].decode(data, final=not data)

    def read_binary(
        self, size: Optional[int] = None, timeout_ms: Optional[int] = None, stream: Stream = Stream.STDOUT
    ) -> bytes:
        """
        Read available bytes, blocking until at least one byte, EOF or timeout.

        Args:
            size: Maximum bytes to return (default: everything available)
            timeout_ms: Deadline in milliseconds
            stream: Stream.STDOUT or Stream.STDERR

        Returns:
            Data read; empty at EOF

        Raises:
            TimeoutError: If nothing arrived in time (the channel stays usable)
            StateError: If the channel or its session is closed
        """
        if size == 0:
            return b""
        return self._take(Stream(stream), 1, size, self._deadline(timeout_ms), "channel read")

    def read(self, size: Optional[int] = None, timeout_ms: Optional[int] = None, stream: Stream = Stream.STDOUT) -> str:
        """Text form of read_binary(); multi-byte characters are never split"""
        stream = Stream(stream)
        return self._decode(stream, self.read_binary(size, timeout_ms, stream))

    def read_block_binary(self, size: int, timeout_ms: Optional[int] = None, stream: Stream = Stream.STDOUT) -> bytes:
        """
        Read exactly ``size`` bytes (fewer only at EOF).

        On timeout nothing is consumed: the partial data stays buffered.
        """
        if size <= 0:
            return b""
        return self._take(Stream(stream), size, size, self._deadline(timeout_ms), "channel read block")

    def read_block(self, size: int, timeout_ms: Optional[int] = None, stream: Stream = Stream.STDOUT) -> str:
        stream = Stream(stream)
        return self._decode(stream, self.read_block_binary(size, timeout_ms, stream))

    def _read_exact(self, size: int, deadline: Deadline) -> bytes:
        return self._take(Stream.STDOUT, size, size, deadline, "channel read block")

    def _read_line(self, deadline: Deadline, stream: Stream = Stream.STDOUT) -> bytes:
        """Read up to and including the next newline (or EOF)"""
        session = self._live()

        def attempt() -> bytes:
            with session.lock:
                self._check_open(session)
                done = self._remote_done()
                self._pump(session)
                buffer = self._buffers[stream]
                end = buffer.find(b"\n")
                if end >= 0 or done:
                    count = len(buffer) if end < 0 else end + 1
                    data = bytes(buffer[:count])
                    del buffer[:count]
                    return data
            raise WouldBlock(self._chan, Direction.READ)

        return retry(attempt, deadline, "channel read line")

    def eof(self) -> bool:
        """True once the remote side sent EOF"""
        return self._chan.eof_received

    def wait_eof(self, timeout_ms: Optional[int] = None) -> None:
        """Block until the remote side sends EOF; pending data stays readable"""
        self._wait_eof(self._deadline(timeout_ms))

    def _wait_eof(self, deadline: Deadline) -> None:
        session = self._live()

        def attempt() -> bool:
            with session.lock:
                self._check_open(session)
                done = self._remote_done()
                self._pump(session)
                if done:
                    return True
            raise WouldBlock(self._chan, Direction.READ)

        retry(attempt, deadline, "channel wait eof")

    def wait_closed(self, timeout_ms: Optional[int] = None) -> None:
        """Block until the remote side closes the channel"""
        session = self._live()
        deadline = session.deadline(timeout_ms)

        def attempt() -> bool:
            with session.lock:
                self._check_open(session)
                self._pump(session)
                if self._chan.closed:
                    return True
            raise WouldBlock(Until(self._chan.out_buffer_cv, lambda: self._chan.closed), Direction.READ)

        retry(attempt, deadline, "channel wait closed")

    def collect(self, timeout_ms: Optional[int] = None) -> Tuple[str, str]:
        """Wait for EOF and return everything received as (stdout, stderr)"""
        session = self._live()
        self._wait_eof(session.deadline(timeout_ms))
        with session.lock:
            self._pump(session)
            output = []
            for stream in Stream:
                data = bytes(self._buffers[stream])
                self._buffers[stream].clear()
                text = self._decoders[stream].decode(data, final=True)
                output.append(text)
        return output[0], output[1]

    # ============================================================
    # Writing
    # ============================================================

    def write(self, data: Union[str, bytes], timeout_ms: Optional[int] = None, stream: Stream = Stream.STDOUT) -> int:
        """
        Write all of ``data``, waiting for send window as needed.

        Returns:
            Number of bytes written

        Raises:
            TimeoutError: If the window stayed closed too long; bytes already
                sent stay sent and the channel stays usable
            StateError: If the channel, its session or its write side is closed
        """
        payload = data.encode(self._encoding) if isinstance(data, str) else bytes(data)
        return self._write(self._live(), payload, Stream(stream), self._deadline(timeout_ms))

    def _write(self, session: "TransportSession", payload: bytes, stream: Stream, deadline: Deadline) -> int:
        sender = self._chan.send if stream is Stream.STDOUT else self._chan.send_stderr
        sent = 0

        def attempt() -> int:
            nonlocal sent
            with session.lock:
                self._check_open(session)
                if self._eof_sent:
                    raise StateError("Cannot write after send_eof()")
                while sent < len(payload):
                    if self._chan.closed:
                        raise StateError("Channel was closed by the remote side")
                    if not self._chan.send_ready():
                        break
                    try:
                        sent += sender(payload[sent:sent + CHANNEL_WRITE_SIZE])
                    except socket.timeout:
                        break
                    except TRANSPORT_ERRORS as e:
                        raise session.map_error("channel write", e) from e
                if sent >= len(payload):
                    return sent
            raise WouldBlock(Until(self._chan.out_buffer_cv, self._send_window_open), Direction.WRITE)

        try:
            return retry(attempt, deadline, "channel write")
        finally:
            if sent:
                session.stats.add_transferred_bytes(sent)
                session.touch()

    def _write_bytes(self, payload: bytes, deadline: Deadline) -> int:
        return self._write(self._live(), payload, Stream.STDOUT, deadline)

    def send_eof(self, timeout_ms: Optional[int] = None) -> None:
        """Tell the remote side no more data will be written"""
        session = self._live()
        self._send_eof(session, session.deadline(timeout_ms))

    def _send_eof(self, session: "TransportSession", deadline: Deadline) -> None:
        if self._eof_sent:
            return
        if self._eof_trailer:
            self._write(session, self._eof_trailer, Stream.STDOUT, deadline)
            self._eof_trailer = None
        with session.lock:
            self._check_open(session)
            if not self._chan.closed:
                try:
                    self._chan.shutdown_write()
                except TRANSPORT_ERRORS as e:
                    raise session.map_error("send eof", e) from e
            self._eof_sent = True

    # ============================================================
    # Closing
    # ============================================================

    def close(self, timeout_ms: Optional[int] = None) -> None:
        """
        Send EOF, wait (up to the deadline) for the exit status, close the
        channel and detach it from its session. Idempotent, never raises
        for a lost connection.
        """
        if self._state is ChannelState.CLOSED:
            return
        session = self._session_ref()
        try:
            if session is not None and session.is_alive():
                self._finish(session, session.deadline(timeout_ms))
        finally:
            self._state = ChannelState.CLOSED
            if session is not None:
                session.unregister_child(self)

    def _teardown(self, deadline: Deadline) -> None:
        """Session teardown hook; the session unregisters us afterwards"""
        if self._state is ChannelState.CLOSED:
            return
        session = self._session_ref()
        try:
            if session is not None and session.is_alive():
                self._finish(session, deadline)
        finally:
            self._state = ChannelState.CLOSED

    def _finish(self, session: "TransportSession", deadline: Deadline) -> None:
        if not self._chan.closed and not self._eof_sent:
            try:
                self._send_eof(session, deadline)
            except SSHMuxError as e:
                logger.debug(f"Could not send EOF on channel {self.channel_id}: {e}")

        if self._expects_status and wait(self._chan.status_event, Direction.READ, deadline) is not WaitResult.READY:
            logger.debug(f"No exit status on channel {self.channel_id} before the deadline")

        with session.lock:
            try:
                self._chan.close()
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Error closing channel {self.channel_id}: {e}")
        self._exit_status = self._chan.exit_status

    def get_exit_status(self) -> int:
        """
        Exit status of the remote command.

        Only meaningful after close(); before that it may be stale (-1).
        """
        if self._exit_status is not None:
            return self._exit_status
        return self._chan.exit_status

    # ============================================================
    # Context manager
    # ============================================================

    def __enter__(self) -> "Channel":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Channel(id={self._chan.get_id()}, state={self.state.value})"

