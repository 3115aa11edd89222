"""
SCP over an exec channel

Sender side runs ``scp -t`` remotely and writes a ``C<mode> <size> <name>``
header (optionally preceded by a ``T<mtime> 0 <atime> 0`` line); receiver
side runs ``scp -f`` and parses the same headers. Every header is answered
with a single status byte: 0 is OK, 1 a warning and 2 a fatal error, the
latter two followed by a message line.
"""
import io
import posixpath
import shlex
import stat
import time
from typing import Optional, Tuple, Union, BinaryIO, Callable, Any, TYPE_CHECKING

from ...core.constants import DEFAULT_FILE_MODE, SCP_CHUNK_SIZE
from ...core.exceptions import ProtocolError
from ...core.logging import get_logger
from ...core.utils import require_path
from ...core.waiter import Deadline
from ..sftp.models import FileStat
from .channel import Channel

if TYPE_CHECKING:
    from ..session.transport import TransportSession

logger = get_logger(__name__)


# ============================================================
# Protocol helpers
# ============================================================

def _scp_error(message: bytes, path: str, code: Optional[int] = None) -> ProtocolError:
    text = message.decode("utf-8", errors="replace").strip()
    return ProtocolError(f"scp {path}: {text or 'remote error'}", code=code, path=path)


def _expect_ack(channel: Channel, deadline: Deadline, path: str) -> None:
    status = channel._read_exact(1, deadline)
    if status == b"\0":
        return
    if not status:
        raise ProtocolError(f"scp {path}: channel closed before acknowledgement", path=path)
    raise _scp_error(channel._read_line(deadline), path, code=status[0])


def _parse_times(line: bytes, path: str) -> Tuple[int, int]:
    # T<mtime> 0 <atime> 0
    try:
        fields = line[1:].split()
        return int(fields[0]), int(fields[2])
    except (IndexError, ValueError) as e:
        raise ProtocolError(f"scp {path}: bad time header {line!r}", path=path) from e


def _parse_copy(line: bytes, path: str) -> Tuple[int, int, str]:
    # C<mode> <size> <name>
    try:
        mode_text, size_text, name = line[1:].rstrip(b"\n").split(b" ", 2)
        return int(mode_text, 8), int(size_text), name.decode("utf-8", errors="replace")
    except ValueError as e:
        raise ProtocolError(f"scp {path}: bad file header {line!r}", path=path) from e


def _writer(sink: Union[BinaryIO, Callable[[bytes], Any]]) -> Callable[[bytes], Any]:
    return sink.write if hasattr(sink, "write") else sink


# ============================================================
# Channel forms
# ============================================================

def scp_put(
    session: "TransportSession",
    path: str,
    size: int,
    mode: int = DEFAULT_FILE_MODE,
    atime: Optional[int] = None,
    mtime: Optional[int] = None,
    timeout_ms: Optional[int] = None,
) -> Channel:
    """
    Start an SCP upload of ``size`` bytes to ``path``.

    The caller writes exactly ``size`` bytes to the returned channel, then
    calls send_eof() and close().
    """
    require_path(path)
    if size < 0:
        raise ValueError(f"Invalid size: {size}")

    deadline = session.deadline(timeout_ms)
    channel = Channel(session, session.open_raw_channel(deadline))
    try:
        preserve = atime is not None or mtime is not None
        channel._exec(f"scp {'-p ' if preserve else ''}-t {shlex.quote(path)}", deadline)
        _expect_ack(channel, deadline, path)

        if preserve:
            mtime = mtime if mtime is not None else int(time.time())
            atime = atime if atime is not None else mtime
            channel._write_bytes(f"T{mtime} 0 {atime} 0\n".encode(), deadline)
            _expect_ack(channel, deadline, path)

        name = posixpath.basename(path.rstrip("/")) or path
        channel._write_bytes(f"C{mode & 0o7777:04o} {size} {name}\n".encode("utf-8"), deadline)
        _expect_ack(channel, deadline, path)
    except BaseException:
        channel.close(timeout_ms=0)
        raise

    # Terminates the file data; sent together with EOF
    channel._eof_trailer = b"\0"
    logger.debug(f"scp upload started: {path} ({size} bytes, mode {mode & 0o7777:04o})")
    return channel


def scp_get(session: "TransportSession", path: str, timeout_ms: Optional[int] = None) -> Tuple[Channel, FileStat]:
    """
    Start an SCP download of ``path``.

    Returns:
        (channel, stat) - read ``stat.size`` bytes from the channel, then close() it
    """
    require_path(path)
    deadline = session.deadline(timeout_ms)
    channel = Channel(session, session.open_raw_channel(deadline))
    try:
        channel._exec(f"scp -pf {shlex.quote(path)}", deadline)
        channel._write_bytes(b"\0", deadline)

        mtime: Optional[int] = None
        atime: Optional[int] = None
        while True:
            line = channel._read_line(deadline)
            if not line:
                raise ProtocolError(f"scp {path}: channel closed before file header", path=path)
            kind = line[:1]
            if kind == b"T":
                mtime, atime = _parse_times(line, path)
                channel._write_bytes(b"\0", deadline)
            elif kind == b"C":
                mode, size, name = _parse_copy(line, path)
                channel._write_bytes(b"\0", deadline)
                break
            elif kind in (b"\x01", b"\x02"):
                raise _scp_error(line[1:], path, code=kind[0])
            else:
                raise ProtocolError(f"scp {path}: unexpected header {line!r}", path=path)
    except BaseException:
        channel.close(timeout_ms=0)
        raise

    file_stat = FileStat(
        path=path,
        name=name,
        size=size,
        mode=stat.S_IFREG | mode,
        atime=atime,
        mtime=mtime,
    )
    logger.debug(f"scp download started: {path} ({size} bytes)")
    return channel, file_stat


# ============================================================
# Stream forms
# ============================================================

def scp_download(
    session: "TransportSession",
    path: str,
    sink: Union[BinaryIO, Callable[[bytes], Any]],
    timeout_ms: Optional[int] = None,
) -> FileStat:
    """Download ``path`` into a writable object or callable; each chunk gets the full timeout"""
    channel, file_stat = scp_get(session, path, timeout_ms)
    write = _writer(sink)
    with channel:
        remaining = file_stat.size
        while remaining > 0:
            chunk = channel.read_binary(min(SCP_CHUNK_SIZE, remaining), timeout_ms)
            if not chunk:
                raise ProtocolError(
                    f"scp {path}: channel closed after {file_stat.size - remaining} of {file_stat.size} bytes",
                    path=path,
                )
            write(chunk)
            remaining -= len(chunk)

        deadline = session.deadline(timeout_ms)
        _expect_ack(channel, deadline, path)
        channel._write_bytes(b"\0", deadline)
    return file_stat


def scp_upload(
    session: "TransportSession",
    source: Union[bytes, BinaryIO],
    path: str,
    size: Optional[int] = None,
    mode: int = DEFAULT_FILE_MODE,
    atime: Optional[int] = None,
    mtime: Optional[int] = None,
    timeout_ms: Optional[int] = None,
) -> int:
    """
    Upload bytes or a readable binary stream to ``path``.

    Returns:
        Number of bytes sent

    Raises:
        ValueError: If a stream is given without ``size`` or ends early
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        size = len(data) if size is None else size
        reader: BinaryIO = io.BytesIO(data)
    else:
        if size is None:
            raise ValueError("size is required when uploading from a stream")
        reader = source

    channel = scp_put(session, path, size, mode, atime, mtime, timeout_ms)
    with channel:
        sent = 0
        try:
            while sent < size:
                chunk = reader.read(min(SCP_CHUNK_SIZE, size - sent))
                if not chunk:
                    raise ValueError(f"Source ended after {sent} of {size} bytes")
                channel.write(chunk, timeout_ms)
                sent += len(chunk)
        except BaseException:
            # Never terminate an incomplete file as if it were complete
            channel._eof_trailer = None
            raise

        channel.send_eof(timeout_ms)
        _expect_ack(channel, session.deadline(timeout_ms), path)
    return sent
