"""
SFTP subsystem with a persistent remote working directory
"""
import errno
import io
import os
import posixpath
import socket
import stat
import weakref
from pathlib import Path
from typing import Optional, Dict, List, Tuple, Union, Callable, Any, BinaryIO, TypeVar, TYPE_CHECKING

import paramiko

from ...core.constants import (
    DEFAULT_DIR_MODE,
    DEFAULT_FILE_MODE,
    SFTP_CHUNK_SIZE,
    SFTP_FAILURE,
    SFTP_NO_SUCH_FILE,
    SFTP_PERMISSION_DENIED,
    SFTP_UGO_MASK,
)
from ...core.exceptions import SSHMuxError, ProtocolError, StateError, TimeoutError
from ...core.logging import get_logger
from ...core.utils import join_remote_path, require_path
from ...core.waiter import Deadline, bounded
from ..channel.channel import send_request
from ..session.models import SessionInfo
from ..session.transport import TRANSPORT_ERRORS
from .models import FileStat, FileType, DirectoryListing

if TYPE_CHECKING:
    from ..session.transport import TransportSession

logger = get_logger(__name__)

T = TypeVar("T")

SFTP_ERRORS = TRANSPORT_ERRORS + (paramiko.SFTPError,)

_ERRNO_CODES = {
    errno.ENOENT: SFTP_NO_SUCH_FILE,
    errno.EACCES: SFTP_PERMISSION_DENIED,
}


def _status_error(operation: str, path: str, error: OSError) -> ProtocolError:
    code = _ERRNO_CODES.get(error.errno, SFTP_FAILURE)
    message = error.strerror or str(error)
    return ProtocolError(f"sftp {operation} {path}: {message}", code=code, path=path)


class SftpSession:
    """
    Filesystem operations over the SFTP subsystem of one TransportSession.

    The subsystem channel is opened on first use and re-opened after a
    timeout or a reconnect of the parent session; the working directory is
    kept here as a plain string and replayed on every re-open, so relative
    paths keep meaning the same thing. Relative paths are resolved against
    it locally before being sent.

    Every operation takes ``timeout_ms`` (default 30000, negative for none).
    Server-side failures raise ProtocolError; a missing file in stat()
    returns None instead.
    """

    def __init__(self, session: "TransportSession") -> None:
        self._session_ref = weakref.ref(session)
        self._client: Optional[paramiko.SFTPClient] = None
        self._chan: Optional[paramiko.Channel] = None
        self._cwd: Optional[str] = None
        self._handles: Dict[int, paramiko.SFTPFile] = {}

    # ============================================================
    # Subsystem lifecycle
    # ============================================================

    @property
    def path(self) -> Optional[str]:
        """Current remote working directory (None before first use)"""
        return self._cwd

    @property
    def open_handles(self) -> int:
        return len(self._handles)

    def _session(self) -> "TransportSession":
        session = self._session_ref()
        if session is None:
            raise StateError("SFTP session's transport session no longer exists")
        return session

    def _ensure_open(self, session: "TransportSession", deadline: Deadline) -> paramiko.SFTPClient:
        session.require_transport()
        if self._client is not None:
            if not self._chan.closed:
                return self._client
            self._discard(session, "subsystem channel was closed")

        chan = session.open_raw_channel(deadline)
        try:
            send_request(session, chan, "subsystem", deadline, lambda m: m.add_string("sftp"))
            with bounded(chan, deadline, "sftp open"):
                client = paramiko.SFTPClient(chan)
                if self._cwd is None:
                    cwd = client.normalize(".")
                else:
                    cwd = self._cwd
                    try:
                        client.chdir(cwd)
                    except socket.timeout:
                        raise
                    except IOError as e:
                        logger.warning(f"Could not restore remote directory {cwd}: {e}")
        except SSHMuxError:
            chan.close()
            raise
        except SFTP_ERRORS as e:
            chan.close()
            raise session.map_error("sftp open", e, deadline) from e

        self._client = client
        self._chan = chan
        self._cwd = cwd
        session.register_child(self)
        logger.debug(f"SFTP subsystem opened on {session.host} (cwd {cwd})")
        return client

    def _discard(self, session: "TransportSession", reason: str) -> None:
        """Drop the subsystem channel without talking SFTP over it again"""
        logger.debug(f"Discarding SFTP subsystem: {reason}")
        self._handles.clear()
        chan, self._chan, self._client = self._chan, None, None
        if chan is not None:
            try:
                chan.close()
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Error closing SFTP channel: {e}")
        session.unregister_child(self)

    def _teardown(self, deadline: Deadline) -> None:
        """Close every tracked remote handle, then the subsystem"""
        session = self._session_ref()
        chan, client = self._chan, self._client
        try:
            if chan is not None and not chan.closed and session is not None and session.is_alive():
                for handle in list(self._handles.values()):
                    try:
                        with bounded(chan, deadline, "sftp close handle"):
                            handle.close()
                    except (SSHMuxError, *SFTP_ERRORS) as e:
                        logger.warning(f"Error closing remote file handle: {e}")
                client.close()
        finally:
            self._handles.clear()
            self._client = None
            self._chan = None

    def close(self, timeout_ms: Optional[int] = None) -> None:
        """Close the subsystem; the next operation re-opens it"""
        session = self._session_ref()
        if session is None or self._client is None:
            return
        with session.lock:
            try:
                self._teardown(session.deadline(timeout_ms))
            finally:
                session.unregister_child(self)

    def is_alive(self) -> bool:
        """Cheap probe: parent alive and subsystem channel open"""
        session = self._session_ref()
        return (
            session is not None
            and session.is_alive()
            and self._chan is not None
            and not self._chan.closed
        )

    def info(self) -> SessionInfo:
        """Parent session info plus the current directory"""
        info = self._session().info()
        info.sftp_path = self._cwd
        return info

    # ============================================================
    # Call plumbing
    # ============================================================

    def _call(
        self,
        operation: str,
        path: str,
        func: Callable[[paramiko.SFTPClient, str], T],
        timeout_ms: Optional[int],
        handle: Optional[paramiko.SFTPFile] = None,
    ) -> T:
        """
        Run one bounded SFTP call under the session lock.

        ``func`` receives the client and the absolute path. A timeout or a
        broken subsystem discards the channel (a half-read reply would
        desynchronize it); status errors leave it intact.
        """
        require_path(path)
        session = self._session()
        deadline = session.deadline(timeout_ms)
        with session.lock:
            if handle is None:
                client = self._ensure_open(session, deadline)
                target = join_remote_path(self._cwd, path)
            else:
                session.require_transport()
                if id(handle) not in self._handles or self._client is None:
                    raise StateError(f"Remote file handle for {path} is no longer valid")
                client, target = self._client, path

            try:
                with bounded(self._chan, deadline, f"sftp {operation}"):
                    result = func(client, target)
            except TimeoutError:
                self._discard(session, f"{operation} timed out")
                raise
            except IOError as e:
                if self._chan is not None and not self._chan.closed and session.is_alive():
                    raise _status_error(operation, target, e) from e
                self._discard(session, str(e))
                raise session.map_error(f"sftp {operation}", e, deadline) from e
            except (paramiko.SSHException, paramiko.SFTPError, EOFError) as e:
                self._discard(session, str(e))
                raise session.map_error(f"sftp {operation}", e, deadline) from e

            session.touch()
            return result

    def _open_handle(self, path: str, mode: str, timeout_ms: Optional[int]) -> Tuple[paramiko.SFTPFile, str]:
        def opener(client: paramiko.SFTPClient, target: str) -> Tuple[paramiko.SFTPFile, str]:
            handle = client.open(target, mode)
            self._handles[id(handle)] = handle
            return handle, target

        return self._call("open", path, opener, timeout_ms)

    def _close_handle(self, handle: paramiko.SFTPFile, target: str, timeout_ms: Optional[int]) -> None:
        if id(handle) not in self._handles:
            return
        try:
            self._call("close", target, lambda client, p: handle.close(), timeout_ms, handle=handle)
        finally:
            self._handles.pop(id(handle), None)

    # ============================================================
    # Metadata
    # ============================================================

    def stat(self, path: str, timeout_ms: Optional[int] = None) -> Optional[FileStat]:
        """Stat a path (following links); None when it doesn't exist"""
        try:
            return self._call(
                "stat", path, lambda client, p: FileStat.from_attributes(p, client.stat(p)), timeout_ms
            )
        except ProtocolError as e:
            if e.code == SFTP_NO_SUCH_FILE:
                return None
            raise

    def list(self, path: str = ".", timeout_ms: Optional[int] = None) -> List[str]:
        """Entry names of a directory, in server order"""
        return self._call("list", path, lambda client, p: client.listdir(p), timeout_ms)

    def list_full(self, path: str = ".", timeout_ms: Optional[int] = None) -> List[FileStat]:
        """Entries of a directory with their metadata, in server order"""
        def lister(client: paramiko.SFTPClient, target: str) -> List[FileStat]:
            return [
                FileStat.from_attributes(posixpath.join(target, attrs.filename), attrs, name=attrs.filename)
                for attrs in client.listdir_attr(target)
            ]

        return self._call("list", path, lister, timeout_ms)

    def list_by_type(self, path: str = ".", timeout_ms: Optional[int] = None) -> DirectoryListing:
        """Entry names grouped into directories, regular files and symbolic links"""
        entries = self.list_full(path, timeout_ms)
        listing = DirectoryListing(path=join_remote_path(self._cwd, path))
        for entry in entries:
            if entry.type is FileType.DIRECTORY:
                listing.directories.append(entry.name)
            elif entry.type is FileType.REGULAR:
                listing.files.append(entry.name)
            elif entry.type is FileType.SYMBOLIC_LINK:
                listing.links.append(entry.name)
        return listing

    def chdir(self, path: str, timeout_ms: Optional[int] = None) -> str:
        """
        Change the working directory.

        Returns:
            The new absolute directory

        Raises:
            ProtocolError: If the path doesn't exist or isn't a directory
        """
        def resolve(client: paramiko.SFTPClient, target: str) -> str:
            resolved = client.normalize(target)
            mode = client.stat(resolved).st_mode or 0
            if not stat.S_ISDIR(mode):
                raise ProtocolError(f"sftp chdir {resolved}: not a directory", code=SFTP_FAILURE, path=resolved)
            return resolved

        self._cwd = self._call("chdir", path, resolve, timeout_ms)
        return self._cwd

    def chmod(self, path: str, mode: int, timeout_ms: Optional[int] = None) -> None:
        """
        Set the user/group/other permission bits, keeping the others.

        Some servers report an error after applying the change; the result is
        re-checked before giving up.
        """
        def change(client: paramiko.SFTPClient, target: str) -> None:
            current = client.stat(target).st_mode or 0
            client_mode = (current & ~SFTP_UGO_MASK) | (mode & SFTP_UGO_MASK)
            try:
                client.chmod(target, client_mode)
            except socket.timeout:
                raise
            except IOError:
                applied = client.stat(target).st_mode or 0
                if applied & SFTP_UGO_MASK != mode & SFTP_UGO_MASK:
                    raise
                logger.debug(f"chmod {target}: server reported an error but the mode was applied")

        self._call("chmod", path, change, timeout_ms)

    # ============================================================
    # Namespace changes
    # ============================================================

    def rename(self, old: str, new: str, overwrite: bool = False, timeout_ms: Optional[int] = None) -> None:
        """Rename a file; with overwrite, use the posix-rename extension to replace ``new``"""
        require_path(new, "new path")

        def move(client: paramiko.SFTPClient, target: str) -> None:
            destination = join_remote_path(self._cwd, new)
            if overwrite:
                client.posix_rename(target, destination)
            else:
                client.rename(target, destination)

        self._call("rename", old, move, timeout_ms)

    def remove_file(self, path: str, timeout_ms: Optional[int] = None) -> None:
        self._call("remove", path, lambda client, p: client.remove(p), timeout_ms)

    def mkdir(self, path: str, mode: int = DEFAULT_DIR_MODE, timeout_ms: Optional[int] = None) -> None:
        self._call("mkdir", path, lambda client, p: client.mkdir(p, mode), timeout_ms)

    def rmdir(self, path: str, timeout_ms: Optional[int] = None) -> None:
        self._call("rmdir", path, lambda client, p: client.rmdir(p), timeout_ms)

    # ============================================================
    # Streaming transfers
    # ============================================================

    def get(self, path: str, sink: Union[BinaryIO, Callable[[bytes], Any]], timeout_ms: Optional[int] = None) -> int:
        """
        Stream a remote file into a writable object or callable.

        Each chunk read is bounded by ``timeout_ms`` separately.

        Returns:
            Number of bytes transferred
        """
        write = sink.write if hasattr(sink, "write") else sink
        handle, target = self._open_handle(path, "rb", timeout_ms)
        total = 0
        try:
            while True:
                chunk = self._call(
                    "read", target, lambda client, p: handle.read(SFTP_CHUNK_SIZE), timeout_ms, handle=handle
                )
                if not chunk:
                    break
                write(chunk)
                total += len(chunk)
        finally:
            self._close_handle(handle, target, timeout_ms)

        self._session().stats.add_transferred_bytes(total)
        logger.debug(f"sftp get {target}: {total} bytes")
        return total

    def put(
        self,
        source: Union[bytes, BinaryIO],
        path: str,
        mode: Optional[int] = DEFAULT_FILE_MODE,
        timeout_ms: Optional[int] = None,
    ) -> int:
        """
        Stream bytes or a readable binary object into a remote file, then
        apply ``mode`` (skipped when None). Creates or truncates the file.

        Returns:
            Number of bytes transferred
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            reader: BinaryIO = io.BytesIO(bytes(source))
        else:
            reader = source

        handle, target = self._open_handle(path, "wb", timeout_ms)
        total = 0
        try:
            while True:
                chunk = reader.read(SFTP_CHUNK_SIZE)
                if not chunk:
                    break
                self._call("write", target, lambda client, p: handle.write(chunk), timeout_ms, handle=handle)
                total += len(chunk)
        finally:
            self._close_handle(handle, target, timeout_ms)

        if mode is not None:
            self.chmod(target, mode, timeout_ms)

        self._session().stats.add_transferred_bytes(total)
        logger.debug(f"sftp put {target}: {total} bytes")
        return total

    # ============================================================
    # Whole-file helpers
    # ============================================================

    def get_file(self, path: str, timeout_ms: Optional[int] = None) -> bytes:
        """Read a whole remote file"""
        buffer = io.BytesIO()
        self.get(path, buffer, timeout_ms)
        return buffer.getvalue()

    def get_text_file(self, path: str, encoding: str = "utf-8", timeout_ms: Optional[int] = None) -> str:
        return self.get_file(path, timeout_ms).decode(encoding)

    def put_file(
        self,
        data: Union[bytes, str],
        path: str,
        mode: Optional[int] = DEFAULT_FILE_MODE,
        encoding: str = "utf-8",
        timeout_ms: Optional[int] = None,
    ) -> int:
        """Write a whole remote file from bytes or text"""
        payload = data.encode(encoding) if isinstance(data, str) else bytes(data)
        return self.put(payload, path, mode, timeout_ms)

    def retrieve_file(self, remote_path: str, local_path: Union[str, Path], timeout_ms: Optional[int] = None) -> int:
        """Download a remote file to a local path"""
        local = Path(local_path).expanduser()
        with open(local, "wb") as f:
            return self.get(remote_path, f, timeout_ms)

    def transfer_file(
        self,
        local_path: Union[str, Path],
        remote_path: str,
        mode: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> int:
        """Upload a local file; without ``mode`` the local permission bits are used"""
        local = Path(local_path).expanduser()
        if mode is None:
            mode = os.stat(local).st_mode & SFTP_UGO_MASK
        with open(local, "rb") as f:
            return self.put(f, remote_path, mode, timeout_ms)

    # ============================================================
    # Context manager
    # ============================================================

    def __enter__(self) -> "SftpSession":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SftpSession(path={self._cwd!r}, open={self._client is not None})"
