"""
In-process paramiko SSH/SFTP server used by the session, channel, SCP and
SFTP tests.

The server listens on 127.0.0.1, authenticates one user by password or
public key, serves SFTP from a temporary directory mapped to "/", and
emulates a handful of commands (see ``run_command``).
"""
import os
import socket
import threading
import time
from pathlib import Path
from typing import Dict, List, Tuple

import paramiko
import pytest
from paramiko import SFTPAttributes, SFTPHandle, SFTPServer, SFTPServerInterface
from paramiko.sftp import SFTP_OK, SFTP_FAILURE

from sshmux.domain.session import TransportSession

USER = "tester"
PASSWORD = "secret"

# Let the channel request reply go out before the command produces output
REPLY_GRACE = 0.05


# ============================================================
# SFTP
# ============================================================

class StubSFTPHandle(SFTPHandle):
    def stat(self):
        try:
            return SFTPAttributes.from_stat(os.fstat(self.readfile.fileno()))
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)

    def chattr(self, attr):
        try:
            SFTPServer.set_file_attr(self.filename, attr)
            return SFTP_OK
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)


class StubSFTPServer(SFTPServerInterface):
    """SFTP server chrooted to ``root``; the home directory is "/"."""

    def __init__(self, server, *args, root: str = "/", **kwargs):
        super().__init__(server, *args, **kwargs)
        self.root = root

    def _realpath(self, path: str) -> str:
        return self.root + self.canonicalize(path)

    def canonicalize(self, path):
        if isinstance(path, bytes):
            path = path.decode("utf-8")
        return os.path.normpath("/" + path).replace("//", "/")

    def list_folder(self, path):
        path = self._realpath(path)
        try:
            out = []
            for name in os.listdir(path):
                attr = SFTPAttributes.from_stat(os.lstat(os.path.join(path, name)))
                attr.filename = name
                out.append(attr)
            return out
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)

    def stat(self, path):
        try:
            return SFTPAttributes.from_stat(os.stat(self._realpath(path)))
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)

    def lstat(self, path):
        try:
            return SFTPAttributes.from_stat(os.lstat(self._realpath(path)))
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)

    def open(self, path, flags, attr):
        path = self._realpath(path)
        try:
            mode = getattr(attr, "st_mode", None)
            fd = os.open(path, flags, mode if mode is not None else 0o666)
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        if (flags & os.O_CREAT) and (attr is not None):
            attr._flags &= ~attr.FLAG_PERMISSIONS
            SFTPServer.set_file_attr(path, attr)
        if flags & os.O_WRONLY:
            fstr = "ab" if flags & os.O_APPEND else "wb"
        elif flags & os.O_RDWR:
            fstr = "a+b" if flags & os.O_APPEND else "r+b"
        else:
            fstr = "rb"
        f = os.fdopen(fd, fstr)
        handle = StubSFTPHandle(flags)
        handle.filename = path
        handle.readfile = f
        handle.writefile = f
        return handle

    def remove(self, path):
        try:
            os.remove(self._realpath(path))
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        return SFTP_OK

    def rename(self, oldpath, newpath):
        newpath = self._realpath(newpath)
        if os.path.exists(newpath):
            return SFTP_FAILURE
        try:
            os.rename(self._realpath(oldpath), newpath)
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        return SFTP_OK

    def posix_rename(self, oldpath, newpath):
        try:
            os.rename(self._realpath(oldpath), self._realpath(newpath))
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        return SFTP_OK

    def mkdir(self, path, attr):
        path = self._realpath(path)
        try:
            os.mkdir(path)
            if attr is not None:
                SFTPServer.set_file_attr(path, attr)
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        return SFTP_OK

    def rmdir(self, path):
        try:
            os.rmdir(self._realpath(path))
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        return SFTP_OK

    def chattr(self, path, attr):
        try:
            SFTPServer.set_file_attr(self._realpath(path), attr)
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        return SFTP_OK

    def symlink(self, target_path, path):
        try:
            os.symlink(target_path, self._realpath(path))
        except OSError as e:
            return SFTPServer.convert_errno(e.errno)
        return SFTP_OK


# ============================================================
# Commands
# ============================================================

def _recv_exact(chan: paramiko.Channel, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = chan.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def _recv_line(chan: paramiko.Channel) -> bytes:
    line = b""
    while not line.endswith(b"\n"):
        chunk = chan.recv(1)
        if not chunk:
            break
        line += chunk
    return line


def _recv_until_eof(chan: paramiko.Channel) -> bytes:
    data = b""
    while True:
        chunk = chan.recv(32768)
        if not chunk:
            return data
        data += chunk


def _echo_until_eof(chan: paramiko.Channel) -> None:
    while True:
        chunk = chan.recv(32768)
        if not chunk:
            return
        chan.sendall(chunk)


def _scp_sink(chan: paramiko.Channel, target: Path) -> int:
    """scp -t: receive one file"""
    chan.sendall(b"\0")
    line = _recv_line(chan)
    if line.startswith(b"T"):
        chan.sendall(b"\0")
        line = _recv_line(chan)
    if not line.startswith(b"C"):
        chan.sendall(b"\x02scp: protocol error\n")
        return 1
    mode, size, name = line[1:].rstrip(b"\n").split(b" ", 2)
    if target.is_dir():
        target = target / name.decode()
    if not target.parent.exists():
        chan.sendall(b"\x01scp: " + str(target.parent).encode() + b": No such file or directory\n")
        return 1
    chan.sendall(b"\0")
    data = _recv_exact(chan, int(size))
    _recv_exact(chan, 1)
    target.write_bytes(data)
    os.chmod(target, int(mode, 8))
    chan.sendall(b"\0")
    _recv_until_eof(chan)
    return 0


def _scp_source(chan: paramiko.Channel, source: Path) -> int:
    """scp -pf: send one file"""
    _recv_exact(chan, 1)
    if not source.is_file():
        chan.sendall(b"\x01scp: " + source.name.encode() + b": No such file or directory\n")
        return 1
    st = source.stat()
    chan.sendall(f"T{int(st.st_mtime)} 0 {int(st.st_atime)} 0\n".encode())
    _recv_exact(chan, 1)
    chan.sendall(f"C{st.st_mode & 0o7777:04o} {st.st_size} {source.name}\n".encode())
    _recv_exact(chan, 1)
    chan.sendall(source.read_bytes() + b"\0")
    _recv_exact(chan, 1)
    return 0


def run_command(server: "StubSSHServer", chan: paramiko.Channel, command: str) -> None:
    """
    Emulated commands:
        echo TEXT        TEXT and a newline on stdout
        fail             "boom" on stderr, exit status 3
        exit N           exit status N
        cat              echo stdin back as it arrives, until EOF
        big N            N bytes of "x"
        utf8             a multi-byte string split across two packets
        printenv NAME    value set with set_env()
        ls -l            a fake long listing
        hold             no output until the client sends EOF
        scp ... -t PATH  receive a file into the SFTP root
        scp -pf PATH     send a file from the SFTP root
    """
    time.sleep(REPLY_GRACE)
    words = command.split()
    status = 0
    try:
        if words[0] == "echo":
            chan.sendall(command[5:].encode() + b"\n")
        elif words[0] == "fail":
            chan.sendall_stderr(b"boom\n")
            status = 3
        elif words[0] == "exit":
            status = int(words[1])
        elif words[0] == "cat":
            _echo_until_eof(chan)
        elif words[0] == "big":
            chan.sendall(b"x" * int(words[1]))
        elif words[0] == "utf8":
            payload = "héllo wörld".encode("utf-8")
            chan.sendall(payload[:2])
            time.sleep(0.05)
            chan.sendall(payload[2:])
        elif words[0] == "printenv":
            chan.sendall(server.env.get(words[1], "").encode() + b"\n")
        elif words[:2] == ["ls", "-l"]:
            chan.sendall(b"total 0\n-rw-r--r-- 1 tester tester 0 Jan  1 00:00 file\n")
        elif words[0] == "hold":
            _recv_until_eof(chan)
        elif words[0] == "scp" and "-t" in words:
            status = _scp_sink(chan, server.local_path(words[-1].strip("'")))
        elif words[0] == "scp" and "-pf" in words:
            status = _scp_source(chan, server.local_path(words[-1].strip("'")))
        else:
            chan.sendall_stderr(f"{words[0]}: command not found\n".encode())
            status = 127
        chan.send_exit_status(status)
    except (OSError, EOFError, paramiko.SSHException):
        pass
    finally:
        chan.close()


def run_shell(chan: paramiko.Channel) -> None:
    """Line echo with a prompt; "exit" ends the shell"""
    time.sleep(REPLY_GRACE)
    try:
        chan.sendall(b"$ ")
        while True:
            line = _recv_line(chan)
            if not line or line.strip() == b"exit":
                break
            chan.sendall(line + b"$ ")
        chan.send_exit_status(0)
    except (OSError, EOFError, paramiko.SSHException):
        pass
    finally:
        chan.close()


def run_echo(chan: paramiko.Channel) -> None:
    """direct-tcpip target: echo everything back"""
    try:
        _echo_until_eof(chan)
    except (OSError, EOFError, paramiko.SSHException):
        pass
    finally:
        chan.close()


# ============================================================
# SSH server
# ============================================================

class StubServer(paramiko.ServerInterface):
    def __init__(self, owner: "StubSSHServer"):
        self.owner = owner

    def get_allowed_auths(self, username):
        return ",".join(self.owner.auth_methods)

    def check_auth_password(self, username, password):
        if "password" in self.owner.auth_methods and (username, password) == (USER, PASSWORD):
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_auth_publickey(self, username, key):
        if "publickey" in self.owner.auth_methods and username == USER and key == self.owner.client_key:
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_auth_interactive(self, username, submethods):
        if "keyboard-interactive" not in self.owner.auth_methods:
            return paramiko.AUTH_FAILED
        query = paramiko.InteractiveQuery("login", "")
        query.add_prompt("Password: ", False)
        return query

    def check_auth_interactive_response(self, responses):
        if list(responses) == [PASSWORD]:
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_channel_request(self, kind, chanid):
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_direct_tcpip_request(self, chanid, origin, destination):
        if destination[1] == self.owner.echo_port:
            self.owner.direct.add(chanid)
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_CONNECT_FAILED

    def check_channel_exec_request(self, channel, command):
        if self.owner.request_delay:
            time.sleep(self.owner.request_delay)
            return False
        self.owner.commands.append(command.decode())
        threading.Thread(target=run_command, args=(self.owner, channel, command.decode()), daemon=True).start()
        return True

    def check_channel_shell_request(self, channel):
        threading.Thread(target=run_shell, args=(channel,), daemon=True).start()
        return True

    def check_channel_pty_request(self, channel, term, width, height, pixelwidth, pixelheight, modes):
        self.owner.ptys.append(term.decode() if isinstance(term, bytes) else term)
        return True

    def check_channel_env_request(self, channel, name, value):
        name = name.decode() if isinstance(name, bytes) else name
        value = value.decode() if isinstance(value, bytes) else value
        self.owner.env[name] = value
        return True

    def check_channel_x11_request(self, channel, single_connection, auth_protocol, auth_cookie, screen_number):
        protocol = auth_protocol.decode() if isinstance(auth_protocol, bytes) else auth_protocol
        cookie = auth_cookie.decode() if isinstance(auth_cookie, bytes) else auth_cookie
        self.owner.x11.append((protocol, cookie, screen_number))
        return self.owner.allow_x11


class StubSSHServer:
    """Loopback SSH server; one paramiko Transport per accepted connection"""

    echo_port = 7

    def __init__(self, root: Path, host_key: paramiko.PKey, client_key: paramiko.PKey):
        self.root = root
        self.host_key = host_key
        self.client_key = client_key
        self.auth_methods: List[str] = ["publickey", "password"]
        self.commands: List[str] = []
        self.ptys: List[str] = []
        self.env: Dict[str, str] = {}
        self.x11: List[Tuple[str, str, int]] = []
        self.allow_x11 = True
        # Seconds an exec request stalls the connection before being refused
        self.request_delay = 0.0
        self.direct = set()
        self.transports: List[paramiko.Transport] = []
        self.channels: List[paramiko.Channel] = []
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(16)
        self.port = self._listener.getsockname()[1]
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def local_path(self, remote: str) -> Path:
        return self.root / remote.lstrip("/")

    def start(self) -> "StubSSHServer":
        self._thread.start()
        return self

    def _serve(self) -> None:
        while not self._stopped.is_set():
            try:
                sock, _ = self._listener.accept()
            except OSError:
                return
            transport = paramiko.Transport(sock)
            transport.add_server_key(self.host_key)
            transport.set_subsystem_handler("sftp", SFTPServer, StubSFTPServer, root=str(self.root))
            self.transports.append(transport)
            try:
                transport.start_server(server=StubServer(self))
            except (paramiko.SSHException, EOFError, OSError):
                continue
            threading.Thread(target=self._accept_channels, args=(transport,), daemon=True).start()

    def _accept_channels(self, transport: paramiko.Transport) -> None:
        while transport.is_active() and not self._stopped.is_set():
            chan = transport.accept(0.2)
            if chan is None:
                continue
            # paramiko closes a Channel once it is garbage collected
            self.channels.append(chan)
            if chan.get_id() in self.direct:
                threading.Thread(target=run_echo, args=(chan,), daemon=True).start()

    def drop_connections(self) -> None:
        """Kill every connection from the server side"""
        for chan in self.channels:
            try:
                chan.close()
            except (EOFError, OSError):
                # the client already dropped the socket
                pass
        self.channels.clear()
        for transport in self.transports:
            transport.close()

    def stop(self) -> None:
        self._stopped.set()
        self._listener.close()
        self.drop_connections()


class SilentServer:
    """Accepts TCP connections and never says anything"""

    def __init__(self):
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(4)
        self.port = self._listener.getsockname()[1]
        self._clients: List[socket.socket] = []
        threading.Thread(target=self._serve, daemon=True).start()

    def _serve(self) -> None:
        while True:
            try:
                sock, _ = self._listener.accept()
            except OSError:
                return
            self._clients.append(sock)

    def close(self) -> None:
        self._listener.close()
        for sock in self._clients:
            sock.close()


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture(scope="session")
def host_key() -> paramiko.RSAKey:
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def client_key() -> paramiko.RSAKey:
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def key_file(tmp_path: Path, client_key: paramiko.RSAKey) -> str:
    path = tmp_path / "id_rsa"
    client_key.write_private_key_file(str(path))
    return str(path)


@pytest.fixture
def remote_root(tmp_path: Path) -> Path:
    root = tmp_path / "remote"
    root.mkdir()
    return root


@pytest.fixture
def ssh_server(remote_root: Path, host_key, client_key):
    server = StubSSHServer(remote_root, host_key, client_key).start()
    yield server
    server.stop()


@pytest.fixture
def silent_server():
    server = SilentServer()
    yield server
    server.close()


@pytest.fixture
def closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def make_session(ssh_server):
    """Factory for unconnected sessions to the stub server; all are disconnected afterwards"""
    created: List[TransportSession] = []

    def factory(**kwargs) -> TransportSession:
        kwargs.setdefault("user", USER)
        kwargs.setdefault("password", PASSWORD)
        s = TransportSession("127.0.0.1", port=ssh_server.port, **kwargs)
        created.append(s)
        return s

    yield factory
    for s in created:
        s.disconnect()


@pytest.fixture
def session(make_session):
    s = make_session()
    s.connect(10000)
    return s


@pytest.fixture
def sftp(session):
    return session.sftp()
