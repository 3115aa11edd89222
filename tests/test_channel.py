import threading
import time

import pytest

from sshmux.core.exceptions import ProtocolError, StateError, TimeoutError
from sshmux.domain.channel import ChannelState, ExtendedData, Stream


class TestExec:
    def test_ls_then_exit_status(self, session):
        channel = session.exec("ls -l")
        data = channel.read(timeout_ms=5000)
        assert data
        channel.send_eof()
        channel.close()
        assert channel.state is ChannelState.CLOSED
        assert isinstance(channel.get_exit_status(), int)
        assert channel.get_exit_status() == 0

    def test_run_collects_streams_and_status(self, session):
        result = session.run("fail")
        assert result.exit_code == 3
        assert not result.success
        assert result.stdout == ""
        assert result.stderr == "boom\n"

    def test_unknown_command(self, session):
        result = session.run("frobnicate")
        assert result.exit_code == 127
        assert "command not found" in result.stderr

    def test_exit_status(self, session):
        assert session.run("exit 42").exit_code == 42

    def test_read_at_eof_returns_empty(self, session):
        with session.exec("echo hi") as channel:
            channel.wait_eof(5000)
            assert channel.eof()
            assert channel.read(timeout_ms=1000) == "hi\n"
            assert channel.read(timeout_ms=1000) == ""

    def test_read_stderr_stream(self, session):
        with session.exec("fail") as channel:
            assert channel.read(timeout_ms=5000, stream=Stream.STDERR) == "boom\n"

    def test_extended_data_merge(self, session):
        channel = session.open_channel()
        channel.extended_data_merge()
        channel.exec("fail")
        stdout, stderr = channel.collect(5000)
        channel.close()
        assert stdout == "boom\n"
        assert stderr == ""

    def test_extended_data_ignore(self, session):
        channel = session.open_channel()
        channel.extended_data_ignore()
        assert channel.extended_data is ExtendedData.IGNORE
        channel.exec("fail")
        assert channel.collect(5000) == ("", "")
        channel.close()
        assert channel.get_exit_status() == 3

    def test_ignore_drops_buffered_stderr(self, session):
        with session.exec("fail") as channel:
            channel.wait_eof(5000)
            channel.extended_data_ignore()
            assert channel.collect(5000) == ("", "")

    def test_extended_data_back_to_normal(self, session):
        channel = session.open_channel()
        channel.extended_data_merge()
        channel.extended_data_normal()
        assert channel.extended_data is ExtendedData.NORMAL
        channel.exec("fail")
        assert channel.collect(5000) == ("", "boom\n")
        channel.close()

    def test_set_env(self, session, ssh_server):
        channel = session.open_channel()
        channel.set_env("LANG", "C.UTF-8")
        channel.exec("printenv LANG")
        assert channel.collect(5000)[0] == "C.UTF-8\n"
        channel.close()

    def test_requests_only_before_activation(self, session):
        with session.exec("hold") as channel:
            with pytest.raises(StateError):
                channel.exec("echo again")

    def test_request_reply_is_bounded(self, session, ssh_server):
        ssh_server.request_delay = 2
        channel = session.open_channel()
        start = time.monotonic()
        with pytest.raises(TimeoutError):
            channel.exec("echo late", timeout_ms=300)
        assert time.monotonic() - start < 1.5
        assert channel.state is ChannelState.CLOSED
        assert session.child_count == 0


class TestReadBehaviour:
    def test_timeout_is_recoverable(self, session):
        with session.exec("hold") as channel:
            with pytest.raises(TimeoutError):
                channel.read(timeout_ms=100)
            assert channel.state is ChannelState.ACTIVE
            channel.send_eof()
            channel.wait_eof(5000)

    def test_read_block_exact(self, session):
        with session.exec("big 10000") as channel:
            assert len(channel.read_block_binary(4096, 5000)) == 4096
            assert len(channel.read_block_binary(4096, 5000)) == 4096
            # Short only at EOF
            assert len(channel.read_block_binary(4096, 5000)) == 10000 - 8192

    def test_read_block_keeps_partial_data_on_timeout(self, session):
        with session.exec("cat") as channel:
            channel.write(b"abc", 1000)
            with pytest.raises(TimeoutError):
                channel.read_block_binary(6, 300)
            channel.write(b"def", 1000)
            assert channel.read_block_binary(6, 5000) == b"abcdef"

    def test_read_size_limits(self, session):
        with session.exec("echo 0123456789") as channel:
            channel.wait_eof(5000)
            assert channel.read_binary(4, 1000) == b"0123"
            assert channel.read_binary(None, 1000) == b"456789\n"

    def test_multibyte_never_split(self, session):
        with session.exec("utf8") as channel:
            # The server splits the first multi-byte character across two packets
            text = channel.read(timeout_ms=5000)
            channel.wait_eof(5000)
            text += channel.read(timeout_ms=5000)
        assert text == "héllo wörld"

    def test_encoding(self, session):
        with session.exec("echo café") as channel:
            channel.set_encoding("latin-1")
            channel.wait_eof(5000)
            assert channel.read(timeout_ms=1000) == "café".encode("utf-8").decode("latin-1") + "\n"

    def test_zero_size_read(self, session):
        with session.exec("hold") as channel:
            assert channel.read_binary(0, 10) == b""


class TestWrite:
    def test_cat_round_trip(self, session):
        payload = b"line one\nline two\n" * 1000
        channel = session.exec("cat")
        assert channel.write(payload, 5000) == len(payload)
        channel.send_eof()
        assert channel.state is ChannelState.EOF_SENT
        received = b""
        while True:
            chunk = channel.read_binary(timeout_ms=5000)
            if not chunk:
                break
            received += chunk
        channel.close()
        assert received == payload
        assert channel.get_exit_status() == 0

    def test_write_after_eof(self, session):
        with session.exec("cat") as channel:
            channel.send_eof()
            with pytest.raises(StateError):
                channel.write("late")

    def test_large_write_waits_for_window(self, session):
        payload = b"z" * (3 * 1024 * 1024)
        channel = session.exec("cat")
        received = bytearray()

        def reader():
            while True:
                chunk = channel.read_binary(timeout_ms=10000)
                if not chunk:
                    return
                received.extend(chunk)

        thread = threading.Thread(target=reader)
        thread.start()
        channel.write(payload, 20000)
        channel.send_eof()
        thread.join(20)
        channel.close()
        assert len(received) == len(payload)


class TestShell:
    def test_pty_and_shell(self, session, ssh_server):
        with session.shell(term="xterm") as channel:
            assert channel.read_block(2, 5000) == "$ "
            channel.write("hello\n")
            assert channel._read_line(session.deadline(5000)) == b"hello\n"
            channel.write("exit\n")
            channel.wait_closed(5000)
        assert ssh_server.ptys == ["xterm"]
        assert channel.get_exit_status() == 0

    def test_shell_without_pty(self, session, ssh_server):
        with session.shell(term=None) as channel:
            assert channel.read_block(2, 5000) == "$ "
        assert ssh_server.ptys == []


class TestX11:
    def test_x11_request_accepted(self, session, ssh_server):
        channel = session.open_channel()
        cookie = channel.request_x11(screen_number=1, timeout_ms=5000)
        assert len(cookie) == 32
        assert ssh_server.x11 == [("MIT-MAGIC-COOKIE-1", cookie, 1)]
        assert channel.state is ChannelState.OPENED
        channel.exec("echo x")
        assert channel.collect(5000)[0] == "x\n"
        channel.close()

    def test_explicit_cookie(self, session, ssh_server):
        with session.open_channel() as channel:
            assert channel.request_x11(auth_cookie="00ff", timeout_ms=5000) == "00ff"
        assert ssh_server.x11[0][1] == "00ff"

    def test_x11_request_rejected(self, session, ssh_server):
        ssh_server.allow_x11 = False
        channel = session.open_channel()
        with pytest.raises(ProtocolError):
            channel.request_x11(timeout_ms=5000)
        assert channel.state is ChannelState.CLOSED


class TestDirectTcpip:
    def test_echo_through_server(self, session, ssh_server):
        with session.open_direct_tcpip("localhost", ssh_server.echo_port) as channel:
            channel.write(b"ping", 5000)
            assert channel.read_block_binary(4, 5000) == b"ping"

    def test_rejected_destination(self, session):
        with pytest.raises(ProtocolError):
            session.open_direct_tcpip("localhost", 1)


class TestLifecycle:
    def test_close_is_idempotent(self, session):
        channel = session.exec("echo x")
        channel.close()
        channel.close()
        assert session.child_count == 0

    def test_calls_after_close(self, session):
        channel = session.exec("echo x")
        channel.close()
        with pytest.raises(StateError):
            channel.read(timeout_ms=100)
        with pytest.raises(StateError):
            channel.write("x")

    def test_close_without_command_is_quick(self, session):
        channel = session.open_channel()
        start = time.monotonic()
        channel.close()
        assert time.monotonic() - start < 2

    def test_concurrent_channels_get_their_own_payload(self, session):
        results = {}

        def worker(n):
            results[n] = session.run(f"echo payload-{n}", 10000).stdout

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)
        assert results == {n: f"payload-{n}\n" for n in range(8)}
