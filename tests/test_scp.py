import io
import os

import pytest

from sshmux.core.exceptions import ProtocolError
from sshmux.domain.channel.scp import _parse_copy, _parse_times


class TestHeaders:
    def test_parse_copy(self):
        assert _parse_copy(b"C0644 12 notes.txt\n", "/x") == (0o644, 12, "notes.txt")

    def test_parse_copy_name_with_spaces(self):
        assert _parse_copy(b"C0600 0 my file\n", "/x") == (0o600, 0, "my file")

    def test_parse_copy_garbage(self):
        with pytest.raises(ProtocolError):
            _parse_copy(b"Cxyz\n", "/x")

    def test_parse_times(self):
        assert _parse_times(b"T1700000000 0 1600000000 0\n", "/x") == (1700000000, 1600000000)


class TestUpload:
    def test_channel_form(self, session, remote_root):
        payload = b"hello scp\n"
        channel = session.scp_put("/up.txt", len(payload), 0o600)
        channel.write(payload, 5000)
        channel.send_eof()
        channel.close()
        assert channel.get_exit_status() == 0
        target = remote_root / "up.txt"
        assert target.read_bytes() == payload
        assert os.stat(target).st_mode & 0o777 == 0o600

    def test_upload_bytes_with_times(self, session, remote_root):
        sent = session.scp_upload(b"abc" * 5000, "/times.bin", mtime=1700000000)
        assert sent == 15000
        assert (remote_root / "times.bin").read_bytes() == b"abc" * 5000

    def test_upload_stream(self, session, remote_root):
        data = os.urandom(70000)
        sent = session.scp_upload(io.BytesIO(data), "/rand.bin", len(data))
        assert sent == len(data)
        assert (remote_root / "rand.bin").read_bytes() == data

    def test_empty_file(self, session, remote_root):
        assert session.scp_upload(b"", "/empty") == 0
        assert (remote_root / "empty").read_bytes() == b""

    def test_stream_requires_size(self, session):
        with pytest.raises(ValueError):
            session.scp_upload(io.BytesIO(b"x"), "/x")

    def test_missing_directory(self, session):
        with pytest.raises(ProtocolError, match="No such file"):
            session.scp_upload(b"x", "/no/such/dir/file")


class TestDownload:
    def test_channel_form(self, session, remote_root):
        (remote_root / "down.txt").write_bytes(b"0123456789")
        os.chmod(remote_root / "down.txt", 0o640)
        channel, stat = session.scp_get("/down.txt")
        with channel:
            data = channel.read_block_binary(stat.size, 5000)
        assert data == b"0123456789"
        assert stat.size == 10
        assert stat.name == "down.txt"
        assert stat.mode & 0o777 == 0o640
        assert stat.mtime == int(os.stat(remote_root / "down.txt").st_mtime)

    def test_download_to_sink(self, session, remote_root):
        data = os.urandom(50000)
        (remote_root / "blob").write_bytes(data)
        sink = io.BytesIO()
        stat = session.scp_download("/blob", sink)
        assert sink.getvalue() == data
        assert stat.size == len(data)

    def test_missing_file(self, session):
        with pytest.raises(ProtocolError, match="No such file"):
            session.scp_get("/missing")
        assert session.child_count == 0
