"""
SFTP directory poller built on the public SftpSession operations
"""
import fnmatch
import posixpath
import re
import threading
import time
from typing import Optional, List, Callable, TYPE_CHECKING

from ...core.exceptions import ConnectError, HandshakeError, ProtocolError, StateError, TimeoutError
from ...core.logging import get_logger
from ..sftp.models import FileStat
from .models import PollerConfig, PolledFile

if TYPE_CHECKING:
    from ..session.transport import TransportSession
    from ..sftp.session import SftpSession

logger = get_logger(__name__)


class SftpPoller:
    """
    Periodically pick up files from a remote directory.

    Each poll lists the directory, keeps regular files that match the mask,
    regex and minimum age, retrieves them, hands each one to ``on_file`` and
    then deletes or moves it if configured.

    Args:
        session_provider: Returns a connected TransportSession; called again
            whenever the current one is lost
        config: Poller configuration
        on_file: Callback receiving each PolledFile
    """

    def __init__(
        self,
        session_provider: Callable[[], "TransportSession"],
        config: PollerConfig,
        on_file: Callable[[PolledFile], None],
    ) -> None:
        config.validate()
        self.config = config
        self._provider = session_provider
        self._on_file = on_file
        self._session: Optional["TransportSession"] = None
        self._regex = re.compile(config.regex) if config.regex else None

        # Statistics
        self.polls = 0
        self.files_processed = 0
        self.errors = 0

    def _sftp(self) -> "SftpSession":
        if self._session is None or not self._session.is_alive():
            self._session = self._provider()
        return self._session.sftp()

    def matches(self, entry: FileStat, now: Optional[float] = None) -> bool:
        """Whether a directory entry should be picked up"""
        if not entry.is_file:
            return False
        if self.config.mask and not fnmatch.fnmatchcase(entry.name, self.config.mask):
            return False
        if self._regex is not None and not self._regex.search(entry.name):
            return False
        if self.config.min_age:
            now = time.time() if now is None else now
            if entry.mtime is None or now - entry.mtime < self.config.min_age:
                return False
        return True

    def poll_once(self) -> List[FileStat]:
        """
        Run a single poll.

        Returns:
            Entries that were retrieved and handed to the callback
        """
        cfg = self.config
        sftp = self._sftp()
        now = time.time()
        entries = [e for e in sftp.list_full(cfg.path, cfg.timeout_ms) if self.matches(e, now)]

        if cfg.sort == "name":
            entries.sort(key=lambda e: e.name)
        elif cfg.sort == "mtime":
            entries.sort(key=lambda e: e.mtime or 0)
        if cfg.max_files:
            entries = entries[:cfg.max_files]

        processed = []
        for entry in entries:
            if cfg.binary:
                data = sftp.get_file(entry.path, cfg.timeout_ms)
            else:
                data = sftp.get_text_file(entry.path, cfg.encoding, cfg.timeout_ms)

            self._on_file(PolledFile(stat=entry, data=data))
            self._after(sftp, entry)
            processed.append(entry)
            self.files_processed += 1

        self.polls += 1
        if processed:
            logger.info(f"Poll of {cfg.path}: {len(processed)} file(s) processed")
        return processed

    def _after(self, sftp: "SftpSession", entry: FileStat) -> None:
        if self.config.after == "delete":
            sftp.remove_file(entry.path, self.config.timeout_ms)
        elif self.config.after == "move":
            target = posixpath.join(self.config.move_to, entry.name)
            sftp.rename(entry.path, target, overwrite=True, timeout_ms=self.config.timeout_ms)

    def run(self, stop_event: threading.Event) -> None:
        """
        Poll until ``stop_event`` is set.

        Timeouts and server errors back off for ``error_delay``; a lost
        connection additionally drops the session so the provider is asked
        for a fresh one.
        """
        logger.info(f"Polling {self.config.path} every {self.config.interval}s")
        while not stop_event.is_set():
            try:
                self.poll_once()
            except (StateError, ConnectError, HandshakeError) as e:
                self.errors += 1
                logger.warning(f"Connection lost while polling {self.config.path}: {e}")
                self._session = None
                stop_event.wait(self.config.error_delay)
                continue
            except (TimeoutError, ProtocolError) as e:
                self.errors += 1
                logger.warning(f"Poll of {self.config.path} failed: {e}")
                stop_event.wait(self.config.error_delay)
                continue

            stop_event.wait(self.config.interval)
        logger.info(f"Stopped polling {self.config.path}")
