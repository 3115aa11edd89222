"""
Deadline-bounded waiting on protocol readiness

Every blocking operation in sshmux has the same shape: make a non-blocking
attempt; if the attempt reports that it would block, wait until the thing it
needs is ready (or the deadline passes) and try again. ``retry()`` is that
loop, ``wait()`` is the single place that actually blocks.
"""
import select
import socket
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, Optional, TypeVar

from .exceptions import ConnectError, TimeoutError
from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Direction(str, Enum):
    """Readiness direction a protocol call needs next"""
    READ = "read"
    WRITE = "write"


class WaitResult(str, Enum):
    """Outcome of a single wait"""
    READY = "ready"
    TIMED_OUT = "timed_out"
    SOCKET_ERROR = "socket_error"


class Deadline:
    """
    Absolute point in time an operation must finish by.

    A negative or None timeout means the operation is unbounded.
    """

    def __init__(self, timeout_ms: Optional[int]):
        self.timeout_ms = timeout_ms
        if timeout_ms is None or timeout_ms < 0:
            self._expires_at: Optional[float] = None
        else:
            self._expires_at = time.monotonic() + timeout_ms / 1000.0

    @property
    def unbounded(self) -> bool:
        return self._expires_at is None

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left (never negative), or None when unbounded"""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def __repr__(self) -> str:
        return f"Deadline(timeout_ms={self.timeout_ms}, remaining={self.remaining()})"


class Until:
    """A condition variable and the predicate that means "ready" for it"""

    def __init__(self, condition: threading.Condition, predicate: Callable[[], bool]):
        self.condition = condition
        self.predicate = predicate


class WouldBlock(Exception):
    """
    Raised by a non-blocking attempt that cannot progress yet.

    Args:
        source: What to wait on (socket, selectable channel, Event or Until)
        direction: Readiness direction the attempt needs
    """

    def __init__(self, source: Any, direction: Direction = Direction.READ):
        super().__init__(f"would block on {direction.value}")
        self.source = source
        self.direction = direction


def wait(source: Any, direction: Direction, deadline: Deadline) -> WaitResult:
    """
    Block until ``source`` is ready in ``direction`` or the deadline passes.

    Supported sources:
    - ``threading.Event``: ready once set (direction is ignored)
    - ``Until``: ready once the predicate holds under its condition
    - anything with ``fileno()``: ready per ``select()`` in the given direction

    The remaining time is recomputed from the absolute deadline on every pass,
    so interrupted or spurious wake-ups never extend the deadline.
    """
    while True:
        remaining = deadline.remaining()
        if remaining is not None and remaining <= 0:
            return WaitResult.TIMED_OUT

        try:
            if isinstance(source, threading.Event):
                ready = source.wait(remaining)
            elif isinstance(source, Until):
                with source.condition:
                    ready = source.condition.wait_for(source.predicate, remaining)
            else:
                ready = _select(source, direction, remaining)
        except InterruptedError:
            continue
        except (OSError, ValueError) as e:
            logger.debug(f"Readiness wait failed on {source!r}: {e}")
            return WaitResult.SOCKET_ERROR

        if ready:
            return WaitResult.READY


def _select(source: Any, direction: Direction, timeout: Optional[float]) -> bool:
    """Wait on a selectable object in one direction only"""
    if direction is Direction.READ:
        readable, _, failed = select.select([source], [], [source], timeout)
        return bool(readable or failed)
    _, writable, failed = select.select([], [source], [source], timeout)
    return bool(writable or failed)


def retry(attempt: Callable[[], T], deadline: Deadline, operation: str) -> T:
    """
    Run a non-blocking attempt until it completes or the deadline passes.

    Args:
        attempt: Callable that returns a result, or raises WouldBlock
        deadline: Absolute deadline for the whole operation
        operation: Operation name used in error messages

    Returns:
        Whatever ``attempt`` returned

    Raises:
        TimeoutError: If the deadline passed while waiting
        ConnectError: If the readiness wait failed at the socket level
    """
    while True:
        try:
            return attempt()
        except WouldBlock as blocked:
            result = wait(blocked.source, blocked.direction, deadline)
            if result is WaitResult.TIMED_OUT:
                raise TimeoutError(
                    f"{operation} timed out after {deadline.timeout_ms}ms",
                    operation=operation,
                    timeout_ms=deadline.timeout_ms,
                )
            if result is WaitResult.SOCKET_ERROR:
                raise ConnectError(
                    f"{operation}: socket error while waiting for {blocked.direction.value} readiness"
                )


@contextmanager
def bounded(channel: Any, deadline: Deadline, operation: str) -> Iterator[None]:
    """
    Apply the remaining time as the channel timeout for code that blocks
    inside paramiko (the SFTP client), mapping socket timeouts to TimeoutError.
    """
    remaining = deadline.remaining()
    if remaining is not None and remaining <= 0:
        raise TimeoutError(
            f"{operation} timed out after {deadline.timeout_ms}ms",
            operation=operation,
            timeout_ms=deadline.timeout_ms,
        )

    previous = channel.gettimeout()
    channel.settimeout(remaining)
    try:
        yield
    except socket.timeout as e:
        raise TimeoutError(
            f"{operation} timed out after {deadline.timeout_ms}ms",
            operation=operation,
            timeout_ms=deadline.timeout_ms,
        ) from e
    finally:
        channel.settimeout(previous)
