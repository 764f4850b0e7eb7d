"""Host-side services used by the simulated devices: files, sockets, signals, randomness."""

from __future__ import annotations

import contextlib
import os
import random
import select
import signal
import socket
import time
from typing import BinaryIO, Callable, Optional, Union

# Largest value returned by random_int(), matching a typical C library rand().
RAND_MAX = 2**31 - 1

# Poll delay used when the machine is idle, to let other simulators run.
IDLE_POLL_SECONDS = 0.02

_rng = random.Random()

FileLike = Union[int, "socket.socket", BinaryIO]


def _fileno(fd: FileLike) -> int:
    return fd if isinstance(fd, int) else fd.fileno()


def poll_file(fd: FileLike, idle: bool) -> bool:
    """Return True if ``fd`` has data that can be read without blocking.

    When ``idle`` is set the call waits briefly before giving up, so that a
    busy-waiting simulator leaves the host CPU to other processes.
    """
    timeout = IDLE_POLL_SECONDS if idle else 0.0
    readable, _, _ = select.select([_fileno(fd)], [], [], timeout)
    return bool(readable)


def open_for_write(name: Union[str, os.PathLike]) -> BinaryIO:
    """Open a file for reading and writing, creating or truncating it."""
    return open(name, "w+b")


def open_for_read(
    name: Union[str, os.PathLike], crash_on_error: bool
) -> Optional[BinaryIO]:
    """Open an existing file for reading.

    Returns None if it cannot be opened, unless ``crash_on_error`` is set,
    in which case the error propagates.
    """
    try:
        return open(name, "rb")
    except OSError:
        if crash_on_error:
            raise
        return None


def open_for_read_write(
    name: Union[str, os.PathLike], crash_on_error: bool
) -> Optional[BinaryIO]:
    """Open an existing file for reading and writing.

    Returns None if it cannot be opened, unless ``crash_on_error`` is set,
    in which case the error propagates.
    """
    try:
        return open(name, "r+b")
    except OSError:
        if crash_on_error:
            raise
        return None


def read_exact(stream: BinaryIO, n_bytes: int) -> bytes:
    """Read exactly ``n_bytes`` from ``stream``; raise EOFError on a short read."""
    data = stream.read(n_bytes)
    if data is None or len(data) != n_bytes:
        got = 0 if data is None else len(data)
        raise EOFError(f"expected {n_bytes} bytes, got {got}")
    return data


def write_all(stream: BinaryIO, data: bytes) -> None:
    """Write all of ``data`` to ``stream``; raise OSError on a short write."""
    written = stream.write(data)
    if written is not None and written != len(data):
        raise OSError(f"short write: {written} of {len(data)} bytes")


def open_socket() -> socket.socket:
    """Open a datagram socket for exchanging packets with other simulators."""
    return socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)


def assign_name_to_socket(sock: socket.socket, name: str) -> None:
    """Bind ``sock`` to the file name ``name``, replacing any stale one."""
    deassign_name_to_socket(name)
    sock.bind(name)


def deassign_name_to_socket(name: str) -> None:
    """Remove the file name given to a socket, if it exists."""
    with contextlib.suppress(OSError):
        os.unlink(name)


def poll_socket(sock: socket.socket, idle: bool) -> bool:
    """Return True if a packet is waiting on ``sock``."""
    return poll_file(sock, idle)


def read_from_socket(sock: socket.socket, packet_size: int) -> bytes:
    """Receive one packet of exactly ``packet_size`` bytes."""
    data, _ = sock.recvfrom(packet_size)
    if len(data) != packet_size:
        raise OSError(f"expected packet of {packet_size} bytes, got {len(data)}")
    return data


def send_to_socket(sock: socket.socket, data: bytes, to_name: str) -> None:
    """Send one packet to the socket bound to ``to_name``."""
    sent = sock.sendto(data, to_name)
    if sent != len(data):
        raise OSError(f"short send: {sent} of {len(data)} bytes")


def call_on_user_abort(func: Callable[[], None]):
    """Arrange for ``func`` to be called when the user interrupts (Ctrl-C).

    Returns the previously installed handler.
    """

    def _handler(signum, frame) -> None:
        func()

    return signal.signal(signal.SIGINT, _handler)


def delay(seconds: float) -> None:
    """Suspend the host process for ``seconds``."""
    time.sleep(seconds)


def random_init(seed: int) -> None:
    """Seed the pseudo-random number generator."""
    _rng.seed(seed)


def random_int() -> int:
    """Return a pseudo-random integer in ``[0, RAND_MAX]``."""
    return _rng.randrange(RAND_MAX + 1)