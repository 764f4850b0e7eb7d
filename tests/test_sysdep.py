import os
import signal
from unittest import mock

import pytest

from nachosim.sysdep import (
    RAND_MAX,
    assign_name_to_socket,
    call_on_user_abort,
    deassign_name_to_socket,
    delay,
    open_for_read,
    open_for_read_write,
    open_for_write,
    open_socket,
    poll_file,
    poll_socket,
    random_init,
    random_int,
    read_exact,
    read_from_socket,
    send_to_socket,
    write_all,
)


def test_write_then_read_round_trip(tmp_path):
    path = tmp_path / "data.bin"
    with open_for_write(path) as stream:
        write_all(stream, b"hello disk")
    with open_for_read(path, True) as stream:
        assert read_exact(stream, 10) == b"hello disk"


def test_open_for_write_truncates(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"old contents")
    with open_for_write(path) as stream:
        write_all(stream, b"new")
    assert path.read_bytes() == b"new"


def test_read_exact_short_read_raises(tmp_path):
    path = tmp_path / "short.bin"
    path.write_bytes(b"abc")
    with open_for_read(path, True) as stream:
        with pytest.raises(EOFError):
            read_exact(stream, 4)


def test_open_for_read_missing_without_crash_returns_none(tmp_path):
    assert open_for_read(tmp_path / "missing", False) is None


def test_open_for_read_missing_with_crash_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        open_for_read(tmp_path / "missing", True)


def test_open_for_read_write_missing(tmp_path):
    assert open_for_read_write(tmp_path / "missing", False) is None
    with pytest.raises(FileNotFoundError):
        open_for_read_write(tmp_path / "missing", True)


def test_open_for_read_write_updates_in_place(tmp_path):
    path = tmp_path / "rw.bin"
    path.write_bytes(b"abcdef")
    with open_for_read_write(path, True) as stream:
        stream.seek(2)
        write_all(stream, b"XY")
        stream.seek(0)
        assert read_exact(stream, 6) == b"abXYef"


def test_poll_file_on_pipe():
    read_fd, write_fd = os.pipe()
    try:
        assert poll_file(read_fd, False) is False
        os.write(write_fd, b"x")
        assert poll_file(read_fd, False) is True
    finally:
        os.close(read_fd)
        os.close(write_fd)


def test_socket_round_trip(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    receiver = open_socket()
    sender = open_socket()
    try:
        assign_name_to_socket(receiver, "SOCKET_1")
        assign_name_to_socket(sender, "SOCKET_2")
        assert poll_socket(receiver, False) is False
        packet = bytes(range(64))
        send_to_socket(sender, packet, "SOCKET_1")
        assert poll_socket(receiver, True) is True
        assert read_from_socket(receiver, 64) == packet
    finally:
        receiver.close()
        sender.close()
        deassign_name_to_socket("SOCKET_1")
        deassign_name_to_socket("SOCKET_2")
    assert not (tmp_path / "SOCKET_1").exists()


def test_read_from_socket_wrong_size_raises(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    receiver = open_socket()
    sender = open_socket()
    try:
        assign_name_to_socket(receiver, "SOCKET_3")
        send_to_socket(sender, b"tiny", "SOCKET_3")
        with pytest.raises(OSError):
            read_from_socket(receiver, 64)
    finally:
        receiver.close()
        sender.close()
        deassign_name_to_socket("SOCKET_3")


def test_assign_name_replaces_stale_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "SOCKET_4").write_bytes(b"stale")
    sock = open_socket()
    try:
        assign_name_to_socket(sock, "SOCKET_4")
        assert sock.getsockname() == "SOCKET_4"
    finally:
        sock.close()
        deassign_name_to_socket("SOCKET_4")


def test_call_on_user_abort_installs_handler():
    calls = []
    previous = call_on_user_abort(lambda: calls.append("abort"))
    try:
        handler = signal.getsignal(signal.SIGINT)
        handler(signal.SIGINT, None)
        assert calls == ["abort"]
    finally:
        signal.signal(signal.SIGINT, previous)


def test_delay_sleeps_for_given_seconds():
    with mock.patch("time.sleep") as sleep:
        result = delay(3)
    assert result is None
    assert sleep.call_count == 1
    assert sleep.call_args == mock.call(3)


def test_random_is_deterministic_after_seed():
    random_init(42)
    first = [random_int() for _ in range(20)]
    random_init(42)
    second = [random_int() for _ in range(20)]
    assert first == second


def test_random_in_range():
    random_init(7)
    values = [random_int() for _ in range(500)]
    assert all(0 <= v <= RAND_MAX for v in values)