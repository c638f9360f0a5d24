"""Tests for the TCP VFS: connection setup, relay and teardown."""

import errno
import socket
import time

import pytest

from tcpvfs.config import RECV_CHUNK, Settings
from tcpvfs.errors import (
    ERR_EOF,
    ERR_NOT_FOUND,
    ERR_OTHER,
    ERR_PARAM,
    ERR_TOO_MANY_OPEN,
)
from tcpvfs.tcp import TcpVFS


def poll_read(vfs, fd, size, timeout=5.0):
    """Call read() until it returns something other than b""."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = vfs.read(fd, size)
        if result != b"":
            return result
        time.sleep(0.01)
    return b""


# ============================================================================
# Loopback Tests
# ============================================================================


class TestLoopbackConnections:
    """End-to-end behaviour against a local echo listener."""

    def test_echo_round_trip(self, echo_server):
        vfs = TcpVFS()
        fd = vfs.open(0, echo_server.uri)
        assert fd == 0

        payload = bytes(range(256)) * 40
        assert vfs.write(fd, len(payload), payload) == len(payload)

        received = b""
        deadline = time.monotonic() + 5
        while len(received) < len(payload) and time.monotonic() < deadline:
            chunk = vfs.read(fd, 1000)
            assert isinstance(chunk, bytes)
            assert len(chunk) <= 1000
            received += chunk
        assert received == payload

        assert vfs.close(fd) == 0

    def test_read_before_data_returns_empty(self, echo_server):
        vfs = TcpVFS()
        fd = vfs.open(0, echo_server.uri)
        assert vfs.read(fd, 100) == b""
        vfs.close(fd)

    def test_oversized_read_requests(self, echo_server):
        vfs = TcpVFS()
        fd = vfs.open(0, echo_server.uri)
        assert vfs.read(fd, 2**45) == b""
        assert vfs.read(fd, 2**63) == b""

        assert vfs.write(fd, 5, b"hello") == 5
        assert poll_read(vfs, fd, 2**63) == b"hello"
        vfs.close(fd)

    def test_peer_close_reports_eof(self, echo_server):
        vfs = TcpVFS()
        fd = vfs.open(0, echo_server.uri)
        assert vfs.write(fd, 5, b"hello") == 5
        assert poll_read(vfs, fd, 5) == b"hello"

        echo_server.close_clients()
        assert poll_read(vfs, fd, 100) == ERR_EOF
        vfs.close(fd)

    def test_capacity_limit(self, echo_server):
        vfs = TcpVFS()
        fds = [vfs.open(0, echo_server.uri) for _ in range(10)]
        assert fds == list(range(10))

        def fail_resolve(host, port):
            raise AssertionError("resolution attempted with a full table")

        vfs.backend.resolve = fail_resolve
        assert vfs.open(0, echo_server.uri) == ERR_TOO_MANY_OPEN

        for fd in fds:
            assert vfs.close(fd) == 0

    def test_closed_slot_is_reused(self, echo_server):
        vfs = TcpVFS(Settings(max_fds=2))
        a = vfs.open(0, echo_server.uri)
        b = vfs.open(0, echo_server.uri)
        vfs.close(a)
        assert vfs.open(0, echo_server.uri) == a
        vfs.close_all()
        assert vfs.descriptors() == []
        assert b == 1

    def test_closed_port_fails_quickly(self, closed_port):
        vfs = TcpVFS()
        start = time.monotonic()
        result = vfs.open(0, f"tcp://127.0.0.1:{closed_port}")
        assert result in (ERR_NOT_FOUND, ERR_OTHER)
        assert time.monotonic() - start < 6
        assert vfs.descriptors() == []

    def test_open_and_write_above_fd_setsize(self, echo_server, high_descriptors):
        vfs = TcpVFS()
        fd = vfs.open(0, echo_server.uri)
        assert fd == 0
        sock = vfs.table.lookup(fd)
        assert sock.fileno() >= 1024
        assert vfs.backend.wait_writable(sock, 1.0)

        assert vfs.write(fd, 5, b"hello") == 5
        assert poll_read(vfs, fd, 5) == b"hello"
        vfs.close(fd)

    def test_unresolvable_host(self):
        vfs = TcpVFS()
        assert vfs.open(0, "tcp://no-such-host.invalid:80") == ERR_NOT_FOUND

    def test_descriptors_snapshot(self, echo_server):
        vfs = TcpVFS()
        fd = vfs.open(0, echo_server.uri)
        assert vfs.descriptors() == [
            {"fd": fd, "generation": 0, "peer": echo_server.uri}
        ]
        vfs.close(fd)


# ============================================================================
# Parameter Validation
# ============================================================================


class TestParameterErrors:
    """Bad input is rejected before any socket work."""

    @pytest.mark.parametrize(
        "path", ["tcp://host", "tcp://host:abc", "http://host:80", "tcp://host:99999"]
    )
    def test_bad_uri_creates_no_socket(self, fake_backend, path):
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, path) == ERR_PARAM
        assert fake_backend.resolved == []
        assert fake_backend.created == []

    @pytest.mark.parametrize("fd", [-1, 10, 11, 1000])
    def test_out_of_range_descriptor(self, fake_backend, fd):
        vfs = TcpVFS(backend=fake_backend)
        for _ in range(10):
            vfs.open(0, "tcp://host:1")
        assert vfs.read(fd, 10) == ERR_PARAM
        assert vfs.write(fd, 1, b"x") == ERR_PARAM
        assert vfs.close(fd) == ERR_PARAM

    def test_operations_after_close(self, fake_backend):
        vfs = TcpVFS(backend=fake_backend)
        fd = vfs.open(0, "tcp://host:1")
        assert vfs.close(fd) == 0
        assert vfs.read(fd, 10) == ERR_PARAM
        assert vfs.write(fd, 1, b"x") == ERR_PARAM
        assert vfs.close(fd) == ERR_PARAM

    def test_zero_size_touches_no_socket(self, fake_backend):
        vfs = TcpVFS(backend=fake_backend)
        fd = vfs.open(0, "tcp://host:1")
        assert vfs.read(fd, 0) == b""
        assert vfs.write(fd, 0, b"") == 0
        assert fake_backend.recv_calls == []
        assert fake_backend.send_calls == 0

    def test_size_larger_than_data(self, fake_backend):
        vfs = TcpVFS(backend=fake_backend)
        fd = vfs.open(0, "tcp://host:1")
        assert vfs.write(fd, 10, b"short") == ERR_PARAM
        assert vfs.read(fd, -1) == ERR_PARAM

    def test_stale_handle_rejected_after_reuse(self, fake_backend):
        vfs = TcpVFS(Settings(max_fds=1), backend=fake_backend)
        stale = vfs.open_handle(0, "tcp://host:1")
        vfs.close(stale)
        fresh = vfs.open_handle(0, "tcp://host:2")

        assert fresh.index == stale.index
        assert vfs.write(stale, 1, b"x") == ERR_PARAM
        assert vfs.read(stale, 1) == ERR_PARAM
        assert vfs.close(stale) == ERR_PARAM
        assert vfs.write(fresh, 1, b"x") == 1


# ============================================================================
# Connection Establishment
# ============================================================================


class TestConnect:
    """Error classification while connecting."""

    def test_resolution_failure(self, fake_backend):
        fake_backend.resolve_error = socket.gaierror(socket.EAI_NONAME, "unknown")
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, "tcp://nowhere:80") == ERR_NOT_FOUND
        assert fake_backend.created == []

    def test_socket_creation_failure(self, fake_backend):
        fake_backend.create_error = OSError(errno.EMFILE, "Too many open files")
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, "tcp://host:80") == ERR_OTHER

    def test_nonblocking_failure_closes_socket(self, fake_backend):
        fake_backend.nonblocking_error = OSError(errno.EBADF, "Bad file descriptor")
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, "tcp://host:80") == ERR_OTHER
        assert fake_backend.created[0].closed

    def test_immediate_refusal(self, fake_backend):
        fake_backend.connect_errno = errno.ECONNREFUSED
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, "tcp://host:80") == ERR_NOT_FOUND
        assert fake_backend.created[0].closed
        assert fake_backend.wait_calls == []

    def test_in_progress_timeout(self, fake_backend):
        fake_backend.connect_errno = errno.EINPROGRESS
        fake_backend.writable = False
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, "tcp://host:80") == ERR_OTHER
        assert fake_backend.wait_calls == [5.0]
        assert fake_backend.created[0].closed
        assert vfs.descriptors() == []

    def test_in_progress_then_refused(self, fake_backend):
        fake_backend.connect_errno = errno.EINPROGRESS
        fake_backend.pending = errno.ECONNREFUSED
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, "tcp://host:80") == ERR_NOT_FOUND
        assert fake_backend.created[0].closed

    def test_in_progress_then_connected(self, fake_backend):
        fake_backend.connect_errno = errno.EINPROGRESS
        vfs = TcpVFS(Settings(connect_timeout=1.5), backend=fake_backend)
        assert vfs.open(0, "tcp://host:80") == 0
        assert fake_backend.wait_calls == [1.5]
        assert not fake_backend.created[0].closed

    def test_flags_are_ignored(self, fake_backend):
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0xFF, "tcp://host:80") == 0


# ============================================================================
# Read / Write Relay
# ============================================================================


class TestRelay:
    """Translation of socket outcomes on read and write."""

    @pytest.fixture
    def vfs(self, fake_backend):
        vfs = TcpVFS(backend=fake_backend)
        assert vfs.open(0, "tcp://host:80") == 0
        return vfs

    def test_read_would_block_is_not_an_error(self, vfs, fake_backend):
        fake_backend.recv_script = [BlockingIOError(errno.EAGAIN, "again")]
        assert vfs.read(0, 10) == b""

    def test_read_zero_length_is_eof(self, vfs, fake_backend):
        fake_backend.recv_script = [b""]
        assert vfs.read(0, 10) == ERR_EOF

    def test_read_not_connected_is_eof(self, vfs, fake_backend):
        fake_backend.recv_script = [OSError(errno.ENOTCONN, "not connected")]
        assert vfs.read(0, 10) == ERR_EOF

    def test_read_other_failure(self, vfs, fake_backend):
        fake_backend.recv_script = [ConnectionResetError(errno.ECONNRESET, "reset")]
        assert vfs.read(0, 10) == ERR_OTHER

    def test_read_limited_to_available(self, vfs, fake_backend):
        fake_backend.available_bytes = 3
        fake_backend.recv_script = [b"abcdef"]
        assert vfs.read(0, 10) == b"abc"
        assert fake_backend.recv_calls == [3]

    def test_zero_available_still_detects_eof(self, vfs, fake_backend):
        fake_backend.available_bytes = 0
        fake_backend.recv_script = [b""]
        assert vfs.read(0, 10) == ERR_EOF
        assert fake_backend.recv_calls == [10]

    def test_huge_read_is_capped_when_nothing_pending(self, vfs, fake_backend):
        fake_backend.available_bytes = 0
        fake_backend.recv_script = [BlockingIOError(errno.EAGAIN, "again")]
        assert vfs.read(0, 2**40) == b""
        assert fake_backend.recv_calls == [RECV_CHUNK]

    def test_huge_read_is_capped_without_probe(self, vfs, fake_backend):
        fake_backend.recv_script = [b"data"]
        assert vfs.read(0, 2**63) == b"data"
        assert fake_backend.recv_calls == [RECV_CHUNK]

    def test_write_retries_until_drained(self, vfs, fake_backend):
        fake_backend.send_script = [
            BlockingIOError(errno.EAGAIN, "again"),
            2,
            BlockingIOError(errno.EWOULDBLOCK, "again"),
            3,
        ]
        assert vfs.write(0, 5, b"hello") == 5
        assert bytes(fake_backend.created[0].sent) == b"hello"
        assert len(fake_backend.wait_calls) == 2

    def test_write_sends_only_size_bytes(self, vfs, fake_backend):
        assert vfs.write(0, 3, b"abcdef") == 3
        assert bytes(fake_backend.created[0].sent) == b"abc"

    def test_write_not_connected_is_eof(self, vfs, fake_backend):
        fake_backend.send_script = [OSError(errno.ENOTCONN, "not connected")]
        assert vfs.write(0, 1, b"x") == ERR_EOF

    def test_write_broken_pipe_is_eof(self, vfs, fake_backend):
        fake_backend.send_script = [BrokenPipeError(errno.EPIPE, "broken pipe")]
        assert vfs.write(0, 1, b"x") == ERR_EOF

    def test_write_other_failure(self, vfs, fake_backend):
        fake_backend.send_script = [1, OSError(errno.EIO, "I/O error")]
        assert vfs.write(0, 4, b"data") == ERR_OTHER

    def test_write_timeout(self, fake_backend):
        vfs = TcpVFS(Settings(write_timeout=0.05), backend=fake_backend)
        fd = vfs.open(0, "tcp://host:80")
        fake_backend.send_blocked = True
        start = time.monotonic()
        assert vfs.write(fd, 4, b"data") == ERR_OTHER
        assert time.monotonic() - start < 2

    def test_close_ignores_teardown_errors(self, vfs, fake_backend):
        fake_backend.close_error = OSError(errno.EBADF, "bad fd")
        assert vfs.close(0) == 0
        assert vfs.descriptors() == []
