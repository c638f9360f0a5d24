import errno
import os
import socket
import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tcpvfs.backend import SocketBackend


class EchoServer:
    """Loopback TCP listener that echoes everything back on each connection."""

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(32)
        self.port = self.sock.getsockname()[1]
        self.uri = f"tcp://127.0.0.1:{self.port}"
        self.connections = []
        self.accepted = threading.Event()
        self._lock = threading.Lock()
        self._running = True
        threading.Thread(target=self._accept_loop, daemon=True).start()

    def _accept_loop(self):
        while self._running:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                break
            with self._lock:
                self.connections.append(conn)
            self.accepted.set()
            threading.Thread(target=self._echo, args=(conn,), daemon=True).start()

    def _echo(self, conn):
        try:
            while True:
                data = conn.recv(4096)
                if not data:
                    break
                conn.sendall(data)
        except OSError:
            pass

    def close_clients(self):
        """Close the server side of every accepted connection."""
        with self._lock:
            connections, self.connections = self.connections, []
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            conn.close()

    def stop(self):
        self._running = False
        self.sock.close()
        self.close_clients()


@pytest.fixture
def echo_server():
    server = EchoServer()
    yield server
    server.stop()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class FakeSocket:
    def __init__(self):
        self.closed = False
        self.sent = bytearray()


class FakeBackend(SocketBackend):
    """Scripted backend for exercising failure paths without a network.

    recv_script / send_script items are consumed in order: an exception is
    raised, bytes are returned from recv, an int caps how much send accepts.
    An empty send_script accepts everything, unless send_blocked is set.
    """

    def __init__(self):
        self.resolve_error = None
        self.create_error = None
        self.nonblocking_error = None
        self.close_error = None
        self.connect_errno = 0
        self.writable = True
        self.pending = 0
        self.available_bytes = None
        self.recv_script = []
        self.send_script = []
        self.send_blocked = False

        self.resolved = []
        self.created = []
        self.wait_calls = []
        self.recv_calls = []
        self.send_calls = 0

    def resolve(self, host, port):
        self.resolved.append((host, port))
        if self.resolve_error:
            raise self.resolve_error
        return socket.AF_INET, socket.SOCK_STREAM, 6, ("10.0.0.1", port)

    def create(self, family, socktype, proto):
        if self.create_error:
            raise self.create_error
        sock = FakeSocket()
        self.created.append(sock)
        return sock

    def set_nonblocking(self, sock):
        if self.nonblocking_error:
            raise self.nonblocking_error

    def connect(self, sock, sockaddr):
        return self.connect_errno

    def wait_writable(self, sock, timeout):
        self.wait_calls.append(timeout)
        return self.writable

    def pending_error(self, sock):
        return self.pending

    def available(self, sock):
        return self.available_bytes

    def recv(self, sock, size):
        self.recv_calls.append(size)
        item = self.recv_script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item[:size]

    def send(self, sock, data):
        self.send_calls += 1
        if self.send_blocked:
            raise BlockingIOError(errno.EAGAIN, "Resource temporarily unavailable")
        if not self.send_script:
            sock.sent += data
            return len(data)
        item = self.send_script.pop(0)
        if isinstance(item, Exception):
            raise item
        chunk = bytes(data[:item])
        sock.sent += chunk
        return len(chunk)

    def close(self, sock):
        sock.closed = True
        if self.close_error:
            raise self.close_error


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def high_descriptors():
    """Occupy the low descriptor numbers so new sockets land above FD_SETSIZE."""
    resource = pytest.importorskip("resource")
    count = 1100
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    wanted = count + 256
    if soft != resource.RLIM_INFINITY and soft < wanted:
        if hard != resource.RLIM_INFINITY and hard < wanted:
            pytest.skip(f"RLIMIT_NOFILE hard limit {hard} is too low")
        resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))

    fillers = []
    try:
        for _ in range(count):
            fillers.append(os.open(os.devnull, os.O_RDONLY))
        yield fillers
    finally:
        for fd in fillers:
            os.close(fd)
        resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))
