"""
Socket Backends

Thin wrappers around the native socket calls TcpVFS needs. Platform quirks
(which errno means "still connecting", whether pending bytes can be probed)
live here so the connect and relay logic in tcp.py stays platform-independent.

All methods raise OSError (or a subclass) on failure; translating those into
VFS error codes is the caller's job.
"""

import errno
import logging
import selectors
import socket
import struct
import sys
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


class SocketBackend:
    """Portable subset of the socket API."""

    IN_PROGRESS = frozenset(
        {errno.EINPROGRESS, errno.EALREADY, errno.EAGAIN, errno.EWOULDBLOCK}
    )
    NOT_CONNECTED = frozenset({errno.ENOTCONN, errno.EPIPE})

    def resolve(self, host: str, port: int) -> Tuple[int, int, int, Address]:
        """Resolve host for IPv4 stream sockets.

        Returns (family, type, proto, sockaddr) of the first result.
        """
        infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM)
        if not infos:
            raise socket.gaierror(f"No IPv4 address for {host}")
        family, socktype, proto, _, sockaddr = infos[0]
        return family, socktype, proto, sockaddr

    def create(self, family: int, socktype: int, proto: int) -> socket.socket:
        return socket.socket(family, socktype, proto)

    def set_nonblocking(self, sock: socket.socket):
        sock.setblocking(False)

    def connect(self, sock: socket.socket, sockaddr: Address) -> int:
        """Start connecting. Returns 0 on success, otherwise an errno."""
        return sock.connect_ex(sockaddr)

    def wait_writable(self, sock: socket.socket, timeout: Optional[float]) -> bool:
        """Wait until sock is writable (or errored). False on timeout.

        Uses the platform selector (epoll, kqueue, ...) so descriptors past
        FD_SETSIZE work too.
        """
        with selectors.DefaultSelector() as selector:
            selector.register(sock, selectors.EVENT_WRITE)
            return bool(selector.select(timeout))

    def pending_error(self, sock: socket.socket) -> int:
        return sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)

    def available(self, sock: socket.socket) -> Optional[int]:
        """Bytes ready to read, or None if the platform cannot tell."""
        return None

    def recv(self, sock: socket.socket, size: int) -> bytes:
        return sock.recv(size)

    def send(self, sock: socket.socket, data: memoryview) -> int:
        return sock.send(data)

    def close(self, sock: socket.socket):
        sock.close()

    def in_progress(self, err: Optional[int]) -> bool:
        """True for errnos meaning "not yet", i.e. retry later."""
        return err in self.IN_PROGRESS

    def not_connected(self, err: Optional[int]) -> bool:
        return err in self.NOT_CONNECTED


class PosixSocketBackend(SocketBackend):
    """Linux, macOS and other POSIX hosts."""

    def available(self, sock: socket.socket) -> Optional[int]:
        import fcntl
        import termios

        try:
            raw = fcntl.ioctl(sock.fileno(), termios.FIONREAD, b"\0\0\0\0")
        except OSError as e:
            logger.debug(f"FIONREAD probe failed: {e}")
            return None
        return struct.unpack("i", raw)[0]


class WindowsSocketBackend(SocketBackend):
    """Winsock reports a pending connect as WSAEWOULDBLOCK."""

    IN_PROGRESS = SocketBackend.IN_PROGRESS | frozenset(
        {
            getattr(errno, "WSAEWOULDBLOCK", 10035),
            getattr(errno, "WSAEINPROGRESS", 10036),
            getattr(errno, "WSAEALREADY", 10037),
        }
    )
    NOT_CONNECTED = SocketBackend.NOT_CONNECTED | frozenset(
        {getattr(errno, "WSAENOTCONN", 10057)}
    )


def default_backend() -> SocketBackend:
    if sys.platform == "win32":
        return WindowsSocketBackend()
    return PosixSocketBackend()
