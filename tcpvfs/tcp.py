"""
TCP VFS

Exposes outbound TCP connections through the same open/read/write/close
contract as the host's storage backends. Paths look like ``tcp://host:port``.

Every operation returns an integer (or, for read, the received bytes); failures
are negative VfsError codes, never exceptions.

TcpVFS has no locks. It must be driven by a single caller at a time, which is
what VfsDispatcher guarantees.
"""

import logging
import os
import socket
import time
from typing import Dict, List, Optional, Union

from .backend import SocketBackend, default_backend
from .config import RECV_CHUNK, Settings
from .errors import (
    ERR_EOF,
    ERR_NOT_FOUND,
    ERR_OTHER,
    ERR_PARAM,
    ERR_TOO_MANY_OPEN,
    VfsError,
    is_error,
)
from .table import Descriptor, DescriptorTable, SlotHandle
from .uri import SCHEME, ConnectionTarget, parse_tcp_uri

logger = logging.getLogger(__name__)


class TcpVFS:
    scheme = SCHEME

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend: Optional[SocketBackend] = None,
    ):
        self.settings = settings or Settings()
        self.backend = backend or default_backend()
        self.table = DescriptorTable(self.settings.max_fds)
        self._peers: Dict[int, ConnectionTarget] = {}

    # ------------------------------------------------------------------  open
    def open(self, flags: int, path: str) -> int:
        """Connect to ``tcp://host:port`` and return a descriptor id."""
        result = self.open_handle(flags, path)
        if is_error(result):
            return result
        return result.index

    def open_handle(self, flags: int, path: str) -> Union[SlotHandle, VfsError]:
        """Like open(), but returns a generation-tagged SlotHandle.

        A SlotHandle stops working once its connection is closed, even if a
        later open() reuses the same slot index.
        """
        logger.debug(f"TCP open: {path}")

        target = parse_tcp_uri(path)
        if target is None:
            return ERR_PARAM

        if not self.table.has_free():
            logger.warning(
                f"TCP open {target}: all {self.table.capacity} descriptors in use"
            )
            return ERR_TOO_MANY_OPEN

        sock = self._connect(target)
        if is_error(sock):
            return sock

        handle = self.table.allocate(sock)
        if handle is None:
            self._teardown(sock)
            return ERR_TOO_MANY_OPEN

        self._peers[handle.index] = target
        logger.info(f"TCP connected to {target} as fd {handle.index}")
        return handle

    def _connect(self, target: ConnectionTarget) -> Union[socket.socket, VfsError]:
        """Resolve and connect, bounded by settings.connect_timeout."""
        try:
            family, socktype, proto, sockaddr = self.backend.resolve(
                target.host, target.port
            )
        except (OSError, UnicodeError) as e:
            logger.debug(f"Failed to resolve {target.host}: {e}")
            return ERR_NOT_FOUND

        logger.debug(f"Resolved {target.host} to {sockaddr[0]}")

        try:
            sock = self.backend.create(family, socktype, proto)
        except OSError as e:
            logger.error(f"Failed to create socket for {target}: {e}")
            return ERR_OTHER

        try:
            self.backend.set_nonblocking(sock)
        except OSError as e:
            logger.error(f"Failed to make socket non-blocking: {e}")
            self._teardown(sock)
            return ERR_OTHER

        try:
            err = self.backend.connect(sock, sockaddr)
        except OSError as e:
            err = e.errno or -1

        if err == 0:
            return sock

        if not self.backend.in_progress(err):
            logger.debug(f"Error connecting to {target}: {os.strerror(err)}")
            self._teardown(sock)
            return ERR_NOT_FOUND

        # Connection in progress: it completes when the socket turns writable
        timeout = self.settings.connect_timeout
        try:
            ready = self.backend.wait_writable(sock, timeout)
        except (OSError, ValueError) as e:
            logger.warning(f"Waiting for connection to {target} failed: {e}")
            ready = False

        if not ready:
            logger.warning(f"Timed out connecting to {target} after {timeout}s")
            self._teardown(sock)
            return ERR_OTHER

        try:
            err = self.backend.pending_error(sock)
        except OSError as e:
            logger.warning(f"Could not query connect result for {target}: {e}")
            self._teardown(sock)
            return ERR_OTHER

        if err != 0:
            logger.debug(f"Error connecting to {target}: {os.strerror(err)}")
            self._teardown(sock)
            return ERR_NOT_FOUND

        return sock

    # ------------------------------------------------------------------  read
    def read(self, fd: Descriptor, size: int) -> Union[bytes, VfsError]:
        """Receive up to size bytes without blocking.

        Empty bytes mean nothing has arrived yet; ERR_EOF means the peer
        closed the connection.
        """
        sock = self.table.lookup(fd)
        if sock is None:
            return ERR_PARAM
        if size < 0:
            return ERR_PARAM
        if size == 0:
            return b""

        # A probe of 0 is not end-of-stream, recv() below tells the two apart.
        # recv() preallocates its buffer, so the request is always capped.
        available = self.backend.available(sock)
        size = min(size, available or RECV_CHUNK)

        try:
            data = self.backend.recv(sock, size)
        except OSError as e:
            if self.backend.in_progress(e.errno):
                return b""
            if self.backend.not_connected(e.errno):
                return ERR_EOF
            logger.debug(f"TCP read on fd {fd} failed: {e}")
            return ERR_OTHER

        if not data:
            return ERR_EOF
        return data

    # ------------------------------------------------------------------  write
    def write(self, fd: Descriptor, size: int, data: bytes) -> int:
        """Send the first size bytes of data, retrying until all are sent."""
        sock = self.table.lookup(fd)
        if sock is None:
            return ERR_PARAM
        if size == 0:
            return 0
        if size < 0 or size > len(data):
            return ERR_PARAM

        view = memoryview(data)[:size]
        timeout = self.settings.write_timeout
        deadline = None if timeout is None else time.monotonic() + timeout

        offset = 0
        while offset < size:
            try:
                sent = self.backend.send(sock, view[offset:])
            except OSError as e:
                if self.backend.in_progress(e.errno):
                    sent = 0
                elif self.backend.not_connected(e.errno):
                    return ERR_EOF
                else:
                    logger.debug(f"TCP write on fd {fd} failed: {e}")
                    return ERR_OTHER

            offset += sent
            if offset >= size or sent > 0:
                continue

            # Send buffer full: wait for room instead of spinning
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        f"TCP write on fd {fd} timed out after {timeout}s "
                        f"({offset}/{size} bytes sent)"
                    )
                    return ERR_OTHER
            try:
                self.backend.wait_writable(sock, remaining)
            except (OSError, ValueError) as e:
                logger.debug(f"TCP write on fd {fd} failed while waiting: {e}")
                return ERR_OTHER

        return size

    # ------------------------------------------------------------------  close
    def close(self, fd: Descriptor) -> int:
        handle = self.table.handle_for(fd)
        if handle is None:
            return ERR_PARAM

        sock = self.table.release(handle)
        peer = self._peers.pop(handle.index, None)
        self._teardown(sock)
        logger.info(f"TCP close: fd {handle.index} ({peer})")
        return 0

    def close_all(self):
        """Close every open connection."""
        for handle in self.table.live():
            self.close(handle)

    def descriptors(self) -> List[dict]:
        return [
            {
                "fd": handle.index,
                "generation": handle.generation,
                "peer": str(self._peers.get(handle.index)),
            }
            for handle in self.table.live()
        ]

    def _teardown(self, sock: socket.socket):
        try:
            self.backend.close(sock)
        except OSError as e:
            logger.debug(f"Error closing socket: {e}")
