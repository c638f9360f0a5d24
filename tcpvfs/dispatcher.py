"""
VFS Dispatcher

Routes guest VFS calls to the backend mounted for the path's scheme and hands
out its own descriptor numbers, so several backends can be open side by side.

Backends such as TcpVFS are not thread-safe. The dispatcher is their only
caller and runs every backend call under one lock, which lets the bridge's
per-guest threads and the status API share a single instance. The descriptor
map has its own lock, so status reads never queue behind a slow connect or
a stalled write.
"""

import logging
import threading
from typing import Dict, List, Optional, Protocol, Tuple, Union

from .config import Settings
from .errors import ERR_NOT_FOUND, ERR_PARAM, ERR_TOO_MANY_OPEN, is_error
from .tcp import TcpVFS

logger = logging.getLogger(__name__)


class VfsBackend(Protocol):
    def open(self, flags: int, path: str) -> int: ...

    def read(self, fd: int, size: int) -> Union[bytes, int]: ...

    def write(self, fd: int, size: int, data: bytes) -> int: ...

    def close(self, fd: int) -> int: ...


class VfsDispatcher:
    """Owns the mounted VFS backends and serializes access to them."""

    def __init__(self, settings: Optional[Settings] = None, tcp: Optional[TcpVFS] = None):
        self.settings = settings or Settings()
        self.max_open = self.settings.max_fds
        self.tcp = tcp or TcpVFS(self.settings)

        self._mounts: Dict[str, VfsBackend] = {}
        self._open: Dict[int, Tuple[str, VfsBackend, int, str]] = {}  # fd -> (prefix, backend, backend fd, path)
        self._lock = threading.Lock()  # serializes backend calls
        self._table_lock = threading.Lock()  # guards _open; taken after _lock

        self.mount(TcpVFS.scheme, self.tcp)

    def mount(self, prefix: str, backend: VfsBackend):
        """Route paths starting with prefix to backend."""
        with self._lock:
            if prefix in self._mounts:
                raise ValueError(f"A backend is already mounted at {prefix}")
            self._mounts[prefix] = backend
            logger.debug(f"Mounted {type(backend).__name__} at {prefix}")

    def _route(self, path: str) -> Optional[Tuple[str, VfsBackend]]:
        # Longest prefix wins
        for prefix in sorted(self._mounts, key=len, reverse=True):
            if path.startswith(prefix):
                return prefix, self._mounts[prefix]
        return None

    def open(self, flags: int, path: str) -> int:
        with self._lock:
            route = self._route(path)
            if route is None:
                logger.debug(f"No backend mounted for {path}")
                return ERR_NOT_FOUND

            with self._table_lock:
                fd = next((i for i in range(self.max_open) if i not in self._open), None)
            if fd is None:
                return ERR_TOO_MANY_OPEN

            prefix, backend = route
            result = backend.open(flags, path)
            if is_error(result):
                return result

            with self._table_lock:
                self._open[fd] = (prefix, backend, result, path)
            return fd

    def _entry(self, fd: int) -> Optional[Tuple[str, VfsBackend, int, str]]:
        with self._table_lock:
            return self._open.get(fd)

    def read(self, fd: int, size: int) -> Union[bytes, int]:
        with self._lock:
            entry = self._entry(fd)
            if entry is None:
                return ERR_PARAM
            _, backend, backend_fd, _ = entry
            return backend.read(backend_fd, size)

    def write(self, fd: int, size: int, data: bytes) -> int:
        with self._lock:
            entry = self._entry(fd)
            if entry is None:
                return ERR_PARAM
            _, backend, backend_fd, _ = entry
            return backend.write(backend_fd, size, data)

    def close(self, fd: int) -> int:
        # The descriptor is revoked at once; the backend close waits for any
        # call already in flight.
        with self._table_lock:
            entry = self._open.pop(fd, None)
        if entry is None:
            return ERR_PARAM
        _, backend, backend_fd, _ = entry
        with self._lock:
            return backend.close(backend_fd)

    def snapshot(self) -> List[dict]:
        """Open descriptors, for status reporting. Never waits on a VFS call."""
        with self._table_lock:
            return [
                {
                    "fd": fd,
                    "backend": prefix,
                    "backend_fd": backend_fd,
                    "path": path,
                }
                for fd, (prefix, _, backend_fd, path) in sorted(self._open.items())
            ]

    def shutdown(self):
        """Close every open descriptor."""
        with self._lock:
            with self._table_lock:
                entries = list(self._open.items())
                self._open.clear()
            for fd, (_, backend, backend_fd, path) in entries:
                result = backend.close(backend_fd)
                if is_error(result):
                    logger.warning(f"Closing fd {fd} ({path}) returned {result}")
