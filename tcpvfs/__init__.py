"""
tcpvfs

Outbound TCP connections exposed to guest software through the VFS
open/read/write/close contract.

Usage:
    from tcpvfs import TcpVFS, is_error

    vfs = TcpVFS()
    fd = vfs.open(0, "tcp://example.com:80")
    if not is_error(fd):
        vfs.write(fd, 18, b"GET / HTTP/1.0\\r\\n\\r\\n")
        data = vfs.read(fd, 512)  # b"" until the reply arrives
        vfs.close(fd)
"""

from .config import Settings
from .dispatcher import VfsDispatcher
from .errors import (
    ERR_EOF,
    ERR_NOT_FOUND,
    ERR_OTHER,
    ERR_PARAM,
    ERR_TOO_MANY_OPEN,
    VfsError,
    error_name,
    is_error,
)
from .table import DescriptorTable, SlotHandle
from .tcp import TcpVFS
from .uri import ConnectionTarget, parse_tcp_uri

__all__ = [
    "Settings",
    "TcpVFS",
    "VfsDispatcher",
    "DescriptorTable",
    "SlotHandle",
    "ConnectionTarget",
    "parse_tcp_uri",
    # Error vocabulary
    "VfsError",
    "ERR_NOT_FOUND",
    "ERR_TOO_MANY_OPEN",
    "ERR_PARAM",
    "ERR_EOF",
    "ERR_OTHER",
    "is_error",
    "error_name",
]
