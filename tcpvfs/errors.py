"""
VFS Error Codes

The guest on the other side of the VFS protocol never sees native socket
errors. Every failure is folded into one of these negative integers, which are
returned in place of a descriptor id or byte count.

Values match the codes used by the host's other VFS backends, so a guest can
share one error table for storage and network descriptors.
"""

from enum import Enum
from typing import Any


class VfsError(int, Enum):
    """Error codes returned by VFS operations."""

    NOT_FOUND = -1  # Name resolution failed or connection refused
    TOO_MANY_OPEN = -2  # No free descriptor slot
    PARAM = -3  # Malformed URI, bad port or unknown descriptor
    EOF = -4  # Peer closed the connection
    OTHER = -6  # Anything else (socket setup, timeouts, I/O failures)


ERR_NOT_FOUND = VfsError.NOT_FOUND
ERR_TOO_MANY_OPEN = VfsError.TOO_MANY_OPEN
ERR_PARAM = VfsError.PARAM
ERR_EOF = VfsError.EOF
ERR_OTHER = VfsError.OTHER


def is_error(value: Any) -> bool:
    """True if a VFS return value is an error code."""
    return isinstance(value, int) and value < 0


def error_name(code: int) -> str:
    """Symbolic name for an error code, e.g. ``ERR_NOT_FOUND``."""
    try:
        return f"ERR_{VfsError(code).name}"
    except ValueError:
        return f"ERR_UNKNOWN({code})"
