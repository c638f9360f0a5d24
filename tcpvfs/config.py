import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_FDS = 10
DEFAULT_CONNECT_TIMEOUT = 5.0  # seconds
DEFAULT_SOCKET_PATH = "/tmp/tcpvfs/bridge.sock"
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8000
RECV_CHUNK = 4096  # Largest recv() when the pending byte count is unknown


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


@dataclass
class Settings:
    """Runtime tunables for the TCP VFS and the services around it."""

    max_fds: int = DEFAULT_MAX_FDS
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    write_timeout: Optional[float] = None  # None: drain until done or hard failure
    socket_path: str = DEFAULT_SOCKET_PATH
    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from TCPVFS_* environment variables."""
        return cls(
            max_fds=_env_int("TCPVFS_MAX_FDS", DEFAULT_MAX_FDS),
            connect_timeout=_env_float(
                "TCPVFS_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT
            ),
            write_timeout=_env_float("TCPVFS_WRITE_TIMEOUT", None),
            socket_path=os.environ.get("TCPVFS_SOCKET", DEFAULT_SOCKET_PATH),
            api_host=os.environ.get("TCPVFS_API_HOST", DEFAULT_API_HOST),
            api_port=_env_int("TCPVFS_API_PORT", DEFAULT_API_PORT),
        )
