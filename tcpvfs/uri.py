import re
from dataclasses import dataclass
from typing import Optional

SCHEME = "tcp://"
MAX_PORT = 65535

_PORT_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class ConnectionTarget:
    host: str
    port: int

    def __str__(self) -> str:
        return f"{SCHEME}{self.host}:{self.port}"


def parse_tcp_uri(path: str) -> Optional[ConnectionTarget]:
    """Parse a ``tcp://host:port`` path.

    The host runs up to the first colon after the scheme; everything after
    that colon must be decimal digits in the 0-65535 range.

    Returns None if the path is not a valid TCP address.
    """
    if not isinstance(path, str) or not path.startswith(SCHEME):
        return None

    colon = path.find(":", len(SCHEME))
    if colon == -1:
        return None

    host = path[len(SCHEME) : colon]
    port_str = path[colon + 1 :]
    if not host or not _PORT_RE.fullmatch(port_str):
        return None

    port = int(port_str)
    if port > MAX_PORT:
        return None

    return ConnectionTarget(host=host, port=port)
