"""
Bridge Protocol Definitions

Guest software reaches the host's VFS over a stream connection carrying
newline-delimited JSON. Each request gets exactly one response line, and a
connection may carry any number of request/response pairs.

Request Format:
    {"type": "open", "cmd_id": "1", "path": "tcp://example.com:80", "flags": 0}
    {"type": "read", "cmd_id": "2", "fd": 0, "size": 512}
    {"type": "write", "cmd_id": "3", "fd": 0, "data": "<base64>"}
    {"type": "close", "cmd_id": "4", "fd": 0}
    {"type": "ping", "cmd_id": "5"}

Response Format:
    {"type": "result", "cmd_id": "2", "result": 5, "data": "<base64>"}
    {"type": "pong", "cmd_id": "5"}
    {"type": "error", "cmd_id": "?", "error": "Unknown request type"}

``result`` carries the VFS return value: a descriptor id, a byte count, 0, or
a negative error code. ``data`` is present only on a successful read.
"""

import base64
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union


class RequestType(str, Enum):
    """Request types sent from guest to host."""

    OPEN = "open"
    READ = "read"
    WRITE = "write"
    CLOSE = "close"
    PING = "ping"  # Connection health check


class ResponseType(str, Enum):
    """Response types sent from host to guest."""

    RESULT = "result"  # VFS call completed (result may be an error code)
    ERROR = "error"  # Request could not be parsed
    PONG = "pong"  # Response to ping


class ProtocolError(ValueError):
    """A request line is not a well-formed bridge request."""


def _require_int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ProtocolError(f"Field '{key}' must be an integer")
    return value


@dataclass
class OpenRequest:
    cmd_id: str
    path: str
    flags: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": RequestType.OPEN.value,
            "cmd_id": self.cmd_id,
            "path": self.path,
            "flags": self.flags,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenRequest":
        path = data.get("path")
        if not isinstance(path, str):
            raise ProtocolError("Field 'path' must be a string")
        flags = data.get("flags", 0)
        if not isinstance(flags, int):
            raise ProtocolError("Field 'flags' must be an integer")
        return cls(cmd_id=data["cmd_id"], path=path, flags=flags)


@dataclass
class ReadRequest:
    cmd_id: str
    fd: int
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": RequestType.READ.value,
            "cmd_id": self.cmd_id,
            "fd": self.fd,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReadRequest":
        return cls(
            cmd_id=data["cmd_id"],
            fd=_require_int(data, "fd"),
            size=_require_int(data, "size"),
        )


@dataclass
class WriteRequest:
    cmd_id: str
    fd: int
    data: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": RequestType.WRITE.value,
            "cmd_id": self.cmd_id,
            "fd": self.fd,
            "data": base64.b64encode(self.data).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriteRequest":
        encoded = data.get("data")
        if not isinstance(encoded, str):
            raise ProtocolError("Field 'data' must be a base64 string")
        try:
            payload = base64.b64decode(encoded, validate=True)
        except ValueError as e:
            raise ProtocolError(f"Invalid base64 data: {e}") from e
        return cls(cmd_id=data["cmd_id"], fd=_require_int(data, "fd"), data=payload)


@dataclass
class CloseRequest:
    cmd_id: str
    fd: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": RequestType.CLOSE.value,
            "cmd_id": self.cmd_id,
            "fd": self.fd,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CloseRequest":
        return cls(cmd_id=data["cmd_id"], fd=_require_int(data, "fd"))


@dataclass
class PingRequest:
    cmd_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": RequestType.PING.value, "cmd_id": self.cmd_id}


Request = Union[OpenRequest, ReadRequest, WriteRequest, CloseRequest, PingRequest]


def result_response(cmd_id: str, result: int, data: Optional[bytes] = None) -> Dict[str, Any]:
    response = {
        "type": ResponseType.RESULT.value,
        "cmd_id": cmd_id,
        "result": int(result),
    }
    if data is not None:
        response["data"] = base64.b64encode(data).decode("ascii")
    return response


def error_response(cmd_id: str, error: str) -> Dict[str, Any]:
    return {
        "type": ResponseType.ERROR.value,
        "cmd_id": cmd_id,
        "error": error,
    }


def encode_message(msg: Dict[str, Any]) -> bytes:
    """Encode a message to bytes for transmission."""
    return json.dumps(msg).encode("utf-8") + b"\n"


def decode_message(data: bytes) -> Dict[str, Any]:
    """Decode a message from bytes."""
    return json.loads(data.decode("utf-8").strip())


def parse_request(data: Dict[str, Any]) -> Optional[Request]:
    """Parse a request from the guest.

    Returns the request object, or None for an unknown type. Raises
    ProtocolError if a known request is missing fields.
    """
    if not isinstance(data, dict):
        raise ProtocolError("Request must be a JSON object")

    cmd_id = data.get("cmd_id")
    if not isinstance(cmd_id, str):
        raise ProtocolError("Field 'cmd_id' must be a string")

    req_type = data.get("type")

    if req_type == RequestType.OPEN.value:
        return OpenRequest.from_dict(data)
    elif req_type == RequestType.READ.value:
        return ReadRequest.from_dict(data)
    elif req_type == RequestType.WRITE.value:
        return WriteRequest.from_dict(data)
    elif req_type == RequestType.CLOSE.value:
        return CloseRequest.from_dict(data)
    elif req_type == RequestType.PING.value:
        return PingRequest(cmd_id=cmd_id)

    return None
