"""
Guest-side helper for the bridge protocol.

Mirrors the VFS call surface: every method returns the integer result the host
sent back, except read(), which returns the received bytes on success.
"""

import base64
import itertools
import json
import socket
from typing import Optional, Union

from .protocol import (
    CloseRequest,
    OpenRequest,
    PingRequest,
    ReadRequest,
    ResponseType,
    WriteRequest,
    encode_message,
)


class BridgeError(Exception):
    """The host rejected a request or the bridge connection failed."""


class BridgeClient:
    def __init__(self, socket_path: str, timeout: Optional[float] = 10.0):
        self.socket_path = socket_path
        self.timeout = timeout
        self.sock: Optional[socket.socket] = None
        self._buffer = b""
        self._ids = itertools.count(1)

    def connect(self):
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.settimeout(self.timeout)
        try:
            self.sock.connect(self.socket_path)
        except OSError:
            self.sock.close()
            self.sock = None
            raise

    def disconnect(self):
        if self.sock:
            self.sock.close()
            self.sock = None
        self._buffer = b""

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def _next_id(self) -> str:
        return str(next(self._ids))

    def _call(self, request) -> dict:
        if self.sock is None:
            raise BridgeError("Not connected")
        self.sock.sendall(encode_message(request.to_dict()))

        while b"\n" not in self._buffer:
            chunk = self.sock.recv(4096)
            if not chunk:
                raise BridgeError("Bridge connection closed")
            self._buffer += chunk

        line, self._buffer = self._buffer.split(b"\n", 1)
        response = json.loads(line.decode("utf-8"))
        if response.get("type") == ResponseType.ERROR.value:
            raise BridgeError(response.get("error", "Unknown error"))
        return response

    def ping(self) -> bool:
        response = self._call(PingRequest(cmd_id=self._next_id()))
        return response.get("type") == ResponseType.PONG.value

    def open(self, path: str, flags: int = 0) -> int:
        return self._call(OpenRequest(self._next_id(), path, flags))["result"]

    def read(self, fd: int, size: int) -> Union[bytes, int]:
        response = self._call(ReadRequest(self._next_id(), fd, size))
        if response["result"] < 0:
            return response["result"]
        return base64.b64decode(response.get("data", ""))

    def write(self, fd: int, data: bytes) -> int:
        return self._call(WriteRequest(self._next_id(), fd, data))["result"]

    def close(self, fd: int) -> int:
        return self._call(CloseRequest(self._next_id(), fd))["result"]
