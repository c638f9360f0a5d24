"""
tcpvfs Bridge Module

Carries VFS requests from guest software to the host over a Unix stream
socket, one JSON object per line.

Architecture:
- Host runs a BridgeListener bound to a Unix socket path
- Guest connects and sends open/read/write/close requests
- Listener relays each request to a VfsDispatcher and answers with the result

Usage:
    from tcpvfs.bridge import BridgeListener, BridgeClient
    from tcpvfs.dispatcher import VfsDispatcher

    listener = BridgeListener("/tmp/tcpvfs/bridge.sock", VfsDispatcher())
    listener.start()

    with BridgeClient("/tmp/tcpvfs/bridge.sock") as guest:
        fd = guest.open("tcp://example.com:80")

    listener.stop()
"""

from .protocol import (
    RequestType,
    ResponseType,
    ProtocolError,
    OpenRequest,
    ReadRequest,
    WriteRequest,
    CloseRequest,
    encode_message,
    decode_message,
    parse_request,
)

from .host_listener import BridgeListener
from .client import BridgeClient, BridgeError

__all__ = [
    # Protocol types
    "RequestType",
    "ResponseType",
    "ProtocolError",
    "OpenRequest",
    "ReadRequest",
    "WriteRequest",
    "CloseRequest",
    # Protocol functions
    "encode_message",
    "decode_message",
    "parse_request",
    # Host and guest sides
    "BridgeListener",
    "BridgeClient",
    "BridgeError",
]
