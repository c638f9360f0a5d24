"""
Bridge Host Listener

Listens on a Unix stream socket for guest connections and relays each bridge
request to a VfsDispatcher. One handler thread serves each guest connection;
the dispatcher serializes the actual VFS calls.
"""

import json
import logging
import os
import socket
import threading
from pathlib import Path
from typing import Optional

from ..dispatcher import VfsDispatcher
from ..errors import is_error
from .protocol import (
    CloseRequest,
    OpenRequest,
    PingRequest,
    ProtocolError,
    ReadRequest,
    ResponseType,
    WriteRequest,
    encode_message,
    error_response,
    parse_request,
    result_response,
)

logger = logging.getLogger(__name__)

MAX_LINE = 1024 * 1024  # Largest request line accepted from a guest


class BridgeListener:
    """Accepts guest connections on socket_path and serves VFS requests."""

    def __init__(self, socket_path: str, dispatcher: VfsDispatcher):
        """Initialize the listener.

        Args:
            socket_path: Unix socket path guests connect to
            dispatcher: Dispatcher that executes the VFS calls
        """
        self.socket_path = socket_path
        self.dispatcher = dispatcher

        self.listener_socket: Optional[socket.socket] = None
        self.accept_thread: Optional[threading.Thread] = None
        self.running = False
        self._lock = threading.Lock()

    def start(self):
        """Start listening for guest connections."""
        with self._lock:
            if self.running:
                logger.warning(f"BridgeListener already running on {self.socket_path}")
                return

            # Clean up any stale socket
            if os.path.exists(self.socket_path):
                try:
                    os.unlink(self.socket_path)
                    logger.debug(f"Removed stale socket: {self.socket_path}")
                except OSError as e:
                    logger.warning(
                        f"Failed to remove stale socket {self.socket_path}: {e}"
                    )

            Path(self.socket_path).parent.mkdir(parents=True, exist_ok=True)

            self.listener_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)

            try:
                self.listener_socket.bind(self.socket_path)
                self.listener_socket.listen(5)
                self.listener_socket.settimeout(1.0)  # Allow periodic checks for shutdown

                self.running = True
                self.accept_thread = threading.Thread(
                    target=self._accept_loop,
                    daemon=True,
                    name="tcpvfs-bridge",
                )
                self.accept_thread.start()

                logger.info(f"BridgeListener started on {self.socket_path}")

            except OSError as e:
                logger.error(f"Failed to start BridgeListener: {e}")
                self.listener_socket.close()
                self.listener_socket = None
                raise

    def stop(self):
        """Stop the listener and clean up resources."""
        with self._lock:
            if not self.running:
                return
            self.running = False

        # Close listener socket to interrupt accept()
        if self.listener_socket:
            try:
                self.listener_socket.close()
            except OSError as e:
                logger.debug(f"Error closing listener socket: {e}")
            self.listener_socket = None

        if self.accept_thread and self.accept_thread.is_alive():
            self.accept_thread.join(timeout=2)
            self.accept_thread = None

        if os.path.exists(self.socket_path):
            try:
                os.unlink(self.socket_path)
            except OSError as e:
                logger.warning(f"Failed to remove socket {self.socket_path}: {e}")

        logger.info(f"BridgeListener stopped on {self.socket_path}")

    def _accept_loop(self):
        """Accept incoming connections and spawn handler threads."""
        logger.debug(f"Accept loop started for {self.socket_path}")

        while self.running:
            try:
                client_socket, _ = self.listener_socket.accept()
                client_socket.settimeout(None)

                handler = threading.Thread(
                    target=self._handle_connection,
                    args=(client_socket,),
                    daemon=True,
                    name="tcpvfs-bridge-guest",
                )
                handler.start()

            except socket.timeout:
                # Normal timeout, check if still running
                continue
            except OSError as e:
                if self.running:
                    logger.error(f"Accept error: {e}")
                break

        logger.debug(f"Accept loop ended for {self.socket_path}")

    def _handle_connection(self, client: socket.socket):
        """Serve request lines from one guest until it disconnects."""
        buffer = b""
        try:
            while self.running:
                while b"\n" not in buffer:
                    if len(buffer) > MAX_LINE:
                        self._send_message(
                            client, error_response("unknown", "Request too large")
                        )
                        return
                    chunk = client.recv(4096)
                    if not chunk:
                        logger.debug("Guest disconnected")
                        return
                    buffer += chunk

                line, buffer = buffer.split(b"\n", 1)
                if not line.strip():
                    continue
                self._send_message(client, self.handle_line(line))

        except OSError as e:
            logger.debug(f"Guest connection error: {e}")
        except Exception as e:
            logger.error(f"Error handling guest connection: {e}", exc_info=True)
        finally:
            try:
                client.close()
            except OSError:
                pass

    def handle_line(self, line: bytes) -> dict:
        """Decode one request line, run it and build the response."""
        try:
            data = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Invalid JSON from guest: {e}")
            return error_response("unknown", f"Invalid JSON: {e}")

        cmd_id = data.get("cmd_id", "unknown") if isinstance(data, dict) else "unknown"

        try:
            request = parse_request(data)
        except ProtocolError as e:
            logger.error(f"Malformed request [{cmd_id}]: {e}")
            return error_response(str(cmd_id), str(e))

        if request is None:
            logger.error(f"Unknown request type: {data.get('type')}")
            return error_response(cmd_id, "Unknown request type")

        if isinstance(request, PingRequest):
            return {"type": ResponseType.PONG.value, "cmd_id": request.cmd_id}

        if isinstance(request, OpenRequest):
            result = self.dispatcher.open(request.flags, request.path)
            return result_response(request.cmd_id, result)

        if isinstance(request, ReadRequest):
            result = self.dispatcher.read(request.fd, request.size)
            if is_error(result):
                return result_response(request.cmd_id, result)
            return result_response(request.cmd_id, len(result), result)

        if isinstance(request, WriteRequest):
            result = self.dispatcher.write(request.fd, len(request.data), request.data)
            return result_response(request.cmd_id, result)

        if isinstance(request, CloseRequest):
            result = self.dispatcher.close(request.fd)
            return result_response(request.cmd_id, result)

        logger.error(f"Unhandled request type: {type(request)}")
        return error_response(request.cmd_id, "Unhandled request type")

    def _send_message(self, client: socket.socket, msg: dict):
        client.sendall(encode_message(msg))
