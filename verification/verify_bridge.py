import os
import socket
import sys
import tempfile
import threading
import time

from tcpvfs.bridge import BridgeClient, BridgeListener
from tcpvfs.dispatcher import VfsDispatcher
from tcpvfs.errors import error_name, is_error


def echo_listener():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)

    def serve(conn):
        with conn:
            while True:
                data = conn.recv(4096)
                if not data:
                    return
                conn.sendall(data)

    def accept_loop():
        while True:
            try:
                conn, _ = server.accept()
            except OSError:
                return
            threading.Thread(target=serve, args=(conn,), daemon=True).start()

    threading.Thread(target=accept_loop, daemon=True).start()
    return server, server.getsockname()[1]


def guest_thread(name, socket_path, uri, results):
    # Each guest has its own bridge connection; the dispatcher serializes them
    with BridgeClient(socket_path) as guest:
        fd = guest.open(uri)
        if is_error(fd):
            print(f"[{name}] open failed: {error_name(fd)}")
            return
        message = f"hello from {name}".encode()
        guest.write(fd, message)

        received = b""
        deadline = time.monotonic() + 5
        while len(received) < len(message) and time.monotonic() < deadline:
            data = guest.read(fd, 64)
            if is_error(data):
                print(f"[{name}] read failed: {error_name(data)}")
                break
            received += data

        print(f"[{name}] fd {fd} got {received!r}")
        results[name] = received == message
        guest.close(fd)


def main():
    server, port = echo_listener()
    uri = f"tcp://127.0.0.1:{port}"

    with tempfile.TemporaryDirectory() as tmpdir:
        socket_path = os.path.join(tmpdir, "bridge.sock")
        dispatcher = VfsDispatcher()
        listener = BridgeListener(socket_path, dispatcher)
        listener.start()

        results = {}
        threads = [
            threading.Thread(target=guest_thread, args=(f"guest-{i}", socket_path, uri, results))
            for i in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        listener.stop()
        dispatcher.shutdown()
    server.close()

    if len(results) == 4 and all(results.values()):
        print("SUCCESS: all guests echoed through the bridge")
    else:
        print(f"FAILURE: {results}")
        sys.exit(1)


if __name__ == "__main__":
    main()
