import argparse
import logging
import sys
import time

import uvicorn

from .config import RECV_CHUNK, Settings
from .errors import ERR_EOF, error_name, is_error
from .tcp import TcpVFS


def serve(settings: Settings):
    from . import server
    from .bridge import BridgeListener

    dispatcher = server.configure(settings)
    listener = BridgeListener(settings.socket_path, dispatcher)
    listener.start()
    print(f"Bridge listening on {settings.socket_path}")
    print(f"Status API at http://{settings.api_host}:{settings.api_port}")
    try:
        uvicorn.run(server.app, host=settings.api_host, port=settings.api_port)
    finally:
        listener.stop()
        dispatcher.shutdown()


def show_status(host: str, port: int) -> int:
    import requests

    try:
        resp = requests.get(f"http://{host}:{port}/api/descriptors", timeout=5)
        resp.raise_for_status()
    except requests.RequestException as e:
        print(f"Error: {e}")
        return 1

    descriptors = resp.json()
    if not descriptors:
        print("No open descriptors")
    for entry in descriptors:
        print(f"{entry['fd']:>3}  {entry['path']}")
    return 0


def probe(settings: Settings, uri: str, send: str = None, wait: float = 2.0) -> int:
    """Open uri, optionally send text, and print whatever comes back."""
    vfs = TcpVFS(settings)
    fd = vfs.open(0, uri)
    if is_error(fd):
        print(f"open {uri}: {error_name(fd)}")
        return 1
    print(f"open {uri}: fd {fd}")

    try:
        if send:
            payload = send.encode("utf-8")
            written = vfs.write(fd, len(payload), payload)
            if is_error(written):
                print(f"write: {error_name(written)}")
                return 1
            print(f"write: {written} bytes")

        deadline = time.monotonic() + wait
        while time.monotonic() < deadline:
            data = vfs.read(fd, RECV_CHUNK)
            if is_error(data):
                print(f"read: {error_name(data)}")
                if data != ERR_EOF:
                    return 1
                break
            if data:
                sys.stdout.buffer.write(data)
                sys.stdout.buffer.flush()
            else:
                time.sleep(0.05)
    finally:
        vfs.close(fd)
    return 0


def main():
    parser = argparse.ArgumentParser(description="tcpvfs CLI")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the guest bridge and status API")
    serve_parser.add_argument("--socket", type=str, help="Bridge Unix socket path")
    serve_parser.add_argument("--host", type=str, help="Status API host")
    serve_parser.add_argument("--port", type=int, help="Status API port")

    status_parser = subparsers.add_parser("status", help="List open descriptors of a running server")
    status_parser.add_argument("--host", type=str, help="Status API host")
    status_parser.add_argument("--port", type=int, help="Status API port")

    probe_parser = subparsers.add_parser("probe", help="Open a tcp:// URI and print the reply")
    probe_parser.add_argument("uri", type=str, help="Address, e.g. tcp://example.com:80")
    probe_parser.add_argument("--send", type=str, help="Text to send after connecting")
    probe_parser.add_argument("--wait", type=float, default=2.0, help="Seconds to wait for data")
    probe_parser.add_argument("--timeout", type=float, help="Connect timeout in seconds")

    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper())

    settings = Settings.from_env()

    if args.command == "serve":
        if args.socket:
            settings.socket_path = args.socket
        if args.host:
            settings.api_host = args.host
        if args.port:
            settings.api_port = args.port
        serve(settings)
    elif args.command == "status":
        sys.exit(show_status(args.host or settings.api_host, args.port or settings.api_port))
    elif args.command == "probe":
        if args.timeout is not None:
            settings.connect_timeout = args.timeout
        sys.exit(probe(settings, args.uri, send=args.send, wait=args.wait))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
