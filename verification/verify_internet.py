import sys
import time
import logging

from tcpvfs import TcpVFS, error_name, is_error

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("verify_net")

REQUEST = b"HEAD / HTTP/1.0\r\nHost: example.com\r\n\r\n"


def main():
    # Needs outbound internet access (DNS + TCP port 80)
    vfs = TcpVFS()

    logger.info("Opening tcp://example.com:80...")
    fd = vfs.open(0, "tcp://example.com:80")
    if is_error(fd):
        logger.error(f"Open failed: {error_name(fd)}")
        sys.exit(1)

    try:
        written = vfs.write(fd, len(REQUEST), REQUEST)
        if written != len(REQUEST):
            logger.error(f"Write failed: {error_name(written)}")
            sys.exit(1)

        # Poll until the server closes the connection
        response = b""
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            data = vfs.read(fd, 512)
            if data == b"":
                time.sleep(0.05)
                continue
            if is_error(data):
                logger.info(f"Read finished with {error_name(data)}")
                break
            response += data

        status_line = response.split(b"\r\n", 1)[0].decode("latin-1")
        logger.info(f"Status line: {status_line}")
        if not status_line.startswith("HTTP/"):
            logger.error("No HTTP response received.")
            sys.exit(1)

        logger.info("Internet verification PASSED!")
    finally:
        vfs.close(fd)

    # Name resolution failure must be reported, not hang
    start = time.monotonic()
    result = vfs.open(0, "tcp://does-not-exist.invalid:80")
    logger.info(f"Unresolvable host: {error_name(result)} in {time.monotonic() - start:.2f}s")


if __name__ == "__main__":
    main()
