"""
pytest configuration and fixtures.
"""

import io
import socket
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wiredhttp import HTTPServer, ServerConfig
from wiredhttp.handlers import EchoHandler, HelloHandler
from wiredhttp.http import ResponseWriter, RouteTable, parse_request
from wiredhttp.logging_config import configure_logging


# =============================================================================
# RAW HTTP HELPERS
# =============================================================================

@dataclass
class RawResponse:
    """A response as the client saw it."""
    version: str
    status: int
    reason: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")


def read_response(rfile, method: str = "GET") -> RawResponse:
    """Read one response from a binary file-like object."""
    status_line = rfile.readline()
    if not status_line:
        raise ConnectionError("connection closed before a response arrived")

    version, status, reason = status_line.decode("latin-1").rstrip("\r\n").split(" ", 2)
    headers: Dict[str, str] = {}
    while True:
        line = rfile.readline()
        if line in (b"\r\n", b""):
            break
        name, _, value = line.decode("latin-1").partition(":")
        headers[name.strip().lower()] = value.strip()

    status_code = int(status)
    if method == "HEAD" or status_code == 100:
        body = b""
    elif headers.get("transfer-encoding") == "chunked":
        body = _read_chunked(rfile)
    elif "content-length" in headers:
        body = rfile.read(int(headers["content-length"]))
    else:
        body = rfile.read()

    return RawResponse(version, status_code, reason, headers, body)


def _read_chunked(rfile) -> bytes:
    body = b""
    while True:
        size = int(rfile.readline().split(b";")[0].strip(), 16)
        if size == 0:
            while rfile.readline() not in (b"\r\n", b""):
                pass
            return body
        body += rfile.read(size)
        rfile.readline()


def build_request(
    method: str,
    path: str,
    body: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
    version: str = "HTTP/1.1",
) -> bytes:
    headers = dict(headers or {})
    names = {name.lower() for name in headers}
    if version == "HTTP/1.1" and "host" not in names:
        headers["Host"] = "localhost"
    if body is not None and "transfer-encoding" not in names and "content-length" not in names:
        headers["Content-Length"] = str(len(body))

    lines = [f"{method} {path} {version}"]
    lines += [f"{name}: {value}" for name, value in headers.items()]
    head = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
    return head + (body or b"")


class RawConnection:
    """A client TCP connection speaking raw HTTP."""

    def __init__(self, address, timeout: float = 5.0):
        self.sock = socket.create_connection(address, timeout=timeout)
        self.rfile = self.sock.makefile("rb")

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def request(self, method: str, path: str, body: Optional[bytes] = None, **kwargs) -> RawResponse:
        self.send(build_request(method, path, body, **kwargs))
        return self.read_response(method)

    def read_response(self, method: str = "GET") -> RawResponse:
        return read_response(self.rfile, method)

    def closed_by_peer(self) -> bool:
        """True if the server has closed its side (EOF on read)."""
        try:
            return self.rfile.read(1) == b""
        except ConnectionResetError:
            return True

    def close(self) -> None:
        self.rfile.close()
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeConnection:
    """
    Stands in for a Connection when testing the response writer.

    Args:
        fail_after: Number of successful sendall() calls before every
                    further call raises BrokenPipeError.
    """

    def __init__(self, fail_after: Optional[int] = None):
        self.sent = bytearray()
        self.fail_after = fail_after
        self.calls = 0

    def sendall(self, data: bytes) -> None:
        if self.fail_after is not None and self.calls >= self.fail_after:
            raise BrokenPipeError(32, "Broken pipe")
        self.calls += 1
        self.sent += data

    def response(self, method: str = "GET") -> RawResponse:
        return read_response(io.BytesIO(bytes(self.sent)), method)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /hello?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: text/plain\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a body."""
    body = b"world"
    return (
        b"POST /hello HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: text/plain\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def log_stream() -> io.StringIO:
    """Everything the application logger writes during a test."""
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO):
    return configure_logging("DEBUG", "text", stream=log_stream)


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=2.0,
        stop_timeout=5.0,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def routes(logger):
    return [EchoHandler(logger), HelloHandler(logger)]


@pytest.fixture
def server(config: ServerConfig, routes, logger) -> Generator[HTTPServer, None, None]:
    """A started server on a random port, stopped after the test."""
    srv = HTTPServer(config, RouteTable(routes), logger)
    srv.start()
    yield srv
    srv.stop(timeout=2.0)


@pytest.fixture
def connect(server: HTTPServer):
    """Open raw client connections to the running server."""
    opened = []

    def _connect(timeout: float = 5.0) -> RawConnection:
        conn = RawConnection(server.address, timeout=timeout)
        opened.append(conn)
        return conn

    yield _connect

    for conn in opened:
        conn.close()


@pytest.fixture
def exchange():
    """
    Run one request through a handler without sockets.

        response = exchange(handler, raw_request_bytes).response()
    """

    def _exchange(handler, raw: bytes, conn: Optional[FakeConnection] = None, buffer_size: int = 8192):
        conn = conn if conn is not None else FakeConnection()
        request = parse_request(raw, ("127.0.0.1", 40000))
        writer = ResponseWriter(conn, request, buffer_size=buffer_size)
        handler.serve(request, writer)
        writer.finish()
        return conn

    return _exchange
