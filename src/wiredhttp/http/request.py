"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

A request is consumed in two stages:

    1. HEAD   RequestParser.parse_head() turns the bytes up to the blank
              line into an HTTPRequest (method, target, version, headers).

    2. BODY   HTTPRequest.body is a RequestBody stream. Nothing is read
              from the socket until a handler asks for it, so a handler
              can copy a large body through in chunks and a handler that
              ignores the body never pays for it.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  POST /echo HTTP/1.1\\r\\n            ─┐                              │
    │  Host: localhost\\r\\n                 │ parse_head()                 │
    │  Content-Length: 5\\r\\n               │                              │
    │  \\r\\n                               ─┘                              │
    │  hello                              ── RequestBody.read()           │
    └─────────────────────────────────────────────────────────────────────┘

Body framing (RFC 7230 §3.3.3):

    Transfer-Encoding: chunked   chunked, any Content-Length is ignored
    Content-Length: N            exactly N bytes
    neither                      no body

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Callable, Protocol
from urllib.parse import parse_qs, urlsplit, unquote
import re
import socket


class HTTPParseError(Exception):
    """
    Raised when a request head is malformed.

    Carries the status code to answer with:
        400 Bad Request                  malformed syntax
        431 Header Fields Too Large      head over max_header_size
        501 Not Implemented              unknown Transfer-Encoding
        505 HTTP Version Not Supported   anything but HTTP/1.0 and 1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class BodyReadError(Exception):
    """
    Raised when the request body cannot be read.

    Truncated body, malformed chunk framing, body over max_body_size,
    timeout or reset while reading.
    """


class BodyTooLargeError(BodyReadError):
    """The body is larger than max_body_size."""


class ByteSource(Protocol):
    """What RequestBody needs from the connection."""

    def read_some(self, max_bytes: int) -> bytes: ...

    def read_line(self, limit: int) -> bytes: ...


class MemorySource:
    """In-memory ByteSource over a fixed byte string."""

    def __init__(self, data: bytes):
        self._data = data

    def read_some(self, max_bytes: int) -> bytes:
        chunk, self._data = self._data[:max_bytes], self._data[max_bytes:]
        return chunk

    def read_line(self, limit: int) -> bytes:
        end = self._data.find(b"\r\n")
        end = len(self._data) if end == -1 else end + 2
        if end > limit:
            raise ValueError("Line too long")
        line, self._data = self._data[:end], self._data[end:]
        return line


MAX_CHUNK_LINE = 4096


class RequestBody:
    """
    Streaming reader for a request body.

    Usage:
        data = request.body.read()          # everything
        while chunk := request.body.read(8192):
            ...                             # incrementally

    All failures surface as BodyReadError.
    """

    def __init__(
        self,
        source: ByteSource,
        content_length: Optional[int] = None,
        chunked: bool = False,
        max_size: Optional[int] = None,
        on_first_read: Optional[Callable[[], None]] = None,
    ):
        self._source = source
        self._chunked = chunked
        self._remaining = 0 if chunked else (content_length or 0)
        self._max_size = max_size
        self._on_first_read = on_first_read
        self._bytes_read = 0
        self._chunk_left = 0
        self._done = not chunked and self._remaining == 0
        self._error: Optional[BodyReadError] = None

    @classmethod
    def empty(cls) -> "RequestBody":
        return cls(MemorySource(b""))

    @classmethod
    def from_bytes(cls, data: bytes, chunked: bool = False, max_size: Optional[int] = None) -> "RequestBody":
        """Body backed by memory; chunked=True means data is chunk-encoded."""
        return cls(
            MemorySource(data),
            content_length=None if chunked else len(data),
            chunked=chunked,
            max_size=max_size,
        )

    @property
    def complete(self) -> bool:
        """True once the whole body has been consumed."""
        return self._done

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    @property
    def awaiting_continue(self) -> bool:
        """Client expects 100 Continue and has not been sent one yet."""
        return self._on_first_read is not None and not self._done

    def read(self, size: int = -1) -> bytes:
        """
        Read up to size bytes (all remaining bytes if size < 0).

        Returns b"" at end of body.

        Raises:
            BodyReadError: On any framing, size or transport failure. The
                           error is sticky: later reads raise it again.
        """
        if self._error is not None:
            raise self._error
        if self._done or size == 0:
            return b""

        if self._on_first_read is not None:
            callback, self._on_first_read = self._on_first_read, None
            callback()

        try:
            if size < 0:
                parts = []
                while not self._done:
                    parts.append(self._read_once(1 << 16))
                return b"".join(parts)
            return self._read_once(size)
        except BodyReadError as e:
            self._error = e
            raise
        except (socket.timeout, OSError) as e:
            self._error = BodyReadError(f"read request body: {e}")
            raise self._error from e

    def drain(self, limit: int) -> bool:
        """
        Discard the unread rest of the body so the connection can be reused.

        Returns:
            True if the body is fully consumed; False if it was larger than
            limit or could not be read (the connection must then be closed).
        """
        if self.awaiting_continue:
            return False
        discarded = 0
        try:
            while not self._done:
                chunk = self.read(min(65536, limit - discarded + 1))
                discarded += len(chunk)
                if discarded > limit:
                    return False
        except BodyReadError:
            return False
        return True

    # ─────────────────────────────────────────────────────────────────────
    # FRAMING
    # ─────────────────────────────────────────────────────────────────────

    def _read_once(self, size: int) -> bytes:
        if self._chunked:
            data = self._read_chunked(size)
        else:
            data = self._read_length(size)
        self._bytes_read += len(data)
        if self._max_size is not None and self._bytes_read > self._max_size:
            raise BodyTooLargeError(f"request body too large (limit {self._max_size} bytes)")
        return data

    def _read_length(self, size: int) -> bytes:
        if self._max_size is not None and self._bytes_read + self._remaining > self._max_size:
            raise BodyTooLargeError(f"request body too large (limit {self._max_size} bytes)")

        data = self._source.read_some(min(size, self._remaining))
        if not data:
            raise BodyReadError(f"unexpected EOF: {self._remaining} body bytes missing")
        self._remaining -= len(data)
        if self._remaining == 0:
            self._done = True
        return data

    def _read_chunked(self, size: int) -> bytes:
        if self._chunk_left == 0:
            self._chunk_left = self._read_chunk_size()
            if self._chunk_left == 0:
                self._read_trailers()
                self._done = True
                return b""

        data = self._source.read_some(min(size, self._chunk_left))
        if not data:
            raise BodyReadError("unexpected EOF inside chunk")
        self._chunk_left -= len(data)

        if self._chunk_left == 0:
            if self._source.read_line(MAX_CHUNK_LINE) != b"\r\n":
                raise BodyReadError("malformed chunked encoding: missing CRLF after chunk")
        return data

    def _read_chunk_size(self) -> int:
        try:
            line = self._source.read_line(MAX_CHUNK_LINE)
        except ValueError as e:
            raise BodyReadError(f"malformed chunked encoding: {e}") from e
        if not line.endswith(b"\r\n"):
            raise BodyReadError("unexpected EOF reading chunk size")

        size_field = line[:-2].split(b";", 1)[0].strip()
        try:
            if not size_field or not re.fullmatch(rb"[0-9A-Fa-f]+", size_field):
                raise ValueError(size_field)
            return int(size_field, 16)
        except ValueError:
            raise BodyReadError(f"malformed chunked encoding: bad chunk size {size_field!r}")

    def _read_trailers(self) -> None:
        while True:
            try:
                line = self._source.read_line(MAX_CHUNK_LINE)
            except ValueError as e:
                raise BodyReadError(f"malformed chunked encoding: {e}") from e
            if line == b"\r\n":
                return
            if not line.endswith(b"\r\n"):
                raise BodyReadError("unexpected EOF reading trailers")


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    Attributes:
        method:         Request method, any RFC 7230 token
        path:           Decoded path without query string ("/echo")
        target:         Raw request-target as sent ("/echo?x=1")
        version:        "HTTP/1.0" or "HTTP/1.1"
        headers:        Header name (lowercase) → value
        query_params:   "?a=1&a=2" → {"a": ["1", "2"]}
        client_address: (ip, port) of the peer
        body:           RequestBody stream
    """

    method: str
    path: str
    target: str = ""
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list] = field(default_factory=dict)
    client_address: tuple = ("", 0)
    body: RequestBody = field(default_factory=RequestBody.empty, repr=False)

    @property
    def content_length(self) -> Optional[int]:
        """Declared Content-Length, None if absent."""
        value = self.headers.get("content-length")
        return int(value) if value is not None else None

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type") or None

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_chunked(self) -> bool:
        return self.headers.get("transfer-encoding", "").lower() == "chunked"

    @property
    def expects_continue(self) -> bool:
        return (
            self.version == "HTTP/1.1"
            and self.headers.get("expect", "").lower() == "100-continue"
        )

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps alive unless "Connection: close";
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        tokens = {t.strip().lower() for t in self.headers.get("connection", "").split(",")}
        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses request heads into HTTPRequest objects.

    REQUEST_LINE_PATTERN: METHOD SP request-target SP HTTP/x.y
        Methods are any token (RFC 7230 tchar), not a fixed list: the
        routes here accept every method.

    HEADER_PATTERN: field-name ":" OWS field-value OWS
        Control characters other than HTAB (bare CR or LF, NUL) make the
        line invalid, so they can never reach a response header.
    """

    REQUEST_LINE_PATTERN = re.compile(r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+) ([^ ]+) (HTTP/[0-9]\.[0-9])\Z")
    HEADER_PATTERN = re.compile(r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+):[ \t]*([^\x00-\x08\x0a-\x1f\x7f]*?)[ \t]*\Z")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(self, max_header_size: int = 64 * 1024, max_body_size: Optional[int] = None):
        self.max_header_size = max_header_size
        self.max_body_size = max_body_size

    def parse_head(self, head: bytes, client_address: tuple = ("", 0)) -> HTTPRequest:
        """
        Parse a request head (without the terminating blank line).

        Raises:
            HTTPParseError: If the head is malformed.
        """
        if len(head) > self.max_header_size:
            raise HTTPParseError(f"Request head too large: {len(head)} bytes", status_code=431)

        # Header bytes are ISO-8859-1 by spec; this never fails
        lines = head.decode("iso-8859-1").split("\r\n")

        # Tolerate stray CRLFs between pipelined requests (RFC 7230 §3.5)
        while lines and not lines[0]:
            lines.pop(0)
        if not lines:
            raise HTTPParseError("Empty request")

        method, target, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])
        self._validate_framing(headers, version)

        return HTTPRequest(
            method=method,
            path=path,
            target=target,
            version=version,
            headers=headers,
            query_params=query_params,
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> tuple:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        # origin-form "/echo?x=1", absolute-form "http://host/echo", or "*"
        if target == "*":
            return method, target, "*", {}, version

        parsed = urlsplit(target)
        if not parsed.path.startswith("/") and not parsed.scheme:
            raise HTTPParseError(f"Invalid request target: {target!r}")

        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)
        return method, target, path, query_params, version

    def _parse_headers(self, lines: list) -> Dict[str, str]:
        """
        Parse header lines into a dict with lowercase names.

        Repeated headers are joined with ", " (RFC 7230 §3.2.2).
        Obsolete line folding is rejected (RFC 7230 §3.2.4).
        """
        headers: Dict[str, str] = {}

        for line in lines:
            if not line:
                continue
            if line[0] in " \t":
                raise HTTPParseError("Obsolete header line folding")

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name = match.group(1).lower()
            value = match.group(2)
            if name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value

        return headers

    def _validate_framing(self, headers: Dict[str, str], version: str) -> None:
        if version == "HTTP/1.1" and "host" not in headers:
            raise HTTPParseError("Missing required Host header")

        transfer_encoding = headers.get("transfer-encoding")
        if transfer_encoding is not None:
            if transfer_encoding.strip().lower() != "chunked":
                raise HTTPParseError(
                    f"Unsupported Transfer-Encoding: {transfer_encoding}",
                    status_code=501,
                )
            # Chunked wins; a Content-Length alongside it is ignored
            headers.pop("content-length", None)
            return

        content_length = headers.get("content-length")
        if content_length is not None:
            values = {v.strip() for v in content_length.split(",")}
            if len(values) != 1:
                raise HTTPParseError("Conflicting Content-Length headers")
            value = values.pop()
            if not re.fullmatch(r"[0-9]+", value):
                raise HTTPParseError(f"Invalid Content-Length: {value!r}")
            headers["content-length"] = value

    def attach_body(
        self,
        request: HTTPRequest,
        source: ByteSource,
        on_first_read: Optional[Callable[[], None]] = None,
    ) -> HTTPRequest:
        """Give request a RequestBody reading from source."""
        request.body = RequestBody(
            source,
            content_length=request.content_length,
            chunked=request.is_chunked,
            max_size=self.max_body_size,
            on_first_read=on_first_read if request.expects_continue else None,
        )
        return request


def parse_request(data: bytes, client_address: tuple = ("", 0)) -> HTTPRequest:
    """
    Parse a complete in-memory request (head + body).

    Convenience for tests and tools; the server itself streams.
    """
    head_end = data.find(b"\r\n\r\n")
    if head_end == -1:
        raise HTTPParseError("Incomplete request: no header terminator")

    parser = RequestParser(max_header_size=max(64 * 1024, head_end))
    request = parser.parse_head(data[:head_end], client_address)
    return parser.attach_body(request, MemorySource(data[head_end + 4:]))
