"""
=============================================================================
HTTP RESPONSE WRITER
=============================================================================

Handlers don't return a response object; they write into a ResponseWriter
tied to the connection. That lets a handler stream a body of any size
(the echo route copies the request body straight through) while small
responses still go out in one piece with an exact Content-Length.

=============================================================================
COMMIT RULES
=============================================================================

    write_header(status)   records the status, sends nothing yet
    write(data)            buffers until buffer_size is exceeded
    finish()               called by the server after the handler returns

The head is sent ("committed") the first time either happens:

    ┌───────────────────────────┬─────────────────────────────────────────┐
    │ finish() with buffer only │ Content-Length: len(buffer)             │
    │ buffer overflows, 1.1     │ Transfer-Encoding: chunked              │
    │ buffer overflows, 1.0     │ body streamed raw, connection closed    │
    │ handler set Content-Length│ that length, body streamed raw          │
    └───────────────────────────┴─────────────────────────────────────────┘

After the commit the status and headers are fixed; write_header() is
ignored and header changes have no effect.

HEAD requests get the same head (including Content-Length) without body
bytes.

Every response carries Date and Server headers.

=============================================================================
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Tuple, Union
import logging

from .status_codes import HTTPStatus, status_text
from .request import HTTPRequest


logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "wiredhttp"


class ResponseWriteError(Exception):
    """
    Raised when response bytes cannot be delivered.

    The underlying OSError (reset, broken pipe, timeout) is the __cause__.
    Once raised, the writer is broken and the connection will be closed.
    """


class ResponseWriter:
    """
    Response side of one request/response exchange.

    Usage (inside a handler):
        writer.set_header("Content-Type", "text/plain; charset=utf-8")
        writer.write_header(HTTPStatus.OK)     # optional, 200 is implied
        writer.write(b"Hello, world\\n")
    """

    def __init__(
        self,
        connection,
        request: Optional[HTTPRequest] = None,
        server_name: str = DEFAULT_SERVER_NAME,
        buffer_size: int = 8192,
        keep_alive: bool = True,
    ):
        self._connection = connection
        self._request = request
        self.server_name = server_name
        self.buffer_size = buffer_size

        self._version = request.version if request is not None else "HTTP/1.1"
        self._is_head = request is not None and request.method == "HEAD"
        self._keep_alive = keep_alive

        # lowercase name → (name as given, value)
        self._headers: Dict[str, Tuple[str, str]] = {}
        self._status: Optional[int] = None
        self._buffer = bytearray()
        self._committed = False
        self._chunked = False
        self._finished = False
        self._broken = False
        self._declared_length: Optional[int] = None
        self.body_bytes = 0

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def status(self) -> int:
        """Status sent (or to be sent); 200 until write_header() says otherwise."""
        return self._status if self._status is not None else HTTPStatus.OK

    @property
    def committed(self) -> bool:
        """True once the status line and headers have been sent."""
        return self._committed

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def keep_alive(self) -> bool:
        """Whether the connection can serve another request afterwards."""
        return self._keep_alive and not self._broken

    # =========================================================================
    # HEADERS
    # =========================================================================

    def set_header(self, name: str, value: str) -> None:
        if self._committed:
            logger.debug(f"Header {name} set after response was committed")
            return
        self._headers[name.lower()] = (name, value)

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry is not None else default

    def del_header(self, name: str) -> None:
        if not self._committed:
            self._headers.pop(name.lower(), None)

    @property
    def headers(self) -> Dict[str, str]:
        return {name: value for name, value in self._headers.values()}

    # =========================================================================
    # WRITING
    # =========================================================================

    def write_header(self, status: int) -> None:
        """
        Set the response status.

        Only the first call counts; later calls are logged and ignored.
        """
        if self._status is not None:
            logger.debug(f"Superfluous write_header({status}), status already {self._status}")
            return
        self._status = int(status)

    def write(self, data: Union[bytes, str]) -> int:
        """
        Append to the response body.

        Returns:
            Number of bytes accepted.

        Raises:
            ResponseWriteError: Writing to the client failed.
        """
        if self._finished:
            raise ResponseWriteError("write after response finished")
        if self._broken:
            raise ResponseWriteError("connection to client is broken")
        if isinstance(data, str):
            data = data.encode("utf-8")
        if self._status is None:
            self.write_header(HTTPStatus.OK)
        if not data:
            return 0

        self.body_bytes += len(data)

        if not self._committed:
            self._buffer += data
            if len(self._buffer) > self.buffer_size:
                body, self._buffer = bytes(self._buffer), bytearray()
                self._send(self._serialize_head(final=False) + self._frame(body))
            return len(data)

        self._send(self._frame(data))
        return len(data)

    def flush(self) -> None:
        """Commit the head and push out anything buffered."""
        if self._finished or self._broken:
            return
        if self._status is None:
            self.write_header(HTTPStatus.OK)
        if not self._committed:
            body, self._buffer = bytes(self._buffer), bytearray()
            self._send(self._serialize_head(final=False) + self._frame(body))

    def finish(self) -> None:
        """
        Complete the response. Idempotent.

        Called by the server once the handler returns; handlers don't need to.

        Raises:
            ResponseWriteError: The final bytes could not be sent.
        """
        if self._finished:
            return
        self._finished = True
        if self._broken:
            return

        if self._status is None:
            self.write_header(HTTPStatus.OK)

        if not self._committed:
            body, self._buffer = bytes(self._buffer), bytearray()
            self._send(self._serialize_head(final=True, body_length=len(body)) + (b"" if self._is_head else body))
        elif self._chunked and not self._is_head:
            self._send(b"0\r\n\r\n")

        if self._declared_length is not None and self._declared_length != self.body_bytes and not self._is_head:
            logger.warning(
                f"Handler wrote {self.body_bytes} bytes but declared Content-Length "
                f"{self._declared_length}; closing connection"
            )
            self._keep_alive = False

    def reset(self) -> bool:
        """
        Discard the status, headers and buffered body.

        Only possible before the response is committed.

        Returns:
            True if the response was reset, False if it was already committed.
        """
        if self._committed or self._finished:
            return False
        self._headers.clear()
        self._status = None
        self._buffer = bytearray()
        self.body_bytes = 0
        return True

    def send_continue(self) -> None:
        """
        Send the interim "100 Continue" response.

        Raises:
            OSError: The client went away.
        """
        if self._committed:
            return
        self._connection.sendall(f"{self._version} 100 Continue\r\n\r\n".encode("latin-1"))

    def _send(self, data: bytes) -> None:
        try:
            self._connection.sendall(data)
        except OSError as e:
            self._broken = True
            raise ResponseWriteError(f"write response: {e}") from e

    def _frame(self, data: bytes) -> bytes:
        if self._is_head or not data:
            return b""
        if self._chunked:
            return b"%x\r\n%s\r\n" % (len(data), data)
        return data

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def _serialize_head(self, final: bool, body_length: int = 0) -> bytes:
        """
        Build the status line and headers and mark the response committed.

        Args:
            final:       The whole body is known, so an exact Content-Length
                         can be sent.
            body_length: Size of that body when final.
        """
        self._committed = True
        status = self.status
        declared = self.get_header("Content-Length")

        if declared is not None:
            try:
                self._declared_length = int(declared)
            except ValueError:
                self._headers.pop("content-length", None)
                declared = None

        if declared is None:
            if final:
                if not (self._is_head and body_length == 0):
                    self._headers["content-length"] = ("Content-Length", str(body_length))
            elif self._version == "HTTP/1.1":
                self._chunked = True
                self._headers["transfer-encoding"] = ("Transfer-Encoding", "chunked")
            else:
                # HTTP/1.0 has no chunking: end of body is end of connection
                self._keep_alive = False

        connection_header = self.get_header("Connection", "")
        if "close" in connection_header.lower():
            self._keep_alive = False

        if not self._keep_alive:
            self._headers["connection"] = ("Connection", "close")
        elif self._version == "HTTP/1.0":
            self._headers["connection"] = ("Connection", "keep-alive")

        self._headers.setdefault("date", ("Date", format_http_date(datetime.now(timezone.utc))))
        self._headers.setdefault("server", ("Server", self.server_name))

        return serialize_head(self._version, status, self.headers)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def serialize_head(version: str, status: int, headers: Dict[str, str]) -> bytes:
    """
    Status line + headers + blank line, as bytes.

        HTTP/1.1 200 OK\\r\\n
        Content-Length: 13\\r\\n
        \\r\\n
    """
    lines = [f"{version} {int(status)} {status_text(status)}"]
    for name, value in headers.items():
        lines.append(f"{name}: {value}")
    lines.append("")
    return ("\r\n".join(lines) + "\r\n").encode("latin-1")


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Format: Day, DD Mon YYYY HH:MM:SS GMT
    Example: Wed, 01 Jan 2026 12:00:00 GMT

    HTTP dates are always GMT, never local time.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def http_error(writer: ResponseWriter, message: str, status: int) -> None:
    """
    Reply with a plain-text error: "message\\n" and the given status.

    Any Content-Length a handler may have set is dropped.

    Raises:
        ResponseWriteError: Writing to the client failed.
    """
    writer.del_header("Content-Length")
    writer.set_header("Content-Type", "text/plain; charset=utf-8")
    writer.set_header("X-Content-Type-Options", "nosniff")
    writer.write_header(status)
    writer.write(message + "\n")


def simple_response(
    status: int,
    message: str,
    server_name: str = DEFAULT_SERVER_NAME,
    version: str = "HTTP/1.1",
    close: bool = True,
) -> bytes:
    """
    Complete plain-text response as bytes, for replies the server sends on
    its own (400 on a bad head, 503 when overloaded) where no writer exists.
    """
    body = (message + "\n").encode("utf-8")
    headers = {
        "Content-Type": "text/plain; charset=utf-8",
        "X-Content-Type-Options": "nosniff",
        "Content-Length": str(len(body)),
        "Date": format_http_date(datetime.now(timezone.utc)),
        "Server": server_name,
    }
    if close:
        headers["Connection"] = "close"
    return serialize_head(version, status, headers) + body
