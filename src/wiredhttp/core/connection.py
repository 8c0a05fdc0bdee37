"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with buffered reading, timeouts and state
tracking.

TCP is a byte stream: a request head can arrive split over many recv()
calls, and the bytes after the blank line may already contain (part of) the
body or even the next pipelined request. Everything received but not yet
consumed therefore lives in ``_buffer``, and every reader (head parser, body
reader, chunk decoder) pulls from the buffer before touching the socket.

=============================================================================
CONNECTION STATES
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ──┐
                ▲                                                │
                └────────────────────────────────────────────────┘
                                    │
                          CLOSING ──► CLOSED

A connection is *idle* while it waits for the first byte of a request
(NEW, KEEP_ALIVE, or READING with an empty buffer). Idle connections are
closed immediately on server stop; busy ones are drained.

=============================================================================
"""

import socket
import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)

HEAD_TERMINATOR = b"\r\n\r\n"

# Upper bounds on discarding client bytes while closing
CLOSE_DRAIN_LIMIT = 64 * 1024
CLOSE_DRAIN_TIMEOUT = 0.5


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"              # Accepted, waiting for a worker
    READING = "reading"      # Reading a request head
    PROCESSING = "processing"  # Handler is executing
    WRITING = "writing"      # Response bytes are going out
    KEEP_ALIVE = "keep_alive"  # Response done, waiting for the next request
    CLOSING = "closing"
    CLOSED = "closed"


class HeadTooLargeError(ValueError):
    """The request head grew past max_header_size without a terminator."""


@dataclass(eq=False)
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short connection identifier for log lines.
        state: Current connection state.
        requests_handled: Number of request heads read on this connection.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_header_size: int = 64 * 1024

    _buffer: bytes = field(default=b"", repr=False)
    _closed_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def is_idle(self) -> bool:
        """True while no request is in progress on this connection."""
        if self.state in (ConnectionState.NEW, ConnectionState.KEEP_ALIVE):
            return True
        return self.state == ConnectionState.READING and not self._buffer

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def read_head(self) -> Optional[bytes]:
        """
        Read one request head (request line + headers).

        ┌─────────────────────────────────────────────────────────────────┐
        │                      read_head() Flow                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   timeout = keep_alive_timeout if a request was already served  │
        │                                                                  │
        │   while no \\r\\n\\r\\n in buffer:                                  │
        │       recv() → buffer                                            │
        │       (timeout drops back to `timeout` once bytes arrive)        │
        │                                                                  │
        │   head   = buffer[:terminator]                                   │
        │   buffer = buffer[terminator + 4:]   ← body / pipelined bytes    │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Returns:
            The head bytes without the terminator, or None when the peer
            closed or stayed silent past the idle timeout before sending
            anything.

        Raises:
            TimeoutError: Peer stalled in the middle of a head.
            HeadTooLargeError: Head exceeded max_header_size.
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0 and not self._buffer:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while HEAD_TERMINATOR not in self._buffer:
                if len(self._buffer) > self.max_header_size:
                    raise HeadTooLargeError(f"Request head too large: {len(self._buffer)} bytes")

                try:
                    chunk = self._recv(self.buffer_size)
                except socket.timeout:
                    if not self._buffer:
                        logger.debug(f"[{self.id}] Idle timeout")
                        return None
                    raise TimeoutError("Request head read timeout")

                if not chunk:
                    if self._buffer:
                        logger.debug(f"[{self.id}] Peer closed mid-head")
                    return None

                self._buffer += chunk
                # Bytes are flowing; the idle deadline no longer applies
                self.socket.settimeout(self.timeout)

            head_end = self._buffer.find(HEAD_TERMINATOR)
            if head_end > self.max_header_size:
                raise HeadTooLargeError(f"Request head too large: {head_end} bytes")

            head = self._buffer[:head_end]
            self._buffer = self._buffer[head_end + len(HEAD_TERMINATOR):]
            self.requests_handled += 1
            return head

        finally:
            if self.state != ConnectionState.CLOSED:
                self._settimeout(self.timeout)

    def read_some(self, max_bytes: int) -> bytes:
        """
        Return up to max_bytes, buffered bytes first.

        Blocks for at most one recv(). Empty bytes mean the peer closed.
        Socket errors and timeouts propagate to the caller.
        """
        if not self._buffer:
            return self._recv(min(max_bytes, self.buffer_size))

        data, self._buffer = self._buffer[:max_bytes], self._buffer[max_bytes:]
        return data

    def read_line(self, limit: int) -> bytes:
        """
        Read one CRLF-terminated line (terminator included).

        Used for chunk-size lines and trailers. Returns whatever was
        collected if the peer closes first; raises ValueError past limit.
        """
        while b"\r\n" not in self._buffer:
            if len(self._buffer) > limit:
                raise ValueError("Line too long")
            chunk = self._recv(self.buffer_size)
            if not chunk:
                line, self._buffer = self._buffer, b""
                return line
            self._buffer += chunk

        end = self._buffer.find(b"\r\n") + 2
        if end > limit:
            raise ValueError("Line too long")
        line, self._buffer = self._buffer[:end], self._buffer[end:]
        return line

    def _recv(self, size: int) -> bytes:
        try:
            data = self.socket.recv(size)
        except (ConnectionResetError, BrokenPipeError):
            return b""
        self.last_activity = time.time()
        return data

    # =========================================================================
    # WRITING
    # =========================================================================

    def sendall(self, data: bytes) -> None:
        """
        Send all bytes or raise.

        Raises:
            OSError: Peer went away (reset, broken pipe, timeout).
        """
        self.state = ConnectionState.WRITING
        self.socket.sendall(data)
        self.last_activity = time.time()

    def send_response(self, data: bytes) -> bool:
        """
        Best-effort send for server-generated replies (400, 503, ...).

        Returns:
            True if send succeeded, False if connection lost.
        """
        try:
            self.sendall(data)
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR)   FIN to the client: no more data from us
        2. drain briefly       don't leave unread bytes that trigger an RST;
                               at most CLOSE_DRAIN_LIMIT bytes within
                               CLOSE_DRAIN_TIMEOUT seconds in total
        3. close()             release the descriptor

        Idempotent.
        """
        with self._closed_lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        deadline = time.monotonic() + CLOSE_DRAIN_TIMEOUT
        drained = 0
        try:
            while drained < CLOSE_DRAIN_LIMIT:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                data = self.socket.recv(4096)
                if not data:
                    break
                drained += len(data)
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def abort(self):
        """
        Force the connection down from another thread.

        shutdown(SHUT_RDWR) wakes a worker blocked in recv()/sendall(); the
        worker owns the descriptor and performs the actual close().
        """
        if self.state == ConnectionState.CLOSED:
            return
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def set_keep_alive(self):
        """Mark connection ready for the next request."""
        self.state = ConnectionState.KEEP_ALIVE

    def _settimeout(self, value: Optional[float]) -> None:
        try:
            self.socket.settimeout(value)
        except OSError:
            pass  # Socket already torn down by abort()
