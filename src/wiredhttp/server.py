"""
=============================================================================
HTTP SERVER
=============================================================================

Ties the networking core and the HTTP layer together around one handler
(normally a RouteTable).

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ┌─────────────────┐                          │
    │                        │   HTTPServer    │                          │
    │                        └────────┬────────┘                          │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐        │
    │    │ SocketServer │    │  ThreadPool  │    │  RouteTable  │        │
    │    │ accept loop  │    │   workers    │    │   dispatch   │        │
    │    └──────┬───────┘    └──────┬───────┘    └──────────────┘        │
    │           ▼                   ▼                                     │
    │    ┌──────────────┐    ┌──────────────┐                            │
    │    │  Connection  │    │   Handlers   │                            │
    │    └──────────────┘    └──────────────┘                            │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
STATES
=============================================================================

    CONSTRUCTED ──start()──► LISTENING ──stop()──► STOPPED
         │                                            ▲
         └─────────────────stop()─────────────────────┘

    start() binds and returns at once; the accept loop runs on its own
    thread. A bind failure propagates and leaves the server STOPPED.
    STOPPED is final: there is no restart.

=============================================================================
REQUEST LIFECYCLE (one worker per connection)
=============================================================================

    1. read_head()        idle timeout or peer close → close silently
    2. parse_head()       HTTPParseError → 400/431/501/505, close
    3. handler.serve()    request.body streams, writer buffers/streams
    4. writer.finish()    head + remaining body on the wire
    5. drain body         unread request bytes must not leak into step 1
    6. keep-alive?        loop to 1, else close

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

    1. Stop accepting, close the listener
    2. Close idle keep-alive connections
    3. Wait for in-flight requests, up to the stop timeout
    4. Force-close whatever is left
    5. Shut the worker pool down

=============================================================================
"""

import logging
import threading
import time
from enum import Enum
from typing import Optional, Set, Tuple

from .config import ServerConfig
from .core import Connection, ConnectionState, HeadTooLargeError, SocketServer, ThreadPool
from .http import (
    HTTPParseError,
    HTTPStatus,
    Handler,
    RequestParser,
    ResponseWriteError,
    ResponseWriter,
    simple_response,
)


# Unread request body larger than this is not drained; the connection closes
DRAIN_LIMIT = 256 * 1024

# How often stop() re-checks for connections that went idle
DRAIN_POLL_INTERVAL = 0.1


class ServerState(Enum):
    CONSTRUCTED = "constructed"
    LISTENING = "listening"
    STOPPED = "stopped"


class ServerStateError(RuntimeError):
    """start() called on a server that is already listening or stopped."""


class HTTPServer:
    """
    Threaded HTTP/1.1 server with graceful stop.

    Usage:
        server = HTTPServer(config, RouteTable(routes), logger)
        server.start()              # binds, returns immediately
        ...
        server.stop(timeout=15.0)   # drains, then force-closes

    Args:
        config:  Server configuration (validated here).
        handler: Serves every request; usually a RouteTable.
        logger:  Application logger, passed down from the composition root.
    """

    def __init__(self, config: ServerConfig, handler: Handler, logger: logging.Logger):
        config.validate()

        self.config = config
        self.handler = handler
        self.logger = logger

        self._socket_server = SocketServer(config)
        self._thread_pool = ThreadPool(
            min_workers=config.min_workers,
            max_workers=config.max_workers,
            queue_size=config.queue_size,
        )
        self._parser = RequestParser(
            max_header_size=config.max_header_size,
            max_body_size=config.max_body_size,
        )

        self._state = ServerState.CONSTRUCTED
        self._state_lock = threading.Lock()
        self._accept_thread: Optional[threading.Thread] = None

        # Live connections; notified whenever one goes away
        self._connections: Set[Connection] = set()
        self._connections_changed = threading.Condition()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ServerState.LISTENING

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); differs from the config when port is 0."""
        return self._socket_server.address

    @property
    def active_connections(self) -> int:
        with self._connections_changed:
            return len(self._connections)

    def _addr(self) -> str:
        host, port = self.address
        return f"{host}:{port}"

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Bind the listener and start serving in the background.

        Raises:
            ServerStateError: Already started or stopped.
            OSError:          Bind failed (address in use, permission denied).
        """
        with self._state_lock:
            if self._state != ServerState.CONSTRUCTED:
                raise ServerStateError(f"Cannot start server in state {self._state.value}")

            try:
                self._socket_server.bind()
            except OSError:
                self._state = ServerState.STOPPED
                raise

            self._thread_pool.start()
            self._accept_thread = threading.Thread(
                target=self._accept_loop,
                name="wiredhttp-accept",
                daemon=True,
            )
            self._state = ServerState.LISTENING
            self._accept_thread.start()

        self.logger.info("Starting HTTP server", extra={"addr": self._addr()})

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop accepting and drain in-flight requests. Idempotent.

        Args:
            timeout: Seconds to wait for active requests before closing
                     their connections; config.stop_timeout when None.
        """
        with self._state_lock:
            previous, self._state = self._state, ServerState.STOPPED
        if previous == ServerState.STOPPED:
            return
        if previous == ServerState.CONSTRUCTED:
            self.logger.debug("Server stopped before it was started")
            return

        if timeout is None:
            timeout = self.config.stop_timeout
        deadline = time.monotonic() + timeout
        addr = self._addr()
        self.logger.info("Stopping HTTP server", extra={"addr": addr})

        # 1. No new connections
        self._socket_server.shutdown()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=max(0.0, deadline - time.monotonic()))
        self._socket_server.close()

        # 2-3. Idle connections go now, busy ones get until the deadline
        with self._connections_changed:
            while self._connections:
                for conn in self._connections:
                    if conn.is_idle:
                        conn.abort()
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._connections_changed.wait(min(remaining, DRAIN_POLL_INTERVAL))
            leftover = list(self._connections)

        # 4. Deadline passed
        if leftover:
            self.logger.warning(
                f"Forcing close of {len(leftover)} connections after {timeout:.1f}s",
                extra={"addr": addr, "forced": len(leftover)},
            )
            for conn in leftover:
                conn.abort()

        self.logger.debug("Thread pool stats", extra=self._thread_pool.stats)

        # 5. Workers wake up from the aborted sockets and exit
        self._thread_pool.shutdown(timeout=max(1.0, deadline - time.monotonic()))

        self.logger.info("HTTP server stopped", extra={"addr": addr, "forced": len(leftover)})

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _accept_loop(self) -> None:
        try:
            self._socket_server.serve(self._handle_connection)
        except Exception:
            self.logger.exception("Accept loop failed", extra={"addr": self._addr()})

    def _handle_connection(self, conn: Connection) -> None:
        """Called on the accept thread for every new client."""
        with self._connections_changed:
            self._connections.add(conn)

        try:
            submitted = self._thread_pool.submit(self._process_connection, args=(conn,))
        except RuntimeError:
            # Pool already shutting down
            submitted = False

        if not submitted:
            self.logger.warning(
                f"[{conn.id}] Worker queue full, rejecting connection",
                extra={"client": f"{conn.client_ip}:{conn.client_port}"},
            )
            conn.send_response(simple_response(
                HTTPStatus.SERVICE_UNAVAILABLE,
                "Service Unavailable",
                self.config.server_name,
            ))
            conn.close()
            self._forget(conn)

    def _forget(self, conn: Connection) -> None:
        with self._connections_changed:
            self._connections.discard(conn)
            self._connections_changed.notify_all()

    def _process_connection(self, conn: Connection) -> None:
        """
        Keep-alive loop for one connection (runs on a worker thread).
        """
        try:
            while self.is_running:
                if not self._serve_request(conn):
                    break
                conn.set_keep_alive()
        except Exception as e:
            self.logger.exception(f"[{conn.id}] Connection error: {e}")
        finally:
            conn.close()
            self._forget(conn)

    def _serve_request(self, conn: Connection) -> bool:
        """
        Serve one request.

        Returns:
            True if the connection can carry another request.
        """
        try:
            head = conn.read_head()
        except TimeoutError:
            self._reject(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
            return False
        except HeadTooLargeError as e:
            self._reject(conn, HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE, str(e))
            return False
        except OSError as e:
            self.logger.debug(f"[{conn.id}] Read failed: {e}")
            return False

        if head is None:
            return False
        conn.state = ConnectionState.PROCESSING

        try:
            request = self._parser.parse_head(head, conn.address)
        except HTTPParseError as e:
            self.logger.debug(f"[{conn.id}] Bad request: {e}")
            self._reject(conn, e.status_code, str(e))
            return False

        keep_alive = self.config.keep_alive and request.is_keep_alive and self.is_running
        writer = ResponseWriter(
            conn,
            request,
            server_name=self.config.server_name,
            buffer_size=self.config.buffer_size,
            keep_alive=keep_alive,
        )
        self._parser.attach_body(request, conn, on_first_read=writer.send_continue)

        started = time.monotonic()
        try:
            self.handler.serve(request, writer)
            writer.finish()
        except ResponseWriteError as e:
            self.logger.debug(f"[{conn.id}] Client went away: {e}")
            return False
        except Exception:
            self.logger.exception(
                "Handler failed",
                extra={"method": request.method, "path": request.path},
            )
            if not writer.committed:
                conn.send_response(simple_response(
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    "Internal Server Error",
                    self.config.server_name,
                    version=request.version,
                ))
            return False

        self.logger.debug(
            f"{request.method} {request.target} {writer.status}",
            extra={
                "client": f"{conn.client_ip}:{conn.client_port}",
                "request_bytes": request.body.bytes_read,
                "response_bytes": writer.body_bytes,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )

        if not writer.keep_alive:
            return False
        if not request.body.complete and not request.body.drain(DRAIN_LIMIT):
            return False
        return self.is_running

    def _reject(self, conn: Connection, status: int, message: str) -> None:
        conn.send_response(simple_response(status, message, self.config.server_name))
