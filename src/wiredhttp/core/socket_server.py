"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the listening socket: bind, listen, accept loop, close. It knows
nothing about HTTP; every accepted client is wrapped in a Connection and
handed to a callback.

    bind()          socket() → setsockopt() → bind() → listen()
                    Errors (address in use, permission denied) propagate.

    serve(cb)       while running: accept() → Connection → cb(conn)
                    Blocks; HTTPServer runs it on a dedicated thread.

    shutdown()      running = False, wake accept(); the loop closes the
                    listening socket on its way out.

Socket options:

    SO_REUSEADDR    bind again right after a stop, despite TIME_WAIT
    TCP_NODELAY     don't hold small responses back (Nagle)

The listening socket keeps a short accept timeout so the loop re-checks
the running flag even on platforms where shutdown() does not interrupt a
blocked accept().

=============================================================================
"""

import socket
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 0.5


class SocketServer:
    """
    Low-level TCP socket server.

    Usage:
        server = SocketServer(config)
        server.bind()                      # raises OSError on failure
        thread = Thread(target=server.serve, args=(on_connection,))
        thread.start()
        ...
        server.shutdown()
        thread.join()
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._running = False
        self._closed = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the configured one before bind()."""
        if self._socket is not None:
            try:
                host, port = self._socket.getsockname()[:2]
                return (host, port)
            except OSError:
                pass
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Create, bind and listen.

        Returns:
            The bound address.

        Raises:
            OSError: Bind or listen failed; the socket is closed again.
        """
        sock = self._create_socket()
        try:
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            sock.close()
            raise

        self._socket = sock
        self._running = True
        self._closed.clear()
        return self.address

    def serve(self, connection_handler: Callable[[Connection], None]):
        """
        Accept connections until shutdown() is called.

        Args:
            connection_handler: Receives every accepted Connection. It must
                                not block for long; the HTTP server just
                                queues the connection on its pool.
        """
        if self._socket is None:
            raise RuntimeError("serve() called before bind()")

        try:
            while self._running:
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    # Listener shut down under us: normal during stop
                    if self._running:
                        logger.error(f"Accept error: {e}")
                    break

                if not self._running:
                    client_socket.close()
                    break

                logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

                conn = Connection(
                    socket=client_socket,
                    address=client_address,
                    buffer_size=self.config.buffer_size,
                    timeout=self.config.timeout,
                    keep_alive_timeout=self.config.keep_alive_timeout,
                    max_header_size=self.config.max_header_size,
                )
                connection_handler(conn)
        finally:
            self._running = False
            self.close()

    def shutdown(self):
        """
        Stop accepting. Idempotent and safe from any thread.

        New connection attempts are refused as soon as this returns
        together with close() (HTTPServer calls both).
        """
        self._running = False
        if self._socket is not None:
            try:
                self._socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Not connected / already closed

    def close(self):
        """Close the listening socket exactly once."""
        if self._closed.is_set():
            return
        self._closed.set()

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
        logger.debug("Listener closed")
