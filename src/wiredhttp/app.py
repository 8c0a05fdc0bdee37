"""
=============================================================================
COMPOSITION ROOT
=============================================================================

The one place where the application is wired together. Nothing is looked
up or injected implicitly; every dependency is constructed here and passed
down by hand:

    config ──► logger
                 │
                 ├──► EchoHandler(logger) ─┐
                 ├──► HelloHandler(logger) ┼──► RouteTable([...])
                 │                          │
                 └──────────────────────────┴──► HTTPServer(config, table, logger)
                                                      │
                                        Hook("HTTPServer", start, stop)
                                                      │
                                                      ▼
                                              Lifecycle(logger)

App.run() then drives the process:

    lifecycle.start()  ──►  wait for SIGINT / SIGTERM  ──►  lifecycle.stop()
          │
          └─ failure (port in use, ...) ──► exit code 1

=============================================================================
"""

import logging
import signal
import threading
from typing import Iterable, Optional

from .config import ServerConfig
from .handlers import EchoHandler, HelloHandler
from .http import Handler, Route, RouteTable
from .lifecycle import Hook, Lifecycle, LifecycleError
from .logging_config import configure_logging
from .server import HTTPServer


SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# Event.wait() granularity on the main thread, so signal handlers get to run
WAIT_INTERVAL = 0.5


def new_http_server(
    lifecycle: Lifecycle,
    handler: Handler,
    config: ServerConfig,
    logger: logging.Logger,
) -> HTTPServer:
    """
    Build the HTTP server and tie it to the lifecycle.

    The server binds in the start hook and drains in the stop hook; the stop
    hook's remaining deadline becomes the drain timeout.
    """
    server = HTTPServer(config, handler, logger)
    lifecycle.append(Hook(
        name="HTTPServer",
        on_start=lambda timeout: server.start(),
        on_stop=server.stop,
    ))
    return server


def new_routes(logger: logging.Logger, buffer_size: int = 8192) -> list:
    """The routes this application serves."""
    return [
        EchoHandler(logger, chunk_size=buffer_size),
        HelloHandler(logger),
    ]


class App:
    """
    A constructed application, ready to run.

    Usage:
        app = build_app(ServerConfig.from_env())
        sys.exit(app.run())
    """

    def __init__(
        self,
        lifecycle: Lifecycle,
        logger: logging.Logger,
        config: ServerConfig,
        server: Optional[HTTPServer] = None,
    ):
        self.lifecycle = lifecycle
        self.logger = logger
        self.config = config
        self.server = server
        self._shutdown = threading.Event()
        self._signal: Optional[int] = None

    def run(self) -> int:
        """
        Start, block until shutdown is requested, stop.

        Returns:
            Process exit code: 0 after a clean shutdown, 1 if startup or
            shutdown failed.
        """
        try:
            self.lifecycle.start(timeout=self.config.start_timeout)
        except LifecycleError as e:
            self.logger.error("Failed to start application", extra={"error": str(e.__cause__ or e)})
            return 1

        previous_handlers = self._install_signal_handlers()
        try:
            while not self._shutdown.wait(WAIT_INTERVAL):
                pass
        finally:
            self._restore_signal_handlers(previous_handlers)

        if self._signal is not None:
            self.logger.info("Received signal, shutting down", extra={"signal": signal.Signals(self._signal).name})
        else:
            self.logger.info("Shutting down")

        try:
            self.lifecycle.stop(timeout=self.config.stop_timeout)
        except LifecycleError as e:
            self.logger.error("Failed to stop application cleanly", extra={"error": str(e.__cause__ or e)})
            return 1
        return 0

    def shutdown(self, signum: Optional[int] = None) -> None:
        """Ask run() to stop. Safe from any thread and from signal handlers."""
        self._signal = signum
        self._shutdown.set()

    def _handle_signal(self, signum, frame) -> None:
        self.shutdown(signum)

    def _install_signal_handlers(self) -> dict:
        # signal.signal() only works on the main thread
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for sig in SHUTDOWN_SIGNALS:
            previous[sig] = signal.signal(sig, self._handle_signal)
        return previous

    def _restore_signal_handlers(self, previous: dict) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def build_app(
    config: Optional[ServerConfig] = None,
    logger: Optional[logging.Logger] = None,
    routes: Optional[Iterable[Route]] = None,
) -> App:
    """
    Wire the whole application.

    Args:
        config: Defaults to ServerConfig() (0.0.0.0:8080).
        logger: Defaults to a logger configured from config.log_level and
                config.log_format.
        routes: Defaults to the echo and hello handlers.

    Raises:
        ConfigurationError: Invalid config or duplicate route patterns.
    """
    config = config or ServerConfig()
    config.validate()

    if logger is None:
        logger = configure_logging(config.log_level, config.log_format)

    if routes is None:
        routes = new_routes(logger, config.buffer_size)

    lifecycle = Lifecycle(logger)
    table = RouteTable(routes)
    server = new_http_server(lifecycle, table, config, logger)

    logger.debug(f"Registered routes: {', '.join(table.patterns)}")
    return App(lifecycle, logger, config, server=server)
