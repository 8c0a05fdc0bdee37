"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the server and the application around it.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m wiredhttp --port 3000                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HTTP_PORT=3000 python -m wiredhttp                        │
    │                                                                      │
    │   3. Dataclass defaults                                             │
    │      └── 0.0.0.0:8080, 4-16 workers, 15s start/stop deadlines      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

With no flags and no environment the server listens on port 8080 and serves
/echo and /hello, nothing else.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional

from . import __version__


class ConfigurationError(ValueError):
    """
    Raised when the application is wired or configured incorrectly.

    These errors are only discoverable at startup (bad port, inverted
    worker bounds, duplicate route patterns) and are always fatal.
    """


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP server and its lifecycle.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, timeout

    HTTP SETTINGS
    - keep_alive, keep_alive_timeout, max_header_size, max_body_size

    THREADING SETTINGS
    - min_workers, max_workers, queue_size

    LIFECYCLE
    - start_timeout, stop_timeout

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to.
    - "0.0.0.0" - All network interfaces (the default, like ":8080")
    - "127.0.0.1" - Localhost only
    """

    port: int = 8080
    """
    The port number to listen on.
    0 asks the OS for a free port; HTTPServer.address reports the real one.
    """

    backlog: int = 128
    """Maximum number of queued connections before the OS refuses new ones."""

    buffer_size: int = 8192
    """
    Size of socket reads and of the response write buffer in bytes.
    Responses that fit in one buffer are sent with Content-Length.
    """

    timeout: Optional[float] = 30.0
    """
    Socket timeout in seconds while reading a request.
    None = blocking (infinite wait).
    """

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Allow multiple requests on one TCP connection."""

    keep_alive_timeout: float = 5.0
    """Idle seconds before a keep-alive connection is closed."""

    max_header_size: int = 64 * 1024
    """Largest accepted request line + header section (431 beyond this)."""

    max_body_size: int = 10 * 1024 * 1024
    """Largest request body a handler may read before BodyReadError."""

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """Worker threads created when the server starts."""

    max_workers: int = 16
    """Upper bound the pool scales to under load."""

    queue_size: int = 100
    """Connections allowed to wait for a worker before 503."""

    # ─────────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────

    start_timeout: float = 15.0
    """Deadline for all start hooks together."""

    stop_timeout: float = 15.0
    """
    Deadline for all stop hooks together.
    In-flight requests still running when it elapses are force-closed.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """'text' for humans, 'json' for log aggregators."""

    server_name: str = f"wiredhttp/{__version__}"
    """Value of the Server response header."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HTTP_HOST          Server host (default: 0.0.0.0)
        HTTP_PORT          Server port (default: 8080)
        HTTP_WORKERS       Max worker threads (default: 16)
        HTTP_TIMEOUT       Request read timeout in seconds (default: 30)
        HTTP_STOP_TIMEOUT  Graceful stop deadline in seconds (default: 15)
        HTTP_LOG_LEVEL     Logging level (default: INFO)
        HTTP_LOG_FORMAT    text or json (default: text)

        =====================================================================
        """
        max_workers = int(os.getenv("HTTP_WORKERS", "16"))
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            min_workers=min(4, max_workers),
            max_workers=max_workers,
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            stop_timeout=float(os.getenv("HTTP_STOP_TIMEOUT", "15")),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
            log_format=os.getenv("HTTP_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by the composition root before anything is constructed, so a
        bad value aborts startup instead of surfacing on the first request.

        Raises:
            ConfigurationError: On the first invalid value found.
        """
        if not 0 <= self.port < 65536:
            raise ConfigurationError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.min_workers < 1:
            raise ConfigurationError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ConfigurationError("max_workers must be >= min_workers")

        if self.queue_size < 1:
            raise ConfigurationError("queue_size must be >= 1")

        if self.buffer_size < 1024:
            raise ConfigurationError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ConfigurationError("keep_alive_timeout must be > 0")

        if self.max_header_size < 1024:
            raise ConfigurationError("max_header_size must be >= 1024")

        if self.max_body_size < 0:
            raise ConfigurationError("max_body_size must be >= 0")

        if self.start_timeout <= 0 or self.stop_timeout <= 0:
            raise ConfigurationError("start_timeout and stop_timeout must be > 0")

        if self.log_format not in ("text", "json"):
            raise ConfigurationError(f"Unknown log_format: {self.log_format!r}")
