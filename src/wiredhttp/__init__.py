"""
=============================================================================
WIREDHTTP
=============================================================================

A small HTTP/1.1 server assembled by hand from explicit parts:

    config.py           ServerConfig (defaults, environment, validation)
    logging_config.py   one "wiredhttp" logger, text or JSON output
    core/               listening socket, connections, worker pool
    http/               request parsing, response writer, route table
    handlers/           /echo and /hello
    server.py           HTTPServer: start, serve, drain, stop
    lifecycle.py        ordered start/stop hooks with rollback
    app.py              composition root and signal-driven run loop

Run it:

    python -m wiredhttp                 # 0.0.0.0:8080
    python -m wiredhttp --port 3000

    curl -d world localhost:8080/hello  # Hello, world
    curl -d ping  localhost:8080/echo   # ping

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig, ConfigurationError
from .server import HTTPServer, ServerState, ServerStateError
from .lifecycle import Hook, Lifecycle, LifecycleError
from .app import App, build_app

__all__ = [
    "App",
    "ConfigurationError",
    "HTTPServer",
    "Hook",
    "Lifecycle",
    "LifecycleError",
    "ServerConfig",
    "ServerState",
    "ServerStateError",
    "build_app",
    "__version__",
]
