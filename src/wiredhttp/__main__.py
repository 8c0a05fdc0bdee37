"""
=============================================================================
WIREDHTTP CLI ENTRY POINT
=============================================================================

    python -m wiredhttp                         # 0.0.0.0:8080
    python -m wiredhttp --port 3000
    python -m wiredhttp --host 127.0.0.1 --workers 8
    python -m wiredhttp --log-level DEBUG --log-format json

Configuration is read from the environment first (see
ServerConfig.from_env); flags given here override it.

Exit codes:
    0   clean shutdown after SIGINT / SIGTERM
    1   startup failed (port in use, ...)
    2   invalid arguments or configuration

=============================================================================
"""

import argparse
import sys
from typing import List, Optional

from . import __version__
from .app import build_app
from .config import ServerConfig


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="wiredhttp",
        description="HTTP server with /echo and /hello routes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m wiredhttp                       # Run with defaults
  python -m wiredhttp --port 3000           # Custom port
  python -m wiredhttp --host 127.0.0.1      # Localhost only
  python -m wiredhttp --workers 8           # Up to 8 worker threads
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: 0.0.0.0, or $HTTP_HOST)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 8080, or $HTTP_PORT)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # PERFORMANCE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Maximum worker threads (default: 16, or $HTTP_WORKERS)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO, or $HTTP_LOG_LEVEL)"
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Log output format (default: text, or $HTTP_LOG_FORMAT)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"wiredhttp {__version__}"
    )

    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment config with command-line overrides applied."""
    config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.workers is not None:
        config.max_workers = args.workers
        config.min_workers = min(config.min_workers, args.workers)
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format

    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = config_from_args(args)
        app = build_app(config)
    except ValueError as e:
        # ConfigurationError, or a malformed environment value
        print(f"wiredhttp: configuration error: {e}", file=sys.stderr)
        return 2

    return app.run()


if __name__ == "__main__":
    sys.exit(main())
