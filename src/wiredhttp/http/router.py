"""
=============================================================================
ROUTE TABLE
=============================================================================

Maps an exact request path to the route that serves it.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   GET /hello                                                         │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌─────────────────────────────────────────────────────────────┐   │
    │   │  ROUTE TABLE                                                 │   │
    │   │    /echo   → EchoHandler                                     │   │
    │   │    /hello  → HelloHandler       ← MATCH                      │   │
    │   └─────────────────────────────────────────────────────────────┘   │
    │        │                                                             │
    │        ▼                                                             │
    │   HelloHandler.serve(request, writer)                                │
    └─────────────────────────────────────────────────────────────────────┘

Matching is a dict lookup on the decoded path: no parameters, no
wildcards, no trailing-slash folding, any method. A miss answers
404 "404 page not found".

The table is built once from a list of routes and never changes, so
concurrent workers read it without locking. Two routes claiming the same
pattern is a startup error (DuplicateRouteError).

=============================================================================
"""

from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from ..config import ConfigurationError
from .request import HTTPRequest
from .response import ResponseWriter, http_error
from .status_codes import HTTPStatus


class Handler(Protocol):
    """Anything that can answer a request: a single route or a whole table."""

    def serve(self, request: HTTPRequest, writer: ResponseWriter) -> None: ...


@runtime_checkable
class Route(Protocol):
    """
    Anything that serves one path.

        class PingHandler:
            pattern = "/ping"

            def serve(self, request, writer):
                writer.write(b"pong")
    """

    @property
    def pattern(self) -> str: ...

    def serve(self, request: HTTPRequest, writer: ResponseWriter) -> None: ...


class DuplicateRouteError(ConfigurationError):
    """Two routes were registered for the same pattern."""

    def __init__(self, pattern: str, existing: Route, duplicate: Route):
        super().__init__(
            f"Duplicate route pattern {pattern!r}: "
            f"{type(existing).__name__} and {type(duplicate).__name__}"
        )
        self.pattern = pattern
        self.existing = existing
        self.duplicate = duplicate


def not_found(writer: ResponseWriter) -> None:
    http_error(writer, "404 page not found", HTTPStatus.NOT_FOUND)


class RouteTable:
    """
    Immutable exact-match dispatch table.

    RouteTable is itself a route-like handler (``serve``), which is what
    the server is built from.

    Usage:
        table = RouteTable([EchoHandler(logger), HelloHandler(logger)])
        table.serve(request, writer)

    Raises:
        DuplicateRouteError: Two routes share a pattern.
        ConfigurationError:  A pattern is not an absolute path.
    """

    def __init__(self, routes: Iterable[Route]):
        table: Dict[str, Route] = {}

        for route in routes:
            pattern = route.pattern
            if not isinstance(pattern, str) or not pattern.startswith("/"):
                raise ConfigurationError(
                    f"Route pattern must start with '/': {pattern!r} ({type(route).__name__})"
                )
            if pattern in table:
                raise DuplicateRouteError(pattern, table[pattern], route)
            table[pattern] = route

        self._table = table

    @property
    def patterns(self) -> List[str]:
        """Registered patterns, in registration order."""
        return list(self._table)

    def match(self, path: str) -> Optional[Route]:
        return self._table.get(path)

    def serve(self, request: HTTPRequest, writer: ResponseWriter) -> None:
        route = self.match(request.path)
        if route is None:
            not_found(writer)
            return
        route.serve(request, writer)

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, pattern: object) -> bool:
        return pattern in self._table

    def __repr__(self) -> str:
        return f"RouteTable({self.patterns!r})"
