"""
HTTP protocol layer: request parsing, response writing, routing.
"""

from .request import (
    BodyReadError,
    BodyTooLargeError,
    HTTPParseError,
    HTTPRequest,
    MemorySource,
    RequestBody,
    RequestParser,
    parse_request,
)
from .response import (
    ResponseWriteError,
    ResponseWriter,
    format_http_date,
    http_error,
    simple_response,
)
from .router import DuplicateRouteError, Handler, Route, RouteTable, not_found
from .status_codes import HTTPStatus, status_text

__all__ = [
    "BodyReadError",
    "BodyTooLargeError",
    "DuplicateRouteError",
    "HTTPParseError",
    "Handler",
    "HTTPRequest",
    "HTTPStatus",
    "MemorySource",
    "RequestBody",
    "RequestParser",
    "ResponseWriteError",
    "ResponseWriter",
    "Route",
    "RouteTable",
    "format_http_date",
    "http_error",
    "not_found",
    "parse_request",
    "simple_response",
    "status_text",
]
