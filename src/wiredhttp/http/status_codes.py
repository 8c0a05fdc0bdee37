"""
HTTP status codes used by the server.

Only the codes this server can actually emit are listed; each carries its
reason phrase for the status line:

    HTTP/1.1 404 Not Found
             ─── ─────────
             code  phrase
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

    IntEnum, so members compare equal to plain integers:

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    # 1xx INFORMATIONAL
    CONTINUE = 100               # Sent before reading a body when Expect: 100-continue

    # 2xx SUCCESS
    OK = 200

    # 4xx CLIENT ERRORS
    BAD_REQUEST = 400                       # Malformed request head
    NOT_FOUND = 404                         # No route for the path
    REQUEST_TIMEOUT = 408                   # Head not received in time
    PAYLOAD_TOO_LARGE = 413                 # Body larger than max_body_size
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431   # Head larger than max_header_size

    # 5xx SERVER ERRORS
    INTERNAL_SERVER_ERROR = 500             # Handler failed before committing
    NOT_IMPLEMENTED = 501                   # Unsupported Transfer-Encoding
    SERVICE_UNAVAILABLE = 503               # Worker queue full
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line."""
        return _STATUS_PHRASES[self]


_STATUS_PHRASES = {
    HTTPStatus.CONTINUE: "Continue",
    HTTPStatus.OK: "OK",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE: "Request Header Fields Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}


def status_text(code: int) -> str:
    """Reason phrase for any integer code, "Unknown" for codes not listed."""
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return "Unknown"
