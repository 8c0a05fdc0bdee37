"""Hello handler: greets whatever text was posted."""

import logging

from ..http.request import BodyReadError, HTTPRequest
from ..http.response import ResponseWriteError, ResponseWriter, http_error
from ..http.status_codes import HTTPStatus


class HelloHandler:
    """
    Serves /hello.

        POST /hello  "world"   →   200  "Hello, world\\n"

    The body is decoded as UTF-8; invalid sequences become U+FFFD rather
    than failing the request.
    """

    pattern = "/hello"

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def serve(self, request: HTTPRequest, writer: ResponseWriter) -> None:
        try:
            data = request.body.read()
        except BodyReadError as e:
            self.logger.error("Failed to read request", extra={"error": str(e)})
            http_error(writer, "Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)
            return

        writer.set_header("Content-Type", "text/plain; charset=utf-8")
        try:
            writer.write(f"Hello, {data.decode('utf-8', errors='replace')}\n")
        except ResponseWriteError as e:
            self.logger.error("Failed to write response", extra={"error": str(e)})
            # Only possible while nothing has reached the client yet
            if not writer.committed:
                http_error(writer, "Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)
