"""
Echo handler: the response body is the request body, byte for byte.

The body is copied through in chunks, so arbitrarily large bodies pass
without being held in memory. Small bodies still go out with a
Content-Length (the writer buffers them); larger ones are streamed.
"""

import logging

from ..http.request import BodyReadError, BodyTooLargeError, HTTPRequest
from ..http.response import ResponseWriteError, ResponseWriter, http_error
from ..http.status_codes import HTTPStatus


class EchoHandler:
    """
    Serves /echo.

    Any method. The client's Content-Type is mirrored back, or
    application/octet-stream when there is none.

    Copy failures (client went away, truncated or malformed body) are
    logged at warning level. If nothing has reached the client yet, the
    partial echo is replaced by an error: 413 for a body over the size
    limit, 500 otherwise. Once the response is committed no error status
    can be sent, so the failure is only logged.
    """

    pattern = "/echo"

    def __init__(self, logger: logging.Logger, chunk_size: int = 8192):
        self.logger = logger
        self.chunk_size = chunk_size

    def serve(self, request: HTTPRequest, writer: ResponseWriter) -> None:
        writer.set_header("Content-Type", request.content_type or "application/octet-stream")

        try:
            while True:
                chunk = request.body.read(self.chunk_size)
                if not chunk:
                    break
                writer.write(chunk)
        except BodyReadError as e:
            self.logger.warning("Failed to handle request", extra={"error": str(e)})
            if writer.reset():
                if isinstance(e, BodyTooLargeError):
                    http_error(writer, "Request body too large", HTTPStatus.PAYLOAD_TOO_LARGE)
                else:
                    http_error(writer, "Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)
        except ResponseWriteError as e:
            self.logger.warning("Failed to handle request", extra={"error": str(e)})
