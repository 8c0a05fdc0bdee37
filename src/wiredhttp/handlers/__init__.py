"""
=============================================================================
HANDLERS MODULE
=============================================================================

The routes this server ships with. Each one is a small class exposing the
``Route`` interface:

    pattern                     the exact path it serves
    serve(request, writer)      read request.body, write to writer

    ┌─────────────────────────────────────────────────────────────────────┐
    │ EchoHandler   /echo    response body = request body                │
    │ HelloHandler  /hello   response body = "Hello, " + body + "\\n"      │
    └─────────────────────────────────────────────────────────────────────┘

Handlers receive the application logger in their constructor and keep no
other state, so one instance serves every worker thread at once.

=============================================================================
"""

from .echo import EchoHandler
from .hello import HelloHandler

__all__ = [
    "EchoHandler",
    "HelloHandler",
]
