"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

Networking plumbing underneath the HTTP layer:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ SocketServer   listening socket, accept loop (own thread)          │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ hands off each accepted client
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │ ThreadPool     bounded queue + workers, one task per connection    │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ worker runs the connection loop
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │ Connection     buffered reads, timeouts, state, graceful close     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState, HeadTooLargeError
from .socket_server import SocketServer
from .thread_pool import ThreadPool, Worker, WorkerState

__all__ = [
    "Connection",
    "ConnectionState",
    "HeadTooLargeError",
    "SocketServer",
    "ThreadPool",
    "Worker",
    "WorkerState",
]
