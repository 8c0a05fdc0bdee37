"""
=============================================================================
APPLICATION LIFECYCLE
=============================================================================

An ordered list of start/stop hooks for the long-lived parts of the
application (here: the HTTP server).

    append(A) append(B) append(C)

    start():   A.on_start → B.on_start → C.on_start
    stop():    C.on_stop  → B.on_stop  → A.on_stop

If a start hook fails, the hooks that already started are stopped again
(in reverse) before the failure is reported:

    start():   A.on_start ✓ → B.on_start ✗
               A.on_stop                       ← rollback
               raise LifecycleError from <B's exception>

Each phase has one deadline shared by its hooks. Every hook receives the
seconds still left and is expected to honor them; a start phase that
overruns its deadline counts as failed.

Each execution is logged as a structured event:

    OnStart hook executed  (event=OnStart, hook=HTTPServer, runtime_ms=1.2)

=============================================================================
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional


HookFunc = Callable[[float], None]


class LifecycleError(RuntimeError):
    """A hook failed, the deadline passed, or the lifecycle was misused."""


@dataclass
class Hook:
    """
    A named pair of start/stop callbacks.

    Either callback may be omitted. Both are called with the number of
    seconds left before the phase deadline.
    """
    name: str
    on_start: Optional[HookFunc] = None
    on_stop: Optional[HookFunc] = None


class Lifecycle:
    """
    Runs hooks in order on start and in reverse order on stop.

    Usage:
        lifecycle = Lifecycle(logger)
        lifecycle.append(Hook("HTTPServer", on_start=..., on_stop=...))
        lifecycle.start(timeout=15.0)
        ...
        lifecycle.stop(timeout=15.0)
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._hooks: List[Hook] = []
        self._started: List[Hook] = []
        self._lock = threading.Lock()
        self._running = False
        self._used = False

    @property
    def hooks(self) -> List[Hook]:
        return list(self._hooks)

    @property
    def is_running(self) -> bool:
        return self._running

    def append(self, hook: Hook) -> None:
        """
        Register a hook.

        Raises:
            LifecycleError: start() has already been called.
        """
        with self._lock:
            if self._used:
                raise LifecycleError(f"Cannot append hook {hook.name!r} after start")
            self._hooks.append(hook)

    def start(self, timeout: float = 15.0) -> None:
        """
        Run every on_start in registration order.

        Raises:
            LifecycleError: A hook raised or the deadline passed. Hooks that
                            had started are stopped again first.
        """
        with self._lock:
            if self._used:
                raise LifecycleError("Lifecycle can only be started once")
            self._used = True

        deadline = time.monotonic() + timeout

        for hook in self._hooks:
            if hook.on_start is not None:
                try:
                    self._run("OnStart", hook, hook.on_start, deadline)
                except Exception as e:
                    self.logger.error(
                        "OnStart hook failed",
                        extra={"event": "OnStart", "hook": hook.name, "error": str(e)},
                    )
                    self._rollback(timeout)
                    raise LifecycleError(f"start hook {hook.name!r} failed: {e}") from e
            self._started.append(hook)

            if time.monotonic() > deadline:
                self.logger.error(
                    "OnStart deadline exceeded",
                    extra={"event": "OnStart", "hook": hook.name},
                )
                self._rollback(timeout)
                raise LifecycleError(f"start deadline of {timeout}s exceeded after hook {hook.name!r}")

        self._running = True

    def stop(self, timeout: float = 15.0) -> None:
        """
        Run on_stop for every started hook, in reverse order.

        All hooks are attempted even if one fails. A no-op when nothing is
        running.

        Raises:
            LifecycleError: At least one hook failed; chained to the first.
        """
        self._running = False
        errors = self._stop_started(time.monotonic() + timeout)
        if errors:
            raise LifecycleError(
                f"{len(errors)} stop hook(s) failed: {errors[0]}"
            ) from errors[0]

    def _rollback(self, timeout: float) -> None:
        if not self._started:
            return
        self.logger.info(
            f"Rolling back {len(self._started)} started hook(s)",
            extra={"event": "Rollback"},
        )
        # The rollback gets a fresh deadline: the start deadline may be spent
        for error in self._stop_started(time.monotonic() + timeout):
            self.logger.error("Rollback failed", extra={"event": "Rollback", "error": str(error)})

    def _stop_started(self, deadline: float) -> List[Exception]:
        errors: List[Exception] = []
        while self._started:
            hook = self._started.pop()
            if hook.on_stop is None:
                continue
            try:
                self._run("OnStop", hook, hook.on_stop, deadline)
            except Exception as e:
                self.logger.error(
                    "OnStop hook failed",
                    extra={"event": "OnStop", "hook": hook.name, "error": str(e)},
                )
                errors.append(e)
        return errors

    def _run(self, event: str, hook: Hook, func: HookFunc, deadline: float) -> None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise LifecycleError(f"{event} deadline exceeded before hook {hook.name!r}")

        self.logger.debug(f"{event} hook executing", extra={"event": event, "hook": hook.name})
        began = time.monotonic()
        func(remaining)
        runtime_ms = round((time.monotonic() - began) * 1000, 3)

        self.logger.info(
            f"{event} hook executed",
            extra={"event": event, "hook": hook.name, "runtime_ms": runtime_ms},
        )
