"""Fire-and-forget dispatch: one short-lived thread per scrape unit."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)


class ThreadDispatcher:
    """Starts each task on its own daemon thread and returns immediately.

    Progress is never reported back through the dispatcher; tasks write their
    outcome to the store. ``wait_idle`` exists for the CLI and tests.
    """

    def __init__(self, name: str = "unit"):
        self.name = name
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._active: Set[threading.Thread] = set()

    def submit(self, fn: Callable[..., Any], *args: Any) -> threading.Thread:
        t = threading.Thread(target=self._run, args=(fn, args), daemon=True)
        t.name = f"{self.name}-{t.name}"
        with self._lock:
            self._active.add(t)
        t.start()
        return t

    def _run(self, fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception(f"[worker] Unhandled error in {threading.current_thread().name}")
        finally:
            with self._idle:
                self._active.discard(threading.current_thread())
                self._idle.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted task has returned; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._active:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True


class InlineDispatcher:
    """Runs tasks synchronously in the caller's thread."""

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        fn(*args)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        return True
