"""brer_invoker.supervisor — Interval trigger with a busy guard and graceful drain.

A trigger that fires while a pass is still running is dropped, not queued, so
passes never overlap. ``stop()`` halts the trigger at once; ``wait_idle()``
lets the in-flight pass finish within a bounded grace period.
``last_result`` and ``last_error`` hold the outcome of the latest pass.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable, Optional

from brer_invoker.errors import InvokerError

__all__ = ["PassState", "Supervisor"]

logger = logging.getLogger(__name__)


class PassState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class Supervisor:
    def __init__(self, run_pass: Callable[[], Any], interval: float):
        self._run_pass = run_pass
        self._interval = interval
        self._lock = threading.Lock()
        self._state = PassState.IDLE
        self._idle = threading.Event()
        self._idle.set()
        self._stopped = threading.Event()
        self.last_result: Any = None
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> PassState:
        with self._lock:
            return self._state

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def _execute(self) -> None:
        self.last_result = None
        self.last_error = None
        try:
            self.last_result = self._run_pass()
            logger.info("pods invoked")
        except InvokerError as exc:
            self.last_error = exc
            logger.error("invoke error: %s", exc)
        except Exception as exc:
            self.last_error = exc
            logger.exception("invoke error")
        finally:
            with self._lock:
                self._state = PassState.IDLE
                self._idle.set()

    def trigger(self, block: bool = False) -> bool:
        """Start a pass unless one is running or the supervisor is stopped.

        Returns ``True`` when a pass was started.
        """
        with self._lock:
            if self._stopped.is_set():
                return False
            if self._state is PassState.RUNNING:
                logger.warning("invoker is busy")
                return False
            self._state = PassState.RUNNING
            self._idle.clear()

        logger.info("invoke pods")
        if block:
            self._execute()
        else:
            threading.Thread(target=self._execute, name="brer-invoker-pass", daemon=True).start()
        return True

    def run_forever(self) -> None:
        """Fire immediately, then every ``interval`` seconds until stopped."""
        while not self._stopped.is_set():
            self.trigger()
            self._stopped.wait(self._interval)

    def stop(self) -> None:
        self._stopped.set()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for the in-flight pass; ``False`` if it outlived ``timeout``."""
        return self._idle.wait(timeout)
