"""Pause / resume / cancel signalling for long-running conversions.

A :class:`ControlToken` is handed to every encoding loop and to the threads
that supervise external processes. Loops call :meth:`ControlToken.checkpoint`
before each unit of work (one frame, one supervisor tick):

    >>> token = ControlToken()
    >>> for frame in frames:
    ...     token.checkpoint()      # blocks while paused, raises if cancelled
    ...     encode(frame)

Writes are unconditional: the last call wins and callers never need to know
the previous state. Cancellation is sticky for the lifetime of a request:
once cancelled, ``pause()`` and ``resume()`` are ignored until ``reset()``.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum

from .config import DEFAULT_CONVERSION_CONFIG
from .error_handling import Cancelled

logger = logging.getLogger(__name__)


class ControlState(Enum):
    """Tri-state control signal."""

    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class ControlToken:
    """Thread-safe pause/resume/cancel signal observed cooperatively."""

    def __init__(self, poll_interval: float | None = None):
        self._lock = threading.Lock()
        self._state = ControlState.RUNNING
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else DEFAULT_CONVERSION_CONFIG.PAUSE_POLL_INTERVAL
        )

    @property
    def state(self) -> ControlState:
        with self._lock:
            return self._state

    @property
    def is_paused(self) -> bool:
        return self.state is ControlState.PAUSED

    @property
    def is_cancelled(self) -> bool:
        return self.state is ControlState.CANCELLED

    def _set(self, new_state: ControlState) -> None:
        with self._lock:
            previous = self._state
            if previous is ControlState.CANCELLED and new_state is not ControlState.CANCELLED:
                logger.debug(f"Ignoring {new_state.value} request after cancellation")
                return
            self._state = new_state
        logger.info(f"Conversion control: {previous.value} -> {new_state.value}")

    def pause(self) -> None:
        self._set(ControlState.PAUSED)

    def resume(self) -> None:
        self._set(ControlState.RUNNING)

    def cancel(self) -> None:
        self._set(ControlState.CANCELLED)

    def reset(self) -> None:
        """Return to RUNNING for a new request, clearing a previous cancel."""
        with self._lock:
            self._state = ControlState.RUNNING

    def wait_if_paused(self) -> None:
        """Block while paused, polling at ``poll_interval``."""
        while self.state is ControlState.PAUSED:
            time.sleep(self.poll_interval)

    def checkpoint(self) -> None:
        """Wait out a pause, then raise :class:`Cancelled` if cancelled."""
        self.wait_if_paused()
        if self.is_cancelled:
            raise Cancelled()
