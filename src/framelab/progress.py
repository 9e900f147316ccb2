"""Progress reporting for conversions.

Events are fire-and-forget: a failing callback is logged and otherwise
ignored so that progress delivery can never break an encode.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .models import ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Emit ProgressEvents for one output format.

    Within a single phase the reported percent never decreases, even when
    events arrive from more than one thread. Switching to a new phase resets
    the floor.
    """

    def __init__(
        self,
        callback: ProgressCallback | None,
        format: str | None = None,
        file: str | None = None,
    ):
        self._callback = callback
        self.format = format
        self.file = file
        self._lock = threading.Lock()
        self._phase: str | None = None
        self._floor = 0.0

    def emit(
        self,
        phase: str,
        current: int,
        total: int,
        percent: float | None = None,
        file: str | None = None,
    ) -> ProgressEvent:
        """Build, clamp and deliver one event; returns the event sent."""
        if percent is None:
            percent = (current / total * 100.0) if total > 0 else 0.0
        percent = min(100.0, max(0.0, float(percent)))

        with self._lock:
            if phase != self._phase:
                self._phase = phase
                self._floor = 0.0
            percent = max(percent, self._floor)
            self._floor = percent

            event = ProgressEvent(
                phase=phase,
                current=current,
                total=total,
                percent=percent,
                format=self.format,
                file=file if file is not None else self.file,
            )

        if self._callback is not None:
            try:
                self._callback(event)
            except Exception as e:
                logger.debug(f"Progress callback raised, event dropped: {e}")

        return event

    def for_format(self, format: str | None, file: str | None = None) -> ProgressReporter:
        """Return a reporter sharing this callback but tagged with another format."""
        return ProgressReporter(self._callback, format=format, file=file)
