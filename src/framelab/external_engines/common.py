from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psutil

from ..config import DEFAULT_CONVERSION_CONFIG
from ..control import ControlState, ControlToken
from ..error_handling import Cancelled, EncodeFailure, ToolUnavailable

__all__ = [
    "ProcessLifecycle",
    "SupervisedResult",
    "run_command",
    "run_supervised",
]

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


def run_command(cmd: list[str], *, engine: str, output_path: Path, timeout: int | None = 60) -> dict[str, Any]:
    """Execute *cmd* and return FrameLab-style metadata.

    The helper blocks until *cmd* completes, raises *EncodeFailure* on non-zero
    exit status and captures the elapsed wall-clock time in milliseconds.

    Parameters
    ----------
    cmd
        Full command as a list of strings (preferred over shell=True).
    engine
        Human-readable engine key, e.g. "gifsicle", "oxipng".
    output_path
        Path expected to be produced by the command – used to report the
        final file size in bytes.
    timeout
        Optional hard timeout (seconds) – *None* disables the limit.

    Returns
    -------
    dict
        Metadata dict with the keys ``render_ms``, ``engine``, ``command``, ``bytes``.
    """
    start = time.perf_counter()
    try:
        completed = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ToolUnavailable(f"{engine} could not be started", cause=e) from e
    except subprocess.TimeoutExpired as e:
        raise EncodeFailure(f"{engine} timed out after {timeout}s", cause=e) from e
    duration_ms = int((time.perf_counter() - start) * 1000)

    if completed.returncode != 0:
        raise EncodeFailure(
            f"{engine} command failed (exit {completed.returncode}).\n\n"
            f"STDERR:\n{completed.stderr.strip()}"
        )

    try:
        size = os.path.getsize(output_path)
    except OSError:
        size = 0

    return {
        "render_ms": duration_ms,
        "engine": engine,
        "command": " ".join(cmd),
        "bytes": size,
    }


class ProcessLifecycle:
    """Suspend / continue / terminate capability for one child process.

    Suspension uses ``psutil.Process.suspend()`` (SIGSTOP on POSIX, thread
    suspension on Windows). When suspension is refused by the platform the
    capability marks itself unsupported and pausing degrades to a cooperative
    wait once the process has finished.
    """

    def __init__(self, popen: subprocess.Popen):
        self._popen = popen
        self.supports_suspend = True
        try:
            self._process: psutil.Process | None = psutil.Process(popen.pid)
        except psutil.Error:
            self._process = None
            self.supports_suspend = False

    @property
    def pid(self) -> int:
        return self._popen.pid

    def suspend(self) -> None:
        if not self.supports_suspend or self._process is None:
            return
        try:
            self._process.suspend()
            logger.info(f"⏸️  Suspended external process {self.pid}")
        except psutil.NoSuchProcess:
            pass
        except (psutil.AccessDenied, NotImplementedError, OSError) as e:
            self.supports_suspend = False
            logger.warning(
                f"Cannot suspend process {self.pid} ({e}); pause will take effect after it finishes"
            )

    def resume(self) -> None:
        if not self.supports_suspend or self._process is None:
            return
        try:
            self._process.resume()
            logger.info(f"▶️  Resumed external process {self.pid}")
        except psutil.NoSuchProcess:
            pass
        except (psutil.AccessDenied, NotImplementedError, OSError) as e:
            logger.warning(f"Cannot resume process {self.pid}: {e}")

    def terminate(self) -> None:
        """Forcefully kill the process; a suspended process is killed too."""
        if self._popen.poll() is not None:
            return
        try:
            self._popen.kill()
            logger.info(f"⏹️  Killed external process {self.pid}")
        except OSError as e:
            logger.debug(f"Kill of process {self.pid} failed: {e}")


@dataclass
class SupervisedResult:
    """Outcome of a supervised external process."""

    returncode: int
    stderr_tail: str
    elapsed_ms: int


def _supervise(
    lifecycle: ProcessLifecycle,
    token: ControlToken,
    stop_event: threading.Event,
    interval: float,
) -> None:
    """Mirror control-state changes onto the process until told to stop."""
    last_state = ControlState.RUNNING
    while not stop_event.is_set():
        state = token.state
        if state is not last_state:
            if state is ControlState.PAUSED:
                lifecycle.suspend()
            elif state is ControlState.RUNNING:
                lifecycle.resume()
            elif state is ControlState.CANCELLED:
                lifecycle.terminate()
                return
            last_state = state
        stop_event.wait(interval)


def _pump_lines(stream, handler: Callable[[str], None] | None, sink: deque | None) -> None:
    for raw in iter(stream.readline, ""):
        line = raw.rstrip("\r\n")
        if sink is not None:
            sink.append(line)
        if handler is not None and line:
            try:
                handler(line)
            except Exception as e:
                logger.debug(f"Output handler raised on {line!r}: {e}")
    stream.close()


def run_supervised(
    cmd: list[str],
    *,
    engine: str,
    token: ControlToken,
    on_stdout_line: Callable[[str], None] | None = None,
    timeout: float | None = None,
    poll_interval: float | None = None,
) -> SupervisedResult:
    """Run *cmd* under control-token supervision.

    A supervisor thread polls *token* and suspends, continues or kills the
    process on state changes. Standard output is streamed line by line to
    *on_stdout_line*; standard error is drained and its tail kept for error
    reporting. The process is reaped and every helper thread joined before
    this function returns or raises.

    Raises:
        ToolUnavailable: If the executable cannot be started
        Cancelled: If the token was cancelled while the process ran
        EncodeFailure: If *timeout* elapsed
    """
    interval = poll_interval or DEFAULT_CONVERSION_CONFIG.SUPERVISOR_POLL_INTERVAL
    token.checkpoint()

    logger.debug(f"Spawning {engine}: {' '.join(cmd)}")
    start = time.perf_counter()
    try:
        popen = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise ToolUnavailable(f"Failed to spawn {engine}", cause=e) from e

    lifecycle = ProcessLifecycle(popen)
    stop_event = threading.Event()
    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    threads = [
        threading.Thread(
            target=_pump_lines,
            args=(popen.stdout, on_stdout_line, None),
            name=f"{engine}-stdout",
            daemon=True,
        ),
        threading.Thread(
            target=_pump_lines,
            args=(popen.stderr, None, stderr_tail),
            name=f"{engine}-stderr",
            daemon=True,
        ),
    ]
    supervisor = threading.Thread(
        target=_supervise,
        args=(lifecycle, token, stop_event, interval),
        name=f"{engine}-supervisor",
        daemon=True,
    )
    for thread in threads:
        thread.start()
    supervisor.start()

    timed_out = False
    try:
        popen.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        lifecycle.terminate()
        popen.wait()
    finally:
        if popen.poll() is None:
            # Interrupted while waiting: never leave the child behind
            lifecycle.terminate()
            popen.wait()
        stop_event.set()
        supervisor.join()
        for thread in threads:
            thread.join()

    elapsed_ms = int((time.perf_counter() - start) * 1000)

    if token.is_cancelled:
        raise Cancelled(f"{engine} cancelled")
    if timed_out:
        raise EncodeFailure(f"{engine} timed out after {timeout}s")

    return SupervisedResult(
        returncode=popen.returncode,
        stderr_tail="\n".join(stderr_tail),
        elapsed_ms=elapsed_ms,
    )
