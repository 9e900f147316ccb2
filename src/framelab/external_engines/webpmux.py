"""Assemble static WebP frames into an animated WebP with ``webpmux``."""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import DEFAULT_CONVERSION_CONFIG, ConversionConfig
from ..control import ControlToken
from ..error_handling import EncodeFailure, clean_error_message
from ..system_tools import ToolInfo, discover_tool
from .common import run_supervised

__all__ = ["build_mux_command", "frame_delay_ms", "mux_frames"]

logger = logging.getLogger(__name__)


def frame_delay_ms(fps: float) -> int:
    """Per-frame display time in milliseconds (at least 1)."""
    return max(1, round(1000.0 / fps))


def build_mux_command(
    webpmux: str,
    frame_files: list[Path],
    output_path: Path,
    *,
    delay_ms: int,
    loop_count: int,
) -> list[str]:
    """Build ``webpmux -frame f +delay+0+0+1 ... -loop N -o out``.

    Each frame is placed at offset 0,0 and disposed to background so that
    full-canvas frames never blend with their predecessor.
    """
    cmd = [webpmux]
    for frame in frame_files:
        cmd += ["-frame", str(frame), f"+{delay_ms}+0+0+1"]
    cmd += ["-loop", str(loop_count), "-o", str(output_path)]
    return cmd


def mux_frames(
    frame_files: list[Path],
    output_path: Path,
    *,
    fps: float,
    loop_count: int,
    token: ControlToken,
    tool: ToolInfo | None = None,
    config: ConversionConfig = DEFAULT_CONVERSION_CONFIG,
) -> Path:
    """Mux *frame_files* into *output_path*.

    Raises:
        ToolUnavailable: If webpmux is missing or cannot be started
        EncodeFailure: If webpmux exits non-zero or writes nothing
        Cancelled: If the token is cancelled while webpmux runs
    """
    if not frame_files:
        raise EncodeFailure("No WebP frames to mux")

    if tool is None:
        tool = discover_tool("webpmux")
    tool.require()

    cmd = build_mux_command(
        tool.name,
        frame_files,
        output_path,
        delay_ms=frame_delay_ms(fps),
        loop_count=loop_count,
    )
    result = run_supervised(
        cmd,
        engine="webpmux",
        token=token,
        timeout=config.EXTERNAL_TIMEOUT,
        poll_interval=config.SUPERVISOR_POLL_INTERVAL,
    )
    if result.returncode != 0:
        raise EncodeFailure(
            f"webpmux exited with status {result.returncode}: "
            f"{clean_error_message(result.stderr_tail) or 'no error output'}"
        )
    if not output_path.exists():
        raise EncodeFailure("webpmux reported success but produced no output")

    logger.debug(f"webpmux assembled {len(frame_files)} frames in {result.elapsed_ms} ms")
    return output_path
