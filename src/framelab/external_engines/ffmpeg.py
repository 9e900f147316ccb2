"""FFmpeg sequence encoder.

FFmpeg reads frames through a numbered pattern, so the source frames are
first exposed in a private temp directory as ``frame_000001.<ext>`` and up.
Each frame is materialized with the cheapest strategy the filesystem allows
(symlink, then hardlink, then copy) so large inputs are not duplicated.

Progress is parsed from ``-progress pipe:1`` output (``frame=N`` lines) and
capped below 100% until the process exit has been confirmed.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ..config import DEFAULT_CONVERSION_CONFIG, ConversionConfig
from ..control import ControlToken
from ..error_handling import EncodeFailure, MixedExtensions, clean_error_message
from ..io import commit_output, make_private_temp_dir, remove_quietly, temp_output_path
from ..models import FrameSet, OutputFormat
from ..progress import ProgressReporter
from ..system_tools import ToolInfo, discover_tool
from .common import run_supervised

__all__ = [
    "MATERIALIZE_STRATEGIES",
    "SequenceInput",
    "build_command",
    "encode_sequence",
    "materialize_frame",
    "parse_progress_frame",
    "prepare_sequence_input",
]

logger = logging.getLogger(__name__)

SEQUENCE_DIGITS = 6

# Ordered from cheapest to most expensive
MATERIALIZE_STRATEGIES: tuple[tuple[str, Callable[[str, str], object]], ...] = (
    ("symlink", os.symlink),
    ("hardlink", os.link),
    ("copy", shutil.copyfile),
)


def materialize_frame(
    source: Path,
    destination: Path,
    strategies: tuple[tuple[str, Callable[[str, str], object]], ...] = MATERIALIZE_STRATEGIES,
) -> str:
    """Expose *source* at *destination* using the first strategy that works.

    Returns:
        Name of the strategy that succeeded

    Raises:
        OSError: If every strategy failed (the last error is re-raised)
    """
    last_error: OSError | None = None
    for name, strategy in strategies:
        try:
            strategy(str(source), str(destination))
            return name
        except (OSError, NotImplementedError) as e:
            last_error = e if isinstance(e, OSError) else OSError(str(e))
            remove_quietly(destination)
    if last_error is None:
        raise OSError("No materialization strategy configured")
    raise last_error


@dataclass
class SequenceInput:
    """A numbered frame sequence ready for FFmpeg's image2 demuxer."""

    directory: Path
    pattern: str
    count: int
    strategies_used: dict[str, int]


def prepare_sequence_input(frame_set: FrameSet, purpose: str, base_dir: Path | None = None) -> SequenceInput:
    """Lay *frame_set* out as ``frame_%06d.<ext>`` in a private temp directory.

    Raises:
        MixedExtensions: If the frames do not share one extension
        OSError: If a frame cannot be materialized by any strategy
    """
    extension = frame_set.uniform_extension
    if extension is None:
        raise MixedExtensions(
            "Frames have mixed extensions and cannot form one sequence pattern",
            context={"extensions": sorted(frame_set.extensions)},
        )

    directory = make_private_temp_dir(f"seq_{purpose}", base_dir)
    strategies_used: dict[str, int] = {}
    try:
        for index, frame in enumerate(frame_set, start=1):
            destination = directory / f"frame_{index:0{SEQUENCE_DIGITS}d}.{extension}"
            used = materialize_frame(Path(frame.path), destination)
            strategies_used[used] = strategies_used.get(used, 0) + 1
    except BaseException:
        remove_quietly(directory)
        raise

    logger.debug(f"Prepared {frame_set.total} frames in {directory} ({strategies_used})")
    return SequenceInput(
        directory=directory,
        pattern=str(directory / f"frame_%0{SEQUENCE_DIGITS}d.{extension}"),
        count=frame_set.total,
        strategies_used=strategies_used,
    )


def _format_fps(fps: float) -> str:
    return f"{fps:g}"


def build_command(
    ffmpeg: str,
    fmt: OutputFormat,
    pattern: str,
    output_path: Path,
    *,
    fps: float,
    loop_count: int,
    webp_quality: int = 80,
) -> list[str]:
    """Build the FFmpeg command line for one output format."""
    rate = _format_fps(fps)
    cmd = [
        ffmpeg,
        "-y",
        "-hide_banner",
        "-nostats",
        "-loglevel",
        "error",
        "-progress",
        "pipe:1",
        "-framerate",
        rate,
        "-start_number",
        "1",
        "-i",
        pattern,
    ]

    if fmt is OutputFormat.GIF:
        cmd += [
            "-vf",
            f"fps={rate},split[s0][s1];"
            "[s0]palettegen=max_colors=256:stats_mode=diff[p];"
            "[s1][p]paletteuse=dither=bayer:bayer_scale=5",
            "-loop",
            str(loop_count),
            "-threads",
            "0",
        ]
    elif fmt is OutputFormat.APNG:
        cmd += [
            "-plays",
            str(loop_count),
            "-vf",
            "format=rgba,setsar=1",
            "-f",
            "apng",
        ]
    elif fmt is OutputFormat.WEBP:
        cmd += [
            "-c:v",
            "libwebp_anim",
            "-lossless",
            "0",
            "-quality",
            str(webp_quality),
            "-pix_fmt",
            "yuva420p",
            "-loop",
            str(loop_count),
        ]
    else:
        raise ValueError(f"Unsupported format: {fmt}")

    cmd.append(str(output_path))
    return cmd


def parse_progress_frame(line: str) -> int | None:
    """Return the frame number from a ``frame=N`` progress line, else None."""
    key, sep, value = line.partition("=")
    if not sep or key.strip() != "frame":
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def encode_sequence(
    frame_set: FrameSet,
    output_path: Path,
    fmt: OutputFormat,
    *,
    fps: float,
    loop_count: int,
    token: ControlToken,
    reporter: ProgressReporter,
    tool: ToolInfo | None = None,
    config: ConversionConfig = DEFAULT_CONVERSION_CONFIG,
) -> Path:
    """Encode *frame_set* to *output_path* with FFmpeg.

    The output is written to a temp sibling and renamed into place only after
    FFmpeg exits successfully. The temp sequence directory and any partial
    output are removed on every exit path.

    Raises:
        MixedExtensions: If the frames cannot form one sequence pattern
        ToolUnavailable: If FFmpeg is missing or cannot be started
        EncodeFailure: If FFmpeg exits non-zero or produces no output
        Cancelled: If the token is cancelled while FFmpeg runs
    """
    if frame_set.uniform_extension is None:
        raise MixedExtensions(
            "Frames have mixed extensions and cannot form one sequence pattern",
            context={"extensions": sorted(frame_set.extensions)},
        )

    if tool is None:
        tool = discover_tool("ffmpeg")
    tool.require()

    token.checkpoint()
    total = frame_set.total
    temp_path = temp_output_path(output_path)
    phase = "Converting with FFmpeg"

    def on_progress(line: str) -> None:
        frame = parse_progress_frame(line)
        if frame is None:
            return
        percent = min(frame / total * 100.0, config.PROGRESS_CAP_PERCENT)
        reporter.emit(phase, min(frame, total), total, percent)

    sequence: SequenceInput | None = None
    try:
        try:
            sequence = prepare_sequence_input(frame_set, fmt.value)
        except OSError as e:
            raise EncodeFailure(f"Could not prepare frame sequence: {e}", cause=e) from e

        cmd = build_command(
            tool.name,
            fmt,
            sequence.pattern,
            temp_path,
            fps=fps,
            loop_count=loop_count,
            webp_quality=config.WEBP_FRAME_QUALITY,
        )
        reporter.emit(phase, 0, total, 0.0)
        result = run_supervised(
            cmd,
            engine="ffmpeg",
            token=token,
            on_stdout_line=on_progress,
            timeout=config.EXTERNAL_TIMEOUT,
            poll_interval=config.SUPERVISOR_POLL_INTERVAL,
        )

        if result.returncode != 0:
            raise EncodeFailure(
                f"FFmpeg exited with status {result.returncode}: "
                f"{clean_error_message(result.stderr_tail) or 'no error output'}",
                context={"format": fmt.value},
            )
        if not temp_path.exists() or temp_path.stat().st_size == 0:
            raise EncodeFailure("FFmpeg reported success but produced no output")

        # A pause that could not suspend the process takes effect here
        token.checkpoint()
        commit_output(temp_path, output_path)
    finally:
        remove_quietly(temp_path)
        if sequence is not None:
            remove_quietly(sequence.directory)

    reporter.emit("Completed", total, total, 100.0)
    logger.info(f"🎬 FFmpeg wrote {output_path} in {result.elapsed_ms} ms")
    return output_path
