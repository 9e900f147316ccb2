"""In-process WebP encoding with graceful degradation.

Strategies, tried in order:

1. Encode each frame as a static WebP with Pillow, then assemble them with
   ``webpmux`` (needs the webpmux binary).
2. Pillow's own animated WebP writer (needs a libwebp build with mux support).
3. A single static WebP of the first frame. The animation is lost and a
   warning is logged.
"""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, features

from ..config import DEFAULT_CONVERSION_CONFIG, ConversionConfig
from ..control import ControlToken
from ..error_handling import EncodeFailure, ToolUnavailable, error_context, log_warning_with_context
from ..external_engines.webpmux import frame_delay_ms, mux_frames
from ..io import make_private_temp_dir, remove_quietly
from ..models import FrameSet
from ..progress import ProgressReporter
from ..system_tools import ToolInfo, discover_tool
from .common import load_rgba, staged_output, stream_frames

logger = logging.getLogger(__name__)

PHASE_FRAMES = "Converting frames to WebP"
PHASE_MUX = "Combining frames with webpmux"
PHASE_ENCODE = "Encoding WebP"


def pillow_webp_supported() -> bool:
    return bool(features.check_module("webp"))


def pillow_animated_webp_supported() -> bool:
    if not pillow_webp_supported():
        return False
    Image.init()
    return "WEBP" in Image.SAVE_ALL


def _encode_with_webpmux(
    frame_set: FrameSet,
    output_path: Path,
    *,
    fps: float,
    loop_count: int,
    quality: int,
    token: ControlToken,
    reporter: ProgressReporter,
    tool: ToolInfo,
    config: ConversionConfig,
) -> Path:
    frames_dir = make_private_temp_dir("webp_frames")
    try:
        frame_files: list[Path] = []
        frames = stream_frames(frame_set, token, reporter, PHASE_FRAMES)
        for index, image in enumerate(frames, start=1):
            frame_path = frames_dir / f"frame_{index:06d}.webp"
            with error_context("encode WebP frame", EncodeFailure, context={"frame": index}, logger=logger):
                image.save(frame_path, format="WEBP", quality=quality, method=4)
            frame_files.append(frame_path)

        reporter.emit(PHASE_MUX, 0, 1, 0.0)
        with staged_output(output_path, "mux WebP") as temp_path:
            mux_frames(
                frame_files,
                temp_path,
                fps=fps,
                loop_count=loop_count,
                token=token,
                tool=tool,
                config=config,
            )
        reporter.emit(PHASE_MUX, 1, 1, 100.0)
    finally:
        remove_quietly(frames_dir)
    return output_path


def _encode_with_pillow(
    frame_set: FrameSet,
    output_path: Path,
    *,
    fps: float,
    loop_count: int,
    quality: int,
    token: ControlToken,
    reporter: ProgressReporter,
) -> Path:
    with staged_output(output_path, "encode animated WebP") as temp_path:
        frames = stream_frames(frame_set, token, reporter, PHASE_ENCODE)
        first = next(frames, None)
        if first is None:
            raise EncodeFailure("No frames to encode")
        first.save(
            temp_path,
            format="WEBP",
            save_all=True,
            append_images=frames,
            duration=frame_delay_ms(fps),
            loop=loop_count,
            quality=quality,
            method=4,
        )
    return output_path


def _encode_static(
    frame_set: FrameSet,
    output_path: Path,
    *,
    quality: int,
    token: ControlToken,
    reporter: ProgressReporter,
) -> Path:
    if not pillow_webp_supported():
        raise EncodeFailure("This Pillow build has no WebP support")

    log_warning_with_context(
        "Writing a static WebP of the first frame; animation is not preserved",
        context={"frames": frame_set.total, "output": str(output_path)},
        logger=logger,
    )
    token.checkpoint()
    reporter.emit(PHASE_ENCODE, 0, 1, 0.0)
    with staged_output(output_path, "encode static WebP") as temp_path:
        image = load_rgba(frame_set.frames[0], frame_set.base_size)
        image.save(temp_path, format="WEBP", quality=quality)
    reporter.emit(PHASE_ENCODE, 1, 1, 100.0)
    return output_path


def encode_webp(
    frame_set: FrameSet,
    output_path: Path,
    *,
    fps: float,
    loop_count: int,
    token: ControlToken,
    reporter: ProgressReporter,
    lossy_quality: int | None = None,
    tool: ToolInfo | None = None,
    config: ConversionConfig = DEFAULT_CONVERSION_CONFIG,
) -> Path:
    """Encode *frame_set* as WebP using the best strategy available.

    Args:
        lossy_quality: Per-frame WebP quality; defaults to WEBP_FRAME_QUALITY
        tool: Pre-discovered webpmux; discovered on demand when None

    Raises:
        EncodeFailure: If every strategy failed
        Cancelled: If the token is cancelled mid-encode
    """
    quality = lossy_quality if lossy_quality is not None else config.WEBP_FRAME_QUALITY
    total = frame_set.total

    if tool is None:
        tool = discover_tool("webpmux")

    done = False
    if tool.available and pillow_webp_supported():
        try:
            _encode_with_webpmux(
                frame_set,
                output_path,
                fps=fps,
                loop_count=loop_count,
                quality=quality,
                token=token,
                reporter=reporter,
                tool=tool,
                config=config,
            )
            done = True
        except (ToolUnavailable, EncodeFailure) as e:
            log_warning_with_context(
                f"webpmux assembly failed, trying Pillow: {e}", logger=logger
            )

    if not done and pillow_animated_webp_supported():
        try:
            _encode_with_pillow(
                frame_set,
                output_path,
                fps=fps,
                loop_count=loop_count,
                quality=quality,
                token=token,
                reporter=reporter,
            )
            done = True
        except EncodeFailure as e:
            log_warning_with_context(
                f"Pillow animated WebP failed, writing a static frame: {e}", logger=logger
            )

    if not done:
        _encode_static(frame_set, output_path, quality=quality, token=token, reporter=reporter)

    reporter.emit("Completed", total, total, 100.0)
    logger.info(f"🎞️  Encoded {total} frames to {output_path}")
    return output_path
