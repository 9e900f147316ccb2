"""In-process GIF encoder built on Pillow."""

from __future__ import annotations

import logging
from pathlib import Path

from ..control import ControlToken
from ..error_handling import EncodeFailure
from ..models import FrameSet
from ..progress import ProgressReporter
from .common import staged_output, stream_frames

logger = logging.getLogger(__name__)

PHASE = "Encoding GIF"


def gif_delay_centiseconds(fps: float) -> int:
    """GIF frame delay for *fps*: ``100 / fps`` rounded, in 1/100 s units."""
    return min(65535, max(1, round(100.0 / fps)))


def encode_gif(
    frame_set: FrameSet,
    output_path: Path,
    *,
    fps: float,
    loop_count: int,
    token: ControlToken,
    reporter: ProgressReporter,
) -> Path:
    """Encode *frame_set* as an animated GIF.

    Args:
        frame_set: Frames to encode, in display order
        output_path: Final output path; written via a temp sibling
        fps: Frames per second
        loop_count: 0 for infinite looping, otherwise the repeat count
        token: Control token checked before every frame
        reporter: Progress sink

    Returns:
        *output_path* once the file is complete

    Raises:
        EncodeFailure: If a frame cannot be decoded or written
        Cancelled: If the token is cancelled mid-encode
    """
    duration_ms = gif_delay_centiseconds(fps) * 10
    total = frame_set.total

    with staged_output(output_path, "encode GIF") as temp_path:
        frames = stream_frames(frame_set, token, reporter, PHASE)
        first = next(frames, None)
        if first is None:
            raise EncodeFailure("No frames to encode")

        # Pillow pulls the remaining frames lazily from the generator
        with open(temp_path, "wb") as fp:
            first.save(
                fp,
                format="GIF",
                save_all=True,
                append_images=frames,
                duration=duration_ms,
                loop=loop_count,
                disposal=2,
                optimize=False,
            )

    reporter.emit("Completed", total, total, 100.0)
    logger.info(f"🎞️  Encoded {total} frames to {output_path} ({duration_ms} ms/frame)")
    return output_path
