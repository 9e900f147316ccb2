"""Shared plumbing for the in-process fallback encoders."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from PIL import Image

from ..control import ControlToken
from ..error_handling import EncodeFailure, error_context
from ..io import commit_output, remove_quietly, temp_output_path
from ..models import FrameInfo, FrameSet
from ..progress import ProgressReporter

logger = logging.getLogger(__name__)


def load_rgba(frame: FrameInfo, size: tuple[int, int]) -> Image.Image:
    """Decode *frame* to RGBA at *size*, resizing frames that do not match.

    Raises:
        EncodeFailure: If the frame cannot be decoded
    """
    with error_context("decode frame", EncodeFailure, context={"frame": frame.path}, logger=logger):
        with Image.open(frame.path) as img:
            img.load()
            rgba = img.convert("RGBA")

    if rgba.size != size:
        logger.warning(
            f"Frame {frame.path} is {rgba.size[0]}x{rgba.size[1]}, resizing to {size[0]}x{size[1]}"
        )
        rgba = rgba.resize(size, Image.Resampling.LANCZOS)
    return rgba


def stream_frames(
    frame_set: FrameSet,
    token: ControlToken,
    reporter: ProgressReporter,
    phase: str,
) -> Iterator[Image.Image]:
    """Yield RGBA frames one at a time, honouring pause and cancel.

    Only one decoded frame is alive at a time. Progress for a frame is
    emitted once the consumer asks for the next one, i.e. after the frame
    has been written.
    """
    total = frame_set.total
    size = frame_set.base_size
    reporter.emit(phase, 0, total, 0.0)
    for index, frame in enumerate(frame_set, start=1):
        token.checkpoint()
        yield load_rgba(frame, size)
        reporter.emit(phase, index, total)


@contextmanager
def staged_output(output_path: Path, operation: str) -> Iterator[Path]:
    """Yield a temp path that is renamed onto *output_path* on success.

    On any exception the temp file is deleted. Non-FrameLab exceptions
    (codec errors, I/O errors) are re-raised as :class:`EncodeFailure`.
    """
    temp_path = temp_output_path(output_path)
    remove_quietly(temp_path)
    try:
        with error_context(operation, EncodeFailure, context={"output": str(output_path)}, logger=logger):
            yield temp_path
            if not temp_path.exists():
                raise EncodeFailure(f"{operation} produced no output")
            commit_output(temp_path, output_path)
    finally:
        remove_quietly(temp_path)
