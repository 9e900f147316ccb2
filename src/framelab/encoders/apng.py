"""In-process APNG encoder.

:class:`APNGWriter` streams chunks straight to a file object, so only one
frame is held in memory at a time. Layout of the written file::

    signature IHDR acTL
    fcTL(seq 0) IDAT                 first frame, also the default image
    fcTL(seq n) fdAT(seq n+1) ...    every later frame
    IEND

Every frame covers the full canvas with ``dispose_op=NONE`` and
``blend_op=SOURCE``. Scanlines use the adaptive filter heuristic (minimum sum
of absolute differences per row) over the five standard PNG filters.
"""

from __future__ import annotations

import logging
import struct
import zlib
from fractions import Fraction
from pathlib import Path
from typing import BinaryIO

import numpy as np

from ..control import ControlToken
from ..models import FrameSet
from ..progress import ProgressReporter
from ..quantize import FrameReducer
from .common import staged_output, stream_frames

logger = logging.getLogger(__name__)

PHASE = "Encoding APNG"

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
MAX_U16 = 0xFFFF
BYTES_PER_PIXEL = 4

# PNG colour type 6: truecolour with alpha
COLOR_TYPE_RGBA = 6
DISPOSE_OP_NONE = 0
BLEND_OP_SOURCE = 0


def frame_delay(fps: float) -> tuple[int, int]:
    """Return ``(numerator, denominator)`` of ``1 / fps`` seconds as u16 values."""
    delay = 1 / Fraction(fps).limit_denominator(1000)
    delay = delay.limit_denominator(MAX_U16)
    if delay.numerator > MAX_U16:
        return MAX_U16, 1
    return delay.numerator, delay.denominator


def filter_scanlines(rgba: bytes, width: int, height: int) -> bytes:
    """Prefix each RGBA row with its best filter type and filter it."""
    stride = width * BYTES_PER_PIXEL
    raw = np.frombuffer(rgba, dtype=np.uint8).reshape(height, stride).astype(np.int16)

    left = np.zeros_like(raw)
    left[:, BYTES_PER_PIXEL:] = raw[:, :-BYTES_PER_PIXEL]
    up = np.zeros_like(raw)
    up[1:] = raw[:-1]
    upleft = np.zeros_like(raw)
    upleft[1:, BYTES_PER_PIXEL:] = raw[:-1, :-BYTES_PER_PIXEL]

    estimate = left + up - upleft
    pa = np.abs(estimate - left)
    pb = np.abs(estimate - up)
    pc = np.abs(estimate - upleft)
    paeth = np.where((pa <= pb) & (pa <= pc), left, np.where(pb <= pc, up, upleft))

    # Filter types 0-4: None, Sub, Up, Average, Paeth
    candidates = np.stack(
        [raw, raw - left, raw - up, raw - ((left + up) >> 1), raw - paeth]
    ) % 256
    magnitude = np.where(candidates > 127, 256 - candidates, candidates)
    choice = magnitude.sum(axis=2).argmin(axis=0)

    out = np.empty((height, stride + 1), dtype=np.uint8)
    out[:, 0] = choice
    out[:, 1:] = candidates[choice, np.arange(height)]
    return out.tobytes()


class APNGWriter:
    """Streaming writer for an RGBA APNG with a known frame count."""

    def __init__(
        self,
        fp: BinaryIO,
        width: int,
        height: int,
        num_frames: int,
        num_plays: int = 0,
        compression_level: int = 6,
    ):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid canvas size {width}x{height}")
        if num_frames <= 0:
            raise ValueError("An APNG needs at least one frame")

        self._fp = fp
        self.width = width
        self.height = height
        self.num_frames = num_frames
        self.compression_level = compression_level
        self.frames_written = 0
        self._sequence = 0
        self._finished = False

        fp.write(PNG_SIGNATURE)
        self._write_chunk(
            b"IHDR", struct.pack(">IIBBBBB", width, height, 8, COLOR_TYPE_RGBA, 0, 0, 0)
        )
        self._write_chunk(b"acTL", struct.pack(">II", num_frames, num_plays))

    def _write_chunk(self, chunk_type: bytes, payload: bytes) -> None:
        crc = zlib.crc32(payload, zlib.crc32(chunk_type)) & 0xFFFFFFFF
        self._fp.write(struct.pack(">I", len(payload)))
        self._fp.write(chunk_type)
        self._fp.write(payload)
        self._fp.write(struct.pack(">I", crc))

    def _next_sequence(self) -> int:
        sequence = self._sequence
        self._sequence += 1
        return sequence

    def write_frame(self, rgba: bytes, delay: tuple[int, int]) -> None:
        """Append one full-canvas RGBA frame shown for ``delay[0]/delay[1]`` s."""
        if self._finished or self.frames_written >= self.num_frames:
            raise ValueError(f"All {self.num_frames} declared frames were already written")
        expected = self.width * self.height * BYTES_PER_PIXEL
        if len(rgba) != expected:
            raise ValueError(f"Frame has {len(rgba)} bytes, expected {expected}")

        delay_num, delay_den = delay
        self._write_chunk(
            b"fcTL",
            struct.pack(
                ">IIIIIHHBB",
                self._next_sequence(),
                self.width,
                self.height,
                0,
                0,
                delay_num,
                delay_den,
                DISPOSE_OP_NONE,
                BLEND_OP_SOURCE,
            ),
        )

        data = zlib.compress(filter_scanlines(rgba, self.width, self.height), self.compression_level)
        if self.frames_written == 0:
            self._write_chunk(b"IDAT", data)
        else:
            self._write_chunk(b"fdAT", struct.pack(">I", self._next_sequence()) + data)
        self.frames_written += 1

    def finish(self) -> None:
        """Write IEND; the declared frame count must have been reached."""
        if self.frames_written != self.num_frames:
            raise ValueError(
                f"Declared {self.num_frames} frames but wrote {self.frames_written}"
            )
        self._write_chunk(b"IEND", b"")
        self._finished = True


def encode_apng(
    frame_set: FrameSet,
    output_path: Path,
    *,
    fps: float,
    loop_count: int,
    token: ControlToken,
    reporter: ProgressReporter,
    lossy_quality: int | None = None,
) -> Path:
    """Encode *frame_set* as an APNG, optionally with lossy colour reduction.

    With *lossy_quality* set, frames are remapped through one palette built
    from the first frame, falling back to uniform bit-depth reduction.

    Raises:
        EncodeFailure: If a frame cannot be decoded or written
        Cancelled: If the token is cancelled mid-encode
    """
    width, height = frame_set.base_size
    total = frame_set.total
    delay = frame_delay(fps)
    reducer = FrameReducer(lossy_quality) if lossy_quality is not None else None

    with staged_output(output_path, "encode APNG") as temp_path:
        with open(temp_path, "wb") as fp:
            writer = APNGWriter(fp, width, height, num_frames=total, num_plays=loop_count)
            for image in stream_frames(frame_set, token, reporter, PHASE):
                data = image.tobytes()
                if reducer is not None:
                    data = reducer.reduce(data, width, height)
                writer.write_frame(data, delay)
            writer.finish()

    reporter.emit("Completed", total, total, 100.0)
    logger.info(
        f"🎞️  Encoded {total} frames to {output_path} "
        f"({'lossy q=' + str(lossy_quality) if reducer else 'lossless'})"
    )
    return output_path
