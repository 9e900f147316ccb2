"""Colour quantization and ordered dithering for lossy animated output.

Two reduction strategies are provided, both operating on raw RGBA buffers
(``width * height * 4`` bytes, row-major) and both returning *new* buffers;
inputs are never modified.

Palette quantization:
    A bounded palette (at most 256 colours) is built once from a reference
    frame and reused to remap every later frame. Reusing one palette keeps
    colours stable from frame to frame, which avoids palette flicker in
    animations. Remapping uses ordered (position-based) dithering and no
    error diffusion, so the same input always produces the same output.

Uniform bit-depth reduction:
    Each RGB channel is truncated to ``bits`` significant bits, optionally
    after an 8×8 threshold-matrix perturbation. Used when the palette engine
    is unavailable or fails.

Alpha is never dithered or quantized by either strategy.

Quality mapping (UI quality 0-100):
    max_quality   = clamp(q * 20 // 100 + 80, 70, 95)
    min_quality   = max_quality - 2
    dither_level  = clamp(q / 100 * 0.2 + 0.35, 0.35, 0.6)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, features

logger = logging.getLogger(__name__)

MAX_PALETTE_COLORS = 256

# 8x8 ordered-dither threshold matrix with values 0..63
BLUE_NOISE_8X8 = np.array(
    [
        [0, 48, 12, 60, 3, 51, 15, 63],
        [32, 16, 44, 28, 35, 19, 47, 31],
        [8, 56, 4, 52, 11, 59, 7, 55],
        [40, 24, 36, 20, 43, 27, 39, 23],
        [2, 50, 14, 62, 1, 49, 13, 61],
        [34, 18, 46, 30, 33, 17, 45, 29],
        [10, 58, 6, 54, 9, 57, 5, 53],
        [42, 26, 38, 22, 41, 25, 37, 21],
    ],
    dtype=np.int16,
)


# ---------------------------------------------------------------------------
# Buffer helpers
# ---------------------------------------------------------------------------


def as_rgba_array(data, width: int, height: int) -> np.ndarray:
    """Return a private ``(height, width, 4)`` uint8 copy of *data*.

    Raises:
        ValueError: If the buffer length does not match the dimensions
    """
    arr = np.frombuffer(bytes(data), dtype=np.uint8) if not isinstance(data, np.ndarray) else data
    expected = width * height * 4
    if arr.size != expected:
        raise ValueError(
            f"RGBA buffer has {arr.size} bytes, expected {expected} for {width}x{height}"
        )
    return np.array(arr, dtype=np.uint8, copy=True).reshape(height, width, 4)


def threshold_map(width: int, height: int) -> np.ndarray:
    """Tile BLUE_NOISE_8X8 over a ``(height, width)`` grid."""
    reps_y = -(-height // 8)
    reps_x = -(-width // 8)
    return np.tile(BLUE_NOISE_8X8, (reps_y, reps_x))[:height, :width]


# ---------------------------------------------------------------------------
# Uniform bit-depth reduction
# ---------------------------------------------------------------------------


def lossy_bits(quality: int) -> int:
    """Map UI quality (0-100) to the per-channel bit depth kept."""
    if quality >= 90:
        return 8
    if quality >= 75:
        return 7
    if quality >= 60:
        return 6
    if quality >= 15:
        return 5
    return 4


def dither_strength(bits: int) -> float:
    """Dithering strength used for a given bit depth."""
    return {3: 0.45, 4: 0.6, 5: 0.75}.get(bits, 1.0)


def dither_enabled(bits: int) -> bool:
    """Ordered dithering only pays off at coarse bit depths."""
    return bits <= 5


def reduce_bit_depth(rgba, width: int, height: int, bits: int) -> bytes:
    """Truncate RGB channels to *bits* significant bits; alpha is untouched."""
    arr = as_rgba_array(rgba, width, height)
    if bits >= 8:
        return arr.tobytes()

    shift = 8 - bits
    arr[..., :3] = (arr[..., :3] >> shift) << shift
    return arr.tobytes()


def ordered_dither(rgba, width: int, height: int, bits: int, strength: float) -> bytes:
    """Perturb RGB by the threshold matrix, then truncate to *bits*.

    The perturbation for a pixel at ``(x, y)`` is
    ``(M[y % 8][x % 8] - 31) * step / 64 * strength`` with ``step = 2**(8-bits)``,
    truncated toward zero, so it stays within one quantization step.
    """
    arr = as_rgba_array(rgba, width, height)
    if bits >= 8:
        return arr.tobytes()

    shift = 8 - bits
    step = 1 << shift
    centered = threshold_map(width, height).astype(np.float32) - 31.0
    jitter = np.trunc(centered * step / 64.0 * strength).astype(np.int16)

    rgb = arr[..., :3].astype(np.int16) + jitter[..., None]
    rgb = np.clip(rgb, 0, 255).astype(np.uint8)
    arr[..., :3] = (rgb >> shift) << shift
    return arr.tobytes()


def apply_uniform_reduction(rgba, width: int, height: int, quality: int) -> bytes:
    """Bit-depth reduction for *quality*, dithered when the depth is coarse."""
    bits = lossy_bits(quality)
    if bits >= 8:
        return as_rgba_array(rgba, width, height).tobytes()
    if dither_enabled(bits):
        return ordered_dither(rgba, width, height, bits, dither_strength(bits))
    return reduce_bit_depth(rgba, width, height, bits)


# ---------------------------------------------------------------------------
# Palette quantization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuantizerSettings:
    """Internal quantizer parameters derived from UI quality.

    Pillow's quantizer takes no quality band, so ``min_quality`` and
    ``max_quality`` are advisory: they are reported and logged, and
    ``max_quality`` only selects the number of k-means passes.
    """

    min_quality: int
    max_quality: int
    max_colors: int
    dither_level: float

    @classmethod
    def from_quality(cls, quality: int) -> QuantizerSettings:
        if not 0 <= quality <= 100:
            raise ValueError(f"Quality must be between 0 and 100, got {quality}")

        # Keep the band conservative so low UI settings do not collapse the palette
        max_quality = min(95, max(70, quality * 20 // 100 + 80))
        min_quality = max(0, max_quality - 2)
        dither_level = min(0.6, max(0.35, quality / 100.0 * 0.2 + 0.35))
        return cls(
            min_quality=min_quality,
            max_quality=max_quality,
            max_colors=MAX_PALETTE_COLORS,
            dither_level=dither_level,
        )

    @property
    def kmeans_passes(self) -> int:
        """Palette refinement passes; the top of the band buys extra k-means passes."""
        return max(0, (self.max_quality - 85) // 2)


def palette_method() -> Image.Quantize:
    """Best quantizer this Pillow build offers."""
    if features.check_feature("libimagequant"):
        return Image.Quantize.LIBIMAGEQUANT
    return Image.Quantize.MEDIANCUT


class QuantizedPalette:
    """A reusable palette that remaps frames consistently.

    Build with :func:`build_palette`; call :meth:`remap` for every frame of
    the animation, including the one the palette was built from.
    """

    def __init__(self, palette_image: Image.Image, settings: QuantizerSettings):
        if palette_image.mode != "P":
            raise ValueError(f"Palette image must be mode 'P', got {palette_image.mode}")
        self._palette_image = palette_image
        self.settings = settings

        raw = palette_image.getpalette() or []
        colors = np.array(raw, dtype=np.uint8).reshape(-1, 3)
        used = sorted(c for _, c in (palette_image.getcolors(MAX_PALETTE_COLORS) or []))
        self.colors = colors[used] if used else colors[:1]

    @property
    def size(self) -> int:
        return len(self.colors)

    @property
    def dither_step(self) -> float:
        """Approximate distance between neighbouring palette colours."""
        return 256.0 / max(1.0, self.size ** (1.0 / 3.0))

    def remap(self, rgba, width: int, height: int) -> bytes:
        """Map *rgba* onto this palette and return a new RGBA buffer."""
        arr = as_rgba_array(rgba, width, height)

        rgb = arr[..., :3].astype(np.float32)
        if self.settings.dither_level > 0:
            centered = threshold_map(width, height).astype(np.float32) - 31.5
            jitter = centered / 64.0 * self.dither_step * self.settings.dither_level
            rgb = rgb + jitter[..., None]
        rgb = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)

        mapped = Image.fromarray(rgb).quantize(
            palette=self._palette_image, dither=Image.Dither.NONE
        )
        arr[..., :3] = np.asarray(mapped.convert("RGB"), dtype=np.uint8)
        return arr.tobytes()


def build_palette(rgba, width: int, height: int, quality: int) -> QuantizedPalette:
    """Build a ≤256-colour palette from one frame's RGB content.

    Raises:
        ValueError: If *quality* or the buffer size is invalid
    """
    settings = QuantizerSettings.from_quality(quality)
    arr = as_rgba_array(rgba, width, height)

    method = palette_method()
    palette_image = Image.fromarray(np.ascontiguousarray(arr[..., :3])).quantize(
        colors=settings.max_colors,
        method=method,
        kmeans=settings.kmeans_passes,
        dither=Image.Dither.NONE,
    )
    palette = QuantizedPalette(palette_image, settings)
    logger.debug(
        f"Built {palette.size}-colour palette via {method.name} "
        f"(quality {settings.min_quality}-{settings.max_quality}, dither {settings.dither_level:.2f})"
    )
    return palette


@dataclass(frozen=True)
class QuantizeResult:
    """Output of a one-shot quantize-and-remap."""

    data: bytes
    palette_size: int
    min_quality: int
    max_quality: int
    dither_level: float


def quantize_frame(rgba, width: int, height: int, quality: int) -> QuantizeResult:
    """Build a palette from *rgba* and remap the same frame through it."""
    palette = build_palette(rgba, width, height, quality)
    return QuantizeResult(
        data=palette.remap(rgba, width, height),
        palette_size=palette.size,
        min_quality=palette.settings.min_quality,
        max_quality=palette.settings.max_quality,
        dither_level=palette.settings.dither_level,
    )


class FrameReducer:
    """Lossy reduction applied to every frame of one animation.

    The palette is built from the first frame and reused for all later
    frames. If the palette engine fails, this and every later frame fall
    back to uniform bit-depth reduction.
    """

    def __init__(self, quality: int):
        QuantizerSettings.from_quality(quality)
        self.quality = quality
        self.palette: QuantizedPalette | None = None
        self.palette_failed = False

    def reduce(self, rgba, width: int, height: int) -> bytes:
        if not self.palette_failed:
            try:
                if self.palette is None:
                    self.palette = build_palette(rgba, width, height, self.quality)
                return self.palette.remap(rgba, width, height)
            except (ValueError, OSError) as e:
                logger.warning(f"Palette quantization failed, using bit-depth reduction: {e}")
                self.palette_failed = True
                self.palette = None
        return apply_uniform_reduction(rgba, width, height, self.quality)
