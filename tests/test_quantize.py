"""Tests for framelab.quantize."""

from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from framelab.quantize import (
    BLUE_NOISE_8X8,
    FrameReducer,
    QuantizerSettings,
    apply_uniform_reduction,
    build_palette,
    dither_enabled,
    dither_strength,
    lossy_bits,
    ordered_dither,
    quantize_frame,
    reduce_bit_depth,
)


def _rgba(width=16, height=12, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8).tobytes()


def _alpha(buffer: bytes) -> bytes:
    return np.frombuffer(buffer, dtype=np.uint8).reshape(-1, 4)[:, 3].tobytes()


class TestQuantizerSettings:
    """UI quality to quantizer parameter mapping."""

    def test_quality_zero(self):
        settings = QuantizerSettings.from_quality(0)

        assert settings.max_quality == 80
        assert settings.min_quality == 78
        assert settings.dither_level == pytest.approx(0.35)
        assert settings.max_colors == 256

    def test_quality_fifty(self):
        settings = QuantizerSettings.from_quality(50)

        assert settings.max_quality == 90
        assert settings.min_quality == 88
        assert settings.dither_level == pytest.approx(0.45)

    def test_quality_hundred_is_clamped(self):
        settings = QuantizerSettings.from_quality(100)

        assert settings.max_quality == 95
        assert settings.min_quality == 93
        assert settings.dither_level == pytest.approx(0.55)

    def test_kmeans_passes_follow_band(self):
        assert QuantizerSettings.from_quality(0).kmeans_passes == 0
        assert QuantizerSettings.from_quality(100).kmeans_passes == 5

    @pytest.mark.parametrize("quality", [-1, 101])
    def test_out_of_range_quality(self, quality):
        with pytest.raises(ValueError):
            QuantizerSettings.from_quality(quality)


class TestBitDepthMapping:
    """Quality → bits and bits → dithering strength."""

    @pytest.mark.parametrize(
        "quality,bits",
        [(100, 8), (90, 8), (89, 7), (75, 7), (74, 6), (60, 6), (59, 5), (15, 5), (14, 4), (0, 4)],
    )
    def test_lossy_bits(self, quality, bits):
        assert lossy_bits(quality) == bits

    def test_dither_strength(self):
        assert dither_strength(3) == 0.45
        assert dither_strength(4) == 0.6
        assert dither_strength(5) == 0.75
        assert dither_strength(6) == 1.0

    def test_dither_enabled_only_for_coarse_depths(self):
        assert dither_enabled(5)
        assert dither_enabled(4)
        assert not dither_enabled(6)


class TestUniformReduction:
    """Pure bit-depth reduction functions."""

    def test_reduce_at_eight_bits_is_identity(self):
        data = _rgba()

        assert reduce_bit_depth(data, 16, 12, 8) == data

    def test_dither_at_eight_bits_is_identity(self):
        data = _rgba()

        assert ordered_dither(data, 16, 12, 8, 1.0) == data

    def test_uniform_reduction_at_full_quality_is_identity(self):
        data = _rgba()

        assert apply_uniform_reduction(data, 16, 12, 100) == data

    def test_reduce_truncates_rgb(self):
        out = np.frombuffer(reduce_bit_depth(_rgba(), 16, 12, 4), dtype=np.uint8).reshape(-1, 4)

        assert np.all(out[:, :3] % 16 == 0)

    @pytest.mark.parametrize("bits", [3, 4, 5, 6])
    def test_alpha_is_preserved(self, bits):
        data = _rgba(seed=bits)

        assert _alpha(reduce_bit_depth(data, 16, 12, bits)) == _alpha(data)
        assert _alpha(ordered_dither(data, 16, 12, bits, dither_strength(bits))) == _alpha(data)

    def test_input_is_not_modified(self):
        data = bytearray(_rgba())
        snapshot = bytes(data)

        ordered_dither(data, 16, 12, 4, 0.6)
        reduce_bit_depth(data, 16, 12, 4)

        assert bytes(data) == snapshot

    def test_dither_output_is_quantized(self):
        out = np.frombuffer(ordered_dither(_rgba(), 16, 12, 5, 0.75), dtype=np.uint8).reshape(-1, 4)

        assert np.all(out[:, :3] % 8 == 0)

    def test_buffer_size_mismatch(self):
        with pytest.raises(ValueError, match="expected"):
            reduce_bit_depth(b"\x00" * 10, 4, 4, 5)

    def test_threshold_matrix_covers_zero_to_63(self):
        assert sorted(BLUE_NOISE_8X8.flatten().tolist()) == list(range(64))


class TestPalette:
    """Palette build and remap."""

    def test_palette_is_bounded(self):
        palette = build_palette(_rgba(64, 64), 64, 64, 80)

        assert 1 <= palette.size <= 256

    def test_remap_is_deterministic(self):
        data = _rgba(32, 32, seed=3)
        palette = build_palette(data, 32, 32, 60)

        assert palette.remap(data, 32, 32) == palette.remap(data, 32, 32)

    def test_remap_preserves_alpha(self):
        data = _rgba(32, 32, seed=4)
        palette = build_palette(data, 32, 32, 60)

        assert _alpha(palette.remap(data, 32, 32)) == _alpha(data)

    def test_palette_reused_for_other_frames(self):
        first = _rgba(32, 32, seed=5)
        second = _rgba(32, 32, seed=6)
        palette = build_palette(first, 32, 32, 70)

        out = np.frombuffer(palette.remap(second, 32, 32), dtype=np.uint8).reshape(-1, 4)

        assert len({tuple(px) for px in out[:, :3]}) <= 256

    def test_few_colours_survive_remap(self):
        colours = np.array(
            [[255, 0, 0, 255], [0, 255, 0, 255], [0, 0, 255, 255], [255, 255, 255, 255]], dtype=np.uint8
        )
        arr = np.repeat(colours, 64, axis=0).reshape(16, 16, 4)
        palette = build_palette(arr.tobytes(), 16, 16, 90)

        out = np.frombuffer(palette.remap(arr.tobytes(), 16, 16), dtype=np.uint8).reshape(-1, 4)

        assert len({tuple(px) for px in out[:, :3]}) <= 4

    def test_quantize_frame_reports_settings(self):
        result = quantize_frame(_rgba(16, 16), 16, 16, 50)

        assert len(result.data) == 16 * 16 * 4
        assert result.max_quality == 90
        assert result.min_quality == 88
        assert 1 <= result.palette_size <= 256

    def test_quality_band_only_sets_kmeans_passes(self):
        """Pillow receives colours, method, k-means passes and dither; no quality band."""
        original = Image.Image.quantize

        with patch.object(Image.Image, "quantize", autospec=True, side_effect=original) as mock_quantize:
            build_palette(_rgba(16, 16), 16, 16, 100)

        kwargs = mock_quantize.call_args.kwargs
        assert set(kwargs) == {"colors", "method", "kmeans", "dither"}
        assert kwargs["kmeans"] == QuantizerSettings.from_quality(100).kmeans_passes


class TestFrameReducer:
    """Palette reuse and fallback across an animation."""

    def test_palette_built_once(self):
        reducer = FrameReducer(70)

        with patch("framelab.quantize.build_palette", wraps=build_palette) as spy:
            for seed in range(3):
                reducer.reduce(_rgba(16, 16, seed=seed), 16, 16)

        assert spy.call_count == 1
        assert reducer.palette is not None

    def test_palette_failure_falls_back_to_bit_depth(self):
        reducer = FrameReducer(10)
        data = _rgba(16, 16)

        with patch("framelab.quantize.build_palette", side_effect=ValueError("engine down")):
            out = reducer.reduce(data, 16, 16)

        assert reducer.palette_failed
        assert out == apply_uniform_reduction(data, 16, 16, 10)
        assert _alpha(out) == _alpha(data)
