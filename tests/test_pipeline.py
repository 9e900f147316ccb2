"""End-to-end tests for framelab.pipeline."""

from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from conftest import write_frames
from framelab.error_handling import CompressionFailure, EmptyInput, InputError
from framelab.external_engines.common import SupervisedResult
from framelab.models import CompressionDirective, ConversionRequest
from framelab.pipeline import Converter, convert_frames, resolve_base_name
from framelab.scanner import scan_frames
from framelab.system_tools import ToolInfo


def _leftovers(directory: Path) -> list[str]:
    return [p.name for p in directory.iterdir() if ".tmp" in p.name]


def _ffmpeg_available(tool_key, *args, **kwargs):
    if tool_key == "ffmpeg":
        return ToolInfo(name="/usr/bin/ffmpeg", available=True, version="6.1", source="PATH")
    return ToolInfo(name=tool_key, available=False)


@pytest.mark.usefixtures("no_external_tools")
class TestFallbackConversion:
    """Conversions that run entirely on the in-process encoders."""

    def test_png_frames_to_gif(self, frames_dir, output_dir):
        results = convert_frames(str(frames_dir), str(output_dir), ["gif"], fps=10, loop_count=0)

        assert len(results) == 1
        result = results[0]
        assert result.success is True
        assert result.error is None
        assert Path(result.path).name == "clip_64x64.gif"
        assert result.original_size == result.compressed_size == Path(result.path).stat().st_size
        with Image.open(result.path) as img:
            assert img.n_frames == 10
            assert img.info["duration"] == 100
            assert img.info["loop"] == 0
        assert _leftovers(output_dir) == []

    def test_results_follow_request_order(self, frames_dir, output_dir):
        results = convert_frames(str(frames_dir), str(output_dir), ["apng", "gif"])

        assert [r.format for r in results] == ["apng", "gif"]
        assert results[0].path.endswith("clip_64x64.png")
        assert all(r.success for r in results)

    def test_unknown_format_is_skipped(self, frames_dir, output_dir):
        results = convert_frames(str(frames_dir), str(output_dir), ["gif", "mp4"])

        assert [r.format for r in results] == ["gif"]

    def test_output_name_override(self, frames_dir, output_dir):
        results = convert_frames(str(frames_dir), str(output_dir), ["gif"], output_name="intro")

        assert Path(results[0].path).name == "intro_64x64.gif"

    def test_files_mode_uses_first_frame_stem(self, frames_dir, output_dir):
        paths = [str(p) for p in sorted(frames_dir.glob("*.png"))[3:6]]

        results = convert_frames(paths[0], str(output_dir), ["gif"], input_mode="files", input_paths=paths)

        assert Path(results[0].path).name == "frame_003_64x64.gif"
        with Image.open(results[0].path) as img:
            assert img.n_frames == 3

    def test_empty_folder_raises_before_encoding(self, tmp_path, output_dir):
        empty = tmp_path / "empty"
        empty.mkdir()

        with pytest.raises(EmptyInput):
            convert_frames(str(empty), str(output_dir), ["gif", "webp"])

        assert not output_dir.exists()

    def test_progress_is_monotonic_per_phase(self, frames_dir, output_dir):
        events = []

        convert_frames(str(frames_dir), str(output_dir), ["gif", "apng"], progress_callback=events.append)

        for fmt in ("gif", "apng"):
            phase_floor = {}
            for event in (e for e in events if e.format == fmt):
                assert 0.0 <= event.percent <= 100.0
                assert event.percent >= phase_floor.get(event.phase, 0.0)
                phase_floor[event.phase] = event.percent
            assert any(e.phase == "Completed" and e.percent == 100.0 for e in events if e.format == fmt)
        assert events[0].phase == "Starting GIF conversion"

    def test_cancel_fails_every_remaining_format(self, frames_dir, output_dir):
        converter = Converter()

        def cancel_early(event):
            if event.current == 2:
                converter.cancel()

        converter.progress_callback = cancel_early
        request = ConversionRequest(str(frames_dir), str(output_dir), ["gif", "apng"])

        results = converter.convert(request)

        assert [r.success for r in results] == [False, False]
        assert all("cancel" in r.error.lower() for r in results)
        assert list(output_dir.iterdir()) == []

    def test_new_request_after_cancel_runs(self, frames_dir, output_dir):
        converter = Converter()
        converter.cancel()

        results = converter.convert(ConversionRequest(str(frames_dir), str(output_dir), ["gif"]))

        assert results[0].success is True

    def test_lossy_apng(self, frames_dir, output_dir):
        results = convert_frames(
            str(frames_dir), str(output_dir), ["apng"], compression=CompressionDirective.local(40)
        )

        assert results[0].success is True
        with Image.open(results[0].path) as img:
            assert img.n_frames == 10

    def test_compression_failure_keeps_output(self, frames_dir, output_dir):
        with patch("framelab.pipeline.compress_output", side_effect=CompressionFailure("service down")):
            results = convert_frames(
                str(frames_dir), str(output_dir), ["gif"], compression=CompressionDirective.remote("key")
            )

        result = results[0]
        assert result.success is True
        assert "service down" in result.error
        assert result.original_size == result.compressed_size
        assert Path(result.path).exists()


class TestExternalFirst:
    """External encoder attempts and the fallback decision."""

    @pytest.fixture(autouse=True)
    def _tools(self, monkeypatch):
        monkeypatch.setattr("framelab.pipeline.discover_tool", _ffmpeg_available)
        monkeypatch.setattr("framelab.encoders.webp.discover_tool", _ffmpeg_available)

    def test_external_success_is_used(self, frames_dir, output_dir):
        def fake_run(cmd, **kwargs):
            Path(cmd[-1]).write_bytes(b"GIF89a-from-ffmpeg")
            return SupervisedResult(0, "", 1)

        with patch("framelab.external_engines.ffmpeg.run_supervised", side_effect=fake_run):
            results = convert_frames(str(frames_dir), str(output_dir), ["gif"])

        assert results[0].success is True
        assert Path(results[0].path).read_bytes() == b"GIF89a-from-ffmpeg"

    def test_external_failure_falls_back(self, frames_dir, output_dir):
        failed = SupervisedResult(1, "Unknown encoder", 1)

        with patch("framelab.external_engines.ffmpeg.run_supervised", return_value=failed) as mock_run:
            results = convert_frames(str(frames_dir), str(output_dir), ["gif", "apng"])

        assert mock_run.call_count == 2
        assert all(r.success for r in results)
        with Image.open(results[0].path) as img:
            assert img.n_frames == 10
        assert _leftovers(output_dir) == []

    def test_mixed_extensions_skip_ffmpeg(self, tmp_path, output_dir):
        directory = tmp_path / "mixed"
        write_frames(directory, count=3, ext="png")
        write_frames(directory, count=3, ext="jpg", start=3)

        with patch("framelab.external_engines.ffmpeg.run_supervised") as mock_run:
            results = convert_frames(str(directory), str(output_dir), ["gif"])

        mock_run.assert_not_called()
        assert results[0].success is True
        with Image.open(results[0].path) as img:
            assert img.n_frames == 6

    def test_lossy_apng_skips_ffmpeg(self, frames_dir, output_dir, monkeypatch):
        monkeypatch.setattr("framelab.compression.discover_tool", lambda key, *a, **k: ToolInfo(key, False))

        with patch("framelab.external_engines.ffmpeg.run_supervised") as mock_run:
            results = convert_frames(
                str(frames_dir), str(output_dir), ["apng"], compression=CompressionDirective.local(70)
            )

        mock_run.assert_not_called()
        assert results[0].success is True


class TestNaming:
    """Output base-name resolution."""

    def test_folder_name_and_size(self, frames_dir):
        request = ConversionRequest(str(frames_dir), "out", ["gif"])

        assert resolve_base_name(request, scan_frames("folder", frames_dir)) == "clip_64x64"

    def test_explicit_name(self, frames_dir):
        request = ConversionRequest(str(frames_dir), "out", ["gif"], output_name="promo")

        assert resolve_base_name(request, scan_frames("folder", frames_dir)) == "promo_64x64"


class TestRequestValidation:
    """ConversionRequest guards."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"fps": 0},
            {"fps": -5},
            {"fps": float("nan")},
            {"fps": float("inf")},
            {"loop_count": -1},
            {"formats": []},
            {"input_mode": "glob"},
        ],
    )
    def test_invalid_requests(self, kwargs):
        params = {"input_path": "in", "output_dir": "out", "formats": ["gif"]}
        params.update(kwargs)

        with pytest.raises(InputError):
            ConversionRequest(**params)

    def test_remote_needs_key(self):
        with pytest.raises(InputError):
            CompressionDirective.remote("")

    def test_quality_range(self):
        with pytest.raises(InputError):
            CompressionDirective.local(101)
