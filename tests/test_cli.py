"""Tests for CLI commands using click.testing.CliRunner."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from framelab.cli import main
from framelab.system_tools import ToolInfo


def _json_from(output: str):
    return json.loads(output[output.index("[\n") if "[\n" in output else output.index("{"):])


class TestMainCLI:
    """Tests for main CLI group."""

    def test_main_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "FrameLab: turn frame sequences into animated GIF, WebP and APNG." in result.output
        assert "convert" in result.output
        assert "tools" in result.output

    def test_main_version(self):
        result = CliRunner().invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "framelab, version 0.1.0" in result.output

    def test_main_invalid_command(self):
        result = CliRunner().invoke(main, ["invalid-command"])

        assert result.exit_code == 2
        assert "No such command" in result.output


class TestToolsCommand:
    """Tests for the tools command."""

    TOOLS = {
        "ffmpeg": ToolInfo(name="/usr/bin/ffmpeg", available=True, version="6.1", source="PATH"),
        "webpmux": ToolInfo(name="webpmux", available=False),
        "gifsicle": ToolInfo(name="/usr/local/bin/gifsicle", available=True, version="1.94", source="install-dir"),
        "oxipng": ToolInfo(name="oxipng", available=False),
    }

    @patch("framelab.cli.tools_cmd.get_available_tools")
    def test_tools_json(self, mock_tools):
        mock_tools.return_value = self.TOOLS

        result = CliRunner().invoke(main, ["tools", "--json"])

        assert result.exit_code == 0
        payload = _json_from(result.output)
        assert payload["ffmpeg"] == {"available": True, "path": "/usr/bin/ffmpeg", "version": "6.1", "source": "PATH"}
        assert payload["webpmux"]["available"] is False

    @patch("framelab.cli.tools_cmd.get_available_tools")
    def test_tools_table_warns_when_missing(self, mock_tools):
        mock_tools.return_value = self.TOOLS

        result = CliRunner().invoke(main, ["tools"])

        assert result.exit_code == 0
        assert "ffmpeg" in result.output
        assert "Some tools are missing" in result.output


class TestScanCommand:
    """Tests for the scan command."""

    def test_scan_folder(self, frames_dir):
        result = CliRunner().invoke(main, ["scan", str(frames_dir)])

        assert result.exit_code == 0
        assert "10 frames" in result.output
        assert "Base size: 64x64" in result.output

    def test_scan_empty_folder(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()

        result = CliRunner().invoke(main, ["scan", str(empty)])

        assert result.exit_code == 1

    def test_scan_missing_path(self, tmp_path):
        result = CliRunner().invoke(main, ["scan", str(tmp_path / "missing")])

        assert result.exit_code == 2


@pytest.mark.usefixtures("no_external_tools")
class TestConvertCommand:
    """Tests for the convert command."""

    def test_convert_table(self, frames_dir, output_dir):
        result = CliRunner().invoke(
            main, ["convert", str(frames_dir), "-o", str(output_dir), "-f", "gif", "--log-level", "ERROR"]
        )

        assert result.exit_code == 0, result.output
        assert (output_dir / "clip_64x64.gif").exists()
        assert "Conversion Results" in result.output

    def test_convert_json(self, frames_dir, output_dir):
        result = CliRunner().invoke(
            main,
            [
                "convert",
                str(frames_dir),
                "-o",
                str(output_dir),
                "-f",
                "gif",
                "-f",
                "apng",
                "--fps",
                "20",
                "--name",
                "demo",
                "--json",
                "--log-level",
                "ERROR",
            ],
        )

        assert result.exit_code == 0, result.output
        payload = _json_from(result.output)
        assert [entry["format"] for entry in payload] == ["gif", "apng"]
        assert all(entry["success"] for entry in payload)
        assert Path(payload[1]["path"]).name == "demo_64x64.png"
        assert payload[0]["originalSize"] == payload[0]["compressedSize"]

    def test_convert_file_list(self, frames_dir, output_dir):
        frames = [str(p) for p in sorted(frames_dir.glob("*.png"))[:4]]

        result = CliRunner().invoke(
            main, ["convert", *frames, "-o", str(output_dir), "--log-level", "ERROR"]
        )

        assert result.exit_code == 0, result.output
        assert (output_dir / "frame_000_64x64.gif").exists()

    def test_quality_and_api_key_conflict(self, frames_dir, output_dir):
        result = CliRunner().invoke(
            main, ["convert", str(frames_dir), "-o", str(output_dir), "--quality", "50", "--api-key", "k"]
        )

        assert result.exit_code == 2
        assert "mutually exclusive" in result.output
        assert not output_dir.exists()

    def test_quality_out_of_range(self, frames_dir, output_dir):
        result = CliRunner().invoke(main, ["convert", str(frames_dir), "-o", str(output_dir), "--quality", "150"])

        assert result.exit_code == 2

    @pytest.mark.parametrize("fps", ["0", "nan", "inf"])
    def test_invalid_fps(self, frames_dir, output_dir, fps):
        result = CliRunner().invoke(main, ["convert", str(frames_dir), "-o", str(output_dir), "--fps", fps])

        assert result.exit_code == 1
        assert "Frame rate must be positive" in result.output

    def test_empty_folder(self, tmp_path, output_dir):
        empty = tmp_path / "empty"
        empty.mkdir()

        result = CliRunner().invoke(main, ["convert", str(empty), "-o", str(output_dir), "--log-level", "ERROR"])

        assert result.exit_code == 1
        assert not output_dir.exists()
