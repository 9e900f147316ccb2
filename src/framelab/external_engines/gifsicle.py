from __future__ import annotations

from pathlib import Path
from typing import Any

from ..system_tools import ToolInfo, discover_tool
from .common import run_command

__all__ = ["lossy_level", "optimize"]


def lossy_level(quality: int) -> int:
    """Map UI quality (0-100) to gifsicle's ``--lossy`` level (200-0)."""
    quality = min(100, max(0, quality))
    return (100 - quality) * 2


def optimize(
    input_path: Path,
    output_path: Path,
    *,
    quality: int,
    tool: ToolInfo | None = None,
    timeout: int | None = 300,
) -> dict[str, Any]:
    """Re-optimize a GIF with ``gifsicle -O3`` and an optional lossy pass."""
    if tool is None:
        tool = discover_tool("gifsicle")
    tool.require()

    cmd = [tool.name, "-O3"]
    level = lossy_level(quality)
    if level > 0:
        cmd.append(f"--lossy={level}")
    cmd += [str(input_path), "-o", str(output_path)]

    return run_command(cmd, engine="gifsicle", output_path=output_path, timeout=timeout)
