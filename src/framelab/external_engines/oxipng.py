from __future__ import annotations

from pathlib import Path
from typing import Any

from ..system_tools import ToolInfo, discover_tool
from .common import run_command

__all__ = ["optimization_preset", "optimize", "reduction_flags"]


def optimization_preset(quality: int) -> int:
    """Lower quality buys a slower, more thorough oxipng preset."""
    if quality >= 85:
        return 1
    if quality >= 60:
        return 2
    if quality >= 40:
        return 3
    if quality >= 20:
        return 5
    return 6


def reduction_flags(quality: int, *, animated: bool) -> list[str]:
    """Lossless reductions allowed at *quality*.

    High quality keeps color type, bit depth and palette as encoded. APNG
    never has chunks stripped since the animation lives in them.
    """
    if quality >= 80:
        flags = ["--nx", "--nz"]
    elif quality >= 50:
        flags = ["--np"]
    else:
        flags = []

    if quality <= 40 and not animated:
        flags += ["--strip", "safe", "--alpha"]
    return flags


def optimize(
    input_path: Path,
    output_path: Path,
    *,
    quality: int,
    animated: bool,
    tool: ToolInfo | None = None,
    timeout: int | None = 300,
) -> dict[str, Any]:
    """Losslessly re-optimize a PNG or APNG with oxipng."""
    if tool is None:
        tool = discover_tool("oxipng")
    tool.require()

    cmd = [tool.name, "-o", str(optimization_preset(quality))]
    cmd += reduction_flags(quality, animated=animated)
    cmd += ["--out", str(output_path), str(input_path)]

    return run_command(cmd, engine="oxipng", output_path=output_path, timeout=timeout)
