"""CLI module for FrameLab commands.

Each command lives in its own module; this package assembles them into the
``framelab`` click group used as the console entry point.
"""

import click

from .convert_cmd import convert
from .scan_cmd import scan
from .tools_cmd import tools


@click.group()
@click.version_option(version="0.1.0", prog_name="framelab")
def main() -> None:
    """🎞️ FrameLab: turn frame sequences into animated GIF, WebP and APNG."""
    pass


main.add_command(convert)
main.add_command(scan)
main.add_command(tools)

__all__ = [
    "convert",
    "main",
    "scan",
    "tools",
]
