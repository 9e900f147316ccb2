"""List the frames a conversion would use."""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..error_handling import InputError
from ..scanner import scan_frames
from .utils import format_bytes, resolve_inputs


@click.command()
@click.argument(
    "inputs",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, path_type=Path),
)
def scan(inputs: tuple[Path, ...]) -> None:
    """Show the frames discovered in INPUTS, in encoding order."""
    console = Console()
    input_mode, input_path, input_paths = resolve_inputs(inputs)

    try:
        frame_set = scan_frames(input_mode, input_path, input_paths)
    except InputError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    table = Table(title=f"🖼️ {frame_set.total} frames", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Bytes", justify="right")

    for index, frame in enumerate(frame_set, start=1):
        table.add_row(str(index), frame.path, f"{frame.width}x{frame.height}", format_bytes(frame.size))

    console.print(table)

    width, height = frame_set.base_size
    console.print(f"📐 Base size: {width}x{height}")
    if not frame_set.all_same_size:
        console.print("⚠️  [yellow]Frames differ in size; fallback encoders resize to the base size[/yellow]")
    if frame_set.uniform_extension is None:
        console.print(
            f"⚠️  [yellow]Mixed extensions ({', '.join(sorted(frame_set.extensions))}); "
            "FFmpeg will be skipped[/yellow]"
        )
