"""Report which external tools FrameLab can use."""

import json

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..system_tools import get_available_tools

_PURPOSES = {
    "ffmpeg": "Primary encoder for GIF, WebP and APNG",
    "webpmux": "Assembles animated WebP from static frames",
    "gifsicle": "Local lossy GIF compression",
    "oxipng": "Local lossless PNG/APNG optimization",
}


@click.command()
@click.option("--json", "output_json", is_flag=True, help="Output results in JSON format")
def tools(output_json: bool) -> None:
    """Check availability of external encoders and optimizers."""
    available = get_available_tools()

    if output_json:
        payload = {
            key: {"available": info.available, "path": info.name, "version": info.version, "source": info.source}
            for key, info in available.items()
        }
        click.echo(json.dumps(payload, indent=2))
        return

    console = Console()
    table = Table(title="🔧 External Tools", show_header=True, header_style="bold magenta")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Version")
    table.add_column("Location", style="dim")
    table.add_column("Used for")

    for key, info in available.items():
        status = "[green]✅ Available[/green]" if info.available else "[red]❌ Missing[/red]"
        location = f"{info.name} ({info.source})" if info.available else ""
        table.add_row(key, status, info.version or "", location, _PURPOSES[key])

    console.print(table)

    if not all(info.available for info in available.values()):
        console.print(Panel(
            "⚠️  [yellow]Some tools are missing.[/yellow]\n"
            "FrameLab falls back to its built-in encoders; output may be larger\n"
            "and WebP may be written as a single static frame.",
            title="System Status",
            border_style="yellow",
        ))
