"""Convert a frame sequence into animated outputs."""

import json
import signal
import sys
import threading
from pathlib import Path

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from ..error_handling import FrameLabError, InputError
from ..io import setup_logging
from ..models import CompressionDirective, ConversionRequest, OutputFormat
from ..pipeline import Converter
from .utils import format_bytes, handle_generic_error, resolve_inputs


def _install_pause_signals(converter: Converter) -> dict:
    """SIGUSR1 pauses and SIGUSR2 resumes a running conversion (POSIX only).

    Returns the previous handlers so they can be restored.
    """
    if not hasattr(signal, "SIGUSR1") or threading.current_thread() is not threading.main_thread():
        return {}
    previous = {
        signal.SIGUSR1: signal.signal(signal.SIGUSR1, lambda *_: converter.pause()),
        signal.SIGUSR2: signal.signal(signal.SIGUSR2, lambda *_: converter.resume()),
    }
    return previous


def _results_table(results) -> Table:
    table = Table(title="🎞️ Conversion Results", show_header=True, header_style="bold magenta")
    table.add_column("Format", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Output")
    table.add_column("Size", justify="right")
    table.add_column("Error", style="dim")

    for result in results:
        status = "[green]✅ OK[/green]" if result.success else "[red]❌ Failed[/red]"
        if result.original_size is not None and result.compressed_size != result.original_size:
            size = f"{format_bytes(result.original_size)} → {format_bytes(result.compressed_size)}"
        else:
            size = format_bytes(result.compressed_size)
        table.add_row(result.format.upper(), status, result.path, size, result.error or "")
    return table


@click.command()
@click.argument(
    "inputs",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Directory the animated outputs are written to (created if missing)",
)
@click.option("--name", "output_name", default=None, help="Base output name (default: folder or first frame name)")
@click.option("--fps", type=float, default=10.0, show_default=True, help="Frames per second")
@click.option("--loop", "loop_count", type=int, default=0, show_default=True, help="Loop count (0 = infinite)")
@click.option(
    "--format",
    "-f",
    "formats",
    type=click.Choice([f.value for f in OutputFormat], case_sensitive=False),
    multiple=True,
    default=("gif",),
    show_default=True,
    help="Output format; repeat for several outputs",
)
@click.option(
    "--quality",
    type=click.IntRange(0, 100),
    default=None,
    help="Enable local lossy compression at this quality (0-100)",
)
@click.option(
    "--api-key",
    envvar="FRAMELAB_API_KEY",
    default=None,
    help="Compress outputs with the remote API using this key",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.option("--json", "output_json", is_flag=True, help="Print results as JSON")
def convert(
    inputs: tuple[Path, ...],
    output_dir: Path,
    output_name: str | None,
    fps: float,
    loop_count: int,
    formats: tuple[str, ...],
    quality: int | None,
    api_key: str | None,
    log_level: str,
    output_json: bool,
) -> None:
    """Convert frames in INPUTS to animated GIF, WebP and/or APNG.

    INPUTS is either one directory (walked recursively, sorted by path) or an
    ordered list of image files. Press Ctrl+C to cancel; on POSIX systems
    ``kill -USR1`` pauses and ``kill -USR2`` resumes a running conversion.
    """
    setup_logging(log_level=log_level)

    if quality is not None and api_key:
        raise click.UsageError("--quality and --api-key are mutually exclusive")

    input_mode, input_path, input_paths = resolve_inputs(inputs)
    try:
        if api_key:
            compression = CompressionDirective.remote(api_key)
        elif quality is not None:
            compression = CompressionDirective.local(quality)
        else:
            compression = CompressionDirective.none()

        request = ConversionRequest(
            input_path=input_path,
            output_dir=str(output_dir),
            formats=list(dict.fromkeys(f.lower() for f in formats)),
            fps=fps,
            loop_count=loop_count,
            input_mode=input_mode,
            input_paths=input_paths,
            output_name=output_name,
            compression=compression,
        )
    except InputError as e:
        click.echo(f"❌ Invalid request: {e}", err=True)
        sys.exit(1)

    console = Console(stderr=output_json)
    outcome: dict = {}

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold cyan]{task.fields[label]:<5}"),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        disable=output_json,
    ) as progress:
        tasks: dict[str, int] = {}

        def on_progress(event) -> None:
            key = event.format or "scan"
            if key not in tasks:
                tasks[key] = progress.add_task(event.phase, total=100, label=key.upper())
            progress.update(tasks[key], completed=event.percent, description=event.phase)

        converter = Converter(progress_callback=on_progress)

        def worker() -> None:
            try:
                outcome["results"] = converter.convert(request)
            except Exception as e:
                outcome["error"] = e

        thread = threading.Thread(target=worker, name="framelab-convert", daemon=True)
        thread.start()
        previous_handlers = _install_pause_signals(converter)

        try:
            while thread.is_alive():
                thread.join(0.1)
        except KeyboardInterrupt:
            console.print("\n⏹️  Cancelling conversion…")
            converter.cancel()
            thread.join()
        finally:
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)

    error = outcome.get("error")
    if isinstance(error, InputError):
        click.echo(f"❌ {error}", err=True)
        sys.exit(1)
    if error is not None:
        if isinstance(error, FrameLabError):
            handle_generic_error("Conversion", error)
        raise error

    results = outcome.get("results", [])
    if output_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        console.print(_results_table(results))

    if not results or not all(r.success for r in results):
        sys.exit(1)
