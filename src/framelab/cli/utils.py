"""Shared utilities for CLI commands."""

import sys
from pathlib import Path

import click


def handle_generic_error(command_name: str, error: Exception) -> None:
    """Handle generic command errors with consistent formatting."""
    click.echo(f"❌ {command_name} failed: {error}", err=True)
    sys.exit(1)


def handle_keyboard_interrupt(command_name: str) -> None:
    """Handle keyboard interrupt with consistent formatting."""
    click.echo(f"\n⏹️  {command_name} interrupted by user", err=True)
    sys.exit(1)


def resolve_inputs(inputs: tuple[Path, ...]) -> tuple[str, str, list[str] | None]:
    """Return ``(input_mode, input_path, input_paths)`` for CLI arguments.

    A single directory argument selects folder mode; anything else is an
    explicit, ordered list of frame files.
    """
    if len(inputs) == 1 and inputs[0].is_dir():
        return "folder", str(inputs[0]), None
    paths = [str(p) for p in inputs]
    return "files", paths[0], paths


def format_bytes(size: int | None) -> str:
    """Human-readable byte count."""
    if size is None:
        return "-"
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"
