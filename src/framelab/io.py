"""I/O utilities for logging setup, private temp paths and atomic output."""

import logging
import os
import secrets
import shutil
import tempfile
import time
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


def setup_logging(log_dir: Path | None = None, log_level: str = "INFO") -> logging.Logger:
    """Set up logging configuration for FrameLab.

    Args:
        log_dir: Directory to store a timestamped log file (stream-only if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger instance
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        handlers.append(logging.FileHandler(log_dir / f"framelab_{timestamp}.log"))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )

    return logging.getLogger("framelab")


def private_temp_name(purpose: str) -> str:
    """Return a temp name unique to this process, this moment and *purpose*."""
    millis = int(time.time() * 1000)
    return f"framelab_{purpose}_{os.getpid()}_{millis}_{secrets.token_hex(3)}"


def make_private_temp_dir(purpose: str, base_dir: Path | None = None) -> Path:
    """Create and return a private temporary directory for one operation."""
    root = Path(base_dir) if base_dir is not None else Path(tempfile.gettempdir())
    path = root / private_temp_name(purpose)
    path.mkdir(parents=True, exist_ok=False)
    return path


def temp_output_path(output_path: Path) -> Path:
    """Return the temp-suffixed sibling written before the final rename.

    ``out/anim.gif`` becomes ``out/anim.tmp.gif`` so the temp file keeps the
    extension encoders use to pick a container.
    """
    return output_path.with_name(f"{output_path.stem}.tmp{output_path.suffix}")


def commit_output(temp_path: Path, output_path: Path) -> None:
    """Atomically move a finished temp file onto its final path."""
    os.replace(temp_path, output_path)


def remove_quietly(path: Path | None) -> None:
    """Remove a file or directory tree, ignoring paths that are already gone."""
    if path is None:
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path, ignore_errors=True)
        else:
            path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove temporary path {path}: {e}")


def file_size(path: Path) -> int | None:
    """Return the size of *path* in bytes, or None when it cannot be read."""
    try:
        return path.stat().st_size
    except OSError:
        return None
