"""Frame discovery and validation.

Builds a :class:`~framelab.models.FrameSet` from either a folder (walked
recursively, sorted by full path) or an explicit list of files (kept in
caller order). Dimensions are read from the image header only; files whose
header cannot be parsed are skipped rather than failing the scan.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .config import DEFAULT_CONVERSION_CONFIG, ConversionConfig
from .error_handling import DirectoryNotFound, EmptyInput, InputError
from .models import FrameInfo, FrameSet

logger = logging.getLogger(__name__)


def is_image_file(path: Path, config: ConversionConfig = DEFAULT_CONVERSION_CONFIG) -> bool:
    """Return True if *path* has one of the recognized image extensions."""
    return path.suffix.lower().lstrip(".") in config.IMAGE_EXTENSIONS


def read_dimensions(path: Path) -> tuple[int, int]:
    """Read ``(width, height)`` from the image header without decoding pixels.

    Raises:
        OSError: If the file cannot be opened or is not a recognized image
    """
    # Image.open is lazy: only the header is parsed until load() is called
    with Image.open(path) as img:
        return img.size


def probe_frame(path: Path) -> FrameInfo | None:
    """Return FrameInfo for *path*, or None when its header cannot be read."""
    try:
        width, height = read_dimensions(path)
    except (OSError, UnidentifiedImageError, ValueError) as e:
        logger.debug(f"Skipping unreadable frame {path}: {e}")
        return None

    try:
        size = path.stat().st_size
    except OSError:
        size = 0

    return FrameInfo(path=str(path), width=width, height=height, size=size)


def _walk_folder(directory: Path, config: ConversionConfig) -> list[Path]:
    files: list[Path] = []
    for root, _dirs, names in os.walk(directory):
        for name in names:
            path = Path(root) / name
            if path.is_file() and is_image_file(path, config):
                files.append(path.absolute())
    files.sort(key=lambda p: str(p))
    return files


def _filter_paths(paths: Iterable[str], config: ConversionConfig) -> list[Path]:
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            logger.debug(f"Skipping missing input {raw}")
            continue
        if not is_image_file(path, config):
            logger.debug(f"Skipping non-image input {raw}")
            continue
        files.append(path.absolute())
    return files


def scan_frames(
    input_mode: str,
    input_path: str | Path,
    input_paths: Iterable[str | Path] | None = None,
    config: ConversionConfig = DEFAULT_CONVERSION_CONFIG,
) -> FrameSet:
    """Enumerate and validate candidate frames.

    Args:
        input_mode: ``"folder"`` to walk *input_path*, ``"files"`` for an explicit list
        input_path: Folder to walk, or the single file used when *input_paths* is None
        input_paths: Explicit ordered list of frame files (files mode)
        config: Conversion configuration providing the recognized extensions

    Returns:
        FrameSet with every readable frame, in deterministic order

    Raises:
        DirectoryNotFound: If folder mode is used and *input_path* does not exist
        EmptyInput: If no readable image frames remain
    """
    if input_mode == "folder":
        directory = Path(input_path)
        if not directory.is_dir():
            raise DirectoryNotFound(
                f"Directory does not exist: {directory}", context={"input_path": str(directory)}
            )
        candidates = _walk_folder(directory, config)
    elif input_mode == "files":
        raw_paths = [str(p) for p in input_paths] if input_paths is not None else [str(input_path)]
        candidates = _filter_paths(raw_paths, config)
    else:
        raise InputError(f"Unknown input mode: {input_mode!r}")

    frames = [info for info in (probe_frame(p) for p in candidates) if info is not None]

    if not frames:
        raise EmptyInput("No image files found", context={"input_path": str(input_path)})

    frame_set = FrameSet(frames=tuple(frames))
    logger.info(
        f"Scanned {frame_set.total} frames "
        f"({'uniform' if frame_set.all_same_size else 'mixed'} size, base {frame_set.base_size})"
    )
    return frame_set
