import logging
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from framelab.system_tools import ToolInfo

# ---------------------------------------------------------------------------
# Frame generation helpers
# ---------------------------------------------------------------------------


def make_frame_image(index: int, size: tuple[int, int] = (64, 64), alpha: bool = False) -> Image.Image:
    """Create a deterministic gradient frame that differs for every *index*."""
    width, height = size
    y, x = np.mgrid[0:height, 0:width]
    arr = np.zeros((height, width, 4 if alpha else 3), dtype=np.uint8)
    arr[..., 0] = (x * 4 + index * 20) % 256
    arr[..., 1] = (y * 4 + index * 7) % 256
    arr[..., 2] = (index * 25) % 256
    if alpha:
        arr[..., 3] = (x * 255 // max(width - 1, 1)).astype(np.uint8)
    return Image.fromarray(arr)


def write_frames(
    directory: Path,
    count: int = 10,
    size: tuple[int, int] = (64, 64),
    ext: str = "png",
    alpha: bool = False,
    start: int = 0,
) -> list[Path]:
    """Write *count* frames named ``frame_NNN.<ext>`` into *directory*."""
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for i in range(start, start + count):
        path = directory / f"frame_{i:03d}.{ext}"
        image = make_frame_image(i, size, alpha=alpha)
        if ext in ("jpg", "jpeg"):
            image = image.convert("RGB")
        image.save(path)
        paths.append(path)
    return paths


@pytest.fixture
def frames_dir(tmp_path):
    """Folder with 10 distinct 64×64 PNG frames."""
    directory = tmp_path / "clip"
    write_frames(directory, count=10)
    return directory


@pytest.fixture
def alpha_frames_dir(tmp_path):
    """Folder with 5 distinct 32×24 RGBA PNG frames."""
    directory = tmp_path / "alpha_clip"
    write_frames(directory, count=5, size=(32, 24), alpha=True)
    return directory


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "out"


# ---------------------------------------------------------------------------
# Tool discovery
# ---------------------------------------------------------------------------


def _unavailable(tool_key, *args, **kwargs):
    return ToolInfo(name=tool_key, available=False)


_DISCOVERY_TARGETS = (
    "framelab.pipeline.discover_tool",
    "framelab.compression.discover_tool",
    "framelab.encoders.webp.discover_tool",
    "framelab.external_engines.ffmpeg.discover_tool",
    "framelab.external_engines.webpmux.discover_tool",
    "framelab.external_engines.gifsicle.discover_tool",
    "framelab.external_engines.oxipng.discover_tool",
)


@pytest.fixture
def no_external_tools(monkeypatch):
    """Pretend no external binaries are installed so fallbacks always run."""
    for target in _DISCOVERY_TARGETS:
        monkeypatch.setattr(target, _unavailable)


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Undo handlers installed by setup_logging() during a test."""
    root = logging.getLogger()
    handlers_before = list(root.handlers)
    level_before = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers_before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level_before)
