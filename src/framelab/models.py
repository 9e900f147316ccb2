"""Data structures shared by the scanner, encoders and pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .error_handling import InputError


class OutputFormat(str, Enum):
    """Animated output formats FrameLab can produce."""

    GIF = "gif"
    WEBP = "webp"
    APNG = "apng"

    @property
    def extension(self) -> str:
        """File extension for the format; APNG is written as ``.png``."""
        return "png" if self is OutputFormat.APNG else self.value

    @classmethod
    def parse(cls, value: str) -> OutputFormat | None:
        """Return the format for *value* (case-insensitive) or None if unknown."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class CompressionMode(str, Enum):
    """Post-encode compression strategies."""

    NONE = "none"
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class CompressionDirective:
    """What to do with a finished output file."""

    mode: CompressionMode = CompressionMode.NONE
    quality: int = 80
    api_key: str | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.quality <= 100:
            raise InputError(f"Compression quality must be between 0 and 100, got {self.quality}")
        if self.mode is CompressionMode.REMOTE and not self.api_key:
            raise InputError("Remote compression requires an API key")

    @classmethod
    def none(cls) -> CompressionDirective:
        return cls(CompressionMode.NONE)

    @classmethod
    def local(cls, quality: int) -> CompressionDirective:
        return cls(CompressionMode.LOCAL, quality=quality)

    @classmethod
    def remote(cls, api_key: str) -> CompressionDirective:
        return cls(CompressionMode.REMOTE, api_key=api_key)

    @property
    def lossy_quality(self) -> int | None:
        """Quality driving in-encoder lossy reduction, only for local compression."""
        return self.quality if self.mode is CompressionMode.LOCAL else None


@dataclass(frozen=True)
class FrameInfo:
    """One validated source frame."""

    path: str
    width: int
    height: int
    size: int

    @property
    def extension(self) -> str:
        return Path(self.path).suffix.lower().lstrip(".")


@dataclass(frozen=True)
class FrameSet:
    """Ordered, non-empty collection of validated frames for one conversion."""

    frames: tuple[FrameInfo, ...]

    def __post_init__(self) -> None:
        if not self.frames:
            raise InputError("A FrameSet needs at least one frame")

    @property
    def total(self) -> int:
        return len(self.frames)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.frames]

    @property
    def base_size(self) -> tuple[int, int]:
        first = self.frames[0]
        return first.width, first.height

    @property
    def all_same_size(self) -> bool:
        width, height = self.base_size
        return all(f.width == width and f.height == height for f in self.frames)

    @property
    def extensions(self) -> set[str]:
        return {f.extension for f in self.frames}

    @property
    def uniform_extension(self) -> str | None:
        """The shared extension of every frame, or None when they differ."""
        exts = self.extensions
        return exts.pop() if len(exts) == 1 else None

    def __len__(self) -> int:
        return len(self.frames)

    def __iter__(self):
        return iter(self.frames)


@dataclass
class ConversionRequest:
    """One end-to-end conversion: inputs, timing and requested outputs."""

    input_path: str
    output_dir: str
    formats: list[str]
    fps: float = 10.0
    loop_count: int = 0
    input_mode: str = "folder"
    input_paths: list[str] | None = None
    output_name: str | None = None
    compression: CompressionDirective = field(default_factory=CompressionDirective.none)

    def __post_init__(self) -> None:
        if self.input_mode not in ("folder", "files"):
            raise InputError(f"input_mode must be 'folder' or 'files', got {self.input_mode!r}")
        if not math.isfinite(self.fps) or self.fps <= 0:
            raise InputError(f"Frame rate must be positive, got {self.fps}")
        if self.loop_count < 0:
            raise InputError(f"Loop count must be non-negative, got {self.loop_count}")
        if not self.formats:
            raise InputError("At least one output format must be requested")


@dataclass
class ConversionResult:
    """Outcome for one requested format."""

    format: str
    path: str
    success: bool
    error: str | None = None
    original_size: int | None = None
    compressed_size: int | None = None

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "path": self.path,
            "success": self.success,
            "error": self.error,
            "originalSize": self.original_size,
            "compressedSize": self.compressed_size,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """A push-style progress notification."""

    phase: str
    current: int
    total: int
    percent: float
    format: str | None = None
    file: str | None = None
