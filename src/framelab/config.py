"""Configuration settings for FrameLab."""

import os
from dataclasses import dataclass


@dataclass
class EngineConfig:
    """Locations of the external binaries FrameLab can drive.

    An empty string means "auto-discover": the tool is probed over the
    candidate install directories and then ``$PATH``.
    """

    # Path to FFmpeg executable.
    # Override with: FRAMELAB_FFMPEG_PATH
    FFMPEG_PATH: str = ""

    # Path to webpmux (libwebp muxing tool) used to assemble animated WebP.
    # Override with: FRAMELAB_WEBPMUX_PATH
    WEBPMUX_PATH: str = ""

    # Path to gifsicle, used for local lossy GIF recompression.
    # Override with: FRAMELAB_GIFSICLE_PATH
    GIFSICLE_PATH: str = ""

    # Path to oxipng, used for lossless PNG/APNG re-optimization.
    # Override with: FRAMELAB_OXIPNG_PATH
    OXIPNG_PATH: str = ""

    def __post_init__(self) -> None:
        env_overrides = {
            "FFMPEG_PATH": "FRAMELAB_FFMPEG_PATH",
            "WEBPMUX_PATH": "FRAMELAB_WEBPMUX_PATH",
            "GIFSICLE_PATH": "FRAMELAB_GIFSICLE_PATH",
            "OXIPNG_PATH": "FRAMELAB_OXIPNG_PATH",
        }

        # Apply overrides from environment variables
        for attr_name, env_var_name in env_overrides.items():
            env_value = os.getenv(env_var_name)
            if env_value:
                setattr(self, attr_name, env_value)


@dataclass
class ConversionConfig:
    """Runtime knobs for frame scanning, encoding loops and tool probing."""

    # Extensions accepted by the frame scanner (compared lower-case)
    IMAGE_EXTENSIONS: tuple[str, ...] = (
        "png",
        "jpg",
        "jpeg",
        "webp",
        "gif",
        "apng",
        "bmp",
        "tif",
        "tiff",
    )

    # Sleep between checks while a conversion is paused (seconds)
    PAUSE_POLL_INTERVAL: float = 0.05

    # Sleep between control-state checks in the external process supervisor
    SUPERVISOR_POLL_INTERVAL: float = 0.1

    # External progress never reports 100% before the process exit is confirmed
    PROGRESS_CAP_PERCENT: float = 99.5

    # Directories probed (in order) before falling back to $PATH
    TOOL_CANDIDATE_DIRS: tuple[str, ...] = (
        "/opt/homebrew/bin",
        "/usr/local/bin",
        "/usr/bin",
    )

    # Seconds allowed for "<tool> -version" during verification
    TOOL_VERIFY_TIMEOUT: int = 5

    # Hard limit for one external encode (None = unlimited)
    EXTERNAL_TIMEOUT: float | None = None

    # Quality used for per-frame static WebP encodes before muxing
    WEBP_FRAME_QUALITY: int = 80

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.PAUSE_POLL_INTERVAL <= 0 or self.SUPERVISOR_POLL_INTERVAL <= 0:
            raise ValueError("Poll intervals must be positive")

        if not 0 < self.PROGRESS_CAP_PERCENT <= 100:
            raise ValueError(
                f"PROGRESS_CAP_PERCENT must be in (0, 100], got {self.PROGRESS_CAP_PERCENT}"
            )

        if not 0 <= self.WEBP_FRAME_QUALITY <= 100:
            raise ValueError(
                f"WEBP_FRAME_QUALITY must be between 0 and 100, got {self.WEBP_FRAME_QUALITY}"
            )

        self.IMAGE_EXTENSIONS = tuple(ext.lower().lstrip(".") for ext in self.IMAGE_EXTENSIONS)


@dataclass
class CompressionConfig:
    """Settings for post-encode compression."""

    # Remote compression endpoint (TinyPNG-compatible API)
    # Override with: FRAMELAB_REMOTE_ENDPOINT
    REMOTE_ENDPOINT: str = "https://api.tinify.com/shrink"

    # Timeout for each HTTP request (seconds)
    REMOTE_TIMEOUT: float = 60.0

    # Timeout for local optimizer binaries (seconds)
    LOCAL_TOOL_TIMEOUT: int = 300

    def __post_init__(self) -> None:
        env_value = os.getenv("FRAMELAB_REMOTE_ENDPOINT")
        if env_value:
            self.REMOTE_ENDPOINT = env_value

        if self.REMOTE_TIMEOUT <= 0:
            raise ValueError("REMOTE_TIMEOUT must be positive")


# Default configuration instances
DEFAULT_ENGINE_CONFIG = EngineConfig()
DEFAULT_CONVERSION_CONFIG = ConversionConfig()
DEFAULT_COMPRESSION_CONFIG = CompressionConfig()
