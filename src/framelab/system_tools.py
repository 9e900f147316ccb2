from __future__ import annotations

"""Utility helpers for locating and verifying external system tools.

FFmpeg, webpmux, gifsicle and oxipng are all optional: every caller is
expected to handle ``available=False`` by switching to an in-process
fallback. A candidate only counts as available after it has been executed
successfully with its version flag, so a stale or non-executable file on
disk is treated the same as a missing one.
"""

import logging
import os
import platform
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from shutil import which

from .error_handling import ToolUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolInfo:
    """Metadata for an external binary discovered on the system."""

    name: str
    available: bool
    version: str | None = None
    source: str | None = None

    def require(self) -> None:
        """Raise *ToolUnavailable* if the tool isn't available."""
        if not self.available:
            raise ToolUnavailable(f"Required tool '{self.name}' not found or not executable")


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def _which(cmd: str) -> str | None:
    """Return full path if *cmd* is executable in $PATH, else *None*."""
    return which(cmd)


def _extract_version(output: str, pattern: str) -> str | None:
    match = re.search(pattern, output)
    if match:
        return match.group(1)
    return None


def _run_version_cmd(cmd: list[str], regex: str, timeout: int = 5) -> tuple[bool, str | None]:
    """Execute a version probe; return (ran successfully, parsed version)."""
    try:
        completed = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Version probe {cmd[0]} failed: {e}")
        return False, None

    version = _extract_version(completed.stdout, regex) or _extract_version(
        completed.stderr, regex
    )

    # Some tools print a usable banner with a non-zero exit status
    if completed.returncode != 0 and not version:
        return False, None

    return True, version


def _find_repository_binary(tool_key: str) -> str | None:
    """Find a bundled binary in the project's bin/<platform>/<arch>/ directory."""
    platform_map = {
        "Darwin": "darwin",
        "Linux": "linux",
        "Windows": "windows",
    }
    arch_map = {
        "x86_64": "x86_64",
        "AMD64": "x86_64",
        "arm64": "arm64",
        "aarch64": "arm64",
    }

    platform_dir = platform_map.get(platform.system())
    arch_dir = arch_map.get(platform.machine())
    if not platform_dir or not arch_dir:
        return None

    # Find project root (directory containing pyproject.toml or .git)
    current = Path(__file__).parent
    while current.parent != current:
        if any((current / marker).exists() for marker in ["pyproject.toml", ".git"]):
            break
        current = current.parent
    else:
        return None

    binary_name = f"{tool_key}.exe" if platform_dir == "windows" else tool_key
    binary_path = current / "bin" / platform_dir / arch_dir / binary_name

    if binary_path.exists() and os.access(binary_path, os.X_OK):
        return str(binary_path)

    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_EXECUTABLES: dict[str, str] = {
    "ffmpeg": "ffmpeg",
    "webpmux": "webpmux",
    "gifsicle": "gifsicle",
    "oxipng": "oxipng",
}

_VERSION_FLAGS: dict[str, str] = {
    "ffmpeg": "-version",
    "webpmux": "-version",
    "gifsicle": "--version",
    "oxipng": "--version",
}

_VERSION_PATTERNS: dict[str, str] = {
    "ffmpeg": r"ffmpeg version (\S+)",
    "webpmux": r"(\d+\.\d+\.\d+)",
    "gifsicle": r"LCDF Gifsicle (\S+)",
    "oxipng": r"oxipng (\S+)",
}

# Map tool keys to configuration attributes
_CONFIG_MAPPING: dict[str, str] = {
    "ffmpeg": "FFMPEG_PATH",
    "webpmux": "WEBPMUX_PATH",
    "gifsicle": "GIFSICLE_PATH",
    "oxipng": "OXIPNG_PATH",
}


def _probe(tool_key: str, candidate: str, source: str, timeout: int) -> ToolInfo | None:
    cmd = [candidate, _VERSION_FLAGS[tool_key]]
    ok, version = _run_version_cmd(cmd, _VERSION_PATTERNS[tool_key], timeout)
    if not ok:
        logger.debug(f"{tool_key} candidate {candidate} ({source}) is not executable")
        return None
    logger.debug(f"Found {tool_key} at {candidate} ({source}), version {version}")
    return ToolInfo(name=candidate, available=True, version=version, source=source)


def candidate_locations(tool_key: str, engine_config=None, conversion_config=None) -> list[tuple[str, str]]:
    """Return ``(path, source)`` pairs probed for *tool_key*, in priority order."""
    if tool_key not in _EXECUTABLES:
        raise ValueError(f"Unknown tool: {tool_key}")

    if engine_config is None:
        from .config import DEFAULT_ENGINE_CONFIG

        engine_config = DEFAULT_ENGINE_CONFIG
    if conversion_config is None:
        from .config import DEFAULT_CONVERSION_CONFIG

        conversion_config = DEFAULT_CONVERSION_CONFIG

    executable = _EXECUTABLES[tool_key]
    candidates: list[tuple[str, str]] = []

    configured_path = getattr(engine_config, _CONFIG_MAPPING[tool_key], "")
    if configured_path:
        candidates.append((configured_path, "config"))

    repo_binary = _find_repository_binary(executable)
    if repo_binary:
        candidates.append((repo_binary, "bundled"))

    for directory in conversion_config.TOOL_CANDIDATE_DIRS:
        path = Path(directory) / executable
        if path.exists():
            candidates.append((str(path), "install-dir"))

    path_hit = _which(executable)
    if path_hit:
        candidates.append((path_hit, "PATH"))

    # Drop duplicates while keeping the first (highest priority) source
    seen: set[str] = set()
    unique: list[tuple[str, str]] = []
    for path, source in candidates:
        if path not in seen:
            seen.add(path)
            unique.append((path, source))
    return unique


def discover_tool(tool_key: str, engine_config=None, conversion_config=None) -> ToolInfo:
    """Return *ToolInfo* for *tool_key*, probing each candidate in order.

    Args:
        tool_key: Tool identifier (ffmpeg, webpmux, gifsicle, oxipng)
        engine_config: EngineConfig instance (uses DEFAULT_ENGINE_CONFIG if None)
        conversion_config: ConversionConfig for candidate dirs and probe timeout

    Returns:
        ToolInfo for the first candidate that runs, or an unavailable ToolInfo
    """
    if conversion_config is None:
        from .config import DEFAULT_CONVERSION_CONFIG

        conversion_config = DEFAULT_CONVERSION_CONFIG

    for candidate, source in candidate_locations(tool_key, engine_config, conversion_config):
        info = _probe(tool_key, candidate, source, conversion_config.TOOL_VERIFY_TIMEOUT)
        if info is not None:
            return info

    logger.info(f"{tool_key} not found; in-process fallback will be used where possible")
    return ToolInfo(name=_EXECUTABLES[tool_key], available=False, version=None)


def get_available_tools(engine_config=None, conversion_config=None) -> dict[str, ToolInfo]:
    """Get availability status for all supported tools without requiring them."""
    return {
        key: discover_tool(key, engine_config, conversion_config) for key in _CONFIG_MAPPING
    }
