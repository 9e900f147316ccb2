"""Post-encode compression of finished outputs.

Local compression re-optimizes the file with the best tool available for its
format and only keeps the result when it is smaller. Remote compression
uploads the file to a TinyPNG-compatible API and downloads the result.

Neither path ever leaves a broken primary output: work happens on a temp
sibling that is renamed over the original only once it is complete.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import requests
from PIL import Image, ImageSequence

from .config import (
    DEFAULT_COMPRESSION_CONFIG,
    DEFAULT_ENGINE_CONFIG,
    CompressionConfig,
    EngineConfig,
)
from .error_handling import (
    CompressionFailure,
    FrameLabError,
    error_context,
    log_info_with_context,
)
from .external_engines import gifsicle, oxipng
from .io import commit_output, file_size, remove_quietly, temp_output_path
from .models import CompressionDirective, CompressionMode, OutputFormat
from .system_tools import discover_tool

logger = logging.getLogger(__name__)


@dataclass
class CompressionOutcome:
    """Sizes before and after compression, in bytes."""

    original_size: int
    compressed_size: int
    method: str

    @property
    def saved_bytes(self) -> int:
        return self.original_size - self.compressed_size


def _keep_if_smaller(candidate: Path, output_path: Path, original_size: int) -> int:
    new_size = file_size(candidate)
    if new_size is None or new_size == 0:
        raise CompressionFailure(f"Compressor produced no output for {output_path.name}")
    if new_size < original_size:
        commit_output(candidate, output_path)
        return new_size
    logger.debug(f"Compressed {output_path.name} is not smaller ({new_size} >= {original_size}), kept original")
    return original_size


def _recompress_webp(input_path: Path, output_path: Path, quality: int) -> None:
    with Image.open(input_path) as img:
        loop = img.info.get("loop", 0)
        frames = []
        durations = []
        for frame in ImageSequence.Iterator(img):
            durations.append(frame.info.get("duration", img.info.get("duration", 100)))
            frames.append(frame.convert("RGBA"))

    first, rest = frames[0], frames[1:]
    if rest:
        first.save(
            output_path,
            format="WEBP",
            save_all=True,
            append_images=rest,
            duration=durations,
            loop=loop,
            quality=quality,
            method=6,
        )
    else:
        first.save(output_path, format="WEBP", quality=quality, method=6)


def compress_locally(
    output_path: Path,
    fmt: OutputFormat,
    quality: int,
    engine_config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    compression_config: CompressionConfig = DEFAULT_COMPRESSION_CONFIG,
) -> CompressionOutcome:
    """Re-optimize *output_path* in place at *quality* (0-100).

    A missing optimizer is not an error: the file is left as it is and both
    sizes are reported equal.

    Raises:
        CompressionFailure: If the optimizer ran and failed
    """
    original_size = file_size(output_path)
    if original_size is None:
        raise CompressionFailure(f"Output file is missing: {output_path}")

    candidate = temp_output_path(output_path.with_name(f"{output_path.stem}.opt{output_path.suffix}"))
    timeout = compression_config.LOCAL_TOOL_TIMEOUT
    method = "none"
    try:
        with error_context(
            f"compress {fmt.value} locally",
            CompressionFailure,
            context={"output": str(output_path), "quality": quality},
            logger=logger,
        ):
            if fmt is OutputFormat.GIF:
                tool = discover_tool("gifsicle", engine_config)
                if tool.available:
                    gifsicle.optimize(output_path, candidate, quality=quality, tool=tool, timeout=timeout)
                    method = "gifsicle"
            elif fmt is OutputFormat.APNG:
                tool = discover_tool("oxipng", engine_config)
                if tool.available:
                    oxipng.optimize(
                        output_path, candidate, quality=quality, animated=True, tool=tool, timeout=timeout
                    )
                    method = "oxipng"
            elif fmt is OutputFormat.WEBP:
                _recompress_webp(output_path, candidate, quality)
                method = "pillow"

            if method == "none":
                log_info_with_context(
                    "No local optimizer available, output left unchanged",
                    context={"format": fmt.value},
                    logger=logger,
                )
                return CompressionOutcome(original_size, original_size, method)

            compressed_size = _keep_if_smaller(candidate, output_path, original_size)
    except FrameLabError as e:
        if isinstance(e, CompressionFailure):
            raise
        raise CompressionFailure(f"Local compression failed: {e}", cause=e) from e
    finally:
        remove_quietly(candidate)

    return CompressionOutcome(original_size, compressed_size, method)


def compress_remotely(
    output_path: Path,
    fmt: OutputFormat,
    api_key: str,
    compression_config: CompressionConfig = DEFAULT_COMPRESSION_CONFIG,
    session: requests.Session | None = None,
) -> CompressionOutcome:
    """Compress *output_path* through the remote API and replace it.

    Raises:
        CompressionFailure: For APNG input, HTTP errors or a malformed response
    """
    if fmt is OutputFormat.APNG:
        raise CompressionFailure("Remote compression does not support APNG")

    original_size = file_size(output_path)
    if original_size is None:
        raise CompressionFailure(f"Output file is missing: {output_path}")

    http = session or requests.Session()
    timeout = compression_config.REMOTE_TIMEOUT
    candidate = temp_output_path(output_path.with_name(f"{output_path.stem}.remote{output_path.suffix}"))

    try:
        with open(output_path, "rb") as fp:
            response = http.post(
                compression_config.REMOTE_ENDPOINT,
                auth=("api", api_key),
                files={"file": (output_path.name, fp)},
                timeout=timeout,
            )
        if response.status_code >= 400:
            raise CompressionFailure(
                f"Remote compression failed with HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            url = response.json()["output"]["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise CompressionFailure("Remote compression returned no output URL", cause=e) from e

        download = http.get(url, auth=("api", api_key), timeout=timeout)
        if download.status_code >= 400:
            raise CompressionFailure(f"Downloading compressed output failed with HTTP {download.status_code}")

        candidate.write_bytes(download.content)
        compressed_size = file_size(candidate) or 0
        if compressed_size == 0:
            raise CompressionFailure("Remote compression returned an empty file")
        commit_output(candidate, output_path)
    except requests.RequestException as e:
        raise CompressionFailure(f"Remote compression request failed: {e}", cause=e) from e
    except OSError as e:
        raise CompressionFailure(f"Could not read or write {output_path.name}: {e}", cause=e) from e
    finally:
        remove_quietly(candidate)
        if session is None:
            http.close()

    return CompressionOutcome(original_size, compressed_size, "remote")


def compress_output(
    output_path: Path,
    fmt: OutputFormat,
    directive: CompressionDirective,
    engine_config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    compression_config: CompressionConfig = DEFAULT_COMPRESSION_CONFIG,
) -> CompressionOutcome:
    """Apply *directive* to a finished output file."""
    if directive.mode is CompressionMode.REMOTE:
        return compress_remotely(output_path, fmt, directive.api_key or "", compression_config)
    if directive.mode is CompressionMode.LOCAL:
        return compress_locally(output_path, fmt, directive.quality, engine_config, compression_config)

    size = file_size(output_path) or 0
    return CompressionOutcome(size, size, "none")
