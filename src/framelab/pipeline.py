"""Conversion pipeline: scan, encode each format, compress, report.

For every requested format the pipeline walks the same small state machine::

    Start -> TryExternal -> Success
                         -> FallBack -> TryFallback -> Success | Fail

The external encoder (FFmpeg) is attempted first. Anything short of a
cancellation (tool missing, mixed frame extensions, a failed process) moves
on to the in-process encoder for that format. Success leaves only the final
file on disk; failure leaves nothing behind.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from .compression import compress_output
from .config import (
    DEFAULT_COMPRESSION_CONFIG,
    DEFAULT_CONVERSION_CONFIG,
    DEFAULT_ENGINE_CONFIG,
    CompressionConfig,
    ConversionConfig,
    EngineConfig,
)
from .control import ControlToken
from .encoders import encode_apng, encode_gif, encode_webp
from .error_handling import (
    Cancelled,
    CompressionFailure,
    EncodeFailure,
    FrameLabError,
    MixedExtensions,
    ToolUnavailable,
    clean_error_message,
    log_info_with_context,
    log_warning_with_context,
)
from .external_engines import ffmpeg
from .models import (
    CompressionDirective,
    ConversionRequest,
    ConversionResult,
    FrameSet,
    OutputFormat,
)
from .progress import ProgressCallback, ProgressReporter
from .scanner import scan_frames
from .system_tools import ToolInfo, discover_tool

logger = logging.getLogger(__name__)


def resolve_base_name(request: ConversionRequest, frame_set: FrameSet) -> str:
    """Return ``<name>_<W>x<H>`` for the outputs of *request*.

    The name is the requested output name, otherwise the input folder's name
    (folder mode) or the first frame's stem (files mode).
    """
    width, height = frame_set.base_size
    if request.output_name:
        name = request.output_name
    elif request.input_mode == "folder":
        name = Path(request.input_path).resolve().name or "animation"
    else:
        name = Path(frame_set.frames[0].path).stem or "animation"
    return f"{name}_{width}x{height}"


def output_path_for(output_dir: Path, base_name: str, fmt: OutputFormat) -> Path:
    return output_dir / f"{base_name}.{fmt.extension}"


class Converter:
    """Runs conversion requests and exposes pause / resume / cancel.

    One ``Converter`` runs one request at a time. ``pause()``, ``resume()``
    and ``cancel()`` are safe to call from any thread while ``convert()``
    runs; a new ``convert()`` call starts with a fresh RUNNING state.

    Example:
        >>> converter = Converter(progress_callback=print)
        >>> request = ConversionRequest("frames/", "out/", ["gif", "apng"], fps=12)
        >>> for result in converter.convert(request):
        ...     print(result.format, result.success, result.path)
    """

    def __init__(
        self,
        engine_config: EngineConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        conversion_config: ConversionConfig | None = None,
        compression_config: CompressionConfig | None = None,
    ):
        self.engine_config = engine_config or DEFAULT_ENGINE_CONFIG
        self.conversion_config = conversion_config or DEFAULT_CONVERSION_CONFIG
        self.compression_config = compression_config or DEFAULT_COMPRESSION_CONFIG
        self.progress_callback = progress_callback
        self.token = ControlToken(self.conversion_config.PAUSE_POLL_INTERVAL)
        self._tools: dict[str, ToolInfo] = {}

    # Control --------------------------------------------------------------

    def pause(self) -> None:
        self.token.pause()

    def resume(self) -> None:
        self.token.resume()

    def cancel(self) -> None:
        self.token.cancel()

    # Tools ----------------------------------------------------------------

    def _tool(self, key: str) -> ToolInfo:
        if key not in self._tools:
            self._tools[key] = discover_tool(key, self.engine_config, self.conversion_config)
        return self._tools[key]

    # Conversion -----------------------------------------------------------

    def convert(self, request: ConversionRequest) -> list[ConversionResult]:
        """Run *request* and return one result per recognized format.

        Raises:
            InputError: If the input has no usable frames; nothing is encoded
        """
        self.token.reset()
        self._tools = {}

        frame_set = scan_frames(
            request.input_mode,
            request.input_path,
            request.input_paths,
            self.conversion_config,
        )

        output_dir = Path(request.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        base_name = resolve_base_name(request, frame_set)

        log_info_with_context(
            f"Converting {frame_set.total} frames",
            context={
                "formats": ",".join(request.formats),
                "fps": request.fps,
                "loop": request.loop_count,
                "output": str(output_dir / base_name),
            },
            logger=logger,
        )

        results: list[ConversionResult] = []
        for requested in request.formats:
            fmt = OutputFormat.parse(requested)
            if fmt is None:
                log_warning_with_context(f"Skipping unknown output format {requested!r}", logger=logger)
                continue
            output_path = output_path_for(output_dir, base_name, fmt)
            results.append(self._convert_format(fmt, frame_set, output_path, request))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"✅ {succeeded}/{len(results)} formats converted")
        return results

    def _convert_format(
        self,
        fmt: OutputFormat,
        frame_set: FrameSet,
        output_path: Path,
        request: ConversionRequest,
    ) -> ConversionResult:
        reporter = ProgressReporter(self.progress_callback, format=fmt.value, file=str(output_path))
        reporter.emit(f"Starting {fmt.name} conversion", 0, frame_set.total, 0.0)

        try:
            self._encode(fmt, frame_set, output_path, request, reporter)
        except Cancelled as e:
            logger.info(f"⏹️  {fmt.name} conversion cancelled")
            return ConversionResult(fmt.value, str(output_path), False, error=str(e))
        except FrameLabError as e:
            logger.error(f"❌ {fmt.name} conversion failed: {e}")
            return ConversionResult(
                fmt.value, str(output_path), False, error=clean_error_message(str(e))
            )

        return self._compress(fmt, output_path, request.compression, reporter)

    def _encode(
        self,
        fmt: OutputFormat,
        frame_set: FrameSet,
        output_path: Path,
        request: ConversionRequest,
        reporter: ProgressReporter,
    ) -> Path:
        lossy_quality = request.compression.lossy_quality

        if fmt is OutputFormat.APNG and lossy_quality is not None:
            # Colour reduction only exists in the in-process APNG encoder
            log_info_with_context(
                "Lossy APNG requested, using in-process encoder",
                context={"quality": lossy_quality},
                logger=logger,
            )
        else:
            try:
                return ffmpeg.encode_sequence(
                    frame_set,
                    output_path,
                    fmt,
                    fps=request.fps,
                    loop_count=request.loop_count,
                    token=self.token,
                    reporter=reporter,
                    tool=self._tool("ffmpeg"),
                    config=self.conversion_config,
                )
            except (ToolUnavailable, MixedExtensions, EncodeFailure) as e:
                log_warning_with_context(
                    f"External {fmt.name} encode unavailable, falling back: {e}",
                    context={"reason": type(e).__name__},
                    logger=logger,
                )

        return self._fallback(fmt)(
            frame_set, output_path, request, reporter, lossy_quality
        )

    def _fallback(self, fmt: OutputFormat) -> Callable[..., Path]:
        return {
            OutputFormat.GIF: self._fallback_gif,
            OutputFormat.WEBP: self._fallback_webp,
            OutputFormat.APNG: self._fallback_apng,
        }[fmt]

    def _fallback_gif(self, frame_set, output_path, request, reporter, lossy_quality) -> Path:
        return encode_gif(
            frame_set,
            output_path,
            fps=request.fps,
            loop_count=request.loop_count,
            token=self.token,
            reporter=reporter,
        )

    def _fallback_webp(self, frame_set, output_path, request, reporter, lossy_quality) -> Path:
        return encode_webp(
            frame_set,
            output_path,
            fps=request.fps,
            loop_count=request.loop_count,
            token=self.token,
            reporter=reporter,
            lossy_quality=lossy_quality,
            tool=self._tool("webpmux"),
            config=self.conversion_config,
        )

    def _fallback_apng(self, frame_set, output_path, request, reporter, lossy_quality) -> Path:
        return encode_apng(
            frame_set,
            output_path,
            fps=request.fps,
            loop_count=request.loop_count,
            token=self.token,
            reporter=reporter,
            lossy_quality=lossy_quality,
        )

    def _compress(
        self,
        fmt: OutputFormat,
        output_path: Path,
        directive: CompressionDirective,
        reporter: ProgressReporter,
    ) -> ConversionResult:
        result = ConversionResult(fmt.value, str(output_path), True)

        reporter.emit("Compressing output", 0, 1, 0.0)
        try:
            outcome = compress_output(
                output_path, fmt, directive, self.engine_config, self.compression_config
            )
        except CompressionFailure as e:
            log_warning_with_context(
                f"Compression failed, keeping uncompressed output: {e}",
                context={"format": fmt.value},
                logger=logger,
            )
            size = output_path.stat().st_size
            result.error = clean_error_message(str(e))
            result.original_size = size
            result.compressed_size = size
            return result

        result.original_size = outcome.original_size
        result.compressed_size = outcome.compressed_size
        reporter.emit("Compression complete", 1, 1, 100.0)
        if outcome.saved_bytes > 0:
            logger.info(
                f"📦 {output_path.name}: {outcome.original_size} -> {outcome.compressed_size} bytes "
                f"via {outcome.method}"
            )
        return result


def convert_frames(
    input_path: str,
    output_dir: str,
    formats: list[str],
    *,
    fps: float = 10.0,
    loop_count: int = 0,
    input_mode: str = "folder",
    input_paths: list[str] | None = None,
    output_name: str | None = None,
    compression: CompressionDirective | None = None,
    progress_callback: ProgressCallback | None = None,
    engine_config: EngineConfig | None = None,
) -> list[ConversionResult]:
    """Convenience wrapper: build a request and run it on a fresh Converter."""
    request = ConversionRequest(
        input_path=input_path,
        output_dir=output_dir,
        formats=formats,
        fps=fps,
        loop_count=loop_count,
        input_mode=input_mode,
        input_paths=input_paths,
        output_name=output_name,
        compression=compression or CompressionDirective.none(),
    )
    return Converter(engine_config=engine_config, progress_callback=progress_callback).convert(request)
