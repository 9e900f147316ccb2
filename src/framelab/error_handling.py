"""Standardized Error Handling Utilities

Defines the FrameLab error taxonomy and the logging helpers used to raise and
report those errors consistently across the conversion pipeline.

Propagation rules:
    InputError          aborts a whole request before any encoder runs.
    ToolUnavailable     is caught by the pipeline and triggers a fallback encoder.
    EncodeFailure       is recorded on the affected format's result.
    Cancelled           is recorded on the affected format's result.
    CompressionFailure  is recorded while the uncompressed output stays valid.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum


class ErrorLevel(Enum):
    """Error severity levels for consistent logging."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class FrameLabError(Exception):
    """Base exception class for all FrameLab errors."""

    def __init__(
        self, message: str, cause: Exception | None = None, context: dict | None = None
    ):
        super().__init__(message)
        self.cause = cause
        self.context = context or {}

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.cause:
            return f"{base_msg} (caused by: {self.cause})"
        return base_msg


class InputError(FrameLabError):
    """Raised when the request has nothing valid to encode."""

    pass


class EmptyInput(InputError):
    """Raised when scanning finds no decodable image files."""

    pass


class DirectoryNotFound(InputError):
    """Raised when a folder-mode input path does not exist."""

    pass


class MixedExtensions(InputError):
    """Raised when frames cannot be exposed as one numbered sequence pattern."""

    pass


class ToolUnavailable(FrameLabError):
    """Raised when an external encoder or muxer cannot be found or started."""

    pass


class EncodeFailure(FrameLabError):
    """Raised when an external process or an in-process codec fails."""

    pass


class Cancelled(FrameLabError):
    """Raised when the user cancels a running conversion."""

    def __init__(self, message: str = "Conversion cancelled", **kwargs):
        super().__init__(message, **kwargs)


class CompressionFailure(FrameLabError):
    """Raised when a post-encode compression step fails."""

    pass


def handle_error(
    error: Exception,
    operation: str,
    error_type: type[FrameLabError] = EncodeFailure,
    level: ErrorLevel = ErrorLevel.ERROR,
    context: dict | None = None,
    logger: logging.Logger | None = None,
    reraise: bool = True,
) -> FrameLabError | None:
    """Standardized error handling with consistent logging and error transformation.

    Args:
        error: Original exception that occurred
        operation: Description of operation that failed
        error_type: Type of FrameLabError to raise
        level: Logging level for the error
        context: Additional context information
        logger: Logger to use (defaults to module logger)
        reraise: Whether to reraise the transformed exception

    Returns:
        The transformed error if reraise=False, otherwise None

    Raises:
        FrameLabError: Transformed error if reraise=True
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    message = f"Failed to {operation}: {error}"

    error_context = dict(context or {})
    error_context.update(
        {
            "operation": operation,
            "original_error_type": type(error).__name__,
        }
    )

    transformed_error = error_type(message, cause=error, context=error_context)

    log_message = f"🚨 {operation.capitalize()} failed: {error}"
    context_str = ", ".join(f"{k}={v}" for k, v in error_context.items())
    if context_str:
        log_message += f" (context: {context_str})"

    log_func = getattr(logger, level.value)
    log_func(log_message)

    # Log traceback at debug level for investigation
    if level in [ErrorLevel.ERROR, ErrorLevel.CRITICAL]:
        logger.debug(f"Traceback for {operation}: {traceback.format_exc()}")

    if reraise:
        raise transformed_error from error
    return transformed_error


@contextmanager
def error_context(
    operation: str,
    error_type: type[FrameLabError] = EncodeFailure,
    level: ErrorLevel = ErrorLevel.ERROR,
    context: dict | None = None,
    logger: logging.Logger | None = None,
) -> Iterator[None]:
    """Context manager for standardized error handling.

    Usage:
        with error_context("encode GIF frame", EncodeFailure, context={'frame': 3}):
            writer.write(frame)

    FrameLab errors pass through unchanged; anything else is wrapped into
    *error_type*.
    """
    try:
        yield
    except FrameLabError:
        raise
    except Exception as e:
        handle_error(e, operation, error_type, level, context, logger, reraise=True)


def log_warning_with_context(
    message: str, context: dict | None = None, logger: logging.Logger | None = None
) -> None:
    """Log a warning with standardized context formatting."""
    if logger is None:
        logger = logging.getLogger(__name__)

    warning_msg = f"⚠️  {message}"
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        warning_msg += f" (context: {context_str})"

    logger.warning(warning_msg)


def log_info_with_context(
    message: str, context: dict | None = None, logger: logging.Logger | None = None
) -> None:
    """Log an info message with standardized context formatting."""
    if logger is None:
        logger = logging.getLogger(__name__)

    info_msg = f"ℹ️  {message}"
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        info_msg += f" (context: {context_str})"

    logger.info(info_msg)


def clean_error_message(error_msg: str, max_length: int = 500) -> str:
    """Collapse an error message to one line suitable for a result record."""
    import re

    cleaned = str(error_msg).replace("\n", " ").replace("\r", " ").replace("\t", " ")
    cleaned = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."

    return cleaned
