"""FrameLab - animated GIF, WebP and APNG from frame sequences."""

__version__: str = "0.1.0"

from .control import ControlState, ControlToken
from .error_handling import (
    Cancelled,
    CompressionFailure,
    DirectoryNotFound,
    EmptyInput,
    EncodeFailure,
    FrameLabError,
    InputError,
    MixedExtensions,
    ToolUnavailable,
)
from .models import (
    CompressionDirective,
    CompressionMode,
    ConversionRequest,
    ConversionResult,
    FrameInfo,
    FrameSet,
    OutputFormat,
    ProgressEvent,
)
from .pipeline import Converter, convert_frames
from .scanner import scan_frames

__all__ = [
    "__version__",
    # Pipeline
    "Converter",
    "convert_frames",
    "scan_frames",
    # Control
    "ControlState",
    "ControlToken",
    # Models
    "CompressionDirective",
    "CompressionMode",
    "ConversionRequest",
    "ConversionResult",
    "FrameInfo",
    "FrameSet",
    "OutputFormat",
    "ProgressEvent",
    # Errors
    "Cancelled",
    "CompressionFailure",
    "DirectoryNotFound",
    "EmptyInput",
    "EncodeFailure",
    "FrameLabError",
    "InputError",
    "MixedExtensions",
    "ToolUnavailable",
]
