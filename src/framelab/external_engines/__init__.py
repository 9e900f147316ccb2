from .common import ProcessLifecycle, SupervisedResult, run_command, run_supervised
from .ffmpeg import encode_sequence as ffmpeg_encode_sequence
from .gifsicle import optimize as gifsicle_optimize
from .oxipng import optimize as oxipng_optimize
from .webpmux import mux_frames as webpmux_mux_frames

__all__ = [
    # Process supervision
    "ProcessLifecycle",
    "SupervisedResult",
    "run_command",
    "run_supervised",
    # FFmpeg
    "ffmpeg_encode_sequence",
    # webpmux
    "webpmux_mux_frames",
    # Optimizers
    "gifsicle_optimize",
    "oxipng_optimize",
]
