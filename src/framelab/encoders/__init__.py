"""In-process fallback encoders, one per output format."""

from .apng import APNGWriter, encode_apng
from .gif import encode_gif
from .webp import encode_webp

__all__ = [
    "APNGWriter",
    "encode_apng",
    "encode_gif",
    "encode_webp",
]
