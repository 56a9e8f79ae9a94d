"""
Image loading utilities
"""

import numpy as np
from pathlib import Path
from typing import Optional, Union
from PIL import Image

# Largest edge of the buffer that gets hashed
HASH_MAX_DIMENSION = 256
# Largest edge of the buffer used for quality and mid-level features
ANALYSIS_MAX_DIMENSION = 1024

Image.MAX_IMAGE_PIXELS = 100_000_000


class ImageLoadError(Exception):
    """Raised when a file cannot be decoded into pixels"""


def open_rgba(image_path: Union[str, Path]) -> Image.Image:
    """Decode an image file into an RGBA Pillow image"""
    try:
        with Image.open(image_path) as img:
            img.load()
            return img.convert('RGBA')
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageLoadError(f"Cannot decode {image_path}: {e}") from e


def to_pixel_buffer(image: Image.Image,
                    max_dimension: Optional[int] = None) -> np.ndarray:
    """
    Convert a Pillow image to an (h, w, 4) uint8 buffer.

    Args:
        image: RGBA image
        max_dimension: Downscale so that neither edge exceeds this value

    Returns:
        Pixel buffer
    """
    if max_dimension and max(image.size) > max_dimension:
        image = image.copy()
        image.thumbnail((max_dimension, max_dimension), Image.Resampling.BILINEAR)

    if image.mode != 'RGBA':
        image = image.convert('RGBA')

    return np.asarray(image, dtype=np.uint8)


def load_rgba(image_path: Union[str, Path],
              max_dimension: Optional[int] = HASH_MAX_DIMENSION) -> np.ndarray:
    """Load an image file as an RGBA pixel buffer"""
    return to_pixel_buffer(open_rgba(image_path), max_dimension)
