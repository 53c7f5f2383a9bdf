"""
Utility functions for the dithering application: loading, scaling and saving
images at the edge of the library, plus small color helpers.
"""

import os
import logging
from typing import List, Tuple, Dict, Optional, Sequence

from PIL import Image

from dithering_lib import PixelBuffer

__all__ = [
    # Functions
    'IMAGE_EXTENSIONS',
    'hex_to_rgb',
    'rgb_to_hex',
    'palette_to_hex',
    'scaled_dimensions',
    'scale_image',
    'load_image_buffer',
    'save_buffer',
    'validate_image_file',
    'get_image_info',
]

logger = logging.getLogger('retro_dither.utils')

IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff', '.webp'}

# formats Pillow cannot write with an alpha channel
_NO_ALPHA_EXTENSIONS = {'.jpg', '.jpeg', '.bmp'}


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    """
    Convert hex color string to RGB tuple.

    Args:
        hex_color: Hex string like "#FF0000" or "FF0000"

    Returns:
        RGB tuple (r, g, b)
    """
    hex_color = hex_color.lstrip('#')
    if len(hex_color) != 6:
        raise ValueError(f"Invalid hex code: {hex_color}")
    return tuple(int(hex_color[i:i+2], 16) for i in (0, 2, 4))


def rgb_to_hex(rgb: Sequence[int]) -> str:
    """
    Convert RGB tuple to hex color string.

    Args:
        rgb: RGB tuple (r, g, b)

    Returns:
        Hex string like "#ff0000"
    """
    return f'#{rgb[0]:02x}{rgb[1]:02x}{rgb[2]:02x}'


def palette_to_hex(palette: Sequence[Sequence[int]]) -> List[str]:
    return [rgb_to_hex(c) for c in palette]


def scaled_dimensions(width: int, height: int, percent: float) -> Tuple[int, int]:
    """
    Size of an image drawn at percent of its original size, rounded down,
    never smaller than 1x1.
    """
    if percent <= 0:
        raise ValueError(f"Scale must be positive, got {percent}")
    return (max(1, int(width * percent / 100)),
            max(1, int(height * percent / 100)))


def scale_image(image: Image.Image, percent: float) -> Image.Image:
    """
    Resize an image to a percentage of its size with bilinear filtering.

    Args:
        image: PIL Image
        percent: 100 keeps the size

    Returns:
        Scaled PIL Image (always a new object)
    """
    new_size = scaled_dimensions(image.width, image.height, percent)
    if new_size == image.size:
        return image.copy()
    logger.debug(f"Scaling {image.width}x{image.height} to {new_size[0]}x{new_size[1]} ({percent}%)")
    return image.resize(new_size, Image.Resampling.BILINEAR)


def load_image_buffer(filepath: str, scale_percent: float = 100) -> PixelBuffer:
    """
    Open an image file, scale it and convert it to an RGBA PixelBuffer.
    """
    with Image.open(filepath) as img:
        img = scale_image(img.convert('RGBA'), scale_percent)
    return PixelBuffer.from_image(img)


def save_buffer(buffer: PixelBuffer, filepath: str, multiplier: int = 1) -> Image.Image:
    """
    Write a PixelBuffer to disk. The format follows the file extension; alpha
    is dropped for formats that cannot store it.

    Args:
        buffer: Pixels to save
        filepath: Destination path
        multiplier: Optional nearest-neighbour upscale for viewing

    Returns:
        The PIL Image that was written
    """
    image = buffer.to_image()
    if multiplier > 1:
        image = image.resize((image.width * multiplier, image.height * multiplier),
                             Image.Resampling.NEAREST)
    if os.path.splitext(filepath)[1].lower() in _NO_ALPHA_EXTENSIONS:
        image = image.convert('RGB')
    image.save(filepath)
    return image


def validate_image_file(filepath: str) -> bool:
    """
    Check if file is a valid image file.

    Args:
        filepath: Path to image file

    Returns:
        True if valid image file
    """
    ext = os.path.splitext(filepath)[1].lower()
    return ext in IMAGE_EXTENSIONS and os.path.isfile(filepath)


def get_image_info(filepath: str) -> Optional[Dict]:
    """
    Get basic image information.

    Args:
        filepath: Path to image file

    Returns:
        Dictionary with width, height, mode, format
    """
    try:
        with Image.open(filepath) as img:
            return {
                'width': img.width,
                'height': img.height,
                'mode': img.mode,
                'format': img.format
            }
    except OSError as e:
        logger.warning(f"Error getting image info: {e}")
        return None
