"""Image adapter: turns Pillow images into the 8bpp buffers the panel loads.

The controller takes one byte per pixel (0x00 black, 0xFF white) in row
order.  Only the high nibble is used by the 16-level waveforms.
"""
from __future__ import annotations

from typing import Any, Optional, Tuple

from PIL import Image as PILImage

from .errors import ConfigError

WHITE = 0xFF


def load_image(path: str) -> Any:
    """Open an image file with Pillow and load its pixels."""
    try:
        img = PILImage.open(path)
        img.load()
    except (OSError, PILImage.DecompressionBombError) as e:
        raise ConfigError(f"Cannot read image {path}: {e}") from e
    return img


def to_grayscale(image: Any, fit: Optional[Tuple[int, int]] = None) -> Tuple[bytes, int, int]:
    """Convert a PIL Image to (pixels, width, height) in mode 'L'.

    Args:
        image: PIL Image in any mode.
        fit: Optional (max_width, max_height).  Larger images are scaled
            down keeping the aspect ratio; smaller ones are left alone.
    """
    if image.mode in ('RGBA', 'LA', 'P'):
        # Composite transparency onto white so it reads as paper
        rgba = image.convert('RGBA')
        background = PILImage.new('RGBA', rgba.size, (255, 255, 255, 255))
        image = PILImage.alpha_composite(background, rgba)
    gray = image.convert('L')

    if fit is not None:
        max_w, max_h = fit
        if gray.width > max_w or gray.height > max_h:
            gray = gray.copy()
            gray.thumbnail((max_w, max_h), PILImage.Resampling.LANCZOS)

    return gray.tobytes(), gray.width, gray.height


def blank(width: int, height: int, value: int = WHITE) -> bytes:
    """A solid buffer of *value* bytes."""
    return bytes([value]) * (width * height)
