"""Image preprocessing: decoding and detector input preparation.

Decoding handles format detection, EXIF orientation, color space
conversion and size validation. Letterboxing resizes an image into the
square detector input while keeping its aspect ratio.
"""

from __future__ import annotations

import io
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageOps, UnidentifiedImageError

PAD_VALUE: int = 114


class ImageDecodeError(ValueError):
    """Raised when uploaded bytes cannot be turned into an RGB image."""


@dataclass(frozen=True)
class Letterbox:
    """Geometry of a letterboxed image, used to map boxes back."""

    ratio: float
    pad_x: float
    pad_y: float


def decode_image(image_bytes: bytes, *, max_file_size: int, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow supports).
        max_file_size: Largest accepted payload in bytes.
        max_pixels: Largest accepted width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        ImageDecodeError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ImageDecodeError("Empty image payload")
    if len(image_bytes) > max_file_size:
        raise ImageDecodeError(f"Image payload of {len(image_bytes)} bytes exceeds limit of {max_file_size}")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise ImageDecodeError(f"Image of {width}x{height} pixels exceeds limit of {max_pixels}")
            img.load()
            oriented = ImageOps.exif_transpose(img)
            rgb = oriented.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Cannot decode image: {exc}") from exc

    return np.asarray(rgb, dtype=np.uint8)


def letterbox(image: NDArray[np.uint8], size: int) -> tuple[NDArray[np.float32], Letterbox]:
    """Resize and pad an RGB image into a square NCHW float tensor.

    Args:
        image: HxWx3 RGB uint8 array.
        size: Side length of the square model input.

    Returns:
        A (1, 3, size, size) float32 tensor scaled to 0..1 and the geometry
        needed to map detections back to the original image.
    """
    height, width = image.shape[:2]
    ratio = min(size / height, size / width)
    new_w = max(1, round(width * ratio))
    new_h = max(1, round(height * ratio))

    resized = Image.fromarray(image).resize((new_w, new_h), Image.Resampling.BILINEAR)
    canvas = Image.new("RGB", (size, size), (PAD_VALUE, PAD_VALUE, PAD_VALUE))
    pad_x = (size - new_w) / 2
    pad_y = (size - new_h) / 2
    canvas.paste(resized, (int(pad_x), int(pad_y)))

    tensor = np.asarray(canvas, dtype=np.float32) / 255.0
    tensor = np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis, ...])
    return tensor, Letterbox(ratio=ratio, pad_x=float(int(pad_x)), pad_y=float(int(pad_y)))
