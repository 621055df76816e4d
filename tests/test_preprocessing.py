"""Tests for image decoding and letterboxing."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from peoplesorter.ml.preprocessing import PAD_VALUE, ImageDecodeError, decode_image, letterbox

LIMITS = {"max_file_size": 10_000_000, "max_pixels": 10_000_000}


def _encode(img: Image.Image, fmt: str, **save_kwargs: object) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


class TestDecodeImage:
    def test_decodes_png_to_rgb_array(self) -> None:
        data = _encode(Image.new("RGB", (30, 20), (10, 20, 30)), "PNG")
        image = decode_image(data, **LIMITS)
        assert image.shape == (20, 30, 3)
        assert image.dtype == np.uint8
        assert tuple(image[0, 0]) == (10, 20, 30)

    def test_converts_alpha_and_grayscale(self) -> None:
        rgba = decode_image(_encode(Image.new("RGBA", (4, 4), (1, 2, 3, 128)), "PNG"), **LIMITS)
        gray = decode_image(_encode(Image.new("L", (4, 4), 77), "PNG"), **LIMITS)
        assert rgba.shape == (4, 4, 3)
        assert gray.shape == (4, 4, 3)

    def test_applies_exif_orientation(self) -> None:
        img = Image.new("RGB", (40, 10), (0, 0, 0))
        exif = img.getexif()
        exif[0x0112] = 6  # rotate 90 degrees clockwise
        data = _encode(img, "JPEG", exif=exif)

        image = decode_image(data, **LIMITS)

        assert image.shape == (40, 10, 3)

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ImageDecodeError, match="Cannot decode"):
            decode_image(b"this is not an image", **LIMITS)

    def test_rejects_empty(self) -> None:
        with pytest.raises(ImageDecodeError, match="Empty"):
            decode_image(b"", **LIMITS)

    def test_rejects_large_payload(self) -> None:
        data = _encode(Image.new("RGB", (8, 8)), "PNG")
        with pytest.raises(ImageDecodeError, match="exceeds limit"):
            decode_image(data, max_file_size=10, max_pixels=1_000)

    def test_rejects_too_many_pixels(self) -> None:
        data = _encode(Image.new("RGB", (100, 100)), "PNG")
        with pytest.raises(ImageDecodeError, match="100x100"):
            decode_image(data, max_file_size=1_000_000, max_pixels=9_999)

    def test_truncated_file(self) -> None:
        data = _encode(Image.new("RGB", (64, 64), (255, 0, 0)), "JPEG")
        with pytest.raises(ImageDecodeError):
            decode_image(data[: len(data) // 3], **LIMITS)

    def test_decode_error_is_value_error(self) -> None:
        assert issubclass(ImageDecodeError, ValueError)


class TestLetterbox:
    def test_landscape_is_padded_vertically(self) -> None:
        image = np.full((480, 640, 3), 255, dtype=np.uint8)

        tensor, geometry = letterbox(image, 640)

        assert tensor.shape == (1, 3, 640, 640)
        assert tensor.dtype == np.float32
        assert geometry.ratio == 1.0
        assert (geometry.pad_x, geometry.pad_y) == (0.0, 80.0)
        assert tensor[0, 0, 0, 0] == pytest.approx(PAD_VALUE / 255.0)
        assert tensor[0, 0, 320, 320] == pytest.approx(1.0)

    def test_large_portrait_is_scaled_down(self) -> None:
        image = np.zeros((1280, 640, 3), dtype=np.uint8)
        tensor, geometry = letterbox(image, 640)
        assert tensor.shape == (1, 3, 640, 640)
        assert geometry.ratio == 0.5
        assert (geometry.pad_x, geometry.pad_y) == (160.0, 0.0)
