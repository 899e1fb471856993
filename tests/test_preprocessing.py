"""Tests for image decoding and tensor preparation."""

from __future__ import annotations

import io

import numpy as np
import pytest
from conftest import make_image_bytes
from PIL import Image

from diabscan.errors import DecodeError
from diabscan.ml.preprocessing import PROCESSED_SIZE, ImagePreprocessor, ImageSize


class TestPrepare:
    @pytest.mark.parametrize(
        ("width", "height", "fmt", "mode"),
        [
            (320, 240, "PNG", "RGB"),
            (50, 400, "JPEG", "RGB"),
            (224, 224, "PNG", "RGBA"),
            (1000, 30, "PNG", "L"),
            (64, 64, "GIF", "P"),
            (17, 9, "BMP", "RGB"),
        ],
    )
    def test_tensor_shape_and_range(self, width: int, height: int, fmt: str, mode: str) -> None:
        prepared = ImagePreprocessor().prepare(make_image_bytes(width, height, fmt=fmt, mode=mode))

        assert prepared.tensor.shape == (224, 224, 3)
        assert prepared.tensor.dtype == np.float32
        assert prepared.tensor.min() >= 0.0
        assert prepared.tensor.max() <= 255.0
        assert prepared.original_size == ImageSize(width, height)
        assert prepared.processed_size == PROCESSED_SIZE

    def test_deterministic(self, png_bytes: bytes) -> None:
        preprocessor = ImagePreprocessor()
        first = preprocessor.prepare(png_bytes).tensor
        second = preprocessor.prepare(png_bytes).tensor
        assert np.array_equal(first, second)
        assert first.tobytes() == second.tobytes()

    def test_values_are_not_normalized(self) -> None:
        buf = io.BytesIO()
        Image.new("RGB", (10, 20), (255, 0, 7)).save(buf, format="PNG")

        tensor = ImagePreprocessor(resample="nearest").prepare(buf.getvalue()).tensor

        assert np.all(tensor[..., 0] == 255.0)
        assert np.all(tensor[..., 1] == 0.0)
        assert np.all(tensor[..., 2] == 7.0)

    def test_row_major_rgb_layout(self) -> None:
        # Top half red, bottom half blue: rows run top to bottom.
        pixels = np.zeros((224, 224, 3), dtype=np.uint8)
        pixels[:112, :, 0] = 255
        pixels[112:, :, 2] = 255
        buf = io.BytesIO()
        Image.fromarray(pixels).save(buf, format="PNG")

        tensor = ImagePreprocessor(resample="nearest").prepare(buf.getvalue()).tensor

        assert tensor[0, 0].tolist() == [255.0, 0.0, 0.0]
        assert tensor[223, 223].tolist() == [0.0, 0.0, 255.0]

    def test_non_square_image_is_stretched(self) -> None:
        prepared = ImagePreprocessor().prepare(make_image_bytes(448, 112))
        assert prepared.tensor.shape == (224, 224, 3)
        assert str(prepared.original_size) == "448x112"

    def test_unknown_resample_filter(self) -> None:
        with pytest.raises(ValueError, match="Unknown resample filter"):
            ImagePreprocessor(resample="magic")


class TestDecodeErrors:
    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"fake image data",
            b"\x89PNG\r\n\x1a\n" + b"\x00" * 16,
        ],
    )
    def test_malformed_bytes_raise_decode_error(self, payload: bytes) -> None:
        with pytest.raises(DecodeError):
            ImagePreprocessor().prepare(payload)

    def test_truncated_image_raises_decode_error(self) -> None:
        data = make_image_bytes(200, 200, fmt="JPEG")
        with pytest.raises(DecodeError):
            ImagePreprocessor().prepare(data[: len(data) // 3])

    def test_pixel_limit(self) -> None:
        preprocessor = ImagePreprocessor(max_image_pixels=100)
        with pytest.raises(DecodeError, match="too large"):
            preprocessor.prepare(make_image_bytes(20, 20))
