"""Image preprocessing: decode, resize, and convert to the model's input tensor.

The model was trained on raw RGB intensities, so the tensor keeps values in
[0, 255] with no mean/std scaling. Images are stretched to the input size
regardless of aspect ratio (no crop, no letterbox).
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np
from PIL import Image, UnidentifiedImageError

from diabscan.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

INPUT_SIZE: Final = 224
CHANNELS: Final = 3

_RESAMPLE_FILTERS: dict[str, Image.Resampling] = {
    "nearest": Image.Resampling.NEAREST,
    "box": Image.Resampling.BOX,
    "bilinear": Image.Resampling.BILINEAR,
    "hamming": Image.Resampling.HAMMING,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}


@dataclass(frozen=True)
class ImageSize:
    """Pixel dimensions of an image."""

    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


PROCESSED_SIZE: Final = ImageSize(INPUT_SIZE, INPUT_SIZE)


@dataclass(frozen=True)
class PreparedImage:
    """Model-ready tensor plus the dimensions of the decoded source image."""

    tensor: NDArray[np.float32]
    original_size: ImageSize

    @property
    def processed_size(self) -> ImageSize:
        height, width = self.tensor.shape[:2]
        return ImageSize(width, height)


class ImagePreprocessor:
    """Turns encoded image bytes into a (size, size, 3) float32 RGB tensor."""

    def __init__(
        self,
        input_size: int = INPUT_SIZE,
        resample: str = "bilinear",
        max_image_pixels: int | None = None,
    ) -> None:
        try:
            self._resample = _RESAMPLE_FILTERS[resample]
        except KeyError:
            raise ValueError(f"Unknown resample filter: {resample}") from None
        self._input_size = input_size
        self._max_image_pixels = max_image_pixels

    def prepare(self, image_bytes: bytes) -> PreparedImage:
        """Decode and resize an image into the model input layout.

        Args:
            image_bytes: Raw file bytes in any format Pillow can decode.

        Returns:
            The HxWx3 tensor (rows top to bottom, RGB innermost) and the
            original image size.

        Raises:
            DecodeError: If the bytes are not a decodable image or exceed the
                configured pixel limit.
        """
        image = self._decode(image_bytes)
        original_size = ImageSize(*image.size)

        size = self._input_size
        resized = image.convert("RGB").resize((size, size), resample=self._resample)
        tensor = np.asarray(resized, dtype=np.float32)

        logger.debug("Image processed: %s -> %sx%s", original_size, size, size)
        return PreparedImage(tensor=tensor, original_size=original_size)

    def _decode(self, image_bytes: bytes) -> Image.Image:
        if not image_bytes:
            raise DecodeError("Empty image data")

        try:
            image = Image.open(io.BytesIO(image_bytes))
            width, height = image.size
            if self._max_image_pixels is not None and width * height > self._max_image_pixels:
                raise DecodeError(
                    f"Image too large: {width}x{height} exceeds {self._max_image_pixels} pixels"
                )
            # Force full decode so truncated files fail here, not mid-resize.
            image.load()
        except DecodeError:
            raise
        except UnidentifiedImageError as exc:
            raise DecodeError("Unsupported or unrecognized image format") from exc
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Corrupt image data: {exc}") from exc
        return image
