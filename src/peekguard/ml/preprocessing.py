"""Frame preprocessing pipeline.

Decodes camera frames (any Pillow-readable format, EXIF orientation applied),
resizes them to the detector input size and converts them to a channel-planar
float32 tensor normalized per channel with ``(value - mean) / std``.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from peekguard.errors import DecodeError, EmptyInputError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from peekguard.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreprocessedFrame:
    """Detector input tensor plus the size of the frame it came from."""

    tensor: NDArray[np.float32]
    width: int
    height: int


class FramePreprocessor:
    """Prepares camera frames for the face detector."""

    def __init__(
        self,
        input_width: int = 320,
        input_height: int = 240,
        mean: tuple[float, float, float] = (127.0, 127.0, 127.0),
        std: tuple[float, float, float] = (128.0, 128.0, 128.0),
        max_image_pixels: int = 16_777_216,
    ) -> None:
        self.input_width = input_width
        self.input_height = input_height
        self._mean = np.asarray(mean, dtype=np.float32).reshape(3, 1, 1)
        self._std = np.asarray(std, dtype=np.float32).reshape(3, 1, 1)
        self._max_image_pixels = max_image_pixels

    @classmethod
    def from_settings(cls, settings: Settings) -> FramePreprocessor:
        return cls(
            input_width=settings.input_width,
            input_height=settings.input_height,
            mean=settings.normalize_mean,
            std=settings.normalize_std,
            max_image_pixels=settings.max_image_pixels,
        )

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Raises:
            EmptyInputError: If the buffer is empty.
            DecodeError: If the image cannot be decoded or exceeds the pixel limit.
        """
        if not image_bytes:
            raise EmptyInputError("Empty frame buffer")
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                if img.width * img.height > self._max_image_pixels:
                    raise DecodeError(f"Image too large: {img.width}x{img.height}")
                oriented = ImageOps.exif_transpose(img)
                return np.asarray(oriented.convert("RGB"), dtype=np.uint8)
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError, ValueError) as exc:
            raise DecodeError(f"Cannot decode image: {exc}") from exc

    def to_tensor(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize an HxWx3 RGB array and normalize it into a 3xHxW float32 tensor."""
        if image.ndim != 3 or image.shape[2] != 3:
            raise DecodeError(f"Expected HxWx3 RGB image, got shape {image.shape}")
        if image.shape[0] == 0 or image.shape[1] == 0:
            raise EmptyInputError("Image has no pixels")

        resized = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8)).resize(
            (self.input_width, self.input_height),
            Image.Resampling.BILINEAR,
        )
        planar = np.asarray(resized, dtype=np.float32).transpose(2, 0, 1)
        return ((planar - self._mean) / self._std).astype(np.float32, copy=False)

    def preprocess(self, frame: bytes | NDArray[np.uint8]) -> PreprocessedFrame:
        """Decode (if needed), resize and normalize a frame."""
        image = self.decode_image(frame) if isinstance(frame, (bytes, bytearray, memoryview)) else frame
        height, width = image.shape[:2]
        return PreprocessedFrame(tensor=self.to_tensor(image), width=width, height=height)
