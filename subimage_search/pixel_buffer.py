"""RGBA pixel buffers used by the subimage search.

A ``PixelBuffer`` wraps a ``(height, width, 4)`` uint8 array in R, G, B, A
channel order.  Buffers are read-only once constructed; the search engine
borrows them for the duration of one scan and never writes to them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

CHANNELS = 4


class PixelBuffer:
    """Immutable RGBA image with bounds-checked row access."""

    def __init__(self, pixels: np.ndarray):
        """
        Args:
            pixels: uint8 array shaped (H, W, 4), RGBA.  The array is copied
                    and marked read-only.

        Raises:
            ValueError: If the array has the wrong shape, dtype or is empty.
        """
        pixels = np.asarray(pixels)
        if pixels.dtype != np.uint8:
            raise ValueError(f"Pixel data must be uint8, got {pixels.dtype}")
        if pixels.ndim != 3 or pixels.shape[2] != CHANNELS:
            raise ValueError(
                f"Pixel data must have shape (H, W, {CHANNELS}), got {pixels.shape}"
            )
        if pixels.shape[0] < 1 or pixels.shape[1] < 1:
            raise ValueError(f"Image must be at least 1x1, got {pixels.shape[1]}x{pixels.shape[0]}")

        self._pixels = np.ascontiguousarray(pixels).copy()
        self._pixels.flags.writeable = False
        self._height, self._width = self._pixels.shape[:2]
        # One flat row of W*4 channel samples per image row
        self._rows = self._pixels.reshape(self._height, self._width * CHANNELS)

    @classmethod
    def from_bytes(cls, data: bytes, width: int, height: int) -> "PixelBuffer":
        """Build a buffer from raw RGBA bytes in row-major order."""
        expected = width * height * CHANNELS
        if len(data) != expected:
            raise ValueError(
                f"Expected {expected} bytes for {width}x{height} RGBA, got {len(data)}"
            )
        array = np.frombuffer(data, dtype=np.uint8).reshape(height, width, CHANNELS)
        return cls(array)

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        """Decode a Pillow image into an RGBA buffer."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls(np.array(image))

    @classmethod
    def open(cls, path: Union[str, Path]) -> "PixelBuffer":
        """Load an image file from disk.

        Raises:
            OSError: If the file cannot be read or decoded.
        """
        with Image.open(path) as img:
            buffer = cls.from_image(img)
        logger.debug("Loaded %s (%dx%d)", path, buffer.width, buffer.height)
        return buffer

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def size(self) -> tuple:
        """(width, height)"""
        return self._width, self._height

    @property
    def pixels(self) -> np.ndarray:
        """Read-only (H, W, 4) view of the pixel data."""
        return self._pixels

    def tobytes(self) -> bytes:
        return self._pixels.tobytes()

    def row_slice(self, x: int, y: int, count: int) -> np.ndarray:
        """Return the ``4 * count`` channel samples of ``count`` pixels from (x, y).

        Raises:
            IndexError: If the run leaves the image.  This only happens when
                        the caller's index arithmetic is wrong.
        """
        if x < 0 or y < 0 or count < 0 or x + count > self._width or y >= self._height:
            raise IndexError(
                f"Run of {count} pixels at ({x}, {y}) is outside "
                f"{self._width}x{self._height} image"
            )
        return self._rows[y, x * CHANNELS:(x + count) * CHANNELS]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.size == other.size and np.array_equal(self._pixels, other._pixels)

    def __repr__(self) -> str:
        return f"PixelBuffer({self._width}x{self._height})"
