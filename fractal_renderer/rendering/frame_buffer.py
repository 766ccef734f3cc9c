"""
Write-once 8-bit pixel grid that a render fills before export.
"""

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


def to_uint8(rgb: np.ndarray) -> np.ndarray:
    """Convert [0, 1] floats to 0-255, rounding halves up."""
    return np.floor(np.clip(rgb, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)


class FrameBuffer:
    """
    Row-major (height, width, channels) uint8 image.

    Every pixel must be written exactly once; writing a row twice raises, and
    a buffer can only be frozen once every row has been written.
    """

    def __init__(self, width: int, height: int, channels: int = 3):
        """
        Args:
            width: Image width in pixels
            height: Image height in pixels
            channels: 3 for RGB, 4 for RGBA
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Frame size must be positive, got {width}x{height}")
        if channels not in (3, 4):
            raise ValueError(f"channels must be 3 or 4, got {channels}")

        self.width = width
        self.height = height
        self.channels = channels
        self._pixels = np.zeros((height, width, channels), dtype=np.uint8)
        self._written = np.zeros(height, dtype=bool)
        self._frozen = False

    @classmethod
    def from_rgb(cls, rgb: np.ndarray, alpha: Optional[float] = None) -> 'FrameBuffer':
        """Build a complete buffer from a (height, width, 3) float image."""
        height, width = rgb.shape[:2]
        frame = cls(width, height, 3 if alpha is None else 4)
        frame.write_rows(0, rgb, alpha)
        return frame

    def write_rows(self, y_start: int, rgb_rows: np.ndarray, alpha: Optional[float] = None) -> None:
        """
        Write a block of rows starting at y_start.

        Args:
            y_start: First row to write
            rgb_rows: (rows, width, 3) floats in [0, 1]
            alpha: Constant opacity for RGBA buffers (default opaque)

        Raises:
            ValueError: Shape mismatch, rows out of range, or rows already written
        """
        if self._frozen:
            raise ValueError("Frame buffer is frozen")
        rgb_rows = np.asarray(rgb_rows)
        if rgb_rows.ndim != 3 or rgb_rows.shape[1:] != (self.width, 3):
            raise ValueError(f"Expected rows shaped (n, {self.width}, 3), got {rgb_rows.shape}")

        y_end = y_start + rgb_rows.shape[0]
        if y_start < 0 or y_end > self.height:
            raise ValueError(f"Rows [{y_start}, {y_end}) outside frame of height {self.height}")
        if self._written[y_start:y_end].any():
            rows = np.flatnonzero(self._written[y_start:y_end]) + y_start
            raise ValueError(f"Rows {rows.tolist()} written twice")

        self._pixels[y_start:y_end, :, :3] = to_uint8(rgb_rows)
        if self.channels == 4:
            self._pixels[y_start:y_end, :, 3] = to_uint8(1.0 if alpha is None else alpha)
        self._written[y_start:y_end] = True

    @property
    def is_complete(self) -> bool:
        return bool(self._written.all())

    def freeze(self) -> 'FrameBuffer':
        """Make the pixels read-only; the buffer must be complete."""
        if not self.is_complete:
            missing = np.flatnonzero(~self._written)
            raise ValueError(f"Frame buffer incomplete, {missing.size} rows missing "
                             f"(first: {missing[:5].tolist()})")
        self._pixels.flags.writeable = False
        self._frozen = True
        logger.debug(f"Frozen {self!r}")
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    @property
    def mode(self) -> str:
        """Pillow image mode."""
        return 'RGB' if self.channels == 3 else 'RGBA'

    def tobytes(self) -> bytes:
        return self._pixels.tobytes()

    def __eq__(self, other) -> bool:
        if not isinstance(other, FrameBuffer):
            return NotImplemented
        return (self._pixels.shape == other._pixels.shape
                and bool(np.array_equal(self._pixels, other._pixels)))

    __hash__ = None

    def __repr__(self) -> str:
        state = 'frozen' if self._frozen else ('complete' if self.is_complete else 'partial')
        return f"FrameBuffer({self.width}x{self.height}, {self.mode}, {state})"
