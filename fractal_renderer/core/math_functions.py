"""
Core mathematical functions for fractal iteration.

This module provides the viewport transform between image space and the
complex plane, the escape-time iteration shared by the Mandelbrot and Julia
families, and the stochastic affine walk behind the Barnsley Fern. All loops
are vectorized with numpy over a band of pixels (or a batch of walkers); the
arithmetic itself is delegated to a precision strategy so the same kernel runs
on doubles or double-doubles.
"""

import math
import logging
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np

from .errors import ConfigurationError
from .precision import dd_add, to_double_double

logger = logging.getLogger(__name__)

# Scale at which magnification is reported as 1x
REFERENCE_SCALE = 4.0

# An iterate just inside the radius is squared twice before the next test, so
# R**4 must stay finite in double precision
MAX_ESCAPE_RADIUS = 1e75

Number = Union[str, float, int, Tuple[float, float]]


@dataclass(frozen=True)
class PlanePoint:
    """A point of the plane; each component is a (hi, lo) double-double pair."""

    real: Tuple[float, float]
    imag: Tuple[float, float]

    @classmethod
    def parse(cls, real: Number, imag: Number) -> 'PlanePoint':
        """Build a point from floats, ints, decimal strings or (hi, lo) pairs."""
        return cls(to_double_double(real), to_double_double(imag))

    def to_complex(self) -> complex:
        """Collapse to a Python complex (drops the extended part)."""
        return complex(self.real[0] + self.real[1], self.imag[0] + self.imag[1])


@dataclass(frozen=True)
class Viewport:
    """
    Region of the plane covered by an image.

    `scale` is the plane distance spanned by the larger image dimension, so
    both axes share one pixel step and the aspect ratio is preserved. Pixel
    (0, 0) is the top-left corner: real grows to the right, imaginary grows
    upwards.
    """

    center: PlanePoint
    scale: float
    width: int
    height: int

    def __post_init__(self):
        if isinstance(self.width, bool) or not isinstance(self.width, (int, np.integer)) or self.width <= 0:
            raise ConfigurationError(f"width must be a positive integer, got {self.width!r}")
        if isinstance(self.height, bool) or not isinstance(self.height, (int, np.integer)) or self.height <= 0:
            raise ConfigurationError(f"height must be a positive integer, got {self.height!r}")
        if not isinstance(self.scale, (int, float)) or not math.isfinite(self.scale) or self.scale <= 0:
            raise ConfigurationError(f"scale must be a positive finite number, got {self.scale!r}")

    @classmethod
    def create(cls, center: Tuple[Number, Number], scale: float,
               width: int, height: int) -> 'Viewport':
        """Build a viewport from raw (real, imag) center components."""
        if len(center) != 2:
            raise ConfigurationError(f"center must be (real, imag), got {center!r}")
        try:
            scale = float(scale)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid scale {scale!r}") from e
        return cls(PlanePoint.parse(*center), scale, width, height)

    @classmethod
    def fit_bounds(cls, bounds: Tuple[float, float, float, float],
                   width: int, height: int) -> 'Viewport':
        """Smallest viewport showing the whole (xmin, xmax, ymin, ymax) box."""
        xmin, xmax, ymin, ymax = bounds
        if xmin >= xmax or ymin >= ymax:
            raise ConfigurationError("Invalid bounds: min values must be less than max values")
        if width <= 0 or height <= 0:
            raise ConfigurationError("Width and height must be positive")
        longest = max(width, height)
        scale = max((xmax - xmin) * longest / width, (ymax - ymin) * longest / height)
        return cls.create(((xmin + xmax) / 2, (ymin + ymax) / 2), scale, width, height)

    @property
    def step(self) -> float:
        """Plane distance between adjacent pixels."""
        return self.scale / max(self.width, self.height)

    @property
    def magnification(self) -> float:
        return REFERENCE_SCALE / self.scale

    def _offsets(self, px, py):
        x = (np.asarray(px, dtype=np.float64) - (self.width - 1) / 2.0) * self.step
        y = ((self.height - 1) / 2.0 - np.asarray(py, dtype=np.float64)) * self.step
        return x, y

    def pixel_to_plane(self, px: int, py: int) -> PlanePoint:
        """Map one pixel to its plane point, keeping the extended part."""
        if not (0 <= px < self.width and 0 <= py < self.height):
            raise IndexError(f"Pixel ({px}, {py}) outside {self.width}x{self.height} image")
        x, y = self._offsets(px, py)
        real = dd_add(self.center.real, (float(x), 0.0))
        imag = dd_add(self.center.imag, (float(y), 0.0))
        return PlanePoint((float(real[0]), float(real[1])), (float(imag[0]), float(imag[1])))

    def plane_to_pixel(self, real, imag) -> Tuple[np.ndarray, np.ndarray]:
        """
        Inverse of pixel_to_plane in floating point.

        Args:
            real, imag: Plane coordinates (scalars or arrays)

        Returns:
            Tuple of fractional (px, py) pixel coordinates
        """
        center = self.center.to_complex()
        px = (np.asarray(real, dtype=np.float64) - center.real) / self.step + (self.width - 1) / 2.0
        py = (self.height - 1) / 2.0 - (np.asarray(imag, dtype=np.float64) - center.imag) / self.step
        return px, py

    def corners(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """((re_min, im_max), (re_max, im_min)) for pixels (0, 0) and (w-1, h-1)."""
        top_left = self.pixel_to_plane(0, 0).to_complex()
        bottom_right = self.pixel_to_plane(self.width - 1, self.height - 1).to_complex()
        return (top_left.real, top_left.imag), (bottom_right.real, bottom_right.imag)

    def row_points(self, y_start: int, y_end: int):
        """
        Plane coordinates of a band of rows.

        Args:
            y_start, y_end: Half-open row range

        Returns:
            ((re_hi, re_lo), (im_hi, im_lo)), each array shaped (rows, width)
        """
        if not 0 <= y_start < y_end <= self.height:
            raise IndexError(f"Rows [{y_start}, {y_end}) outside image of height {self.height}")
        rows = y_end - y_start
        x, y = self._offsets(np.arange(self.width), np.arange(y_start, y_end))

        re_hi, re_lo = dd_add(self.center.real, (x, np.zeros_like(x)))
        im_hi, im_lo = dd_add(self.center.imag, (y, np.zeros_like(y)))

        real = (np.tile(re_hi, (rows, 1)), np.tile(re_lo, (rows, 1)))
        imag = (np.repeat(im_hi[:, None], self.width, axis=1),
                np.repeat(im_lo[:, None], self.width, axis=1))
        return real, imag

    def zoom_to_pixel(self, px: int, py: int, factor: float = 2.0) -> 'Viewport':
        """New viewport centered on a pixel and magnified by `factor`."""
        if factor <= 0:
            raise ConfigurationError("Zoom factor must be positive")
        return Viewport(self.pixel_to_plane(px, py), self.scale / factor, self.width, self.height)


class IterationResult:
    """Container for escape-time results of a band or a whole frame."""

    def __init__(self, iterations: np.ndarray, escaped: np.ndarray,
                 smooth: np.ndarray, final_abs2: np.ndarray):
        """
        Initialize iteration result.

        Args:
            iterations: Escape iteration per pixel (the bound for inside pixels)
            escaped: Boolean array, False for pixels classified inside the set
            smooth: Continuous iteration count, never below zero
            final_abs2: |z|^2 when iteration stopped
        """
        self.iterations = iterations
        self.escaped = escaped
        self.smooth = smooth
        self.final_abs2 = final_abs2
        self.shape = iterations.shape

    def reshape(self, shape: Tuple[int, int]) -> 'IterationResult':
        return IterationResult(self.iterations.reshape(shape), self.escaped.reshape(shape),
                               self.smooth.reshape(shape), self.final_abs2.reshape(shape))

    def get_normalized_iterations(self, max_iter: int, smooth: bool = True) -> np.ndarray:
        """Iteration counts scaled to [0, 1] by the iteration bound."""
        values = self.smooth if smooth else self.iterations.astype(np.float64)
        if max_iter <= 0:
            return np.zeros(self.shape, dtype=np.float64)
        return np.clip(values / max_iter, 0.0, 1.0)


class HitAccumulation:
    """Per-pixel hit counts of an iterated function system."""

    def __init__(self, counts: np.ndarray, steps: int):
        self.counts = counts
        self.steps = steps
        self.shape = counts.shape

    def __add__(self, other: 'HitAccumulation') -> 'HitAccumulation':
        if self.shape != other.shape:
            raise ValueError(f"Cannot merge hit counts of shape {self.shape} and {other.shape}")
        return HitAccumulation(self.counts + other.counts, self.steps + other.steps)

    @classmethod
    def empty(cls, width: int, height: int) -> 'HitAccumulation':
        return cls(np.zeros((height, width), dtype=np.int64), 0)

    @property
    def recorded(self) -> int:
        """Hits that landed inside the image."""
        return int(self.counts.sum())


class FractalIterator:
    """Escape-time iteration on top of a precision strategy."""

    def __init__(self, max_iter: int, escape_radius: float = 2.0, arithmetic=None):
        """
        Initialize fractal iterator.

        Args:
            max_iter: Iteration bound (0 allowed: only the start value is tested)
            escape_radius: Bailout radius, between 2 and MAX_ESCAPE_RADIUS
            arithmetic: NativePrecision or ExtendedPrecision instance
        """
        if isinstance(max_iter, bool) or not isinstance(max_iter, (int, np.integer)) or max_iter < 0:
            raise ConfigurationError(f"max_iter must be a non-negative integer, got {max_iter!r}")
        if not math.isfinite(escape_radius) or not 2.0 <= escape_radius <= MAX_ESCAPE_RADIUS:
            raise ConfigurationError(f"escape_radius must be between 2 and {MAX_ESCAPE_RADIUS:g}, "
                                     f"got {escape_radius!r}")
        if arithmetic is None:
            from .precision import NativePrecision
            arithmetic = NativePrecision()

        self.max_iter = int(max_iter)
        self.escape_radius = float(escape_radius)
        self.escape_radius_sq = self.escape_radius ** 2
        self.arithmetic = arithmetic

    def escape_time(self, z_re, z_im, c_re, c_im) -> IterationResult:
        """
        Iterate z <- z^2 + c until |z|^2 >= R^2 or the bound is reached.

        The start value counts as iteration 0; the value after n updates is
        tested as iteration n. All arguments are flat values of the
        iterator's arithmetic, of equal length.

        Returns:
            Flat IterationResult
        """
        A = self.arithmetic
        size = A.lead(z_re).shape[0]

        iterations = np.full(size, self.max_iter, dtype=np.int32)
        escaped = np.zeros(size, dtype=bool)
        final_abs2 = np.zeros(size, dtype=np.float64)
        index = np.arange(size)

        with np.errstate(over='raise', invalid='raise'):
            re2 = A.sqr(z_re)
            im2 = A.sqr(z_im)
            abs2 = A.lead(re2) + A.lead(im2)
            n = 0
            while True:
                out = abs2 >= self.escape_radius_sq
                if out.any():
                    hit = index[out]
                    iterations[hit] = n
                    escaped[hit] = True
                    final_abs2[hit] = abs2[out]

                    keep = ~out
                    index = index[keep]
                    abs2 = abs2[keep]
                    z_re, z_im = A.take(z_re, keep), A.take(z_im, keep)
                    c_re, c_im = A.take(c_re, keep), A.take(c_im, keep)
                    re2, im2 = A.take(re2, keep), A.take(im2, keep)

                if n >= self.max_iter or index.size == 0:
                    break
                n += 1

                # Squares from the escape test are reused for the update
                z_im = A.add(A.twice(A.mul(z_re, z_im)), c_im)
                z_re = A.add(A.sub(re2, im2), c_re)
                re2 = A.sqr(z_re)
                im2 = A.sqr(z_im)
                abs2 = A.lead(re2) + A.lead(im2)

        final_abs2[index] = abs2

        smooth = iterations.astype(np.float64)
        if escaped.any():
            # |z| >= R >= 2 at escape, so the ratio is at least 1 and the log is finite
            log_ratio = 0.5 * np.log(final_abs2[escaped]) / math.log(self.escape_radius)
            smooth[escaped] = np.maximum(iterations[escaped] + 1.0 - np.log2(log_ratio), 0.0)

        return IterationResult(iterations, escaped, smooth, final_abs2)

    def mandelbrot_iteration(self, c_re, c_im) -> IterationResult:
        """Mandelbrot: z starts at 0, c is the point."""
        A = self.arithmetic
        zeros = np.zeros_like(A.lead(c_re))
        return self.escape_time(A.from_dd(zeros, zeros), A.from_dd(zeros, zeros), c_re, c_im)

    def julia_iteration(self, z_re, z_im, c: PlanePoint) -> IterationResult:
        """Julia: z starts at the point, c is the fixed constant."""
        A = self.arithmetic
        size = A.lead(z_re).shape[0]
        c_re = A.from_dd(np.full(size, c.real[0]), np.full(size, c.real[1]))
        c_im = A.from_dd(np.full(size, c.imag[0]), np.full(size, c.imag[1]))
        return self.escape_time(z_re, z_im, c_re, c_im)


def run_fern_chain(coefficients: np.ndarray, cumulative: np.ndarray, viewport: Viewport,
                   steps: int, walkers: int, burn_in: int,
                   seed: np.random.SeedSequence) -> HitAccumulation:
    """
    Run one seeded chain of the affine random walk and bin its points.

    The chain advances `walkers` points in lockstep from the origin. Each
    round draws one transform per walker; after `burn_in` unrecorded rounds
    every new point counts as one step, until `steps` points are recorded.

    Args:
        coefficients: (k, 6) array of (a, b, c, d, e, f) per transform
        cumulative: (k,) cumulative selection probabilities ending at 1.0
        viewport: Viewport the hits are binned into
        steps: Points to record
        walkers: Points advanced together
        burn_in: Rounds discarded before recording
        seed: Seed sequence owned by this chain

    Returns:
        HitAccumulation of this chain alone
    """
    width, height = viewport.width, viewport.height
    if steps <= 0:
        return HitAccumulation.empty(width, height)

    rng = np.random.default_rng(seed)
    walkers = max(1, min(walkers, steps))
    a, b, c, d, e, f = (coefficients[:, i] for i in range(6))

    x = np.zeros(walkers)
    y = np.zeros(walkers)
    remaining = steps
    recorded = []
    rounds = burn_in + math.ceil(steps / walkers)

    for r in range(rounds):
        k = np.searchsorted(cumulative, rng.random(walkers), side='right')
        x, y = a[k] * x + b[k] * y + e[k], c[k] * x + d[k] * y + f[k]
        if r < burn_in:
            continue

        take = min(walkers, remaining)
        px, py = viewport.plane_to_pixel(x[:take], y[:take])
        px = np.floor(px + 0.5)
        py = np.floor(py + 0.5)
        visible = (px >= 0) & (px < width) & (py >= 0) & (py < height)
        recorded.append(py[visible].astype(np.int64) * width + px[visible].astype(np.int64))
        remaining -= take

    flat = np.concatenate(recorded) if recorded else np.zeros(0, dtype=np.int64)
    counts = np.bincount(flat, minlength=width * height).astype(np.int64)
    return HitAccumulation(counts.reshape(height, width), steps)
