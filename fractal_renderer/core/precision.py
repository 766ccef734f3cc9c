"""
Extended precision arithmetic for deep fractal zooms.

Past a magnification of roughly 10^10 the spacing between adjacent pixels
drops below what a double can resolve around the viewport center, and escape
counts collapse into flat bands. This module provides a double-double
representation (an unevaluated sum hi + lo of two doubles, ~104 usable
mantissa bits) built from error-free transformations, vectorized over numpy
arrays, and the setup-time selection between it and native doubles.

mpmath is used only at the edges: parsing decimal strings that carry more
digits than a double into (hi, lo) pairs, and formatting them back.
"""

import math
import logging
from typing import Any, Tuple, Union

import numpy as np
import mpmath as mp

from .errors import ConfigurationError, PrecisionExhaustion

logger = logging.getLogger(__name__)

NATIVE_MANTISSA_BITS = 52
# 106 nominal, two lost to splitting and renormalisation
EXTENDED_MANTISSA_BITS = 104
DEFAULT_GUARD_BITS = 16

# 2**27 + 1, Dekker's splitting constant for IEEE doubles
_SPLITTER = 134217729.0
_PARSE_DPS = 40

DoubleDouble = Tuple[Any, Any]


def to_double_double(value: Union[str, float, int, Tuple[float, float]]) -> Tuple[float, float]:
    """
    Convert a number to a (hi, lo) pair.

    Strings keep every digit up to ~32 significant decimals, which is what
    allows centers like "-0.743643887037158704752191506114774" to be zoomed
    into past double precision.

    Args:
        value: Decimal string, float, int, or an existing (hi, lo) pair

    Returns:
        Tuple (hi, lo) with hi = round(value) and lo the rounded remainder
    """
    if isinstance(value, tuple):
        if len(value) != 2:
            raise ConfigurationError(f"Expected a (hi, lo) pair, got {value!r}")
        hi, lo = float(value[0]), float(value[1])
        if not (math.isfinite(hi) and math.isfinite(lo)):
            raise ConfigurationError(f"Non-finite value: {value!r}")
        return hi, lo
    if isinstance(value, np.generic):
        value = value.item()

    with mp.workdps(_PARSE_DPS):
        try:
            x = mp.mpf(value.strip() if isinstance(value, str) else value)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Cannot parse number {value!r}: {e}") from e
        if not mp.isfinite(x):
            raise ConfigurationError(f"Non-finite value: {value!r}")
        hi = float(x)
        lo = float(x - hi)

    return hi, lo


def format_double_double(value: DoubleDouble, digits: int = 30) -> str:
    """Format a (hi, lo) pair with up to `digits` significant digits."""
    with mp.workdps(_PARSE_DPS):
        return mp.nstr(mp.mpf(float(value[0])) + mp.mpf(float(value[1])), digits)


# Error-free transformations. All accept scalars or numpy arrays.

def two_sum(a, b):
    """s + err == a + b exactly."""
    s = a + b
    bb = s - a
    err = (a - (s - bb)) + (b - bb)
    return s, err


def quick_two_sum(a, b):
    """two_sum for |a| >= |b|."""
    s = a + b
    return s, b - (s - a)


def split(a):
    """Split a double into two halves of at most 26 significant bits."""
    t = _SPLITTER * a
    hi = t - (t - a)
    return hi, a - hi


def two_prod(a, b):
    """p + err == a * b exactly."""
    p = a * b
    a_hi, a_lo = split(a)
    b_hi, b_lo = split(b)
    err = ((a_hi * b_hi - p) + a_hi * b_lo + a_lo * b_hi) + a_lo * b_lo
    return p, err


def two_sqr(a):
    """p + err == a * a exactly."""
    p = a * a
    hi, lo = split(a)
    err = ((hi * hi - p) + 2.0 * hi * lo) + lo * lo
    return p, err


def dd_add(a: DoubleDouble, b: DoubleDouble) -> DoubleDouble:
    s, e = two_sum(a[0], b[0])
    t, f = two_sum(a[1], b[1])
    e = e + t
    s, e = quick_two_sum(s, e)
    e = e + f
    return quick_two_sum(s, e)


def dd_sub(a: DoubleDouble, b: DoubleDouble) -> DoubleDouble:
    return dd_add(a, (-b[0], -b[1]))


def dd_mul(a: DoubleDouble, b: DoubleDouble) -> DoubleDouble:
    p, e = two_prod(a[0], b[0])
    e = e + (a[0] * b[1] + a[1] * b[0])
    return quick_two_sum(p, e)


def dd_sqr(a: DoubleDouble) -> DoubleDouble:
    p, e = two_sqr(a[0])
    e = e + 2.0 * a[0] * a[1]
    e = e + a[1] * a[1]
    return quick_two_sum(p, e)


class NativePrecision:
    """Plain float64 arithmetic. Values are numpy arrays."""

    name = 'native'
    mantissa_bits = NATIVE_MANTISSA_BITS

    def from_dd(self, hi, lo):
        return np.asarray(hi, dtype=np.float64) + np.asarray(lo, dtype=np.float64)

    def add(self, a, b):
        return a + b

    def sub(self, a, b):
        return a - b

    def mul(self, a, b):
        return a * b

    def sqr(self, a):
        return a * a

    def twice(self, a):
        return a + a

    def lead(self, a):
        return a

    def take(self, a, index):
        return a[index]

    def __repr__(self) -> str:
        return 'NativePrecision()'


class ExtendedPrecision:
    """Double-double arithmetic. Values are (hi, lo) tuples of numpy arrays."""

    name = 'extended'
    mantissa_bits = EXTENDED_MANTISSA_BITS

    def from_dd(self, hi, lo):
        hi = np.asarray(hi, dtype=np.float64)
        lo = np.asarray(lo, dtype=np.float64)
        return quick_two_sum(hi, lo)

    def add(self, a, b):
        return dd_add(a, b)

    def sub(self, a, b):
        return dd_sub(a, b)

    def mul(self, a, b):
        return dd_mul(a, b)

    def sqr(self, a):
        return dd_sqr(a)

    def twice(self, a):
        # Exact: scaling by two only touches the exponent
        return (a[0] + a[0], a[1] + a[1])

    def lead(self, a):
        return a[0]

    def take(self, a, index):
        return (a[0][index], a[1][index])

    def __repr__(self) -> str:
        return 'ExtendedPrecision()'


PRECISION_STRATEGIES = {
    'native': NativePrecision,
    'extended': ExtendedPrecision,
}


# Iterates past this magnitude are certain to diverge, so their low bits
# never change an escape count
BAILOUT_MAGNITUDE = 2.0


def available_bits(viewport, mantissa_bits: int) -> float:
    """
    Bits of mantissa left over to tell adjacent pixels apart.

    Pixel coordinates range up to the center magnitude and the iterates that
    still matter up to the bailout magnitude, so the larger of the two sets
    the exponent against which the pixel step must still be visible.
    """
    magnitude = max(abs(viewport.center.real[0]), abs(viewport.center.imag[0]), BAILOUT_MAGNITUDE)
    return mantissa_bits - math.log2(magnitude / viewport.step)


def select_precision(viewport, requested: str = 'auto',
                     guard_bits: int = DEFAULT_GUARD_BITS,
                     allow_degraded: bool = False):
    """
    Choose the arithmetic for one render.

    Args:
        viewport: Viewport being rendered
        requested: 'auto', 'native' or 'extended'
        guard_bits: Minimum bits per pixel step that must remain
        allow_degraded: Proceed with a warning instead of raising when even
            the chosen arithmetic falls short

    Returns:
        NativePrecision or ExtendedPrecision instance

    Raises:
        PrecisionExhaustion: The chosen arithmetic cannot resolve the pixel
            spacing and allow_degraded is False
    """
    if requested == 'auto':
        native_bits = available_bits(viewport, NATIVE_MANTISSA_BITS)
        strategy = NativePrecision() if native_bits >= guard_bits else ExtendedPrecision()
    elif requested in PRECISION_STRATEGIES:
        strategy = PRECISION_STRATEGIES[requested]()
    else:
        available = ', '.join(['auto', *PRECISION_STRATEGIES])
        raise ConfigurationError(f"Unknown precision '{requested}'. Available: {available}")

    bits = available_bits(viewport, strategy.mantissa_bits)
    if bits < guard_bits:
        if not allow_degraded:
            raise PrecisionExhaustion(viewport.scale, guard_bits, bits)
        logger.warning(f"Proceeding with degraded {strategy.name} precision: "
                       f"{bits:.1f} bits per pixel, {guard_bits} wanted")

    logger.info(f"Precision strategy: {strategy.name} ({bits:.1f} bits per pixel step)")
    return strategy
