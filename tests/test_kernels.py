"""Tests for the escape-time kernels."""

import math

import numpy as np
import pytest

from fractal_renderer.acceleration.multiprocessing import RowBand
from fractal_renderer.core.errors import ConfigurationError
from fractal_renderer.core.fractal_types import (
    FractalRegistry,
    JuliaParameters,
    JuliaSet,
    MandelbrotSet,
)
from fractal_renderer.core.math_functions import MAX_ESCAPE_RADIUS, FractalIterator, PlanePoint, Viewport
from fractal_renderer.core.precision import ExtendedPrecision, NativePrecision


def native(values):
    return np.asarray(values, dtype=np.float64)


def extended(values):
    values = np.asarray(values, dtype=np.float64)
    return ExtendedPrecision().from_dd(values, np.zeros_like(values))


def test_origin_never_escapes():
    result = FractalIterator(100).mandelbrot_iteration(native([0.0]), native([0.0]))

    assert not result.escaped[0]
    assert result.iterations[0] == 100
    assert result.smooth[0] == 100.0


@pytest.mark.parametrize('arithmetic, convert', [
    (NativePrecision(), native),
    (ExtendedPrecision(), extended),
])
def test_two_escapes_at_first_iteration(arithmetic, convert):
    iterator = FractalIterator(100, arithmetic=arithmetic)
    result = iterator.mandelbrot_iteration(convert([2.0, 0.0]), convert([0.0, 0.0]))

    assert result.escaped.tolist() == [True, False]
    assert result.iterations.tolist() == [1, 100]
    assert result.final_abs2[0] == 4.0


def test_zero_bound_classifies_every_mandelbrot_point_inside():
    c_re = native([2.0, 0.0, -3.0, 0.3])
    c_im = native([0.0, 0.0, 1.0, 0.5])
    result = FractalIterator(0).mandelbrot_iteration(c_re, c_im)

    assert not result.escaped.any()
    assert (result.iterations == 0).all()


def test_zero_bound_julia_escapes_only_outside_radius():
    iterator = FractalIterator(0)
    result = iterator.julia_iteration(native([3.0, 0.5]), native([0.0, 0.0]), PlanePoint.parse(0, 0))

    assert result.escaped.tolist() == [True, False]
    assert result.iterations.tolist() == [0, 0]


def test_smooth_count_is_finite_and_non_negative_at_early_escapes():
    iterator = FractalIterator(10)
    z = native([2.0, 3.0, 50.0, 1.9])
    result = iterator.julia_iteration(z, np.zeros(4), PlanePoint.parse(0, 0))

    assert result.iterations.tolist() == [0, 0, 0, 1]
    assert np.isfinite(result.smooth).all()
    assert (result.smooth >= 0).all()
    assert result.smooth[0] == pytest.approx(1.0)


def test_smooth_count_is_close_to_integer_count():
    viewport = Viewport.create((-0.5, 0.0), 3.0, 40, 30)
    iterator = FractalIterator(60)
    result = MandelbrotSet().compute(viewport, RowBand(0, 0, 30), iterator)

    escaped = result.escaped
    assert np.all(np.abs(result.smooth[escaped] - result.iterations[escaped]) <= 2.0)
    assert np.all(result.smooth[~escaped] == 60)


def test_mandelbrot_is_julia_shifted_by_one_step():
    rng = np.random.default_rng(7)
    p_re = rng.uniform(-2.0, 0.6, 500)
    p_im = rng.uniform(-1.2, 1.2, 500)

    bound = 40
    mandelbrot = FractalIterator(bound + 1).mandelbrot_iteration(p_re, p_im)
    # Julia with c equal to the point itself, started at the point
    julia = FractalIterator(bound).escape_time(p_re.copy(), p_im.copy(), p_re, p_im)

    np.testing.assert_array_equal(mandelbrot.iterations, julia.iterations + 1)
    assert np.all(mandelbrot.escaped[julia.escaped])


@pytest.mark.parametrize('z0, expected', [
    (3.0, 0),
    (1.5, 1),
    (1.2j, 2),
    (1.1, 3),
    (-1.05, 4),
])
def test_julia_with_zero_constant_escapes_outside_unit_circle(z0, expected):
    # z_n = z0 ** (2 ** n), so escape is the first n with |z0| ** (2 ** n) >= 2
    result = FractalIterator(50).julia_iteration(native([z0.real]), native([complex(z0).imag]),
                                                 PlanePoint.parse(0, 0))
    assert result.escaped[0]
    assert result.iterations[0] == expected


@pytest.mark.parametrize('z0', [0.9, -0.5 + 0.5j, 0.99j])
def test_julia_with_zero_constant_stays_inside_unit_circle(z0):
    z0 = complex(z0)
    result = FractalIterator(50).julia_iteration(native([z0.real]), native([z0.imag]),
                                                 PlanePoint.parse(0, 0))
    assert not result.escaped[0]
    assert result.iterations[0] == 50


def test_larger_escape_radius_delays_escape():
    c = (native([0.5]), native([0.5]))
    small = FractalIterator(100, escape_radius=2.0).mandelbrot_iteration(*c)
    large = FractalIterator(100, escape_radius=100.0).mandelbrot_iteration(*c)

    assert small.escaped[0] and large.escaped[0]
    assert large.iterations[0] > small.iterations[0]


@pytest.mark.parametrize('kwargs', [
    dict(max_iter=-1),
    dict(max_iter=10, escape_radius=1.5),
    dict(max_iter=10, escape_radius=math.nan),
    dict(max_iter=10, escape_radius=1e76),
    dict(max_iter=10, escape_radius=1e160),
    dict(max_iter=True),
])
def test_iterator_rejects_invalid_settings(kwargs):
    with pytest.raises(ConfigurationError):
        FractalIterator(**kwargs)


def test_largest_escape_radius_does_not_overflow():
    iterator = FractalIterator(200, escape_radius=MAX_ESCAPE_RADIUS)
    result = iterator.mandelbrot_iteration(native([0.3, -2.1, 0.0]), native([0.0, 0.0, 0.0]))

    assert result.escaped.tolist() == [True, True, False]
    assert np.isfinite(result.smooth).all()
    assert np.isfinite(result.final_abs2).all()


@pytest.mark.parametrize('center, scale, bound', [
    ((-0.5, 0.0), 3.0, 80),
    ((-0.75, 0.1), 1e-6, 100),
])
def test_native_and_extended_agree_exactly_below_threshold(center, scale, bound):
    viewport = Viewport.create(center, scale, 60, 40)
    band = RowBand(0, 0, 40)
    fractal = MandelbrotSet()

    native_result = fractal.compute(viewport, band, FractalIterator(bound, arithmetic=NativePrecision()))
    extended_result = fractal.compute(viewport, band, FractalIterator(bound, arithmetic=ExtendedPrecision()))

    assert np.array_equal(native_result.iterations, extended_result.iterations)
    assert np.array_equal(native_result.escaped, extended_result.escaped)
    assert native_result.escaped.any()


def test_band_compute_returns_band_shape():
    viewport = Viewport.create((0.0, 0.0), 3.0, 12, 9)
    result = JuliaSet().compute(viewport, RowBand(1, 3, 7), FractalIterator(20))

    assert result.shape == (4, 12)
    assert result.iterations.dtype == np.int32


def test_julia_accepts_decimal_string_constant():
    fractal = JuliaSet(JuliaParameters("-0.8", "0.156"))
    assert fractal.parameters.c.to_complex() == complex(-0.8, 0.156)


def test_registry_is_closed():
    assert set(FractalRegistry.list_fractals()) == {'mandelbrot', 'julia', 'fern'}
    assert FractalRegistry.get('Barnsley_Fern') is FractalRegistry.get('fern')
    with pytest.raises(ConfigurationError):
        FractalRegistry.get('burning_ship')
    with pytest.raises(ConfigurationError):
        FractalRegistry.create_fractal('julia', c=1)
