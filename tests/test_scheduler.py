"""Tests for band partitioning, assembly and failure aggregation."""

import numpy as np
import pytest

from fractal_renderer.acceleration.multiprocessing import (
    MultiprocessingAccelerator,
    RowBand,
    assemble_bands,
    create_row_bands,
)
from fractal_renderer.api import FractalRenderer, RenderConfig
from fractal_renderer.core.errors import ConfigurationError, WorkerFailure
from fractal_renderer.core.fractal_types import MandelbrotSet
from fractal_renderer.core.math_functions import FractalIterator, IterationResult, Viewport


class FlakyMandelbrot(MandelbrotSet):
    """Fails on chosen bands."""

    def __init__(self, failing_bands):
        super().__init__()
        self.failing_bands = set(failing_bands)

    def compute(self, viewport, unit, iterator):
        if unit.band_id in self.failing_bands:
            raise RuntimeError(f"band {unit.band_id} exploded")
        return super().compute(viewport, unit, iterator)


def band_result(rows, width, value=1):
    shape = (rows, width)
    return IterationResult(np.full(shape, value, dtype=np.int32), np.ones(shape, dtype=bool),
                           np.full(shape, float(value)), np.full(shape, 4.0))


@pytest.mark.parametrize('height, rows_per_band', [(1, 1), (10, 3), (10, 10), (7, 100), (100, 13)])
def test_bands_cover_every_row_once(height, rows_per_band):
    bands = create_row_bands(height, rows_per_band)

    covered = np.zeros(height, dtype=int)
    for band in bands:
        covered[band.y_start:band.y_end] += 1
        assert 1 <= band.rows <= rows_per_band
    assert (covered == 1).all()
    assert [b.band_id for b in bands] == list(range(len(bands)))


def test_default_band_height_gives_several_bands_per_process():
    accelerator = MultiprocessingAccelerator(num_processes=2)
    assert accelerator.band_height(100) == 13
    assert accelerator.band_height(3) == 1
    assert MultiprocessingAccelerator(num_processes=2, rows_per_band=5).band_height(100) == 5


def test_invalid_pool_settings_are_rejected():
    with pytest.raises(ConfigurationError):
        MultiprocessingAccelerator(num_processes=0)
    with pytest.raises(ConfigurationError):
        create_row_bands(10, 0)


def test_assembly_places_bands_in_their_rows():
    bands = [RowBand(0, 0, 2), RowBand(1, 2, 3)]
    result = assemble_bands([(bands[1], band_result(1, 4, 7)), (bands[0], band_result(2, 4, 3))], 4, 3)

    assert result.iterations[:, 0].tolist() == [3, 3, 7]


def test_assembly_detects_missing_rows():
    with pytest.raises(WorkerFailure):
        assemble_bands([(RowBand(0, 0, 2), band_result(2, 4))], 4, 3)


def test_assembly_detects_overlapping_rows():
    bands = [(RowBand(0, 0, 2), band_result(2, 4)), (RowBand(1, 1, 3), band_result(2, 4))]
    with pytest.raises(WorkerFailure):
        assemble_bands(bands, 4, 3)


def test_assembly_detects_wrong_band_shape():
    with pytest.raises(WorkerFailure):
        assemble_bands([(RowBand(0, 0, 3), band_result(2, 4))], 4, 3)


def test_failures_are_aggregated_into_one_error():
    viewport = Viewport.create((-0.5, 0.0), 3.0, 8, 8)
    accelerator = MultiprocessingAccelerator(num_processes=1, rows_per_band=2)

    with pytest.raises(WorkerFailure) as info:
        accelerator.render_escape_time(FlakyMandelbrot({1, 3}), viewport, FractalIterator(20))

    assert [unit_id for unit_id, _ in info.value.failures] == [1, 3]
    assert all(isinstance(error, RuntimeError) for _, error in info.value.failures)
    assert '2 work unit(s) failed' in str(info.value)


def test_failures_in_worker_processes_are_aggregated():
    # Squaring plane points near 1e300 overflows in every band
    viewport = Viewport.create((0.0, 0.0), 1e300, 8, 8)
    accelerator = MultiprocessingAccelerator(num_processes=2, rows_per_band=2)

    with pytest.raises(WorkerFailure) as info:
        accelerator.render_escape_time(MandelbrotSet(), viewport, FractalIterator(10))

    assert sorted(unit_id for unit_id, _ in info.value.failures) == [0, 1, 2, 3]
    assert all(isinstance(error, FloatingPointError) for _, error in info.value.failures)


def test_failed_render_returns_no_frame():
    config = RenderConfig(center=(0, 0), scale=1e300, width=8, height=8, num_processes=1,
                          max_iterations=10)
    with pytest.raises(WorkerFailure):
        FractalRenderer(config).render()


def test_pool_result_matches_in_process_result():
    viewport = Viewport.create((-0.5, 0.0), 3.0, 40, 30)
    iterator = FractalIterator(50)
    fractal = MandelbrotSet()

    inline = MultiprocessingAccelerator(num_processes=1).render_escape_time(fractal, viewport, iterator)
    pooled = MultiprocessingAccelerator(num_processes=3).render_escape_time(fractal, viewport, iterator)

    np.testing.assert_array_equal(inline.iterations, pooled.iterations)
    np.testing.assert_array_equal(inline.smooth, pooled.smooth)


def test_custom_worker_failures_are_collected():
    viewport = Viewport.create((0.0, 0.0), 1.0, 4, 4)
    accelerator = MultiprocessingAccelerator(num_processes=1)
    bands = create_row_bands(4, 1)

    def worker(args):
        raise ValueError(f"band {args[2].band_id}")

    with pytest.raises(WorkerFailure) as info:
        accelerator.run_units(MandelbrotSet(), viewport, bands, FractalIterator(5), worker=worker)
    assert len(info.value.failures) == 4
