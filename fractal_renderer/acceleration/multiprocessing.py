"""
Multiprocessing backend for parallel fractal computation.

Escape-time images are cut into bands of whole rows; each band is owned by
exactly one task, so assembly needs no locking. The Barnsley Fern is split
into its seeded chains instead; every chain fills a private hit array and the
arrays are summed once all chains are done. Any failing task fails the whole
render with one aggregated WorkerFailure; no partial result is returned.
"""

import os
import time
import logging
from dataclasses import dataclass
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import ConfigurationError, WorkerFailure
from ..core.math_functions import FractalIterator, HitAccumulation, IterationResult, Viewport
from ..core.fractal_types import BarnsleyFern, FractalType

logger = logging.getLogger(__name__)

BANDS_PER_PROCESS = 4


@dataclass(frozen=True)
class RowBand:
    """Half-open range of image rows computed by one task."""
    band_id: int
    y_start: int
    y_end: int

    @property
    def rows(self) -> int:
        return self.y_end - self.y_start


@dataclass(frozen=True)
class FernChain:
    """One independently seeded walk of the Fern."""
    chain_id: int
    steps: int
    seed: np.random.SeedSequence


@dataclass
class UnitResult:
    """Result from processing a single unit."""
    unit_id: int
    value: Any
    processing_time: float


def create_row_bands(height: int, rows_per_band: int) -> List[RowBand]:
    """
    Cut the image into bands of consecutive rows.

    Args:
        height: Total image height
        rows_per_band: Target band height (the last band may be shorter)

    Returns:
        List of RowBand objects covering every row once
    """
    if rows_per_band < 1:
        raise ConfigurationError("rows_per_band must be at least 1")

    bands = []
    for band_id, y in enumerate(range(0, height, rows_per_band)):
        bands.append(RowBand(band_id, y, min(y + rows_per_band, height)))

    logger.info(f"Created {len(bands)} row bands of up to {rows_per_band} rows")
    return bands


def create_fern_chains(fern: BarnsleyFern, total_steps: int, seed: Optional[int]) -> List[FernChain]:
    """Split the step budget over the fern's chains, each with its own seed."""
    root = np.random.SeedSequence(seed)
    if seed is None:
        logger.info(f"Fern seed entropy: {root.entropy}")
    steps = fern.parameters.chain_steps(total_steps)
    return [FernChain(i, n, child) for i, (n, child) in enumerate(zip(steps, root.spawn(len(steps))))]


def process_unit(args) -> UnitResult:
    """
    Evaluate one band or chain; runs inside a worker process.

    Args:
        args: Tuple of (fractal, viewport, unit, iterator)

    Returns:
        UnitResult carrying an IterationResult or HitAccumulation
    """
    fractal, viewport, unit, iterator = args
    start_time = time.time()
    value = fractal.compute(viewport, unit, iterator)
    processing_time = time.time() - start_time
    unit_id = unit.band_id if isinstance(unit, RowBand) else unit.chain_id
    logger.debug(f"Unit {unit_id} done in {processing_time:.3f}s")
    return UnitResult(unit_id, value, processing_time)


def assemble_bands(band_results: Sequence[Tuple[RowBand, IterationResult]],
                   width: int, height: int) -> IterationResult:
    """
    Place band results into full-frame arrays.

    Every row must be written exactly once; a gap or an overlap means the
    partitioning is broken and is reported as a WorkerFailure.
    """
    iterations = np.zeros((height, width), dtype=np.int32)
    escaped = np.zeros((height, width), dtype=bool)
    smooth = np.zeros((height, width), dtype=np.float64)
    final_abs2 = np.zeros((height, width), dtype=np.float64)
    written = np.zeros(height, dtype=np.int32)

    for band, result in band_results:
        rows = slice(band.y_start, band.y_end)
        if result.shape != (band.rows, width):
            raise WorkerFailure([(band.band_id, ValueError(
                f"band result shape {result.shape}, expected {(band.rows, width)}"))])
        iterations[rows] = result.iterations
        escaped[rows] = result.escaped
        smooth[rows] = result.smooth
        final_abs2[rows] = result.final_abs2
        written[rows] += 1

    if not np.all(written == 1):
        bad = np.flatnonzero(written != 1)
        raise WorkerFailure([(-1, RuntimeError(
            f"rows {bad[:10].tolist()} written {written[bad[:10]].tolist()} times"))])

    return IterationResult(iterations, escaped, smooth, final_abs2)


def merge_hits(chain_results: Sequence[HitAccumulation], width: int, height: int) -> HitAccumulation:
    """Sum private chain accumulators; integer sums make the order irrelevant."""
    total = HitAccumulation.empty(width, height)
    for hits in chain_results:
        total = total + hits
    return total


class MultiprocessingAccelerator:
    """Process-pool execution of independent work units."""

    def __init__(self, num_processes: Optional[int] = None, rows_per_band: Optional[int] = None):
        """
        Initialize multiprocessing accelerator.

        Args:
            num_processes: Number of worker processes (None for CPU count)
            rows_per_band: Band height for escape-time renders (None to derive
                from the image height and process count)
        """
        if num_processes is None:
            self.num_processes = os.cpu_count() or 1
        else:
            if num_processes < 1:
                raise ConfigurationError("num_processes must be at least 1")
            self.num_processes = num_processes

        self.rows_per_band = rows_per_band
        logger.info(f"Multiprocessing accelerator: {self.num_processes} processes")

    def band_height(self, height: int) -> int:
        if self.rows_per_band is not None:
            return self.rows_per_band
        return max(1, -(-height // (self.num_processes * BANDS_PER_PROCESS)))

    def run_units(self, fractal: FractalType, viewport: Viewport, units: Sequence,
                  iterator: Optional[FractalIterator],
                  worker: Callable = process_unit) -> List[UnitResult]:
        """
        Evaluate every unit, in parallel when more than one process is allowed.

        Returns:
            Results in unit order

        Raises:
            WorkerFailure: At least one unit raised; carries all failures
        """
        start_time = time.time()
        results: List[Optional[UnitResult]] = [None] * len(units)
        failures = []
        progress_step = max(1, len(units) // 10)

        def record(index: int, fetch: Callable[[], UnitResult], completed: int):
            try:
                results[index] = fetch()
            except Exception as e:
                logger.error(f"Unit {index} failed: {e!r}")
                failures.append((index, e))
            if completed % progress_step == 0:
                logger.info(f"Completed {completed}/{len(units)} units "
                            f"({completed / len(units) * 100:.1f}%)")

        unit_args = [(fractal, viewport, unit, iterator) for unit in units]

        if self.num_processes == 1 or len(units) <= 1:
            for i, args in enumerate(unit_args):
                record(i, lambda args=args: worker(args), i + 1)
        else:
            workers = min(self.num_processes, len(units))
            logger.info(f"Processing {len(units)} units with {workers} processes")
            with ProcessPoolExecutor(max_workers=workers) as executor:
                future_to_index = {executor.submit(worker, args): i
                                   for i, args in enumerate(unit_args)}
                for completed, future in enumerate(as_completed(future_to_index), start=1):
                    record(future_to_index[future], future.result, completed)

        if failures:
            raise WorkerFailure(sorted(failures, key=lambda f: f[0]))

        total_time = time.time() - start_time
        total_processing_time = sum(r.processing_time for r in results)
        logger.info(f"Parallel rendering complete: {total_time:.2f}s total, "
                    f"{total_processing_time:.2f}s processing time, "
                    f"efficiency: {total_processing_time / max(total_time, 1e-9):.2f}")
        return results

    def render_escape_time(self, fractal: FractalType, viewport: Viewport,
                           iterator: FractalIterator) -> IterationResult:
        """
        Render an escape-time fractal band by band.

        Args:
            fractal: Mandelbrot or Julia fractal
            viewport: Viewport to render
            iterator: Iterator carrying bound, radius and arithmetic

        Returns:
            Full-frame IterationResult
        """
        bands = create_row_bands(viewport.height, self.band_height(viewport.height))
        results = self.run_units(fractal, viewport, bands, iterator)
        return assemble_bands([(band, r.value) for band, r in zip(bands, results)],
                              viewport.width, viewport.height)

    def render_fern(self, fern: BarnsleyFern, viewport: Viewport, total_steps: int,
                    seed: Optional[int]) -> HitAccumulation:
        """
        Run every fern chain and sum their hit counts.

        Args:
            fern: Fern fractal
            viewport: Viewport the points are binned into
            total_steps: Recorded points over all chains
            seed: Root seed; None draws fresh entropy (logged)

        Returns:
            Merged HitAccumulation
        """
        chains = create_fern_chains(fern, total_steps, seed)
        logger.info(f"Running {len(chains)} fern chains, {total_steps} steps in total")
        results = self.run_units(fern, viewport, chains, None)
        return merge_hits([r.value for r in results], viewport.width, viewport.height)
