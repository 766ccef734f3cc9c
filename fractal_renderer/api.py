"""
Main API classes for fractal generation.

This module provides the high-level interface for fractal generation,
combining the viewport, precision selection, kernels, scheduler and coloring
into one call that returns a complete, frozen frame buffer.
"""

import json
import math
import time
import logging
import threading
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from .core.errors import ConfigurationError
from .core.fractal_types import (
    ESCAPE_TIME,
    IFS,
    JULIA_PRESETS,
    FractalRegistry,
    FractalType,
    JuliaParameters,
    JuliaSet,
)
from .core.math_functions import (
    MAX_ESCAPE_RADIUS,
    FractalIterator,
    HitAccumulation,
    IterationResult,
    Viewport,
)
from .core.precision import (
    DEFAULT_GUARD_BITS,
    PRECISION_STRATEGIES,
    format_double_double,
    select_precision,
    to_double_double,
)
from .acceleration.multiprocessing import MultiprocessingAccelerator
from .rendering.coloring import ColorRGB, ColoringEngine, FernColoring
from .rendering.frame_buffer import FrameBuffer
from .rendering.image_output import ImageExporter, RenderMetadata

logger = logging.getLogger(__name__)

# Iteration bound per family when none is configured; for the Fern it is the
# number of recorded points
DEFAULT_ITERATIONS = {
    ESCAPE_TIME: 50,
    IFS: 10_000_000,
}

_TUPLE_FIELDS = ('center', 'julia_c', 'inside_color', 'fern_color', 'fern_background')


def _is_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


@dataclass
class RenderConfig:
    """Configuration for fractal rendering."""

    # Fractal selection
    fractal: str = 'mandelbrot'
    julia_c: Union[str, Tuple[Any, Any]] = (-0.75, 0.1)  # (re, im) or a preset name

    # Viewport; None takes the family's overview framing
    center: Optional[Tuple[Any, Any]] = None  # floats or decimal strings
    scale: Optional[float] = None
    width: int = 750
    height: int = 500

    # Iteration
    max_iterations: Optional[int] = None
    escape_radius: float = 2.0
    seed: Optional[int] = None

    # Precision
    precision: str = 'auto'  # 'auto', 'native' or 'extended'
    precision_guard_bits: int = DEFAULT_GUARD_BITS
    allow_degraded_precision: bool = False

    # Coloring
    brightness_exponent: float = 2.0
    coloring_algorithm: str = 'smooth'
    color_palette: str = 'classic'
    inside_color: Union[str, Tuple[float, float, float]] = (0.0, 0.0, 0.0)
    shade_inside: bool = False
    fern_color: Union[str, Tuple[float, float, float]] = '#046403'
    fern_background: Union[str, Tuple[float, float, float]] = '#f0f0f0'
    fern_curve: str = 'log'
    fern_weight: float = 0.01
    alpha: Optional[float] = None

    # Performance
    num_processes: Optional[int] = None
    rows_per_band: Optional[int] = None

    def validate(self):
        """
        Validate configuration parameters.

        Raises:
            ConfigurationError: On the first out-of-domain value
        """
        FractalRegistry.get(self.fractal)

        for name in ('width', 'height'):
            value = getattr(self, name)
            if not _is_int(value) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        if self.max_iterations is not None and (not _is_int(self.max_iterations) or self.max_iterations < 0):
            raise ConfigurationError(f"max_iterations must be a non-negative integer, got {self.max_iterations!r}")

        if not isinstance(self.escape_radius, (int, float)) or not math.isfinite(self.escape_radius) \
                or not 2.0 <= self.escape_radius <= MAX_ESCAPE_RADIUS:
            raise ConfigurationError(f"escape_radius must be between 2 and {MAX_ESCAPE_RADIUS:g}, "
                                     f"got {self.escape_radius!r}")

        if not isinstance(self.brightness_exponent, (int, float)) \
                or not math.isfinite(self.brightness_exponent) or self.brightness_exponent <= 0:
            raise ConfigurationError(f"brightness_exponent must be positive, got {self.brightness_exponent!r}")

        if self.scale is not None and (not isinstance(self.scale, (int, float))
                                       or not math.isfinite(self.scale) or self.scale <= 0):
            raise ConfigurationError(f"scale must be a positive finite number, got {self.scale!r}")

        if self.center is not None:
            if len(self.center) != 2:
                raise ConfigurationError(f"center must be (real, imag), got {self.center!r}")
            for component in self.center:
                to_double_double(component)

        self.julia_parameters()

        if self.seed is not None and (not _is_int(self.seed) or self.seed < 0):
            raise ConfigurationError(f"seed must be a non-negative integer, got {self.seed!r}")

        if self.precision != 'auto' and self.precision not in PRECISION_STRATEGIES:
            available = ', '.join(['auto', *PRECISION_STRATEGIES])
            raise ConfigurationError(f"Unknown precision '{self.precision}'. Available: {available}")
        if not _is_int(self.precision_guard_bits) or self.precision_guard_bits < 0:
            raise ConfigurationError("precision_guard_bits must be a non-negative integer")

        engine = ColoringEngine()
        engine.get_algorithm(self.coloring_algorithm)
        engine.get_palette(self.color_palette)
        for name in ('inside_color', 'fern_color', 'fern_background'):
            ColorRGB.coerce(getattr(self, name))
        FernColoring(self.fern_curve, self.fern_weight)

        if self.alpha is not None and not 0.0 <= self.alpha <= 1.0:
            raise ConfigurationError(f"alpha must be in [0, 1], got {self.alpha!r}")

        if self.num_processes is not None and (not _is_int(self.num_processes) or self.num_processes < 1):
            raise ConfigurationError("num_processes must be at least 1")
        if self.rows_per_band is not None and (not _is_int(self.rows_per_band) or self.rows_per_band < 1):
            raise ConfigurationError("rows_per_band must be at least 1")

    def julia_parameters(self) -> JuliaParameters:
        """Julia constant from a preset name or an (re, im) pair."""
        if isinstance(self.julia_c, str):
            if self.julia_c not in JULIA_PRESETS:
                available = ', '.join(JULIA_PRESETS)
                raise ConfigurationError(f"Unknown Julia preset '{self.julia_c}'. Available: {available}")
            return JULIA_PRESETS[self.julia_c]
        if len(self.julia_c) != 2:
            raise ConfigurationError(f"julia_c must be (real, imag), got {self.julia_c!r}")
        params = JuliaParameters(*self.julia_c)
        params.validate()
        return params

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a JSON-friendly dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RenderConfig':
        """
        Create configuration from dictionary.

        Unknown keys are rejected rather than ignored, so typos in config files
        surface immediately.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        values = dict(data)
        for name in _TUPLE_FIELDS:
            if isinstance(values.get(name), list):
                values[name] = tuple(values[name])
        return cls(**values)

    def with_overrides(self, **overrides) -> 'RenderConfig':
        """Copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_config(path: Union[str, Path]) -> RenderConfig:
    """Read a RenderConfig from a JSON file."""
    path = Path(path)
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    logger.info(f"Loaded configuration from {path}")
    return RenderConfig.from_dict(data)


class FractalRenderer:
    """Main fractal rendering engine."""

    def __init__(self, config: Optional[RenderConfig] = None):
        """
        Initialize fractal renderer.

        Everything that can be rejected is rejected here, before any work is
        dispatched.

        Args:
            config: Rendering configuration (uses defaults if None)
        """
        self.config = config or RenderConfig()
        self.config.validate()

        self.coloring_engine = ColoringEngine()
        self.image_exporter = ImageExporter()
        self.fractal = self._create_fractal()
        self.max_iterations = (self.config.max_iterations if self.config.max_iterations is not None
                               else DEFAULT_ITERATIONS[self.fractal.kind])
        self.viewport = self._create_viewport()
        self.accelerator = MultiprocessingAccelerator(self.config.num_processes,
                                                      self.config.rows_per_band)

        self.last_precision: Optional[str] = None
        self.last_seed: Optional[int] = None
        self.last_render_time = 0.0
        self._state_lock = threading.Lock()

        logger.info(f"FractalRenderer initialized: {self.fractal.name}, "
                    f"{self.config.width}x{self.config.height}, bound={self.max_iterations}")

    def _create_fractal(self) -> FractalType:
        if FractalRegistry.get(self.config.fractal) is JuliaSet:
            return JuliaSet(self.config.julia_parameters())
        return FractalRegistry.create_fractal(self.config.fractal)

    def _create_viewport(self) -> Viewport:
        recommended = self.fractal.get_recommended_viewport(self.config.width, self.config.height)
        if self.config.center is None and self.config.scale is None:
            return recommended

        center = self.config.center
        if center is None:
            center = (recommended.center.real, recommended.center.imag)
        scale = self.config.scale if self.config.scale is not None else recommended.scale
        return Viewport.create(center, scale, self.config.width, self.config.height)

    def _resolve_seed(self) -> int:
        if self.config.seed is not None:
            return self.config.seed
        seed = np.random.SeedSequence().entropy
        logger.info(f"No seed given, using {seed}")
        return seed

    def _compute(self, viewport: Viewport) -> Tuple[Union[IterationResult, HitAccumulation], str, Optional[int]]:
        """Kernel output plus the precision and seed it was computed with."""
        if self.fractal.kind == IFS:
            seed = self._resolve_seed()
            raw = self.accelerator.render_fern(self.fractal, viewport, self.max_iterations, seed)
            return raw, 'native', seed

        arithmetic = select_precision(
            viewport,
            requested=self.config.precision,
            guard_bits=self.config.precision_guard_bits,
            allow_degraded=self.config.allow_degraded_precision,
        )
        iterator = FractalIterator(self.max_iterations, self.config.escape_radius, arithmetic)
        raw = self.accelerator.render_escape_time(self.fractal, viewport, iterator)
        return raw, arithmetic.name, self.config.seed

    def _record(self, precision: str, seed: Optional[int], render_time: Optional[float] = None) -> None:
        with self._state_lock:
            self.last_precision = precision
            self.last_seed = seed
            if render_time is not None:
                self.last_render_time = render_time

    def compute(self, viewport: Optional[Viewport] = None) -> Union[IterationResult, HitAccumulation]:
        """
        Run the fractal kernels without coloring.

        Args:
            viewport: Viewport to compute (defaults to the configured one)

        Returns:
            IterationResult for escape-time families, HitAccumulation for the Fern

        Raises:
            PrecisionExhaustion: The viewport is too deep for the available
                arithmetic and degraded precision is not allowed
            WorkerFailure: Any work unit failed
        """
        raw, precision, seed = self._compute(viewport or self.viewport)
        self._record(precision, seed)
        return raw

    def colorize(self, raw: Union[IterationResult, HitAccumulation]) -> np.ndarray:
        """Map raw kernel output to a (height, width, 3) float image."""
        config = self.config
        if isinstance(raw, HitAccumulation):
            fern_coloring = FernColoring(config.fern_curve, config.fern_weight)
            return fern_coloring.apply(raw, ColorRGB.coerce(config.fern_color),
                                       ColorRGB.coerce(config.fern_background),
                                       config.brightness_exponent)

        return self.coloring_engine.render_color_image(
            raw,
            algorithm=config.coloring_algorithm,
            palette=config.color_palette,
            max_iter=self.max_iterations,
            brightness_exponent=config.brightness_exponent,
            inside_color=ColorRGB.coerce(config.inside_color),
            shade_inside=config.shade_inside,
            escape_radius=config.escape_radius,
        )

    def render_frame(self, viewport: Optional[Viewport] = None) -> Tuple[FrameBuffer, RenderMetadata]:
        """
        Render a viewport and describe it, without touching renderer state.

        Concurrent calls on one renderer each get the metadata of their own
        render.

        Returns:
            Complete, read-only FrameBuffer and its RenderMetadata
        """
        viewport = viewport or self.viewport
        start_time = time.time()
        logger.info(f"Starting render: {self.fractal.name} at magnification "
                    f"{viewport.magnification:.3g}x")

        raw, precision, seed = self._compute(viewport)
        frame = FrameBuffer.from_rgb(self.colorize(raw), alpha=self.config.alpha).freeze()

        render_time = time.time() - start_time
        logger.info(f"Render complete: {render_time:.2f}s")
        return frame, self.build_metadata(viewport, render_time, precision, seed)

    def render_viewport(self, viewport: Viewport) -> FrameBuffer:
        """
        Render an arbitrary viewport with this renderer's settings.

        `last_precision`, `last_seed` and `last_render_time` describe the most
        recently finished render; use render_frame when renders overlap.

        Returns:
            Complete, read-only FrameBuffer
        """
        frame, metadata = self.render_frame(viewport)
        self._record(metadata.precision, metadata.seed, metadata.render_time_seconds)
        return frame

    def render(self) -> FrameBuffer:
        """Render the configured viewport."""
        return self.render_viewport(self.viewport)

    def build_metadata(self, viewport: Optional[Viewport] = None, render_time: float = 0.0,
                       precision: Optional[str] = None, seed: Optional[int] = None) -> RenderMetadata:
        """Describe a render for embedding in the image file (defaults to the last one)."""
        viewport = viewport or self.viewport
        if precision is None:
            precision = self.last_precision or self.config.precision
        if seed is None:
            seed = self.last_seed
        return RenderMetadata(
            fractal_type=self.fractal.name,
            center=(format_double_double(viewport.center.real),
                    format_double_double(viewport.center.imag)),
            scale=viewport.scale,
            magnification=viewport.magnification,
            resolution=(viewport.width, viewport.height),
            max_iterations=self.max_iterations,
            escape_radius=self.config.escape_radius,
            coloring_algorithm=(self.config.fern_curve if self.fractal.kind == IFS
                                else self.config.coloring_algorithm),
            color_palette=self.config.color_palette,
            precision=precision,
            brightness_exponent=self.config.brightness_exponent,
            seed=seed,
            render_time_seconds=render_time,
            fractal_parameters=self.fractal.parameters.to_dict(),
        )

    def save_image(self, frame: FrameBuffer, output_path: Union[str, Path],
                   viewport: Optional[Viewport] = None, quality: int = 95,
                   metadata: Optional[RenderMetadata] = None) -> Path:
        """Save a rendered frame with metadata (built from the last render if not given)."""
        if metadata is None:
            metadata = self.build_metadata(viewport, self.last_render_time)
        return self.image_exporter.save_image(frame, output_path, metadata, quality)


def render(config: Optional[RenderConfig] = None) -> FrameBuffer:
    """
    Render one image from a configuration.

    Holds no state between calls; concurrent calls are independent.
    """
    return FractalRenderer(config).render()
