"""
Fractal type definitions and parameter management.

The set of families is closed: two escape-time families (Mandelbrot, Julia)
that produce per-pixel IterationResults over row bands, and one iterated
function system (Barnsley Fern) that produces hit counts per seeded chain.
The renderer branches once on `FractalType.kind` to pick the matching merge
path.
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, Tuple, TYPE_CHECKING

import numpy as np

from .errors import ConfigurationError
from .math_functions import (
    FractalIterator,
    HitAccumulation,
    IterationResult,
    PlanePoint,
    Viewport,
    run_fern_chain,
)
from .precision import to_double_double

if TYPE_CHECKING:
    from ..acceleration.multiprocessing import FernChain, RowBand

logger = logging.getLogger(__name__)

ESCAPE_TIME = 'escape_time'
IFS = 'ifs'


@dataclass(frozen=True)
class FractalParameters:
    """Base class for fractal parameters with validation."""

    def validate(self) -> None:
        """Validate parameter values."""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FractalParameters':
        """Create parameters from dictionary."""
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid {cls.__name__}: {e}") from e


class FractalType(ABC):
    """Abstract base class for fractal types."""

    kind: str = ESCAPE_TIME

    def __init__(self, name: str, parameters: FractalParameters):
        """
        Initialize fractal type.

        Args:
            name: Human-readable name for the fractal
            parameters: Fractal-specific parameters
        """
        self.name = name
        self.parameters = parameters
        self.parameters.validate()

    @abstractmethod
    def compute(self, viewport: Viewport, unit, iterator: FractalIterator):
        """
        Evaluate one unit of work.

        Args:
            viewport: Viewport being rendered
            unit: RowBand for escape-time families, FernChain for the Fern
            iterator: Configured iterator (bound, radius, arithmetic)

        Returns:
            IterationResult for a band, or HitAccumulation for a chain
        """
        pass

    # Overview framing of the family: plane center and scale
    default_center: Tuple[float, float] = (0.0, 0.0)
    default_scale: float = 3.5

    def get_recommended_viewport(self, width: int, height: int) -> Viewport:
        """Viewport framing the whole fractal at the given image size."""
        return Viewport.create(self.default_center, self.default_scale, width, height)

    def get_description(self) -> str:
        """Get a description of this fractal type."""
        return f"{self.name} fractal"


class EscapeTimeFractal(FractalType):
    """Shared band evaluation of the escape-time families."""

    kind = ESCAPE_TIME

    def compute(self, viewport: Viewport, unit: 'RowBand', iterator: FractalIterator) -> IterationResult:
        A = iterator.arithmetic
        (re_hi, re_lo), (im_hi, im_lo) = viewport.row_points(unit.y_start, unit.y_end)
        points_re = A.from_dd(re_hi.ravel(), re_lo.ravel())
        points_im = A.from_dd(im_hi.ravel(), im_lo.ravel())

        result = self.iterate(points_re, points_im, iterator)
        return result.reshape(re_hi.shape)

    @abstractmethod
    def iterate(self, points_re, points_im, iterator: FractalIterator) -> IterationResult:
        """Run the family's iteration over flat plane points."""
        pass


@dataclass(frozen=True)
class MandelbrotParameters(FractalParameters):
    """Mandelbrot has nothing to configure beyond the iteration bound."""


class MandelbrotSet(EscapeTimeFractal):
    """Mandelbrot set fractal implementation."""

    default_center = (-0.5, 0.0)

    def __init__(self, parameters: MandelbrotParameters = None):
        super().__init__("Mandelbrot", parameters or MandelbrotParameters())

    def iterate(self, points_re, points_im, iterator: FractalIterator) -> IterationResult:
        return iterator.mandelbrot_iteration(points_re, points_im)

    def get_description(self) -> str:
        return "Mandelbrot set: z_{n+1} = z_n^2 + c, where c is the plane point and z_0 = 0"


@dataclass(frozen=True)
class JuliaParameters(FractalParameters):
    """Parameters for Julia set generation. Components may be decimal strings."""

    c_real: Any = -0.75
    c_imag: Any = 0.1

    def validate(self) -> None:
        """Validate Julia parameters."""
        to_double_double(self.c_real)
        to_double_double(self.c_imag)

    @property
    def c(self) -> PlanePoint:
        """Get the Julia constant as a double-double plane point."""
        return PlanePoint.parse(self.c_real, self.c_imag)


class JuliaSet(EscapeTimeFractal):
    """Julia set fractal implementation."""

    def __init__(self, parameters: JuliaParameters = None):
        super().__init__("Julia", parameters or JuliaParameters())
        self._c = self.parameters.c

    def iterate(self, points_re, points_im, iterator: FractalIterator) -> IterationResult:
        return iterator.julia_iteration(points_re, points_im, self._c)

    def get_description(self) -> str:
        return (f"Julia set: z_{{n+1}} = z_n^2 + c, where c = {self._c.to_complex()} "
                f"and z_0 is the plane point")


# Barnsley's original coefficients (a, b, c, d, e, f):
# x' = a*x + b*y + e, y' = c*x + d*y + f
BARNSLEY_TRANSFORMS = (
    (0.00, 0.00, 0.00, 0.16, 0.00, 0.00),    # stem
    (0.85, 0.04, -0.04, 0.85, 0.00, 1.60),   # successively smaller leaflets
    (0.20, -0.26, 0.23, 0.22, 0.00, 1.60),   # largest left leaflet
    (-0.15, 0.28, 0.26, 0.24, 0.00, 0.44),   # largest right leaflet
)
BARNSLEY_PROBABILITIES = (0.01, 0.85, 0.07, 0.07)


@dataclass(frozen=True)
class FernParameters(FractalParameters):
    """
    Parameters of the affine iterated function system.

    `chains` fixes how the step budget is split into independently seeded
    walks. It is part of the fractal's definition, not of the worker pool, so
    the same seed gives the same picture on any number of processes.
    """

    transforms: Tuple[Tuple[float, ...], ...] = BARNSLEY_TRANSFORMS
    probabilities: Tuple[float, ...] = BARNSLEY_PROBABILITIES
    chains: int = 32
    walkers: int = 4096
    burn_in: int = 20

    def validate(self) -> None:
        """Validate fern parameters."""
        if len(self.transforms) == 0:
            raise ConfigurationError("At least one affine transform is required")
        if len(self.transforms) != len(self.probabilities):
            raise ConfigurationError("Each transform needs exactly one probability")
        for transform in self.transforms:
            if len(transform) != 6 or not all(math.isfinite(v) for v in transform):
                raise ConfigurationError(f"Transform must be 6 finite coefficients, got {transform!r}")
        if any(p < 0 or not math.isfinite(p) for p in self.probabilities):
            raise ConfigurationError("Probabilities must be non-negative")
        if abs(sum(self.probabilities) - 1.0) > 1e-6:
            raise ConfigurationError(f"Probabilities must sum to 1, got {sum(self.probabilities)}")
        for name in ('chains', 'walkers'):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        if self.burn_in < 0:
            raise ConfigurationError("burn_in must be non-negative")

    def coefficient_array(self) -> np.ndarray:
        return np.asarray(self.transforms, dtype=np.float64)

    def cumulative_probabilities(self) -> np.ndarray:
        cumulative = np.cumsum(np.asarray(self.probabilities, dtype=np.float64))
        cumulative /= cumulative[-1]
        # Draws are in [0, 1); pinning the end keeps every draw inside the table
        cumulative[-1] = 1.0
        return cumulative

    def chain_steps(self, total_steps: int):
        """Steps owned by each chain; sums to total_steps."""
        base, extra = divmod(total_steps, self.chains)
        return [base + (1 if i < extra else 0) for i in range(self.chains)]


class BarnsleyFern(FractalType):
    """Barnsley Fern rendered as a hit-density image."""

    kind = IFS
    default_center = (0.25, 5.0)
    default_scale = 10.5

    def __init__(self, parameters: FernParameters = None):
        super().__init__("Barnsley Fern", parameters or FernParameters())
        self._coefficients = self.parameters.coefficient_array()
        self._cumulative = self.parameters.cumulative_probabilities()

    def compute(self, viewport: Viewport, unit: 'FernChain', iterator: FractalIterator = None) -> HitAccumulation:
        return run_fern_chain(
            self._coefficients, self._cumulative, viewport,
            steps=unit.steps,
            walkers=self.parameters.walkers,
            burn_in=self.parameters.burn_in,
            seed=unit.seed,
        )

    def get_description(self) -> str:
        return (f"Barnsley Fern: {len(self.parameters.transforms)} affine maps chosen at random, "
                f"{self.parameters.chains} seeded chains")


class FractalRegistry:
    """Lookup of the supported fractal families."""

    _fractals: Dict[str, type] = {
        'mandelbrot': MandelbrotSet,
        'julia': JuliaSet,
        'fern': BarnsleyFern,
    }

    _parameters: Dict[str, type] = {
        'mandelbrot': MandelbrotParameters,
        'julia': JuliaParameters,
        'fern': FernParameters,
    }

    _aliases = {'barnsleyfern': 'fern', 'barnsley_fern': 'fern'}

    @classmethod
    def _key(cls, name: str) -> str:
        key = name.lower()
        return cls._aliases.get(key, key)

    @classmethod
    def get(cls, name: str) -> type:
        """
        Get a fractal class by name.

        Args:
            name: Fractal identifier

        Returns:
            Fractal class
        """
        fractal_class = cls._fractals.get(cls._key(name))
        if fractal_class is None:
            available = ', '.join(cls._fractals.keys())
            raise ConfigurationError(f"Unknown fractal type '{name}'. Available: {available}")
        return fractal_class

    @classmethod
    def list_fractals(cls) -> Dict[str, str]:
        """Get a dictionary of available fractals and their descriptions."""
        return {name: fractal_class().get_description()
                for name, fractal_class in cls._fractals.items()}

    @classmethod
    def create_fractal(cls, name: str, **kwargs) -> FractalType:
        """
        Create a fractal instance with the given parameters.

        Args:
            name: Fractal type name
            **kwargs: Parameters for the fractal

        Returns:
            Configured fractal instance
        """
        fractal_class = cls.get(name)
        logger.debug(f"Creating fractal {name} with {kwargs or 'default parameters'}")
        if not kwargs:
            return fractal_class()
        param_class = cls._parameters[cls._key(name)]
        return fractal_class(param_class.from_dict(kwargs))


# Predefined interesting Julia set constants
JULIA_PRESETS = {
    'dragon': JuliaParameters(c_real=-0.75, c_imag=0.1),
    'spiral': JuliaParameters(c_real=-0.4, c_imag=0.6),
    'dendrite': JuliaParameters(c_real=0.0, c_imag=1.0),
    'lightning': JuliaParameters(c_real=-0.8, c_imag=0.156),
    'rabbit': JuliaParameters(c_real=-0.123, c_imag=0.745),
    'airplane': JuliaParameters(c_real=-1.7549, c_imag=0.0),
    'san_marco': JuliaParameters(c_real=-0.75, c_imag=0.0),
    'siegel_disk': JuliaParameters(c_real=-0.391, c_imag=-0.587),
}
