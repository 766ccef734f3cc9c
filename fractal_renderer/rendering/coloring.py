"""
Coloring algorithms and palette management for fractal rendering.

Escape-time results are colored by interpolating a palette at a position
derived from the (smoothed or histogram-equalized) iteration count, after a
brightness exponent; pixels inside the set get a fixed color. Fern hit counts
go through an intensity curve that blends a foreground color over a
background. Every function here is deterministic.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import matplotlib

from ..core.errors import ConfigurationError
from ..core.math_functions import HitAccumulation, IterationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColorRGB:
    """RGB color representation."""
    r: float
    g: float
    b: float

    def __post_init__(self):
        """Validate RGB values."""
        for component in (self.r, self.g, self.b):
            if not 0 <= component <= 1:
                raise ConfigurationError("RGB components must be between 0 and 1")

    @classmethod
    def from_uint8(cls, r: int, g: int, b: int) -> 'ColorRGB':
        return cls(r / 255.0, g / 255.0, b / 255.0)

    @classmethod
    def from_hex(cls, value: str) -> 'ColorRGB':
        """Parse 'rrggbb' or '#rrggbb'."""
        text = value.lstrip('#')
        if len(text) != 6:
            raise ConfigurationError(f"Invalid hex color '{value}'")
        try:
            return cls.from_uint8(int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
        except ValueError as e:
            raise ConfigurationError(f"Invalid hex color '{value}'") from e

    @classmethod
    def coerce(cls, value: Union['ColorRGB', str, Sequence[float]]) -> 'ColorRGB':
        """Accept a ColorRGB, a hex string or a 0-1 float triple."""
        if isinstance(value, ColorRGB):
            return value
        if isinstance(value, str):
            return cls.from_hex(value)
        if len(value) != 3:
            raise ConfigurationError(f"Invalid color format: {value!r}")
        return cls(*(float(v) for v in value))

    def to_tuple(self) -> Tuple[float, float, float]:
        """Convert to RGB tuple."""
        return (self.r, self.g, self.b)

    def to_uint8_tuple(self) -> Tuple[int, int, int]:
        """Convert to 8-bit RGB tuple."""
        return tuple(int(np.floor(c * 255 + 0.5)) for c in self.to_tuple())


class Palette:
    """Ordered color stops with linear interpolation."""

    def __init__(self, colors: List[Union[ColorRGB, Tuple[float, float, float]]],
                 name: str = "Custom"):
        """
        Initialize color palette.

        Args:
            colors: Colors in the palette, evenly spaced over [0, 1]
            name: Human-readable name for the palette
        """
        self.name = name
        self.colors = tuple(ColorRGB.coerce(color) for color in colors)

        if len(self.colors) < 2:
            raise ConfigurationError("Palette must contain at least 2 colors")

        self._positions = np.linspace(0.0, 1.0, len(self.colors))
        self._channels = np.array([c.to_tuple() for c in self.colors], dtype=np.float64).T

    def interpolate(self, t: Union[float, np.ndarray]) -> np.ndarray:
        """
        Interpolate colors at positions t in [0, 1].

        Args:
            t: Position in palette or array of positions (values are clipped)

        Returns:
            Array shaped t.shape + (3,)
        """
        t = np.clip(np.asarray(t, dtype=np.float64), 0.0, 1.0)
        return np.stack([np.interp(t, self._positions, channel) for channel in self._channels],
                        axis=-1)

    @classmethod
    def from_matplotlib(cls, cmap_name: str, n_samples: int = 32) -> 'Palette':
        """Create palette by sampling a matplotlib colormap."""
        try:
            cmap = matplotlib.colormaps[cmap_name]
        except KeyError as e:
            raise ConfigurationError(f"Unknown matplotlib colormap '{cmap_name}'") from e

        samples = cmap(np.linspace(0, 1, n_samples))
        return cls([ColorRGB(*np.clip(rgba[:3], 0.0, 1.0)) for rgba in samples],
                   name=f"From_{cmap_name}")


def brightness_curve(normalized: np.ndarray, brightness_exponent: float) -> np.ndarray:
    """
    Map [0, 1] positions through t ** (1 / exponent).

    Exponents above 1 lift low counts, which brightens the background
    independently of the iteration bound. Monotone for any positive exponent.
    """
    if not brightness_exponent > 0:
        raise ConfigurationError("brightness_exponent must be positive")
    return np.clip(normalized, 0.0, 1.0) ** (1.0 / brightness_exponent)


class ColoringAlgorithm(ABC):
    """Abstract base class for escape-time coloring algorithms."""

    @abstractmethod
    def positions(self, result: IterationResult, max_iter: int) -> np.ndarray:
        """
        Palette position in [0, 1] for every pixel (inside pixels ignored).

        Args:
            result: Fractal iteration result
            max_iter: Iteration bound used for the render

        Returns:
            Float array of result.shape
        """
        pass

    def apply(self, result: IterationResult, palette: Palette, max_iter: int,
              brightness_exponent: float = 1.0,
              inside_color: Optional[ColorRGB] = None,
              shade_inside: bool = False,
              escape_radius: float = 2.0) -> np.ndarray:
        """
        Color an iteration result.

        Args:
            result: Iteration result
            palette: Color palette
            max_iter: Iteration bound for normalization
            brightness_exponent: Exponent of the brightness curve
            inside_color: Color for points that didn't escape
            shade_inside: Scale inside_color by the final |z|^2 / R^2
            escape_radius: Escape radius used by the kernel

        Returns:
            RGB image array (height, width, 3) with values 0-1
        """
        if inside_color is None:
            inside_color = ColorRGB(0, 0, 0)

        rgb_image = palette.interpolate(brightness_curve(self.positions(result, max_iter),
                                                         brightness_exponent))

        mask = ~result.escaped
        if np.any(mask):
            inside_rgb = np.array(inside_color.to_tuple())
            if shade_inside:
                weight = np.clip(result.final_abs2[mask] / escape_radius ** 2, 0.0, 1.0)
                rgb_image[mask] = weight[:, None] * inside_rgb
            else:
                rgb_image[mask] = inside_rgb

        return rgb_image


class EscapeTimeColoring(ColoringAlgorithm):
    """Raw integer escape counts; shows the classic bands."""

    def positions(self, result: IterationResult, max_iter: int) -> np.ndarray:
        return result.get_normalized_iterations(max_iter, smooth=False)


class SmoothColoring(ColoringAlgorithm):
    """Continuous iteration counts for band-free gradients."""

    def positions(self, result: IterationResult, max_iter: int) -> np.ndarray:
        return result.get_normalized_iterations(max_iter, smooth=True)


class HistogramColoring(ColoringAlgorithm):
    """Histogram equalization: position is the rank of the escape count."""

    def positions(self, result: IterationResult, max_iter: int) -> np.ndarray:
        equalized = np.zeros(result.shape, dtype=np.float64)
        escaped_iterations = result.iterations[result.escaped]

        if escaped_iterations.size == 0:
            return equalized

        hist = np.bincount(escaped_iterations, minlength=max_iter + 1).astype(np.float64)
        cdf = np.cumsum(hist)
        cdf /= cdf[-1]
        equalized[result.escaped] = cdf[escaped_iterations]
        return equalized


class FernColoring:
    """Intensity curve from hit counts, blended foreground over background."""

    curves = ('log', 'exponential')

    def __init__(self, curve: str = 'log', weight: float = 0.01):
        """
        Args:
            curve: 'log' normalizes log1p(hits) by the densest pixel;
                'exponential' darkens by `weight` per hit like ink layering
            weight: Per-hit opacity for the exponential curve
        """
        if curve not in self.curves:
            raise ConfigurationError(f"Unknown fern curve '{curve}'. Available: {', '.join(self.curves)}")
        if not 0 < weight <= 1:
            raise ConfigurationError("fern weight must be in (0, 1]")
        self.curve = curve
        self.weight = weight

    def intensity(self, hits: HitAccumulation) -> np.ndarray:
        counts = hits.counts.astype(np.float64)
        if self.curve == 'log':
            peak = counts.max() if counts.size else 0.0
            if peak <= 0:
                return np.zeros(hits.shape)
            return np.log1p(counts) / np.log1p(peak)
        return 1.0 - (1.0 - self.weight) ** counts

    def apply(self, hits: HitAccumulation, foreground: ColorRGB, background: ColorRGB,
              brightness_exponent: float = 1.0) -> np.ndarray:
        """
        Color accumulated hits.

        Returns:
            RGB image array (height, width, 3) with values 0-1
        """
        intensity = brightness_curve(self.intensity(hits), brightness_exponent)
        fg = np.array(foreground.to_tuple())
        bg = np.array(background.to_tuple())
        return bg + (fg - bg) * intensity[..., None]


# key: (display name, evenly spaced color stops)
BUILTIN_PALETTES = {
    # dark blue rising into orange
    'classic': ("Classic", ['000000', '2828ff', 'f0aa00', 'ffffff']),
    'hot': ("Hot", ['000000', 'ff0000', 'ffff00', 'ffffff']),
    'cool': ("Cool", ['000000', '0000ff', '00ffff', 'ffffff']),
    'gray': ("Grayscale", ['000000', 'ffffff']),
    'fire': ("Fire", ['000000', '800000', 'ff0000', 'ff8000', 'ffff00', 'ffffff']),
    'ocean': ("Ocean", ['000033', '0000cc', '0080ff', '00ffff', '80ffff', 'ffffff']),
    'rainbow': ("Rainbow", ['ff0000', 'ff8000', 'ffff00', '00ff00', '00ffff', '0000ff', '8000ff']),
}


class ColoringEngine:
    """Main engine for applying coloring algorithms."""

    def __init__(self):
        """Initialize coloring engine with built-in algorithms."""
        self.algorithms = {
            'escape_time': EscapeTimeColoring(),
            'smooth': SmoothColoring(),
            'histogram': HistogramColoring(),
        }

        self.palettes = self._create_builtin_palettes()

    def _create_builtin_palettes(self) -> Dict[str, Palette]:
        """Create built-in color palettes."""
        return {key: Palette([ColorRGB.from_hex(stop) for stop in stops], name=name)
                for key, (name, stops) in BUILTIN_PALETTES.items()}

    def add_palette(self, name: str, palette: Palette) -> None:
        """Add a custom color palette."""
        self.palettes[name] = palette
        logger.info(f"Added color palette: {name}")

    def get_algorithm(self, name: str) -> ColoringAlgorithm:
        """Get coloring algorithm by name."""
        if name not in self.algorithms:
            available = ', '.join(self.algorithms.keys())
            raise ConfigurationError(f"Unknown coloring algorithm '{name}'. Available: {available}")
        return self.algorithms[name]

    def get_palette(self, name: str) -> Palette:
        """Get a built-in palette, or sample the matplotlib colormap of that name."""
        if name in self.palettes:
            return self.palettes[name]
        if name in matplotlib.colormaps:
            return Palette.from_matplotlib(name)
        available = ', '.join(self.palettes.keys())
        raise ConfigurationError(f"Unknown color palette '{name}'. "
                                 f"Available: {available}, or any matplotlib colormap")

    def render_color_image(self, result: IterationResult, algorithm: str = 'smooth',
                           palette: str = 'classic', max_iter: int = 50,
                           brightness_exponent: float = 1.0,
                           inside_color: Optional[ColorRGB] = None,
                           shade_inside: bool = False,
                           escape_radius: float = 2.0) -> np.ndarray:
        """
        Render colored image from iteration result.

        Returns:
            RGB image array (height, width, 3) with values 0-1
        """
        coloring_alg = self.get_algorithm(algorithm)
        color_palette = self.get_palette(palette)

        return coloring_alg.apply(result, color_palette, max_iter, brightness_exponent,
                                  inside_color, shade_inside, escape_radius)

    def list_algorithms(self) -> List[str]:
        """Get list of available coloring algorithms."""
        return list(self.algorithms.keys())

    def list_palettes(self) -> List[str]:
        """Get list of built-in color palettes."""
        return list(self.palettes.keys())
