"""
Fractal rendering library.

Renders Mandelbrot sets, Julia sets and the Barnsley Fern from a viewport
(center, scale, image size) into a frame buffer, ready for export.

Key Features:
- Double-double arithmetic selected automatically for deep zooms
- Row-band and seeded-chain parallelism over a process pool
- Smooth, escape-time and histogram coloring with custom palettes
- PNG/JPEG/TIFF/WebP export with embedded render metadata

Example usage:
    >>> from fractal_renderer import RenderConfig, render
    >>> frame = render(RenderConfig(fractal='mandelbrot', width=320, height=200))
    >>> frame.pixels.shape
    (200, 320, 3)
"""

__version__ = "1.0.0"

from fractal_renderer.core.errors import (
    ConfigurationError,
    FractalRenderError,
    PrecisionExhaustion,
    WorkerFailure,
)
from fractal_renderer.core.fractal_types import BarnsleyFern, FractalRegistry, JuliaSet, MandelbrotSet
from fractal_renderer.core.math_functions import FractalIterator, PlanePoint, Viewport
from fractal_renderer.rendering.coloring import ColoringEngine, Palette
from fractal_renderer.rendering.frame_buffer import FrameBuffer
from fractal_renderer.rendering.image_output import ImageExporter, RenderMetadata

# Main API classes
from fractal_renderer.api import FractalRenderer, RenderConfig, load_config, render

__all__ = [
    "FractalRenderer",
    "RenderConfig",
    "load_config",
    "render",
    "Viewport",
    "PlanePoint",
    "MandelbrotSet",
    "JuliaSet",
    "BarnsleyFern",
    "FractalRegistry",
    "FractalIterator",
    "ColoringEngine",
    "Palette",
    "FrameBuffer",
    "ImageExporter",
    "RenderMetadata",
    "FractalRenderError",
    "ConfigurationError",
    "WorkerFailure",
    "PrecisionExhaustion",
]
