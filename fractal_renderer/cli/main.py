"""
Command-line interface for fractal generation.

Renders Mandelbrot, Julia and Barnsley Fern images to PNG, JPEG, TIFF or
WebP. Settings come from built-in defaults, then an optional JSON config
file, then command-line flags.
"""

import sys
import time
import logging
import traceback
from pathlib import Path
from typing import Optional, Tuple

import click

from .. import __version__
from ..api import FractalRenderer, RenderConfig, load_config
from ..core.errors import FractalRenderError, PrecisionExhaustion
from ..core.fractal_types import FractalRegistry, JULIA_PRESETS
from ..core.math_functions import Viewport
from ..core.precision import (
    DEFAULT_GUARD_BITS,
    EXTENDED_MANTISSA_BITS,
    NATIVE_MANTISSA_BITS,
    available_bits,
    select_precision,
)
from ..rendering.coloring import ColoringEngine
from ..rendering.image_output import ImageExporter

logger = logging.getLogger(__name__)


def fail(ctx, error: Exception):
    """Report an error on stderr and exit with status 1."""
    click.echo(f"Error: {error}", err=True)
    if ctx.obj.get('verbose'):
        traceback.print_exc()
    sys.exit(1)


def parse_julia_c(value: str):
    """'re,im' (decimal strings kept intact) or a preset name."""
    if value in JULIA_PRESETS:
        return value
    parts = [part.strip() for part in value.split(',')]
    if len(parts) != 2 or not all(parts):
        raise click.BadParameter("use 'real,imag' or a preset name", param_hint='--julia-c')
    return tuple(parts)


def resolve_center(config: RenderConfig, center_re: Optional[str],
                   center_im: Optional[str]) -> Optional[Tuple]:
    """Merge --center-re/--center-im into the configured (or family) center."""
    if center_re is None and center_im is None:
        return None
    base = config.center
    if base is None:
        base = FractalRegistry.get(config.fractal).default_center
    return (center_re if center_re is not None else base[0],
            center_im if center_im is not None else base[1])


@click.group()
@click.version_option(__version__, prog_name='fractal-render')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress most output')
@click.pass_context
def main(ctx, verbose, quiet):
    """
    Fractal Renderer - Mandelbrot, Julia and Barnsley Fern images.

    Deep zooms switch to double-double arithmetic automatically.
    """
    if quiet:
        logging.basicConfig(level=logging.ERROR)
    elif verbose:
        logging.basicConfig(level=logging.DEBUG,
                            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO,
                            format='%(levelname)s: %(message)s')

    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['quiet'] = quiet


@main.command()
@click.argument('fractal_type', type=click.Choice(['mandelbrot', 'julia', 'fern'], case_sensitive=False))
@click.argument('output', type=click.Path(dir_okay=False))
@click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help='JSON configuration file')
@click.option('--width', '-w', type=int, help='Image width')
@click.option('--height', '-h', type=int, help='Image height')
@click.option('--center-re', type=str, help='Real part of the center (decimal string keeps all digits)')
@click.option('--center-im', type=str, help='Imaginary part of the center')
@click.option('--scale', type=float, help='Plane span of the larger image dimension')
@click.option('--iterations', type=int, help='Iteration bound (Fern: number of points)')
@click.option('--escape-radius', type=float, help='Escape radius (2 to 1e75)')
@click.option('--exposure', type=float, help='Brightness exponent; larger is brighter')
@click.option('--julia-c', type=str, help='Julia constant "real,imag" or preset name')
@click.option('--palette', help='Color palette name or matplotlib colormap')
@click.option('--algorithm', type=click.Choice(['escape_time', 'smooth', 'histogram']),
              help='Coloring algorithm')
@click.option('--fern-curve', type=click.Choice(['log', 'exponential']), help='Fern density curve')
@click.option('--seed', type=int, help='Random seed for the Fern')
@click.option('--precision', type=click.Choice(['auto', 'native', 'extended']),
              help='Arithmetic for escape-time kernels')
@click.option('--allow-degraded', is_flag=True,
              help='Render even if precision cannot resolve the pixels')
@click.option('--processes', type=int, help='Number of worker processes')
@click.option('--band-rows', type=int, help='Rows per work unit')
@click.option('--shade-inside', is_flag=True, help='Shade inside points by final |z|')
@click.option('--alpha', type=float, help='Write RGBA with this constant opacity')
@click.pass_context
def render(ctx, fractal_type, output, config_file, **kwargs):
    """
    Render a single fractal image.

    FRACTAL_TYPE: Type of fractal (mandelbrot, julia, fern)
    OUTPUT: Output image file path (.png, .jpg, .tif, .webp)
    """
    try:
        output = Path(output)
        if output.suffix.lower() not in ImageExporter().supported_formats:
            raise click.BadParameter(f"unsupported image format '{output.suffix}'",
                                     param_hint='OUTPUT')

        config = load_config(config_file) if config_file else RenderConfig()
        config = config.with_overrides(fractal=fractal_type.lower())

        julia_c = parse_julia_c(kwargs['julia_c']) if kwargs['julia_c'] else None
        if julia_c in JULIA_PRESETS and not ctx.obj.get('quiet'):
            click.echo(f"Using Julia preset: {julia_c}")

        config = config.with_overrides(
            width=kwargs['width'],
            height=kwargs['height'],
            center=resolve_center(config, kwargs['center_re'], kwargs['center_im']),
            scale=kwargs['scale'],
            max_iterations=kwargs['iterations'],
            escape_radius=kwargs['escape_radius'],
            brightness_exponent=kwargs['exposure'],
            julia_c=julia_c,
            color_palette=kwargs['palette'],
            coloring_algorithm=kwargs['algorithm'],
            fern_curve=kwargs['fern_curve'],
            seed=kwargs['seed'],
            precision=kwargs['precision'],
            allow_degraded_precision=kwargs['allow_degraded'] or None,
            num_processes=kwargs['processes'],
            rows_per_band=kwargs['band_rows'],
            shade_inside=kwargs['shade_inside'] or None,
            alpha=kwargs['alpha'],
        )

        renderer = FractalRenderer(config)

        if not ctx.obj.get('quiet'):
            click.echo(f"Rendering {renderer.fractal.name} "
                       f"({config.width}x{config.height}, bound {renderer.max_iterations})...")
        start_time = time.time()

        frame, metadata = renderer.render_frame()
        renderer.save_image(frame, output, metadata=metadata)

        if not ctx.obj.get('quiet'):
            click.echo(f"Render complete: {time.time() - start_time:.2f}s "
                       f"(precision: {metadata.precision})")
            click.echo(f"Saved: {output}")

    except click.ClickException:
        raise
    except (FractalRenderError, OSError, ValueError) as e:
        fail(ctx, e)


@main.command()
def list_palettes():
    """List available color palettes and coloring algorithms."""
    engine = ColoringEngine()

    click.echo("Available color palettes:")
    for palette in engine.list_palettes():
        click.echo(f"  {palette}")
    click.echo("  (any matplotlib colormap name is accepted too)")

    click.echo("\nAvailable coloring algorithms:")
    for algorithm in engine.list_algorithms():
        click.echo(f"  {algorithm}")


@main.command()
@click.pass_context
def list_presets(ctx):
    """List fractal types and Julia set presets."""
    click.echo("Available fractal types:")
    for name, description in FractalRegistry.list_fractals().items():
        click.echo(f"  {name}")
        if ctx.obj.get('verbose'):
            click.echo(f"    {description}")

    click.echo("\nJulia set presets:")
    for name, params in JULIA_PRESETS.items():
        click.echo(f"  {name}: c = {params.c.to_complex()}")


@main.command()
@click.option('--center-re', type=str, default='-0.5', help='Real part of the center')
@click.option('--center-im', type=str, default='0', help='Imaginary part of the center')
@click.option('--scale', type=float, default=3.5, help='Plane span of the larger image dimension')
@click.option('--width', '-w', type=int, default=750, help='Image width')
@click.option('--height', '-h', type=int, default=500, help='Image height')
@click.option('--guard-bits', type=int, default=DEFAULT_GUARD_BITS,
              help='Bits that must remain per pixel step')
@click.pass_context
def precision_info(ctx, center_re, center_im, scale, width, height, guard_bits):
    """Report which arithmetic a viewport needs."""
    try:
        viewport = Viewport.create((center_re, center_im), scale, width, height)

        click.echo(f"Magnification: {viewport.magnification:.3e}x")
        click.echo(f"Pixel step: {viewport.step:.3e}")
        click.echo(f"Native bits per pixel step: "
                   f"{available_bits(viewport, NATIVE_MANTISSA_BITS):.1f}")
        click.echo(f"Extended bits per pixel step: "
                   f"{available_bits(viewport, EXTENDED_MANTISSA_BITS):.1f}")

        try:
            strategy = select_precision(viewport, 'auto', guard_bits)
            click.echo(f"Selected strategy: {strategy.name}")
        except PrecisionExhaustion as e:
            click.echo(f"Selected strategy: none ({e})")

    except FractalRenderError as e:
        fail(ctx, e)


if __name__ == '__main__':
    main()
