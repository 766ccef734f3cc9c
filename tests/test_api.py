"""End-to-end tests of the rendering API."""

import json
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from fractal_renderer import (
    ConfigurationError,
    FractalRenderer,
    FrameBuffer,
    RenderConfig,
    Viewport,
    load_config,
    render,
)


def small(**kwargs):
    values = dict(width=40, height=30, max_iterations=40, num_processes=1)
    values.update(kwargs)
    return RenderConfig(**values)


def test_mandelbrot_overview_shows_cardioid_and_outside():
    config = small(center=(-0.75, 0.0), scale=3.5, width=100, height=100, max_iterations=100)
    renderer = FractalRenderer(config)
    raw = renderer.compute()

    assert not raw.escaped[49, 57]
    assert not raw.escaped[50, 57]
    assert raw.escaped[49, 99]
    assert raw.iterations[49, 99] == 3

    frame = renderer.render()
    assert frame.pixels[49, 57].tolist() == [0, 0, 0]
    assert frame.pixels[49, 99].tolist() != [0, 0, 0]


def test_point_two_escapes_at_first_iteration():
    # odd size puts the center pixel exactly on (2, 0)
    renderer = FractalRenderer(small(center=(2.0, 0.0), scale=0.01, width=3, height=3, max_iterations=50))
    raw = renderer.compute()

    assert raw.escaped[1, 1]
    assert raw.iterations[1, 1] == 1
    assert renderer.render().pixels[1, 1].tolist() != [0, 0, 0]


def test_largest_escape_radius_renders():
    frame = render(small(escape_radius=1e75))
    assert frame.is_complete


def test_overlapping_renders_keep_their_own_metadata():
    renderer = FractalRenderer(small(width=24, height=16))
    shallow = Viewport.create((-0.5, 0.0), 3.0, 24, 16)
    deep = Viewport.create(("-0.743643887037158704752191506114774", "0.131825904205311970493"),
                           1e-13, 24, 16)

    with ThreadPoolExecutor(max_workers=2) as executor:
        jobs = [executor.submit(renderer.render_frame, viewport)
                for viewport in (shallow, deep, shallow, deep)]
        outcomes = [job.result() for job in jobs]

    precisions = [metadata.precision for _, metadata in outcomes]
    assert precisions == ['native', 'extended', 'native', 'extended']
    assert outcomes[0][1].scale == 3.0
    assert outcomes[1][1].scale == 1e-13
    assert outcomes[0][0] == outcomes[2][0]
    # render_frame leaves the renderer's last-render fields alone
    assert renderer.last_precision is None


def test_save_image_uses_given_metadata(tmp_path):
    renderer = FractalRenderer(small())
    frame, metadata = renderer.render_frame()
    path = renderer.save_image(frame, tmp_path / 'out.png', metadata=metadata)

    assert renderer.image_exporter.extract_metadata_from_image(path) == metadata


def test_render_is_deterministic_across_process_counts():
    single = render(small(rows_per_band=3))
    pooled = render(small(num_processes=2, rows_per_band=3))
    assert single == pooled


def test_render_returns_frozen_complete_frame():
    frame = render(small())
    assert isinstance(frame, FrameBuffer)
    assert frame.is_complete and frame.frozen
    assert frame.pixels.shape == (30, 40, 3)


def test_single_pixel_image():
    frame = render(small(width=1, height=1))
    assert frame.pixels.shape == (1, 1, 3)


def test_zero_bound_paints_everything_inside():
    frame = render(small(max_iterations=0, inside_color=(1.0, 0.0, 0.0)))
    assert (frame.pixels[..., 0] == 255).all()
    assert (frame.pixels[..., 1:] == 0).all()


def test_default_bounds_per_family():
    assert FractalRenderer(RenderConfig(fractal='mandelbrot')).max_iterations == 50
    assert FractalRenderer(RenderConfig(fractal='fern')).max_iterations == 10_000_000


def test_default_viewport_is_family_overview():
    renderer = FractalRenderer(RenderConfig(fractal='fern', width=60, height=80))
    assert renderer.viewport.center.to_complex() == complex(0.25, 5.0)
    assert renderer.viewport.scale == 10.5

    partial = FractalRenderer(RenderConfig(scale=1.0))
    assert partial.viewport.center.to_complex() == complex(-0.5, 0.0)


def test_julia_preset_and_explicit_constant():
    preset = FractalRenderer(small(fractal='julia', julia_c='rabbit'))
    assert preset.fractal.parameters.c.to_complex() == complex(-0.123, 0.745)

    explicit = FractalRenderer(small(fractal='julia', julia_c=(-0.8, 0.156)))
    assert render(explicit.config) == render(small(fractal='julia', julia_c='lightning'))


def test_alpha_adds_channel():
    frame = render(small(alpha=1.0))
    assert frame.mode == 'RGBA'
    assert (frame.pixels[..., 3] == 255).all()


def test_render_viewport_uses_given_viewport():
    renderer = FractalRenderer(small())
    viewport = Viewport.create((0.3, 0.0), 0.01, 8, 6)
    frame = renderer.render_viewport(viewport)
    assert frame.pixels.shape == (6, 8, 3)


def test_fern_renders_background_and_foreground():
    renderer = FractalRenderer(RenderConfig(fractal='fern', width=60, height=80,
                                            max_iterations=50_000, seed=3, num_processes=1))
    frame = renderer.render()

    assert frame.pixels[0, 0].tolist() == [240, 240, 240]
    assert renderer.last_seed == 3
    assert renderer.last_precision == 'native'
    # some pixel is much darker than the background
    assert frame.pixels[..., 0].min() < 100


def test_metadata_describes_render():
    renderer = FractalRenderer(small(center=('-0.75', '0.1'), scale=0.5))
    renderer.render()
    metadata = renderer.build_metadata()

    assert metadata.fractal_type == 'Mandelbrot'
    assert metadata.resolution == (40, 30)
    assert metadata.max_iterations == 40
    assert metadata.magnification == pytest.approx(8.0)
    assert metadata.precision == 'native'
    assert float(metadata.center[0]) == pytest.approx(-0.75)


@pytest.mark.parametrize('overrides', [
    dict(scale=0.0),
    dict(scale=float('inf')),
    dict(width=0),
    dict(height=-3),
    dict(width=2.5),
    dict(escape_radius=1.5),
    dict(escape_radius=1e76),
    dict(escape_radius=1e160),
    dict(fractal='burning_ship'),
    dict(max_iterations=-1),
    dict(brightness_exponent=0.0),
    dict(precision='quad'),
    dict(coloring_algorithm='orbit_trap'),
    dict(color_palette='not_a_palette'),
    dict(fern_weight=0.0),
    dict(fern_curve='linear'),
    dict(fractal='julia', julia_c='nope'),
    dict(center=('abc', '0')),
    dict(inside_color='#zzzzzz'),
    dict(alpha=1.5),
    dict(num_processes=0),
    dict(rows_per_band=0),
    dict(seed=-1),
])
def test_invalid_configuration_is_rejected_before_work(overrides):
    with pytest.raises(ConfigurationError):
        FractalRenderer(RenderConfig(**overrides))


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        FractalRenderer(RenderConfig(width=0))


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ConfigurationError, match="iterations"):
        RenderConfig.from_dict({'iterations': 100})


def test_config_round_trips_through_json(tmp_path):
    config = RenderConfig(fractal='julia', julia_c=('-0.4', '0.6'), center=(0.1, -0.2),
                          scale=2.0, inside_color=(0.1, 0.2, 0.3))
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(config.to_dict()))

    assert load_config(path) == config


def test_load_config_reports_bad_json(tmp_path):
    path = tmp_path / 'broken.json'
    path.write_text('{"width": ')
    with pytest.raises(ConfigurationError):
        load_config(path)

    path.write_text('[1, 2]')
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_with_overrides_ignores_none():
    config = RenderConfig(width=100).with_overrides(width=None, height=20)
    assert (config.width, config.height) == (100, 20)


def test_concurrent_renders_are_independent():
    a = FractalRenderer(small(fractal='julia', julia_c='dragon'))
    b = FractalRenderer(small())
    frame_a = a.render()
    b.render()
    assert a.render() == frame_a
    assert not np.array_equal(frame_a.pixels, b.render().pixels)
