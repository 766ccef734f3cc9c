"""Tests for the fractal-render command line."""

import json

import numpy as np
import pytest
from click.testing import CliRunner
from PIL import Image

from fractal_renderer.cli.main import main


@pytest.fixture
def runner():
    return CliRunner()


def test_render_mandelbrot(runner, tmp_path):
    output = tmp_path / 'm.png'
    result = runner.invoke(main, ['render', 'mandelbrot', str(output), '--width', '32', '--height', '24',
                                  '--iterations', '20', '--processes', '1'])

    assert result.exit_code == 0, result.output
    assert 'Saved' in result.output
    with Image.open(output) as img:
        assert img.size == (32, 24)


def test_render_julia_preset_at_center(runner, tmp_path):
    output = tmp_path / 'j.png'
    result = runner.invoke(main, ['render', 'julia', str(output), '-w', '16', '-h', '16',
                                  '--julia-c', 'rabbit', '--center-re', '0.1', '--scale', '2',
                                  '--iterations', '30', '--processes', '1'])
    assert result.exit_code == 0, result.output
    assert 'Using Julia preset: rabbit' in result.output


def test_render_fern_with_seed(runner, tmp_path):
    first = tmp_path / 'f1.png'
    second = tmp_path / 'f2.png'
    args = ['-w', '30', '-h', '40', '--iterations', '20000', '--seed', '7', '--processes', '1']

    assert runner.invoke(main, ['render', 'fern', str(first), *args]).exit_code == 0
    assert runner.invoke(main, ['render', 'fern', str(second), *args]).exit_code == 0
    with Image.open(first) as a, Image.open(second) as b:
        assert np.array_equal(np.asarray(a), np.asarray(b))


def test_render_from_config_file(runner, tmp_path):
    config = tmp_path / 'config.json'
    config.write_text(json.dumps({'width': 12, 'height': 10, 'max_iterations': 10,
                                  'num_processes': 1, 'color_palette': 'ocean'}))
    output = tmp_path / 'c.png'

    result = runner.invoke(main, ['render', 'mandelbrot', str(output), '--config', str(config),
                                  '--width', '14'])
    assert result.exit_code == 0, result.output
    with Image.open(output) as img:
        assert img.size == (14, 10)


@pytest.mark.parametrize('radius', ['1', '1e160'])
def test_invalid_setting_exits_with_error(runner, tmp_path, radius):
    result = runner.invoke(main, ['render', 'mandelbrot', str(tmp_path / 'x.png'),
                                  '--escape-radius', radius])
    assert result.exit_code == 1
    assert 'Error' in result.output
    assert not (tmp_path / 'x.png').exists()


def test_unsupported_output_format(runner, tmp_path):
    result = runner.invoke(main, ['render', 'mandelbrot', str(tmp_path / 'x.bmp')])
    assert result.exit_code == 2
    assert 'unsupported image format' in result.output


def test_list_palettes(runner):
    result = runner.invoke(main, ['list-palettes'])
    assert result.exit_code == 0
    assert 'classic' in result.output
    assert 'histogram' in result.output


def test_list_presets(runner):
    result = runner.invoke(main, ['list-presets'])
    assert result.exit_code == 0
    assert 'rabbit' in result.output
    assert 'fern' in result.output


@pytest.mark.parametrize('scale, strategy', [('3.5', 'native'), ('1e-12', 'extended')])
def test_precision_info(runner, scale, strategy):
    result = runner.invoke(main, ['precision-info', '--scale', scale])
    assert result.exit_code == 0
    assert f'Selected strategy: {strategy}' in result.output


def test_precision_info_reports_exhaustion(runner):
    result = runner.invoke(main, ['precision-info', '--scale', '1e-40'])
    assert result.exit_code == 0
    assert 'Selected strategy: none' in result.output
