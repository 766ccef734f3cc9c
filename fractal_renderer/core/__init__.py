"""Numerical core: viewport, precision strategies and fractal kernels."""
