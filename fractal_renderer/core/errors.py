"""
Exception types raised by the rendering core.

Every failure of a render surfaces to the caller as one of these, so callers
can catch FractalRenderError and know no partial image was produced.
"""

from typing import List, Tuple


class FractalRenderError(Exception):
    """Base class for all render failures."""


class ConfigurationError(FractalRenderError, ValueError):
    """Malformed or out-of-domain render parameters."""


class WorkerFailure(FractalRenderError, RuntimeError):
    """One or more work units failed; carries every (unit_id, error) pair."""

    def __init__(self, failures: List[Tuple[int, BaseException]]):
        self.failures = list(failures)
        details = '; '.join(f"unit {unit_id}: {error!r}" for unit_id, error in self.failures)
        super().__init__(f"{len(self.failures)} work unit(s) failed: {details}")


class PrecisionExhaustion(FractalRenderError, ArithmeticError):
    """Even the chosen arithmetic cannot resolve adjacent-pixel spacing."""

    def __init__(self, scale: float, required_bits: int, available_bits: float):
        self.scale = scale
        self.required_bits = required_bits
        self.available_bits = available_bits
        super().__init__(
            f"scale {scale:.3g} leaves {available_bits:.1f} bits per pixel, "
            f"{required_bits} required"
        )
