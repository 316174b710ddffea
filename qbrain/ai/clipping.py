"""
Gradient Clipping
=================

Bounds applied to gradients and optimizer internals so that one bad
transition cannot blow the weights up.

    clip(x)             clamp(x * scale, min, max)
    clip_by_value(v)    clip() elementwise
    clip_by_norm(v)     rescale to L2 norm clip_norm when larger (per row for 2-D)
    scale_and_clip(v)   scale -> clip_by_norm -> clip_by_value

scale_and_clip applies gradient_scale twice, once up front and once inside
clip_by_value. With the default scale of 1 this is a plain clamp.

Non-finite entries are zeroed before any bound is applied.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np


ArrayLike = Union[float, np.ndarray]


@dataclass(frozen=True)
class GradientClipper:
    """
    Immutable clipping bounds.

    Example:
        >>> clipper = GradientClipper(-1.0, 1.0, clip_norm=1.0)
        >>> clipper.clip_by_norm(np.array([3.0, 4.0]))
        array([0.6, 0.8])
    """
    min_value: float = -1.0
    max_value: float = 1.0
    clip_norm: float = 1.0
    gradient_scale: float = 1.0

    def __post_init__(self):
        if self.min_value > self.max_value:
            raise ValueError("min_value must not exceed max_value")
        if self.clip_norm <= 0:
            raise ValueError("clip_norm must be positive")

    def clip(self, x: ArrayLike) -> ArrayLike:
        """Scale then clamp into [min_value, max_value]."""
        arr = _finite(x)
        out = np.clip(arr * self.gradient_scale, self.min_value, self.max_value)
        if arr.ndim == 0:
            return float(out)
        return out

    def clip_by_value(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(self.clip(values))

    def clip_by_norm(self, values: np.ndarray) -> np.ndarray:
        """
        Rescale to L2 norm clip_norm if the norm exceeds it, keeping the
        direction. Vectors within the bound are returned unchanged. For a
        matrix every row is treated as its own vector.
        """
        arr = _finite(values)
        if arr.ndim == 0:
            return arr
        norms = np.sqrt(np.sum(arr * arr, axis=-1, keepdims=True))
        factors = np.where(norms > self.clip_norm, self.clip_norm / np.maximum(norms, 1e-12), 1.0)
        return arr * factors

    def scale_and_clip(self, values: np.ndarray) -> np.ndarray:
        """Scale, bound the norm, then clip_by_value (which scales once more)."""
        scaled = _finite(values) * self.gradient_scale
        return self.clip_by_value(self.clip_by_norm(scaled))


def _finite(x: ArrayLike) -> np.ndarray:
    arr = np.asarray(x, dtype=np.float64)
    if np.all(np.isfinite(arr)):
        return arr
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)
