"""
Activation Functions
====================

Elementwise nonlinearities and their derivatives, held in a registry keyed by
name. A layer stores only the name of its activation; the function pair is
looked up at call time, so a new kind is added with register_activation()
and nothing else changes.

Derivatives take the PRE-activation input z (not the activated output),
because that is what the layer caches during forward.

Kinds:
    SIGMOID     1 / (1 + e^-z)
    TANH        tanh(z)
    RELU        max(0, z)
    LEAKY_RELU  z if z > 0 else 0.01 z
    ELU         z if z > 0 else 0.01 (e^z - 1)     (alpha 0.01, not 1.0)
    GELU        0.5 z (1 + tanh(sqrt(2/pi) (z + 0.044715 z^3)))
    LINEAR      z
    SWISH       z sigmoid(z)
    MISH        z tanh(softplus(z))

Usage:
    >>> from qbrain.ai.activation import activate, derivative, RELU
    >>> activate(np.array([-1.0, 2.0]), RELU)
    array([0., 2.])
"""

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Union

import numpy as np


ArrayLike = Union[float, np.ndarray]

SIGMOID = 'SIGMOID'
TANH = 'TANH'
RELU = 'RELU'
LEAKY_RELU = 'LEAKY_RELU'
ELU = 'ELU'
GELU = 'GELU'
LINEAR = 'LINEAR'
SWISH = 'SWISH'
MISH = 'MISH'

LEAKY_SLOPE = 0.01
ELU_ALPHA = 0.01

_GELU_COEFF = math.sqrt(2.0 / math.pi)
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


@dataclass(frozen=True)
class Activation:
    """One registered nonlinearity: its function and derivative."""
    name: str
    function: Callable[[np.ndarray], np.ndarray]
    derivative: Callable[[np.ndarray], np.ndarray]


_REGISTRY: Dict[str, Activation] = {}


def register_activation(
    name: str,
    function: Callable[[np.ndarray], np.ndarray],
    derivative: Callable[[np.ndarray], np.ndarray],
) -> Activation:
    """
    Register (or replace) an activation kind.

    Args:
        name: Key used in configuration, e.g. 'LEAKY_RELU'
        function: Elementwise f(z) on float arrays
        derivative: Elementwise f'(z) on float arrays

    Returns:
        The registered record
    """
    record = Activation(name.upper(), function, derivative)
    _REGISTRY[record.name] = record
    return record


def get_activation(name: str) -> Activation:
    """Look up a registered activation, raising ValueError for unknown kinds."""
    try:
        return _REGISTRY[name.upper()]
    except KeyError:
        raise ValueError(
            f"Unknown activation '{name}'. Available: {available_activations()}"
        ) from None


def available_activations() -> List[str]:
    return sorted(_REGISTRY)


def activate(x: ArrayLike, kind: str) -> ArrayLike:
    """Apply activation `kind` elementwise. Scalars in, scalars out."""
    return _apply(get_activation(kind).function, x)


def derivative(x: ArrayLike, kind: str) -> ArrayLike:
    """Derivative of activation `kind` at pre-activation x."""
    return _apply(get_activation(kind).derivative, x)


def _apply(fn: Callable[[np.ndarray], np.ndarray], x: ArrayLike) -> ArrayLike:
    arr = np.asarray(x, dtype=np.float64)
    out = fn(arr)
    if arr.ndim == 0:
        return float(out)
    return out


# =============================================================================
# Built-in kinds
# =============================================================================

def _sigmoid(z: np.ndarray) -> np.ndarray:
    # Clipped so exp never overflows
    return 1.0 / (1.0 + np.exp(-np.clip(z, -500.0, 500.0)))


def _sigmoid_derivative(z: np.ndarray) -> np.ndarray:
    s = _sigmoid(z)
    return s * (1.0 - s)


def _tanh_derivative(z: np.ndarray) -> np.ndarray:
    t = np.tanh(z)
    return 1.0 - t * t


def _relu(z: np.ndarray) -> np.ndarray:
    return np.maximum(z, 0.0)


def _relu_derivative(z: np.ndarray) -> np.ndarray:
    return (z > 0).astype(np.float64)


def _leaky_relu(z: np.ndarray) -> np.ndarray:
    return np.where(z > 0, z, LEAKY_SLOPE * z)


def _leaky_relu_derivative(z: np.ndarray) -> np.ndarray:
    return np.where(z > 0, 1.0, LEAKY_SLOPE)


def _elu(z: np.ndarray) -> np.ndarray:
    return np.where(z > 0, z, ELU_ALPHA * (np.exp(np.minimum(z, 0.0)) - 1.0))


def _elu_derivative(z: np.ndarray) -> np.ndarray:
    return np.where(z > 0, 1.0, ELU_ALPHA * np.exp(np.minimum(z, 0.0)))


def _gelu_tanh(z: np.ndarray) -> np.ndarray:
    return np.tanh(_GELU_COEFF * (z + 0.044715 * z ** 3))


def _gelu(z: np.ndarray) -> np.ndarray:
    return 0.5 * z * (1.0 + _gelu_tanh(z))


def _gelu_derivative(z: np.ndarray) -> np.ndarray:
    t = _gelu_tanh(z)
    cdf = 0.5 * (1.0 + t)
    pdf = np.exp(-0.5 * z * z) * _INV_SQRT_2PI
    return cdf + z * pdf * (1.0 - t * t)


def _linear(z: np.ndarray) -> np.ndarray:
    return z.copy()


def _linear_derivative(z: np.ndarray) -> np.ndarray:
    return np.ones_like(z)


def _swish(z: np.ndarray) -> np.ndarray:
    return z * _sigmoid(z)


def _swish_derivative(z: np.ndarray) -> np.ndarray:
    s = _sigmoid(z)
    return s + z * s * (1.0 - s)


def _softplus(z: np.ndarray) -> np.ndarray:
    return np.logaddexp(0.0, z)


def _mish(z: np.ndarray) -> np.ndarray:
    return z * np.tanh(_softplus(z))


def _mish_derivative(z: np.ndarray) -> np.ndarray:
    tsp = np.tanh(_softplus(z))
    return tsp + z * _sigmoid(z) * (1.0 - tsp * tsp)


register_activation(SIGMOID, _sigmoid, _sigmoid_derivative)
register_activation(TANH, np.tanh, _tanh_derivative)
register_activation(RELU, _relu, _relu_derivative)
register_activation(LEAKY_RELU, _leaky_relu, _leaky_relu_derivative)
register_activation(ELU, _elu, _elu_derivative)
register_activation(GELU, _gelu, _gelu_derivative)
register_activation(LINEAR, _linear, _linear_derivative)
register_activation(SWISH, _swish, _swish_derivative)
register_activation(MISH, _mish, _mish_derivative)


# Testing
if __name__ == "__main__":
    z = np.linspace(-3, 3, 7)
    for kind in available_activations():
        print(f"{kind:>10}: {np.round(activate(z, kind), 3)}")
