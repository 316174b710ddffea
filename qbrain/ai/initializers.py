"""
Weight Initialization
=====================

Strategies producing the starting weights and biases of a layer. Like the
activations they live in a registry keyed by name, each record holding a
weight rule and a bias rule. All randomness comes from the numpy Generator
passed in, so a seeded network is reproducible.

Strategies (N = standard normal draw, U = uniform draw):

    name      weights                          biases
    RANDOM    N * 0.01                         N * 0.01
    XAVIER    N * sqrt(2 / (fan_in + fan_out)) N * sqrt(1 / (fan_in + fan_out))
    HE        N * sqrt(2 / fan_in)             N * sqrt(2 / fan_in)
    UNIFORM   U(-L, L), L = sqrt(6 / fan_in)   U(-L, L), L = sqrt(6 / fan_in)
    ZERO      0                                0

XAVIER deliberately uses two different constants: the "Xavier-weight"
variant (numerator 2) for weights and the "Xavier-bias" variant (numerator 1)
for biases. Biases are initialized with fan_in = fan_out = 1 unless the
caller passes the real fan sizes.

References:
    Glorot & Bengio, 2010 - "Understanding the difficulty of training deep
    feedforward neural networks"
    He et al., 2015 - "Delving Deep into Rectifiers"
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np


RANDOM = 'RANDOM'
XAVIER = 'XAVIER'
HE = 'HE'
UNIFORM = 'UNIFORM'
ZERO = 'ZERO'

# rule(rng, fan_in, fan_out, shape) -> array
InitRule = Callable[[np.random.Generator, int, int, Tuple[int, ...]], np.ndarray]


@dataclass(frozen=True)
class InitStrategy:
    name: str
    weight_rule: InitRule
    bias_rule: InitRule


_REGISTRY: Dict[str, InitStrategy] = {}


def register_initializer(name: str, weight_rule: InitRule, bias_rule: InitRule) -> InitStrategy:
    """Register (or replace) an initialization strategy."""
    record = InitStrategy(name.upper(), weight_rule, bias_rule)
    _REGISTRY[record.name] = record
    return record


def get_initializer(name: str) -> InitStrategy:
    try:
        return _REGISTRY[name.upper()]
    except KeyError:
        raise ValueError(
            f"Unknown weight init strategy '{name}'. Available: {available_initializers()}"
        ) from None


def available_initializers() -> List[str]:
    return sorted(_REGISTRY)


def initialize_weights(
    fan_in: int,
    fan_out: int,
    strategy: str,
    rng: np.random.Generator,
    size: Optional[Union[int, Tuple[int, ...]]] = None,
) -> np.ndarray:
    """
    Draw initial weights.

    Args:
        fan_in: Inputs feeding each neuron
        fan_out: Neurons in the layer
        strategy: Registered strategy name
        rng: Random source
        size: Output shape (default (fan_out, fan_in), the layer weight matrix)

    Returns:
        float64 array of the requested shape
    """
    shape = (fan_out, fan_in) if size is None else _as_shape(size)
    return get_initializer(strategy).weight_rule(rng, fan_in, fan_out, shape)


def initialize_bias(
    strategy: str,
    rng: np.random.Generator,
    fan_in: int = 1,
    fan_out: int = 1,
    size: Optional[Union[int, Tuple[int, ...]]] = None,
) -> Union[float, np.ndarray]:
    """Draw an initial bias: a float, or an array when size is given."""
    shape = (1,) if size is None else _as_shape(size)
    values = get_initializer(strategy).bias_rule(rng, fan_in, fan_out, shape)
    if size is None:
        return float(values[0])
    return values


def _as_shape(size) -> Tuple[int, ...]:
    return (size,) if isinstance(size, int) else tuple(size)


def _random(rng, fan_in, fan_out, shape):
    return rng.standard_normal(shape) * 0.01


def _xavier_weight(rng, fan_in, fan_out, shape):
    return rng.standard_normal(shape) * np.sqrt(2.0 / (fan_in + fan_out))


def _xavier_bias(rng, fan_in, fan_out, shape):
    return rng.standard_normal(shape) * np.sqrt(1.0 / (fan_in + fan_out))


def _he(rng, fan_in, fan_out, shape):
    return rng.standard_normal(shape) * np.sqrt(2.0 / fan_in)


def _uniform(rng, fan_in, fan_out, shape):
    limit = np.sqrt(6.0 / fan_in)
    return rng.uniform(-limit, limit, shape)


def _zero(rng, fan_in, fan_out, shape):
    return np.zeros(shape)


register_initializer(RANDOM, _random, _random)
register_initializer(XAVIER, _xavier_weight, _xavier_bias)
register_initializer(HE, _he, _he)
register_initializer(UNIFORM, _uniform, _uniform)
register_initializer(ZERO, _zero, _zero)
