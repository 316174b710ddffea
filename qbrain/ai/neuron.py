"""
Neuron
======

A weight vector and a bias. Inside a Layer each neuron is a view onto one row
of the layer's weight matrix and one slot of its bias vector, so updating a
neuron updates the layer and vice versa. The layer does its heavy lifting on
the whole matrix; neurons are the per-unit handle used by the optimizer and
by inspection code.
"""

from typing import Optional

import numpy as np

from . import activation as act
from .clipping import GradientClipper
from .initializers import initialize_weights, initialize_bias


class Neuron:
    """
    One unit: z = bias + w . x, output = activation(z).

    Example:
        >>> n = Neuron(np.array([0.5, 0.5]), np.array([0.0]), 'LINEAR')
        >>> n.activate(np.array([1.0, 1.0]))
        1.0
    """

    def __init__(
        self,
        weights: np.ndarray,
        bias: np.ndarray,
        activation: str = act.LINEAR,
        l2_regularization: float = 0.0,
        clipper: Optional[GradientClipper] = None,
    ):
        """
        Args:
            weights: 1-D float array, updated in place (may be a matrix row view)
            bias: 1-element float array, updated in place (may be a vector slice)
            activation: Registered activation name
            l2_regularization: L2 penalty coefficient
            clipper: Bounds for the plain gradient-descent path
        """
        if weights.ndim != 1:
            raise ValueError("Neuron weights must be a 1-D array")
        if bias.shape != (1,):
            raise ValueError("Neuron bias must be a 1-element array")
        act.get_activation(activation)

        self._weights = weights
        self._bias = bias
        self.activation = activation
        self.l2_regularization = l2_regularization
        self.clipper = clipper or GradientClipper()

    @classmethod
    def create(
        cls,
        input_size: int,
        activation: str,
        init_strategy: str,
        rng: np.random.Generator,
        l2_regularization: float = 0.0,
        clipper: Optional[GradientClipper] = None,
    ) -> 'Neuron':
        """Build a free-standing neuron with freshly initialized parameters."""
        weights = initialize_weights(input_size, 1, init_strategy, rng, size=input_size)
        bias = np.array([initialize_bias(init_strategy, rng)])
        return cls(weights, bias, activation, l2_regularization, clipper)

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    @property
    def bias(self) -> float:
        return float(self._bias[0])

    @bias.setter
    def bias(self, value: float) -> None:
        self._bias[0] = value

    @property
    def input_size(self) -> int:
        return self._weights.shape[0]

    def set_weights(self, weights: np.ndarray) -> None:
        """Overwrite the weights in place (keeps any view into a layer valid)."""
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != self._weights.shape:
            raise ValueError(
                f"Expected {self._weights.shape[0]} weights, got {weights.shape}"
            )
        self._weights[:] = weights

    def linear_transform(self, inputs: np.ndarray):
        """bias + w . x for one input vector (float) or a batch (1-D array)."""
        z = np.asarray(inputs, dtype=np.float64) @ self._weights + self._bias[0]
        return float(z) if np.ndim(z) == 0 else z

    def activate(self, inputs: np.ndarray):
        return act.activate(self.linear_transform(inputs), self.activation)

    def update_weights(self, weight_grads: np.ndarray, bias_grad: float, learning_rate: float) -> None:
        """
        Plain clipped gradient-descent step with L2 penalty:
        w -= lr * (clip(g) + l2 * w)
        """
        grads = self.clipper.clip_by_value(weight_grads)
        self._weights -= learning_rate * (grads + self.l2_regularization * self._weights)
        self._bias[0] -= learning_rate * (
            self.clipper.clip(bias_grad) + self.l2_regularization * self._bias[0]
        )

    def apply_update(self, weight_updates: np.ndarray, bias_update: float) -> None:
        """Subtract an optimizer step plus the L2 term: w -= u + l2 * w."""
        self._weights -= weight_updates + self.l2_regularization * self._weights
        self._bias[0] -= bias_update + self.l2_regularization * self._bias[0]

    def __repr__(self) -> str:
        return f"Neuron(inputs={self.input_size}, activation={self.activation}, bias={self.bias:.4f})"
