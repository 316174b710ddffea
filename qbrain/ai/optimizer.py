"""
Adam Optimizer
==============

Per-layer Adam state driving the weight updates.

Theory:
    m = clip(beta1 * m + (1 - beta1) * g)
    v = clip(beta2 * v + (1 - beta2) * g^2)
    m_hat = m / (1 - beta1^t)
    v_hat = v / (1 - beta2^t)
    w -= lr * m_hat / (sqrt(v_hat) + eps)

Unlike textbook Adam the moment accumulators themselves go through the
layer's GradientClipper before they are stored. Non-finite bias-corrected
moments are replaced (m_hat by 0, v_hat by eps) so a numeric excursion costs
one skipped update rather than a poisoned layer.

References:
    Kingma & Ba, 2014 - "Adam: A Method for Stochastic Optimization"
"""

from typing import Any, Dict, Optional, Sequence

import numpy as np

from .clipping import GradientClipper
from .neuron import Neuron


class AdamOptimizer:
    """
    Moment matrices shaped like the layer weights (output x input) plus
    moment vectors for the biases.

    Example:
        >>> opt = AdamOptimizer(input_size=4, output_size=2, learning_rate=0.001)
        >>> opt.update_weights(layer.neurons, weight_grads, bias_grads)
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        learning_rate: float = 0.01,
        beta1: float = 0.99,
        beta2: float = 0.999,
        epsilon: float = 1e-6,
        clipper: Optional[GradientClipper] = None,
    ):
        self.input_size = input_size
        self.output_size = output_size
        self.learning_rate = learning_rate
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.clipper = clipper or GradientClipper()
        self.reset()

    def reset(self) -> None:
        """Zero all moments and the iteration counter."""
        self.m = np.zeros((self.output_size, self.input_size), dtype=np.float64)
        self.v = np.zeros((self.output_size, self.input_size), dtype=np.float64)
        self.m_bias = np.zeros(self.output_size, dtype=np.float64)
        self.v_bias = np.zeros(self.output_size, dtype=np.float64)
        self.iteration = 0

    def set_learning_rate(self, learning_rate: float) -> None:
        self.learning_rate = learning_rate

    def update_weights(
        self,
        neurons: Sequence[Neuron],
        weight_gradients: np.ndarray,
        bias_gradients: np.ndarray,
    ) -> None:
        """
        One Adam step for every neuron of a layer.

        Args:
            neurons: The layer's neurons, row i of the gradients belongs to neurons[i]
            weight_gradients: (output, input) loss gradients
            bias_gradients: (output,) loss gradients
        """
        weight_gradients = np.asarray(weight_gradients, dtype=np.float64)
        bias_gradients = np.asarray(bias_gradients, dtype=np.float64)
        if weight_gradients.shape != self.m.shape:
            raise ValueError(f"Weight gradients shape {weight_gradients.shape} != {self.m.shape}")
        if bias_gradients.shape != self.m_bias.shape:
            raise ValueError(f"Bias gradients shape {bias_gradients.shape} != {self.m_bias.shape}")

        self.iteration += 1
        weight_updates = self._step(weight_gradients, 'm', 'v')
        bias_updates = self._step(bias_gradients, 'm_bias', 'v_bias')

        for i, neuron in enumerate(neurons):
            neuron.apply_update(weight_updates[i], bias_updates[i])

    def _step(self, grads: np.ndarray, m_name: str, v_name: str) -> np.ndarray:
        m = self.clipper.clip(self.beta1 * getattr(self, m_name) + (1 - self.beta1) * grads)
        v = self.clipper.clip(self.beta2 * getattr(self, v_name) + (1 - self.beta2) * grads * grads)
        setattr(self, m_name, m)
        setattr(self, v_name, v)

        m_hat = m / (1 - self.beta1 ** self.iteration)
        v_hat = v / (1 - self.beta2 ** self.iteration)
        m_hat = np.where(np.isfinite(m_hat), m_hat, 0.0)
        v_hat = np.where(np.isfinite(v_hat), v_hat, self.epsilon)

        return self.learning_rate * m_hat / (np.sqrt(np.maximum(v_hat, 0.0)) + self.epsilon)

    def state_dict(self) -> Dict[str, Any]:
        return {
            'm': self.m.tolist(),
            'v': self.v.tolist(),
            'm_bias': self.m_bias.tolist(),
            'v_bias': self.v_bias.tolist(),
            'iteration': self.iteration,
        }

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        m = np.asarray(state['m'], dtype=np.float64).reshape(self.output_size, self.input_size)
        v = np.asarray(state['v'], dtype=np.float64).reshape(self.output_size, self.input_size)
        m_bias = np.asarray(state['m_bias'], dtype=np.float64).reshape(self.output_size)
        v_bias = np.asarray(state['v_bias'], dtype=np.float64).reshape(self.output_size)
        self.m, self.v, self.m_bias, self.v_bias = m, v, m_bias, v_bias
        self.iteration = int(state['iteration'])
