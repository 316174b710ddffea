"""
Dense Layer
===========

A fully connected layer with optional batch normalization and dropout,
trained by its own AdamOptimizer.

Forward (X is (batch, input)):
    z = X W^T + b            W is (output, input), row i belongs to neuron i
    z = batchnorm(z)         if enabled
    a = activation(z)
    a = a * mask / (1 - p)   inverted dropout, training only

Backward (upstream = dLoss/da, same shape as a):
    g  = upstream * mask / (1 - p)          re-apply the forward dropout mask
    g  = g * activation'(z)
    g  = batchnorm_backward(g)              then gamma/beta step
    dW = g^T X / N,  db = sum(g) / N,  dX = g W   (dX uses the pre-update W)
    Adam step on W and b
    return scale_and_clip(dX)

Non-finite gradient entries are zeroed and counted in numeric_faults.
"""

from typing import Optional, Tuple

import numpy as np

from . import activation as act
from .batch_norm import BatchNormalizer
from .clipping import GradientClipper
from .initializers import initialize_weights, initialize_bias
from .neuron import Neuron
from .optimizer import AdamOptimizer


class Layer:
    """
    Example:
        >>> rng = np.random.default_rng(0)
        >>> layer = Layer(4, 3, 'RELU', 'HE', rng)
        >>> out = layer.forward(np.ones((2, 4)), training=True)
        >>> grad_in = layer.backward(np.ones((2, 3)))
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        activation: str,
        init_strategy: str,
        rng: np.random.Generator,
        name: str = '',
        batch_norm: Optional[Tuple[bool, float, float]] = None,
        l2_regularization: float = 0.0,
        dropout_rate: float = 0.0,
        learning_rate: float = 0.01,
        clipper: Optional[GradientClipper] = None,
        adam_betas: Tuple[float, float] = (0.99, 0.999),
        adam_epsilon: float = 1e-6,
        batch_norm_momentum: float = 0.99,
        batch_norm_epsilon: float = 1e-5,
    ):
        """
        Args:
            input_size: Width of the previous layer
            output_size: Number of neurons
            activation: Registered activation name
            init_strategy: Registered weight init strategy name
            rng: Random source for initialization and dropout masks
            name: Label used in persistence and logs
            batch_norm: (enabled, gamma, beta) or None
            l2_regularization: L2 penalty folded into every weight update
            dropout_rate: Probability of dropping a unit during training
            learning_rate: Initial optimizer step size
            clipper: Gradient bounds shared by optimizer and backward
        """
        if input_size <= 0 or output_size <= 0:
            raise ValueError("Layer sizes must be positive")
        if not 0.0 <= dropout_rate < 1.0:
            raise ValueError("Dropout rate must be in [0, 1)")
        act.get_activation(activation)

        self.input_size = input_size
        self.output_size = output_size
        self.activation = activation.upper()
        self.init_strategy = init_strategy.upper()
        self.name = name
        self.rng = rng
        self.l2_regularization = l2_regularization
        self.dropout_rate = dropout_rate
        self.learning_rate = learning_rate
        self.clipper = clipper or GradientClipper()

        self._weights = initialize_weights(input_size, output_size, init_strategy, rng)
        self._biases = np.asarray(
            initialize_bias(init_strategy, rng, size=output_size), dtype=np.float64
        )
        self.neurons = [
            Neuron(self._weights[i], self._biases[i:i + 1], self.activation,
                   l2_regularization, self.clipper)
            for i in range(output_size)
        ]

        self.batch_normalizer: Optional[BatchNormalizer] = None
        if batch_norm is not None and batch_norm[0]:
            self.batch_normalizer = BatchNormalizer(
                output_size,
                gamma=batch_norm[1],
                beta=batch_norm[2],
                momentum=batch_norm_momentum,
                epsilon=batch_norm_epsilon,
                learning_rate=learning_rate,
            )

        self.optimizer = AdamOptimizer(
            input_size,
            output_size,
            learning_rate=learning_rate,
            beta1=adam_betas[0],
            beta2=adam_betas[1],
            epsilon=adam_epsilon,
            clipper=self.clipper,
        )

        self.numeric_faults = 0
        self.last_output: Optional[np.ndarray] = None

        # Training forward cache
        self._inputs: Optional[np.ndarray] = None
        self._pre_activation: Optional[np.ndarray] = None
        self._dropout_mask: Optional[np.ndarray] = None

    # =========================================================================
    # Parameters
    # =========================================================================

    @property
    def weights(self) -> np.ndarray:
        """(output, input) weight matrix; neurons are views onto its rows."""
        return self._weights

    @property
    def biases(self) -> np.ndarray:
        return self._biases

    @property
    def parameter_count(self) -> int:
        return self._weights.size + self._biases.size

    def set_parameters(self, weights: np.ndarray, biases: np.ndarray) -> None:
        """Overwrite weights and biases in place, keeping neuron views valid."""
        weights = np.asarray(weights, dtype=np.float64)
        biases = np.asarray(biases, dtype=np.float64).reshape(-1)
        if weights.shape != self._weights.shape:
            raise ValueError(f"Layer '{self.name}' expects weights {self._weights.shape}, got {weights.shape}")
        if biases.shape != self._biases.shape:
            raise ValueError(f"Layer '{self.name}' expects biases {self._biases.shape}, got {biases.shape}")
        self._weights[...] = weights
        self._biases[...] = biases

    def set_learning_rate(self, learning_rate: float) -> None:
        self.learning_rate = learning_rate
        self.optimizer.set_learning_rate(learning_rate)
        if self.batch_normalizer is not None:
            self.batch_normalizer.set_learning_rate(learning_rate)

    # =========================================================================
    # Forward / backward
    # =========================================================================

    def forward(self, inputs: np.ndarray, training: bool = False) -> np.ndarray:
        """
        Propagate one input vector or a (batch, input) matrix.

        Returns an array of the same rank as the input.
        """
        x = np.asarray(inputs, dtype=np.float64)
        single = x.ndim == 1
        if single:
            x = x[None, :]
        if x.ndim != 2 or x.shape[1] != self.input_size:
            raise ValueError(
                f"Layer '{self.name}' expects input width {self.input_size}, got shape {np.shape(inputs)}"
            )

        z = x @ self._weights.T + self._biases
        if self.batch_normalizer is not None:
            z = self.batch_normalizer.forward(z, training=training)

        a = act.activate(z, self.activation)

        mask = None
        if training and self.dropout_rate > 0:
            mask = self.rng.random(a.shape) >= self.dropout_rate
            a = a * mask / (1.0 - self.dropout_rate)

        if training:
            self._inputs = x
            self._pre_activation = z
            self._dropout_mask = mask

        self.last_output = a
        return a[0] if single else a

    def backward(self, upstream: np.ndarray) -> np.ndarray:
        """
        Backpropagate dLoss/d(output), update this layer and return
        dLoss/d(input) after scale_and_clip.

        Raises:
            RuntimeError: if no training forward pass preceded this call
        """
        if self._inputs is None:
            raise RuntimeError(f"Layer '{self.name}' backward() called before a training forward pass")

        g = np.asarray(upstream, dtype=np.float64)
        if g.ndim == 1:
            g = g[None, :]
        if g.shape != self._pre_activation.shape:
            raise ValueError(f"Upstream gradient shape {g.shape} != output shape {self._pre_activation.shape}")

        if self._dropout_mask is not None:
            g = g * self._dropout_mask / (1.0 - self.dropout_rate)

        g = self._sanitize(g * act.derivative(self._pre_activation, self.activation))

        if self.batch_normalizer is not None:
            g = self._sanitize(self.batch_normalizer.backward(g))
            self.batch_normalizer.update_parameters(self.learning_rate)

        n = self._inputs.shape[0]
        weight_grads = self._sanitize(g.T @ self._inputs / n)
        bias_grads = self._sanitize(g.sum(axis=0) / n)
        input_grads = self._sanitize(g @ self._weights)

        self.optimizer.update_weights(self.neurons, weight_grads, bias_grads)

        self._inputs = None
        self._pre_activation = None
        self._dropout_mask = None
        return self.clipper.scale_and_clip(input_grads)

    def _sanitize(self, values: np.ndarray) -> np.ndarray:
        finite = np.isfinite(values)
        if finite.all():
            return values
        self.numeric_faults += int(values.size - finite.sum())
        return np.where(finite, values, 0.0)

    def __repr__(self) -> str:
        bn = ', batch_norm' if self.batch_normalizer is not None else ''
        return (f"Layer(name={self.name!r}, {self.input_size}->{self.output_size}, "
                f"{self.activation}{bn}, dropout={self.dropout_rate})")
