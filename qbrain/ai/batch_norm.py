"""
Batch Normalization
===================

Per-feature affine normalization of a layer's pre-activations.

Theory:
    Training (statistics of the current mini-batch):
        mu    = mean(x, over batch)
        var   = var(x, over batch)
        x_hat = (x - mu) / sqrt(var + eps)
        y     = gamma * x_hat + beta
        running = momentum * running + (1 - momentum) * batch_stat

    Inference uses the running statistics instead of batch ones.

    Backward (N = batch size, inv_std = 1 / sqrt(var + eps)):
        dx = gamma * inv_std / N * (N dy - sum(dy) - x_c * inv_std^2 * sum(dy * x_c))
        dgamma = sum(dy * x_hat),  dbeta = sum(dy)
    with x_c = x - mu. gamma and beta gradients accumulate until
    update_parameters() applies them.

A single-sample batch has zero variance, so x_hat is 0 and the output is
beta; the Jacobian above stays finite thanks to eps.

References:
    Ioffe & Szegedy, 2015 - "Batch Normalization: Accelerating Deep Network
    Training by Reducing Internal Covariate Shift"
"""

from typing import Any, Dict, Optional

import numpy as np


class BatchNormalizer:
    """
    Batch normalization over the feature axis of a (batch, features) input.

    Example:
        >>> bn = BatchNormalizer(3)
        >>> y = bn.forward(np.random.randn(8, 3), training=True)
        >>> dx = bn.backward(np.ones((8, 3)))
        >>> bn.update_parameters(0.01)
    """

    def __init__(
        self,
        size: int,
        gamma: float = 1.0,
        beta: float = 0.0,
        momentum: float = 0.99,
        epsilon: float = 1e-5,
        learning_rate: float = 0.01,
    ):
        self.size = size
        self.gamma = np.full(size, gamma, dtype=np.float64)
        self.beta = np.full(size, beta, dtype=np.float64)
        self.running_mean = np.zeros(size, dtype=np.float64)
        self.running_var = np.ones(size, dtype=np.float64)
        self.momentum = momentum
        self.epsilon = epsilon
        self.learning_rate = learning_rate

        self.grad_gamma = np.zeros(size, dtype=np.float64)
        self.grad_beta = np.zeros(size, dtype=np.float64)

        # Cache of the last training forward, needed by backward
        self._x_hat: Optional[np.ndarray] = None
        self._x_centered: Optional[np.ndarray] = None
        self._inv_std: Optional[np.ndarray] = None

    def forward(self, x: np.ndarray, training: bool = False) -> np.ndarray:
        """
        Normalize a (batch, features) array.

        Args:
            x: Pre-activations, one row per sample
            training: Use batch statistics and update the running estimates

        Returns:
            gamma * x_hat + beta, same shape as x
        """
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 2 or x.shape[1] != self.size:
            raise ValueError(f"Expected input of shape (batch, {self.size}), got {x.shape}")

        if training:
            mean = x.mean(axis=0)
            var = x.var(axis=0)
            inv_std = 1.0 / np.sqrt(var + self.epsilon)
            x_centered = x - mean
            x_hat = x_centered * inv_std

            self.running_mean = self.momentum * self.running_mean + (1 - self.momentum) * mean
            self.running_var = self.momentum * self.running_var + (1 - self.momentum) * var

            self._x_hat = x_hat
            self._x_centered = x_centered
            self._inv_std = inv_std
        else:
            x_hat = (x - self.running_mean) / np.sqrt(self.running_var + self.epsilon)

        return self.gamma * x_hat + self.beta

    def backward(self, grad_output: np.ndarray) -> np.ndarray:
        """
        Gradient w.r.t. the normalizer's input; accumulates gamma/beta grads.

        Raises:
            RuntimeError: if no training forward pass preceded this call
        """
        if self._x_hat is None:
            raise RuntimeError("backward() called before a training forward pass")

        dy = np.asarray(grad_output, dtype=np.float64)
        n = dy.shape[0]

        self.grad_gamma += np.sum(dy * self._x_hat, axis=0)
        self.grad_beta += np.sum(dy, axis=0)

        sum_dy = np.sum(dy, axis=0)
        sum_dy_xc = np.sum(dy * self._x_centered, axis=0)
        dx = (self.gamma * self._inv_std / n) * (
            n * dy - sum_dy - self._x_centered * self._inv_std ** 2 * sum_dy_xc
        )
        return np.nan_to_num(dx, nan=0.0, posinf=0.0, neginf=0.0)

    def update_parameters(self, learning_rate: Optional[float] = None) -> None:
        """Apply and clear the accumulated gamma/beta gradients."""
        lr = self.learning_rate if learning_rate is None else learning_rate
        self.gamma -= lr * np.nan_to_num(self.grad_gamma)
        self.beta -= lr * np.nan_to_num(self.grad_beta)
        self.grad_gamma[:] = 0.0
        self.grad_beta[:] = 0.0

    def set_learning_rate(self, learning_rate: float) -> None:
        self.learning_rate = learning_rate

    def state_dict(self) -> Dict[str, Any]:
        """Learned and running values as plain lists."""
        return {
            'gamma': self.gamma.tolist(),
            'beta': self.beta.tolist(),
            'running_mean': self.running_mean.tolist(),
            'running_var': self.running_var.tolist(),
        }

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        for key in ('gamma', 'beta', 'running_mean', 'running_var'):
            values = np.asarray(state[key], dtype=np.float64)
            if values.shape != (self.size,):
                raise ValueError(f"Batch norm '{key}' has shape {values.shape}, expected ({self.size},)")
            setattr(self, key, values.copy())
