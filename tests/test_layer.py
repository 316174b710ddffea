"""
Tests for Layer.

These tests verify:
    - Forward shapes and values
    - Neuron views onto the weight matrix
    - Backward updates and returned input gradients
    - Dropout masking
    - Batch normalization inside a layer
    - Numeric fault handling
"""

import numpy as np
import pytest

from qbrain.ai.layer import Layer


def make_layer(input_size=2, output_size=2, activation='LINEAR', seed=0, **kwargs):
    return Layer(input_size, output_size, activation, 'XAVIER',
                 np.random.default_rng(seed), name='TEST', **kwargs)


def fixed_layer(input_size=2, output_size=2, value=0.5, **kwargs):
    layer = make_layer(input_size, output_size, **kwargs)
    layer.set_parameters(np.full((output_size, input_size), value), np.zeros(output_size))
    return layer


class TestLayerForward:
    """Test forward propagation."""

    def test_single_input_keeps_rank(self):
        layer = make_layer(3, 4)
        assert layer.forward(np.ones(3)).shape == (4,)

    def test_batch_input_keeps_rank(self):
        layer = make_layer(3, 4)
        assert layer.forward(np.ones((5, 3))).shape == (5, 4)

    def test_fixed_weights(self):
        """0.5 * 1 + 0.5 * 1 = 1 for every neuron."""
        layer = fixed_layer()
        np.testing.assert_allclose(layer.forward(np.array([1.0, 1.0])), [1.0, 1.0])

    def test_activation_applied(self):
        layer = fixed_layer(value=-0.5, activation='RELU')
        np.testing.assert_allclose(layer.forward(np.array([1.0, 1.0])), [0.0, 0.0])

    def test_wrong_width_raises(self):
        with pytest.raises(ValueError):
            make_layer(3, 2).forward(np.ones(4))

    def test_unknown_activation_raises(self):
        with pytest.raises(ValueError):
            make_layer(activation='NOPE')

    def test_invalid_dropout_rejected(self):
        with pytest.raises(ValueError):
            make_layer(dropout_rate=1.0)

    def test_last_output_recorded(self):
        layer = fixed_layer()
        out = layer.forward(np.array([1.0, 1.0]))
        np.testing.assert_allclose(layer.last_output[0], out)


class TestLayerParameters:
    """Test parameter storage."""

    def test_neurons_are_row_views(self):
        layer = make_layer(3, 2)
        layer.neurons[1].set_weights([1.0, 2.0, 3.0])
        np.testing.assert_allclose(layer.weights[1], [1.0, 2.0, 3.0])

    def test_set_parameters_keeps_views(self):
        layer = make_layer(2, 2)
        layer.set_parameters(np.array([[1.0, 2.0], [3.0, 4.0]]), np.array([0.1, 0.2]))
        np.testing.assert_allclose(layer.neurons[1].weights, [3.0, 4.0])
        assert layer.neurons[0].bias == pytest.approx(0.1)

    def test_set_parameters_shape_checked(self):
        with pytest.raises(ValueError):
            make_layer(2, 2).set_parameters(np.zeros((3, 2)), np.zeros(2))

    def test_parameter_count(self):
        assert make_layer(3, 4).parameter_count == 3 * 4 + 4

    def test_set_learning_rate_propagates(self):
        layer = make_layer(batch_norm=(True, 1.0, 0.0))
        layer.set_learning_rate(0.123)
        assert layer.optimizer.learning_rate == 0.123
        assert layer.batch_normalizer.learning_rate == 0.123


class TestLayerBackward:
    """Test backpropagation."""

    def test_returns_input_gradient(self):
        layer = make_layer(3, 2)
        layer.forward(np.ones((4, 3)), training=True)
        grads = layer.backward(np.ones((4, 2)) * 0.1)
        assert grads.shape == (4, 3)

    def test_backward_updates_weights(self):
        layer = fixed_layer()
        before = layer.weights.copy()
        layer.forward(np.array([1.0, 1.0]), training=True)
        layer.backward(np.array([1.0, 1.0]))
        assert not np.allclose(layer.weights, before)

    def test_zero_upstream_changes_nothing(self):
        layer = fixed_layer()
        layer.forward(np.array([1.0, 1.0]), training=True)
        layer.backward(np.zeros(2))
        np.testing.assert_allclose(layer.weights, 0.5)
        np.testing.assert_allclose(layer.biases, 0.0)

    def test_step_reduces_squared_error(self):
        layer = make_layer(2, 1)
        x = np.array([[1.0, 2.0]])
        target = float(layer.forward(x)[0, 0]) + 1.0

        out = layer.forward(x, training=True)
        before = (target - out[0, 0]) ** 2
        layer.backward(-2.0 * (target - out))
        after = (target - layer.forward(x)[0, 0]) ** 2
        assert after < before

    def test_input_gradient_is_clipped(self):
        layer = fixed_layer(value=10.0)
        layer.forward(np.array([1.0, 1.0]), training=True)
        grads = layer.backward(np.array([5.0, 5.0]))
        assert np.all(np.abs(grads) <= 1.0)
        assert np.linalg.norm(grads) <= 1.0 + 1e-9

    def test_backward_without_forward_raises(self):
        with pytest.raises(RuntimeError):
            make_layer().backward(np.ones(2))

    def test_cache_cleared_after_backward(self):
        layer = make_layer()
        layer.forward(np.ones(2), training=True)
        layer.backward(np.ones(2))
        with pytest.raises(RuntimeError):
            layer.backward(np.ones(2))

    def test_inference_forward_leaves_no_cache(self):
        layer = make_layer()
        layer.forward(np.ones(2), training=False)
        with pytest.raises(RuntimeError):
            layer.backward(np.ones(2))

    def test_nan_upstream_is_counted_and_zeroed(self):
        layer = fixed_layer()
        layer.forward(np.array([1.0, 1.0]), training=True)
        layer.backward(np.array([np.nan, np.nan]))
        assert layer.numeric_faults > 0
        assert np.all(np.isfinite(layer.weights))


class TestLayerDropout:
    """Test inverted dropout."""

    def test_outputs_dropped_or_scaled(self):
        layer = fixed_layer(4, 8, dropout_rate=0.5)
        out = layer.forward(np.ones(4), training=True)
        # kept units are 2.0 / (1 - 0.5)
        assert set(np.round(out, 9).tolist()) <= {0.0, 4.0}

    def test_inference_has_no_dropout(self):
        layer = fixed_layer(4, 8, dropout_rate=0.5)
        np.testing.assert_allclose(layer.forward(np.ones(4)), 2.0)

    def test_dropped_units_are_not_updated(self):
        layer = fixed_layer(4, 8, dropout_rate=0.5)
        out = layer.forward(np.ones(4), training=True)
        layer.backward(np.ones(8))
        for i, value in enumerate(out):
            if value == 0.0:
                np.testing.assert_allclose(layer.weights[i], 0.5)
            else:
                assert not np.allclose(layer.weights[i], 0.5)


class TestLayerBatchNorm:
    """Test batch normalization inside a layer."""

    def test_training_output_centred_on_beta(self):
        layer = make_layer(3, 4, batch_norm=(True, 1.0, 0.25))
        x = np.random.default_rng(4).normal(size=(32, 3))
        out = layer.forward(x, training=True)
        np.testing.assert_allclose(out.mean(axis=0), 0.25, atol=1e-9)

    def test_backward_updates_gamma_beta(self):
        layer = make_layer(3, 4, batch_norm=(True, 1.0, 0.0))
        x = np.random.default_rng(4).normal(size=(8, 3))
        layer.forward(x, training=True)
        layer.backward(np.ones((8, 4)))
        assert not np.allclose(layer.batch_normalizer.beta, 0.0)
