"""
Tests for the activation registry.

These tests verify:
    - Known values of every built-in kind
    - Derivatives against finite differences
    - Registry lookups and custom registration
"""

import math

import numpy as np
import pytest

from qbrain.ai import activation as act


BUILT_IN = ['SIGMOID', 'TANH', 'RELU', 'LEAKY_RELU', 'ELU', 'GELU', 'LINEAR', 'SWISH', 'MISH']


class TestActivationValues:
    """Test function values."""

    def test_all_built_in_kinds_registered(self):
        """Every documented kind should be available."""
        assert set(BUILT_IN) <= set(act.available_activations())

    def test_relu(self):
        """RELU clips negatives to zero."""
        out = act.activate(np.array([-1.0, 0.0, 2.0]), act.RELU)
        np.testing.assert_array_equal(out, [0.0, 0.0, 2.0])

    def test_leaky_relu_slope(self):
        """LEAKY_RELU keeps 1% of negative inputs."""
        assert act.activate(-1.0, act.LEAKY_RELU) == pytest.approx(-0.01)
        assert act.activate(3.0, act.LEAKY_RELU) == pytest.approx(3.0)

    def test_elu_uses_small_alpha(self):
        """ELU saturates at -0.01, not -1."""
        assert act.activate(-1.0, act.ELU) == pytest.approx(0.01 * (math.exp(-1.0) - 1.0))
        assert act.activate(-50.0, act.ELU) == pytest.approx(-0.01, abs=1e-12)

    def test_sigmoid_midpoint(self):
        """SIGMOID(0) is one half."""
        assert act.activate(0.0, act.SIGMOID) == pytest.approx(0.5)

    def test_sigmoid_does_not_overflow(self):
        """Extreme inputs stay finite."""
        out = act.activate(np.array([-1e4, 1e4]), act.SIGMOID)
        assert np.all(np.isfinite(out))
        assert out[0] == pytest.approx(0.0)
        assert out[1] == pytest.approx(1.0)

    def test_zero_fixed_points(self):
        """Kinds passing through the origin return 0 at 0."""
        for kind in ['TANH', 'RELU', 'LEAKY_RELU', 'ELU', 'GELU', 'LINEAR', 'SWISH', 'MISH']:
            assert act.activate(0.0, kind) == pytest.approx(0.0)

    def test_gelu_matches_tanh_approximation(self):
        """GELU uses the tanh approximation."""
        x = 1.3
        expected = 0.5 * x * (1 + math.tanh(math.sqrt(2 / math.pi) * (x + 0.044715 * x ** 3)))
        assert act.activate(x, act.GELU) == pytest.approx(expected)

    def test_mish_large_input_stable(self):
        """MISH of a large input is the identity and finite."""
        assert act.activate(1000.0, act.MISH) == pytest.approx(1000.0)

    def test_scalar_in_scalar_out(self):
        """A Python float input returns a float."""
        assert isinstance(act.activate(0.3, act.TANH), float)
        assert isinstance(act.derivative(0.3, act.TANH), float)

    def test_array_shape_preserved(self):
        """Activation works elementwise on matrices."""
        x = np.arange(6, dtype=float).reshape(2, 3) - 2
        assert act.activate(x, act.SWISH).shape == (2, 3)


class TestActivationDerivatives:
    """Test derivatives."""

    @pytest.mark.parametrize('kind', ['SIGMOID', 'TANH', 'SWISH', 'MISH', 'LINEAR', 'LEAKY_RELU', 'ELU'])
    def test_matches_finite_difference(self, kind):
        """Analytic derivative agrees with a central difference away from kinks."""
        x = np.array([-2.1, -0.7, 0.4, 1.9])
        h = 1e-6
        numeric = (act.activate(x + h, kind) - act.activate(x - h, kind)) / (2 * h)
        np.testing.assert_allclose(act.derivative(x, kind), numeric, rtol=1e-4, atol=1e-6)

    def test_relu_derivative_is_step(self):
        """RELU derivative is 0 for negatives and 1 for positives."""
        np.testing.assert_array_equal(act.derivative(np.array([-1.0, 2.0]), act.RELU), [0.0, 1.0])

    def test_leaky_relu_derivative_negative_side(self):
        assert act.derivative(-5.0, act.LEAKY_RELU) == pytest.approx(0.01)

    def test_gelu_derivative_at_zero(self):
        """cdf(0) = 0.5 and the x * pdf term vanishes."""
        assert act.derivative(0.0, act.GELU) == pytest.approx(0.5)

    def test_elu_derivative_negative_side(self):
        assert act.derivative(-1.0, act.ELU) == pytest.approx(0.01 * math.exp(-1.0))


class TestActivationRegistry:
    """Test registry behaviour."""

    def test_unknown_kind_raises(self):
        """Unknown names are rejected with ValueError."""
        with pytest.raises(ValueError):
            act.activate(1.0, 'SOFTMAX')

    def test_lookup_is_case_insensitive(self):
        assert act.activate(-1.0, 'relu') == 0.0

    def test_register_custom_kind(self):
        """A registered kind is usable by name without other changes."""
        act.register_activation('TEST_SQUARE', lambda z: z * z, lambda z: 2 * z)
        assert act.activate(3.0, 'TEST_SQUARE') == pytest.approx(9.0)
        assert act.derivative(3.0, 'TEST_SQUARE') == pytest.approx(6.0)
