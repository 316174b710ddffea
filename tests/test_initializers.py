"""
Tests for weight initialization strategies.
"""

import numpy as np
import pytest

from qbrain.ai.initializers import (
    initialize_weights, initialize_bias, available_initializers,
    RANDOM, XAVIER, HE, UNIFORM, ZERO,
)


@pytest.fixture
def rng():
    return np.random.default_rng(7)


class TestWeightInitialization:
    """Test weight rules."""

    def test_default_shape_is_output_by_input(self, rng):
        """Weights form an (output, input) matrix."""
        assert initialize_weights(5, 3, HE, rng).shape == (3, 5)

    def test_zero(self, rng):
        assert np.all(initialize_weights(4, 4, ZERO, rng) == 0.0)

    def test_random_scale(self, rng):
        """RANDOM draws are Gaussian scaled by 0.01."""
        w = initialize_weights(100, 100, RANDOM, rng)
        assert np.std(w) == pytest.approx(0.01, rel=0.05)

    def test_he_scale(self, rng):
        """HE std is sqrt(2 / fan_in)."""
        w = initialize_weights(50, 200, HE, rng)
        assert np.std(w) == pytest.approx(np.sqrt(2 / 50), rel=0.05)

    def test_xavier_weight_scale(self, rng):
        """Xavier-weight std is sqrt(2 / (fan_in + fan_out))."""
        w = initialize_weights(60, 140, XAVIER, rng)
        assert np.std(w) == pytest.approx(np.sqrt(2 / 200), rel=0.05)

    def test_uniform_bounds(self, rng):
        """UNIFORM stays inside +-sqrt(6 / fan_in)."""
        w = initialize_weights(24, 50, UNIFORM, rng)
        limit = np.sqrt(6 / 24)
        assert w.min() >= -limit and w.max() <= limit
        assert w.max() > 0.8 * limit

    def test_seeded_draws_are_reproducible(self):
        a = initialize_weights(8, 4, HE, np.random.default_rng(1))
        b = initialize_weights(8, 4, HE, np.random.default_rng(1))
        np.testing.assert_array_equal(a, b)

    def test_unknown_strategy_raises(self, rng):
        with pytest.raises(ValueError):
            initialize_weights(2, 2, 'ORTHOGONAL', rng)

    def test_all_strategies_registered(self):
        assert {RANDOM, XAVIER, HE, UNIFORM, ZERO} <= set(available_initializers())


class TestBiasInitialization:
    """Test bias rules."""

    def test_single_bias_is_float(self, rng):
        assert isinstance(initialize_bias(HE, rng), float)

    def test_zero_bias(self, rng):
        assert initialize_bias(ZERO, rng) == 0.0

    def test_xavier_bias_uses_smaller_constant(self, rng):
        """Xavier-bias std is sqrt(1 / (fan_in + fan_out))."""
        b = initialize_bias(XAVIER, rng, fan_in=30, fan_out=20, size=20000)
        assert np.std(b) == pytest.approx(np.sqrt(1 / 50), rel=0.05)

    def test_default_fans_are_one(self, rng):
        """Without fan sizes, Xavier-bias has std sqrt(1/2)."""
        b = initialize_bias(XAVIER, rng, size=20000)
        assert np.std(b) == pytest.approx(np.sqrt(0.5), rel=0.05)
