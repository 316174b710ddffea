"""
Pytest configuration for the test suite.

This file is automatically loaded by pytest and provides the small network
configurations shared by the engine tests.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


def make_tiny_config(**overrides) -> Config:
    """A 2-2-1 all-linear network without batch norm or dropout."""
    values = dict(
        LAYER_NAMES=('INP', 'HID', 'OUT'),
        LAYER_SIZES=(2, 2, 1),
        LAYER_ACTIVATIONS=('LINEAR', 'LINEAR'),
        WEIGHT_INIT_STRATEGIES=('XAVIER', 'XAVIER'),
        BATCH_NORMS=((False, 1.0, 0.0), (False, 1.0, 0.0)),
        L2_REGULARIZATION=(0.0, 0.0),
        DROPOUT_RATES=(0.0, 0.0),
        SEED=0,
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def tiny_config():
    """2-2-1 linear configuration."""
    return make_tiny_config()


@pytest.fixture
def make_config():
    """Factory for 2-2-1 configurations with overrides."""
    return make_tiny_config


@pytest.fixture
def default_config():
    """Default architecture with a fixed seed."""
    return Config(SEED=123)
