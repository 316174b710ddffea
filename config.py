"""
Configuration for the Q-learning placement brain
=================================================

Every hyperparameter of the network, the learning schedules, experience
replay, the evolutionary strategy and persistence lives here. A Config is
built once and handed to the Network explicitly; nothing in the engine reads
configuration from anywhere else.

Usage:
    from config import Config
    cfg = Config()
    print(cfg.LEARNING_RATE)

    # Variations are new values, the original is never mutated
    from dataclasses import replace
    fast = replace(cfg, LEARNING_RATE=0.05)

    # Plain mappings (e.g. parsed JSON) fall back to defaults with a warning
    cfg = Config.from_dict({'LEARNING_RATE': 0.02})
"""

import warnings
from dataclasses import dataclass, fields, asdict, MISSING
from typing import Any, Dict, Optional, Tuple


# Per-layer defaults used when a per-layer list is shorter than the topology
LAYER_DEFAULTS: Dict[str, Any] = {
    'LAYER_ACTIVATIONS': 'LEAKY_RELU',
    'WEIGHT_INIT_STRATEGIES': 'HE',
    'BATCH_NORMS': (False, 1.0, 0.0),
    'L2_REGULARIZATION': 0.0,
    'DROPOUT_RATES': 0.0,
}

# Keys whose length must equal the number of weight layers
PER_LAYER_KEYS = tuple(LAYER_DEFAULTS)


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for the whole engine.

    Sections:
    1. Architecture - layer sizes, activations, init, batch norm, dropout,
       input normalization
    2. Gradient Clipping - value bounds, norm bound, scale
    3. Schedules - learning rate, Q-learning rate, discount, epsilon
    4. Q-Values - clamp bounds and tie tolerance
    5. Optimizer - Adam and batch-norm constants
    6. Experience Replay - buffer and batch sizes
    7. Evolution - population based strategy
    8. Training - episode control and logging cadence
    9. System - paths and seed
    """

    # =========================================================================
    # ARCHITECTURE
    # =========================================================================

    # One name per entry in LAYER_SIZES (the input layer included)
    LAYER_NAMES: Tuple[str, ...] = ('INP', 'H1', 'H2', 'H3', 'H4', 'OUT')

    # Input feature count first, a single Q-estimate last
    LAYER_SIZES: Tuple[int, ...] = (30, 64, 32, 16, 32, 1)

    # One entry per weight layer (len(LAYER_SIZES) - 1)
    # Options: SIGMOID, TANH, RELU, LEAKY_RELU, ELU, GELU, LINEAR, SWISH, MISH
    LAYER_ACTIVATIONS: Tuple[str, ...] = (
        'LEAKY_RELU', 'LEAKY_RELU', 'LEAKY_RELU', 'LEAKY_RELU', 'LINEAR'
    )

    # Options: RANDOM, XAVIER, HE, UNIFORM, ZERO
    WEIGHT_INIT_STRATEGIES: Tuple[str, ...] = ('HE', 'HE', 'HE', 'HE', 'XAVIER')

    # (enabled, initial gamma, initial beta) per weight layer
    BATCH_NORMS: Tuple[Tuple[bool, float, float], ...] = (
        (False, 1.0, 0.0),
        (False, 1.0, 0.0),
        (False, 1.0, 0.0),
        (False, 1.0, 0.0),
        (False, 1.0, 0.0),
    )

    L2_REGULARIZATION: Tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0)
    DROPOUT_RATES: Tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0)

    # Scaling applied to every game feature vector before the network sees it
    # Options: None, MINMAX, ZSCORE
    INPUT_NORMALIZATION: Optional[str] = None

    # =========================================================================
    # GRADIENT CLIPPING
    # =========================================================================

    CLIP_MIN: float = -1.0
    CLIP_MAX: float = 1.0
    CLIP_NORM: float = 1.0
    GRADIENT_SCALE: float = 1.0

    # =========================================================================
    # SCHEDULES
    # =========================================================================

    # Optimizer step size, decays geometrically per episode
    LEARNING_RATE: float = 0.01
    LEARNING_RATE_DECAY: float = 0.999
    LEARNING_RATE_MIN: float = 0.0001

    # Blend factor of the TD-target toward the bootstrapped return
    Q_LEARNING_RATE: float = 0.5
    Q_LEARNING_RATE_DECAY: float = 0.999
    Q_LEARNING_RATE_MIN: float = 0.1

    # Discount factor, grows linearly per episode
    DISCOUNT_FACTOR: float = 0.5
    DISCOUNT_FACTOR_INCREMENT: float = 0.0001
    DISCOUNT_FACTOR_MAX: float = 0.99

    # Exploration
    EPSILON_START: float = 0.6
    EPSILON_END: float = 0.01
    EPSILON_DECAY: float = 0.995

    # =========================================================================
    # Q-VALUES
    # =========================================================================

    MIN_Q: float = -500.0
    MAX_Q: float = 500.0

    # Candidates whose Q lies within this distance of the best count as tied
    TIE_TOLERANCE: float = 1e-6

    # Where the placement (x, rotation) sits inside a candidate row
    ACTION_X_INDEX: int = -2
    ACTION_ROTATION_INDEX: int = -1

    # =========================================================================
    # OPTIMIZER
    # =========================================================================

    ADAM_BETA1: float = 0.99
    ADAM_BETA2: float = 0.999
    ADAM_EPSILON: float = 1e-6

    BATCH_NORM_MOMENTUM: float = 0.99
    BATCH_NORM_EPSILON: float = 1e-5

    # =========================================================================
    # EXPERIENCE REPLAY
    # =========================================================================

    USE_EXPERIENCE: bool = False
    MEMORY_SIZE: int = 1000
    BATCH_SIZE: int = 64

    # Pairs accumulated before a training pass runs
    MINIMUM_BATCH_SIZE: int = 2

    # Episode returns kept for the moving average
    MOVING_AVERAGE_WINDOW: int = 1000

    # =========================================================================
    # EVOLUTION
    # =========================================================================

    POPULATION_SIZE: int = 20
    ELITE_SIZE_DIVIDER: int = 5
    CROSSOVER_RATE: float = 0.8
    MUTATION_RATE: float = 0.1
    MUTATION_STRENGTH: float = 1.0
    MUTATION_SIGMA: float = 0.05
    MUTATION_SIGMA_MIN: float = 1e-5
    MUTATION_SIGMA_MAX: float = 0.1
    MUTATION_PATIENCE: int = 10

    # =========================================================================
    # TRAINING
    # =========================================================================

    MAX_EPISODES: int = 1000
    MAX_STEPS_PER_EPISODE: int = 10000
    LOG_EVERY: int = 10
    SAVE_EVERY: int = 100
    HISTORY_LENGTH: int = 1000

    # =========================================================================
    # SYSTEM
    # =========================================================================

    MODEL_DIR: str = 'models'
    LOG_DIR: str = 'logs'
    STRUCTURE_FILENAME: str = 'brain_structure.json'
    TRAINING_STATE_FILENAME: str = 'brain_training_state.json'

    # None draws a fresh seed from the OS
    SEED: Optional[int] = None

    def __post_init__(self):
        """Validation of value ranges."""
        assert len(self.LAYER_SIZES) >= 2, "Need at least an input and an output layer"
        assert all(s > 0 for s in self.LAYER_SIZES), "Layer sizes must be positive"
        assert self.LEARNING_RATE > 0, "Learning rate must be positive"
        assert self.LEARNING_RATE >= self.LEARNING_RATE_MIN, "Learning rate must be >= its floor"
        assert 0 < self.LEARNING_RATE_DECAY <= 1, "Learning rate decay must be in (0, 1]"
        assert 0 < self.Q_LEARNING_RATE <= 1, "Q-learning rate must be in (0, 1]"
        assert self.Q_LEARNING_RATE >= self.Q_LEARNING_RATE_MIN, "Q-learning rate must be >= its floor"
        assert 0 <= self.DISCOUNT_FACTOR <= self.DISCOUNT_FACTOR_MAX <= 1, \
            "Discount factor must be in [0, max] with max <= 1"
        assert self.DISCOUNT_FACTOR_INCREMENT >= 0, "Discount increment must be non-negative"
        assert 0 <= self.EPSILON_END <= self.EPSILON_START <= 1, "Epsilon start must be >= end"
        assert 0 < self.EPSILON_DECAY <= 1, "Epsilon decay must be in (0, 1]"
        assert self.MIN_Q < self.MAX_Q, "MIN_Q must be below MAX_Q"
        assert self.CLIP_MIN < self.CLIP_MAX, "CLIP_MIN must be below CLIP_MAX"
        assert self.CLIP_NORM > 0, "Clip norm must be positive"
        assert 0 <= self.ADAM_BETA1 < 1 and 0 <= self.ADAM_BETA2 < 1, "Adam betas must be in [0, 1)"
        assert 0 <= self.BATCH_NORM_MOMENTUM < 1, "Batch norm momentum must be in [0, 1)"
        assert self.MEMORY_SIZE > 0, "Memory size must be positive"
        assert self.BATCH_SIZE > 0, "Batch size must be positive"
        assert self.MINIMUM_BATCH_SIZE > 0, "Minimum batch size must be positive"
        assert self.MOVING_AVERAGE_WINDOW > 0, "Moving average window must be positive"
        assert self.POPULATION_SIZE > 0, "Population size must be positive"
        assert self.ELITE_SIZE_DIVIDER > 0, "Elite divider must be positive"
        assert all(0 <= p < 1 for p in self.DROPOUT_RATES), "Dropout rates must be in [0, 1)"
        assert self.INPUT_NORMALIZATION in (None, 'MINMAX', 'ZSCORE'), \
            "Input normalization must be None, MINMAX or ZSCORE"

    @property
    def input_size(self) -> int:
        return self.LAYER_SIZES[0]

    @property
    def output_size(self) -> int:
        return self.LAYER_SIZES[-1]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = [list(v) if isinstance(v, tuple) else v for v in value]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """
        Build a Config from a plain mapping.

        Missing keys take their default, unknown keys are ignored and
        per-layer lists are truncated or padded to match LAYER_SIZES. Each of
        these emits a warning; none of them raises.
        """
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}

        for key in data:
            if key not in known:
                warnings.warn(f"Unknown configuration key '{key}' ignored", UserWarning)

        for name, f in known.items():
            if name in data:
                values[name] = data[name]
            else:
                default = f.default if f.default is not MISSING else f.default_factory()
                warnings.warn(
                    f"Missing configuration key '{name}', using default {default!r}",
                    UserWarning
                )
                values[name] = default

        values['LAYER_SIZES'] = tuple(int(s) for s in values['LAYER_SIZES'])
        values['LAYER_NAMES'] = _fit_names(values['LAYER_NAMES'], len(values['LAYER_SIZES']))

        num_layers = len(values['LAYER_SIZES']) - 1
        for key in PER_LAYER_KEYS:
            values[key] = _fit_per_layer(key, values[key], num_layers)
        values['BATCH_NORMS'] = tuple(
            (bool(bn[0]), float(bn[1]), float(bn[2])) for bn in values['BATCH_NORMS']
        )

        return cls(**values)


def _fit_per_layer(key: str, items, num_layers: int) -> tuple:
    """Pad or truncate a per-layer list to exactly num_layers entries."""
    items = list(items)
    if len(items) != num_layers:
        warnings.warn(
            f"{key} has {len(items)} entries for {num_layers} layers; "
            f"padding with {LAYER_DEFAULTS[key]!r}",
            UserWarning
        )
        items = items[:num_layers] + [LAYER_DEFAULTS[key]] * (num_layers - len(items))
    return tuple(tuple(i) if isinstance(i, list) else i for i in items)


def _fit_names(names, num_sizes: int) -> tuple:
    names = list(names)
    if len(names) != num_sizes:
        warnings.warn(
            f"LAYER_NAMES has {len(names)} entries for {num_sizes} layers; generating names",
            UserWarning
        )
        names = names[:num_sizes] + [f'L{i}' for i in range(len(names), num_sizes)]
    return tuple(names)


if __name__ == "__main__":
    # Print configuration summary
    cfg = Config()
    print("=" * 60)
    print("Q-Learning Placement Brain - Configuration Summary")
    print("=" * 60)
    print("\nNetwork:")
    for name, size in zip(cfg.LAYER_NAMES, cfg.LAYER_SIZES):
        print(f"   {name:>4}: {size}")
    print(f"   Activations: {', '.join(cfg.LAYER_ACTIVATIONS)}")
    print("\nSchedules:")
    print(f"   Learning rate: {cfg.LEARNING_RATE} -> {cfg.LEARNING_RATE_MIN}")
    print(f"   Q-learning rate: {cfg.Q_LEARNING_RATE} -> {cfg.Q_LEARNING_RATE_MIN}")
    print(f"   Discount: {cfg.DISCOUNT_FACTOR} -> {cfg.DISCOUNT_FACTOR_MAX}")
    print(f"   Epsilon: {cfg.EPSILON_START} -> {cfg.EPSILON_END}")
    print(f"\nReplay: {'on' if cfg.USE_EXPERIENCE else 'off'} "
          f"(capacity {cfg.MEMORY_SIZE}, batch {cfg.BATCH_SIZE})")
    print("=" * 60)
