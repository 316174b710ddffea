"""
AI Module
=========

The hand-written Q-learning engine.

Classes:
    Network            - Layer stack with epsilon-greedy selection and TD learning
    Layer              - Dense layer with batch norm, dropout and Adam
    ExperienceReplay   - Bounded transition memory
    NetworkPersistence - JSON structure and training-state documents
    InputNormalizer    - Min-max or z-score scaling of game features
    Trainer            - Episode loop around a training strategy
"""

from .network import Network
from .layer import Layer
from .replay_buffer import Experience, ExperienceReplay
from .normalizer import InputNormalizer, make_normalizer
from .persistence import NetworkPersistence, load_or_initialize
from .trainer import Trainer, GradientDescentTrainer
from .evolution import EvolutionaryTrainer

__all__ = [
    'Network', 'Layer', 'Experience', 'ExperienceReplay',
    'InputNormalizer', 'make_normalizer',
    'NetworkPersistence', 'load_or_initialize',
    'Trainer', 'GradientDescentTrainer', 'EvolutionaryTrainer',
]
