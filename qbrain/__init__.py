"""
Q-Learning Placement Brain
==========================

A hand-written feed-forward network that learns, through Q-learning, where
to drop the next block in a block-stacking puzzle.

Modules:
    ai/    - Activations, layers, optimizer, network, persistence, trainers
    utils/ - Logging
"""

__version__ = "1.0.0"
