"""
Placement Environment Interface
===============================

Abstract base class for the block-stacking game the brain plays. The game
itself (piece movement, collision, row clearing, rendering) lives outside
this package; anything implementing this interface can be trained.

Unlike a fixed action set, every step the environment enumerates the legal
placements of the current piece and hands the brain the board encoding each
one would produce. The brain scores those encodings and answers with the
placement to play.

To plug a game in:
1. Inherit from PlacementEnvironment
2. Implement all abstract methods
3. Pass an instance to qbrain.ai.trainer.Trainer
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence, Tuple

import numpy as np


class PlacementEnvironment(ABC):
    """
    Properties:
        state_size: int - Length of every board encoding

    Methods:
        reset() -> np.ndarray
            Start a new game, return the board encoding
        candidates() -> (np.ndarray, Optional[Sequence])
            Encodings of every legal placement, plus the matching actions
            (None when the action is read from the encoding itself)
        step(action) -> (next_state, reward, done, info)
            Play one placement
    """

    @property
    @abstractmethod
    def state_size(self) -> int:
        """Return the length of the board encoding."""
        pass

    @abstractmethod
    def reset(self) -> np.ndarray:
        """
        Reset the game to an empty board.

        Returns:
            np.ndarray: Initial board encoding
        """
        pass

    @abstractmethod
    def candidates(self) -> Tuple[np.ndarray, Optional[Sequence[Any]]]:
        """
        Enumerate the legal placements of the current piece.

        Returns:
            Tuple containing:
                - states (np.ndarray): (n, state_size) encodings, one per placement
                - actions (sequence or None): the action for each row
        """
        pass

    @abstractmethod
    def step(self, action: Any) -> Tuple[np.ndarray, float, bool, dict]:
        """
        Play the given placement.

        Returns:
            Tuple containing:
                - next_state (np.ndarray): Board encoding after the placement
                - reward (float): Reward received
                - done (bool): True if the game is over
                - info (dict): Additional information (score, lines, etc.)
        """
        pass

    def close(self) -> None:
        """Clean up resources. Override if needed."""
        pass

    def seed(self, seed: int) -> None:
        """Set random seed for reproducibility. Override if the game has randomness."""
        pass
