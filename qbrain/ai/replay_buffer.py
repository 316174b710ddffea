"""
Experience Replay
=================

A bounded memory of past placements for the optional replay training path.

Why Experience Replay?
    1. Breaks correlation between consecutive placements
       (Neural networks learn poorly from correlated data)

    2. Improves sample efficiency
       (Each transition can be used for multiple training passes)

How it works:
    1. Every transition is stored with the absolute TD-error as its priority
    2. Training samples a batch uniformly, WITH replacement
    3. The oldest transition is evicted once the buffer is full (FIFO)

The priority is kept on each experience (and persisted) but sampling does
not consult it.

References:
    Mnih et al., 2015 - "Human-level control through deep reinforcement learning"
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence

import numpy as np


@dataclass
class Experience:
    """One environment transition."""
    state: np.ndarray
    action: Any
    reward: float
    next_state: np.ndarray
    next_possible_states: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    done: bool = False
    priority: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        action = self.action
        if isinstance(action, (tuple, np.ndarray)):
            action = [int(a) for a in action]
        return {
            'state': np.asarray(self.state, dtype=np.float64).tolist(),
            'action': action,
            'reward': float(self.reward),
            'next_state': np.asarray(self.next_state, dtype=np.float64).tolist(),
            'next_possible_states': np.asarray(self.next_possible_states, dtype=np.float64).tolist(),
            'done': bool(self.done),
            'priority': float(self.priority),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Experience':
        action = data.get('action')
        if isinstance(action, list):
            action = tuple(action)
        next_possible = np.asarray(data.get('next_possible_states', []), dtype=np.float64)
        if next_possible.ndim == 1:
            next_possible = next_possible.reshape(0, 0) if next_possible.size == 0 else next_possible[None, :]
        return cls(
            state=np.asarray(data['state'], dtype=np.float64),
            action=action,
            reward=float(data['reward']),
            next_state=np.asarray(data['next_state'], dtype=np.float64),
            next_possible_states=next_possible,
            done=bool(data.get('done', False)),
            priority=float(data.get('priority', 0.0)),
        )


class ExperienceReplay:
    """
    Fixed-capacity FIFO buffer of Experience.

    Example:
        >>> memory = ExperienceReplay(capacity=1000)
        >>> memory.push(state, (3, 1), 1.0, next_state, candidates, False)
        >>> batch = memory.sample(batch_size=64)
    """

    def __init__(self, capacity: int, rng: Optional[np.random.Generator] = None):
        """
        Args:
            capacity: Maximum number of experiences to store
            rng: Random source for sampling
        """
        if capacity <= 0:
            raise ValueError("Capacity must be positive")
        self.capacity = capacity
        self.rng = rng or np.random.default_rng()
        self._buffer: Deque[Experience] = deque(maxlen=capacity)

    def add(self, experience: Experience) -> None:
        """Append an experience; at capacity the oldest one is dropped first."""
        self._buffer.append(experience)

    def push(
        self,
        state: np.ndarray,
        action: Any,
        reward: float,
        next_state: np.ndarray,
        next_possible_states: np.ndarray,
        done: bool,
        priority: float = 0.0,
    ) -> Experience:
        experience = Experience(
            np.array(state, dtype=np.float64),
            action,
            float(reward),
            np.array(next_state, dtype=np.float64),
            np.array(next_possible_states, dtype=np.float64),
            bool(done),
            float(priority),
        )
        self.add(experience)
        return experience

    def sample(self, batch_size: int) -> List[Experience]:
        """
        Draw min(batch_size, len(self)) experiences uniformly with replacement.

        Returns an empty list when the buffer is empty.
        """
        count = min(batch_size, len(self._buffer))
        if count <= 0:
            return []
        indices = self.rng.integers(0, len(self._buffer), size=count)
        return [self._buffer[i] for i in indices]

    def update_priorities(self, experiences: Sequence[Experience], td_errors: Iterable[float]) -> None:
        """Store |TD-error| as the priority of each given experience."""
        for experience, error in zip(experiences, td_errors):
            experience.priority = float(abs(error))

    def experiences(self) -> List[Experience]:
        """Snapshot of the stored experiences, oldest first."""
        return list(self._buffer)

    def extend(self, experiences: Iterable[Experience]) -> None:
        for experience in experiences:
            self.add(experience)

    def is_ready(self, batch_size: int) -> bool:
        """Check if buffer has enough samples for a full batch."""
        return len(self._buffer) >= batch_size

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)
