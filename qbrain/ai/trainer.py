"""
Training Loop
=============

Orchestrates training against a PlacementEnvironment:
    1. Run episodes of the game
    2. Let the training strategy pick placements and learn
    3. Track metrics
    4. Save the brain documents

Strategies share one Network and differ only in how they improve it:
    GradientDescentTrainer - online Q-learning through Network.learn
    EvolutionaryTrainer    - population search over the flat parameter
                             vector (see qbrain.ai.evolution)
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from config import Config
from .network import Network
from .normalizer import InputNormalizer, make_normalizer
from .persistence import NetworkPersistence
from ..environment import PlacementEnvironment
from ..utils.logger import get_logger, log_training_metrics


logger = get_logger(__name__)


class TrainingStrategy(ABC):
    """How a network chooses placements and improves from their outcome."""

    name = 'strategy'

    def __init__(self, network: Network):
        self.network = network

    @property
    def epsilon(self) -> float:
        return self.network.epsilon

    def start_episode(self) -> None:
        """Called before the first placement of every training episode."""
        pass

    @abstractmethod
    def select_action(
        self,
        candidates: np.ndarray,
        actions: Optional[Sequence[Any]] = None,
        explore: bool = True,
    ) -> Any:
        pass

    @abstractmethod
    def observe(
        self,
        state: np.ndarray,
        action: Any,
        reward: float,
        next_state: np.ndarray,
        done: bool,
        next_possible_states: np.ndarray,
    ) -> None:
        pass

    def on_episode_end(self, total_reward: float, truncated: bool = False) -> None:
        """Called once per episode after the last placement."""
        pass

    def prepare_evaluation(self) -> None:
        """Put the best known parameters into the network before evaluation."""
        pass


class GradientDescentTrainer(TrainingStrategy):
    """Epsilon-greedy play with a TD update after every placement."""

    name = 'gradient'

    def select_action(self, candidates, actions=None, explore=True):
        return self.network.select_action(candidates, actions, explore=explore)

    def observe(self, state, action, reward, next_state, done, next_possible_states):
        self.network.learn(state, action, reward, next_state, done, next_possible_states)

    def on_episode_end(self, total_reward: float, truncated: bool = False) -> None:
        # A terminal transition already closed the episode inside learn()
        if truncated:
            self.network.end_episode()


@dataclass
class EpisodeStats:
    """Statistics for a single episode."""
    episode: int
    total_reward: float
    score: float
    steps: int
    epsilon: float
    avg_loss: float
    duration: float
    truncated: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TrainingMetrics:
    """
    Tracks and stores training metrics over time.

    Metrics tracked:
        - Episode returns
        - Game scores
        - Placements per episode
        - Loss values
        - Epsilon values
        - Episode durations
    """

    FIELDS = ('rewards', 'scores', 'steps', 'losses', 'epsilons', 'durations')

    def __init__(self, history_length: int = 1000):
        """
        Args:
            history_length: Maximum history to store
        """
        self.history_length = history_length

        self.rewards: List[float] = []
        self.scores: List[float] = []
        self.steps: List[int] = []
        self.losses: List[float] = []
        self.epsilons: List[float] = []
        self.durations: List[float] = []

    def add(self, stats: EpisodeStats) -> None:
        """Add episode statistics."""
        self.rewards.append(stats.total_reward)
        self.scores.append(stats.score)
        self.steps.append(stats.steps)
        self.losses.append(stats.avg_loss)
        self.epsilons.append(stats.epsilon)
        self.durations.append(stats.duration)

        # Trim to history length
        if len(self.rewards) > self.history_length:
            for attr in self.FIELDS:
                setattr(self, attr, getattr(self, attr)[-self.history_length:])

    def get_recent_average(self, metric: str, n: int = 100) -> float:
        """Get average of last n values for a metric."""
        values = getattr(self, metric, [])
        if not values:
            return 0.0
        return float(np.mean(values[-n:]))

    def get_best_reward(self) -> float:
        return max(self.rewards) if self.rewards else 0.0

    def get_best_score(self) -> float:
        return max(self.scores) if self.scores else 0.0

    def __len__(self) -> int:
        return len(self.rewards)


class Trainer:
    """
    Runs a training strategy against an environment.

    Example:
        >>> network = load_or_initialize(config)
        >>> trainer = Trainer(game, GradientDescentTrainer(network), config,
        ...                   NetworkPersistence(config))
        >>> trainer.train(num_episodes=1000)
    """

    def __init__(
        self,
        environment: PlacementEnvironment,
        strategy: TrainingStrategy,
        config: Optional[Config] = None,
        persistence: Optional[NetworkPersistence] = None,
    ):
        """
        Args:
            environment: Game implementing PlacementEnvironment
            strategy: GradientDescentTrainer or EvolutionaryTrainer
            config: Configuration object (defaults to the network's)
            persistence: Where to save the brain; None disables saving
        """
        self.environment = environment
        self.strategy = strategy
        self.network = strategy.network
        self.config = config or self.network.config
        self.persistence = persistence

        self.normalizer: Optional[InputNormalizer] = None
        if self.config.INPUT_NORMALIZATION is not None:
            self.normalizer = make_normalizer(self.config.INPUT_NORMALIZATION, self.network.input_size)

        self.metrics = TrainingMetrics(self.config.HISTORY_LENGTH)
        self.current_episode = 0
        self.total_steps = 0

    def _features(self, data) -> np.ndarray:
        """A state vector or candidate matrix as the network should see it."""
        arr = np.asarray(data, dtype=np.float64)
        if self.normalizer is None or arr.size == 0:
            return arr
        return self.normalizer.normalize_automatically(arr)

    def _candidates(self):
        """Candidate features and actions; default actions come from the raw rows."""
        candidates, actions = self.environment.candidates()
        raw = np.asarray(candidates, dtype=np.float64)
        if self.normalizer is not None and actions is None and raw.size:
            actions = [self.network.decode_action(row) for row in raw]
        return self._features(raw), actions

    def run_episode(self) -> EpisodeStats:
        """Play one training episode and let the strategy learn from it."""
        start_time = time.time()

        state = self._features(self.environment.reset())
        self.strategy.start_episode()
        candidates, actions = self._candidates()

        total_reward = 0.0
        steps = 0
        done = False
        info: Dict[str, Any] = {}

        while steps < self.config.MAX_STEPS_PER_EPISODE:
            if len(candidates) == 0:
                # No legal placement left: the stack reached the top
                break

            action = self.strategy.select_action(candidates, actions, explore=True)
            next_state, reward, done, info = self.environment.step(action)
            next_state = self._features(next_state)

            if done:
                next_candidates, next_actions = np.zeros((0, len(state))), None
            else:
                next_candidates, next_actions = self._candidates()

            self.strategy.observe(state, action, reward, next_state, done, next_candidates)

            state = next_state
            candidates, actions = next_candidates, next_actions
            total_reward += reward
            steps += 1
            self.total_steps += 1

            if done:
                break

        truncated = not done
        self.strategy.on_episode_end(total_reward, truncated=truncated)

        return EpisodeStats(
            episode=self.current_episode,
            total_reward=total_reward,
            score=info.get('score', 0),
            steps=steps,
            epsilon=self.strategy.epsilon,
            avg_loss=self.network.get_average_loss(100),
            duration=time.time() - start_time,
            truncated=truncated,
        )

    def train(
        self,
        num_episodes: Optional[int] = None,
        progress_callback: Optional[Callable[[int, int, EpisodeStats], None]] = None,
    ) -> TrainingMetrics:
        """
        Run the training loop.

        Args:
            num_episodes: Number of episodes (default from config)
            progress_callback: Called with (episode, num_episodes, stats)

        Returns:
            Training metrics
        """
        num_episodes = num_episodes or self.config.MAX_EPISODES

        logger.info(
            f"Starting {self.strategy.name} training | episodes={num_episodes} | "
            f"layers={self.network.layer_sizes()} | replay={'on' if self.config.USE_EXPERIENCE else 'off'}"
        )

        for episode in range(num_episodes):
            self.current_episode = episode
            stats = self.run_episode()
            self.metrics.add(stats)

            if episode % self.config.LOG_EVERY == 0:
                log_training_metrics(
                    episode=episode,
                    reward=stats.total_reward,
                    epsilon=stats.epsilon,
                    loss=stats.avg_loss,
                    moving_average=self.network.moving_average,
                    steps=stats.steps,
                    learning_rate=self.network.learning_rate,
                )

            if self.persistence is not None and episode > 0 and episode % self.config.SAVE_EVERY == 0:
                self.persistence.save(self.network, save_reason='periodic')

            if progress_callback:
                progress_callback(episode, num_episodes, stats)

        self.strategy.prepare_evaluation()
        if self.persistence is not None:
            self.persistence.save(self.network, save_reason='final')

        logger.info(
            f"Training complete | best reward={self.metrics.get_best_reward():.1f} | "
            f"avg(100)={self.metrics.get_recent_average('rewards', 100):.1f} | "
            f"epsilon={self.strategy.epsilon:.4f} | steps={self.total_steps:,}"
        )
        return self.metrics

    def evaluate(self, num_episodes: int = 10) -> Dict[str, float]:
        """
        Play greedily without learning.

        Returns:
            Evaluation statistics
        """
        self.strategy.prepare_evaluation()
        rewards, scores, steps_taken = [], [], []

        for _ in range(num_episodes):
            self.environment.reset()
            candidates, actions = self._candidates()
            total_reward, steps, done = 0.0, 0, False
            info: Dict[str, Any] = {}

            while not done and steps < self.config.MAX_STEPS_PER_EPISODE and len(candidates) > 0:
                action = self.strategy.select_action(candidates, actions, explore=False)
                _, reward, done, info = self.environment.step(action)
                total_reward += reward
                steps += 1
                if not done:
                    candidates, actions = self._candidates()

            rewards.append(total_reward)
            scores.append(info.get('score', 0))
            steps_taken.append(steps)

        return {
            'mean_reward': float(np.mean(rewards)),
            'max_reward': float(np.max(rewards)),
            'min_reward': float(np.min(rewards)),
            'mean_score': float(np.mean(scores)),
            'mean_steps': float(np.mean(steps_taken)),
        }
