"""
Q-Learning Network
==================

The placement brain: an ordered stack of Layers estimating the value of a
board state, trained online with temporal-difference targets.

Theory:
    The network scores a STATE, not an (state, action) pair. The environment
    enumerates every legal placement of the current piece and encodes the
    board each would produce; the brain forwards all of them and plays the
    best (epsilon-greedy). Learning nudges Q(s) toward

        done:      target = clamp(r)
        otherwise: target = clamp(Q(s) + alpha_q * (r + gamma * max_a' Q(s') - Q(s)))

    where max_a' Q(s') is taken over the next piece's candidate placements
    and alpha_q is the Q-learning rate. Targets are collected into a small
    mini-batch and fitted with MSE through every layer.

Schedules (applied at each episode end):
    epsilon, learning rate, Q-learning rate: geometric decay toward a floor
    discount factor: linear increase toward a ceiling

Numeric faults (NaN/inf) never raise during training: Q-values and targets
are clamped into [MIN_Q, MAX_Q], gradients are zeroed. Every replacement is
counted in numeric_faults.

Usage:
    >>> from config import Config
    >>> net = Network(Config(SEED=42))
    >>> x, rotation = net.select_action(candidate_states)
    >>> net.learn(state, (x, rotation), reward, next_state, done, next_candidates)
"""

from collections import deque
from typing import Any, Deque, List, Optional, Sequence, Tuple

import numpy as np

from config import Config, PER_LAYER_KEYS
from .clipping import GradientClipper
from .layer import Layer
from .replay_buffer import ExperienceReplay
from ..utils.logger import get_logger


logger = get_logger(__name__)


class Network:
    """
    Feed-forward Q-value estimator with epsilon-greedy placement selection.

    Attributes:
        layers: Weight layers, input side first
        learning_rate, q_learning_rate, discount_factor, epsilon: Live schedules
        episode_count: Finished episodes
        best_reward, last_reward: Best and latest episode return
        moving_average, max_moving_average: Over the last MOVING_AVERAGE_WINDOW returns
        memory: Experience replay buffer (filled only when USE_EXPERIENCE is set)
    """

    def __init__(self, config: Config, rng: Optional[np.random.Generator] = None):
        """
        Build the layer stack described by config.

        Raises:
            ValueError: if a per-layer setting does not have one entry per
                weight layer, or LAYER_NAMES does not have one per size
        """
        self.config = config
        sizes = list(config.LAYER_SIZES)
        num_layers = len(sizes) - 1

        for key in PER_LAYER_KEYS:
            count = len(getattr(config, key))
            if count != num_layers:
                raise ValueError(
                    f"{key} has {count} entries but LAYER_SIZES {tuple(sizes)} "
                    f"describes {num_layers} layers"
                )
        if len(config.LAYER_NAMES) != len(sizes):
            raise ValueError(
                f"LAYER_NAMES has {len(config.LAYER_NAMES)} entries, expected {len(sizes)}"
            )

        self.rng = rng if rng is not None else np.random.default_rng(config.SEED)
        self.clipper = GradientClipper(
            config.CLIP_MIN, config.CLIP_MAX, config.CLIP_NORM, config.GRADIENT_SCALE
        )

        self.layers: List[Layer] = []
        for i in range(num_layers):
            self.layers.append(Layer(
                sizes[i],
                sizes[i + 1],
                config.LAYER_ACTIVATIONS[i],
                config.WEIGHT_INIT_STRATEGIES[i],
                self.rng,
                name=config.LAYER_NAMES[i + 1],
                batch_norm=config.BATCH_NORMS[i],
                l2_regularization=config.L2_REGULARIZATION[i],
                dropout_rate=config.DROPOUT_RATES[i],
                learning_rate=config.LEARNING_RATE,
                clipper=self.clipper,
                adam_betas=(config.ADAM_BETA1, config.ADAM_BETA2),
                adam_epsilon=config.ADAM_EPSILON,
                batch_norm_momentum=config.BATCH_NORM_MOMENTUM,
                batch_norm_epsilon=config.BATCH_NORM_EPSILON,
            ))

        self.memory = ExperienceReplay(config.MEMORY_SIZE, self.rng)
        self.reset_training_state()

        logger.debug(
            f"Network built: {'-'.join(str(s) for s in sizes)} "
            f"({self.parameter_count()} parameters, replay={'on' if config.USE_EXPERIENCE else 'off'})"
        )

    def reset_training_state(self) -> None:
        """Schedules, counters and reward trackers back to their initial values."""
        cfg = self.config
        self.learning_rate = cfg.LEARNING_RATE
        self.q_learning_rate = cfg.Q_LEARNING_RATE
        self.discount_factor = cfg.DISCOUNT_FACTOR
        self.epsilon = cfg.EPSILON_START

        self.episode_count = 0
        self.training_steps = 0
        self.best_reward: Optional[float] = None
        self.last_reward = 0.0
        self.moving_average = 0.0
        self.max_moving_average: Optional[float] = None
        self.recent_rewards: Deque[float] = deque(maxlen=cfg.MOVING_AVERAGE_WINDOW)
        self.losses: Deque[float] = deque(maxlen=10000)
        self.rms = 0.0
        self.max_rms = 0.0
        self.max_q = 0.0
        self.next_q = 0.0

        self._episode_reward = 0.0
        self._q_faults = 0
        self.last_action_index: Optional[int] = None
        self._batch_states: List[np.ndarray] = []
        self._batch_targets: List[float] = []

        for layer in self.layers:
            layer.set_learning_rate(self.learning_rate)

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def input_size(self) -> int:
        return self.layers[0].input_size

    @property
    def output_size(self) -> int:
        return self.layers[-1].output_size

    @property
    def numeric_faults(self) -> int:
        """Non-finite values replaced so far (Q-values and gradients)."""
        return self._q_faults + sum(layer.numeric_faults for layer in self.layers)

    def layer_sizes(self) -> List[int]:
        return [self.input_size] + [layer.output_size for layer in self.layers]

    def layer_names(self) -> List[str]:
        return list(self.config.LAYER_NAMES)

    def parameter_count(self) -> int:
        return sum(layer.parameter_count for layer in self.layers)

    def get_weights(self) -> List[np.ndarray]:
        """Copies of every layer's (output, input) weight matrix."""
        return [layer.weights.copy() for layer in self.layers]

    def get_activations(self) -> List[Optional[np.ndarray]]:
        """Outputs of each layer from the most recent forward pass."""
        return [layer.last_output for layer in self.layers]

    def get_average_loss(self, n: int = 100) -> float:
        """Average MSE over the last n training passes."""
        if not self.losses:
            return 0.0
        recent = list(self.losses)[-n:]
        return float(np.mean(recent))

    def get_flat_parameters(self) -> np.ndarray:
        """All weights and biases as one vector, layer by layer."""
        parts = []
        for layer in self.layers:
            parts.append(layer.weights.ravel())
            parts.append(layer.biases.ravel())
        return np.concatenate(parts)

    def set_flat_parameters(self, vector: np.ndarray) -> None:
        vector = np.asarray(vector, dtype=np.float64).ravel()
        if vector.size != self.parameter_count():
            raise ValueError(f"Expected {self.parameter_count()} parameters, got {vector.size}")
        offset = 0
        for layer in self.layers:
            w_size = layer.weights.size
            b_size = layer.biases.size
            weights = vector[offset:offset + w_size].reshape(layer.weights.shape)
            offset += w_size
            biases = vector[offset:offset + b_size]
            offset += b_size
            layer.set_parameters(weights, biases)

    # =========================================================================
    # Inference
    # =========================================================================

    def forward(self, state: np.ndarray, is_training: bool = False) -> np.ndarray:
        """
        Run every layer in order.

        Args:
            state: One feature vector or a (batch, input) matrix
            is_training: Batch statistics, dropout and backward caches on

        Returns:
            Final layer output with the same rank as state
        """
        x = np.asarray(state, dtype=np.float64)
        for layer in self.layers:
            x = layer.forward(x, training=is_training)
        return x

    def q_values(self, states: np.ndarray) -> np.ndarray:
        """Clamped Q-estimates, one per row of states."""
        states = np.asarray(states, dtype=np.float64)
        if states.ndim == 1:
            states = states[None, :]
        return self._clamp(self.forward(states)[:, 0])

    def select_action(
        self,
        candidates: np.ndarray,
        actions: Optional[Sequence[Any]] = None,
        explore: bool = True,
    ) -> Tuple[int, int]:
        """
        Epsilon-greedy choice among enumerated placements.

        Args:
            candidates: (n, input) board encodings, one per legal placement
            actions: Optional parallel sequence of actions; when omitted the
                (x, rotation) pair is read from each candidate row at
                ACTION_X_INDEX / ACTION_ROTATION_INDEX
            explore: Allow the random branch (False for evaluation)

        Returns:
            The chosen action, (x, rotation) by default

        Raises:
            ValueError: if there are no candidates
        """
        candidates = np.asarray(candidates, dtype=np.float64)
        if candidates.ndim == 1:
            candidates = candidates[None, :] if candidates.size else candidates.reshape(0, self.input_size)
        if candidates.shape[0] == 0:
            raise ValueError("select_action() needs at least one candidate placement")
        if actions is not None and len(actions) != candidates.shape[0]:
            raise ValueError(f"Got {len(actions)} actions for {candidates.shape[0]} candidates")

        if explore and self.rng.random() < self.epsilon:
            index = int(self.rng.integers(candidates.shape[0]))
        else:
            q = self.q_values(candidates)
            best = float(q.max())
            self.max_q = best
            tied = np.flatnonzero(q >= best - self.config.TIE_TOLERANCE)
            index = int(tied[0]) if tied.size == 1 else int(self.rng.choice(tied))

        self.last_action_index = index
        if actions is not None:
            return actions[index]
        return self.decode_action(candidates[index])

    def decode_action(self, row: np.ndarray) -> Tuple[int, int]:
        """The (x, rotation) pair a raw candidate row encodes."""
        return (int(round(row[self.config.ACTION_X_INDEX])),
                int(round(row[self.config.ACTION_ROTATION_INDEX])))

    # =========================================================================
    # Learning
    # =========================================================================

    def learn(
        self,
        state: np.ndarray,
        action: Any,
        reward: float,
        next_state: np.ndarray,
        done: bool,
        next_possible_states: Optional[np.ndarray] = None,
    ) -> float:
        """
        Fold one transition into the network.

        Args:
            state: Encoding of the board the agent chose
            action: The placement played (stored with replayed experiences)
            reward: Environment reward for the placement
            next_state: Encoding after the environment moved on
            done: Whether the game ended
            next_possible_states: (m, input) encodings of the next piece's placements

        Returns:
            The TD-target computed for this transition
        """
        state = np.asarray(state, dtype=np.float64)
        next_possible = self._as_candidates(next_possible_states)
        self._episode_reward += float(reward)

        target, current_q = self._td_target(state, reward, done, next_possible)

        if self.config.USE_EXPERIENCE:
            self.memory.push(state, action, reward, next_state, next_possible, done,
                             priority=abs(target - current_q))
            self._replay()
        else:
            self._batch_states.append(state)
            self._batch_targets.append(target)
            if len(self._batch_states) >= self.config.MINIMUM_BATCH_SIZE or done:
                self._train_batch(self._batch_states, self._batch_targets)
                self._batch_states = []
                self._batch_targets = []

        if done:
            self._end_episode()

        return target

    def _td_target(
        self,
        state: np.ndarray,
        reward: float,
        done: bool,
        next_possible: np.ndarray,
    ) -> Tuple[float, float]:
        """(target, current Q) for one transition."""
        current_q = float(self.q_values(state)[0])
        if done or next_possible.shape[0] == 0:
            max_next_q = 0.0
        else:
            max_next_q = float(self.q_values(next_possible).max())
        self.next_q = max_next_q

        if done:
            target = self._clamp(reward)
        else:
            target = self._clamp(
                current_q + self.q_learning_rate * (
                    reward + self.discount_factor * max_next_q - current_q
                )
            )
        return float(target), current_q

    def _replay(self) -> None:
        """Train on a uniformly sampled batch from the replay buffer."""
        batch = self.memory.sample(self.config.BATCH_SIZE)
        if not batch:
            return
        targets, errors = [], []
        for experience in batch:
            target, current_q = self._td_target(
                experience.state, experience.reward, experience.done,
                self._as_candidates(experience.next_possible_states)
            )
            targets.append(target)
            errors.append(target - current_q)
        self.memory.update_priorities(batch, errors)
        self._train_batch([e.state for e in batch], targets)

    def _train_batch(self, states: Sequence[np.ndarray], targets: Sequence[float]) -> float:
        """One forward/backward pass over (state, target) pairs; returns the MSE."""
        x = np.vstack(states)
        y = np.asarray(targets, dtype=np.float64)

        predictions = self.forward(x, is_training=True)
        error = y - predictions[:, 0]
        finite = np.isfinite(error)
        if not finite.all():
            self._q_faults += int(error.size - finite.sum())
            error = np.where(finite, error, 0.0)

        # dLoss/dprediction of (target - prediction)^2
        grad = np.zeros_like(predictions)
        grad[:, 0] = -2.0 * error

        for layer in reversed(self.layers):
            grad = layer.backward(grad)

        loss = float(np.mean(error ** 2))
        self.losses.append(loss)
        self.rms = float(np.sqrt(loss))
        self.max_rms = max(self.max_rms, self.rms)
        self.training_steps += 1
        return loss

    def end_episode(self) -> None:
        """Close an episode the environment cut short without a terminal transition."""
        if self._batch_states:
            self._train_batch(self._batch_states, self._batch_targets)
            self._batch_states = []
            self._batch_targets = []
        self._end_episode()

    def _end_episode(self) -> None:
        """Bookkeeping and schedule decay at a terminal transition."""
        episode_reward = self._episode_reward
        self._episode_reward = 0.0

        self.episode_count += 1
        self.last_reward = episode_reward
        self.recent_rewards.append(episode_reward)
        self.moving_average = float(np.mean(self.recent_rewards))
        if self.best_reward is None or episode_reward > self.best_reward:
            self.best_reward = episode_reward
        if self.max_moving_average is None or self.moving_average > self.max_moving_average:
            self.max_moving_average = self.moving_average

        self.decay_hyperparameters()

        logger.debug(
            f"Episode {self.episode_count} done | reward={episode_reward:.2f} | "
            f"avg={self.moving_average:.2f} | eps={self.epsilon:.4f} | "
            f"lr={self.learning_rate:.6f} | gamma={self.discount_factor:.4f}"
        )

    def decay_hyperparameters(self) -> None:
        """Move every schedule one episode along, never past its bound."""
        cfg = self.config
        self.epsilon = max(cfg.EPSILON_END, self.epsilon * cfg.EPSILON_DECAY)
        self.learning_rate = max(cfg.LEARNING_RATE_MIN, self.learning_rate * cfg.LEARNING_RATE_DECAY)
        self.q_learning_rate = max(cfg.Q_LEARNING_RATE_MIN, self.q_learning_rate * cfg.Q_LEARNING_RATE_DECAY)
        self.discount_factor = min(cfg.DISCOUNT_FACTOR_MAX, self.discount_factor + cfg.DISCOUNT_FACTOR_INCREMENT)
        for layer in self.layers:
            layer.set_learning_rate(self.learning_rate)

    def pending_batch_size(self) -> int:
        """(state, target) pairs waiting for the next training pass."""
        return len(self._batch_states)

    # =========================================================================
    # Numeric guards
    # =========================================================================

    def _clamp(self, values):
        arr = self._count_faults(np.asarray(values, dtype=np.float64))
        out = np.clip(arr, self.config.MIN_Q, self.config.MAX_Q)
        return float(out) if out.ndim == 0 else out

    def _count_faults(self, values: np.ndarray) -> np.ndarray:
        finite = np.isfinite(values)
        if finite.all():
            return values
        self._q_faults += int(values.size - finite.sum())
        logger.debug(f"Replaced {values.size - finite.sum()} non-finite Q-values")
        return np.nan_to_num(values, nan=0.0, posinf=self.config.MAX_Q, neginf=self.config.MIN_Q)

    def _as_candidates(self, states: Optional[np.ndarray]) -> np.ndarray:
        if states is None:
            return np.zeros((0, self.input_size))
        arr = np.asarray(states, dtype=np.float64)
        if arr.size == 0:
            return np.zeros((0, self.input_size))
        if arr.ndim == 1:
            arr = arr[None, :]
        return arr

    def __repr__(self) -> str:
        layers = ', '.join(repr(layer) for layer in self.layers)
        return f"Network([{layers}], episodes={self.episode_count}, epsilon={self.epsilon:.4f})"
