"""
Brain Persistence
=================

Saves and restores a Network as two JSON documents in Config.MODEL_DIR:

    Structure document (STRUCTURE_FILENAME)
        {
          "format": "qbrain-structure", "version": 1,
          "input_size": 30,
          "layers": [
            {"name": "H1", "activation": "LEAKY_RELU", "init_strategy": "HE",
             "neurons": [{"weights": [...], "bias": 0.01}, ...]},
            ...
          ]
        }

    Training-state document (TRAINING_STATE_FILENAME)
        {
          "format": "qbrain-training-state", "version": 1,
          "metadata": {...},            informational (timestamp, reason)
          "hyperparameters": {...},     live schedules and counters
          "rewards": {...},             best/last/moving average, recent window
          "statistics": {...},          rms, max_q, next_q
          "l2_regularization": [...],
          "batch_norm": [{...} | null per layer],
          "adam": [{"m", "v", "m_bias", "v_bias", "iteration"} per layer],
          "experiences": [...]
        }

Every save rewrites each file in full. Loading validates a whole document
before touching the network, so a missing, malformed or mismatching file
leaves the network exactly as it was (freshly initialized at startup) and is
reported with a warning rather than an exception.
"""

import json
import os
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from config import Config
from .batch_norm import BatchNormalizer
from .network import Network
from .optimizer import AdamOptimizer
from .replay_buffer import Experience
from ..utils.logger import get_logger, log_model_event


logger = get_logger(__name__)

STRUCTURE_FORMAT = 'qbrain-structure'
TRAINING_STATE_FORMAT = 'qbrain-training-state'
SCHEMA_VERSION = 1


class PersistenceError(ValueError):
    """A brain document is malformed or does not fit the network."""


@dataclass
class SaveMetadata:
    """Informational header written into the training-state document."""
    timestamp: str
    save_reason: str
    episode_count: int
    epsilon: float
    best_reward: Optional[float]
    moving_average: float
    layer_sizes: List[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SaveMetadata':
        return cls(
            timestamp=data.get('timestamp', ''),
            save_reason=data.get('save_reason', 'unknown'),
            episode_count=data.get('episode_count', 0),
            epsilon=data.get('epsilon', 0.0),
            best_reward=data.get('best_reward'),
            moving_average=data.get('moving_average', 0.0),
            layer_sizes=data.get('layer_sizes', []),
        )

    @classmethod
    def for_network(cls, network: Network, save_reason: str) -> 'SaveMetadata':
        return cls(
            timestamp=datetime.now().isoformat(),
            save_reason=save_reason,
            episode_count=network.episode_count,
            epsilon=network.epsilon,
            best_reward=network.best_reward,
            moving_average=network.moving_average,
            layer_sizes=network.layer_sizes(),
        )


class NetworkPersistence:
    """
    Reads and writes the brain documents for one model directory.

    Example:
        >>> persistence = NetworkPersistence(config)
        >>> persistence.save(network, save_reason='periodic')
        >>> fresh = Network(config)
        >>> persistence.load(fresh)
        True
    """

    def __init__(self, config: Config, model_dir: Optional[str] = None):
        self.config = config
        self.model_dir = model_dir or config.MODEL_DIR

    @property
    def structure_path(self) -> str:
        return os.path.join(self.model_dir, self.config.STRUCTURE_FILENAME)

    @property
    def training_state_path(self) -> str:
        return os.path.join(self.model_dir, self.config.TRAINING_STATE_FILENAME)

    def exists(self) -> bool:
        return os.path.exists(self.structure_path)

    # =========================================================================
    # Save
    # =========================================================================

    def save(self, network: Network, save_reason: str = 'manual') -> Optional[SaveMetadata]:
        """
        Write both documents.

        Returns:
            SaveMetadata if both saves succeeded, None on failure
        """
        metadata = SaveMetadata.for_network(network, save_reason)
        try:
            os.makedirs(self.model_dir, exist_ok=True)
            self._write(self.structure_path, self.structure_document(network))
            self._write(self.training_state_path, self.training_state_document(network, metadata))
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save brain to {self.model_dir}: {e}")
            return None

        log_model_event('save', self.model_dir, episode=network.episode_count,
                        reason=save_reason, epsilon=f"{network.epsilon:.4f}")
        return metadata

    def save_structure(self, network: Network) -> None:
        os.makedirs(self.model_dir, exist_ok=True)
        self._write(self.structure_path, self.structure_document(network))

    def save_training_state(self, network: Network, save_reason: str = 'manual') -> None:
        os.makedirs(self.model_dir, exist_ok=True)
        metadata = SaveMetadata.for_network(network, save_reason)
        self._write(self.training_state_path, self.training_state_document(network, metadata))

    @staticmethod
    def structure_document(network: Network) -> Dict[str, Any]:
        layers = []
        for layer in network.layers:
            layers.append({
                'name': layer.name,
                'activation': layer.activation,
                'init_strategy': layer.init_strategy,
                'neurons': [
                    {'weights': neuron.weights.tolist(), 'bias': neuron.bias}
                    for neuron in layer.neurons
                ],
            })
        return {
            'format': STRUCTURE_FORMAT,
            'version': SCHEMA_VERSION,
            'input_size': network.input_size,
            'layers': layers,
        }

    @staticmethod
    def training_state_document(network: Network, metadata: SaveMetadata) -> Dict[str, Any]:
        return {
            'format': TRAINING_STATE_FORMAT,
            'version': SCHEMA_VERSION,
            'metadata': metadata.to_dict(),
            'hyperparameters': {
                'learning_rate': network.learning_rate,
                'q_learning_rate': network.q_learning_rate,
                'discount_factor': network.discount_factor,
                'epsilon': network.epsilon,
                'episode_count': network.episode_count,
                'training_steps': network.training_steps,
            },
            'rewards': {
                'best_reward': network.best_reward,
                'last_reward': network.last_reward,
                'moving_average': network.moving_average,
                'max_moving_average': network.max_moving_average,
                'recent_rewards': list(network.recent_rewards),
            },
            'statistics': {
                'rms': network.rms,
                'max_rms': network.max_rms,
                'max_q': network.max_q,
                'next_q': network.next_q,
            },
            'l2_regularization': [layer.l2_regularization for layer in network.layers],
            'batch_norm': [
                layer.batch_normalizer.state_dict() if layer.batch_normalizer is not None else None
                for layer in network.layers
            ],
            'adam': [layer.optimizer.state_dict() for layer in network.layers],
            'experiences': [e.to_dict() for e in network.memory.experiences()],
        }

    # =========================================================================
    # Load
    # =========================================================================

    def load(self, network: Network) -> bool:
        """
        Restore weights and, when present, training state into network.

        Returns:
            True if the structure document was applied. A broken or missing
            training-state document alone does not fail the load.
        """
        if not self.load_structure(network):
            return False
        if os.path.exists(self.training_state_path):
            self.load_training_state(network)
        else:
            logger.warning(f"No training state at {self.training_state_path}, keeping fresh schedules")
        log_model_event('load', self.model_dir, episode=network.episode_count,
                        epsilon=f"{network.epsilon:.4f}")
        return True

    def load_structure(self, network: Network) -> bool:
        try:
            document = self._read(self.structure_path, STRUCTURE_FORMAT)
            parameters = self._parse_structure(document, network)
        except FileNotFoundError:
            logger.warning(f"No brain structure at {self.structure_path}, starting fresh")
            return False
        except (json.JSONDecodeError, PersistenceError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Cannot load brain structure from {self.structure_path} ({e}), starting fresh")
            return False

        for layer, (weights, biases) in zip(network.layers, parameters):
            layer.set_parameters(weights, biases)
        return True

    def load_training_state(self, network: Network) -> bool:
        try:
            document = self._read(self.training_state_path, TRAINING_STATE_FORMAT)
            self._apply_training_state(document, network)
        except FileNotFoundError:
            logger.warning(f"No training state at {self.training_state_path}")
            return False
        except (json.JSONDecodeError, PersistenceError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Cannot load training state from {self.training_state_path} ({e}), "
                           f"keeping fresh schedules")
            return False
        return True

    def _parse_structure(self, document: Dict[str, Any], network: Network):
        if int(document['input_size']) != network.input_size:
            raise PersistenceError(
                f"input size {document['input_size']} != {network.input_size}"
            )
        layers = document['layers']
        if len(layers) != len(network.layers):
            raise PersistenceError(f"{len(layers)} layers saved, network has {len(network.layers)}")

        parameters = []
        previous_size = network.input_size
        for saved, layer in zip(layers, network.layers):
            weights = np.array([n['weights'] for n in saved['neurons']], dtype=np.float64)
            biases = np.array([n['bias'] for n in saved['neurons']], dtype=np.float64)
            if weights.ndim != 2 or weights.shape[1] != previous_size:
                raise PersistenceError(
                    f"layer '{saved.get('name')}' does not take {previous_size} inputs"
                )
            if weights.shape != layer.weights.shape:
                raise PersistenceError(
                    f"layer '{saved.get('name')}' has shape {weights.shape}, expected {layer.weights.shape}"
                )
            if biases.shape != layer.biases.shape:
                raise PersistenceError(
                    f"layer '{saved.get('name')}' biases have shape {biases.shape}, expected {layer.biases.shape}"
                )
            if saved['activation'].upper() != layer.activation:
                raise PersistenceError(
                    f"layer '{saved.get('name')}' activation {saved['activation']} != {layer.activation}"
                )
            parameters.append((weights, biases))
            previous_size = weights.shape[0]
        return parameters

    def _apply_training_state(self, document: Dict[str, Any], network: Network) -> None:
        num_layers = len(network.layers)
        adam_states = document['adam']
        bn_states = document['batch_norm']
        if len(adam_states) != num_layers or len(bn_states) != num_layers:
            raise PersistenceError("optimizer state does not match the layer count")

        # Everything is parsed and checked before the first assignment
        for layer, adam, bn in zip(network.layers, adam_states, bn_states):
            AdamOptimizer(layer.input_size, layer.output_size).load_state_dict(adam)
            if (bn is None) != (layer.batch_normalizer is None):
                raise PersistenceError(f"batch norm settings differ for layer '{layer.name}'")
            if bn is not None:
                BatchNormalizer(layer.output_size).load_state_dict(bn)

        experiences = [Experience.from_dict(e) for e in document.get('experiences', [])]
        for i, experience in enumerate(experiences):
            self._check_experience(i, experience, network.input_size)

        hyper = document['hyperparameters']
        learning_rate = float(hyper['learning_rate'])
        q_learning_rate = float(hyper['q_learning_rate'])
        discount_factor = float(hyper['discount_factor'])
        epsilon = float(hyper['epsilon'])
        episode_count = int(hyper['episode_count'])
        training_steps = int(hyper.get('training_steps', 0))

        rewards = document['rewards']
        best_reward = _optional_float(rewards.get('best_reward'))
        last_reward = float(rewards.get('last_reward', 0.0))
        moving_average = float(rewards.get('moving_average', 0.0))
        max_moving_average = _optional_float(rewards.get('max_moving_average'))
        recent_rewards = [float(r) for r in rewards.get('recent_rewards', [])]

        stats = document.get('statistics', {})
        rms = float(stats.get('rms', 0.0))
        max_rms = float(stats.get('max_rms', 0.0))
        max_q = float(stats.get('max_q', 0.0))
        next_q = float(stats.get('next_q', 0.0))

        for layer, adam, bn in zip(network.layers, adam_states, bn_states):
            layer.optimizer.load_state_dict(adam)
            if bn is not None:
                layer.batch_normalizer.load_state_dict(bn)
            layer.set_learning_rate(learning_rate)

        network.learning_rate = learning_rate
        network.q_learning_rate = q_learning_rate
        network.discount_factor = discount_factor
        network.epsilon = epsilon
        network.episode_count = episode_count
        network.training_steps = training_steps

        network.best_reward = best_reward
        network.last_reward = last_reward
        network.moving_average = moving_average
        network.max_moving_average = max_moving_average
        network.recent_rewards.clear()
        network.recent_rewards.extend(recent_rewards)

        network.rms = rms
        network.max_rms = max_rms
        network.max_q = max_q
        network.next_q = next_q

        network.memory.clear()
        network.memory.extend(experiences)

    @staticmethod
    def _check_experience(index: int, experience: Experience, input_size: int) -> None:
        if experience.state.shape != (input_size,) or experience.next_state.shape != (input_size,):
            raise PersistenceError(f"experience {index} does not have {input_size} features")
        candidates = experience.next_possible_states
        if candidates.size and (candidates.ndim != 2 or candidates.shape[1] != input_size):
            raise PersistenceError(f"experience {index} has candidates of shape {candidates.shape}")

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _write(path: str, document: Dict[str, Any]) -> None:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(document, f)

    @staticmethod
    def _read(path: str, expected_format: str) -> Dict[str, Any]:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise PersistenceError("document is not a JSON object")
        if document.get('format') != expected_format:
            raise PersistenceError(f"expected format '{expected_format}', got '{document.get('format')}'")
        if document.get('version') != SCHEMA_VERSION:
            raise PersistenceError(f"unsupported schema version {document.get('version')}")
        return document

    def reset(self) -> List[str]:
        """Delete both documents; returns the paths that were removed."""
        removed = []
        for path in (self.structure_path, self.training_state_path):
            if os.path.exists(path):
                os.remove(path)
                removed.append(path)
        if removed:
            log_model_event('reset', self.model_dir, files=len(removed))
        return removed

    def inspect(self) -> Optional[Dict[str, Any]]:
        """
        Summarize the saved documents without building a network.

        Returns:
            Dictionary with brain info, or None if nothing readable is saved
        """
        try:
            structure = self._read(self.structure_path, STRUCTURE_FORMAT)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, PersistenceError) as e:
            logger.warning(f"Cannot read {self.structure_path}: {e}")
            return None

        layers = structure.get('layers', [])
        info: Dict[str, Any] = {
            'model_dir': self.model_dir,
            'structure_file': self.structure_path,
            'file_modified': datetime.fromtimestamp(os.path.getmtime(self.structure_path)).isoformat(),
            'layer_sizes': [structure.get('input_size')] + [len(l.get('neurons', [])) for l in layers],
            'layer_names': [l.get('name') for l in layers],
            'activations': [l.get('activation') for l in layers],
            'has_training_state': os.path.exists(self.training_state_path),
        }

        if info['has_training_state']:
            try:
                state = self._read(self.training_state_path, TRAINING_STATE_FORMAT)
                info['metadata'] = SaveMetadata.from_dict(state.get('metadata', {})).to_dict()
                info['hyperparameters'] = state.get('hyperparameters', {})
                info['rewards'] = {k: v for k, v in state.get('rewards', {}).items()
                                   if k != 'recent_rewards'}
                info['experiences'] = len(state.get('experiences', []))
            except (json.JSONDecodeError, PersistenceError) as e:
                logger.warning(f"Cannot read {self.training_state_path}: {e}")
        return info


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)


def load_or_initialize(config: Config, rng: Optional[np.random.Generator] = None) -> Network:
    """
    Build a network and restore it from config.MODEL_DIR when documents exist.

    Any persistence failure degrades to the freshly initialized network.
    """
    network = Network(config, rng=rng)
    persistence = NetworkPersistence(config)
    if persistence.exists():
        persistence.load(network)
    else:
        logger.info(f"No saved brain in {config.MODEL_DIR}, starting fresh")
    return network
