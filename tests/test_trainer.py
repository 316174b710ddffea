"""
Tests for the training loop and strategies.

These tests verify:
    - Episode execution against a PlacementEnvironment
    - Metrics tracking and periodic/final saves
    - Truncated episodes
    - Greedy evaluation
    - The evolutionary strategy
"""

import os

import numpy as np
import pytest

from qbrain.ai.evolution import AdaptiveMutationRate, EvolutionaryTrainer
from qbrain.ai.network import Network
from qbrain.ai.persistence import NetworkPersistence
from qbrain.ai.trainer import (
    EpisodeStats,
    GradientDescentTrainer,
    Trainer,
    TrainingMetrics,
)
from qbrain.environment import PlacementEnvironment


class LineEnvironment(PlacementEnvironment):
    """
    Toy game: every step offers placements x = 0, 1, 2 (rotation 0) and
    pays x as reward. The game ends after `length` placements.
    """

    def __init__(self, length=5, dead_end_after=None):
        self.length = length
        self.dead_end_after = dead_end_after
        self.steps = 0

    @property
    def state_size(self) -> int:
        return 2

    def reset(self):
        self.steps = 0
        return np.zeros(2)

    def candidates(self):
        if self.dead_end_after is not None and self.steps >= self.dead_end_after:
            return np.zeros((0, 2)), None
        return np.array([[float(x), 0.0] for x in range(3)]), None

    def step(self, action):
        x, _ = action
        self.steps += 1
        done = self.dead_end_after is None and self.steps >= self.length
        return np.array([float(x), 0.0]), float(x), done, {'score': self.steps}


@pytest.fixture
def config(make_config, tmp_path):
    return make_config(MODEL_DIR=str(tmp_path), LOG_EVERY=1, SAVE_EVERY=2)


@pytest.fixture
def network(config):
    return Network(config)


class TestTrainer:
    """Test the gradient-descent training loop."""

    def test_run_episode(self, network):
        trainer = Trainer(LineEnvironment(length=5), GradientDescentTrainer(network))
        stats = trainer.run_episode()
        assert isinstance(stats, EpisodeStats)
        assert stats.steps == 5
        assert stats.score == 5
        assert not stats.truncated
        assert 0.0 <= stats.total_reward <= 10.0
        assert network.episode_count == 1
        assert network.last_reward == pytest.approx(stats.total_reward)

    def test_step_limit_truncates(self, make_config, tmp_path):
        config = make_config(MODEL_DIR=str(tmp_path), MAX_STEPS_PER_EPISODE=3)
        network = Network(config)
        trainer = Trainer(LineEnvironment(length=5), GradientDescentTrainer(network))
        stats = trainer.run_episode()
        assert stats.steps == 3
        assert stats.truncated
        # The strategy closes the episode itself
        assert network.episode_count == 1
        assert network.pending_batch_size() == 0

    def test_no_candidates_ends_episode(self, network):
        env = LineEnvironment(dead_end_after=2)
        trainer = Trainer(env, GradientDescentTrainer(network))
        stats = trainer.run_episode()
        assert stats.steps == 2
        assert stats.truncated
        assert network.episode_count == 1

    def test_train_collects_metrics_and_saves(self, config, network):
        persistence = NetworkPersistence(config)
        trainer = Trainer(LineEnvironment(), GradientDescentTrainer(network), config, persistence)
        seen = []
        metrics = trainer.train(num_episodes=3,
                                progress_callback=lambda ep, total, stats: seen.append(ep))
        assert len(metrics) == 3
        assert seen == [0, 1, 2]
        assert os.path.exists(persistence.structure_path)
        assert os.path.exists(persistence.training_state_path)
        assert network.episode_count == 3
        assert network.epsilon < config.EPSILON_START

    def test_train_without_persistence(self, network):
        trainer = Trainer(LineEnvironment(), GradientDescentTrainer(network))
        trainer.train(num_episodes=2)
        assert trainer.total_steps == 10

    def test_evaluate(self, network):
        trainer = Trainer(LineEnvironment(), GradientDescentTrainer(network))
        results = trainer.evaluate(num_episodes=3)
        assert set(results) == {'mean_reward', 'max_reward', 'min_reward', 'mean_score', 'mean_steps'}
        assert results['mean_steps'] == 5.0
        # Evaluation does not learn
        assert network.episode_count == 0
        assert network.training_steps == 0


class RecordingStrategy(GradientDescentTrainer):
    """Remembers what the network was shown and which actions came back."""

    def __init__(self, network):
        super().__init__(network)
        self.seen_candidates = []
        self.seen_states = []
        self.chosen = []

    def select_action(self, candidates, actions=None, explore=True):
        self.seen_candidates.append(np.array(candidates))
        action = super().select_action(candidates, actions, explore)
        self.chosen.append(action)
        return action

    def observe(self, state, action, reward, next_state, done, next_possible_states):
        self.seen_states.append(np.array(next_state))
        super().observe(state, action, reward, next_state, done, next_possible_states)


class TestInputNormalization:
    """Test feature scaling between the game and the network."""

    def test_disabled_by_default(self, network):
        strategy = RecordingStrategy(network)
        Trainer(LineEnvironment(length=2), strategy).run_episode()
        np.testing.assert_array_equal(strategy.seen_candidates[0], [[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]])

    def test_zscore_rows_reach_the_network(self, make_config, tmp_path):
        config = make_config(MODEL_DIR=str(tmp_path), INPUT_NORMALIZATION='ZSCORE')
        strategy = RecordingStrategy(Network(config))
        trainer = Trainer(LineEnvironment(length=3), strategy)
        stats = trainer.run_episode()

        assert stats.steps == 3
        # Each row is scaled on its own: constant rows become zeros
        np.testing.assert_allclose(strategy.seen_candidates[0], [[0.0, 0.0], [1.0, -1.0], [1.0, -1.0]])
        for state in strategy.seen_states:
            assert np.all(np.abs(state) <= 1.0)

    def test_actions_decoded_from_raw_rows(self, make_config, tmp_path):
        config = make_config(MODEL_DIR=str(tmp_path), INPUT_NORMALIZATION='ZSCORE')
        strategy = RecordingStrategy(Network(config))
        stats = Trainer(LineEnvironment(length=4), strategy).run_episode()

        assert all(action in [(0, 0), (1, 0), (2, 0)] for action in strategy.chosen)
        # Reward is the raw x of each placement
        assert stats.total_reward == pytest.approx(sum(x for x, _ in strategy.chosen))


class TestTrainingMetrics:
    """Test metrics tracking."""

    def make_stats(self, episode, reward):
        return EpisodeStats(episode, reward, reward * 2, 10, 0.5, 0.1, 0.01, False)

    def test_history_is_trimmed(self):
        metrics = TrainingMetrics(history_length=3)
        for i in range(5):
            metrics.add(self.make_stats(i, float(i)))
        assert len(metrics) == 3
        assert metrics.rewards == [2.0, 3.0, 4.0]
        assert len(metrics.durations) == 3

    def test_averages_and_bests(self):
        metrics = TrainingMetrics()
        for reward in (1.0, 5.0, 3.0):
            metrics.add(self.make_stats(0, reward))
        assert metrics.get_recent_average('rewards', 2) == pytest.approx(4.0)
        assert metrics.get_best_reward() == 5.0
        assert metrics.get_best_score() == 10.0

    def test_empty_metrics(self):
        metrics = TrainingMetrics()
        assert metrics.get_recent_average('rewards') == 0.0
        assert metrics.get_best_reward() == 0.0


class TestAdaptiveMutationRate:
    """Test sigma adaptation."""

    def test_grows_on_improvement(self):
        rate = AdaptiveMutationRate(0.05, 0.01, 0.1, patience=2)
        assert rate.update(1.0)
        assert rate.value == pytest.approx(0.0525)

    def test_shrinks_after_patience(self):
        rate = AdaptiveMutationRate(0.05, 0.01, 0.1, patience=2)
        rate.update(1.0)
        assert not rate.update(0.5)
        assert rate.value == pytest.approx(0.0525)
        rate.update(0.5)
        assert rate.value == pytest.approx(0.0525 * 0.95)

    def test_stays_within_bounds(self):
        rate = AdaptiveMutationRate(0.05, 0.04, 0.06, patience=1)
        for i in range(20):
            rate.update(float(i))
        assert rate.value == pytest.approx(0.06)
        for _ in range(20):
            rate.update(-1.0)
        assert rate.value == pytest.approx(0.04)


class TestEvolutionaryTrainer:
    """Test the population-based strategy."""

    @pytest.fixture
    def evo_config(self, make_config, tmp_path):
        return make_config(MODEL_DIR=str(tmp_path), POPULATION_SIZE=4, ELITE_SIZE_DIVIDER=2)

    def test_population_starts_from_network(self, evo_config):
        network = Network(evo_config)
        strategy = EvolutionaryTrainer(network)
        assert len(strategy.population) == 4
        np.testing.assert_array_equal(strategy.population[0], network.get_flat_parameters())
        assert strategy.elite_count == 2
        assert strategy.epsilon == 0.0

    def test_generations_advance(self, evo_config):
        network = Network(evo_config)
        strategy = EvolutionaryTrainer(network)
        trainer = Trainer(LineEnvironment(), strategy)
        trainer.train(num_episodes=8)
        assert strategy.generation == 2
        assert network.episode_count == 8
        assert strategy.best_fitness == max(trainer.metrics.rewards)
        # Training ends with the best individual loaded
        np.testing.assert_array_equal(network.get_flat_parameters(), strategy.best_parameters)

    def test_elites_survive(self, evo_config):
        network = Network(evo_config)
        strategy = EvolutionaryTrainer(network)
        before = [p.copy() for p in strategy.population]
        strategy.fitness = np.array([1.0, 5.0, 3.0, 2.0])
        strategy.evolve()
        np.testing.assert_array_equal(strategy.population[0], before[1])
        np.testing.assert_array_equal(strategy.population[1], before[2])
        assert np.all(np.isneginf(strategy.fitness))
        assert strategy.best_fitness == 5.0
        np.testing.assert_array_equal(network.get_flat_parameters(), before[1])

    def test_crossover_takes_genes_from_parents(self, make_config, tmp_path):
        config = make_config(MODEL_DIR=str(tmp_path), POPULATION_SIZE=4, CROSSOVER_RATE=1.0)
        strategy = EvolutionaryTrainer(Network(config))
        a, b = np.zeros(50), np.ones(50)
        child = strategy.crossover(a, b)
        assert set(child.tolist()) <= {0.0, 1.0}
        assert 0 < child.sum() < 50

    def test_no_crossover_copies_first_parent(self, make_config, tmp_path):
        config = make_config(MODEL_DIR=str(tmp_path), POPULATION_SIZE=4, CROSSOVER_RATE=0.0)
        strategy = EvolutionaryTrainer(Network(config))
        np.testing.assert_array_equal(strategy.crossover(np.zeros(5), np.ones(5)), np.zeros(5))

    def test_mutation_rate_zero_is_identity(self, make_config, tmp_path):
        config = make_config(MODEL_DIR=str(tmp_path), POPULATION_SIZE=4, MUTATION_RATE=0.0)
        strategy = EvolutionaryTrainer(Network(config))
        genes = np.arange(10, dtype=float)
        np.testing.assert_array_equal(strategy.mutate(genes), genes)

    def test_full_mutation_changes_every_gene(self, make_config, tmp_path):
        config = make_config(MODEL_DIR=str(tmp_path), POPULATION_SIZE=4, MUTATION_RATE=1.0)
        strategy = EvolutionaryTrainer(Network(config))
        genes = np.zeros(10)
        assert np.all(strategy.mutate(genes) != 0.0)
