"""
Evolutionary Strategy
=====================

Gradient-free training of the same Network used by Q-learning. Individuals
are flat parameter vectors (Network.get_flat_parameters); each one plays a
full greedy episode and its return is its fitness.

Generation step:
    1. Rank the population by fitness
    2. Keep the elite (population / ELITE_SIZE_DIVIDER, at least one)
    3. Refill with children of two random elites:
         uniform crossover with probability CROSSOVER_RATE
         Gaussian mutation of each gene with probability MUTATION_RATE,
         w += N(0, 1) * sigma * MUTATION_STRENGTH
    4. Adapt sigma: x1.05 when the best fitness improved, x0.95 after
       MUTATION_PATIENCE generations without improvement, kept within
       [MUTATION_SIGMA_MIN, MUTATION_SIGMA_MAX]

The best parameters ever seen are written back into the network after every
generation and before evaluation.
"""

from typing import List, Optional

import numpy as np

from config import Config
from .network import Network
from .trainer import TrainingStrategy
from ..utils.logger import get_logger


logger = get_logger(__name__)


class AdaptiveMutationRate:
    """Mutation sigma that grows on progress and shrinks on stagnation."""

    def __init__(
        self,
        initial: float,
        minimum: float,
        maximum: float,
        patience: int = 10,
        increase: float = 1.05,
        decrease: float = 0.95,
    ):
        self.value = initial
        self.minimum = minimum
        self.maximum = maximum
        self.patience = patience
        self.increase = increase
        self.decrease = decrease
        self.best_fitness: Optional[float] = None
        self.stagnant_generations = 0

    def update(self, fitness: float) -> bool:
        """Feed one generation's best fitness; returns True on improvement."""
        if self.best_fitness is None or fitness > self.best_fitness:
            self.best_fitness = fitness
            self.stagnant_generations = 0
            self.value = min(self.maximum, self.value * self.increase)
            return True

        self.stagnant_generations += 1
        if self.stagnant_generations >= self.patience:
            self.value = max(self.minimum, self.value * self.decrease)
            self.stagnant_generations = 0
        return False


class EvolutionaryTrainer(TrainingStrategy):
    """
    Example:
        >>> strategy = EvolutionaryTrainer(network, config)
        >>> Trainer(game, strategy, config).train(num_episodes=200)
    """

    name = 'evolution'

    def __init__(
        self,
        network: Network,
        config: Optional[Config] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        super().__init__(network)
        self.config = config or network.config
        self.rng = rng if rng is not None else network.rng

        self.sigma = AdaptiveMutationRate(
            self.config.MUTATION_SIGMA,
            self.config.MUTATION_SIGMA_MIN,
            self.config.MUTATION_SIGMA_MAX,
            patience=self.config.MUTATION_PATIENCE,
        )

        base = network.get_flat_parameters()
        self.population: List[np.ndarray] = [base.copy()]
        for _ in range(self.config.POPULATION_SIZE - 1):
            self.population.append(base + self.rng.standard_normal(base.size) * self.sigma.value)
        self.fitness = np.full(len(self.population), -np.inf)

        self.current = 0
        self.generation = 0
        self.best_parameters = base.copy()
        self.best_fitness: Optional[float] = None

    @property
    def epsilon(self) -> float:
        # Individuals always play greedily
        return 0.0

    @property
    def elite_count(self) -> int:
        return max(1, len(self.population) // self.config.ELITE_SIZE_DIVIDER)

    def start_episode(self) -> None:
        self.network.set_flat_parameters(self.population[self.current])

    def select_action(self, candidates, actions=None, explore=True):
        return self.network.select_action(candidates, actions, explore=False)

    def observe(self, state, action, reward, next_state, done, next_possible_states):
        # Fitness is the episode return, reported in on_episode_end
        pass

    def on_episode_end(self, total_reward: float, truncated: bool = False) -> None:
        self.fitness[self.current] = total_reward
        if self.best_fitness is None or total_reward > self.best_fitness:
            self.best_fitness = float(total_reward)
            self.best_parameters = self.population[self.current].copy()

        self.network.episode_count += 1
        self.network.last_reward = float(total_reward)
        self.network.recent_rewards.append(float(total_reward))
        self.network.moving_average = float(np.mean(self.network.recent_rewards))
        self.network.best_reward = self.best_fitness

        self.current += 1
        if self.current >= len(self.population):
            self.evolve()
            self.current = 0

    def evolve(self) -> None:
        """Replace the scored population with the next generation."""
        order = np.argsort(self.fitness)[::-1]
        generation_best = float(self.fitness[order[0]])
        improved = self.sigma.update(generation_best)
        if self.best_fitness is None or generation_best > self.best_fitness:
            self.best_fitness = generation_best
            self.best_parameters = self.population[order[0]].copy()

        elites = [self.population[i].copy() for i in order[:self.elite_count]]
        children = [e.copy() for e in elites]
        while len(children) < len(self.population):
            parent_a = elites[self.rng.integers(len(elites))]
            parent_b = elites[self.rng.integers(len(elites))]
            children.append(self.mutate(self.crossover(parent_a, parent_b)))

        self.population = children
        self.fitness = np.full(len(self.population), -np.inf)
        self.generation += 1
        self.network.set_flat_parameters(self.best_parameters)

        logger.info(
            f"Generation {self.generation} | best={generation_best:.2f} | "
            f"overall={self.best_fitness:.2f} | sigma={self.sigma.value:.5f}"
            f"{' | improved' if improved else ''}"
        )

    def crossover(self, parent_a: np.ndarray, parent_b: np.ndarray) -> np.ndarray:
        """Uniform crossover: each gene from either parent with equal odds."""
        if self.rng.random() >= self.config.CROSSOVER_RATE:
            return parent_a.copy()
        mask = self.rng.random(parent_a.size) < 0.5
        return np.where(mask, parent_a, parent_b)

    def mutate(self, genes: np.ndarray) -> np.ndarray:
        mask = self.rng.random(genes.size) < self.config.MUTATION_RATE
        noise = self.rng.standard_normal(genes.size) * self.sigma.value * self.config.MUTATION_STRENGTH
        return genes + mask * noise

    def prepare_evaluation(self) -> None:
        self.network.set_flat_parameters(self.best_parameters)
