"""
Genetic algorithm optimizer.

All randomness is drawn from one seeded ``numpy.random.Generator`` on the
calling thread, so a fixed seed always yields the same generation history
regardless of how fitness evaluations are parallelized.
"""

import math
from collections.abc import Sequence
from threading import RLock
from typing import Any, TypeAlias

import numpy as np
from cachetools import LRUCache
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from edgelab.core.constants import FITNESS_CACHE_SIZE
from edgelab.core.models.backtest import BacktestConfig
from edgelab.core.models.candle import Candle
from edgelab.core.models.optimization import Evaluation, GenerationStats, OptimizationResult
from edgelab.core.models.parameters import ParameterRange, ParameterSpace
from edgelab.core.protocols import SignalFactory
from edgelab.core.utils.decorators import log_run
from edgelab.engine.simulator import BacktestEngine
from edgelab.optimization.executor import BatchExecutor, CancellationToken
from edgelab.optimization.objectives import (
    CandidateEvaluator,
    ObjectiveSpec,
    pareto_frontier,
    ranking_key,
)

Individual: TypeAlias = dict[str, Any]


class GeneticConfig(BaseModel):
    """Genetic algorithm settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    population_size: int = Field(default=20, ge=2, description="Individuals per generation")
    generations: int = Field(default=10, ge=1, description="Fixed number of generations")
    mutation_rate: float = Field(default=0.1, ge=0, le=1, description="Per-gene mutation chance")
    crossover_rate: float = Field(default=0.7, ge=0, le=1, description="Chance of crossover")
    elitism_rate: float = Field(default=0.1, ge=0, lt=1, description="Share kept unchanged")
    mutation_scale: float = Field(
        default=0.1, gt=0, le=1, description="Max mutation step as a share of the range"
    )
    seed: int | None = Field(default=None, description="Seed for reproducible runs")

    @property
    def elite_count(self) -> int:
        """Number of top individuals copied unchanged into the next generation."""
        if self.elitism_rate <= 0:
            return 0
        elites = max(1, int(round(self.population_size * self.elitism_rate)))
        return min(self.population_size, elites)


class FitnessCache:
    """Thread-safe LRU memo of evaluations keyed by parameter vector."""

    def __init__(self, maxsize: int = FITNESS_CACHE_SIZE):
        self._cache: LRUCache[tuple, Evaluation] = LRUCache(maxsize=maxsize)
        self._lock = RLock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(individual: Individual) -> tuple:
        return tuple(sorted(individual.items()))

    def get(self, individual: Individual) -> Evaluation | None:
        with self._lock:
            evaluation = self._cache.get(self.key(individual))
            if evaluation is None:
                self.misses += 1
            else:
                self.hits += 1
            return evaluation

    def put(self, individual: Individual, evaluation: Evaluation) -> None:
        with self._lock:
            self._cache[self.key(individual)] = evaluation


def _fitness(evaluation: Evaluation) -> float:
    return evaluation.score if not math.isnan(evaluation.score) else -math.inf


class GeneticOptimizer:
    """
    Evolves parameter sets with elitism, roulette selection, uniform crossover
    and bounded mutation over a fixed number of generations.

    Args:
        config: Algorithm settings
        engine: Backtest engine used for fitness evaluations
        executor: Runs the evaluations of one generation
        rng: Generator to draw from; derived from ``config.seed`` when omitted
    """

    def __init__(
        self,
        config: GeneticConfig | None = None,
        engine: BacktestEngine | None = None,
        executor: BatchExecutor | None = None,
        rng: np.random.Generator | None = None,
    ):
        self.config = config or GeneticConfig()
        self.engine = engine or BacktestEngine()
        self.executor = executor or BatchExecutor()
        self._rng = rng

    @log_run("Genetic optimization")
    def optimize(
        self,
        space: ParameterSpace,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        objective: ObjectiveSpec | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> OptimizationResult:
        """
        Run the genetic search.

        Args:
            space: Parameter space (discrete or continuous parameters)
            base_config: Config the parameters are applied to
            candles: Candles every individual is run on
            signal_factory: Builds a signal source from strategy parameters
            objective: Fitness objective (total return by default)
            cancel_token: Stops after the current generation when cancelled

        Returns:
            OptimizationResult with the per-generation history and the final
            population ranked by fitness
        """
        objective = objective or ObjectiveSpec()
        base_config.validate()
        rng = self._rng if self._rng is not None else np.random.default_rng(self.config.seed)
        evaluator = CandidateEvaluator(self.engine, base_config, candles, signal_factory, objective)
        cache = FitnessCache()

        population = [
            self._random_individual(space, rng) for _ in range(self.config.population_size)
        ]
        history: list[GenerationStats] = []
        failures: dict[tuple, Evaluation] = {}
        seen: dict[tuple, Evaluation] = {}
        evaluated: list[Evaluation] = []
        cancelled = False

        for generation in range(self.config.generations):
            if cancel_token is not None and cancel_token.is_cancelled:
                cancelled = True
                break

            evaluated = self._evaluate(population, evaluator, cache, cancel_token)
            for evaluation in evaluated:
                key = FitnessCache.key(evaluation.parameters)
                seen.setdefault(key, evaluation)
                if not evaluation.succeeded:
                    failures.setdefault(key, evaluation)
            if len(evaluated) < len(population):
                cancelled = True
                break

            stats = self._generation_stats(generation, evaluated)
            history.append(stats)
            logger.debug(
                f"Generation {generation}: best={stats.best_fitness:.4f} "
                f"avg={stats.avg_fitness:.4f}"
            )

            if generation < self.config.generations - 1:
                population = self._next_generation(space, evaluated, rng)

        logger.info(f"Fitness cache: {cache.hits} hits, {cache.misses} misses")

        all_evaluations = sorted(seen.values(), key=ranking_key, reverse=True)
        best = next((e for e in all_evaluations if e.succeeded), None)
        final_population = tuple(sorted(evaluated, key=ranking_key, reverse=True))
        frontier = (
            pareto_frontier(all_evaluations, objective.active_metrics)
            if objective.is_multi_objective
            else ()
        )

        return OptimizationResult(
            best_parameters=dict(best.parameters) if best else None,
            best_result=best.result if best else None,
            best_score=best.score if best else float("-inf"),
            evaluations=final_population,
            history=tuple(history),
            pareto_frontier=frontier,
            failures=tuple(failures.values()),
            cancelled=cancelled,
        )

    def _evaluate(
        self,
        population: list[Individual],
        evaluator: CandidateEvaluator,
        cache: FitnessCache,
        cancel_token: CancellationToken | None,
    ) -> list[Evaluation]:
        """Evaluate a population, reusing memoized fitness for repeated individuals.

        Returns fewer evaluations than individuals only when cancelled mid-batch.
        """
        resolved: dict[tuple, Evaluation] = {}
        pending: list[Individual] = []
        for individual in population:
            key = FitnessCache.key(individual)
            if key in resolved or any(FitnessCache.key(p) == key for p in pending):
                continue
            cached = cache.get(individual)
            if cached is not None:
                resolved[key] = cached
            else:
                pending.append(individual)

        if pending:
            report = self.executor.run(evaluator, pending, cancel_token, label="genetic generation")
            for outcome in report.outcomes:
                individual = pending[outcome.index]
                if outcome.ok:
                    evaluation = outcome.value
                else:
                    evaluation = CandidateEvaluator.failed(individual, outcome.error)  # type: ignore[arg-type]
                cache.put(individual, evaluation)
                resolved[FitnessCache.key(individual)] = evaluation

        evaluations = []
        for individual in population:
            evaluation = resolved.get(FitnessCache.key(individual))
            if evaluation is None:
                break
            evaluations.append(evaluation)
        return evaluations

    @staticmethod
    def _generation_stats(generation: int, evaluated: list[Evaluation]) -> GenerationStats:
        fitness = np.array([_fitness(e) for e in evaluated], dtype=float)
        best_index = int(np.argmax(fitness))
        finite = fitness[np.isfinite(fitness)]
        return GenerationStats(
            generation=generation,
            best_fitness=float(fitness[best_index]),
            avg_fitness=float(finite.mean()) if finite.size else float("-inf"),
            best_parameters=dict(evaluated[best_index].parameters),
        )

    def _next_generation(
        self, space: ParameterSpace, evaluated: list[Evaluation], rng: np.random.Generator
    ) -> list[Individual]:
        fitness = np.array([_fitness(e) for e in evaluated], dtype=float)
        # Stable descending order so ties keep population order.
        order = sorted(range(len(evaluated)), key=lambda i: -fitness[i])
        next_population = [dict(evaluated[i].parameters) for i in order[: self.config.elite_count]]

        probabilities = self._selection_probabilities(fitness)
        while len(next_population) < self.config.population_size:
            first = evaluated[int(rng.choice(len(evaluated), p=probabilities))].parameters
            second = evaluated[int(rng.choice(len(evaluated), p=probabilities))].parameters
            if rng.random() < self.config.crossover_rate:
                child = self._crossover(space, first, second, rng)
            else:
                child = dict(first)
            next_population.append(self._mutate(space, child, rng))
        return next_population

    @staticmethod
    def _selection_probabilities(fitness: np.ndarray) -> np.ndarray:
        """Roulette wheel weights: fitness shifted above the worst finite value.

        Individuals with -inf fitness (failed or constraint violating) get no
        weight; +inf fitness is treated as one unit above the best finite value.
        """
        finite = np.isfinite(fitness)
        if not finite.any():
            return np.full(fitness.size, 1.0 / fitness.size)
        floor = fitness[finite].min()
        ceiling = fitness[finite].max()
        weights = np.where(finite, fitness - floor + 1e-9, 0.0)
        weights = np.where(np.isposinf(fitness), ceiling - floor + 1.0, weights)
        total = weights.sum()
        if total <= 0:
            return np.full(fitness.size, 1.0 / fitness.size)
        return weights / total

    @staticmethod
    def _random_individual(space: ParameterSpace, rng: np.random.Generator) -> Individual:
        individual: Individual = {}
        for parameter in space.ranges:
            if parameter.is_discrete:
                values = parameter.grid_values
                individual[parameter.name] = values[int(rng.integers(len(values)))]
            else:
                individual[parameter.name] = float(rng.uniform(parameter.lower, parameter.upper))
        return individual

    @staticmethod
    def _crossover(
        space: ParameterSpace, first: Individual, second: Individual, rng: np.random.Generator
    ) -> Individual:
        """Uniform crossover: each gene comes from either parent with equal chance."""
        return {
            name: first[name] if rng.random() < 0.5 else second[name] for name in space.names
        }

    def _mutate(
        self, space: ParameterSpace, individual: Individual, rng: np.random.Generator
    ) -> Individual:
        mutated = dict(individual)
        for parameter in space.ranges:
            if rng.random() >= self.config.mutation_rate:
                continue
            mutated[parameter.name] = self._mutate_gene(parameter, mutated[parameter.name], rng)
        return mutated

    def _mutate_gene(self, parameter: ParameterRange, value: Any, rng: np.random.Generator) -> Any:
        """Move one gene by a bounded random step, staying inside its domain."""
        if parameter.is_discrete:
            values = parameter.grid_values
            max_step = max(1, int(round(len(values) * self.config.mutation_scale)))
            current = values.index(value) if value in values else 0
            shifted = current + int(rng.integers(-max_step, max_step + 1))
            return values[min(max(shifted, 0), len(values) - 1)]
        span = (parameter.upper - parameter.lower) * self.config.mutation_scale
        return parameter.clamp(float(value + rng.uniform(-span, span)))
