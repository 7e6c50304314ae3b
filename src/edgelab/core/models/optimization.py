"""
Optimization result models.
"""

import math
from dataclasses import dataclass, field
from typing import Any

from edgelab.core.models.backtest import BacktestResult


@dataclass(frozen=True)
class Evaluation:
    """One evaluated parameter set."""

    parameters: dict[str, Any]
    score: float
    result: BacktestResult | None = None
    objectives: dict[str, float] = field(default_factory=dict)
    violations: tuple[str, ...] = ()
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """Check if the backtest ran to completion."""
        return self.result is not None and self.error is None

    @property
    def feasible(self) -> bool:
        """Check if the run succeeded and satisfied every constraint."""
        return self.succeeded and not self.violations

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameters": dict(self.parameters),
            "score": self.score,
            "objectives": dict(self.objectives),
            "constraintViolations": list(self.violations),
            "error": self.error,
            "totalTrades": self.result.metrics.total_trades if self.result else 0,
        }


@dataclass(frozen=True)
class GenerationStats:
    """Fitness summary of one genetic algorithm generation."""

    generation: int
    best_fitness: float
    avg_fitness: float
    best_parameters: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "bestFitness": self.best_fitness,
            "avgFitness": self.avg_fitness,
            "bestParameters": dict(self.best_parameters),
        }


@dataclass(frozen=True)
class OptimizationResult:
    """Best parameters plus the ranked table (grid) or generation history (genetic)."""

    best_parameters: dict[str, Any] | None
    best_result: BacktestResult | None
    best_score: float
    evaluations: tuple[Evaluation, ...] = ()
    history: tuple[GenerationStats, ...] = ()
    pareto_frontier: tuple[Evaluation, ...] = ()
    failures: tuple[Evaluation, ...] = ()
    cancelled: bool = False

    @property
    def feasible_count(self) -> int:
        """Number of evaluations that satisfied every constraint."""
        return sum(1 for e in self.evaluations if e.feasible)

    def top(self, n: int = 10) -> list[Evaluation]:
        """The ``n`` best ranked evaluations."""
        return list(self.evaluations[:n])

    def to_dict(self) -> dict[str, Any]:
        return {
            "bestParameters": self.best_parameters,
            "bestScore": self.best_score if math.isfinite(self.best_score) else None,
            "evaluations": [e.to_dict() for e in self.evaluations],
            "history": [h.to_dict() for h in self.history],
            "paretoFrontier": [e.to_dict() for e in self.pareto_frontier],
            "failures": [e.to_dict() for e in self.failures],
            "cancelled": self.cancelled,
        }
