"""
Value at Risk and drawdown expectations from realized trades.

All functions are stateless. Returns are each trade's ``pnl_percent`` as a
fraction; dollar figures scale those by the supplied capital.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import stats

from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.models.trade import Trade
from edgelab.core.utils.validation import validate_positive

DRAWDOWN_BUCKETS = (0.05, 0.10, 0.15, 0.20, 0.25, 0.30, 0.40, 0.50, 1.0)


@dataclass(frozen=True)
class VaRResult:
    """Loss estimates at one confidence level, in dollars of ``capital``."""

    confidence_level: float
    capital: float
    parametric_var: float = 0.0
    historical_var: float = 0.0
    conditional_var: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidenceLevel": self.confidence_level,
            "parametricVaR": self.parametric_var,
            "historicalVaR": self.historical_var,
            "conditionalVaR": self.conditional_var,
        }


@dataclass(frozen=True)
class DrawdownBucket:
    lower: float
    upper: float
    probability: float

    @property
    def label(self) -> str:
        return f"{self.lower * 100:.0f}%-{self.upper * 100:.0f}%"


@dataclass(frozen=True)
class DrawdownExpectation:
    """Distribution of maximum drawdowns (fractions) over reshuffled trade orders."""

    expected: float = 0.0
    median: float = 0.0
    worst_case: float = 0.0
    distribution: tuple[DrawdownBucket, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "expectedMaxDD": self.expected,
            "medianMaxDD": self.median,
            "worstCaseMaxDD": self.worst_case,
            "maxDDDistribution": [
                {"range": b.label, "probability": b.probability} for b in self.distribution
            ],
        }


def trade_returns(trades: Sequence[Trade]) -> np.ndarray:
    """Percent returns of closed trades as fractions."""
    return np.array([t.pnl_percent / 100 for t in trades if t.is_closed], dtype=float)


def value_at_risk(
    trades: Sequence[Trade], confidence_level: float = 0.95, capital: float = 10000.0
) -> VaRResult:
    """
    Parametric, historical and conditional VaR of per-trade returns.

    Args:
        trades: Trades; open ones are ignored
        confidence_level: Probability the loss is not exceeded (0-1)
        capital: Capital the loss fractions are applied to

    Returns:
        VaRResult with positive numbers meaning losses; all zero with no trades
    """
    if not 0 < confidence_level < 1:
        raise InvalidConfigError(
            f"confidence_level must be between 0 and 1, got {confidence_level}"
        )
    validate_positive(capital, "capital")
    returns = trade_returns(trades)
    if returns.size == 0:
        return VaRResult(confidence_level=confidence_level, capital=capital)

    mean = float(returns.mean())
    std = float(returns.std())
    z = float(stats.norm.ppf(1 - confidence_level))
    parametric = -(mean + z * std) * capital

    ordered = np.sort(returns)
    cutoff = int(np.floor(returns.size * (1 - confidence_level)))
    historical = -float(ordered[min(cutoff, returns.size - 1)]) * capital
    tail = ordered[:cutoff]
    conditional = -float(tail.mean()) * capital if tail.size else 0.0

    return VaRResult(
        confidence_level=confidence_level,
        capital=capital,
        parametric_var=parametric,
        historical_var=historical,
        conditional_var=conditional,
    )


def expected_max_drawdown(
    trades: Sequence[Trade],
    num_simulations: int = 1000,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> DrawdownExpectation:
    """
    Estimate maximum drawdown by compounding shuffled trade returns.

    Args:
        trades: Trades; open ones are ignored
        num_simulations: Number of shuffles
        seed: Seed for the generator when ``rng`` is not given
        rng: Generator to draw shuffles from

    Returns:
        DrawdownExpectation with mean, median and 95th-percentile maximum drawdown
    """
    returns = trade_returns(trades)
    if returns.size == 0 or num_simulations <= 0:
        return DrawdownExpectation()
    rng = rng if rng is not None else np.random.default_rng(seed)

    drawdowns = np.empty(num_simulations, dtype=float)
    for i in range(num_simulations):
        equity = np.cumprod(1 + np.maximum(rng.permutation(returns), -1.0))
        peaks = np.maximum.accumulate(np.concatenate(([1.0], equity)))[1:]
        drawdowns[i] = float(np.max((peaks - equity) / peaks))

    buckets = []
    lower = 0.0
    for upper in DRAWDOWN_BUCKETS:
        inside = (drawdowns > lower) & (drawdowns <= upper)
        buckets.append(DrawdownBucket(lower, upper, float(inside.mean())))
        lower = upper

    return DrawdownExpectation(
        expected=float(drawdowns.mean()),
        median=float(np.median(drawdowns)),
        worst_case=float(np.percentile(drawdowns, 95)),
        distribution=tuple(buckets),
    )
