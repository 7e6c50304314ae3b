"""
Multi-asset portfolio backtests.

Each asset is simulated on its own by ``BacktestEngine`` with its share of the
capital pool. The per-asset equity curves are then aligned on a common
timeline with pandas and replayed as a portfolio of holdings that is brought
back to target weights on schedule or when an asset drifts too far.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import numpy as np
import pandas as pd
from loguru import logger

from edgelab.core.constants import DAYS_PER_YEAR, SECONDS_PER_DAY
from edgelab.core.exceptions.backtest import DataError, InvalidConfigError
from edgelab.core.interfaces.signals import ISignalSource
from edgelab.core.models.backtest import BacktestResult, DrawdownPoint, EquityPoint
from edgelab.core.models.candle import Candle
from edgelab.core.models.portfolio import AssetAllocation, PortfolioConfig
from edgelab.core.types import safe_divide
from edgelab.core.utils.decorators import log_run
from edgelab.engine.market_data import candles_to_dataframe
from edgelab.engine.metrics import drawdown_curve, max_drawdown, sharpe_ratio
from edgelab.engine.simulator import BacktestEngine
from edgelab.optimization.executor import BatchExecutor, CancellationToken

SCHEDULED = "scheduled"
DRIFT = "drift"


@dataclass(frozen=True)
class AssetResult:
    """Outcome of one asset's simulation inside the portfolio."""

    symbol: str
    asset_class: str
    allocation_percent: float
    capital: float
    result: BacktestResult
    contribution_percent: float  # Share of the portfolio's return in percentage points

    def to_dict(self) -> dict[str, Any]:
        metrics = self.result.metrics
        return {
            "symbol": self.symbol,
            "assetClass": self.asset_class,
            "allocation": self.allocation_percent,
            "capital": self.capital,
            "finalCapital": metrics.final_capital,
            "totalReturnPercent": metrics.total_return_percent,
            "sharpeRatio": metrics.sharpe_ratio,
            "maxDrawdownPercent": metrics.max_drawdown_percent,
            "totalTrades": metrics.total_trades,
            "contribution": self.contribution_percent,
        }


@dataclass(frozen=True)
class RebalanceEvent:
    timestamp: datetime
    reason: str
    old_weights: dict[str, float]
    new_weights: dict[str, float]
    turnover: float  # Sum of absolute weight changes
    cost: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.timestamp.isoformat(),
            "reason": self.reason,
            "oldWeights": dict(self.old_weights),
            "newWeights": dict(self.new_weights),
            "turnover": self.turnover,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class PortfolioPoint:
    """Portfolio value at one timestamp with the value held in each asset."""

    timestamp: datetime
    equity: float
    breakdown: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "equity": self.equity,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class CorrelationMatrix:
    """Pairwise correlation of asset close-to-close returns."""

    assets: tuple[str, ...]
    matrix: tuple[tuple[float, ...], ...]

    def _off_diagonal(self) -> list[float]:
        n = len(self.assets)
        return [self.matrix[i][j] for i in range(n) for j in range(n) if i != j]

    @property
    def average(self) -> float:
        values = self._off_diagonal()
        return float(np.mean(values)) if values else 0.0

    @property
    def maximum(self) -> float:
        values = self._off_diagonal()
        return max(values) if values else 0.0

    @property
    def minimum(self) -> float:
        values = self._off_diagonal()
        return min(values) if values else 0.0

    def get(self, first: str, second: str) -> float:
        return self.matrix[self.assets.index(first)][self.assets.index(second)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "assets": list(self.assets),
            "matrix": [list(row) for row in self.matrix],
            "avgCorrelation": self.average,
            "maxCorrelation": self.maximum,
            "minCorrelation": self.minimum,
        }


@dataclass(frozen=True)
class PortfolioMetrics:
    total_return: float = 0.0
    total_return_percent: float = 0.0
    annualized_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    diversification_ratio: float = 1.0
    herfindahl_index: float = 0.0
    rebalance_count: int = 0
    rebalance_costs: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalReturn": self.total_return,
            "totalReturnPercent": self.total_return_percent,
            "annualizedReturn": self.annualized_return,
            "volatility": self.volatility,
            "sharpeRatio": self.sharpe_ratio,
            "maxDrawdown": self.max_drawdown,
            "maxDrawdownPercent": self.max_drawdown_percent,
            "diversificationRatio": self.diversification_ratio,
            "herfindahlIndex": self.herfindahl_index,
            "rebalanceCount": self.rebalance_count,
            "rebalanceCosts": self.rebalance_costs,
        }


@dataclass(frozen=True)
class PortfolioResult:
    """Everything a portfolio backtest produces."""

    config: PortfolioConfig
    asset_results: tuple[AssetResult, ...]
    equity_curve: tuple[PortfolioPoint, ...]
    drawdown_curve: tuple[DrawdownPoint, ...]
    rebalance_events: tuple[RebalanceEvent, ...]
    correlation: CorrelationMatrix
    metrics: PortfolioMetrics
    failures: dict[str, str] = field(default_factory=dict)  # Symbol -> error message
    cancelled: bool = False

    @property
    def initial_capital(self) -> float:
        return self.config.base_config.initial_capital

    @property
    def final_equity(self) -> float:
        return self.equity_curve[-1].equity if self.equity_curve else self.initial_capital

    def asset(self, symbol: str) -> AssetResult | None:
        return next((a for a in self.asset_results if a.symbol == symbol), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": {
                "assets": [a.to_dict() for a in self.config.assets],
                "rebalanceFrequency": self.config.rebalance_frequency.value,
                "rebalanceCostPercent": self.config.rebalance_cost_percent,
                "initialCapital": self.initial_capital,
            },
            "portfolioMetrics": self.metrics.to_dict(),
            "assetResults": [a.to_dict() for a in self.asset_results],
            "correlationMatrix": self.correlation.to_dict(),
            "equityCurve": [p.to_dict() for p in self.equity_curve],
            "drawdownCurve": [p.to_dict() for p in self.drawdown_curve],
            "rebalanceEvents": [e.to_dict() for e in self.rebalance_events],
            "failures": dict(self.failures),
            "cancelled": self.cancelled,
        }


class _AssetRun:
    """Simulates one asset of a portfolio. Callable over ``AssetAllocation`` items."""

    def __init__(
        self,
        engine: BacktestEngine,
        config: PortfolioConfig,
        asset_candles: Mapping[str, Sequence[Candle]],
        signal_sources: Mapping[str, ISignalSource],
    ):
        self.engine = engine
        self.config = config
        self.asset_candles = asset_candles
        self.signal_sources = signal_sources

    def __call__(self, asset: AssetAllocation) -> BacktestResult:
        return self.engine.run(
            self.config.asset_config(asset),
            self.asset_candles[asset.symbol],
            self.signal_sources[asset.symbol],
        )


def correlation_matrix(asset_candles: Mapping[str, Sequence[Candle]]) -> CorrelationMatrix:
    """
    Correlate close-to-close returns of every asset pair.

    Series are aligned on timestamp; pairs without overlapping returns
    correlate at 0. The diagonal is always 1.
    """
    symbols = tuple(asset_candles)
    closes = pd.DataFrame(
        {
            symbol: candles_to_dataframe(candles)["close"]
            for symbol, candles in asset_candles.items()
        }
    ).sort_index()
    corr = closes.pct_change(fill_method=None).corr().fillna(0.0)
    matrix = (
        corr.reindex(index=list(symbols), columns=list(symbols)).fillna(0.0).to_numpy(copy=True)
    )
    np.fill_diagonal(matrix, 1.0)
    return CorrelationMatrix(
        assets=symbols, matrix=tuple(tuple(float(v) for v in row) for row in matrix)
    )


class MultiAssetEngine:
    """
    Backtests a strategy per asset and combines them into one portfolio.

    Example:
        config = PortfolioConfig.from_allocations({"BTC": 60, "ETH": 40}, base_config)
        result = MultiAssetEngine().run(config, candles_by_symbol, sources_by_symbol)
        result.metrics.diversification_ratio
    """

    def __init__(
        self, engine: BacktestEngine | None = None, executor: BatchExecutor | None = None
    ):
        self.engine = engine or BacktestEngine()
        self.executor = executor or BatchExecutor()

    @log_run("Portfolio backtest")
    def run(
        self,
        config: PortfolioConfig,
        asset_candles: Mapping[str, Sequence[Candle]],
        signal_sources: Mapping[str, ISignalSource],
        cancel_token: CancellationToken | None = None,
    ) -> PortfolioResult:
        """
        Run the portfolio backtest.

        Args:
            config: Validated portfolio configuration
            asset_candles: Candles keyed by symbol
            signal_sources: Signal source keyed by symbol
            cancel_token: Stops dispatching asset runs when cancelled

        Returns:
            PortfolioResult; assets whose run failed are held as cash

        Raises:
            DataError: If an asset has no candles
            InvalidConfigError: If an asset has no signal source
        """
        for asset in config.assets:
            if not asset_candles.get(asset.symbol):
                raise DataError(f"No candles supplied for portfolio asset {asset.symbol}")
            if asset.symbol not in signal_sources:
                raise InvalidConfigError(f"No signal source for portfolio asset {asset.symbol}")

        task = _AssetRun(self.engine, config, asset_candles, signal_sources)
        report = self.executor.run(task, config.assets, cancel_token, label="portfolio assets")

        results: dict[str, BacktestResult] = {}
        failures: dict[str, str] = {}
        for outcome in report.outcomes:
            symbol = config.assets[outcome.index].symbol
            if outcome.ok:
                results[symbol] = outcome.value
            else:
                failures[symbol] = str(outcome.error)
                logger.warning(f"Portfolio asset {symbol} failed, held as cash: {outcome.error}")
        dispatched = {o.index for o in report.outcomes}
        for index, asset in enumerate(config.assets):
            if index not in dispatched:
                failures[asset.symbol] = "not run (cancelled)"

        frame = self._equity_frame(config, results, asset_candles)
        equity_curve, events = self._replay(config, frame)
        asset_results = self._asset_results(config, results)
        correlation = correlation_matrix({a.symbol: asset_candles[a.symbol] for a in config.assets})
        metrics = self._metrics(config, frame, equity_curve, events)

        as_equity = [EquityPoint(timestamp=p.timestamp, equity=p.equity) for p in equity_curve]
        result = PortfolioResult(
            config=config,
            asset_results=asset_results,
            equity_curve=tuple(equity_curve),
            drawdown_curve=drawdown_curve(as_equity),
            rebalance_events=tuple(events),
            correlation=correlation,
            metrics=metrics,
            failures=failures,
            cancelled=report.cancelled,
        )
        logger.info(
            f"Portfolio of {len(config.assets)} assets: "
            f"return {metrics.total_return_percent:.2f}%, "
            f"{metrics.rebalance_count} rebalances, {len(failures)} failed assets"
        )
        return result

    @staticmethod
    def _equity_frame(
        config: PortfolioConfig,
        results: Mapping[str, BacktestResult],
        asset_candles: Mapping[str, Sequence[Candle]],
    ) -> pd.DataFrame:
        """Per-asset equity on the union of all timestamps, starting at each capital share."""
        columns = {}
        for asset in config.assets:
            capital = config.asset_config(asset).initial_capital
            result = results.get(asset.symbol)
            if result is not None:
                columns[asset.symbol] = pd.Series(
                    [p.equity for p in result.equity_curve],
                    index=[p.timestamp for p in result.equity_curve],
                    dtype=float,
                )
            else:
                candles = asset_candles[asset.symbol]
                columns[asset.symbol] = pd.Series(
                    capital, index=[c.timestamp for c in candles], dtype=float
                )
        frame = pd.DataFrame(columns).sort_index().ffill()
        capitals = {a.symbol: config.asset_config(a).initial_capital for a in config.assets}
        return frame.fillna(value=capitals)

    @staticmethod
    def _replay(
        config: PortfolioConfig, frame: pd.DataFrame
    ) -> tuple[list[PortfolioPoint], list[RebalanceEvent]]:
        """Grow holdings with each asset's equity and rebalance to target weights."""
        symbols = list(frame.columns)
        targets = np.array([config.weights[s] for s in symbols])
        thresholds = [a.rebalance_threshold_percent for a in config.assets]
        capital = config.base_config.initial_capital
        capitals = pd.Series(capital * targets, index=symbols)
        growth = (
            (frame / frame.shift(1).fillna(capitals))
            .replace([np.inf, -np.inf], np.nan)
            .fillna(1.0)
            .to_numpy()
        )

        min_days = config.rebalance_frequency.min_days
        holdings = capital * targets
        last_rebalance = frame.index[0]
        points: list[PortfolioPoint] = []
        events: list[RebalanceEvent] = []

        for timestamp, factors in zip(frame.index, growth, strict=True):
            holdings = holdings * factors
            total = float(holdings.sum())
            reason = None
            if min_days is not None and total > 0:
                weights = holdings / total
                elapsed = (timestamp - last_rebalance).total_seconds() / SECONDS_PER_DAY
                drifted = any(
                    t is not None and abs(w - target) * 100 > t
                    for w, target, t in zip(weights, targets, thresholds, strict=True)
                )
                if elapsed >= min_days:
                    reason = SCHEDULED
                elif drifted:
                    reason = DRIFT

            if reason is not None:
                turnover = float(np.abs(targets - weights).sum())
                last_rebalance = timestamp
                if turnover > 1e-12:
                    cost = turnover * total * config.rebalance_cost_percent / 100
                    total -= cost
                    holdings = total * targets
                    events.append(
                        RebalanceEvent(
                            timestamp=timestamp.to_pydatetime(),
                            reason=reason,
                            old_weights=dict(zip(symbols, map(float, weights), strict=True)),
                            new_weights=dict(zip(symbols, map(float, targets), strict=True)),
                            turnover=turnover,
                            cost=cost,
                        )
                    )
                    logger.debug(f"Rebalanced at {timestamp} ({reason}), cost {cost:.2f}")

            points.append(
                PortfolioPoint(
                    timestamp=timestamp.to_pydatetime(),
                    equity=total,
                    breakdown=dict(zip(symbols, map(float, holdings), strict=True)),
                )
            )
        return points, events

    @staticmethod
    def _asset_results(
        config: PortfolioConfig, results: Mapping[str, BacktestResult]
    ) -> tuple[AssetResult, ...]:
        asset_results = []
        for asset in config.assets:
            result = results.get(asset.symbol)
            if result is None:
                continue
            asset_results.append(
                AssetResult(
                    symbol=asset.symbol,
                    asset_class=asset.asset_class,
                    allocation_percent=asset.allocation_percent,
                    capital=result.config.initial_capital,
                    result=result,
                    contribution_percent=(
                        result.metrics.total_return_percent * asset.allocation_percent / 100
                    ),
                )
            )
        return tuple(asset_results)

    @staticmethod
    def _metrics(
        config: PortfolioConfig,
        frame: pd.DataFrame,
        equity_curve: Sequence[PortfolioPoint],
        events: Sequence[RebalanceEvent],
    ) -> PortfolioMetrics:
        capital = config.base_config.initial_capital
        periods = config.base_config.timeframe.periods_per_year
        equity = pd.Series([p.equity for p in equity_curve], dtype=float)
        returns = pd.concat([pd.Series([capital]), equity], ignore_index=True).pct_change().dropna()

        final = float(equity.iloc[-1])
        total_return = final - capital
        total_return_percent = total_return / capital * 100
        days = (equity_curve[-1].timestamp - equity_curve[0].timestamp).total_seconds()
        days /= SECONDS_PER_DAY
        annualized = total_return_percent * DAYS_PER_YEAR / days if days > 0 else 0.0

        portfolio_std = float(returns.std()) if len(returns) > 1 else 0.0
        if not math.isfinite(portfolio_std):
            portfolio_std = 0.0
        asset_std = frame.pct_change(fill_method=None).std().fillna(0.0)
        weights = pd.Series(config.weights)
        weighted_std = float((asset_std * weights).sum())

        drawdown_abs, drawdown_pct = max_drawdown(equity.to_numpy())
        return PortfolioMetrics(
            total_return=total_return,
            total_return_percent=total_return_percent,
            annualized_return=annualized,
            volatility=portfolio_std * math.sqrt(periods) * 100,
            sharpe_ratio=sharpe_ratio(returns.to_numpy(), periods=round(periods)),
            max_drawdown=drawdown_abs,
            max_drawdown_percent=drawdown_pct,
            diversification_ratio=safe_divide(weighted_std, portfolio_std, default=1.0),
            herfindahl_index=float((weights**2).sum()),
            rebalance_count=len(events),
            rebalance_costs=float(sum(e.cost for e in events)),
        )
