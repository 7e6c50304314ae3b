"""
Position sizing rules.

``PositionSizingCalculator.calculate`` turns a ``SizingRequest`` into a
dollar position, share and contract counts, the amount at risk and any
warnings raised while sizing. Every method is clamped to the request's
maximum and minimum position percent.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from loguru import logger

from edgelab.core.constants import (
    ATR_STOP_MULTIPLIER,
    DEFAULT_MAX_POSITION_PERCENT,
    DEFAULT_MIN_POSITION_PERCENT,
    OPTION_CONTRACT_MULTIPLIER,
    VOLATILITY_TARGET_CAP,
)
from edgelab.core.enums import KellyFraction, SizingMethod
from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.models.trade import Trade
from edgelab.core.utils.validation import (
    validate_non_negative,
    validate_percentage,
    validate_positive,
)
from edgelab.engine.metrics import max_consecutive

DEFAULT_RISK_PERCENT = 2.0  # Fallback size when a method lacks the data it needs
MIN_TRADES_FOR_KELLY = 30
MIN_TRADES_FOR_HISTORY = 10
KELLY_CAP = 0.25
TARGET_MAX_DRAWDOWN = 0.20
OPTIMAL_F_SAFETY = 0.25


@dataclass(frozen=True)
class SizingRequest:
    """Inputs for one sizing decision."""

    method: SizingMethod
    capital: float
    price: float
    risk_per_trade_percent: float = 1.0
    fixed_amount: float | None = None
    stop_loss_distance: float | None = None
    stop_loss_percent: float | None = None
    volatility: float | None = None  # ATR in price units, or annualized volatility
    target_volatility: float = 0.15
    kelly_fraction: KellyFraction = KellyFraction.FULL
    historical_trades: tuple[Trade, ...] = ()
    max_position_percent: float = DEFAULT_MAX_POSITION_PERCENT
    min_position_percent: float = DEFAULT_MIN_POSITION_PERCENT
    contract_multiplier: int = OPTION_CONTRACT_MULTIPLIER

    def __post_init__(self) -> None:
        validate_positive(self.capital, "capital")
        validate_positive(self.price, "price")
        validate_percentage(self.risk_per_trade_percent, "risk_per_trade_percent")
        validate_percentage(self.max_position_percent, "max_position_percent")
        validate_percentage(self.min_position_percent, "min_position_percent", allow_zero=True)
        if self.min_position_percent > self.max_position_percent:
            raise InvalidConfigError("min_position_percent must not exceed max_position_percent")
        if self.stop_loss_distance is not None:
            validate_non_negative(self.stop_loss_distance, "stop_loss_distance")
        if self.volatility is not None:
            validate_non_negative(self.volatility, "volatility")


@dataclass(frozen=True)
class PositionSizeResult:
    """Sized position."""

    position_size: float
    percent_of_capital: float
    shares: int
    contracts: int
    risk_amount: float
    method: SizingMethod
    parameters: dict[str, float] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "positionSize": self.position_size,
            "percentOfCapital": self.percent_of_capital,
            "shares": self.shares,
            "contracts": self.contracts,
            "riskAmount": self.risk_amount,
            "method": self.method.value,
            "parameters": dict(self.parameters),
            "warnings": list(self.warnings),
        }


@dataclass
class _Sizing:
    size: float
    parameters: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def _win_loss_stats(trades: Sequence[Trade]) -> tuple[float, float, float]:
    """Win rate, mean winning percent and mean absolute losing percent."""
    wins = [t.pnl_percent for t in trades if t.pnl > 0]
    losses = [t.pnl_percent for t in trades if t.pnl <= 0]
    win_rate = len(wins) / len(trades)
    avg_win = float(np.mean(wins)) if wins else 0.0
    avg_loss = abs(float(np.mean(losses))) if losses else 0.0
    return win_rate, avg_win, avg_loss


class PositionSizingCalculator:
    """Stateless position sizing calculator."""

    def calculate(self, request: SizingRequest) -> PositionSizeResult:
        """
        Size a position.

        Args:
            request: Sizing inputs

        Returns:
            PositionSizeResult clamped to the request's position limits
        """
        handlers = {
            SizingMethod.FIXED_DOLLAR: self._fixed_dollar,
            SizingMethod.FIXED_PERCENT: self._fixed_percent,
            SizingMethod.FIXED_FRACTIONAL: self._fixed_fractional,
            SizingMethod.KELLY: self._kelly,
            SizingMethod.OPTIMAL_F: self._optimal_f,
            SizingMethod.VOLATILITY_TARGET: self._volatility_target,
            SizingMethod.ATR_BASED: self._atr_based,
            SizingMethod.MAX_DRAWDOWN_BASED: self._max_drawdown_based,
        }
        sizing = handlers[request.method](request)

        size = max(0.0, sizing.size)
        max_size = request.capital * request.max_position_percent / 100
        min_size = request.capital * request.min_position_percent / 100
        if size > max_size:
            size = max_size
            sizing.warnings.append(
                f"Position size capped at {request.max_position_percent}% of capital"
            )
        if size < min_size:
            size = min_size
            sizing.warnings.append(
                f"Position size raised to minimum {request.min_position_percent}% of capital"
            )

        shares = math.floor(size / request.price)
        contracts = math.floor(size / (request.price * request.contract_multiplier))
        if request.stop_loss_distance:
            risk_amount = shares * request.stop_loss_distance
        else:
            stop_percent = request.stop_loss_percent or DEFAULT_RISK_PERCENT
            risk_amount = size * stop_percent / 100

        for warning in sizing.warnings:
            logger.debug(f"{request.method} sizing: {warning}")
        return PositionSizeResult(
            position_size=size,
            percent_of_capital=size / request.capital * 100,
            shares=shares,
            contracts=contracts,
            risk_amount=risk_amount,
            method=request.method,
            parameters=sizing.parameters,
            warnings=tuple(sizing.warnings),
        )

    @staticmethod
    def _fixed_dollar(request: SizingRequest) -> _Sizing:
        amount = request.fixed_amount
        if amount is None:
            amount = request.capital * DEFAULT_RISK_PERCENT / 100
        return _Sizing(amount, {"amount": amount})

    @staticmethod
    def _fixed_percent(request: SizingRequest) -> _Sizing:
        percent = request.risk_per_trade_percent
        return _Sizing(request.capital * percent / 100, {"percent": percent})

    @staticmethod
    def _fixed_fractional(request: SizingRequest) -> _Sizing:
        """Risk a fixed share of capital between entry and stop."""
        risk_percent = request.risk_per_trade_percent
        risk_dollars = request.capital * risk_percent / 100
        stop_distance = request.stop_loss_distance
        if not stop_distance and request.stop_loss_percent:
            stop_distance = request.price * request.stop_loss_percent / 100
        if stop_distance:
            size = risk_dollars / stop_distance * request.price
        else:
            size = risk_dollars
        return _Sizing(size, {"riskPercent": risk_percent})

    @staticmethod
    def _kelly(request: SizingRequest) -> _Sizing:
        """Kelly criterion f* = (b*p - q) / b, capped at 25% and scaled by the fraction."""
        multiplier = request.kelly_fraction.multiplier
        trades = [t for t in request.historical_trades if t.is_closed]
        fallback = request.capital * DEFAULT_RISK_PERCENT / 100 * multiplier
        if len(trades) < MIN_TRADES_FOR_KELLY:
            return _Sizing(
                fallback,
                {"kelly": DEFAULT_RISK_PERCENT / 100},
                [f"Kelly needs at least {MIN_TRADES_FOR_KELLY} historical trades"],
            )

        win_rate, avg_win, avg_loss = _win_loss_stats(trades)
        if avg_win == 0 or avg_loss == 0:
            return _Sizing(
                fallback, {"kelly": DEFAULT_RISK_PERCENT / 100}, ["Insufficient win/loss data"]
            )

        b = avg_win / avg_loss
        kelly = (b * win_rate - (1 - win_rate)) / b
        warnings = []
        if kelly > KELLY_CAP:
            warnings.append(f"Kelly suggests a very aggressive position, capping at {KELLY_CAP:.0%}")
            kelly = KELLY_CAP
        if kelly < 0:
            warnings.append("Negative Kelly: the system has negative expectancy")
            kelly = 0.0
        return _Sizing(
            request.capital * kelly * multiplier,
            {"kelly": kelly * multiplier, "winRate": win_rate, "winLossRatio": b},
            warnings,
        )

    @staticmethod
    def _optimal_f(request: SizingRequest) -> _Sizing:
        """Ralph Vince's optimal f by grid search, traded at a quarter for safety."""
        trades = [t for t in request.historical_trades if t.is_closed]
        if len(trades) < MIN_TRADES_FOR_HISTORY:
            fraction = DEFAULT_RISK_PERCENT / 100
            return _Sizing(request.capital * fraction, {"optimalF": fraction, "twr": 1.0})

        returns = np.array([t.pnl_percent / 100 for t in trades])
        biggest_loss = float(returns.min())
        if biggest_loss >= 0:
            return _Sizing(request.capital * 0.10, {"optimalF": 0.10, "twr": 1.0})

        best_f, best_growth = 0.0, 0.0
        for f in np.arange(0.01, 1.0001, 0.01):
            hpr = 1 + f * returns / abs(biggest_loss)
            if (hpr <= 0).any():
                continue
            growth = float(np.exp(np.log(hpr).mean()))
            if growth > best_growth:
                best_f, best_growth = float(f), growth
        return _Sizing(
            request.capital * best_f * OPTIMAL_F_SAFETY, {"optimalF": best_f, "twr": best_growth}
        )

    @staticmethod
    def _volatility_target(request: SizingRequest) -> _Sizing:
        current = request.volatility if request.volatility is not None else 0.20
        if current == 0:
            return _Sizing(request.capital, {"targetVol": request.target_volatility})
        scale = min(request.target_volatility / current, VOLATILITY_TARGET_CAP)
        return _Sizing(
            request.capital * scale,
            {"targetVol": request.target_volatility, "currentVol": current, "scale": scale},
        )

    @staticmethod
    def _atr_based(request: SizingRequest) -> _Sizing:
        """Risk ``risk_per_trade_percent`` with a stop two ATRs away."""
        atr = request.volatility or request.price * 0.02
        risk_dollars = request.capital * request.risk_per_trade_percent / 100
        stop_distance = atr * ATR_STOP_MULTIPLIER
        return _Sizing(
            risk_dollars / stop_distance * request.price,
            {"atr": atr, "multiplier": ATR_STOP_MULTIPLIER},
        )

    @staticmethod
    def _max_drawdown_based(request: SizingRequest) -> _Sizing:
        """Size so a padded worst losing streak stays within a 20% drawdown."""
        trades = [t for t in request.historical_trades if t.is_closed]
        if len(trades) < MIN_TRADES_FOR_HISTORY:
            return _Sizing(
                request.capital * DEFAULT_RISK_PERCENT / 100, {"maxDD": TARGET_MAX_DRAWDOWN}
            )
        streak = max_consecutive([t.pnl for t in trades], winning=False)
        losses = [t.pnl_percent for t in trades if t.pnl <= 0]
        avg_loss = abs(float(np.mean(losses))) / 100 if losses else 0.0
        if streak == 0 or avg_loss == 0:
            return _Sizing(request.capital * 0.10, {"maxDD": TARGET_MAX_DRAWDOWN})
        fraction = min(TARGET_MAX_DRAWDOWN / (streak * 1.5) / avg_loss, 0.10)
        return _Sizing(
            request.capital * fraction,
            {"maxDD": TARGET_MAX_DRAWDOWN, "maxConsecutiveLosses": float(streak)},
        )
