"""
Options strategy backtests.

The replay follows the single-asset simulator: candles are processed one at
a time and the open strategy positions are immutable values replaced on
every change. Option legs are marked with Black-Scholes at the underlying's
rolling historical volatility.

Per bar, in order:
    1. option legs at or past expiry settle at intrinsic value (expired,
       exercised or assigned); a position with no live option legs closes
    2. Greeks and theta decay of the remaining positions are accumulated
    3. positions beyond the stop-loss or profit target close
    4. any signal opens the strategy while fewer than ``max_positions`` are open
    5. on the last bar every open position closes; one equity point is recorded
"""

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from edgelab.core.constants import (
    DEFAULT_RISK_FREE_RATE,
    OPTION_CONTRACT_MULTIPLIER,
    SECONDS_PER_DAY,
    VOLATILITY_WINDOW,
)
from edgelab.core.enums import ExitReason, LegInstrument, LegOutcome, PositionSide
from edgelab.core.exceptions.backtest import InsufficientDataError, InvalidConfigError
from edgelab.core.interfaces.signals import ISignalSource
from edgelab.core.models.backtest import BacktestConfig, BacktestResult, EquityPoint
from edgelab.core.models.candle import Candle, validate_candle_series
from edgelab.core.models.trade import Trade
from edgelab.core.utils.decorators import log_run
from edgelab.core.utils.validation import validate_non_negative, validate_percentage
from edgelab.engine.metrics import MetricsCalculator, drawdown_curve
from edgelab.engine.simulator import CandleWindow, query_signal
from edgelab.options.pricing import (
    OptionGreeks,
    black_scholes_greeks,
    black_scholes_price,
    historical_volatility,
    intrinsic_value,
)
from edgelab.options.strategies import OptionsStrategy, StrategyLeg, resolve_strike

SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY


@dataclass(frozen=True)
class OptionsBacktestConfig:
    """
    Options run configuration.

    ``base_config`` supplies the symbol, capital, dates and timeframe; the
    remaining fields control pricing, costs and exits.
    """

    base_config: BacktestConfig
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE
    dividend_yield: float = 0.0
    max_positions: int = 1
    contracts: int = 1  # Multiplies every leg's quantity
    max_loss_percent: float = 50.0  # Of the entry premium
    profit_target_percent: float | None = None  # Twice max_loss_percent when None
    commission_per_contract: float = 0.65
    slippage_per_unit: float = 0.01  # Price units per unit of underlying
    contract_multiplier: int = OPTION_CONTRACT_MULTIPLIER
    volatility_window: int = VOLATILITY_WINDOW

    def __post_init__(self) -> None:
        self.base_config.validate()
        if self.max_positions < 1:
            raise InvalidConfigError(f"max_positions must be at least 1, got {self.max_positions}")
        if self.contracts < 1:
            raise InvalidConfigError(f"contracts must be at least 1, got {self.contracts}")
        if self.contract_multiplier < 1:
            raise InvalidConfigError("contract_multiplier must be at least 1")
        if self.volatility_window < 2:
            raise InvalidConfigError("volatility_window must be at least 2")
        validate_percentage(self.max_loss_percent, "max_loss_percent")
        if self.profit_target_percent is not None:
            validate_non_negative(self.profit_target_percent, "profit_target_percent")
        validate_non_negative(self.commission_per_contract, "commission_per_contract")
        validate_non_negative(self.slippage_per_unit, "slippage_per_unit")

    @property
    def effective_profit_target(self) -> float:
        if self.profit_target_percent is not None:
            return self.profit_target_percent
        return self.max_loss_percent * 2


@dataclass(frozen=True)
class LegPosition:
    """An opened leg. ``quantity`` is signed: negative for written legs."""

    instrument: LegInstrument
    quantity: int
    entry_price: float
    strike: float | None = None
    expiry: datetime | None = None
    outcome: LegOutcome = LegOutcome.OPEN
    exit_price: float | None = None
    entry_greeks: OptionGreeks = field(default_factory=OptionGreeks)

    @property
    def is_open(self) -> bool:
        return self.outcome == LegOutcome.OPEN

    @property
    def is_live_option(self) -> bool:
        return self.instrument.is_option and self.is_open

    def years_to_expiry(self, timestamp: datetime) -> float:
        if self.expiry is None:
            return 0.0
        return max(0.0, (self.expiry - timestamp).total_seconds() / SECONDS_PER_YEAR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument.value,
            "quantity": self.quantity,
            "strike": self.strike,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "outcome": self.outcome.value,
            "entryGreeks": self.entry_greeks.to_dict(),
        }


@dataclass(frozen=True)
class StrategyPosition:
    """
    One opened instance of a strategy.

    ``entry_value`` is the net premium paid (positive) or received
    (negative). ``settled_value`` collects the settlement of legs that
    already expired while the position stays open.
    """

    position_id: str
    strategy: str
    legs: tuple[LegPosition, ...]
    entry_time: datetime
    entry_spot: float
    entry_value: float
    entry_commission: float
    entry_slippage: float
    settled_value: float = 0.0
    settlement_commission: float = 0.0

    @property
    def has_live_options(self) -> bool:
        return any(leg.is_live_option for leg in self.legs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.position_id,
            "strategy": self.strategy,
            "entryTime": self.entry_time.isoformat(),
            "entrySpot": self.entry_spot,
            "entryValue": self.entry_value,
            "legs": [leg.to_dict() for leg in self.legs],
        }


@dataclass(frozen=True)
class OptionsBacktestResult:
    """A BacktestResult of strategy-level trades plus options statistics."""

    backtest: BacktestResult
    strategy: OptionsStrategy
    average_greeks: OptionGreeks
    theta_decay_total: float
    exercise_count: int
    assignment_count: int
    expiration_count: int
    positions: tuple[StrategyPosition, ...]

    def to_dict(self) -> dict[str, Any]:
        data = self.backtest.to_dict()
        data["optionsMetrics"] = {
            "strategy": self.strategy.to_dict(),
            "avgDelta": self.average_greeks.delta,
            "avgGamma": self.average_greeks.gamma,
            "avgTheta": self.average_greeks.theta,
            "avgVega": self.average_greeks.vega,
            "avgRho": self.average_greeks.rho,
            "thetaDecayTotal": self.theta_decay_total,
            "exerciseCount": self.exercise_count,
            "assignmentCount": self.assignment_count,
            "expirationCount": self.expiration_count,
        }
        data["positions"] = [p.to_dict() for p in self.positions]
        return data


@dataclass
class _RunStats:
    greeks: OptionGreeks = field(default_factory=OptionGreeks)
    samples: int = 0
    theta_decay: float = 0.0
    rejected_signals: int = 0
    outcomes: dict[LegOutcome, int] = field(default_factory=dict)

    def count(self, outcome: LegOutcome) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1


class OptionsBacktestEngine:
    """
    Backtests a multi-leg options strategy on an underlying's candles.

    Example:
        config = OptionsBacktestConfig(base_config=BacktestConfig(...))
        engine = OptionsBacktestEngine()
        result = engine.run(config, candles, predefined_strategy("iron_condor"), source)
    """

    def __init__(self, metrics_calculator: MetricsCalculator | None = None):
        self.metrics_calculator = metrics_calculator or MetricsCalculator()

    @log_run("Options backtest")
    def run(
        self,
        config: OptionsBacktestConfig,
        candles: Sequence[Candle],
        strategy: OptionsStrategy,
        signal_source: ISignalSource,
    ) -> OptionsBacktestResult:
        """
        Replay ``candles`` and trade ``strategy`` whenever ``signal_source`` signals.

        Raises:
            InsufficientDataError: If there are not enough candles for the volatility window
            DataError: If candle timestamps are not strictly increasing
            StrategyError: If the signal source fails
        """
        required = config.volatility_window + 1
        if len(candles) < required:
            raise InsufficientDataError(required, len(candles), f"options backtest {strategy.name}")
        validate_candle_series(candles)

        base = config.base_config
        bar_days = base.timeframe.seconds / SECONDS_PER_DAY
        closes = [c.close for c in candles]
        cash = base.initial_capital
        open_positions: list[StrategyPosition] = []
        closed_positions: list[StrategyPosition] = []
        trades: list[Trade] = []
        equity_curve: list[EquityPoint] = []
        stats = _RunStats()
        last_index = len(candles) - 1

        for index, candle in enumerate(candles):
            spot, now = candle.close, candle.timestamp
            start = max(0, index - config.volatility_window)
            vol = historical_volatility(closes[start:index + 1], base.timeframe.periods_per_year)
            still_open = []

            for position in open_positions:
                position = self._settle_expired(config, position, spot, now, stats)
                reason = None
                if position.has_live_options:
                    self._accumulate_greeks(config, position, spot, now, vol, bar_days, stats)
                    reason = self._exit_reason(config, position, spot, now, vol)
                else:
                    reason = ExitReason.EXPIRATION

                if reason is not None or index == last_index:
                    received, trade, closed = self._close(
                        config, position, spot, now, vol, reason or ExitReason.END_OF_DATA
                    )
                    cash += received
                    trades.append(trade)
                    closed_positions.append(closed)
                    continue
                still_open.append(position)
            open_positions = still_open

            signal = query_signal(signal_source, candle, CandleWindow(candles, index + 1))
            can_open = index >= config.volatility_window and index < last_index
            if signal is not None and can_open and len(open_positions) < config.max_positions:
                sequence = len(trades) + len(open_positions)
                position = self._open(config, strategy, spot, now, vol, sequence)
                cost = position.entry_value + position.entry_commission
                if cost > cash:
                    stats.rejected_signals += 1
                    logger.warning(
                        f"Options entry rejected at {now.isoformat()}: "
                        f"cost {cost:.2f} exceeds cash {cash:.2f}"
                    )
                else:
                    cash -= cost
                    open_positions.append(position)

            marked = sum(self._mark(config, p, spot, now, vol) for p in open_positions)
            equity_curve.append(EquityPoint(timestamp=now, equity=cash + marked))

        start_time, end_time = candles[0].timestamp, candles[-1].timestamp
        metrics = self.metrics_calculator.calculate(
            trades, equity_curve, base, start_time, end_time
        )
        backtest = BacktestResult(
            config=base,
            trades=tuple(trades),
            equity_curve=tuple(equity_curve),
            drawdown_curve=drawdown_curve(equity_curve),
            metrics=metrics,
            candles_processed=len(candles),
            rejected_signals=stats.rejected_signals,
            start_time=start_time,
            end_time=end_time,
        )
        samples = max(stats.samples, 1)
        result = OptionsBacktestResult(
            backtest=backtest,
            strategy=strategy,
            average_greeks=stats.greeks.scaled(1 / samples),
            theta_decay_total=stats.theta_decay,
            exercise_count=stats.outcomes.get(LegOutcome.EXERCISED, 0),
            assignment_count=stats.outcomes.get(LegOutcome.ASSIGNED, 0),
            expiration_count=stats.outcomes.get(LegOutcome.EXPIRED, 0),
            positions=tuple(closed_positions),
        )
        logger.info(
            f"Options backtest {strategy.name}: {len(trades)} positions, "
            f"return {metrics.total_return_percent:.2f}%, theta decay {stats.theta_decay:.2f}"
        )
        return result

    @staticmethod
    def _fill(config: OptionsBacktestConfig, price: float, direction: int) -> float:
        """Price paid (direction +1) or received (-1) after slippage."""
        return max(price + direction * config.slippage_per_unit, 0.0)

    @staticmethod
    def _leg_price(
        config: OptionsBacktestConfig, leg: LegPosition, spot: float, now: datetime, vol: float
    ) -> float:
        if not leg.instrument.is_option:
            return spot
        return black_scholes_price(
            leg.instrument,
            spot,
            leg.strike,  # type: ignore[arg-type]
            leg.years_to_expiry(now),
            config.risk_free_rate,
            vol,
            config.dividend_yield,
        )

    def _open(
        self,
        config: OptionsBacktestConfig,
        strategy: OptionsStrategy,
        spot: float,
        now: datetime,
        vol: float,
        sequence: int,
    ) -> StrategyPosition:
        legs = []
        entry_value = commission = slippage = 0.0
        for spec in strategy.legs:
            leg = self._new_leg(config, spec, spot, now, vol)
            units = abs(leg.quantity) * config.contract_multiplier
            entry_value += leg.quantity * config.contract_multiplier * leg.entry_price
            commission += abs(leg.quantity) * config.commission_per_contract
            slippage += units * config.slippage_per_unit
            legs.append(leg)
        position_id = f"OPT-{sequence + 1}"
        logger.debug(
            f"Opened {strategy.name} {position_id} at {now.isoformat()}, "
            f"net premium {entry_value:.2f}"
        )
        return StrategyPosition(
            position_id=position_id,
            strategy=strategy.name,
            legs=tuple(legs),
            entry_time=now,
            entry_spot=spot,
            entry_value=entry_value,
            entry_commission=commission,
            entry_slippage=slippage,
        )

    def _new_leg(
        self,
        config: OptionsBacktestConfig,
        spec: StrategyLeg,
        spot: float,
        now: datetime,
        vol: float,
    ) -> LegPosition:
        quantity = spec.signed_quantity * config.contracts
        direction = spec.action.sign
        if not spec.instrument.is_option:
            return LegPosition(
                instrument=spec.instrument,
                quantity=quantity,
                entry_price=self._fill(config, spot, direction),
            )
        strike = resolve_strike(spot, spec.strike_steps)
        expiry = now + timedelta(days=spec.days_to_expiry)
        years = spec.days_to_expiry / 365
        price = black_scholes_price(
            spec.instrument, spot, strike, years, config.risk_free_rate, vol, config.dividend_yield
        )
        greeks = black_scholes_greeks(
            spec.instrument, spot, strike, years, config.risk_free_rate, vol, config.dividend_yield
        )
        return LegPosition(
            instrument=spec.instrument,
            quantity=quantity,
            entry_price=self._fill(config, price, direction),
            strike=strike,
            expiry=expiry,
            entry_greeks=greeks,
        )

    @staticmethod
    def _settle_expired(
        config: OptionsBacktestConfig,
        position: StrategyPosition,
        spot: float,
        now: datetime,
        stats: _RunStats,
    ) -> StrategyPosition:
        """Settle option legs whose expiry has passed at their intrinsic value."""
        legs = []
        settled = position.settled_value
        commission = position.settlement_commission
        for leg in position.legs:
            if not leg.is_live_option or leg.expiry is None or leg.expiry > now:
                legs.append(leg)
                continue
            value = intrinsic_value(leg.instrument, spot, leg.strike)  # type: ignore[arg-type]
            if value > 0:
                outcome = LegOutcome.EXERCISED if leg.quantity > 0 else LegOutcome.ASSIGNED
                commission += abs(leg.quantity) * config.commission_per_contract
            else:
                outcome = LegOutcome.EXPIRED
            stats.count(outcome)
            settled += leg.quantity * config.contract_multiplier * value
            legs.append(replace(leg, outcome=outcome, exit_price=value))
            logger.debug(f"{position.position_id} {leg.instrument} {leg.strike}: {outcome}")
        return replace(
            position, legs=tuple(legs), settled_value=settled, settlement_commission=commission
        )

    def _accumulate_greeks(
        self,
        config: OptionsBacktestConfig,
        position: StrategyPosition,
        spot: float,
        now: datetime,
        vol: float,
        bar_days: float,
        stats: _RunStats,
    ) -> None:
        net = OptionGreeks()
        for leg in position.legs:
            if leg.is_live_option:
                greeks = black_scholes_greeks(
                    leg.instrument,
                    spot,
                    leg.strike,  # type: ignore[arg-type]
                    leg.years_to_expiry(now),
                    config.risk_free_rate,
                    vol,
                    config.dividend_yield,
                )
                net = net + greeks.scaled(leg.quantity)
            elif leg.is_open:
                net = net + OptionGreeks(delta=float(leg.quantity))
        stats.greeks = stats.greeks + net
        stats.samples += 1
        stats.theta_decay += abs(net.theta * config.contract_multiplier * bar_days)

    def _mark(
        self,
        config: OptionsBacktestConfig,
        position: StrategyPosition,
        spot: float,
        now: datetime,
        vol: float,
    ) -> float:
        """Liquidation value of a position before costs."""
        value = position.settled_value - position.settlement_commission
        for leg in position.legs:
            if leg.is_open:
                price = self._leg_price(config, leg, spot, now, vol)
                value += leg.quantity * config.contract_multiplier * price
        return value

    def _exit_reason(
        self,
        config: OptionsBacktestConfig,
        position: StrategyPosition,
        spot: float,
        now: datetime,
        vol: float,
    ) -> ExitReason | None:
        basis = abs(position.entry_value)
        if basis == 0:
            return None
        marked = self._mark(config, position, spot, now, vol)
        pnl_percent = (marked - position.entry_value) / basis * 100
        if pnl_percent <= -config.max_loss_percent:
            return ExitReason.STOP_LOSS
        if pnl_percent >= config.effective_profit_target:
            return ExitReason.TAKE_PROFIT
        return None

    def _close(
        self,
        config: OptionsBacktestConfig,
        position: StrategyPosition,
        spot: float,
        now: datetime,
        vol: float,
        reason: ExitReason,
    ) -> tuple[float, Trade, StrategyPosition]:
        """
        Close every open leg at the bar's prices.

        Returns:
            (cash received, strategy-level trade, position with its final leg states)
        """
        exit_value = position.settled_value
        commission = position.settlement_commission
        slippage = 0.0
        legs = []
        for leg in position.legs:
            if not leg.is_open:
                legs.append(leg)
                continue
            mid = self._leg_price(config, leg, spot, now, vol)
            price = self._fill(config, mid, -_sign(leg.quantity))
            exit_value += leg.quantity * config.contract_multiplier * price
            commission += abs(leg.quantity) * config.commission_per_contract
            slippage += abs(leg.quantity) * config.contract_multiplier * config.slippage_per_unit
            legs.append(replace(leg, outcome=LegOutcome.CLOSED, exit_price=price))

        cash = exit_value - commission
        total_commission = position.entry_commission + commission
        pnl = exit_value - position.entry_value - total_commission
        basis = abs(position.entry_value)
        units = config.contracts * config.contract_multiplier
        trade = Trade(
            id=position.position_id,
            symbol=config.base_config.symbol,
            side=PositionSide.LONG if position.entry_value >= 0 else PositionSide.SHORT,
            entry_price=basis / units,
            quantity=float(config.contracts),
            entry_time=position.entry_time,
            exit_price=abs(exit_value) / units,
            exit_time=now,
            pnl=pnl,
            pnl_percent=pnl / basis * 100 if basis else 0.0,
            commission=total_commission,
            slippage=position.entry_slippage + slippage,
            exit_reason=reason,
        )
        logger.debug(f"Closed {position.position_id} ({reason}) with P&L {pnl:.2f}")
        return cash, trade, replace(position, legs=tuple(legs))


def _sign(quantity: int) -> int:
    return 1 if quantity > 0 else -1
