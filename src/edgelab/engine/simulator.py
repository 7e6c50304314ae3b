"""
Event-driven backtest simulator.

A run replays candles one at a time. The simulation state (cash, equity
peak and at most one open position) is an immutable value advanced by the
step functions below, so a run is a pure function of its config, candles and
signal source.

Per bar, in order:
    1. protective exits (stop-loss, take-profit) on the open position
    2. forced exit when drawdown reaches ``max_drawdown_percent``
    3. the signal source is consulted; an opposite (or flat) signal closes the
       open position, any directional signal while flat opens one
    4. the position is marked to the close and one equity point is recorded
"""

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace
from typing import overload

from loguru import logger

from edgelab.core.constants import MIN_CANDLES_DEFAULT
from edgelab.core.enums import ExitReason
from edgelab.core.exceptions.backtest import InsufficientDataError, StrategyError
from edgelab.core.interfaces.signals import ISignalSource
from edgelab.core.models.backtest import BacktestConfig, BacktestResult, EquityPoint
from edgelab.core.models.candle import Candle, validate_candle_series
from edgelab.core.models.signal import Signal
from edgelab.core.models.trade import OpenPosition, Trade
from edgelab.core.types import HUNDRED, calculate_pnl
from edgelab.core.utils.decorators import log_run
from edgelab.engine.cost_model import CostModel
from edgelab.engine.metrics import MetricsCalculator, drawdown_curve


class CandleWindow(Sequence[Candle]):
    """Read-only prefix view of a candle list; avoids copying history every bar."""

    __slots__ = ("_candles", "_end")

    def __init__(self, candles: Sequence[Candle], end: int):
        self._candles = candles
        self._end = end

    def __len__(self) -> int:
        return self._end

    @overload
    def __getitem__(self, index: int) -> Candle: ...

    @overload
    def __getitem__(self, index: slice) -> list[Candle]: ...

    def __getitem__(self, index: int | slice) -> Candle | list[Candle]:
        if isinstance(index, slice):
            return [self._candles[i] for i in range(*index.indices(self._end))]
        if index < 0:
            index += self._end
        if not 0 <= index < self._end:
            raise IndexError("candle index out of range")
        return self._candles[index]

    def __iter__(self) -> Iterator[Candle]:
        for i in range(self._end):
            yield self._candles[i]


@dataclass(frozen=True, slots=True)
class SimulationState:
    """Everything a run carries from one bar to the next."""

    cash: float
    peak_equity: float
    position: OpenPosition | None = None
    trade_count: int = 0
    rejected_signals: int = 0

    def equity(self, price: float) -> float:
        """Cash plus unrealized P&L of the open position marked at ``price``."""
        if self.position is None:
            return self.cash
        return self.cash + self.position.unrealized_pnl(price)

    def drawdown_percent(self, equity: float) -> float:
        """Decline of ``equity`` from the running peak, in percent."""
        if self.peak_equity <= 0:
            return 0.0
        return max(0.0, (self.peak_equity - equity) / self.peak_equity * HUNDRED)


def close_position(
    state: SimulationState,
    reference_price: float,
    candle: Candle,
    reason: ExitReason,
    costs: CostModel,
) -> tuple[SimulationState, Trade]:
    """Exit the open position, returning the new state and the realized trade."""
    position = state.position
    assert position is not None
    fill = costs.fill(reference_price, position.quantity, position.side, False, candle)

    gross = calculate_pnl(position.entry_price, fill.price, position.quantity, position.side)
    commission = position.entry_commission + fill.commission
    pnl = gross - commission
    notional = position.notional()

    trade = Trade(
        id=position.trade_id,
        symbol=position.symbol,
        side=position.side,
        entry_price=position.entry_price,
        quantity=position.quantity,
        entry_time=position.entry_time,
        exit_price=fill.price,
        exit_time=candle.timestamp,
        pnl=pnl,
        pnl_percent=pnl / notional * HUNDRED if notional else 0.0,
        commission=commission,
        slippage=position.entry_slippage + fill.slippage_cost,
        exit_reason=reason,
        leverage=position.leverage,
    )
    cash = state.cash + gross - fill.commission
    return replace(state, cash=cash, peak_equity=max(state.peak_equity, cash), position=None), trade


def open_position(
    state: SimulationState,
    signal: Signal,
    candle: Candle,
    config: BacktestConfig,
    costs: CostModel,
) -> SimulationState | None:
    """Enter a position for ``signal``; None when the risk stop rejects it."""
    assert signal.side is not None and state.position is None
    side = signal.side
    price = candle.close

    margin = state.cash * config.position_size_percent / HUNDRED
    estimate = margin * config.leverage / price
    fill = costs.fill(price, estimate, side, True, candle)
    quantity = margin * config.leverage / fill.price
    commission = costs.commission(quantity * fill.price)

    if margin + commission > state.cash:
        margin = state.cash - commission
        if margin <= 0:
            return None
        quantity = margin * config.leverage / fill.price
        commission = costs.commission(quantity * fill.price)

    slippage_cost = abs(fill.price - price) * quantity
    projected_equity = state.cash - commission - slippage_cost
    if state.drawdown_percent(projected_equity) > config.max_drawdown_percent:
        return None

    stop_loss = signal.stop_loss_price
    if stop_loss is None and config.stop_loss_percent is not None:
        stop_loss = fill.price * (1 - side.direction * config.stop_loss_percent / HUNDRED)
    take_profit = signal.take_profit_price
    if take_profit is None and config.take_profit_percent is not None:
        take_profit = fill.price * (1 + side.direction * config.take_profit_percent / HUNDRED)

    trade_count = state.trade_count + 1
    position = OpenPosition(
        trade_id=f"T{trade_count}",
        symbol=config.symbol,
        side=side,
        entry_price=fill.price,
        quantity=quantity,
        entry_time=candle.timestamp,
        leverage=config.leverage,
        margin=margin,
        entry_commission=commission,
        entry_slippage=slippage_cost,
        stop_loss_price=stop_loss,
        take_profit_price=take_profit,
    )
    return replace(state, cash=state.cash - commission, position=position, trade_count=trade_count)


def _protective_exit_price(
    position: OpenPosition, candle: Candle, level: float, is_stop: bool
) -> float:
    """Fill level for a triggered stop or target. A bar that gaps through the level fills at the open."""
    # Long stops and short targets sit below the market.
    below = position.side.is_long == is_stop
    gapped = candle.open < level if below else candle.open > level
    return candle.open if gapped else level


class BacktestEngine:
    """Runs single-asset simulations."""

    def __init__(
        self,
        min_candles: int = MIN_CANDLES_DEFAULT,
        metrics_calculator: MetricsCalculator | None = None,
    ):
        self.min_candles = min_candles
        self.metrics_calculator = metrics_calculator or MetricsCalculator()

    @log_run("Backtest", level="DEBUG")
    def run(
        self,
        config: BacktestConfig,
        candles: Sequence[Candle],
        signal_source: ISignalSource,
    ) -> BacktestResult:
        """Replay ``candles`` through ``signal_source`` under ``config``.

        Args:
            config: Run configuration
            candles: Candles with strictly increasing timestamps
            signal_source: Decides entries and exits

        Returns:
            The BacktestResult of the run

        Raises:
            InvalidConfigError: If the configuration is invalid
            InsufficientDataError: If fewer than ``min_candles`` candles are supplied
            DataError: If candle timestamps are not strictly increasing
            StrategyError: If the signal source fails
        """
        config.validate()
        if len(candles) < self.min_candles:
            raise InsufficientDataError(self.min_candles, len(candles), f"backtest {config.symbol}")
        validate_candle_series(candles)

        costs = CostModel.from_config(config)
        state = SimulationState(cash=config.initial_capital, peak_equity=config.initial_capital)
        trades: list[Trade] = []
        equity_curve: list[EquityPoint] = []

        for index, candle in enumerate(candles):
            history = CandleWindow(candles, index + 1)
            state, closed = self._step(state, candle, history, config, costs, signal_source)
            trades.extend(closed)
            equity = state.equity(candle.close)
            state = replace(state, peak_equity=max(state.peak_equity, equity))
            equity_curve.append(EquityPoint(timestamp=candle.timestamp, equity=equity))

        open_trade = None
        if state.position is not None:
            open_trade = state.position.to_open_trade(candles[-1].close)
            logger.debug(f"Position {open_trade.id} still open at end of data; excluded from stats")

        start_time, end_time = candles[0].timestamp, candles[-1].timestamp
        metrics = self.metrics_calculator.calculate(
            trades, equity_curve, config, start_time, end_time
        )
        return BacktestResult(
            config=config,
            trades=tuple(trades),
            equity_curve=tuple(equity_curve),
            drawdown_curve=drawdown_curve(equity_curve),
            metrics=metrics,
            open_trade=open_trade,
            candles_processed=len(candles),
            rejected_signals=state.rejected_signals,
            start_time=start_time,
            end_time=end_time,
        )

    def _step(
        self,
        state: SimulationState,
        candle: Candle,
        history: Sequence[Candle],
        config: BacktestConfig,
        costs: CostModel,
        signal_source: ISignalSource,
    ) -> tuple[SimulationState, list[Trade]]:
        """Advance the state by one bar."""
        closed: list[Trade] = []

        if state.position is not None:
            state, trade = self._check_protective_exits(state, candle, costs)
            if trade is not None:
                closed.append(trade)

        if state.position is not None:
            equity = state.equity(candle.close)
            peak = max(state.peak_equity, equity)
            state = replace(state, peak_equity=peak)
            if state.drawdown_percent(equity) >= config.max_drawdown_percent:
                logger.warning(
                    f"{config.symbol}: drawdown limit {config.max_drawdown_percent}% reached "
                    f"at {candle.timestamp.isoformat()}, closing {state.position.trade_id}"
                )
                state, trade = close_position(
                    state, candle.close, candle, ExitReason.MAX_DRAWDOWN, costs
                )
                closed.append(trade)

        signal = query_signal(signal_source, candle, history)
        if signal is None:
            return state, closed

        if state.position is not None:
            if signal.closes(state.position.side):
                state, trade = close_position(state, candle.close, candle, ExitReason.SIGNAL, costs)
                closed.append(trade)
            return state, closed

        if signal.side is None or (signal.side.is_short and not config.allow_short):
            return state, closed

        opened = open_position(state, signal, candle, config, costs)
        if opened is None:
            logger.warning(
                f"{config.symbol}: {signal.side} signal rejected by drawdown limit "
                f"at {candle.timestamp.isoformat()}"
            )
            return replace(state, rejected_signals=state.rejected_signals + 1), closed
        return opened, closed

    @staticmethod
    def _check_protective_exits(
        state: SimulationState, candle: Candle, costs: CostModel
    ) -> tuple[SimulationState, Trade | None]:
        position = state.position
        assert position is not None
        # Stop-loss wins when both levels trade inside one bar.
        if position.stop_triggered(candle):
            price = _protective_exit_price(
                position, candle, position.stop_loss_price, is_stop=True  # type: ignore[arg-type]
            )
            return close_position(state, price, candle, ExitReason.STOP_LOSS, costs)
        if position.target_triggered(candle):
            price = _protective_exit_price(
                position, candle, position.take_profit_price, is_stop=False  # type: ignore[arg-type]
            )
            return close_position(state, price, candle, ExitReason.TAKE_PROFIT, costs)
        return state, None


def query_signal(
    signal_source: ISignalSource, candle: Candle, history: Sequence[Candle]
) -> Signal | None:
    """Ask ``signal_source`` for the bar's signal, wrapping its failures in StrategyError."""
    try:
        return signal_source.signal_at(candle, history)
    except StrategyError:
        raise
    except Exception as e:
        raise StrategyError(
            f"Signal source failed at {candle.timestamp.isoformat()}: {e}"
        ) from e


def run_backtest(
    config: BacktestConfig,
    candles: Sequence[Candle],
    signal_source: ISignalSource,
    min_candles: int = MIN_CANDLES_DEFAULT,
) -> BacktestResult:
    """Convenience wrapper around ``BacktestEngine.run``."""
    return BacktestEngine(min_candles=min_candles).run(config, candles, signal_source)

