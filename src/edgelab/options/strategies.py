"""
Multi-leg options strategy definitions.

Strikes are expressed in steps of a grid around the at-the-money strike, so
one definition can be opened at any underlying price.
"""

from dataclasses import dataclass
from typing import Any

from edgelab.core.constants import STRIKE_INCREMENT_PERCENT
from edgelab.core.enums import LegAction, LegInstrument, OptionStrategyType
from edgelab.core.exceptions.backtest import InvalidConfigError

MONTHLY_EXPIRY_DAYS = 30


@dataclass(frozen=True)
class StrategyLeg:
    """
    One leg of a strategy.

    Attributes:
        instrument: CALL, PUT or UNDERLYING
        action: BUY or SELL
        quantity: Contracts (or contract-sized lots of the underlying)
        strike_steps: Grid steps above (+) or below (-) the at-the-money strike
        days_to_expiry: Calendar days from entry to expiry (ignored for the underlying)
    """

    instrument: LegInstrument
    action: LegAction
    quantity: int = 1
    strike_steps: int = 0
    days_to_expiry: int = MONTHLY_EXPIRY_DAYS

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise InvalidConfigError(f"Leg quantity must be at least 1, got {self.quantity}")
        if self.instrument.is_option and self.days_to_expiry < 1:
            raise InvalidConfigError(
                f"Option legs need at least one day to expiry, got {self.days_to_expiry}"
            )

    @property
    def signed_quantity(self) -> int:
        return self.action.sign * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument.value,
            "action": self.action.value,
            "quantity": self.quantity,
            "strikeSteps": self.strike_steps,
            "daysToExpiry": self.days_to_expiry,
        }


@dataclass(frozen=True)
class OptionsStrategy:
    name: str
    legs: tuple[StrategyLeg, ...]

    def __post_init__(self) -> None:
        if not self.legs:
            raise InvalidConfigError(f"Strategy {self.name} has no legs")
        if not any(leg.instrument.is_option for leg in self.legs):
            raise InvalidConfigError(f"Strategy {self.name} has no option legs")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "legs": [leg.to_dict() for leg in self.legs]}


def strike_increment(spot: float, increment_percent: float = STRIKE_INCREMENT_PERCENT) -> float:
    """Spacing of the strike grid: a whole-number step when the price allows one."""
    raw = spot * increment_percent / 100
    return float(round(raw)) if raw >= 1 else raw


def resolve_strike(
    spot: float, strike_steps: int, increment_percent: float = STRIKE_INCREMENT_PERCENT
) -> float:
    """Strike ``strike_steps`` grid steps away from the strike nearest to ``spot``."""
    step = strike_increment(spot, increment_percent)
    atm = round(spot / step) * step
    return max(atm + strike_steps * step, step)


_CALL, _PUT, _STOCK = LegInstrument.CALL, LegInstrument.PUT, LegInstrument.UNDERLYING
_BUY, _SELL = LegAction.BUY, LegAction.SELL

PREDEFINED_STRATEGIES: dict[OptionStrategyType, tuple[StrategyLeg, ...]] = {
    OptionStrategyType.LONG_CALL: (StrategyLeg(_CALL, _BUY),),
    OptionStrategyType.LONG_PUT: (StrategyLeg(_PUT, _BUY),),
    OptionStrategyType.COVERED_CALL: (
        StrategyLeg(_STOCK, _BUY),
        StrategyLeg(_CALL, _SELL, strike_steps=1),
    ),
    OptionStrategyType.PROTECTIVE_PUT: (
        StrategyLeg(_STOCK, _BUY),
        StrategyLeg(_PUT, _BUY, strike_steps=-1),
    ),
    OptionStrategyType.BULL_CALL_SPREAD: (
        StrategyLeg(_CALL, _BUY),
        StrategyLeg(_CALL, _SELL, strike_steps=1),
    ),
    OptionStrategyType.BEAR_PUT_SPREAD: (
        StrategyLeg(_PUT, _BUY),
        StrategyLeg(_PUT, _SELL, strike_steps=-1),
    ),
    OptionStrategyType.IRON_CONDOR: (
        StrategyLeg(_PUT, _BUY, strike_steps=-2),
        StrategyLeg(_PUT, _SELL, strike_steps=-1),
        StrategyLeg(_CALL, _SELL, strike_steps=1),
        StrategyLeg(_CALL, _BUY, strike_steps=2),
    ),
    OptionStrategyType.STRADDLE: (
        StrategyLeg(_CALL, _BUY),
        StrategyLeg(_PUT, _BUY),
    ),
    OptionStrategyType.STRANGLE: (
        StrategyLeg(_CALL, _BUY, strike_steps=1),
        StrategyLeg(_PUT, _BUY, strike_steps=-1),
    ),
    OptionStrategyType.BUTTERFLY: (
        StrategyLeg(_CALL, _BUY, strike_steps=-1),
        StrategyLeg(_CALL, _SELL, quantity=2),
        StrategyLeg(_CALL, _BUY, strike_steps=1),
    ),
}


def predefined_strategy(
    strategy_type: OptionStrategyType | str, days_to_expiry: int = MONTHLY_EXPIRY_DAYS
) -> OptionsStrategy:
    """
    Build one of the predefined strategies.

    Args:
        strategy_type: Strategy name or enum member
        days_to_expiry: Expiry applied to every option leg

    Raises:
        InvalidConfigError: If the strategy name is unknown
    """
    try:
        kind = OptionStrategyType(strategy_type)
    except ValueError as e:
        raise InvalidConfigError(f"Unknown options strategy: {strategy_type}") from e
    legs = tuple(
        StrategyLeg(
            leg.instrument, leg.action, leg.quantity, leg.strike_steps, days_to_expiry
        )
        for leg in PREDEFINED_STRATEGIES[kind]
    )
    return OptionsStrategy(name=kind.value, legs=legs)
