"""
Option pricing.

Black-Scholes-Merton prices and Greeks for European options, a
Cox-Ross-Rubinstein tree for American options, and implied volatility by
root finding. Time to expiry is in years, rates and volatility are annual
decimals. Theta is per calendar day; vega and rho are per 1% move.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import optimize, stats

from edgelab.core.constants import DEFAULT_VOLATILITY, TRADING_DAYS_PER_YEAR
from edgelab.core.enums import LegInstrument
from edgelab.core.exceptions.backtest import CalculationError, InvalidConfigError

IV_LOWER_BOUND = 1e-4
IV_UPPER_BOUND = 5.0


@dataclass(frozen=True)
class OptionGreeks:
    """Sensitivities of one option (or a signed sum of several)."""

    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0

    def scaled(self, factor: float) -> "OptionGreeks":
        """Greeks of ``factor`` units; negative for written options."""
        return OptionGreeks(
            delta=self.delta * factor,
            gamma=self.gamma * factor,
            theta=self.theta * factor,
            vega=self.vega * factor,
            rho=self.rho * factor,
        )

    def __add__(self, other: "OptionGreeks") -> "OptionGreeks":
        return OptionGreeks(
            delta=self.delta + other.delta,
            gamma=self.gamma + other.gamma,
            theta=self.theta + other.theta,
            vega=self.vega + other.vega,
            rho=self.rho + other.rho,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "delta": self.delta,
            "gamma": self.gamma,
            "theta": self.theta,
            "vega": self.vega,
            "rho": self.rho,
        }


def _require_option(option_type: LegInstrument) -> None:
    if not option_type.is_option:
        raise InvalidConfigError(f"Expected a call or put, got {option_type}")


def intrinsic_value(option_type: LegInstrument, spot: float, strike: float) -> float:
    """Exercise value of an option at ``spot``."""
    _require_option(option_type)
    if option_type == LegInstrument.CALL:
        return max(0.0, spot - strike)
    return max(0.0, strike - spot)


def _d1_d2(
    spot: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    volatility: float,
    dividend_yield: float,
) -> tuple[float, float]:
    vol_sqrt_t = volatility * math.sqrt(time_to_expiry)
    d1 = (
        math.log(spot / strike) + (rate - dividend_yield + volatility**2 / 2) * time_to_expiry
    ) / vol_sqrt_t
    return d1, d1 - vol_sqrt_t


def black_scholes_price(
    option_type: LegInstrument,
    spot: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    volatility: float,
    dividend_yield: float = 0.0,
) -> float:
    """
    European option price under Black-Scholes-Merton.

    At or after expiry, or with zero volatility, the price is the intrinsic
    value of the discounted forward.

    Args:
        option_type: CALL or PUT
        spot: Underlying price
        strike: Strike price
        time_to_expiry: Years until expiry
        rate: Continuously compounded risk-free rate
        volatility: Annualized volatility
        dividend_yield: Continuous dividend (or funding) yield

    Returns:
        Option premium per unit of underlying
    """
    _require_option(option_type)
    if spot <= 0 or strike <= 0:
        raise InvalidConfigError(f"Spot and strike must be positive, got {spot} and {strike}")
    if time_to_expiry <= 0:
        return intrinsic_value(option_type, spot, strike)

    spot_disc = spot * math.exp(-dividend_yield * time_to_expiry)
    strike_disc = strike * math.exp(-rate * time_to_expiry)
    if volatility <= 0:
        return intrinsic_value(option_type, spot_disc, strike_disc)

    d1, d2 = _d1_d2(spot, strike, time_to_expiry, rate, volatility, dividend_yield)
    if option_type == LegInstrument.CALL:
        return float(spot_disc * stats.norm.cdf(d1) - strike_disc * stats.norm.cdf(d2))
    return float(strike_disc * stats.norm.cdf(-d2) - spot_disc * stats.norm.cdf(-d1))


def black_scholes_greeks(
    option_type: LegInstrument,
    spot: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    volatility: float,
    dividend_yield: float = 0.0,
) -> OptionGreeks:
    """Greeks per unit of underlying. Expired or zero-volatility options have none."""
    _require_option(option_type)
    if time_to_expiry <= 0 or volatility <= 0:
        return OptionGreeks()

    d1, d2 = _d1_d2(spot, strike, time_to_expiry, rate, volatility, dividend_yield)
    sqrt_t = math.sqrt(time_to_expiry)
    div_disc = math.exp(-dividend_yield * time_to_expiry)
    rate_disc = math.exp(-rate * time_to_expiry)
    pdf_d1 = stats.norm.pdf(d1)
    decay = -spot * pdf_d1 * volatility * div_disc / (2 * sqrt_t)

    if option_type == LegInstrument.CALL:
        delta = div_disc * stats.norm.cdf(d1)
        theta = (
            decay
            + dividend_yield * spot * stats.norm.cdf(d1) * div_disc
            - rate * strike * rate_disc * stats.norm.cdf(d2)
        )
        rho = strike * time_to_expiry * rate_disc * stats.norm.cdf(d2) / 100
    else:
        delta = div_disc * (stats.norm.cdf(d1) - 1)
        theta = (
            decay
            - dividend_yield * spot * stats.norm.cdf(-d1) * div_disc
            + rate * strike * rate_disc * stats.norm.cdf(-d2)
        )
        rho = -strike * time_to_expiry * rate_disc * stats.norm.cdf(-d2) / 100

    return OptionGreeks(
        delta=float(delta),
        gamma=float(pdf_d1 * div_disc / (spot * volatility * sqrt_t)),
        theta=float(theta / 365),
        vega=float(spot * sqrt_t * pdf_d1 * div_disc / 100),
        rho=float(rho),
    )


def binomial_price(
    option_type: LegInstrument,
    spot: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    volatility: float,
    dividend_yield: float = 0.0,
    steps: int = 100,
    american: bool = True,
) -> float:
    """
    Option price on a Cox-Ross-Rubinstein tree.

    With ``american=True`` every node is checked for early exercise.
    """
    _require_option(option_type)
    if steps < 1:
        raise InvalidConfigError(f"steps must be at least 1, got {steps}")
    if time_to_expiry <= 0 or volatility <= 0:
        return black_scholes_price(
            option_type, spot, strike, time_to_expiry, rate, volatility, dividend_yield
        )

    dt = time_to_expiry / steps
    up = math.exp(volatility * math.sqrt(dt))
    down = 1 / up
    p = (math.exp((rate - dividend_yield) * dt) - down) / (up - down)
    if not 0 <= p <= 1:
        raise CalculationError(f"Tree is not arbitrage free (p={p:.4f}); use more steps")
    discount = math.exp(-rate * dt)
    payoff_sign = 1.0 if option_type == LegInstrument.CALL else -1.0

    # Node i of level j holds spot * up^(j - i) * down^i
    prices = spot * up ** np.arange(steps, -1, -1) * down ** np.arange(0, steps + 1)
    values = np.maximum(payoff_sign * (prices - strike), 0.0)
    for _ in range(steps):
        values = discount * (p * values[:-1] + (1 - p) * values[1:])
        if american:
            prices = prices[:-1] * down
            values = np.maximum(values, payoff_sign * (prices - strike))
    return float(values[0])


def implied_volatility(
    option_type: LegInstrument,
    market_price: float,
    spot: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    dividend_yield: float = 0.0,
    tolerance: float = 1e-6,
) -> float:
    """
    Volatility that reproduces ``market_price`` under Black-Scholes.

    Raises:
        CalculationError: If the price lies outside what any volatility can produce
    """
    if time_to_expiry <= 0:
        raise CalculationError("Implied volatility is undefined at expiry")

    def pricing_error(vol: float) -> float:
        model = black_scholes_price(
            option_type, spot, strike, time_to_expiry, rate, vol, dividend_yield
        )
        return model - market_price

    low, high = pricing_error(IV_LOWER_BOUND), pricing_error(IV_UPPER_BOUND)
    if low > 0 or high < 0:
        raise CalculationError(
            f"Price {market_price} is outside the range reachable by volatility "
            f"{IV_LOWER_BOUND}-{IV_UPPER_BOUND}"
        )
    return float(optimize.brentq(pricing_error, IV_LOWER_BOUND, IV_UPPER_BOUND, xtol=tolerance))


def historical_volatility(
    closes: Sequence[float], periods_per_year: float = TRADING_DAYS_PER_YEAR
) -> float:
    """
    Annualized standard deviation of log returns.

    Falls back to ``DEFAULT_VOLATILITY`` with fewer than two returns.
    """
    values = np.asarray(closes, dtype=float)
    if values.size < 3:
        return DEFAULT_VOLATILITY
    log_returns = np.diff(np.log(values))
    return float(log_returns.std() * math.sqrt(periods_per_year))
