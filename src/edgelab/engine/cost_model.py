"""
Execution cost models: slippage and commission.

Slippage always moves the fill against the trader: buys fill higher and
sells fill lower than the reference price.
"""

import math
from dataclasses import dataclass

from edgelab.core.constants import (
    COMMISSION_TIERS,
    REFERENCE_VOLATILITY_PERCENT,
    VOLUME_IMPACT_COEFFICIENT,
)
from edgelab.core.enums import CommissionModel, PositionSide, SlippageModel
from edgelab.core.models.backtest import BacktestConfig
from edgelab.core.models.candle import Candle


@dataclass(frozen=True, slots=True)
class Fill:
    """Price and costs of one executed order."""

    price: float
    quantity: float
    slippage_cost: float
    commission: float

    @property
    def notional(self) -> float:
        return self.price * self.quantity


class CostModel:
    """Computes fill prices and fees for a configuration."""

    def __init__(
        self,
        slippage_percent: float,
        commission_percent: float,
        slippage_model: SlippageModel = SlippageModel.FIXED,
        commission_model: CommissionModel = CommissionModel.PERCENT,
        fixed_commission: float = 0.0,
        tiers: tuple[tuple[float, float], ...] = COMMISSION_TIERS,
    ):
        self.slippage_percent = slippage_percent
        self.commission_percent = commission_percent
        self.slippage_model = slippage_model
        self.commission_model = commission_model
        self.fixed_commission = fixed_commission
        self.tiers = tuple(sorted(tiers))

    @classmethod
    def from_config(cls, config: BacktestConfig) -> "CostModel":
        """Build the cost model described by a backtest config."""
        return cls(
            slippage_percent=config.slippage_percent,
            commission_percent=config.commission_percent,
            slippage_model=config.slippage_model,
            commission_model=config.commission_model,
            fixed_commission=config.fixed_commission,
        )

    def effective_slippage_percent(self, candle: Candle, quantity: float) -> float:
        """Slippage in percent of price for an order of ``quantity`` on ``candle``."""
        base = self.slippage_percent
        if self.slippage_model == SlippageModel.VOLUME_BASED:
            if candle.volume <= 0:
                return base
            participation = abs(quantity) / candle.volume
            return base + VOLUME_IMPACT_COEFFICIENT * math.sqrt(participation) * 100.0
        if self.slippage_model == SlippageModel.VOLATILITY_BASED:
            return base * max(0.5, candle.range_percent / REFERENCE_VOLATILITY_PERCENT)
        return base

    def commission(self, notional: float) -> float:
        """Fee charged on one fill of the given notional."""
        notional = abs(notional)
        if self.commission_model == CommissionModel.FIXED:
            return self.fixed_commission
        if self.commission_model == CommissionModel.TIERED:
            rate = self.tiers[0][1]
            for threshold, tier_rate in self.tiers:
                if notional >= threshold:
                    rate = tier_rate
            return notional * rate / 100.0
        return notional * self.commission_percent / 100.0

    def fill(
        self,
        reference_price: float,
        quantity: float,
        side: PositionSide,
        opening: bool,
        candle: Candle,
    ) -> Fill:
        """Execute an order against ``reference_price``.

        Args:
            reference_price: Price before slippage
            quantity: Order quantity
            side: Side of the position being opened or closed
            opening: True when entering, False when exiting
            candle: Bar the order executes on

        Returns:
            The resulting Fill
        """
        buying = side.is_long == opening
        slippage = self.effective_slippage_percent(candle, quantity) / 100.0
        price = reference_price * (1 + slippage) if buying else reference_price * (1 - slippage)
        return Fill(
            price=price,
            quantity=quantity,
            slippage_cost=abs(price - reference_price) * quantity,
            commission=self.commission(price * quantity),
        )
