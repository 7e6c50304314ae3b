"""
Multi-asset portfolio configuration.

Allocations are validated when the config is built, so a bad portfolio
never reaches a simulation.
"""

import math
from dataclasses import dataclass
from typing import Any

from edgelab.core.constants import (
    ALLOCATION_TOLERANCE,
    DEFAULT_REBALANCE_COST_PERCENT,
    DEFAULT_REBALANCE_THRESHOLD_PERCENT,
)
from edgelab.core.enums import RebalanceFrequency
from edgelab.core.exceptions.backtest import InvalidAllocationError, InvalidConfigError
from edgelab.core.models.backtest import BacktestConfig
from edgelab.core.utils.validation import validate_percentage


@dataclass(frozen=True)
class AssetAllocation:
    """Target weight of one asset."""

    symbol: str
    allocation_percent: float
    # Weight drift in percentage points that triggers a rebalance; None disables it
    rebalance_threshold_percent: float | None = DEFAULT_REBALANCE_THRESHOLD_PERCENT
    asset_class: str = "crypto"

    def __post_init__(self) -> None:
        if not self.symbol:
            raise InvalidConfigError("Asset symbol is required")
        if not math.isfinite(self.allocation_percent) or self.allocation_percent <= 0:
            raise InvalidConfigError(
                f"{self.symbol}: allocation must be positive, got {self.allocation_percent}"
            )
        if self.rebalance_threshold_percent is not None:
            validate_percentage(
                self.rebalance_threshold_percent, f"{self.symbol} rebalance_threshold_percent"
            )

    @property
    def weight(self) -> float:
        """Target weight as a fraction."""
        return self.allocation_percent / 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "allocation": self.allocation_percent,
            "rebalanceThreshold": self.rebalance_threshold_percent,
            "assetClass": self.asset_class,
        }


@dataclass(frozen=True)
class PortfolioConfig:
    """
    Portfolio of assets sharing one capital pool.

    ``base_config.initial_capital`` is the pool; each asset is simulated with
    its allocation's share of it.

    Raises:
        InvalidAllocationError: If allocations do not sum to 100 within tolerance
        InvalidConfigError: If there are no assets or a symbol repeats
    """

    assets: tuple[AssetAllocation, ...]
    base_config: BacktestConfig
    rebalance_frequency: RebalanceFrequency = RebalanceFrequency.MONTHLY
    rebalance_cost_percent: float = DEFAULT_REBALANCE_COST_PERCENT

    def __post_init__(self) -> None:
        if not self.assets:
            raise InvalidConfigError("Portfolio needs at least one asset")
        symbols = [a.symbol for a in self.assets]
        if len(set(symbols)) != len(symbols):
            raise InvalidConfigError(f"Duplicate portfolio symbols: {symbols}")
        total = self.total_allocation
        if abs(total - 100.0) > ALLOCATION_TOLERANCE:
            raise InvalidAllocationError(total, ALLOCATION_TOLERANCE)
        validate_percentage(self.rebalance_cost_percent, "rebalance_cost_percent", allow_zero=True)

    @property
    def total_allocation(self) -> float:
        return sum(a.allocation_percent for a in self.assets)

    @property
    def symbols(self) -> tuple[str, ...]:
        return tuple(a.symbol for a in self.assets)

    @property
    def weights(self) -> dict[str, float]:
        """Target weights keyed by symbol."""
        return {a.symbol: a.weight for a in self.assets}

    def asset_config(self, asset: AssetAllocation) -> BacktestConfig:
        """Single-asset config holding the asset's share of the capital pool."""
        return self.base_config.with_overrides(
            symbol=asset.symbol,
            initial_capital=self.base_config.initial_capital * asset.weight,
        )

    @classmethod
    def from_allocations(
        cls,
        allocations: dict[str, float],
        base_config: BacktestConfig,
        **kwargs: Any,
    ) -> "PortfolioConfig":
        """Build a config from a ``{symbol: allocation_percent}`` mapping."""
        assets = tuple(AssetAllocation(symbol, pct) for symbol, pct in allocations.items())
        return cls(assets=assets, base_config=base_config, **kwargs)
