"""
Core enumerations for the backtesting engine.

This module provides centralized enumerations for domain concepts
like position sides, bar frequencies, objectives and validation methods.
"""

from .cost_models import CommissionModel, SlippageModel
from .optimization import ObjectiveMetric
from .options import LegAction, LegInstrument, LegOutcome, OptionStrategyType
from .portfolio import RebalanceFrequency
from .position_types import ExitReason, PositionSide
from .sizing import KellyFraction, SizingMethod
from .timeframes import Timeframe
from .validation import BootstrapMethod, FoldMethod

__all__ = [
    "BootstrapMethod",
    "CommissionModel",
    "ExitReason",
    "FoldMethod",
    "KellyFraction",
    "LegAction",
    "LegInstrument",
    "LegOutcome",
    "ObjectiveMetric",
    "OptionStrategyType",
    "PositionSide",
    "RebalanceFrequency",
    "SizingMethod",
    "SlippageModel",
    "Timeframe",
]
