"""
Optimization objective enumerations.
"""

from enum import StrEnum


class ObjectiveMetric(StrEnum):
    """
    Result metrics an optimizer can rank candidates by.

    Values match the attribute names of ``PerformanceMetrics``.
    """

    TOTAL_RETURN_PERCENT = "total_return_percent"
    ANNUALIZED_RETURN = "annualized_return"
    SHARPE_RATIO = "sharpe_ratio"
    SORTINO_RATIO = "sortino_ratio"
    CALMAR_RATIO = "calmar_ratio"
    PROFIT_FACTOR = "profit_factor"
    WIN_RATE = "win_rate"
    MAX_DRAWDOWN_PERCENT = "max_drawdown_percent"
    ULCER_INDEX = "ulcer_index"
    EXPECTANCY = "expectancy"
    RECOVERY_FACTOR = "recovery_factor"

    @property
    def maximize(self) -> bool:
        """Check if larger values are better."""
        return self not in [self.MAX_DRAWDOWN_PERCENT, self.ULCER_INDEX]

    @classmethod
    def from_string(cls, value: str) -> "ObjectiveMetric":
        """
        Resolve a metric from its name or a short alias.

        Args:
            value: Metric name such as "sharpe_ratio", or an alias such as "sharpe"

        Returns:
            Corresponding ObjectiveMetric

        Raises:
            ValueError: If the name is unknown
        """
        aliases = {
            "return": cls.TOTAL_RETURN_PERCENT,
            "total_return": cls.TOTAL_RETURN_PERCENT,
            "sharpe": cls.SHARPE_RATIO,
            "sortino": cls.SORTINO_RATIO,
            "calmar": cls.CALMAR_RATIO,
            "drawdown": cls.MAX_DRAWDOWN_PERCENT,
            "max_drawdown": cls.MAX_DRAWDOWN_PERCENT,
            "win_rate": cls.WIN_RATE,
            "ulcer": cls.ULCER_INDEX,
        }
        key = value.strip().lower()
        if key in aliases:
            return aliases[key]
        for metric in cls:
            if metric.value == key:
                return metric
        raise ValueError(f"Unknown objective metric: {value}")
