"""
Portfolio rebalancing enumerations.
"""

from enum import StrEnum


class RebalanceFrequency(StrEnum):
    """Scheduled rebalancing cadence of a multi-asset portfolio."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @property
    def min_days(self) -> int | None:
        """Days that must pass between scheduled rebalances (None disables them)."""
        return {
            self.NONE: None,
            self.DAILY: 1,
            self.WEEKLY: 7,
            self.MONTHLY: 30,
            self.QUARTERLY: 90,
        }[self]
