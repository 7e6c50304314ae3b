"""
Out-of-sample validation enumerations.
"""

from enum import StrEnum


class FoldMethod(StrEnum):
    """How a candle series is cut into train/test folds."""

    WALK_FORWARD = "walk_forward"  # Sliding window sized by train/test ratios
    K_FOLD = "k_fold"  # Expanding train over equal blocks, test on the next block
    ROLLING = "rolling"  # Sliding window sized in days
    ANCHORED = "anchored"  # Expanding train from the first candle, sized in days

    @property
    def uses_days(self) -> bool:
        """Check if the method is configured in calendar days."""
        return self in [self.ROLLING, self.ANCHORED]


class BootstrapMethod(StrEnum):
    """How Monte Carlo runs resample the trade sequence."""

    SHUFFLE = "shuffle"
    SAMPLE_WITH_REPLACEMENT = "sample_with_replacement"
