"""
Train/test fold splitting with embargo gaps.

Folds respect temporal order: a test window always starts after its train
window ends plus the embargo period, and test windows of different folds
never overlap.

Timeline:
    |--- TRAIN ---|-- EMBARGO --|--- TEST ---|
                  |--- step --->|--- TRAIN ---|-- EMBARGO --|--- TEST ---|
"""

from bisect import bisect_left
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from edgelab.core.enums import FoldMethod
from edgelab.core.exceptions.backtest import InsufficientDataError
from edgelab.core.models.candle import Candle


class WalkForwardConfig(BaseModel):
    """Configuration for fold splitting."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    method: FoldMethod = Field(default=FoldMethod.WALK_FORWARD, description="Splitting method")

    # Ratio based methods
    train_ratio: float = Field(default=0.7, gt=0, lt=1, description="Train share of a window")
    test_ratio: float = Field(default=0.3, gt=0, lt=1, description="Test share of a window")
    num_folds: int = Field(default=5, ge=1, description="Number of folds")

    # Day based methods
    train_window_days: float = Field(default=180, gt=0, description="Train window in days")
    test_window_days: float = Field(default=30, gt=0, description="Test window in days")
    step_days: float | None = Field(
        default=None,
        gt=0,
        description="Step between windows (defaults to test_window_days for non-overlapping tests)",
    )

    embargo_period: float = Field(
        default=0, ge=0, description="Gap in days between train end and test start"
    )
    min_train_candles: int = Field(default=20, ge=1, description="Folds with less train data are skipped")
    min_test_candles: int = Field(default=20, ge=1, description="Folds with less test data are skipped")

    @model_validator(mode="after")
    def validate_windows(self) -> "WalkForwardConfig":
        """Reject ratios that overflow a window and steps that overlap test windows."""
        if self.train_ratio + self.test_ratio > 1.0 + 1e-9:
            raise ValueError("train_ratio + test_ratio must not exceed 1")
        if self.step_days is not None and self.step_days < self.test_window_days:
            raise ValueError("step_days shorter than test_window_days would overlap test windows")
        return self

    @property
    def effective_step_days(self) -> float:
        return self.step_days if self.step_days is not None else self.test_window_days


@dataclass(frozen=True)
class Fold:
    """One train/test split. Index bounds are half-open ``[start, end)``."""

    fold_id: int
    train_start: int
    train_end: int
    test_start: int
    test_end: int
    train_start_time: datetime
    train_end_time: datetime
    test_start_time: datetime
    test_end_time: datetime

    @property
    def train_size(self) -> int:
        return self.train_end - self.train_start

    @property
    def test_size(self) -> int:
        return self.test_end - self.test_start

    @property
    def embargo_candles(self) -> int:
        """Candles skipped between the train and test windows."""
        return self.test_start - self.train_end

    def train_candles(self, candles: Sequence[Candle]) -> Sequence[Candle]:
        return candles[self.train_start : self.train_end]

    def test_candles(self, candles: Sequence[Candle]) -> Sequence[Candle]:
        return candles[self.test_start : self.test_end]

    def to_dict(self) -> dict[str, Any]:
        return {
            "foldId": self.fold_id,
            "trainStart": self.train_start_time.isoformat(),
            "trainEnd": self.train_end_time.isoformat(),
            "testStart": self.test_start_time.isoformat(),
            "testEnd": self.test_end_time.isoformat(),
            "trainCandles": self.train_size,
            "testCandles": self.test_size,
            "embargoCandles": self.embargo_candles,
        }


class FoldSplitter:
    """
    Cuts a candle series into folds.

    Example:
        splitter = FoldSplitter(WalkForwardConfig(method="rolling", train_window_days=90))
        for fold in splitter.split(candles):
            train = fold.train_candles(candles)
            test = fold.test_candles(candles)
    """

    def __init__(self, config: WalkForwardConfig | None = None):
        self.config = config or WalkForwardConfig()

    def split(self, candles: Sequence[Candle]) -> list[Fold]:
        """
        Build every valid fold for ``candles``.

        Returns:
            Folds ordered by time

        Raises:
            InsufficientDataError: If no fold satisfies the minimum window sizes
        """
        timestamps = [c.timestamp for c in candles]
        if self.config.method == FoldMethod.WALK_FORWARD:
            bounds = self._ratio_bounds(timestamps)
        elif self.config.method == FoldMethod.K_FOLD:
            bounds = self._block_bounds(timestamps)
        else:
            bounds = self._day_bounds(timestamps)

        folds: list[Fold] = []
        last_test_end = 0
        for train_start, train_end, test_start, test_end in bounds:
            test_start = max(test_start, last_test_end)
            if train_end - train_start < self.config.min_train_candles:
                logger.debug(f"Skipping window at {train_start}: train window too small")
                continue
            if test_end - test_start < self.config.min_test_candles:
                logger.debug(f"Skipping window at {train_start}: test window too small")
                continue
            folds.append(
                Fold(
                    fold_id=len(folds),
                    train_start=train_start,
                    train_end=train_end,
                    test_start=test_start,
                    test_end=test_end,
                    train_start_time=timestamps[train_start],
                    train_end_time=timestamps[train_end - 1],
                    test_start_time=timestamps[test_start],
                    test_end_time=timestamps[test_end - 1],
                )
            )
            last_test_end = test_end

        if not folds:
            raise InsufficientDataError(
                self.config.min_train_candles + self.config.min_test_candles,
                len(candles),
                f"{self.config.method} split",
            )
        logger.debug(f"{self.config.method} split produced {len(folds)} folds")
        return folds

    def _embargoed_start(self, timestamps: list[datetime], train_end: int) -> int:
        """First index whose timestamp is at least the embargo after the last train candle."""
        if self.config.embargo_period <= 0 or train_end == 0:
            return train_end
        boundary = timestamps[train_end - 1] + timedelta(days=self.config.embargo_period)
        return max(train_end, bisect_left(timestamps, boundary))

    def _ratio_bounds(self, timestamps: list[datetime]) -> list[tuple[int, int, int, int]]:
        """Sliding windows sized so ``num_folds`` test windows tile the series."""
        n = len(timestamps)
        folds = self.config.num_folds
        window = n / (1 + (folds - 1) * self.config.test_ratio)
        train_len = int(window * self.config.train_ratio)
        test_len = int(window * self.config.test_ratio)
        if train_len <= 0 or test_len <= 0:
            return []

        bounds = []
        for i in range(folds):
            train_start = i * test_len
            train_end = min(train_start + train_len, n)
            test_start = self._embargoed_start(timestamps, train_end)
            test_end = min(test_start + test_len, n)
            if test_start >= n:
                break
            bounds.append((train_start, train_end, test_start, test_end))
        return bounds

    def _block_bounds(self, timestamps: list[datetime]) -> list[tuple[int, int, int, int]]:
        """Expanding train over equal blocks, testing on the block that follows."""
        n = len(timestamps)
        folds = self.config.num_folds
        block = n // (folds + 1)
        if block <= 0:
            return []

        bounds = []
        for i in range(folds):
            train_end = (i + 1) * block
            test_start = self._embargoed_start(timestamps, train_end)
            test_end = n if i == folds - 1 else min((i + 2) * block, n)
            if test_start >= test_end:
                continue
            bounds.append((0, train_end, test_start, test_end))
        return bounds

    def _day_bounds(self, timestamps: list[datetime]) -> list[tuple[int, int, int, int]]:
        """Calendar windows: sliding (rolling) or anchored at the first candle."""
        if not timestamps:
            return []
        n = len(timestamps)
        origin = timestamps[0]
        train = timedelta(days=self.config.train_window_days)
        test = timedelta(days=self.config.test_window_days)
        step = timedelta(days=self.config.effective_step_days)
        embargo = timedelta(days=self.config.embargo_period)
        anchored = self.config.method == FoldMethod.ANCHORED

        bounds = []
        j = 0
        while True:
            train_start_time = origin if anchored else origin + j * step
            train_end_time = origin + train + j * step
            test_start_time = train_end_time + embargo
            test_end_time = test_start_time + test

            test_start = bisect_left(timestamps, test_start_time)
            if test_start >= n:
                break
            bounds.append(
                (
                    bisect_left(timestamps, train_start_time),
                    bisect_left(timestamps, train_end_time),
                    test_start,
                    bisect_left(timestamps, test_end_time),
                )
            )
            j += 1
        return bounds
