"""
Significance tests over out-of-sample fold returns.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import stats

from edgelab.core.constants import SIGNIFICANCE_ALPHA


@dataclass(frozen=True)
class SignificanceResult:
    """One-sample t-test and sign test of fold returns against zero."""

    sample_size: int
    mean: float
    t_statistic: float
    p_value: float
    sign_test_p_value: float
    confidence_level: float
    confidence_interval: tuple[float, float]
    significant: bool

    @classmethod
    def empty(cls, confidence_level: float = 1 - SIGNIFICANCE_ALPHA) -> "SignificanceResult":
        """Result for too few samples: nothing is significant."""
        return cls(
            sample_size=0,
            mean=0.0,
            t_statistic=0.0,
            p_value=1.0,
            sign_test_p_value=1.0,
            confidence_level=confidence_level,
            confidence_interval=(0.0, 0.0),
            significant=False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sampleSize": self.sample_size,
            "mean": self.mean,
            "tStatistic": self.t_statistic,
            "pValue": self.p_value,
            "signTestPValue": self.sign_test_p_value,
            "confidenceInterval": {
                "lower": self.confidence_interval[0],
                "upper": self.confidence_interval[1],
            },
            "significantOutperformance": self.significant,
        }


def sign_test(values: Sequence[float]) -> float:
    """One-sided binomial sign test p-value for "more positive than negative".

    Zeros carry no sign and are dropped; with nothing left the p-value is 1.
    """
    positives = sum(1 for v in values if v > 0)
    nonzero = sum(1 for v in values if v != 0)
    if nonzero == 0:
        return 1.0
    return float(stats.binomtest(positives, nonzero, p=0.5, alternative="greater").pvalue)


def significance_test(
    values: Sequence[float], alpha: float = SIGNIFICANCE_ALPHA
) -> SignificanceResult:
    """
    Test whether the mean of ``values`` is significantly above zero.

    Args:
        values: Per-fold out-of-sample returns
        alpha: Significance level; the confidence interval uses ``1 - alpha``

    Returns:
        SignificanceResult, ``significant`` when p < alpha and the mean is positive
    """
    confidence = 1 - alpha
    data = np.asarray(values, dtype=float)
    data = data[np.isfinite(data)]
    n = int(data.size)
    if n == 0:
        return SignificanceResult.empty(confidence)

    mean = float(data.mean())
    sem = float(stats.sem(data))
    if sem == 0 or not math.isfinite(sem):
        t_statistic, p_value = 0.0, 1.0
        interval = (mean, mean)
    else:
        test = stats.ttest_1samp(data, 0.0)
        t_statistic, p_value = float(test.statistic), float(test.pvalue)
        lower, upper = stats.t.interval(confidence, n - 1, loc=mean, scale=sem)
        interval = (float(lower), float(upper))

    return SignificanceResult(
        sample_size=n,
        mean=mean,
        t_statistic=t_statistic,
        p_value=p_value,
        sign_test_p_value=sign_test(data.tolist()),
        confidence_level=confidence,
        confidence_interval=interval,
        significant=p_value < alpha and mean > 0,
    )


def correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation, 0 when undefined (too few points or no variance)."""
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    a = np.asarray(x, dtype=float)
    b = np.asarray(y, dtype=float)
    if a.std() == 0 or b.std() == 0:
        return 0.0
    value = float(np.corrcoef(a, b)[0, 1])
    return value if math.isfinite(value) else 0.0
