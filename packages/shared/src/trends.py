"""Linear trend fitting and damped extrapolation over dated series (numpy least squares)."""
from dataclasses import dataclass
from datetime import date
from typing import Sequence

import numpy as np

# Residual spread assumed when too few points exist to measure it
_SPARSE_RESIDUAL_CV = 0.5


@dataclass(frozen=True)
class LinearTrend:
    """y = intercept + slope * days_since(origin)."""

    slope: float
    intercept: float
    origin: date
    last_date: date
    residual_cv: float
    n: int

    def value_at(self, d: date) -> float:
        return self.intercept + self.slope * (d - self.origin).days

    @property
    def level(self) -> float:
        """Fitted value at the last observed date."""
        return self.value_at(self.last_date)

    @property
    def fit_quality(self) -> float:
        """1 for a perfect fit, falling toward 0 as residuals grow relative to the mean."""
        return 1.0 / (1.0 + self.residual_cv)


def fit_linear_trend(dates: Sequence[date], values: Sequence[float]) -> LinearTrend:
    """Least-squares line through (day offset, value). Needs at least one point."""
    if len(dates) == 0 or len(dates) != len(values):
        raise ValueError("fit_linear_trend needs equal-length, non-empty dates and values")
    origin = min(dates)
    last = max(dates)
    x = np.array([(d - origin).days for d in dates], dtype=float)
    y = np.array(values, dtype=float)
    n = len(y)
    mean = float(np.mean(y))
    if n < 2 or float(np.ptp(x)) == 0.0:
        return LinearTrend(0.0, mean, origin, last, _SPARSE_RESIDUAL_CV, n)
    slope, intercept = np.polyfit(x, y, 1)
    resid = y - (intercept + slope * x)
    cv = float(np.std(resid)) / abs(mean) if mean != 0 else 1.0
    if n < 3:
        cv = max(cv, _SPARSE_RESIDUAL_CV)
    return LinearTrend(float(slope), float(intercept), origin, last, cv, n)


def damped_projection(trend: LinearTrend, target: date, phi: float) -> float:
    """Project the trend to target; beyond the last observation the slope decays by phi per day."""
    h = (target - trend.last_date).days
    if h <= 0:
        return trend.value_at(target)
    if phi >= 1.0:
        return trend.level + trend.slope * h
    cumulative = phi * (1.0 - phi ** h) / (1.0 - phi)
    return trend.level + trend.slope * cumulative


def index_slope(values: Sequence[float]) -> float:
    """Slope of values against their position (0, 1, 2, ...). Zero for fewer than two values."""
    if len(values) < 2:
        return 0.0
    x = np.arange(len(values), dtype=float)
    slope, _ = np.polyfit(x, np.array(values, dtype=float), 1)
    return float(slope)
