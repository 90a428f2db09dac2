"""Market-data summaries: competitor growth trends, competitive pressure, monthly seasonal index."""
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Tuple

import pandas as pd

from packages.shared.src.schemas import CompetitorMetric, TrendData
from packages.shared.src.trends import index_slope


@dataclass(frozen=True)
class CompetitorTrend:
    """Growth of one competitor metric across its dated observations."""

    competitor: str
    metric: str
    first_date: date
    last_date: date
    first_value: float
    last_value: float
    growth: float  # (last - first) / first
    slope: float  # per observation
    observations: int
    increasing_steps: int

    @property
    def step_consistency(self) -> float:
        """Share of consecutive observations that increased."""
        steps = self.observations - 1
        return self.increasing_steps / steps if steps > 0 else 0.0


def competitor_trends(activity: Iterable[CompetitorMetric]) -> List[CompetitorTrend]:
    """One trend per (competitor, metric) with at least two dated observations and a positive first value."""
    rows = [{"competitor": a.competitor, "metric": a.metric, "date": a.date, "value": a.value} for a in activity]
    if not rows:
        return []
    df = pd.DataFrame(rows)
    # Same-day observations from several sources are averaged
    df = df.groupby(["competitor", "metric", "date"], as_index=False)["value"].mean()
    out: List[CompetitorTrend] = []
    for (competitor, metric), grp in df.groupby(["competitor", "metric"], sort=True):
        grp = grp.sort_values("date")
        values = [float(v) for v in grp["value"]]
        if len(values) < 2 or values[0] <= 0:
            continue
        increasing = sum(1 for a, b in zip(values, values[1:]) if b > a)
        dates = list(grp["date"])
        out.append(
            CompetitorTrend(
                competitor=str(competitor),
                metric=str(metric),
                first_date=dates[0],
                last_date=dates[-1],
                first_value=values[0],
                last_value=values[-1],
                growth=(values[-1] - values[0]) / values[0],
                slope=index_slope(values),
                observations=len(values),
                increasing_steps=increasing,
            )
        )
    return out


def competitive_pressure(trends: Iterable[CompetitorTrend]) -> float:
    """Mean positive competitor growth, capped at 1.0. Zero without competitor data."""
    growths = [max(0.0, t.growth) for t in trends]
    if not growths:
        return 0.0
    return min(1.0, sum(growths) / len(growths))


def monthly_seasonal_index(trends: Iterable[TrendData]) -> Dict[Tuple[int, int], float]:
    """Mean relative trend per (year, month)."""
    rows = [{"year": t.date.year, "month": t.date.month, "trend": t.trend} for t in trends]
    if not rows:
        return {}
    df = pd.DataFrame(rows)
    means = df.groupby(["year", "month"])["trend"].mean()
    return {(int(y), int(m)): float(v) for (y, m), v in means.items()}
