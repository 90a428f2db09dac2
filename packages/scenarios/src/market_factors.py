"""Blend market data (volatility, seasonality, competitor pressure) into a scenario trajectory."""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from packages.shared.src.market import competitive_pressure, competitor_trends, monthly_seasonal_index
from packages.shared.src.metric_catalog import clamp_metric, is_cost
from packages.shared.src.schemas import ScenarioOptions, SimulationContext, TrajectoryPoint

VOLATILITY_SHIFT = 0.1  # max relative move from volatility at the percentile extremes
COMPETITION_IMPACT = 0.1  # max relative move from competitor pressure at scale 1
HIGH_VOLATILITY = 0.3
COMPETITIVE_MARKET_SIZE = 5  # distinct competitors


@dataclass(frozen=True)
class MarketFactors:
    """Market summary computed once per simulation and shared read-only by every scenario."""

    volatility: float = 0.0
    pressure: float = 0.0
    competitor_count: int = 0
    seasonal_index: Dict[Tuple[int, int], float] = field(default_factory=dict)


def market_factors_from(context: SimulationContext) -> MarketFactors:
    market = context.dataset.market_data
    trends = competitor_trends(market.competitor_activity)
    return MarketFactors(
        volatility=min(1.0, max(0.0, market.market_volatility.overall)),
        pressure=competitive_pressure(trends),
        competitor_count=len({a.competitor for a in market.competitor_activity}),
        seasonal_index=monthly_seasonal_index(market.seasonal_trends),
    )


def direction(percentile: float) -> float:
    """-1 at the 0th percentile, 0 at the median, +1 at the 100th."""
    return (percentile - 50.0) / 50.0


def apply_market_factors(
    points: List[TrajectoryPoint],
    percentile: float,
    factors: MarketFactors,
    options: ScenarioOptions,
) -> Tuple[List[TrajectoryPoint], List[str]]:
    """Return adjusted points and the key factors that shaped them."""
    key_factors: List[str] = ["market"]
    if factors.volatility > HIGH_VOLATILITY:
        key_factors.append("high_market_volatility")
    if factors.competitor_count > COMPETITIVE_MARKET_SIZE:
        key_factors.append("competitive_market")

    dirn = direction(percentile)
    volatility_mult = 1.0 + VOLATILITY_SHIFT * factors.volatility * dirn
    use_seasonal = options.include_seasonality and bool(factors.seasonal_index)
    use_competition = options.include_competition and factors.pressure > 0
    competition_shift = COMPETITION_IMPACT * factors.pressure * (1.0 - dirn) if use_competition else 0.0

    seasonal_hit = False
    out: List[TrajectoryPoint] = []
    for p in points:
        point_mult = volatility_mult
        if use_seasonal:
            idx = factors.seasonal_index.get((p.date.year, p.date.month))
            if idx is not None:
                seasonal_hit = True
                point_mult *= max(0.0, 1.0 + options.seasonal_sensitivity * idx)
        metrics = {}
        for name, value in p.metrics.items():
            m = point_mult
            if competition_shift:
                m *= (1.0 + competition_shift) if is_cost(name) else max(0.0, 1.0 - competition_shift)
            metrics[name] = clamp_metric(name, value * m)
        out.append(TrajectoryPoint(date=p.date, metrics=metrics, confidence=p.confidence))

    if seasonal_hit:
        key_factors.extend(["seasonal", "seasonal_trends"])
    if use_competition:
        key_factors.append("competitive")
    return out, key_factors
