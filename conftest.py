"""Shared fixtures: small, fully specified simulation contexts and trajectories."""
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

import pytest

from packages.shared.src.enums import Granularity, ScenarioType
from packages.shared.src.schemas import (
    BenchmarkData,
    BudgetData,
    CampaignData,
    CompetitorMetric,
    DataQualityScore,
    EnrichedDataset,
    MarketData,
    MetricSpec,
    PerformanceMetric,
    ScenarioConfig,
    SimulationContext,
    SimulationRequest,
    Timeframe,
    TrajectoryPoint,
)

START = date(2025, 3, 1)


def _build_context(
    metrics: Sequence[str] = ("ctr",),
    scenarios: Optional[List[ScenarioConfig]] = None,
    history: Optional[List[PerformanceMetric]] = None,
    benchmarks: Optional[List[BenchmarkData]] = None,
    competitors: Optional[List[CompetitorMetric]] = None,
    budget: Optional[BudgetData] = None,
    market: Optional[MarketData] = None,
    days: int = 30,
    start: date = START,
    data_quality: float = 0.8,
    granularity: Granularity = Granularity.DAILY,
    weights: Optional[Dict[str, float]] = None,
    **dataset_kwargs,
) -> SimulationContext:
    weights = weights or {}
    if market is None:
        market = MarketData(
            competitor_activity=competitors or [],
            industry_benchmarks=benchmarks or [],
        )
    dataset = EnrichedDataset(
        campaign=CampaignData(id="camp_1", name="Test campaign"),
        historical_performance=history or [],
        budget_allocation=budget or BudgetData(),
        market_data=market,
        data_quality=DataQualityScore(
            completeness=data_quality,
            accuracy=data_quality,
            freshness=data_quality,
            consistency=data_quality,
            overall=data_quality,
        ),
        **dataset_kwargs,
    )
    request = SimulationRequest(
        campaign_id="camp_1",
        timeframe=Timeframe(start_date=start, end_date=start + timedelta(days=days), granularity=granularity),
        metrics=[MetricSpec(type=m, weight=weights.get(m, 1.0)) for m in metrics],
        scenarios=scenarios
        if scenarios is not None
        else [
            ScenarioConfig(type=ScenarioType.OPTIMISTIC),
            ScenarioConfig(type=ScenarioType.REALISTIC),
            ScenarioConfig(type=ScenarioType.PESSIMISTIC),
        ],
    )
    return SimulationContext(
        simulation_id="sim-test",
        organization_id="org_1",
        user_id="user_1",
        request=request,
        dataset=dataset,
    )


def _linear_trajectory(
    values: Dict[str, Sequence[float]],
    start: date = START,
    confidence: float = 0.8,
) -> List[TrajectoryPoint]:
    """Trajectory from explicit per-metric value lists (all the same length)."""
    n = len(next(iter(values.values()))) if values else 0
    return [
        TrajectoryPoint(
            date=start + timedelta(days=i),
            metrics={m: float(v[i]) for m, v in values.items()},
            confidence=confidence,
        )
        for i in range(n)
    ]


def _ramp(first: float, last: float, n: int = 30) -> List[float]:
    if n == 1:
        return [first]
    step = (last - first) / (n - 1)
    return [first + step * i for i in range(n)]


def _history(metric: str, values: Sequence[float], end: date = START, channel: Optional[str] = None) -> List[PerformanceMetric]:
    """Daily history ending the day before end."""
    first = end - timedelta(days=len(values))
    return [
        PerformanceMetric(date=first + timedelta(days=i), metric=metric, value=float(v), channel=channel)
        for i, v in enumerate(values)
    ]


@pytest.fixture
def make_context():
    return _build_context


@pytest.fixture
def make_trajectory():
    return _linear_trajectory


@pytest.fixture
def ramp():
    return _ramp


@pytest.fixture
def make_history():
    return _history


@pytest.fixture
def competitor_spend_rising() -> List[CompetitorMetric]:
    """Competitor A ad spend 50k -> 75k -> 100k; B impressions 100k -> 150k."""
    return [
        CompetitorMetric(competitor="Competitor A", metric="ad_spend", value=50000, date=date(2025, 1, 1), source="ad_library"),
        CompetitorMetric(competitor="Competitor A", metric="ad_spend", value=75000, date=date(2025, 1, 15), source="ad_library"),
        CompetitorMetric(competitor="Competitor A", metric="ad_spend", value=100000, date=date(2025, 2, 1), source="ad_library"),
        CompetitorMetric(competitor="Competitor B", metric="impressions", value=100000, date=date(2025, 1, 1), source="ad_library"),
        CompetitorMetric(competitor="Competitor B", metric="impressions", value=150000, date=date(2025, 2, 1), source="ad_library"),
    ]
