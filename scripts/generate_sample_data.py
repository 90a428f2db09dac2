"""
Generate a realistic sample SimulationContext: 60 days of Meta/Google history, competitors,
seasonal trends, benchmarks, and budget pacing for one campaign.
Run from repo root: python -m scripts.generate_sample_data [--seed 42] [--out data/sample_context.json] [--persist]
With --persist the sample simulation is also run and stored in DATABASE_URL.
"""
import argparse
import json
import random
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional

from sqlmodel import SQLModel

from packages.governance.src.metadata import record_simulation
from packages.shared.src import models  # noqa: F401
from packages.shared.src.db import get_engine, get_session
from packages.shared.src.enums import ScenarioType
from packages.shared.src.schemas import (
    AudienceData,
    BenchmarkData,
    BudgetData,
    CampaignData,
    ChannelConfig,
    CompetitorMetric,
    CreativeAsset,
    DataQualityScore,
    EnrichedDataset,
    MarketData,
    MetricSpec,
    PerformanceMetric,
    ScenarioConfig,
    SimulationContext,
    SimulationRequest,
    Timeframe,
    TrendData,
    VolatilityIndex,
)
from packages.simulation.src.orchestrator import run_simulation

START = date(2025, 1, 1)
HISTORY_DAYS = 60
FORECAST_DAYS = 30

CHANNELS = ["meta", "google"]
# Base daily values per channel (then trend + weekly + noise)
BASE = {
    "meta": {"impressions": 12000, "ctr": 0.018, "cpc": 0.9, "conversions": 14},
    "google": {"impressions": 8000, "ctr": 0.035, "cpc": 1.4, "conversions": 22},
}
COMPETITORS = ["Acme Outfitters", "Northwind Apparel"]
_REPO_ROOT = Path(__file__).resolve().parent.parent


def _history(rng: random.Random, start: date, days: int) -> List[PerformanceMetric]:
    rows = []
    for i in range(days):
        d = start + timedelta(days=i)
        weekly = 1.15 if d.weekday() < 5 else 0.85  # weekday vs weekend
        for ch in CHANNELS:
            base = BASE[ch]
            imp_trend = 1.0 + 0.002 * i  # slow reach growth
            ctr_trend = 1.0 - 0.003 * i  # creative wear-out
            impressions = max(100.0, base["impressions"] * imp_trend * weekly * rng.gauss(1.0, 0.1))
            ctr = min(1.0, max(0.001, base["ctr"] * ctr_trend * rng.gauss(1.0, 0.08)))
            cpc = max(0.05, base["cpc"] * (1.0 + 0.001 * i) * rng.gauss(1.0, 0.05))
            conversions = max(0.0, base["conversions"] * weekly * rng.gauss(1.0, 0.15))
            for metric, value in (
                ("impressions", round(impressions)),
                ("ctr", round(ctr, 5)),
                ("cpc", round(cpc, 3)),
                ("conversions", round(conversions, 1)),
            ):
                rows.append(PerformanceMetric(date=d, metric=metric, value=value, channel=ch))
    return rows


def _competitors(rng: random.Random, start: date) -> List[CompetitorMetric]:
    rows = []
    for n, name in enumerate(COMPETITORS):
        spend = 40000.0 + 10000.0 * n
        growth = 1.25 if n == 0 else 1.02  # one competitor ramps up
        for week in range(0, HISTORY_DAYS, 14):
            rows.append(
                CompetitorMetric(
                    competitor=name,
                    metric="ad_spend",
                    value=round(spend * rng.gauss(1.0, 0.02), 2),
                    date=start + timedelta(days=week),
                    source="ad_library",
                )
            )
            spend *= growth
    return rows


def build_sample_context(seed: int = 42, simulation_id: Optional[str] = None) -> SimulationContext:
    """Deterministic for a given seed."""
    rng = random.Random(seed)
    history_end = START + timedelta(days=HISTORY_DAYS)
    forecast_end = history_end + timedelta(days=FORECAST_DAYS)

    campaign = CampaignData(
        id="camp_spring_sale",
        name="Spring Sale",
        objective="conversions",
        industry="retail",
        start_date=START,
        end_date=forecast_end,
        budget=60000.0,
        channels=[ChannelConfig(platform=ch, budget=30000.0) for ch in CHANNELS],
    )
    market = MarketData(
        competitor_activity=_competitors(rng, START),
        seasonal_trends=[
            TrendData(keyword="spring sale", trend=round(0.05 * m + rng.uniform(-0.02, 0.02), 3), date=date(2025, m, 1))
            for m in (1, 2, 3, 4)
        ],
        industry_benchmarks=[
            BenchmarkData(industry="retail", metric="ctr", percentile_25=0.012, percentile_50=0.02, percentile_75=0.031, sample_size=1200),
            BenchmarkData(industry="retail", metric="cpc", percentile_25=0.7, percentile_50=1.1, percentile_75=1.6, sample_size=1200),
            BenchmarkData(industry="retail", metric="reach", percentile_25=6000, percentile_50=9000, percentile_75=14000, sample_size=800),
        ],
        market_volatility=VolatilityIndex(overall=0.25, by_channel={"meta": 0.3, "google": 0.2}, factors=["promotions"]),
    )
    dataset = EnrichedDataset(
        campaign=campaign,
        historical_performance=_history(rng, START, HISTORY_DAYS),
        audience_insights=[
            AudienceData(segment="returning_customers", size=42000, engagement_rate=0.05, growth_rate=0.01),
            AudienceData(segment="lookalike_purchasers", size=310000, engagement_rate=0.03, growth_rate=0.06),
        ],
        creative_assets=[
            CreativeAsset(id="cr_hero_video", type="video", launched_at=START, performance_score=0.41),
            CreativeAsset(id="cr_carousel", type="carousel", launched_at=START + timedelta(days=40), performance_score=0.72),
        ],
        budget_allocation=BudgetData(
            total=60000.0,
            allocated={"meta": 30000.0, "google": 30000.0},
            spent={"meta": 28200.0, "google": 19500.0},
            remaining={"meta": 1800.0, "google": 10500.0},
        ),
        market_data=market,
        external_data={"ad_library": True, "search_trends": True},
        data_quality=DataQualityScore(completeness=0.9, accuracy=0.85, freshness=0.8, consistency=0.88, overall=0.86),
    )
    request = SimulationRequest(
        campaign_id=campaign.id,
        timeframe=Timeframe(start_date=history_end, end_date=forecast_end),
        metrics=[
            MetricSpec(type="impressions", weight=1.0),
            MetricSpec(type="ctr", weight=2.0),
            MetricSpec(type="cpc", weight=1.0),
            MetricSpec(type="conversions", weight=3.0),
            MetricSpec(type="reach", weight=0.5, benchmark_source="retail"),
        ],
        scenarios=[
            ScenarioConfig(type=ScenarioType.OPTIMISTIC),
            ScenarioConfig(type=ScenarioType.REALISTIC),
            ScenarioConfig(type=ScenarioType.PESSIMISTIC),
        ],
        external_data_sources=["ad_library", "search_trends"],
    )
    return SimulationContext(
        simulation_id=simulation_id or f"sample-{seed}",
        organization_id="org_demo",
        user_id="user_demo",
        request=request,
        dataset=dataset,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Write a sample SimulationContext as JSON.")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--out", type=Path, default=_REPO_ROOT / "data" / "sample_context.json")
    parser.add_argument("--persist", action="store_true", help="Run the sample simulation and store the result")
    args = parser.parse_args(argv)

    ctx = build_sample_context(args.seed)
    args.out.parent.mkdir(parents=True, exist_ok=True)
    args.out.write_text(json.dumps(ctx.model_dump(mode="json"), indent=2))
    print(f"Wrote sample context ({len(ctx.dataset.historical_performance)} history rows) to {args.out!s}")
    if args.persist:
        SQLModel.metadata.create_all(get_engine())
        bundle = run_simulation(ctx)
        with get_session() as session:
            stored = record_simulation(session, bundle, ctx)
        print(f"Simulation {bundle.simulation_id}: {bundle.status.value}, {len(bundle.risks)} risks, stored={stored}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
