"""Scenario generator tests: percentile ordering, probabilities, adjustments, isolation."""
from datetime import date, timedelta

import pytest

from packages.scenarios.src.generator import (
    effective_multiplier,
    generate_scenario_batch,
    generate_scenarios,
    percentile_factor,
    scenario_confidence,
)
from packages.shared.src.enums import ScenarioType
from packages.shared.src.errors import ValidationError
from packages.shared.src.schemas import (
    Adjustment,
    CompetitorMetric,
    DateRange,
    MarketData,
    ScenarioConfig,
    ScenarioOptions,
    TrendData,
    VolatilityIndex,
)

METRICS = ("ctr", "impressions", "cpc", "conversions")


@pytest.fixture
def baseline(make_trajectory, ramp):
    return make_trajectory(
        {
            "ctr": ramp(0.03, 0.025),
            "impressions": ramp(10000, 12000),
            "cpc": ramp(1.2, 1.4),
            "conversions": ramp(40, 35),
        }
    )


def _mean(trajectory, metric):
    return sum(p.metrics[metric] for p in trajectory) / len(trajectory)


def _three():
    return [
        ScenarioConfig(type=ScenarioType.OPTIMISTIC),
        ScenarioConfig(type=ScenarioType.REALISTIC),
        ScenarioConfig(type=ScenarioType.PESSIMISTIC),
    ]


def test_percentile_factor_is_monotonic_and_centered():
    assert percentile_factor(50) == pytest.approx(1.0)
    assert percentile_factor(25) == pytest.approx(0.7)
    assert percentile_factor(75) == pytest.approx(1.3)
    values = [percentile_factor(p) for p in range(0, 101, 5)]
    assert all(a < b for a, b in zip(values, values[1:]))


def test_optimistic_beats_pessimistic_for_every_metric(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    by_type = {s.type: s for s in generate_scenarios(baseline, _three(), ctx)}
    for metric in METRICS:
        assert _mean(by_type[ScenarioType.OPTIMISTIC].trajectory, metric) > _mean(
            by_type[ScenarioType.PESSIMISTIC].trajectory, metric
        )


def test_realistic_matches_baseline(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    realistic = generate_scenarios(baseline, [ScenarioConfig(type=ScenarioType.REALISTIC)], ctx)[0]
    assert realistic.trajectory == baseline


def test_probabilities_sum_to_one_and_realistic_dominates(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    scenarios = generate_scenarios(baseline, _three(), ctx)
    assert 0.9 <= sum(s.probability for s in scenarios) <= 1.1
    by_type = {s.type: s.probability for s in scenarios}
    assert by_type[ScenarioType.REALISTIC] > by_type[ScenarioType.OPTIMISTIC] + by_type[ScenarioType.PESSIMISTIC]


def test_probabilities_sum_with_market_volatility(make_context, baseline):
    market = MarketData(market_volatility=VolatilityIndex(overall=0.6))
    ctx = make_context(metrics=METRICS, market=market)
    configs = _three() + [ScenarioConfig(type=ScenarioType.CUSTOM, percentile=90)]
    scenarios = generate_scenarios(baseline, configs, ctx, ScenarioOptions(include_market_factors=True))
    assert sum(s.probability for s in scenarios) == pytest.approx(1.0)


def test_higher_custom_percentile_gives_higher_values(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    configs = [ScenarioConfig(type=ScenarioType.CUSTOM, percentile=p, name=f"p{p}") for p in (10, 40, 60, 95)]
    scenarios = generate_scenarios(baseline, configs, ctx)
    for metric in METRICS:
        means = [_mean(s.trajectory, metric) for s in scenarios]
        assert all(a < b for a, b in zip(means, means[1:]))


def test_adjustment_only_touches_points_in_window(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    window = DateRange(start=baseline[10].date, end=baseline[14].date)
    config = ScenarioConfig(
        type=ScenarioType.CUSTOM,
        adjustments=[Adjustment(factor="budget", multiplier=1.5, timeframe=window)],
    )
    result = generate_scenarios(baseline, [config], ctx)[0]
    assert "budget_adjustment" in result.key_factors
    for base, adjusted in zip(baseline, result.trajectory):
        if window.contains(base.date):
            assert adjusted.metrics["impressions"] == pytest.approx(base.metrics["impressions"] * 1.5)
        else:
            assert adjusted.metrics == base.metrics
            assert adjusted.confidence == base.confidence


def test_overlapping_adjustments_compose(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    d = baseline[5].date
    config = ScenarioConfig(
        type=ScenarioType.CUSTOM,
        adjustments=[
            Adjustment(factor="budget", multiplier=1.2, timeframe=DateRange(start=d, end=d + timedelta(days=3))),
            Adjustment(factor="promotion", multiplier=1.1, timeframe=DateRange(start=d, end=d)),
        ],
    )
    result = generate_scenarios(baseline, [config], ctx)[0]
    assert result.trajectory[5].metrics["impressions"] == pytest.approx(baseline[5].metrics["impressions"] * 1.2 * 1.1)
    assert result.trajectory[6].metrics["impressions"] == pytest.approx(baseline[6].metrics["impressions"] * 1.2)
    assert {"budget_adjustment", "promotion_adjustment"} <= set(result.key_factors)


def test_competition_adjustment_is_damped():
    adj = Adjustment(factor="competition", multiplier=0.5)
    assert effective_multiplier(adj) == pytest.approx(0.6)
    assert effective_multiplier(Adjustment(factor="budget", multiplier=0.5)) == 0.5


def test_confidence_degrades_with_data_quality(make_context):
    config = ScenarioConfig(type=ScenarioType.REALISTIC)
    scores = [scenario_confidence(config, make_context(data_quality=q)) for q in (0.1, 0.4, 0.7, 1.0)]
    assert all(a < b for a, b in zip(scores, scores[1:]))
    assert scores[0] < 0.5


def test_empty_and_single_point_baselines(make_context, make_trajectory):
    ctx = make_context(metrics=METRICS)
    empty = generate_scenarios([], _three(), ctx)
    assert len(empty) == 3
    assert all(s.trajectory == [] for s in empty)
    single = make_trajectory({"ctr": [0.02]})
    assert all(len(s.trajectory) == 1 for s in generate_scenarios(single, _three(), ctx))


def test_single_scenario_probability_is_informational(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    result = generate_scenarios(baseline, [ScenarioConfig(type=ScenarioType.OPTIMISTIC)], ctx)[0]
    assert 0.0 < result.probability <= 1.0


def test_input_order_does_not_change_results(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    forward = {s.name: s for s in generate_scenarios(baseline, _three(), ctx)}
    backward = {s.name: s for s in generate_scenarios(baseline, list(reversed(_three())), ctx)}
    assert forward == backward


def test_thread_pool_matches_sequential(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    sequential = generate_scenarios(baseline, _three(), ctx)
    parallel = generate_scenarios(baseline, _three(), ctx, ScenarioOptions(max_workers=3))
    assert sequential == parallel


def test_bad_config_fails_alone(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    configs = _three() + [ScenarioConfig(type=ScenarioType.CUSTOM, percentile=150, name="broken")]
    batch = generate_scenario_batch(baseline, configs, ctx)
    assert len(batch.scenarios) == 3
    assert len(batch.failures) == 1
    failure = batch.failures[0]
    assert failure.name == "broken"
    assert failure.code == "VALIDATION_ERROR"
    assert 0.9 <= sum(s.probability for s in batch.scenarios) <= 1.1


def test_all_configs_failing_raises(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    bad = ScenarioConfig(
        type=ScenarioType.CUSTOM,
        adjustments=[Adjustment(factor="budget", multiplier=-1.0)],
    )
    with pytest.raises(ValidationError):
        generate_scenarios(baseline, [bad], ctx)


def test_market_factors_record_key_factors(make_context, baseline):
    market = MarketData(
        competitor_activity=[
            CompetitorMetric(competitor="A", metric="ad_spend", value=100, date=date(2025, 1, 1)),
            CompetitorMetric(competitor="A", metric="ad_spend", value=160, date=date(2025, 2, 1)),
        ],
        seasonal_trends=[TrendData(keyword="spring", trend=0.2, date=baseline[0].date)],
        market_volatility=VolatilityIndex(overall=0.4),
    )
    ctx = make_context(metrics=METRICS, market=market)
    options = ScenarioOptions(include_market_factors=True, include_seasonality=True, include_competition=True)
    by_type = {s.type: s for s in generate_scenarios(baseline, _three(), ctx, options)}
    factors = set(by_type[ScenarioType.PESSIMISTIC].key_factors)
    assert {"market", "seasonal", "competitive", "high_market_volatility"} <= factors
    for metric in METRICS:
        assert _mean(by_type[ScenarioType.OPTIMISTIC].trajectory, metric) > _mean(
            by_type[ScenarioType.PESSIMISTIC].trajectory, metric
        )


def test_duplicate_names_are_disambiguated(make_context, baseline):
    ctx = make_context(metrics=METRICS)
    configs = [ScenarioConfig(type=ScenarioType.CUSTOM, percentile=60), ScenarioConfig(type=ScenarioType.CUSTOM, percentile=70)]
    names = [s.name for s in generate_scenarios(baseline, configs, ctx)]
    assert names == ["custom", "custom_1"]


def test_infinite_multiplier_fails_instead_of_clamping(make_context, make_trajectory):
    baseline = make_trajectory({"ctr": [0.02, 0.03]})
    boom = ScenarioConfig(
        type=ScenarioType.CUSTOM,
        name="boom",
        adjustments=[Adjustment(factor="promotion", multiplier=float("inf"))],
    )
    batch = generate_scenario_batch(baseline, [ScenarioConfig(type=ScenarioType.REALISTIC), boom], make_context())
    assert [s.name for s in batch.scenarios] == ["realistic"]
    assert batch.failures[0].name == "boom"
    assert batch.failures[0].code == "VALIDATION_ERROR"


def test_overflow_is_a_computation_error(make_context, make_trajectory):
    """A finite multiplier that overflows a large value is reported, not clamped away."""
    baseline = make_trajectory({"ctr": [0.02, 0.02], "impressions": [1e308, 1e308]})
    surge = ScenarioConfig(
        type=ScenarioType.CUSTOM,
        name="surge",
        adjustments=[Adjustment(factor="promotion", multiplier=10.0)],
    )
    batch = generate_scenario_batch(
        baseline,
        [ScenarioConfig(type=ScenarioType.REALISTIC), surge],
        make_context(metrics=("ctr", "impressions")),
    )
    assert [s.name for s in batch.scenarios] == ["realistic"]
    failure = batch.failures[0]
    assert failure.code == "COMPUTATION_ERROR"
    assert failure.metric == "impressions"
