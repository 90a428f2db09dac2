"""Trajectory forecaster tests (history trend, benchmark blending, confidence decay)."""
from datetime import timedelta

import pytest

from packages.forecasting.src.forecaster import forecast, forecast_with_diagnostics
from packages.shared.src.enums import Granularity
from packages.shared.src.errors import InsufficientDataError, ValidationError
from packages.shared.src.schemas import BenchmarkData, ForecastOptions, MetricSpec


def _bench(metric, p50, industry="retail", sample_size=100):
    return BenchmarkData(
        industry=industry,
        metric=metric,
        percentile_25=p50 * 0.7,
        percentile_50=p50,
        percentile_75=p50 * 1.3,
        sample_size=sample_size,
    )


def test_daily_grid_is_half_open(make_context, make_history):
    ctx = make_context(history=make_history("ctr", [0.02] * 30), days=30)
    points = forecast(ctx)
    assert len(points) == 30
    assert points[0].date == ctx.request.timeframe.start_date
    assert points[-1].date == ctx.request.timeframe.end_date - timedelta(days=1)


def test_weekly_grid_scales_additive_metrics(make_context, make_history):
    ctx = make_context(
        metrics=("impressions", "ctr"),
        history=make_history("impressions", [1000] * 28) + make_history("ctr", [0.02] * 28),
        days=28,
        granularity=Granularity.WEEKLY,
    )
    points = forecast(ctx)
    assert len(points) == 4
    assert points[0].metrics["impressions"] == pytest.approx(7000, rel=1e-6)
    assert points[0].metrics["ctr"] == pytest.approx(0.02, rel=1e-6)


def test_channels_are_summed_for_additive_metrics(make_context, make_history):
    history = make_history("impressions", [500] * 20, channel="meta") + make_history(
        "impressions", [500] * 20, channel="google"
    )
    ctx = make_context(metrics=("impressions",), history=history, days=5)
    assert forecast(ctx)[0].metrics["impressions"] == pytest.approx(1000, rel=1e-6)


def test_confidence_decays_with_horizon(make_context, make_history, ramp):
    ctx = make_context(history=make_history("ctr", ramp(0.02, 0.03, 30)), days=30)
    points = forecast(ctx)
    confidences = [p.confidence for p in points]
    assert all(a >= b for a, b in zip(confidences, confidences[1:]))
    assert confidences[0] > confidences[-1]
    assert all(0 < c <= 1 for c in confidences)


def test_rising_history_extrapolates_with_damping(make_context, make_history, ramp):
    values = ramp(0.01, 0.03, 30)
    ctx = make_context(history=make_history("ctr", values), days=30)
    ctr = [p.metrics["ctr"] for p in forecast(ctx)]
    slope = (values[-1] - values[0]) / 29
    assert ctr[0] > values[-1]
    assert all(a < b for a, b in zip(ctr, ctr[1:]))
    # Damped: well below straight-line extrapolation by the end of the window
    assert ctr[-1] < values[-1] + slope * 30


def test_benchmark_only_metric(make_context):
    ctx = make_context(benchmarks=[_bench("ctr", 0.025)], days=10)
    result = forecast_with_diagnostics(ctx)
    assert result.methods == {"ctr": "benchmark"}
    assert all(p.metrics["ctr"] == pytest.approx(0.025) for p in result.trajectory)


def test_short_history_blends_with_benchmark(make_context, make_history):
    ctx = make_context(history=make_history("ctr", [0.04] * 7), benchmarks=[_bench("ctr", 0.02)], days=5)
    result = forecast_with_diagnostics(ctx)
    assert result.methods["ctr"] == "blend"
    # 7 of 14 history days -> half weight on each source
    assert result.trajectory[0].metrics["ctr"] == pytest.approx(0.03, rel=1e-6)


def test_benchmark_source_selects_industry(make_context):
    ctx = make_context(
        benchmarks=[_bench("ctr", 0.02, industry="retail"), _bench("ctr", 0.05, industry="finance")],
        days=3,
    )
    request = ctx.request.model_copy(update={"metrics": [MetricSpec(type="ctr", benchmark_source="finance")]})
    ctx = ctx.model_copy(update={"request": request})
    assert forecast(ctx)[0].metrics["ctr"] == pytest.approx(0.05)


def test_rates_are_clamped(make_context, make_history, ramp):
    ctx = make_context(history=make_history("ctr", ramp(0.5, 0.98, 30)), days=60)
    assert all(0.0 <= p.metrics["ctr"] <= 1.0 for p in forecast(ctx))


def test_missing_data_raises_insufficient_data(make_context, make_history):
    ctx = make_context(metrics=("ctr", "cpc"), history=make_history("ctr", [0.02] * 10))
    with pytest.raises(InsufficientDataError) as exc:
        forecast(ctx)
    assert exc.value.missing_metrics == ["cpc"]
    assert exc.value.retryable is False


def test_skip_mode_drops_metric_with_warning(make_context, make_history):
    ctx = make_context(metrics=("ctr", "cpc"), history=make_history("ctr", [0.02] * 10), days=5)
    result = forecast_with_diagnostics(ctx, ForecastOptions(on_insufficient_data="skip"))
    assert result.skipped_metrics == ["cpc"]
    assert "cpc" not in result.trajectory[0].metrics
    assert result.warnings


def test_skip_mode_still_raises_when_nothing_is_forecastable(make_context):
    ctx = make_context(metrics=("ctr",))
    with pytest.raises(InsufficientDataError):
        forecast(ctx, ForecastOptions(on_insufficient_data="skip"))


def test_rejects_inverted_timeframe(make_context, make_history):
    ctx = make_context(history=make_history("ctr", [0.02] * 10), days=0)
    with pytest.raises(ValidationError):
        forecast(ctx)


def test_poor_data_quality_lowers_confidence(make_context, make_history):
    history = make_history("ctr", [0.02, 0.021, 0.019, 0.02] * 5)
    good = forecast(make_context(history=history, data_quality=0.95, days=5))
    poor = forecast(make_context(history=history, data_quality=0.2, days=5))
    assert good[0].confidence > poor[0].confidence


def test_forecast_is_pure(make_context, make_history, ramp):
    ctx = make_context(history=make_history("ctr", ramp(0.04, 0.02, 20)), days=10)
    before = ctx.model_dump()
    assert forecast(ctx) == forecast(ctx)
    assert ctx.model_dump() == before
