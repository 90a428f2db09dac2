"""
Trajectory forecaster: baseline per-metric points over the requested timeframe.
History is fit with a damped linear trend and blended with industry benchmarks;
point confidence decays with distance from the last historical observation.
"""
import logging
import math
from datetime import date
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from packages.shared.src.errors import ComputationError, InsufficientDataError
from packages.shared.src.metric_catalog import clamp_metric, is_additive, normalized_weights
from packages.shared.src.schemas import (
    BenchmarkData,
    ForecastOptions,
    ForecastResult,
    MetricSpec,
    SimulationContext,
    TrajectoryPoint,
)
from packages.shared.src.trends import LinearTrend, damped_projection, fit_linear_trend
from packages.shared.src.validation import validate_metrics, validate_timeframe

logger = logging.getLogger(__name__)

CONFIDENCE_DECAY_PER_DAY = 0.015
BENCHMARK_FIT_QUALITY = 0.5
MIN_POINT_CONFIDENCE = 0.05
MAX_POINT_CONFIDENCE = 0.99


def _date_grid(context: SimulationContext) -> List[date]:
    """One date per granularity unit across [start_date, end_date)."""
    tf = context.request.timeframe
    freq = f"{tf.granularity.days}D"
    idx = pd.date_range(start=tf.start_date, end=tf.end_date, freq=freq, inclusive="left")
    return [ts.date() for ts in idx]


def _history_frame(context: SimulationContext) -> pd.DataFrame:
    rows = [
        {"date": p.date, "metric": p.metric, "value": p.value}
        for p in context.dataset.historical_performance
        if p.value is not None and math.isfinite(p.value)
    ]
    return pd.DataFrame(rows, columns=["date", "metric", "value"])


def _daily_series(history: pd.DataFrame, metric: str) -> Tuple[List[date], List[float]]:
    """Per-date series for one metric: channels summed for additive metrics, averaged otherwise."""
    sub = history[history["metric"] == metric]
    if sub.empty:
        return [], []
    how = "sum" if is_additive(metric) else "mean"
    daily = sub.groupby("date")["value"].agg(how).sort_index()
    return list(daily.index), [float(v) for v in daily.values]


def _benchmark_median(spec: MetricSpec, benchmarks: List[BenchmarkData]) -> Optional[float]:
    """Sample-size weighted p50 across matching benchmarks (filtered by industry when benchmark_source is set)."""
    matching = [b for b in benchmarks if b.metric == spec.type]
    if spec.benchmark_source:
        preferred = [b for b in matching if b.industry == spec.benchmark_source]
        matching = preferred or matching
    if not matching:
        return None
    weights = np.array([max(1, b.sample_size) for b in matching], dtype=float)
    values = np.array([b.percentile_50 for b in matching], dtype=float)
    return float(np.average(values, weights=weights))


class _MetricModel:
    """Forecast for one metric: trend, benchmark, or a blend of both."""

    def __init__(
        self,
        metric: str,
        trend: Optional[LinearTrend],
        benchmark: Optional[float],
        options: ForecastOptions,
    ) -> None:
        self.metric = metric
        self.trend = trend
        self.benchmark = benchmark
        self.options = options
        if trend is not None:
            self.history_weight = min(1.0, trend.n / float(max(1, options.history_saturation_days)))
        else:
            self.history_weight = 0.0

    @property
    def method(self) -> str:
        if self.trend is None:
            return "benchmark"
        if self.benchmark is None or self.history_weight >= 1.0:
            return "trend"
        return "blend"

    @property
    def fit_quality(self) -> float:
        if self.trend is None:
            return BENCHMARK_FIT_QUALITY
        if self.benchmark is None:
            return self.trend.fit_quality
        w = self.history_weight
        return w * self.trend.fit_quality + (1.0 - w) * BENCHMARK_FIT_QUALITY

    def value_at(self, d: date, period_days: int) -> float:
        if self.trend is None:
            raw = self.benchmark
        else:
            projected = damped_projection(self.trend, d, self.options.damping)
            if self.benchmark is None:
                raw = projected
            else:
                w = self.history_weight
                raw = w * projected + (1.0 - w) * self.benchmark
        if raw is None or not math.isfinite(raw):
            raise ComputationError(f"non-finite forecast for {self.metric} at {d}", metric=self.metric)
        value = clamp_metric(self.metric, raw)
        if period_days > 1 and is_additive(self.metric):
            value *= period_days
        return value

    def horizon(self, d: date, start: date) -> int:
        """Days from the last known observation (or the timeframe start for benchmark-only metrics)."""
        anchor = self.trend.last_date if self.trend is not None else start
        return max(0, (d - anchor).days)


def _build_models(context: SimulationContext, options: ForecastOptions) -> Tuple[Dict[str, _MetricModel], List[str]]:
    history = _history_frame(context)
    benchmarks = context.dataset.market_data.industry_benchmarks
    models: Dict[str, _MetricModel] = {}
    missing: List[str] = []
    for spec in context.request.metrics:
        dates, values = _daily_series(history, spec.type)
        trend = fit_linear_trend(dates, values) if dates else None
        bench = _benchmark_median(spec, benchmarks)
        if trend is None and bench is None:
            missing.append(spec.type)
            continue
        models[spec.type] = _MetricModel(spec.type, trend, bench, options)
    return models, missing


def forecast_with_diagnostics(
    context: SimulationContext,
    options: Optional[ForecastOptions] = None,
) -> ForecastResult:
    """Baseline trajectory plus per-metric method, skipped metrics and warnings."""
    options = options or ForecastOptions()
    validate_timeframe(context.request.timeframe)
    validate_metrics(context)

    models, missing = _build_models(context, options)
    warnings: List[str] = []
    if missing:
        if options.on_insufficient_data == "raise" or not models:
            raise InsufficientDataError(
                f"no historical or benchmark data for metrics: {', '.join(missing)}",
                missing_metrics=missing,
            )
        for m in missing:
            warnings.append(f"metric {m} skipped: no historical or benchmark data")
        logger.warning("forecast skipped metrics without data: %s", missing)

    weights = normalized_weights(s for s in context.request.metrics if s.type in models)
    dq = context.dataset.data_quality.overall
    quality_scale = 0.5 + 0.5 * min(1.0, max(0.0, dq))
    start = context.request.timeframe.start_date
    period_days = context.request.timeframe.granularity.days

    points: List[TrajectoryPoint] = []
    for d in _date_grid(context):
        metrics: Dict[str, float] = {}
        confidence = 0.0
        for name, model in models.items():
            metrics[name] = model.value_at(d, period_days)
            decay = math.exp(-CONFIDENCE_DECAY_PER_DAY * model.horizon(d, start))
            confidence += weights[name] * model.fit_quality * quality_scale * decay
        confidence = min(MAX_POINT_CONFIDENCE, max(MIN_POINT_CONFIDENCE, confidence))
        points.append(TrajectoryPoint(date=d, metrics=metrics, confidence=confidence))

    logger.debug(
        "forecast simulation_id=%s points=%d metrics=%d",
        context.simulation_id,
        len(points),
        len(models),
    )
    return ForecastResult(
        trajectory=points,
        methods={name: model.method for name, model in models.items()},
        skipped_metrics=missing if models else [],
        warnings=warnings,
    )


def forecast(context: SimulationContext, options: Optional[ForecastOptions] = None) -> List[TrajectoryPoint]:
    """Baseline trajectory for the requested timeframe. Pure function of context."""
    return forecast_with_diagnostics(context, options).trajectory
