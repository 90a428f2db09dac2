"""
Forecast accuracy tracking: match a stored simulation's baseline trajectory with observed
performance and report MAPE, RMSE, MAE, R^2 and confidence calibration, plus degradation
alerts against a previous evaluation.
"""
import logging
import math
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from packages.shared.src.enums import Severity
from packages.shared.src.errors import InsufficientDataError
from packages.shared.src.metric_catalog import is_additive
from packages.shared.src.schemas import (
    AccuracyAlert,
    AccuracyMetrics,
    AccuracyReport,
    PerformanceMetric,
    PredictionComparison,
    SimulationResultBundle,
    TrajectoryPoint,
)

logger = logging.getLogger(__name__)

ACCURATE_PERCENT_ERROR = 10.0  # a prediction within 10% counts as accurate for calibration
DEGRADATION_FACTOR = 1.2
SEVERE_DEGRADATION_FACTOR = 1.5
MIN_CALIBRATION = 0.7
POOR_CALIBRATION = 0.5
MIN_R2 = 0.6
POOR_R2 = 0.3
STATUS_BANDS = ((5.0, "excellent"), (15.0, "good"), (30.0, "degraded"))


def _actuals_frame(actuals: List[PerformanceMetric]) -> pd.DataFrame:
    """One observed value per (date, metric): channel rows summed for additive metrics, averaged otherwise."""
    rows = [
        {"date": a.date, "metric": a.metric, "value": a.value}
        for a in actuals
        if math.isfinite(a.value)
    ]
    if not rows:
        return pd.DataFrame(columns=["date", "metric", "value"])
    df = pd.DataFrame(rows)
    out = []
    for metric, group in df.groupby("metric"):
        agg = "sum" if is_additive(metric) else "mean"
        daily = group.groupby("date", as_index=False)["value"].agg(agg)
        daily["metric"] = metric
        out.append(daily)
    return pd.concat(out, ignore_index=True)


def compare_with_actuals(
    trajectory: List[TrajectoryPoint],
    actuals: List[PerformanceMetric],
) -> List[PredictionComparison]:
    """Pair each trajectory value with the observed value for the same date and metric. Unobserved points are skipped."""
    frame = _actuals_frame(actuals)
    observed: Dict[tuple, float] = {
        (row.date, row.metric): float(row.value) for row in frame.itertuples(index=False)
    }
    comparisons = []
    for point in trajectory:
        for metric, predicted in sorted(point.metrics.items()):
            actual = observed.get((point.date, metric))
            if actual is None:
                continue
            error = abs(actual - predicted)
            comparisons.append(
                PredictionComparison(
                    date=point.date,
                    metric=metric,
                    predicted=predicted,
                    actual=actual,
                    confidence=point.confidence,
                    error=error,
                    percentage_error=error / abs(actual) * 100.0 if actual != 0 else 0.0,
                )
            )
    return comparisons


def confidence_calibration(comparisons: List[PredictionComparison]) -> float:
    """
    1 minus the count-weighted gap between each confidence decile and the share of its
    predictions that landed within 10% of the actual value. 1.0 is perfectly calibrated.
    """
    if not comparisons:
        return 0.0
    df = pd.DataFrame(
        {
            "bin": [math.floor(c.confidence * 10) / 10 for c in comparisons],
            "accurate": [c.percentage_error < ACCURATE_PERCENT_ERROR for c in comparisons],
        }
    )
    bins = df.groupby("bin", as_index=False).agg(total=("accurate", "size"), accuracy=("accurate", "mean"))
    gap = (bins["total"] * (bins["bin"] - bins["accuracy"]).abs()).sum()
    return float(1.0 - gap / bins["total"].sum())


def accuracy_metrics(comparisons: List[PredictionComparison]) -> AccuracyMetrics:
    if not comparisons:
        raise InsufficientDataError("No predicted values could be matched with actual performance")
    actual = np.array([c.actual for c in comparisons], dtype=float)
    predicted = np.array([c.predicted for c in comparisons], dtype=float)
    errors = np.abs(actual - predicted)
    ss_tot = float(np.sum((actual - actual.mean()) ** 2))
    ss_res = float(np.sum((actual - predicted) ** 2))
    return AccuracyMetrics(
        count=len(comparisons),
        mape=float(np.mean([c.percentage_error for c in comparisons])),
        rmse=float(np.sqrt(np.mean(errors**2))),
        mae=float(errors.mean()),
        r2_score=1.0 - ss_res / ss_tot if ss_tot != 0 else 0.0,
        confidence_calibration=confidence_calibration(comparisons),
    )


def performance_status(metrics: Optional[AccuracyMetrics]) -> str:
    if metrics is None:
        return "insufficient_data"
    for ceiling, status in STATUS_BANDS:
        if metrics.mape < ceiling:
            return status
    return "poor"


def accuracy_alerts(current: AccuracyMetrics, previous: Optional[AccuracyMetrics] = None) -> List[AccuracyAlert]:
    alerts = []
    if previous is not None and previous.mape > 0 and current.mape > previous.mape * DEGRADATION_FACTOR:
        alerts.append(
            AccuracyAlert(
                type="accuracy_degradation",
                severity=Severity.HIGH if current.mape > previous.mape * SEVERE_DEGRADATION_FACTOR else Severity.MEDIUM,
                message=(
                    f"Model accuracy has degraded. MAPE increased from {previous.mape:.2f}% "
                    f"to {current.mape:.2f}%"
                ),
                details={
                    "previous_mape": previous.mape,
                    "current_mape": current.mape,
                    "degradation_percentage": (current.mape - previous.mape) / previous.mape * 100.0,
                },
            )
        )
    if current.confidence_calibration < MIN_CALIBRATION:
        alerts.append(
            AccuracyAlert(
                type="confidence_miscalibration",
                severity=Severity.HIGH if current.confidence_calibration < POOR_CALIBRATION else Severity.MEDIUM,
                message=(
                    "Model confidence scores are poorly calibrated. "
                    f"Calibration score: {current.confidence_calibration:.2f}"
                ),
                details={"calibration_score": current.confidence_calibration},
            )
        )
    if current.r2_score < MIN_R2:
        alerts.append(
            AccuracyAlert(
                type="prediction_bias",
                severity=Severity.HIGH if current.r2_score < POOR_R2 else Severity.MEDIUM,
                message=f"Model shows poor predictive power. R^2 score: {current.r2_score:.2f}",
                details={"r2_score": current.r2_score},
            )
        )
    return alerts


_ALERT_RECOMMENDATIONS = {
    "accuracy_degradation": "Implement automated model retraining pipeline",
    "confidence_miscalibration": "Review confidence score calculation methodology",
    "prediction_bias": "Analyze prediction residuals for systematic bias patterns",
}


def accuracy_recommendations(metrics: Optional[AccuracyMetrics], alerts: List[AccuracyAlert]) -> List[str]:
    if metrics is None:
        return ["Collect more actual performance data to enable accuracy assessment"]
    out = []
    if metrics.mape > 20:
        out += ["Consider retraining the model with more recent data", "Review input features for data quality issues"]
    elif metrics.mape > 10:
        out.append("Monitor model performance closely for further degradation")
    if metrics.confidence_calibration < MIN_CALIBRATION:
        out += [
            "Recalibrate confidence scores using Platt scaling or isotonic regression",
            "Consider ensemble methods to improve confidence estimation",
        ]
    if metrics.r2_score < MIN_R2:
        out += ["Investigate feature engineering opportunities", "Consider more complex model architectures"]
    out += [_ALERT_RECOMMENDATIONS[a.type] for a in alerts]
    return list(dict.fromkeys(out))


def evaluate_accuracy(
    bundle: SimulationResultBundle,
    actuals: List[PerformanceMetric],
    previous: Optional[AccuracyMetrics] = None,
) -> AccuracyReport:
    """
    Evaluate a simulation's baseline trajectory against observed performance.

    With nothing to compare the report carries status insufficient_data and no metrics;
    otherwise it carries overall and per-metric accuracy, alerts (degradation only when
    previous is given) and recommendations.
    """
    comparisons = compare_with_actuals(bundle.trajectories, actuals)
    overall = accuracy_metrics(comparisons) if comparisons else None
    by_metric = {}
    for metric in sorted({c.metric for c in comparisons}):
        by_metric[metric] = accuracy_metrics([c for c in comparisons if c.metric == metric])
    alerts = accuracy_alerts(overall, previous) if overall is not None else []
    report = AccuracyReport(
        simulation_id=bundle.simulation_id,
        campaign_id=bundle.campaign_id,
        model_id=bundle.model_metadata.model_id,
        engine_version=bundle.model_metadata.engine_version,
        comparisons=comparisons,
        overall=overall,
        by_metric=by_metric,
        status=performance_status(overall),
        alerts=alerts,
        recommendations=accuracy_recommendations(overall, alerts),
    )
    logger.info(
        "accuracy simulation_id=%s comparisons=%d status=%s alerts=%d",
        bundle.simulation_id,
        len(comparisons),
        report.status,
        len(alerts),
    )
    return report
