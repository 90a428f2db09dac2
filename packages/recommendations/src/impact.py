"""Project the effect of a pivot recommendation onto a baseline trajectory, with uncertainty bounds."""
import math
from typing import Callable, Dict, List, Optional

from packages.shared.src.enums import RecommendationType
from packages.shared.src.metric_catalog import clamp_metric
from packages.shared.src.schemas import (
    PivotRecommendation,
    RecommendationImpact,
    SimulationContext,
    TrajectoryPoint,
)

BASE_UNCERTAINTY = 0.2
MAX_UNCERTAINTY = 0.5
TYPE_UNCERTAINTY = {
    RecommendationType.BUDGET_REALLOCATION: 0.15,
    RecommendationType.CREATIVE_REFRESH: 0.25,
    RecommendationType.AUDIENCE_EXPANSION: 0.3,
    RecommendationType.CHANNEL_SHIFT: 0.35,
    RecommendationType.TIMING_ADJUSTMENT: 0.1,
}


def _ramp(index: int, delay: int, period: int) -> float:
    """0 before delay, then linear to 1 over period points."""
    if index < delay:
        return 0.0
    if period <= 0:
        return 1.0
    return min(1.0, (index - delay) / period)


def _budget_effects(i: int, gain: float) -> Dict[str, float]:
    g = 1.0 + gain * _ramp(i, 0, 3)
    return {"roi": g, "roas": g, "conversions": g, "revenue": g, "cpc": 1.0 / g, "cpa": 1.0 / g}


def _creative_effects(i: int, gain: float) -> Dict[str, float]:
    g = 1.0 + gain * _ramp(i, 5, 7)
    return {"ctr": g, "engagement": g, "engagement_rate": g, "impressions": math.sqrt(g)}


def _audience_effects(i: int, gain: float) -> Dict[str, float]:
    if i < 7:
        return {"reach": 1.05, "impressions": 1.05}
    r = _ramp(i, 7, 14)
    g = 1.0 + gain * r
    # Broader audiences convert a little less efficiently until targeting settles
    return {"reach": g, "impressions": g, "ctr": 0.95 + 0.05 * r}


def _channel_effects(i: int, gain: float) -> Dict[str, float]:
    if i < 7:
        return {"impressions": 0.95}
    g = 1.0 + gain * _ramp(i, 7, 14)
    return {"cpc": 1.0 / g, "cpm": 1.0 / g, "reach": g, "impressions": g}


def _timing_effects(i: int, gain: float) -> Dict[str, float]:
    if i < 1:
        return {}
    g = 1.0 + gain
    return {"impressions": g, "reach": g, "ctr": math.sqrt(g)}


EFFECTS: Dict[RecommendationType, Callable[[int, float], Dict[str, float]]] = {
    RecommendationType.BUDGET_REALLOCATION: _budget_effects,
    RecommendationType.CREATIVE_REFRESH: _creative_effects,
    RecommendationType.AUDIENCE_EXPANSION: _audience_effects,
    RecommendationType.CHANNEL_SHIFT: _channel_effects,
    RecommendationType.TIMING_ADJUSTMENT: _timing_effects,
}


def apply_recommendation(baseline: List[TrajectoryPoint], recommendation: PivotRecommendation) -> List[TrajectoryPoint]:
    """New trajectory with the recommendation's effect curve applied to the metrics it touches."""
    effects = EFFECTS[recommendation.type]
    gain = max(0.0, recommendation.impact_estimate.improvement)
    out = []
    for i, p in enumerate(baseline):
        mults = effects(i, gain)
        metrics = {k: clamp_metric(k, v * mults.get(k, 1.0)) for k, v in p.metrics.items()}
        out.append(TrajectoryPoint(date=p.date, metrics=metrics, confidence=p.confidence))
    return out


def uncertainty_factor(recommendation: PivotRecommendation, context: SimulationContext) -> float:
    base = TYPE_UNCERTAINTY.get(recommendation.type, BASE_UNCERTAINTY)
    base += (1.0 - recommendation.impact_estimate.confidence) * 0.2
    base += (1.0 - context.dataset.data_quality.overall) * 0.15
    return min(MAX_UNCERTAINTY, max(0.0, base))


def _scaled(points: List[TrajectoryPoint], factor: float) -> List[TrajectoryPoint]:
    return [
        TrajectoryPoint(
            date=p.date,
            metrics={k: clamp_metric(k, v * factor) for k, v in p.metrics.items()},
            confidence=p.confidence,
        )
        for p in points
    ]


def _consistency_confidence(baseline: List[float], projected: List[float]) -> float:
    """Share of points that improved, plus a small bonus for longer series; within [0.3, 0.95]."""
    if not baseline or len(baseline) != len(projected):
        return 0.5
    improved = sum(1 for b, p in zip(baseline, projected) if p > b)
    confidence = improved / len(baseline) * 0.8 + min(0.2, len(baseline) / 100.0)
    return min(0.95, max(0.3, confidence))


def estimate_recommendation_impact(
    recommendation: PivotRecommendation,
    baseline: List[TrajectoryPoint],
    context: SimulationContext,
    metric: Optional[str] = None,
) -> RecommendationImpact:
    """Baseline vs projected mean of the primary metric, with lower/upper bound trajectories."""
    metric = metric or recommendation.impact_estimate.metric
    projected = apply_recommendation(baseline, recommendation)
    uncertainty = uncertainty_factor(recommendation, context)
    base_vals = [p.metrics.get(metric, 0.0) for p in baseline]
    proj_vals = [p.metrics.get(metric, 0.0) for p in projected]
    base_mean = sum(base_vals) / len(base_vals) if base_vals else 0.0
    proj_mean = sum(proj_vals) / len(proj_vals) if proj_vals else 0.0
    improvement = (proj_mean - base_mean) / base_mean if base_mean > 0 else 0.0
    return RecommendationImpact(
        recommendation_id=recommendation.id,
        metric=metric,
        baseline_value=base_mean,
        projected_value=proj_mean,
        improvement=improvement,
        confidence=_consistency_confidence(base_vals, proj_vals) if base_vals else 0.0,
        uncertainty=uncertainty,
        projected_trajectory=projected,
        lower_bound=_scaled(projected, 1.0 - uncertainty),
        upper_bound=_scaled(projected, 1.0 + uncertainty),
    )
