"""Metric families, aggregation rules, and scoring weights shared by every engine stage."""
from typing import Dict, Iterable, List

from packages.shared.src.schemas import MetricSpec

# Family names
ENGAGEMENT = "engagement"
VOLUME = "volume"
COST = "cost"
CONVERSION = "conversion"
OTHER = "other"

RATE_METRICS = frozenset({
    "ctr",
    "engagement_rate",
    "engagement",
    "conversion_rate",
    "cvr",
    "video_completion_rate",
    "bounce_rate",
})
ENGAGEMENT_METRICS = frozenset({
    "ctr",
    "engagement",
    "engagement_rate",
    "likes",
    "shares",
    "comments",
    "saves",
    "video_views",
    "video_completion_rate",
})
VOLUME_METRICS = frozenset({"impressions", "reach", "clicks", "sessions"})
COST_METRICS = frozenset({"cpc", "cpm", "cpa", "cost_per_conversion", "spend"})
CONVERSION_METRICS = frozenset({"conversions", "conversion_rate", "cvr", "revenue", "roas", "roi"})

# Summed per day when several channels report the same date; everything else is averaged
ADDITIVE_METRICS = frozenset({
    "impressions",
    "reach",
    "clicks",
    "sessions",
    "conversions",
    "revenue",
    "spend",
    "likes",
    "shares",
    "comments",
    "saves",
    "video_views",
})

# Percentile elasticities: multiplier = percentile_factor ** elasticity
_ELASTICITY = {
    ENGAGEMENT: 1.2,
    VOLUME: 0.8,
    COST: 0.6,
    CONVERSION: 1.0,
    OTHER: 1.0,
}

# Relative business importance of a decline in each metric
IMPACT_WEIGHTS = {
    "ctr": 1.2,
    "engagement": 1.1,
    "engagement_rate": 1.1,
    "conversions": 1.5,
    "conversion_rate": 1.4,
    "revenue": 1.5,
    "roas": 1.3,
    "impressions": 0.8,
    "reach": 0.9,
    "clicks": 1.0,
    "cpc": 1.0,
    "cpm": 0.8,
    "cpa": 1.2,
}


def metric_family(metric: str) -> str:
    """Family used for recommendations and elasticities. Engagement wins over conversion for shared names."""
    m = metric.lower()
    if m in ENGAGEMENT_METRICS:
        return ENGAGEMENT
    if m in COST_METRICS:
        return COST
    if m in CONVERSION_METRICS:
        return CONVERSION
    if m in VOLUME_METRICS:
        return VOLUME
    return OTHER


def is_rate(metric: str) -> bool:
    return metric.lower() in RATE_METRICS


def is_additive(metric: str) -> bool:
    return metric.lower() in ADDITIVE_METRICS


def is_cost(metric: str) -> bool:
    """Cost metrics are adverse when they rise."""
    return metric.lower() in COST_METRICS


def elasticity(metric: str) -> float:
    return _ELASTICITY[metric_family(metric)]


def impact_weight(metric: str) -> float:
    return IMPACT_WEIGHTS.get(metric.lower(), 1.0)


def clamp_metric(metric: str, value: float) -> float:
    """Rates live in [0, 1]; every other metric is non-negative."""
    if value < 0.0:
        return 0.0
    if is_rate(metric) and value > 1.0:
        return 1.0
    return value


def normalized_weights(metrics: Iterable[MetricSpec]) -> Dict[str, float]:
    """Weights by metric type summing to 1. All-zero weights become equal weights."""
    specs = list(metrics)
    if not specs:
        return {}
    total = sum(max(0.0, s.weight) for s in specs)
    if total <= 0:
        return {s.type: 1.0 / len(specs) for s in specs}
    return {s.type: max(0.0, s.weight) / total for s in specs}


def metrics_in_family(metrics: Iterable[str], family: str) -> List[str]:
    return [m for m in metrics if metric_family(m) == family]
