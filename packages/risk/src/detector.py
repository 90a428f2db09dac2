"""
Risk detector: performance dips, audience fatigue, competitor threats, and budget overruns.
Deterministic; results are ranked by severity, impact, then probability and filtered by confidence.
"""
import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from packages.shared.src.enums import RiskType, Severity
from packages.shared.src.market import competitor_trends
from packages.shared.src.metric_catalog import (
    COST,
    ENGAGEMENT,
    CONVERSION,
    VOLUME,
    impact_weight,
    is_cost,
    metric_family,
    normalized_weights,
)
from packages.shared.src.schemas import (
    DateRange,
    RiskAlert,
    RiskThresholds,
    SimulationContext,
    TrajectoryPoint,
)

logger = logging.getLogger(__name__)

# Severity bands as multiples of the triggering threshold
DIP_BANDS = ((3.0, Severity.CRITICAL), (2.0, Severity.HIGH))
FATIGUE_BANDS = ((3.0, Severity.CRITICAL), (2.0, Severity.HIGH), (1.5, Severity.MEDIUM))
COMPETITOR_BANDS = ((4.0, Severity.CRITICAL), (2.0, Severity.HIGH), (1.0, Severity.MEDIUM))

CREATIVE_AGE_DAYS = 28
COMPETITOR_METRIC_WEIGHTS = {"ad_spend": 1.0, "impressions": 0.8, "share_of_voice": 1.2}

DIP_RECOMMENDATIONS = {
    ENGAGEMENT: [
        "Review and refresh creative assets to restore engagement",
        "Test new ad copy and visuals against the current creatives",
    ],
    VOLUME: [
        "Expand to fresh audience segments to recover reach",
        "Retest audience targeting and bid strategy for the affected channels",
    ],
    COST: [
        "Review bidding strategy and set cost caps on the affected campaigns",
        "Shift spend toward placements with lower cost per result",
    ],
    CONVERSION: [
        "Audit the landing page and conversion funnel for new friction",
        "Reallocate budget toward the best converting channels",
    ],
}
DEFAULT_DIP_RECOMMENDATIONS = [
    "Investigate the drivers behind the declining metric",
    "Run a controlled test to isolate the cause of the decline",
]
FATIGUE_RECOMMENDATIONS = [
    "Introduce new creative variations to counter audience fatigue",
    "Implement frequency capping to limit repeated exposure",
    "Expand to fresh audience segments with untested messaging",
]
COMPETITOR_RECOMMENDATIONS = [
    "Monitor competitor campaigns and adjust strategy accordingly",
    "Increase bid competitiveness in key segments",
    "Differentiate messaging to protect share of voice",
]
BUDGET_RECOMMENDATIONS = [
    "Implement stricter budget controls on the affected channel",
    "Reduce daily caps to pace spend across the remaining campaign window",
    "Reallocate budget from underperforming channels",
]

ThresholdsArg = Union[RiskThresholds, Mapping[str, Any], None]


def resolve_thresholds(thresholds: ThresholdsArg) -> RiskThresholds:
    """Defaults overridden by a RiskThresholds model or a dict of field overrides."""
    if thresholds is None:
        return RiskThresholds()
    if isinstance(thresholds, RiskThresholds):
        return thresholds
    return RiskThresholds(**dict(thresholds))


def _severity(ratio: float, bands: Tuple[Tuple[float, Severity], ...], floor: Severity) -> Severity:
    for cutoff, severity in bands:
        if ratio >= cutoff:
            return severity
    return floor


def _window(start: date, end: date) -> DateRange:
    """Alert timeframe with end strictly after start."""
    if end <= start:
        end = start + timedelta(days=1)
    return DateRange(start=start, end=end)


def _unit(value: float, low: float = 0.01) -> float:
    """Clamp into (0, 1]."""
    return min(1.0, max(low, value))


def _mean_confidence(points: List[TrajectoryPoint]) -> float:
    if not points:
        return 0.5
    return sum(p.confidence for p in points) / len(points)


def _tracked_metrics(trajectory: List[TrajectoryPoint], context: SimulationContext) -> List[str]:
    present = set(trajectory[0].metrics) if trajectory else set()
    return [s.type for s in context.request.metrics if s.type in present]


def _relative_weight(metric: str, context: SimulationContext) -> float:
    """Metric weight relative to an equal split (1.0 when all metrics weigh the same)."""
    weights = normalized_weights(context.request.metrics)
    if not weights:
        return 1.0
    return weights.get(metric, 0.0) * len(weights)


# ----- performance_dip -----


def _detect_performance_dip(
    trajectory: List[TrajectoryPoint],
    context: SimulationContext,
    thresholds: RiskThresholds,
) -> List[RiskAlert]:
    threshold = thresholds.performance_dip_threshold
    if len(trajectory) < 2 or threshold <= 0:
        return []
    alerts: List[RiskAlert] = []
    for metric in _tracked_metrics(trajectory, context):
        start_value = trajectory[0].metrics.get(metric)
        if start_value is None or start_value <= 0:
            continue
        later = [(i, p.metrics.get(metric)) for i, p in enumerate(trajectory) if i > 0 and p.metrics.get(metric) is not None]
        if not later:
            continue
        cost = is_cost(metric)
        if cost:
            worst_idx, worst = max(later, key=lambda t: t[1])
            decline = (worst - start_value) / start_value
        else:
            worst_idx, worst = min(later, key=lambda t: t[1])
            decline = (start_value - worst) / start_value
        if decline <= threshold:
            continue
        ratio = decline / threshold
        window = trajectory[: worst_idx + 1]
        confidence = _unit(_mean_confidence(window))
        probability = _unit(confidence * (0.6 + 0.4 * min(1.0, ratio / 3.0)))
        impact = min(100.0, decline * 100.0 * impact_weight(metric) * _relative_weight(metric, context))
        verb = "rise" if cost else "decline"
        alerts.append(
            RiskAlert(
                type=RiskType.PERFORMANCE_DIP,
                severity=_severity(ratio, DIP_BANDS, Severity.MEDIUM),
                probability=probability,
                impact=impact,
                confidence=confidence,
                timeframe=_window(trajectory[0].date, trajectory[worst_idx].date),
                description=(
                    f"{metric} is projected to {verb} {decline * 100:.1f}% "
                    f"from {start_value:.4g} to {worst:.4g} by {trajectory[worst_idx].date.isoformat()}"
                ),
                recommendations=list(DIP_RECOMMENDATIONS.get(metric_family(metric), DEFAULT_DIP_RECOMMENDATIONS)),
                metric=metric,
            )
        )
    return alerts


# ----- audience_fatigue -----


def _usable(trajectory: List[TrajectoryPoint], metrics: List[str]) -> List[str]:
    return [m for m in metrics if (trajectory[0].metrics.get(m) or 0) > 0]


def _composite(trajectory: List[TrajectoryPoint], usable: List[str]) -> List[float]:
    """Mean of each metric relative to its first value."""
    out = []
    for p in trajectory:
        ratios = [p.metrics.get(m, 0.0) / trajectory[0].metrics[m] for m in usable]
        out.append(sum(ratios) / len(ratios))
    return out


def _aged_creatives(context: SimulationContext, as_of: date) -> int:
    return sum(
        1
        for a in context.dataset.creative_assets
        if a.active and a.launched_at is not None and (as_of - a.launched_at).days > CREATIVE_AGE_DAYS
    )


def _detect_audience_fatigue(
    trajectory: List[TrajectoryPoint],
    context: SimulationContext,
    thresholds: RiskThresholds,
) -> List[RiskAlert]:
    threshold = thresholds.audience_fatigue_threshold
    if len(trajectory) < 2 or threshold <= 0:
        return []
    tracked = _tracked_metrics(trajectory, context)
    engagement = _usable(trajectory, [m for m in tracked if metric_family(m) == ENGAGEMENT])
    # Fatigue needs a non-engagement comparison; an engagement decline alone is a dip
    others = _usable(trajectory, [m for m in tracked if metric_family(m) != ENGAGEMENT and not is_cost(m)])
    if not engagement or not others:
        return []
    eng = _composite(trajectory, engagement)
    other = _composite(trajectory, others)
    eng_decline = 1.0 - min(eng[1:])
    other_decline = max(0.0, 1.0 - min(other[1:]))
    if eng_decline < threshold or eng_decline - other_decline < threshold / 2.0:
        return []
    onset = next(i for i, v in enumerate(eng) if v <= 1.0 - threshold / 2.0)
    ratio = eng_decline / threshold
    confidence = _unit(_mean_confidence(trajectory[onset:]))
    probability = 0.5 + 0.3 * min(1.0, ratio / 3.0)
    if _aged_creatives(context, trajectory[0].date):
        probability += 0.1
    impact = min(100.0, eng_decline * 100.0 * max(impact_weight(m) for m in engagement))
    return [
        RiskAlert(
            type=RiskType.AUDIENCE_FATIGUE,
            severity=_severity(ratio, FATIGUE_BANDS, Severity.LOW),
            probability=_unit(probability),
            impact=impact,
            confidence=confidence,
            timeframe=_window(trajectory[onset].date, trajectory[-1].date),
            description=(
                f"Engagement metrics ({', '.join(engagement)}) are projected to fall {eng_decline * 100:.1f}% "
                f"while other metrics move {other_decline * 100:.1f}%, a pattern consistent with audience fatigue"
            ),
            recommendations=list(FATIGUE_RECOMMENDATIONS),
            metric=engagement[0],
        )
    ]


# ----- competitor_threat -----


def _detect_competitor_threat(
    trajectory: List[TrajectoryPoint],
    context: SimulationContext,
    thresholds: RiskThresholds,
) -> List[RiskAlert]:
    threshold = thresholds.competitor_growth_threshold
    tf = context.request.timeframe
    alerts: List[RiskAlert] = []
    for t in competitor_trends(context.dataset.market_data.competitor_activity):
        if t.growth <= threshold or t.slope <= 0:
            continue
        ratio = t.growth / threshold if threshold > 0 else 4.0
        confidence = _unit(0.5 + 0.4 * t.step_consistency * min(1.0, t.observations / 3.0))
        probability = _unit(0.4 + 0.5 * min(1.0, t.growth / (2.0 * max(threshold, 1e-9))))
        impact = min(100.0, t.growth * 50.0 * COMPETITOR_METRIC_WEIGHTS.get(t.metric, 1.0))
        alerts.append(
            RiskAlert(
                type=RiskType.COMPETITOR_THREAT,
                severity=_severity(ratio, COMPETITOR_BANDS, Severity.LOW),
                probability=probability,
                impact=impact,
                confidence=confidence,
                timeframe=_window(tf.start_date, tf.end_date),
                description=(
                    f"Rising competitor activity: {t.competitor} {t.metric} grew {t.growth * 100:.1f}% "
                    f"across {t.observations} observations ({t.first_date.isoformat()} to {t.last_date.isoformat()})"
                ),
                recommendations=list(COMPETITOR_RECOMMENDATIONS),
                metric=t.metric,
            )
        )
    return alerts


# ----- budget_overrun -----


def _campaign_window(context: SimulationContext) -> Tuple[date, date]:
    campaign = context.dataset.campaign
    tf = context.request.timeframe
    start = campaign.start_date or tf.start_date
    end = campaign.end_date or tf.end_date
    return start, end


def _detect_budget_overrun(
    trajectory: List[TrajectoryPoint],
    context: SimulationContext,
    thresholds: RiskThresholds,
) -> List[RiskAlert]:
    budget = context.dataset.budget_allocation
    as_of = context.request.timeframe.start_date
    start, end = _campaign_window(context)
    total_days = (end - start).days
    if total_days <= 0:
        return []
    remaining_frac = min(1.0, max(0.0, (end - as_of).days / total_days))
    if remaining_frac <= thresholds.min_time_remaining:
        return []
    dq = context.dataset.data_quality
    confidence = _unit(0.5 + 0.5 * min(1.0, max(0.0, dq.accuracy)))
    alerts: List[RiskAlert] = []
    for channel, allocated in budget.allocated.items():
        if allocated <= 0:
            continue
        spent = budget.spent.get(channel, 0.0)
        utilization = spent / allocated
        if utilization <= thresholds.budget_utilization_threshold:
            continue
        if utilization >= 1.0:
            severity = Severity.CRITICAL
        elif remaining_frac >= 0.5:
            severity = Severity.HIGH
        elif remaining_frac >= 0.25:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        alerts.append(
            RiskAlert(
                type=RiskType.BUDGET_OVERRUN,
                severity=severity,
                probability=_unit(0.6 + 0.4 * remaining_frac),
                impact=min(100.0, utilization * remaining_frac * 100.0),
                confidence=confidence,
                timeframe=_window(as_of, end),
                description=(
                    f"{channel} has spent {utilization * 100:.1f}% of its allocated budget "
                    f"({spent:,.2f} of {allocated:,.2f}) with {remaining_frac * 100:.0f}% of the campaign remaining"
                ),
                recommendations=list(BUDGET_RECOMMENDATIONS),
                metric="spend",
                channel=channel,
            )
        )
    return alerts


Detector = Callable[[List[TrajectoryPoint], SimulationContext, RiskThresholds], List[RiskAlert]]

DETECTORS: Dict[RiskType, Detector] = {
    RiskType.PERFORMANCE_DIP: _detect_performance_dip,
    RiskType.AUDIENCE_FATIGUE: _detect_audience_fatigue,
    RiskType.COMPETITOR_THREAT: _detect_competitor_threat,
    RiskType.BUDGET_OVERRUN: _detect_budget_overrun,
}

# Detectors that read the trajectory; the others depend on market and budget data only
TRAJECTORY_RISK_TYPES = (RiskType.PERFORMANCE_DIP, RiskType.AUDIENCE_FATIGUE)


def rank_risks(risks: List[RiskAlert]) -> List[RiskAlert]:
    """Stable sort: severity, then impact, then probability, all descending."""
    return sorted(risks, key=lambda r: (-r.severity.rank, -r.impact, -r.probability))


def filter_by_confidence(risks: List[RiskAlert], confidence_threshold: float) -> List[RiskAlert]:
    return [r for r in risks if r.confidence >= confidence_threshold]


def detect_risks(
    trajectory: List[TrajectoryPoint],
    context: SimulationContext,
    thresholds: ThresholdsArg = None,
    trajectory_ref: Optional[str] = None,
    risk_types: Optional[Iterable[RiskType]] = None,
) -> List[RiskAlert]:
    """
    Run the detectors over trajectory and context. An empty list means no risks found.
    Empty trajectories are valid: market and budget risks still apply.
    risk_types limits the run to those detectors (all of them by default).
    """
    resolved = resolve_thresholds(thresholds)
    selected = set(RiskType) if risk_types is None else set(risk_types)
    found: List[RiskAlert] = []
    for risk_type in RiskType:
        if risk_type not in selected:
            continue
        found.extend(DETECTORS[risk_type](trajectory, context, resolved))
    if trajectory_ref is not None:
        found = [r.model_copy(update={"trajectory_ref": trajectory_ref}) for r in found]
    ranked = filter_by_confidence(rank_risks(found), resolved.confidence_threshold)
    logger.debug(
        "detect_risks simulation_id=%s ref=%s detected=%d kept=%d",
        context.simulation_id,
        trajectory_ref or "-",
        len(found),
        len(ranked),
    )
    return ranked
