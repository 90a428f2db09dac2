"""
Recommendation synthesizer: turn risks, scenario upside, and dataset signals into prioritized
pivot recommendations. Deterministic ids, no shared numbering state; inputs are never mutated.
"""
import logging
from typing import Dict, List, Optional, Tuple

from packages.recommendations.src.insights import channel_utilization, context_candidates, reallocation_target
from packages.scenarios.src.generator import DEFAULT_KEY_FACTORS
from packages.shared.src.enums import Effort, RecommendationType, RiskType, ScenarioType, Severity
from packages.shared.src.metric_catalog import (
    CONVERSION,
    COST,
    ENGAGEMENT,
    VOLUME,
    is_cost,
    metric_family,
    normalized_weights,
)
from packages.shared.src.schemas import (
    ImpactEstimate,
    Implementation,
    PivotRecommendation,
    RiskAlert,
    ScenarioResult,
    SimulationContext,
    SynthesisOptions,
    TrajectoryPoint,
)

logger = logging.getLogger(__name__)

SEVERITY_PRIORITY = {
    Severity.LOW: 2,
    Severity.MEDIUM: 4,
    Severity.HIGH: 6,
    Severity.CRITICAL: 8,
}

EFFORT = {
    RecommendationType.BUDGET_REALLOCATION: Effort.LOW,
    RecommendationType.CREATIVE_REFRESH: Effort.MEDIUM,
    RecommendationType.AUDIENCE_EXPANSION: Effort.MEDIUM,
    RecommendationType.CHANNEL_SHIFT: Effort.HIGH,
    RecommendationType.TIMING_ADJUSTMENT: Effort.LOW,
}

TIMELINE = {
    RecommendationType.BUDGET_REALLOCATION: "1-2 days",
    RecommendationType.CREATIVE_REFRESH: "5-7 days",
    RecommendationType.AUDIENCE_EXPANSION: "3-5 days",
    RecommendationType.CHANNEL_SHIFT: "7-10 days",
    RecommendationType.TIMING_ADJUSTMENT: "1-2 days",
}

# Share of a risk's impact a recommendation of this type is expected to win back
RECOVERY_RATE = {
    RecommendationType.BUDGET_REALLOCATION: 0.5,
    RecommendationType.CREATIVE_REFRESH: 0.6,
    RecommendationType.AUDIENCE_EXPANSION: 0.5,
    RecommendationType.CHANNEL_SHIFT: 0.4,
    RecommendationType.TIMING_ADJUSTMENT: 0.3,
}

DIP_TYPE_BY_FAMILY = {
    ENGAGEMENT: RecommendationType.CREATIVE_REFRESH,
    VOLUME: RecommendationType.AUDIENCE_EXPANSION,
    COST: RecommendationType.CHANNEL_SHIFT,
    CONVERSION: RecommendationType.BUDGET_REALLOCATION,
}

RISK_TYPE_MAP = {
    RiskType.AUDIENCE_FATIGUE: RecommendationType.CREATIVE_REFRESH,
    RiskType.COMPETITOR_THREAT: RecommendationType.CHANNEL_SHIFT,
    RiskType.BUDGET_OVERRUN: RecommendationType.BUDGET_REALLOCATION,
}


def recommendation_type_for(risk: RiskAlert) -> RecommendationType:
    if risk.type == RiskType.PERFORMANCE_DIP:
        family = metric_family(risk.metric or "")
        return DIP_TYPE_BY_FAMILY.get(family, RecommendationType.TIMING_ADJUSTMENT)
    return RISK_TYPE_MAP[risk.type]


def risk_priority(risk: RiskAlert) -> int:
    return min(10, SEVERITY_PRIORITY[risk.severity] + round(2 * risk.probability))


def _top_segment(context: SimulationContext) -> str:
    segments = sorted(context.dataset.audience_insights, key=lambda a: (-a.growth_rate, a.segment))
    return segments[0].segment if segments else "best performing"


def _reallocation_pair(
    context: SimulationContext,
    ceiling: float,
    source: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """(channel to release budget from, channel below ceiling to receive it)."""
    util = channel_utilization(context.dataset.budget_allocation)
    if not util:
        return None, None
    hot = source if source in util else sorted(util, key=lambda ch: (-util[ch], ch))[0]
    return hot, reallocation_target(util, ceiling, exclude=hot)


def _implementation(
    rec_type: RecommendationType,
    context: SimulationContext,
    subject: str,
    options: SynthesisOptions,
    channel: Optional[str] = None,
) -> Implementation:
    if rec_type == RecommendationType.BUDGET_REALLOCATION:
        hot, cold = _reallocation_pair(context, options.budget_utilization_threshold, channel)
        if hot and cold:
            description = f"Reallocate budget from {hot} to {cold} to address {subject}"
            steps = [
                f"Reduce the remaining {hot} budget and daily caps",
                f"Increase the {cold} budget by the amount released",
                "Monitor performance for 3-5 days",
                "Adjust further based on results",
            ]
        else:
            description = f"Rebalance budget across channels to address {subject}"
            steps = [
                "Rank channels by marginal return on spend",
                "Move budget from the weakest channel to the strongest",
                "Monitor performance for 3-5 days",
                "Adjust further based on results",
            ]
    elif rec_type == RecommendationType.CREATIVE_REFRESH:
        description = f"Refresh creative assets to address {subject}"
        steps = [
            "Identify underperforming creative assets",
            "Develop new creative variations",
            "A/B test new creatives against current ones",
            "Gradually replace underperforming assets",
            "Monitor engagement recovery",
        ]
    elif rec_type == RecommendationType.AUDIENCE_EXPANSION:
        segment = _top_segment(context)
        description = f"Expand to the {segment} audience segment to address {subject}"
        steps = [
            f"Create a lookalike audience based on {segment}",
            "Start with a small test budget (10-15% of total)",
            "Monitor performance against existing segments",
            "Scale budget if performance meets targets",
            "Optimize targeting based on initial results",
        ]
    elif rec_type == RecommendationType.CHANNEL_SHIFT:
        description = f"Shift part of the budget to an alternative channel to address {subject}"
        steps = [
            "Set up the campaign on the alternative channel",
            "Allocate 20% of budget for testing",
            "Run parallel campaigns for comparison",
            "Monitor cost efficiency and performance",
            "Gradually shift more budget if successful",
        ]
    else:
        description = f"Adjust ad scheduling to address {subject}"
        steps = [
            "Analyze current scheduling patterns",
            "Identify optimal time windows",
            "Adjust ad scheduling settings",
            "Monitor performance changes",
            "Fine-tune based on results",
        ]
    return Implementation(description=description, steps=steps, effort=EFFORT[rec_type], timeline=TIMELINE[rec_type])


def _primary_metric(context: SimulationContext) -> str:
    weights = normalized_weights(context.request.metrics)
    return max(weights, key=weights.get) if weights else "performance"


def _from_risk(risk: RiskAlert, context: SimulationContext, options: SynthesisOptions) -> PivotRecommendation:
    rec_type = recommendation_type_for(risk)
    if risk.type in (RiskType.PERFORMANCE_DIP, RiskType.AUDIENCE_FATIGUE) and risk.metric:
        metric = risk.metric
    else:
        metric = _primary_metric(context)
    improvement = round(risk.impact / 100.0 * RECOVERY_RATE[rec_type], 4)
    subject = risk.type.value.replace("_", " ")
    if risk.channel:
        subject = f"the {risk.channel} {subject}"
    key = risk.channel or risk.metric or "all"
    source = f"risk:{risk.type.value}:{key}"
    return PivotRecommendation(
        id=f"{rec_type.value}:{risk.type.value}:{key}",
        type=rec_type,
        priority=risk_priority(risk),
        impact_estimate=ImpactEstimate(
            metric=metric,
            improvement=improvement,
            confidence=min(1.0, risk.confidence * 0.9),
        ),
        implementation=_implementation(rec_type, context, subject, options, channel=risk.channel),
        source=source,
    )


# ----- Opportunities (scenario upside) -----


def _means(trajectory: List[TrajectoryPoint]) -> Dict[str, float]:
    if not trajectory:
        return {}
    sums: Dict[str, float] = {}
    for p in trajectory:
        for k, v in p.metrics.items():
            sums[k] = sums.get(k, 0.0) + v
    return {k: v / len(trajectory) for k, v in sums.items()}


def metric_deltas(scenario: List[TrajectoryPoint], baseline: List[TrajectoryPoint]) -> Dict[str, float]:
    """Relative change of each metric's mean; cost metrics count a decrease as positive."""
    s, b = _means(scenario), _means(baseline)
    out = {}
    for k, base in b.items():
        if k not in s or base <= 0:
            continue
        delta = (s[k] - base) / base
        out[k] = -delta if is_cost(k) else delta
    return out


def weighted_delta(deltas: Dict[str, float], context: SimulationContext) -> float:
    weights = normalized_weights(s for s in context.request.metrics if s.type in deltas)
    return sum(weights[m] * deltas[m] for m in weights)


def scenario_drivers(scenario: ScenarioResult) -> List[str]:
    """Key factors beyond the scenario type's defaults and its percentile shift: adjustments and market effects."""
    defaults = set(DEFAULT_KEY_FACTORS.get(scenario.type, [])) | {"percentile_shift"}
    return [f for f in scenario.key_factors if f not in defaults]


def _opportunity_type(drivers: List[str]) -> RecommendationType:
    factors = set(drivers)
    if factors & {"seasonal", "seasonal_trends"}:
        return RecommendationType.TIMING_ADJUSTMENT
    if any(f.startswith("creative") for f in factors):
        return RecommendationType.CREATIVE_REFRESH
    if any(f.startswith("audience") for f in factors):
        return RecommendationType.AUDIENCE_EXPANSION
    return RecommendationType.BUDGET_REALLOCATION


def _from_opportunity(
    scenario: ScenarioResult,
    baseline: List[TrajectoryPoint],
    context: SimulationContext,
    options: SynthesisOptions,
) -> Optional[PivotRecommendation]:
    # Upside from the percentile mapping alone is not actionable
    drivers = scenario_drivers(scenario)
    if not drivers:
        return None
    deltas = metric_deltas(scenario.trajectory, baseline)
    if not deltas:
        return None
    delta = weighted_delta(deltas, context)
    if delta < options.opportunity_threshold:
        return None
    metric = max(sorted(deltas), key=lambda m: deltas[m])
    rec_type = _opportunity_type(drivers)
    priority = min(10, max(1, round(delta * 10 + 4 * scenario.probability)))
    subject = f"the {scenario.name} scenario upside ({delta * 100:.1f}%, driven by {', '.join(drivers)})"
    return PivotRecommendation(
        id=f"{rec_type.value}:scenario:{scenario.name}",
        type=rec_type,
        priority=priority,
        impact_estimate=ImpactEstimate(
            metric=metric,
            improvement=round(deltas[metric], 4),
            confidence=scenario.confidence,
        ),
        implementation=_implementation(rec_type, context, subject, options),
        source=f"scenario:{scenario.name}",
    )


def _resolve_baseline(
    scenarios: List[ScenarioResult],
    baseline: Optional[List[TrajectoryPoint]],
) -> Tuple[Optional[List[TrajectoryPoint]], Optional[str]]:
    if baseline is not None:
        return baseline, None
    for s in scenarios:
        if s.type == ScenarioType.REALISTIC:
            return s.trajectory, s.name
    return None, None


def synthesize(
    risks: List[RiskAlert],
    scenarios: List[ScenarioResult],
    context: SimulationContext,
    options: Optional[SynthesisOptions] = None,
    baseline: Optional[List[TrajectoryPoint]] = None,
) -> List[PivotRecommendation]:
    """
    One recommendation per significant risk, driven scenario opportunity, or dataset signal
    (channel efficiency and cost, creative scores, audience growth, timing), highest priority first.
    Recommendations sharing an id are merged, keeping the higher priority.
    """
    options = options or SynthesisOptions()
    candidates: List[PivotRecommendation] = [_from_risk(r, context, options) for r in risks]

    reference, reference_name = _resolve_baseline(scenarios, baseline)
    if reference is not None:
        for s in scenarios:
            if s.name == reference_name:
                continue
            rec = _from_opportunity(s, reference, context, options)
            if rec is not None:
                candidates.append(rec)
    candidates.extend(context_candidates(context, options))

    best: Dict[str, PivotRecommendation] = {}
    for rec in candidates:
        current = best.get(rec.id)
        if current is None or rec.priority > current.priority:
            best[rec.id] = rec

    kept = [
        r
        for r in best.values()
        if abs(r.impact_estimate.improvement) >= options.min_impact_threshold
        and r.impact_estimate.confidence >= options.min_confidence_threshold
    ]
    kept.sort(key=lambda r: -r.priority)
    result = kept[: max(0, options.max_recommendations)]
    logger.debug(
        "synthesize simulation_id=%s candidates=%d kept=%d",
        context.simulation_id,
        len(candidates),
        len(result),
    )
    return result
