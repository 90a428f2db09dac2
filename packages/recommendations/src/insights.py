"""
Context-driven recommendation candidates, read from the enriched dataset rather than from risks:
channel efficiency and cost from per-channel history, creative performance scores, growing
audience segments, and day-of-week timing patterns.
"""
import logging
from typing import Dict, List, Optional, Tuple

import pandas as pd

from packages.shared.src.enums import Effort, RecommendationType
from packages.shared.src.metric_catalog import ENGAGEMENT, VOLUME, is_additive, is_cost, metric_family, normalized_weights
from packages.shared.src.schemas import (
    BudgetData,
    ImpactEstimate,
    Implementation,
    PivotRecommendation,
    SimulationContext,
    SynthesisOptions,
)

logger = logging.getLogger(__name__)

EFFICIENCY_GAP = 0.2  # channels 20% above / below mean efficiency
MIN_REALLOCATION_GAIN = 0.05
REALLOCATION_SHARE = 0.3  # share of a channel's unspent budget moved at once
CPC_GAP = 0.3
CHANNEL_TEST_SHARE = 0.2
CREATIVE_GAP = 0.1
MIN_SEGMENT_SIZE = 10000
SATURATED_ENGAGEMENT = 0.8
TIMING_GAP = 0.15
TIMING_SHIFT_SHARE = 0.25
MIN_TIMING_DAYS = 14
MAX_PER_GENERATOR = 3
FULL_HISTORY_DAYS = 30


def channel_utilization(budget: BudgetData) -> Dict[str, float]:
    """spent / allocated per channel with a positive allocation."""
    return {
        ch: budget.spent.get(ch, 0.0) / alloc
        for ch, alloc in sorted(budget.allocated.items())
        if alloc > 0
    }


def reallocation_target(
    utilization: Dict[str, float],
    ceiling: float,
    exclude: Optional[str] = None,
) -> Optional[str]:
    """Least utilized channel still below ceiling, or None when every other channel is at or over it."""
    targets = [ch for ch in sorted(utilization) if ch != exclude and utilization[ch] < ceiling]
    if not targets:
        return None
    return min(targets, key=lambda ch: utilization[ch])


def _priority(improvement: float, confidence: float) -> int:
    return min(10, max(1, round(10 * improvement + 5 * confidence)))


def _history_confidence(context: SimulationContext) -> float:
    days = len({p.date for p in context.dataset.historical_performance})
    dq = min(1.0, max(0.0, context.dataset.data_quality.overall))
    return round(min(0.95, 0.4 + 0.5 * min(1.0, days / FULL_HISTORY_DAYS) * dq + 0.1 * dq), 4)


def _history_frame(context: SimulationContext) -> pd.DataFrame:
    rows = [
        {"date": p.date, "metric": p.metric, "value": p.value, "channel": p.channel}
        for p in context.dataset.historical_performance
    ]
    if not rows:
        return pd.DataFrame(columns=["date", "metric", "value", "channel"])
    return pd.DataFrame(rows)


def channel_table(context: SimulationContext) -> pd.DataFrame:
    """
    One row per channel with the mean daily value of each metric. Spend is the spend metric when
    recorded, else estimated as impressions * ctr * cpc.
    """
    df = _history_frame(context)
    df = df[df["channel"].notna()]
    if df.empty:
        return pd.DataFrame()
    daily = df.groupby(["channel", "date", "metric"], as_index=False)["value"].mean()
    table = daily.pivot_table(index="channel", columns="metric", values="value", aggfunc="mean")
    if "spend" not in table.columns and {"impressions", "ctr", "cpc"} <= set(table.columns):
        table["spend"] = table["impressions"] * table["ctr"] * table["cpc"]
    return table.sort_index()


def channel_efficiency(table: pd.DataFrame) -> Tuple[Optional[pd.Series], str]:
    """(efficiency per channel, metric it is measured in): roas or roi when recorded, else conversions per spend."""
    for metric in ("roas", "roi"):
        if metric in table.columns:
            return table[metric], metric
    if {"conversions", "spend"} <= set(table.columns):
        return table["conversions"] / table["spend"].where(table["spend"] > 0), "conversions"
    return None, "conversions"


def budget_candidates(context: SimulationContext, options: SynthesisOptions) -> List[PivotRecommendation]:
    """Move budget from channels 20% below mean efficiency to channels 20% above it."""
    eff, metric = channel_efficiency(channel_table(context))
    if eff is None:
        return []
    eff = eff.dropna()
    eff = eff[eff > 0]
    if len(eff) < 2:
        return []
    mean = float(eff.mean())
    under = [ch for ch in eff.index if eff[ch] < mean * (1.0 - EFFICIENCY_GAP)]
    over = [ch for ch in eff.index if eff[ch] > mean * (1.0 + EFFICIENCY_GAP)]
    budget = context.dataset.budget_allocation
    util = channel_utilization(budget)
    confidence = _history_confidence(context)
    out: List[PivotRecommendation] = []
    for source in under:
        for target in over:
            if target in util and util[target] >= options.budget_utilization_threshold:
                continue
            gain = (float(eff[target]) - float(eff[source])) / float(eff[source])
            if gain <= MIN_REALLOCATION_GAIN:
                continue
            unspent = max(0.0, budget.allocated.get(source, 0.0) - budget.spent.get(source, 0.0))
            amount = f"{unspent * REALLOCATION_SHARE:,.2f} " if unspent > 0 else ""
            improvement = round(gain * REALLOCATION_SHARE, 4)
            out.append(
                PivotRecommendation(
                    id=f"budget_reallocation:context:{source}:{target}",
                    type=RecommendationType.BUDGET_REALLOCATION,
                    priority=_priority(improvement, confidence),
                    impact_estimate=ImpactEstimate(metric=metric, improvement=improvement, confidence=confidence),
                    implementation=Implementation(
                        description=(
                            f"Reallocate {amount}budget from {source} to {target}: "
                            f"{target} returns {gain * 100:.1f}% more {metric} per unit of spend"
                        ),
                        steps=[
                            f"Reduce the remaining {source} budget by {REALLOCATION_SHARE * 100:.0f}%",
                            f"Increase the {target} budget by the amount released",
                            "Monitor performance for 3-5 days",
                            "Adjust further based on results",
                        ],
                        effort=Effort.LOW,
                        timeline="1-2 days",
                    ),
                    source=f"context:channel_efficiency:{source}",
                )
            )
    out.sort(key=lambda r: -r.impact_estimate.improvement)
    return out[:MAX_PER_GENERATOR]


def channel_candidates(context: SimulationContext, options: SynthesisOptions) -> List[PivotRecommendation]:
    """Shift a test share of budget away from channels whose cpc runs 30% above the mean."""
    table = channel_table(context)
    if "cpc" not in table.columns:
        return []
    cpc = table["cpc"].dropna()
    cpc = cpc[cpc > 0]
    if len(cpc) < 2:
        return []
    mean = float(cpc.mean())
    cheapest = str(cpc.idxmin())
    confidence = _history_confidence(context)
    out = []
    for channel in cpc.index:
        if cpc[channel] <= mean * (1.0 + CPC_GAP) or channel == cheapest:
            continue
        saving = (float(cpc[channel]) - float(cpc[cheapest])) / float(cpc[channel])
        improvement = round(saving * CHANNEL_TEST_SHARE, 4)
        out.append(
            PivotRecommendation(
                id=f"channel_shift:context:{channel}",
                type=RecommendationType.CHANNEL_SHIFT,
                priority=_priority(improvement, confidence),
                impact_estimate=ImpactEstimate(metric="cpc", improvement=improvement, confidence=confidence),
                implementation=Implementation(
                    description=(
                        f"Shift budget from {channel} to {cheapest}: {channel} clicks cost "
                        f"{float(cpc[channel]):.2f} against {float(cpc[cheapest]):.2f}"
                    ),
                    steps=[
                        f"Allocate {CHANNEL_TEST_SHARE * 100:.0f}% of the {channel} budget to {cheapest} for testing",
                        "Run parallel campaigns for comparison",
                        "Monitor cost efficiency and performance",
                        "Gradually shift more budget if successful",
                    ],
                    effort=Effort.HIGH,
                    timeline="7-10 days",
                ),
                source=f"context:channel_cost:{channel}",
            )
        )
    return out[:MAX_PER_GENERATOR]


def _engagement_metric(context: SimulationContext) -> str:
    for spec in context.request.metrics:
        if metric_family(spec.type) == ENGAGEMENT:
            return spec.type
    return "ctr"


def creative_candidates(context: SimulationContext, options: SynthesisOptions) -> List[PivotRecommendation]:
    """Active creatives scoring more than 10% below the mean of scored active creatives."""
    scored = [
        a
        for a in context.dataset.creative_assets
        if a.active and a.performance_score is not None and a.performance_score >= 0
    ]
    if len(scored) < 2:
        return []
    mean = sum(a.performance_score for a in scored) / len(scored)
    if mean <= 0:
        return []
    metric = _engagement_metric(context)
    out = []
    for asset in sorted(scored, key=lambda a: (a.performance_score, a.id)):
        if asset.performance_score >= mean * (1.0 - CREATIVE_GAP):
            continue
        gap = (mean - asset.performance_score) / mean
        improvement = round(gap * 0.5, 4)
        out.append(
            PivotRecommendation(
                id=f"creative_refresh:context:{asset.id}",
                type=RecommendationType.CREATIVE_REFRESH,
                priority=_priority(improvement, 0.7),
                impact_estimate=ImpactEstimate(metric=metric, improvement=improvement, confidence=0.7),
                implementation=Implementation(
                    description=(
                        f"Optimize creative {asset.id}: its performance score {asset.performance_score:.2f} "
                        f"is {gap * 100:.1f}% below the average of active creatives"
                    ),
                    steps=[
                        f"Test new headline and copy variations of {asset.id}",
                        f"Refresh the {asset.type} visual treatment",
                        "Test the optimized version",
                        "Monitor performance metrics",
                        "Scale if successful",
                    ],
                    effort=Effort.LOW,
                    timeline="2-3 days",
                ),
                source=f"context:creative:{asset.id}",
            )
        )
    return out[:MAX_PER_GENERATOR]


def _volume_metric(context: SimulationContext) -> str:
    for spec in context.request.metrics:
        if metric_family(spec.type) == VOLUME:
            return spec.type
    return "reach"


def audience_candidates(context: SimulationContext, options: SynthesisOptions) -> List[PivotRecommendation]:
    """
    Growing segments above the minimum size, improvement scaled by their engagement relative to
    the mean. Flat or shrinking segments with weak engagement are named as saturated.
    """
    segments = context.dataset.audience_insights
    if not segments:
        return []
    mean_eng = sum(s.engagement_rate for s in segments) / len(segments)
    saturated = sorted(
        s.segment
        for s in segments
        if s.growth_rate <= 0 and mean_eng > 0 and s.engagement_rate < mean_eng * SATURATED_ENGAGEMENT
    )
    growing = [s for s in segments if s.size > MIN_SEGMENT_SIZE and s.growth_rate > 0]
    metric = _volume_metric(context)
    out = []
    for seg in growing:
        quality = min(1.5, seg.engagement_rate / mean_eng) if mean_eng > 0 else 1.0
        improvement = round(seg.growth_rate * quality, 4)
        confidence = 0.65 if seg.engagement_rate >= mean_eng else 0.6
        reason = f"growing {seg.growth_rate * 100:.1f}% with {seg.engagement_rate * 100:.1f}% engagement"
        if saturated:
            reason += f"; {', '.join(saturated)} show saturation"
        out.append(
            PivotRecommendation(
                id=f"audience_expansion:context:{seg.segment}",
                type=RecommendationType.AUDIENCE_EXPANSION,
                priority=_priority(improvement, confidence),
                impact_estimate=ImpactEstimate(metric=metric, improvement=improvement, confidence=confidence),
                implementation=Implementation(
                    description=f"Expand to the {seg.segment} audience segment ({reason})",
                    steps=[
                        f"Create a lookalike audience based on {seg.segment}",
                        "Start with a small test budget (10-15% of total)",
                        "Monitor performance against existing segments",
                        "Scale budget if performance meets targets",
                    ],
                    effort=Effort.MEDIUM,
                    timeline="3-5 days",
                ),
                source=f"context:audience:{seg.segment}",
            )
        )
    out.sort(key=lambda r: (-r.impact_estimate.improvement, r.id))
    return out[:MAX_PER_GENERATOR]


def _timing_metric(context: SimulationContext, present: set) -> Optional[str]:
    weights = normalized_weights(s for s in context.request.metrics if s.type in present and not is_cost(s.type))
    if not weights:
        return None
    return max(sorted(weights), key=weights.get)


def _weekday_split(context: SimulationContext) -> Optional[Tuple[str, float, float]]:
    """(metric, weekday mean, weekend mean) of the heaviest non-cost metric's daily totals."""
    df = _history_frame(context)
    if df.empty:
        return None
    metric = _timing_metric(context, set(df["metric"]))
    if metric is None:
        return None
    rows = df[df["metric"] == metric]
    agg = "sum" if is_additive(metric) else "mean"
    daily = rows.groupby("date")["value"].agg(agg)
    if len(daily) < MIN_TIMING_DAYS:
        return None
    weekend = pd.Series([d.weekday() >= 5 for d in daily.index], index=daily.index)
    if weekend.all() or not weekend.any():
        return None
    return metric, float(daily[~weekend].mean()), float(daily[weekend].mean())


def timing_candidates(context: SimulationContext, options: SynthesisOptions) -> List[PivotRecommendation]:
    """Concentrate delivery on weekdays or weekends when one outperforms the other by 15%."""
    split = _weekday_split(context)
    if split is None:
        return []
    metric, weekday, weekend = split
    if weekday <= 0 or weekend <= 0:
        return []
    if weekday >= weekend:
        best, other, best_value, other_value = "weekday", "weekend", weekday, weekend
    else:
        best, other, best_value, other_value = "weekend", "weekday", weekend, weekday
    gap = (best_value - other_value) / other_value
    if gap <= TIMING_GAP:
        return []
    improvement = round(gap * TIMING_SHIFT_SHARE, 4)
    return [
        PivotRecommendation(
            id=f"timing_adjustment:context:{best}",
            type=RecommendationType.TIMING_ADJUSTMENT,
            priority=_priority(improvement, 0.75),
            impact_estimate=ImpactEstimate(metric=metric, improvement=improvement, confidence=0.75),
            implementation=Implementation(
                description=(
                    f"Adjust scheduling to focus on {best}s: {metric} runs {gap * 100:.1f}% higher "
                    f"than on {other}s"
                ),
                steps=[
                    f"Raise {best} bids and daily caps",
                    f"Lower {other} delivery by the same amount",
                    "Monitor performance changes",
                    "Fine-tune based on results",
                ],
                effort=Effort.LOW,
                timeline="1-2 days",
            ),
            source=f"context:timing:{best}",
        )
    ]


GENERATORS = (
    budget_candidates,
    creative_candidates,
    audience_candidates,
    channel_candidates,
    timing_candidates,
)


def context_candidates(context: SimulationContext, options: SynthesisOptions) -> List[PivotRecommendation]:
    out: List[PivotRecommendation] = []
    for generate in GENERATORS:
        out.extend(generate(context, options))
    logger.debug("context candidates simulation_id=%s count=%d", context.simulation_id, len(out))
    return out
