"""Request validation run before any computation. Violations are rejected, never defaulted."""
import math
from typing import List

from packages.shared.src.errors import ValidationError
from packages.shared.src.schemas import ScenarioConfig, SimulationContext, Timeframe


def validate_timeframe(timeframe: Timeframe) -> None:
    if timeframe.start_date >= timeframe.end_date:
        raise ValidationError(
            f"timeframe start_date {timeframe.start_date} must be before end_date {timeframe.end_date}",
            context={"start_date": str(timeframe.start_date), "end_date": str(timeframe.end_date)},
        )


def validate_metrics(context: SimulationContext) -> None:
    metrics = context.request.metrics
    if not metrics:
        raise ValidationError("at least one metric is required")
    seen: List[str] = []
    for spec in metrics:
        if not spec.type or not spec.type.strip():
            raise ValidationError("metric type must be a non-empty string")
        if spec.weight < 0:
            raise ValidationError(f"metric {spec.type} has negative weight {spec.weight}", context={"metric": spec.type})
        if spec.type in seen:
            raise ValidationError(f"metric {spec.type} is listed more than once", context={"metric": spec.type})
        seen.append(spec.type)


def validate_scenario_config(config: ScenarioConfig) -> None:
    """Per-config checks; the scenario generator runs these so one bad config fails alone."""
    if config.percentile is not None and not (
        math.isfinite(config.percentile) and 0.0 <= config.percentile <= 100.0
    ):
        raise ValidationError(
            f"percentile {config.percentile} is outside 0..100",
            context={"scenario": config.name or config.type.value},
        )
    for adj in config.adjustments:
        if not (math.isfinite(adj.multiplier) and adj.multiplier > 0):
            raise ValidationError(
                f"adjustment {adj.factor} multiplier must be positive and finite, got {adj.multiplier}",
                context={"scenario": config.name or config.type.value, "factor": adj.factor},
            )
        if adj.timeframe is not None and adj.timeframe.end < adj.timeframe.start:
            raise ValidationError(
                f"adjustment {adj.factor} window ends before it starts",
                context={"scenario": config.name or config.type.value, "factor": adj.factor},
            )


def validate_context(context: SimulationContext) -> None:
    """Reject a malformed request: bad timeframe, empty or duplicate metrics, no scenarios."""
    validate_timeframe(context.request.timeframe)
    validate_metrics(context)
    if not context.request.scenarios:
        raise ValidationError("at least one scenario config is required")
