"""
Scenario generator: percentile-shifted and adjustment-driven variants of a baseline trajectory.

Percentile contract: pessimistic = 25th, realistic = 50th, optimistic = 75th, custom = any 0..100.
A percentile p maps to factor f(p) = 0.4 + 1.2 * p / 100 (f(50) = 1), raised to a per-metric
elasticity, so higher percentiles give higher values for every metric and realistic equals baseline.
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from packages.scenarios.src.market_factors import MarketFactors, apply_market_factors, market_factors_from
from packages.shared.src.enums import ScenarioType
from packages.shared.src.errors import ComputationError, SimulationError
from packages.shared.src.metric_catalog import clamp_metric, elasticity
from packages.shared.src.schemas import (
    Adjustment,
    ScenarioBatch,
    ScenarioConfig,
    ScenarioFailure,
    ScenarioOptions,
    ScenarioResult,
    SimulationContext,
    TrajectoryPoint,
)
from packages.shared.src.validation import validate_scenario_config

logger = logging.getLogger(__name__)

PERCENTILES: Dict[ScenarioType, float] = {
    ScenarioType.PESSIMISTIC: 25.0,
    ScenarioType.REALISTIC: 50.0,
    ScenarioType.OPTIMISTIC: 75.0,
}

BASE_PROBABILITY: Dict[ScenarioType, float] = {
    ScenarioType.OPTIMISTIC: 0.2,
    ScenarioType.REALISTIC: 0.6,
    ScenarioType.PESSIMISTIC: 0.2,
}
CUSTOM_BASE_PROBABILITY = 0.3

DEFAULT_KEY_FACTORS: Dict[ScenarioType, List[str]] = {
    ScenarioType.OPTIMISTIC: ["favorable_market_conditions", "strong_creative_performance"],
    ScenarioType.REALISTIC: ["current_market_trends", "historical_performance"],
    ScenarioType.PESSIMISTIC: ["increased_competition", "market_volatility"],
    ScenarioType.CUSTOM: [],
}

# Share of an adjustment's deviation from 1.0 that reaches the trajectory
ADJUSTMENT_DAMPING = {
    "competition": 0.8,
    "creative_fatigue": 0.6,
}

CONFIDENCE_TYPE_SCALE = {
    ScenarioType.REALISTIC: 1.1,
    ScenarioType.CUSTOM: 0.9,
}
MIN_SCENARIO_CONFIDENCE = 0.1
MAX_SCENARIO_CONFIDENCE = 0.99
FULL_HISTORY_DAYS = 30
FULL_EXTERNAL_SOURCES = 3


def percentile_factor(percentile: float) -> float:
    return 0.4 + 1.2 * percentile / 100.0


def metric_multiplier(metric: str, percentile: float, scenario: str = "") -> float:
    """f(p) ** elasticity(metric); a non-positive or non-finite factor is a computation error."""
    f = percentile_factor(percentile)
    if not math.isfinite(f) or f <= 0:
        raise ComputationError(
            f"percentile {percentile} maps to invalid factor {f}",
            metric=metric,
            scenario=scenario,
        )
    return f ** elasticity(metric)


def effective_multiplier(adjustment: Adjustment) -> float:
    damping = ADJUSTMENT_DAMPING.get(adjustment.factor.lower())
    if damping is None:
        return adjustment.multiplier
    return 1.0 - (1.0 - adjustment.multiplier) * damping


def scenario_percentile(config: ScenarioConfig) -> float:
    if config.type == ScenarioType.CUSTOM:
        return 50.0 if config.percentile is None else float(config.percentile)
    return PERCENTILES[config.type]


def scenario_confidence(config: ScenarioConfig, context: SimulationContext) -> float:
    """Scenario-level confidence; strictly increasing in data quality."""
    dq = min(1.0, max(0.0, context.dataset.data_quality.overall))
    history_days = len({p.date for p in context.dataset.historical_performance})
    external = len(context.request.external_data_sources) or len(context.dataset.external_data)
    confidence = (
        0.8
        * (0.3 + 0.7 * dq)
        * (0.6 + 0.4 * min(history_days / FULL_HISTORY_DAYS, 1.0))
        * (0.8 + 0.2 * min(external / FULL_EXTERNAL_SOURCES, 1.0))
    )
    confidence *= CONFIDENCE_TYPE_SCALE.get(config.type, 1.0)
    return min(MAX_SCENARIO_CONFIDENCE, max(MIN_SCENARIO_CONFIDENCE, confidence))


def raw_probability(config: ScenarioConfig, percentile: float, volatility: float = 0.0) -> float:
    """Unnormalized weight. Volatility widens the tails at the expense of the median."""
    if config.type == ScenarioType.CUSTOM:
        base = CUSTOM_BASE_PROBABILITY * (1.0 - 0.5 * abs(percentile - 50.0) / 50.0)
    else:
        base = BASE_PROBABILITY[config.type]
    if volatility > 0:
        if config.type == ScenarioType.REALISTIC:
            base *= 1.0 - 0.25 * volatility
        elif config.type != ScenarioType.CUSTOM:
            base *= 1.0 + 0.5 * volatility
    return base


def _scaled(name: str, value: float, mult: float, scenario: str, day) -> float:
    """value * mult clamped to the metric's range; checked for finiteness before clamping."""
    scaled = value * mult
    if not math.isfinite(scaled):
        raise ComputationError(
            f"scenario {scenario} produced non-finite {name} on {day}",
            metric=name,
            scenario=scenario,
        )
    return clamp_metric(name, scaled)


def _apply_percentile(points: List[TrajectoryPoint], percentile: float, scenario: str) -> List[TrajectoryPoint]:
    if percentile == 50.0:
        return list(points)
    conf_scale = 1.0 - 0.4 * abs(percentile - 50.0) / 50.0
    out = []
    for p in points:
        metrics = {
            name: _scaled(name, value, metric_multiplier(name, percentile, scenario), scenario, p.date)
            for name, value in p.metrics.items()
        }
        out.append(TrajectoryPoint(date=p.date, metrics=metrics, confidence=max(0.01, p.confidence * conf_scale)))
    return out


def _apply_adjustments(
    points: List[TrajectoryPoint],
    adjustments: List[Adjustment],
    scenario: str = "",
) -> List[TrajectoryPoint]:
    """Scale only points inside each adjustment's window; overlapping windows compose multiplicatively."""
    if not adjustments:
        return list(points)
    out = []
    for p in points:
        mult = 1.0
        hit = False
        for adj in adjustments:
            if adj.timeframe is None or adj.timeframe.contains(p.date):
                mult *= effective_multiplier(adj)
                hit = True
        if not hit:
            out.append(p)
            continue
        metrics = {name: _scaled(name, value, mult, scenario, p.date) for name, value in p.metrics.items()}
        out.append(TrajectoryPoint(date=p.date, metrics=metrics, confidence=p.confidence))
    return out


def _check_finite(points: List[TrajectoryPoint], scenario: str) -> None:
    for p in points:
        for name, value in p.metrics.items():
            if not math.isfinite(value):
                raise ComputationError(
                    f"scenario {scenario} produced non-finite {name} on {p.date}",
                    metric=name,
                    scenario=scenario,
                )


def _scenario_names(configs: List[ScenarioConfig]) -> List[str]:
    """Config name or type; repeated names get the config index appended."""
    names = []
    seen = set()
    for i, c in enumerate(configs):
        name = c.name or c.type.value
        if name in seen:
            name = f"{name}_{i}"
        seen.add(name)
        names.append(name)
    return names


def _generate_one(
    name: str,
    config: ScenarioConfig,
    baseline: List[TrajectoryPoint],
    context: SimulationContext,
    options: ScenarioOptions,
    market: MarketFactors,
) -> Tuple[ScenarioResult, float]:
    """One scenario with its raw (unnormalized) probability. Reads only its own config."""
    validate_scenario_config(config)
    percentile = scenario_percentile(config)
    key_factors = list(DEFAULT_KEY_FACTORS[config.type])
    try:
        points = _apply_percentile(baseline, percentile, name)
        if config.type == ScenarioType.CUSTOM and percentile != 50.0:
            key_factors.append("percentile_shift")
        points = _apply_adjustments(points, config.adjustments, name)
        for adj in config.adjustments:
            tag = f"{adj.factor}_adjustment"
            if tag not in key_factors:
                key_factors.append(tag)
        volatility = 0.0
        if options.include_market_factors:
            points, market_keys = apply_market_factors(points, percentile, market, options)
            key_factors.extend(k for k in market_keys if k not in key_factors)
            volatility = market.volatility
        _check_finite(points, name)
        result = ScenarioResult(
            type=config.type,
            name=name,
            percentile=percentile,
            probability=0.0,
            confidence=scenario_confidence(config, context),
            trajectory=points,
            key_factors=key_factors,
        )
    except (ArithmeticError, ValueError) as e:
        raise ComputationError(f"scenario {name} failed: {e}", scenario=name) from e
    return result, raw_probability(config, percentile, volatility)


def generate_scenario_batch(
    baseline: List[TrajectoryPoint],
    configs: List[ScenarioConfig],
    context: SimulationContext,
    options: Optional[ScenarioOptions] = None,
) -> ScenarioBatch:
    """Generate every config in isolation; failed configs are reported, not fatal."""
    batch, _ = _run_batch(baseline, configs, context, options or ScenarioOptions())
    return batch


def _run_batch(
    baseline: List[TrajectoryPoint],
    configs: List[ScenarioConfig],
    context: SimulationContext,
    options: ScenarioOptions,
) -> Tuple[ScenarioBatch, List[SimulationError]]:
    market = market_factors_from(context) if options.include_market_factors else MarketFactors()
    names = _scenario_names(configs)

    def run(i: int):
        try:
            return _generate_one(names[i], configs[i], baseline, context, options, market)
        except SimulationError as e:
            return e

    if options.max_workers > 1 and len(configs) > 1:
        with ThreadPoolExecutor(max_workers=options.max_workers) as pool:
            outcomes = list(pool.map(run, range(len(configs))))
    else:
        outcomes = [run(i) for i in range(len(configs))]

    results: List[ScenarioResult] = []
    raw: List[float] = []
    failures: List[ScenarioFailure] = []
    errors: List[SimulationError] = []
    for i, outcome in enumerate(outcomes):
        if isinstance(outcome, SimulationError):
            logger.warning("scenario %s failed: %s", names[i], outcome.message)
            errors.append(outcome)
            failures.append(
                ScenarioFailure(
                    index=i,
                    name=names[i],
                    type=configs[i].type,
                    error_type=type(outcome).__name__,
                    code=outcome.code,
                    message=outcome.message,
                    metric=getattr(outcome, "metric", None),
                )
            )
            continue
        result, weight = outcome
        results.append(result)
        raw.append(weight)

    total = sum(raw)
    if len(configs) > 1 and total > 0:
        probabilities = [w / total for w in raw]
    else:
        probabilities = [min(1.0, w) for w in raw]
    scenarios = [r.model_copy(update={"probability": p}) for r, p in zip(results, probabilities)]
    return ScenarioBatch(scenarios=scenarios, failures=failures), errors


def generate_scenarios(
    baseline: List[TrajectoryPoint],
    configs: List[ScenarioConfig],
    context: SimulationContext,
    options: Optional[ScenarioOptions] = None,
) -> List[ScenarioResult]:
    """Scenarios for every config that succeeded; re-raises the first error only when all of them failed."""
    batch, errors = _run_batch(baseline, configs, context, options or ScenarioOptions())
    if errors and not batch.scenarios:
        raise errors[0]
    return batch.scenarios
