"""
Simulation orchestrator: validate -> forecast -> scenarios -> risks -> recommendations -> bundle.
Scenario failures are isolated and reported; the whole pipeline may be bounded by a wall-clock timeout.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional

from packages.forecasting.src.forecaster import forecast_with_diagnostics
from packages.governance.src.versions import ENGINE_VERSION, FORECAST_MODEL_ID
from packages.recommendations.src.impact import estimate_recommendation_impact
from packages.recommendations.src.synthesizer import synthesize
from packages.risk.src.detector import TRAJECTORY_RISK_TYPES, detect_risks, filter_by_confidence, rank_risks
from packages.scenarios.src.generator import generate_scenario_batch
from packages.shared.src.enums import SimulationStatus
from packages.shared.src.errors import ComputationError, SimulationTimeoutError, ValidationError
from packages.shared.src.schemas import (
    ModelMetadata,
    RiskAlert,
    SimulationContext,
    SimulationOptions,
    SimulationResultBundle,
    SynthesisOptions,
)
from packages.shared.src.validation import validate_context

logger = logging.getLogger(__name__)

BASELINE_REF = "baseline"


def _synthesis_options(options: SimulationOptions) -> SynthesisOptions:
    """Reallocation targets follow the detector's utilization threshold unless set explicitly."""
    synthesis = options.synthesis
    if "budget_utilization_threshold" in synthesis.model_fields_set:
        return synthesis
    return synthesis.model_copy(
        update={"budget_utilization_threshold": options.thresholds.budget_utilization_threshold}
    )


def _detect_all(context: SimulationContext, options: SimulationOptions, baseline, scenarios) -> List[RiskAlert]:
    """Baseline runs every detector; scenarios only the trajectory detectors, so market and budget alerts appear once."""
    risks = detect_risks(baseline, context, options.thresholds, trajectory_ref=BASELINE_REF)
    if not options.detect_scenario_risks:
        return risks
    for s in scenarios:
        risks.extend(
            detect_risks(
                s.trajectory,
                context,
                options.thresholds,
                trajectory_ref=f"scenario:{s.name}",
                risk_types=TRAJECTORY_RISK_TYPES,
            )
        )
    return filter_by_confidence(rank_risks(risks), options.thresholds.confidence_threshold)


def _run_pipeline(context: SimulationContext, options: SimulationOptions) -> SimulationResultBundle:
    started = time.perf_counter()
    validate_context(context)

    fc = forecast_with_diagnostics(context, options.forecast)
    baseline = fc.trajectory
    warnings = list(fc.warnings)

    batch = generate_scenario_batch(baseline, context.request.scenarios, context, options.scenarios)
    if not batch.scenarios:
        first = batch.failures[0]
        if all(f.code == ValidationError.code for f in batch.failures):
            raise ValidationError(
                f"all scenario configs are invalid; first: {first.message}",
                context={"scenario": first.name},
            )
        raise ComputationError(
            f"all scenario configs failed; first: {first.message}",
            metric=first.metric,
            scenario=first.name,
        )
    for f in batch.failures:
        warnings.append(f"scenario {f.name} failed: {f.message}")

    risks = _detect_all(context, options, baseline, batch.scenarios)
    recommendations = synthesize(risks, batch.scenarios, context, _synthesis_options(options), baseline=baseline)
    impacts = []
    if options.estimate_impacts:
        impacts = [estimate_recommendation_impact(r, baseline, context) for r in recommendations]

    tf = context.request.timeframe
    metadata = ModelMetadata(
        processing_time_ms=(time.perf_counter() - started) * 1000.0,
        model_id=FORECAST_MODEL_ID,
        engine_version=ENGINE_VERSION,
        data_quality=context.dataset.data_quality,
        granularity=tf.granularity,
        horizon_days=(tf.end_date - tf.start_date).days,
        point_count=len(baseline),
        warnings=warnings,
    )
    status = SimulationStatus.PARTIAL if batch.failures else SimulationStatus.COMPLETED
    logger.info(
        "simulation %s campaign=%s status=%s scenarios=%d risks=%d recommendations=%d duration_ms=%.1f",
        context.simulation_id,
        context.request.campaign_id,
        status.value,
        len(batch.scenarios),
        len(risks),
        len(recommendations),
        metadata.processing_time_ms,
    )
    return SimulationResultBundle(
        simulation_id=context.simulation_id,
        campaign_id=context.request.campaign_id,
        status=status,
        trajectories=baseline,
        scenarios=batch.scenarios,
        scenario_failures=batch.failures,
        risks=risks,
        recommendations=recommendations,
        recommendation_impacts=impacts,
        model_metadata=metadata,
    )


def run_simulation(
    context: SimulationContext,
    options: Optional[SimulationOptions] = None,
) -> SimulationResultBundle:
    """
    Run the full pipeline for one context. With options.timeout_seconds set, exceeding it
    raises SimulationTimeoutError (retryable); the worker is abandoned, not interrupted.
    """
    options = options or SimulationOptions()
    if not options.timeout_seconds:
        return _run_pipeline(context, options)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="simulation")
    try:
        future = executor.submit(_run_pipeline, context, options)
        try:
            return future.result(timeout=options.timeout_seconds)
        except FutureTimeoutError as e:
            logger.warning("simulation %s exceeded %.1fs", context.simulation_id, options.timeout_seconds)
            raise SimulationTimeoutError(
                f"simulation {context.simulation_id} exceeded {options.timeout_seconds}s",
                context={"simulation_id": context.simulation_id, "timeout_seconds": options.timeout_seconds},
            ) from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
