"""
Simulation run store. Persists result bundles in the simulation_runs table keyed by simulation id.
Storing the same simulation id twice keeps the first bundle (exactly-once per id).
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import Session, select

from packages.shared.src.models import SimulationRun
from packages.shared.src.schemas import SimulationContext, SimulationResultBundle

_MAX_RECENT_RUNS = 100


@dataclass
class SimulationRunMetadata:
    """Summary of one stored run (returned by list_simulations)."""

    simulation_id: str
    campaign_id: str
    organization_id: str
    status: str
    created_at: datetime
    engine_version: str
    processing_time_ms: float
    risk_count: int
    recommendation_count: int


def _record_to_meta(r: SimulationRun) -> SimulationRunMetadata:
    return SimulationRunMetadata(
        simulation_id=r.simulation_id,
        campaign_id=r.campaign_id,
        organization_id=r.organization_id or "",
        status=r.status,
        created_at=r.created_at,
        engine_version=r.engine_version or "",
        processing_time_ms=r.processing_time_ms or 0.0,
        risk_count=r.risk_count or 0,
        recommendation_count=r.recommendation_count or 0,
    )


def _aware(ts: datetime) -> datetime:
    """Naive timestamps are taken as UTC."""
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def record_simulation(
    session: Session,
    bundle: SimulationResultBundle,
    context: Optional[SimulationContext] = None,
) -> bool:
    """Persist a bundle. Returns False when the simulation id was already stored."""
    if session.get(SimulationRun, bundle.simulation_id) is not None:
        return False
    session.add(
        SimulationRun(
            simulation_id=bundle.simulation_id,
            campaign_id=bundle.campaign_id,
            organization_id=context.organization_id if context else "",
            user_id=context.user_id if context else "",
            status=bundle.status.value,
            created_at=_aware(bundle.model_metadata.generated_at),
            engine_version=bundle.model_metadata.engine_version,
            model_id=bundle.model_metadata.model_id,
            processing_time_ms=bundle.model_metadata.processing_time_ms,
            risk_count=len(bundle.risks),
            recommendation_count=len(bundle.recommendations),
            result_json=bundle.model_dump(mode="json"),
        )
    )
    session.commit()
    return True


def get_simulation(session: Session, simulation_id: str) -> Optional[SimulationResultBundle]:
    row = session.get(SimulationRun, simulation_id)
    if row is None or row.result_json is None:
        return None
    return SimulationResultBundle.model_validate(row.result_json)


def list_simulations(
    session: Session,
    campaign_id: Optional[str] = None,
    limit: int = _MAX_RECENT_RUNS,
) -> List[SimulationRunMetadata]:
    """Most recent runs first, optionally for one campaign (at most 100)."""
    stmt = select(SimulationRun)
    if campaign_id is not None:
        stmt = stmt.where(SimulationRun.campaign_id == campaign_id)
    stmt = stmt.order_by(SimulationRun.created_at.desc()).limit(max(1, min(limit, _MAX_RECENT_RUNS)))
    return [_record_to_meta(r) for r in session.exec(stmt).all()]
