"""SQLModel definitions for persisted simulation runs."""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Column, DateTime, JSON
from sqlmodel import Field, SQLModel

from packages.shared.src.schemas import utcnow


# ----- Simulation runs -----


class SimulationRun(SQLModel, table=True):
    """One simulation result bundle keyed by simulation id; result_json is read-only once stored."""

    __tablename__ = "simulation_runs"
    simulation_id: str = Field(primary_key=True)
    campaign_id: str = Field(index=True)
    organization_id: str = ""
    user_id: str = ""
    status: str
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    engine_version: str = ""
    model_id: str = ""
    processing_time_ms: float = 0.0
    risk_count: int = 0
    recommendation_count: int = 0
    result_json: Optional[Any] = Field(default=None, sa_column=Column(JSON(), nullable=True))
