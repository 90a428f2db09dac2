"""Canonical enums for scenarios, risks, recommendations, and simulation runs."""
from enum import Enum


class ScenarioType(str, Enum):
    """Named scenario variants of a trajectory."""

    OPTIMISTIC = "optimistic"
    REALISTIC = "realistic"
    PESSIMISTIC = "pessimistic"
    CUSTOM = "custom"


class RiskType(str, Enum):
    """Risk patterns the detector knows how to find."""

    PERFORMANCE_DIP = "performance_dip"
    AUDIENCE_FATIGUE = "audience_fatigue"
    COMPETITOR_THREAT = "competitor_threat"
    BUDGET_OVERRUN = "budget_overrun"


class Severity(str, Enum):
    """Risk severity, lowest to highest."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class Effort(str, Enum):
    """Implementation effort for a pivot recommendation."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecommendationType(str, Enum):
    """Kinds of pivot the synthesizer can recommend."""

    BUDGET_REALLOCATION = "budget_reallocation"
    CREATIVE_REFRESH = "creative_refresh"
    AUDIENCE_EXPANSION = "audience_expansion"
    CHANNEL_SHIFT = "channel_shift"
    TIMING_ADJUSTMENT = "timing_adjustment"


class Granularity(str, Enum):
    """Spacing between trajectory points."""

    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def days(self) -> int:
        return 7 if self is Granularity.WEEKLY else 1


class SimulationStatus(str, Enum):
    """Outcome of one simulation run."""

    COMPLETED = "completed"
    PARTIAL = "partial"  # some scenario configs failed
    FAILED = "failed"
