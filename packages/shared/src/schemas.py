"""Pydantic/schema DTOs for the simulation engine and API."""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packages.shared.src.enums import (
    Effort,
    Granularity,
    RecommendationType,
    RiskType,
    ScenarioType,
    Severity,
    SimulationStatus,
)


# ----- Shared -----


def utcnow() -> datetime:
    """Timezone-aware current UTC time; stored timestamps are never naive."""
    return datetime.now(timezone.utc)


class DateRange(BaseModel):
    """Inclusive date window."""

    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


class Timeframe(BaseModel):
    """Requested simulation window; points cover [start_date, end_date)."""

    start_date: date
    end_date: date
    granularity: Granularity = Granularity.DAILY


# ----- Request -----


class MetricSpec(BaseModel):
    """One metric to simulate and its relative importance (weights need not sum to 1)."""

    type: str
    weight: float = 1.0
    benchmark_source: Optional[str] = None


class Adjustment(BaseModel):
    """Multiplicative perturbation applied to points whose date falls inside timeframe."""

    factor: str
    multiplier: float
    timeframe: Optional[DateRange] = None  # None = whole trajectory


class ScenarioConfig(BaseModel):
    type: ScenarioType
    percentile: Optional[float] = None
    adjustments: List[Adjustment] = Field(default_factory=list)
    name: Optional[str] = None


class SimulationRequest(BaseModel):
    campaign_id: str
    timeframe: Timeframe
    metrics: List[MetricSpec]
    scenarios: List[ScenarioConfig]
    external_data_sources: List[str] = Field(default_factory=list)


# ----- Enriched dataset (assembled by ingestion / platform connectors) -----


class ChannelConfig(BaseModel):
    platform: str
    budget: float = 0.0
    enabled: bool = True


class CampaignData(BaseModel):
    """Campaign definition; start/end bound the budget pacing window."""

    id: str
    name: str = ""
    objective: Optional[str] = None
    industry: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: float = 0.0
    channels: List[ChannelConfig] = Field(default_factory=list)


class PerformanceMetric(BaseModel):
    """One historical observation of one metric."""

    date: date
    metric: str
    value: float
    channel: Optional[str] = None


class AudienceData(BaseModel):
    segment: str
    size: int = 0
    engagement_rate: float = 0.0
    growth_rate: float = 0.0


class CreativeAsset(BaseModel):
    id: str
    type: str = "image"
    launched_at: Optional[date] = None
    active: bool = True
    performance_score: Optional[float] = None


class BudgetData(BaseModel):
    """Budget totals and per-channel allocation, spend, and remaining amounts."""

    total: float = 0.0
    allocated: Dict[str, float] = Field(default_factory=dict)
    spent: Dict[str, float] = Field(default_factory=dict)
    remaining: Dict[str, float] = Field(default_factory=dict)


class CompetitorMetric(BaseModel):
    competitor: str
    metric: str  # ad_spend, impressions, share_of_voice, ...
    value: float
    date: date
    source: str = ""


class TrendData(BaseModel):
    """Search/interest trend; trend is a relative change (0.1 = 10% above normal)."""

    keyword: str
    trend: float
    date: date
    region: Optional[str] = None


class BenchmarkData(BaseModel):
    industry: str
    metric: str
    percentile_25: float
    percentile_50: float
    percentile_75: float
    sample_size: int = 0


class VolatilityIndex(BaseModel):
    overall: float = 0.0
    by_channel: Dict[str, float] = Field(default_factory=dict)
    by_audience: Dict[str, float] = Field(default_factory=dict)
    factors: List[str] = Field(default_factory=list)


class MarketData(BaseModel):
    competitor_activity: List[CompetitorMetric] = Field(default_factory=list)
    seasonal_trends: List[TrendData] = Field(default_factory=list)
    industry_benchmarks: List[BenchmarkData] = Field(default_factory=list)
    market_volatility: VolatilityIndex = Field(default_factory=VolatilityIndex)


class DataQualityScore(BaseModel):
    """0-1 composite quality scores; overall gates confidence in every stage."""

    completeness: float = 0.7
    accuracy: float = 0.7
    freshness: float = 0.7
    consistency: float = 0.7
    overall: float = 0.7


class EnrichedDataset(BaseModel):
    campaign: CampaignData
    historical_performance: List[PerformanceMetric] = Field(default_factory=list)
    audience_insights: List[AudienceData] = Field(default_factory=list)
    creative_assets: List[CreativeAsset] = Field(default_factory=list)
    budget_allocation: BudgetData = Field(default_factory=BudgetData)
    market_data: MarketData = Field(default_factory=MarketData)
    external_data: Dict[str, Any] = Field(default_factory=dict)
    data_quality: DataQualityScore = Field(default_factory=DataQualityScore)


class SimulationContext(BaseModel):
    """Read-only aggregate passed through every stage of one simulation."""

    model_config = ConfigDict(frozen=True)

    simulation_id: str = Field(default_factory=lambda: str(uuid4()))
    organization_id: str = ""
    user_id: str = ""
    request: SimulationRequest
    dataset: EnrichedDataset


# ----- Stage outputs -----


class TrajectoryPoint(BaseModel):
    """Dated per-metric prediction. Immutable; stages build new points instead of editing."""

    model_config = ConfigDict(frozen=True)

    date: date
    metrics: Dict[str, float]
    confidence: float = Field(gt=0.0, le=1.0)


class ForecastResult(BaseModel):
    """Baseline trajectory plus how each metric was forecast."""

    trajectory: List[TrajectoryPoint]
    methods: Dict[str, str] = Field(default_factory=dict)  # metric -> trend | blend | benchmark
    skipped_metrics: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ScenarioResult(BaseModel):
    type: ScenarioType
    name: str
    percentile: float
    probability: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(gt=0.0, le=1.0)
    trajectory: List[TrajectoryPoint]
    key_factors: List[str] = Field(default_factory=list)


class ScenarioFailure(BaseModel):
    """One scenario config that could not be generated; others in the batch are unaffected."""

    index: int
    name: str
    type: ScenarioType
    error_type: str
    code: str
    message: str
    metric: Optional[str] = None


class ScenarioBatch(BaseModel):
    scenarios: List[ScenarioResult] = Field(default_factory=list)
    failures: List[ScenarioFailure] = Field(default_factory=list)


class RiskAlert(BaseModel):
    """Detected adverse pattern. References (does not own) the trajectory it came from."""

    type: RiskType
    severity: Severity
    probability: float = Field(gt=0.0, le=1.0)
    impact: float = Field(ge=0.0)
    confidence: float = Field(gt=0.0, le=1.0)
    timeframe: DateRange
    description: str
    recommendations: List[str]
    metric: Optional[str] = None
    channel: Optional[str] = None
    trajectory_ref: Optional[str] = None

    @field_validator("timeframe")
    @classmethod
    def timeframe_forward(cls, v: DateRange) -> DateRange:
        if v.end <= v.start:
            raise ValueError("risk timeframe end must be after start")
        return v


class ImpactEstimate(BaseModel):
    metric: str
    improvement: float
    confidence: float = Field(ge=0.0, le=1.0)


class Implementation(BaseModel):
    description: str
    steps: List[str]
    effort: Effort
    timeline: str


class PivotRecommendation(BaseModel):
    """Actionable, prioritized strategy change; created fresh per simulation run."""

    id: str
    type: RecommendationType
    priority: int = Field(ge=0, le=10)
    impact_estimate: ImpactEstimate
    implementation: Implementation
    source: str  # risk:<type>:<subject>, scenario:<name> or context:<signal>:<subject>


class RecommendationImpact(BaseModel):
    """Projected effect of applying one recommendation to the baseline."""

    recommendation_id: str
    metric: str
    baseline_value: float
    projected_value: float
    improvement: float
    confidence: float
    uncertainty: float
    projected_trajectory: List[TrajectoryPoint]
    lower_bound: List[TrajectoryPoint]
    upper_bound: List[TrajectoryPoint]


# ----- Options -----


class ForecastOptions(BaseModel):
    on_insufficient_data: Literal["raise", "skip"] = "raise"
    damping: float = 0.9
    history_saturation_days: int = 14  # history points at which benchmarks stop contributing


class ScenarioOptions(BaseModel):
    include_market_factors: bool = False
    include_seasonality: bool = False
    include_competition: bool = False
    seasonal_sensitivity: float = 0.5
    max_workers: int = 1


class RiskThresholds(BaseModel):
    """Detector thresholds; any field may be overridden per call."""

    model_config = ConfigDict(extra="forbid")

    performance_dip_threshold: float = 0.2
    audience_fatigue_threshold: float = 0.15
    competitor_growth_threshold: float = 0.25
    budget_utilization_threshold: float = 0.9
    min_time_remaining: float = 0.1
    confidence_threshold: float = 0.5


class SynthesisOptions(BaseModel):
    max_recommendations: int = 5
    min_impact_threshold: float = 0.05
    min_confidence_threshold: float = 0.6
    opportunity_threshold: float = 0.05
    # channels at or above this spent/allocated share never receive reallocated budget
    budget_utilization_threshold: float = 0.9


class SimulationOptions(BaseModel):
    forecast: ForecastOptions = Field(default_factory=ForecastOptions)
    scenarios: ScenarioOptions = Field(default_factory=ScenarioOptions)
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    synthesis: SynthesisOptions = Field(default_factory=SynthesisOptions)
    detect_scenario_risks: bool = False
    estimate_impacts: bool = False
    timeout_seconds: Optional[float] = None


# ----- Result bundle -----


class ModelMetadata(BaseModel):
    processing_time_ms: float
    model_id: str
    engine_version: str
    data_quality: DataQualityScore
    granularity: Granularity
    horizon_days: int
    point_count: int
    warnings: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utcnow)


class SimulationResultBundle(BaseModel):
    """Everything one simulation produced; read-only for persistence and UI layers."""

    simulation_id: str
    campaign_id: str
    status: SimulationStatus
    trajectories: List[TrajectoryPoint]
    scenarios: List[ScenarioResult]
    scenario_failures: List[ScenarioFailure] = Field(default_factory=list)
    risks: List[RiskAlert]
    recommendations: List[PivotRecommendation]
    recommendation_impacts: List[RecommendationImpact] = Field(default_factory=list)
    model_metadata: ModelMetadata


# ----- Prediction accuracy -----


class PredictionComparison(BaseModel):
    """One predicted trajectory value matched with the observed value for the same date and metric."""

    date: date
    metric: str
    predicted: float
    actual: float
    confidence: float
    error: float  # absolute
    percentage_error: float  # 0 when actual is 0


class AccuracyMetrics(BaseModel):
    count: int
    mape: float
    rmse: float
    mae: float
    r2_score: float
    confidence_calibration: float


class AccuracyAlert(BaseModel):
    type: Literal["accuracy_degradation", "confidence_miscalibration", "prediction_bias"]
    severity: Severity
    message: str
    details: Dict[str, float] = Field(default_factory=dict)


class AccuracyReport(BaseModel):
    """Predicted-vs-actual evaluation of a stored simulation's baseline trajectory."""

    simulation_id: str
    campaign_id: str
    model_id: str
    engine_version: str
    comparisons: List[PredictionComparison]
    overall: Optional[AccuracyMetrics] = None
    by_metric: Dict[str, AccuracyMetrics] = Field(default_factory=dict)
    status: Literal["excellent", "good", "degraded", "poor", "insufficient_data"]
    alerts: List[AccuracyAlert] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=utcnow)


# ----- API -----


class SimulateRequest(BaseModel):
    """Body for POST /simulations and /simulations/preview."""

    context: SimulationContext
    options: SimulationOptions = Field(default_factory=SimulationOptions)


class AccuracyRequest(BaseModel):
    """Body for POST /simulations/{simulation_id}/accuracy."""

    actuals: List[PerformanceMetric]
    previous: Optional[AccuracyMetrics] = None  # earlier evaluation to check degradation against


class SimulationRunRow(BaseModel):
    """One persisted simulation run (summary, without the result payload)."""

    simulation_id: str
    campaign_id: str
    organization_id: str
    status: str
    created_at: datetime
    engine_version: str
    processing_time_ms: float
    risk_count: int
    recommendation_count: int


class SimulationRunsResponse(BaseModel):
    """Response for GET /simulations."""

    runs: List[SimulationRunRow]
    total: int


class EngineVersionResponse(BaseModel):
    engine_version: str
    forecast_model_id: str
    scenario_model_id: str
