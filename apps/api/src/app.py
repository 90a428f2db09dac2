"""FastAPI app: health, run/preview simulations, stored simulation lookup, engine version."""
import logging
import os
from dataclasses import asdict
from pathlib import Path

# Load .env so DATABASE_URL and LOG_LEVEL are set (try repo root, then cwd)
from dotenv import load_dotenv
_app_dir = Path(__file__).resolve().parent
for _env_dir in [_app_dir.parent.parent.parent, Path.cwd()]:
    _env_file = _env_dir / ".env"
    if _env_file.exists():
        load_dotenv(_env_file)
        break

# Apply validated config to env so db and other consumers see it
from .config import get_settings
_settings = get_settings()
os.environ.setdefault("DATABASE_URL", _settings.database_url)

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session, SQLModel

from packages.forecasting.src.accuracy import evaluate_accuracy
from packages.governance.src.metadata import get_simulation, list_simulations, record_simulation
from packages.governance.src.versions import ENGINE_VERSION, FORECAST_MODEL_ID, SCENARIO_MODEL_ID
from packages.shared.src.db import get_engine, get_session_fastapi
from packages.shared.src.errors import (
    ComputationError,
    InsufficientDataError,
    SimulationError,
    SimulationTimeoutError,
    ValidationError,
)
from packages.shared.src.schemas import (
    AccuracyReport,
    AccuracyRequest,
    EngineVersionResponse,
    SimulateRequest,
    SimulationOptions,
    SimulationResultBundle,
    SimulationRunRow,
    SimulationRunsResponse,
)
from packages.simulation.src.orchestrator import run_simulation
from .middleware import (
    ApiKeyMiddleware,
    CorrelationIdMiddleware,
    LoggingMiddleware,
    configure_logging,
)

configure_logging(_settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Campaign Simulation Engine API", version=ENGINE_VERSION)

ERROR_STATUS = {
    ValidationError: 422,
    InsufficientDataError: 422,
    SimulationTimeoutError: 503,
    ComputationError: 500,
}


@app.on_event("startup")
def ensure_tables():
    """Create simulation_runs if missing (migrations own the schema in deployed databases)."""
    try:
        SQLModel.metadata.create_all(get_engine())
    except Exception:
        logger.exception("could not create tables at startup")


app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(ApiKeyMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SimulationError)
def simulation_error_handler(request: Request, exc: SimulationError):
    """Typed engine failures: 422 for bad input or missing data, 503 for timeouts, 500 otherwise."""
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    logger.warning("simulation error %s: %s", exc.code, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.exception_handler(Exception)
def unhandled_exception_handler(request, exc):
    """Return 500 with error detail so frontend and logs show the real cause."""
    logger.exception("unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


def _health_db_ok() -> bool:
    """Lightweight DB readiness check (SELECT 1)."""
    from sqlalchemy import text
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


@app.get("/health")
def health():
    """Liveness and readiness: includes DB check."""
    db_ok = _health_db_ok()
    status = "ok" if db_ok else "degraded"
    if not db_ok:
        return JSONResponse(content={"status": status, "database": "unavailable"}, status_code=503)
    return {"status": status}


@app.get("/engine/version", response_model=EngineVersionResponse)
def engine_version():
    return EngineVersionResponse(
        engine_version=ENGINE_VERSION,
        forecast_model_id=FORECAST_MODEL_ID,
        scenario_model_id=SCENARIO_MODEL_ID,
    )


def _with_defaults(options: SimulationOptions) -> SimulationOptions:
    """Fill request options left at their defaults from settings."""
    update = {}
    if options.timeout_seconds is None and _settings.simulation_timeout_seconds:
        update["timeout_seconds"] = _settings.simulation_timeout_seconds
    if options.scenarios.max_workers == 1 and _settings.max_scenario_workers > 1:
        update["scenarios"] = options.scenarios.model_copy(update={"max_workers": _settings.max_scenario_workers})
    if "confidence_threshold" not in options.thresholds.model_fields_set:
        update["thresholds"] = options.thresholds.model_copy(
            update={"confidence_threshold": _settings.default_confidence_threshold}
        )
    return options.model_copy(update=update) if update else options


# ----- API: simulations -----


@app.post("/simulations", response_model=SimulationResultBundle, status_code=201)
def create_simulation(body: SimulateRequest, session: Session = Depends(get_session_fastapi)):
    """Run a simulation and persist the bundle keyed by simulation id."""
    bundle = run_simulation(body.context, _with_defaults(body.options))
    if not record_simulation(session, bundle, body.context):
        raise HTTPException(status_code=409, detail=f"simulation {bundle.simulation_id} already stored")
    return bundle


@app.post("/simulations/preview", response_model=SimulationResultBundle)
def preview_simulation(body: SimulateRequest):
    """Run a simulation without persisting it."""
    return run_simulation(body.context, _with_defaults(body.options))


@app.get("/simulations", response_model=SimulationRunsResponse)
def list_simulation_runs(
    session: Session = Depends(get_session_fastapi),
    campaign_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
):
    """Most recent stored runs, optionally for one campaign."""
    runs = list_simulations(session, campaign_id=campaign_id, limit=limit)
    return SimulationRunsResponse(
        runs=[SimulationRunRow(**asdict(r)) for r in runs],
        total=len(runs),
    )


@app.get("/simulations/{simulation_id}", response_model=SimulationResultBundle)
def get_simulation_run(simulation_id: str, session: Session = Depends(get_session_fastapi)):
    bundle = get_simulation(session, simulation_id)
    if bundle is None:
        raise HTTPException(status_code=404, detail=f"simulation {simulation_id} not found")
    return bundle


@app.post("/simulations/{simulation_id}/accuracy", response_model=AccuracyReport)
def evaluate_simulation_accuracy(
    simulation_id: str,
    body: AccuracyRequest,
    session: Session = Depends(get_session_fastapi),
):
    """Compare a stored run's baseline trajectory with observed performance."""
    bundle = get_simulation(session, simulation_id)
    if bundle is None:
        raise HTTPException(status_code=404, detail=f"simulation {simulation_id} not found")
    return evaluate_accuracy(bundle, body.actuals, previous=body.previous)
