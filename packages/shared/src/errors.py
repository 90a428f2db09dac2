"""Typed simulation errors. Raised by engine stages, mapped to HTTP status codes by the API."""
from typing import Any, Dict, List, Optional


class SimulationError(Exception):
    """Base error for the simulation engine."""

    code = "SIMULATION_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "type": type(self).__name__,
            "code": self.code,
            "retryable": self.retryable,
            "context": self.context,
        }


class ValidationError(SimulationError):
    """Malformed request: bad timeframe, empty metric or scenario list. Raised before any computation."""

    code = "VALIDATION_ERROR"


class InsufficientDataError(SimulationError):
    """No historical or benchmark data for one or more requested metrics."""

    code = "INSUFFICIENT_DATA"

    def __init__(self, message: str, missing_metrics: Optional[List[str]] = None, **kwargs: Any) -> None:
        self.missing_metrics = list(missing_metrics or [])
        ctx = dict(kwargs.pop("context", None) or {})
        ctx.setdefault("missing_metrics", self.missing_metrics)
        super().__init__(message, context=ctx, **kwargs)


class ComputationError(SimulationError):
    """Unexpected numeric failure; identifies the offending metric and scenario."""

    code = "COMPUTATION_ERROR"

    def __init__(
        self,
        message: str,
        metric: Optional[str] = None,
        scenario: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.metric = metric
        self.scenario = scenario
        ctx = dict(kwargs.pop("context", None) or {})
        if metric is not None:
            ctx.setdefault("metric", metric)
        if scenario is not None:
            ctx.setdefault("scenario", scenario)
        super().__init__(message, context=ctx, **kwargs)


class SimulationTimeoutError(SimulationError):
    """Pipeline exceeded its wall-clock budget. Safe to retry."""

    code = "SIMULATION_TIMEOUT"
    retryable = True
