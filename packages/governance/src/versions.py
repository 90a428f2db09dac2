"""Engine and model version identifiers, reported in every result bundle and persisted run."""

ENGINE_VERSION = "1.0.0"
FORECAST_MODEL_ID = "damped_trend_benchmark_blend"
SCENARIO_MODEL_ID = "percentile_elasticity_v1"
