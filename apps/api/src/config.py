"""Application config from environment. Load .env before importing this (e.g. in app.py)."""
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./campaign_simulation.db"

    # API
    api_key: str | None = None  # Optional; if set, X-API-Key or Authorization: Bearer required

    # CORS (comma-separated origins; default dev)
    cors_origins: str = "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173,http://127.0.0.1:3000"

    # Logging
    log_level: str = "INFO"

    # Simulation
    simulation_timeout_seconds: Optional[float] = 30.0  # 0 or unset = no timeout
    max_scenario_workers: int = 1
    default_confidence_threshold: float = 0.5

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @field_validator("log_level")
    @classmethod
    def log_level_upper(cls, v: str) -> str:
        return v.upper() if v else "INFO"

    @field_validator("max_scenario_workers")
    @classmethod
    def workers_positive(cls, v: int) -> int:
        return max(1, v)


def get_settings() -> Settings:
    """Return validated settings (singleton per process)."""
    return Settings()
