"""Engine and session helpers. DATABASE_URL selects the backend (SQLite by default)."""
import os
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

DEFAULT_DATABASE_URL = "sqlite:///./campaign_simulation.db"


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


@contextmanager
def get_session() -> Iterator[Session]:
    """Session for scripts and background work."""
    with Session(get_engine()) as session:
        yield session


def get_session_fastapi() -> Iterator[Session]:
    """FastAPI dependency: one session per request."""
    with Session(get_engine()) as session:
        yield session
