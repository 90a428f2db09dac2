"""Apply the simulation_runs migration to an in-memory SQLite database."""
import importlib.util
from pathlib import Path

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

VERSIONS = Path(__file__).resolve().parent.parent / "versions"


def _load(name):
    spec = importlib.util.spec_from_file_location(f"migration_{name}", VERSIONS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_upgrade_and_downgrade():
    migration = _load("001_simulation_runs")
    assert migration.revision == "001" and migration.down_revision is None
    engine = sa.create_engine("sqlite:///:memory:")
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            migration.upgrade()
        inspector = sa.inspect(conn)
        columns = {c["name"] for c in inspector.get_columns("simulation_runs")}
        assert {"simulation_id", "campaign_id", "status", "created_at", "result_json"} <= columns
        indexes = {i["name"] for i in inspector.get_indexes("simulation_runs")}
        assert indexes == {"ix_simulation_runs_campaign_id", "ix_simulation_runs_created_at"}

        with Operations.context(MigrationContext.configure(conn)):
            migration.downgrade()
        assert "simulation_runs" not in sa.inspect(conn).get_table_names()
