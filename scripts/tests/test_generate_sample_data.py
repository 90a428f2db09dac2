import json

from packages.governance.src.metadata import get_simulation
from packages.recommendations.src.insights import context_candidates
from packages.shared.src.db import get_engine, get_session
from packages.shared.src.schemas import SimulationContext, SynthesisOptions
from packages.shared.src.validation import validate_context
from scripts.generate_sample_data import build_sample_context, main


def test_same_seed_same_context():
    assert build_sample_context(5) == build_sample_context(5)
    assert build_sample_context(5) != build_sample_context(6)


def test_sample_context_is_valid():
    ctx = build_sample_context()
    validate_context(ctx)
    assert ctx.simulation_id == "sample-42"
    assert {m.channel for m in ctx.dataset.historical_performance} == {"meta", "google"}


def test_main_writes_loadable_json(tmp_path):
    out = tmp_path / "nested" / "ctx.json"
    assert main(["--seed", "9", "--out", str(out)]) == 0
    ctx = SimulationContext.model_validate(json.loads(out.read_text()))
    assert ctx == build_sample_context(9)


def test_persist_stores_the_sample_run(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'runs.db'}")
    get_engine.cache_clear()
    try:
        assert main(["--seed", "4", "--out", str(tmp_path / "ctx.json"), "--persist"]) == 0
        with get_session() as session:
            bundle = get_simulation(session, "sample-4")
        assert bundle is not None
        assert bundle.campaign_id == "camp_spring_sale"
    finally:
        get_engine.cache_clear()


def test_sample_dataset_yields_context_recommendations():
    ids = {r.id for r in context_candidates(build_sample_context(), SynthesisOptions())}
    assert "creative_refresh:context:cr_hero_video" in ids
    assert "audience_expansion:context:lookalike_purchasers" in ids
