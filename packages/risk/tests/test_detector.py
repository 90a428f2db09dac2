"""Risk detector tests: each pattern, ranking, confidence filtering, degenerate inputs."""
import re
from datetime import date, timedelta

import pytest

from packages.risk.src.detector import DETECTORS, detect_risks, rank_risks
from packages.shared.src.enums import RiskType, Severity
from packages.shared.src.schemas import (
    BudgetData,
    CampaignData,
    CreativeAsset,
    DateRange,
    RiskAlert,
    RiskThresholds,
)

PERCENT = re.compile(r"\d+(\.\d+)?%")


def _of_type(risks, risk_type):
    return [r for r in risks if r.type == risk_type]


def _assert_well_formed(risks):
    for r in risks:
        assert PERCENT.search(r.description), r.description
        assert r.recommendations
        for rec in r.recommendations:
            assert rec[0].isupper() and len(rec) > 10
        assert r.timeframe.end > r.timeframe.start
        assert 0 < r.probability <= 1 and 0 < r.confidence <= 1 and r.impact >= 0


def test_every_risk_type_has_a_detector():
    assert set(DETECTORS) == set(RiskType)


def test_declining_ctr_triggers_performance_dip(make_context, make_trajectory, ramp):
    ctx = make_context(metrics=("ctr",))
    trajectory = make_trajectory({"ctr": ramp(0.04, 0.01)})
    dips = _of_type(detect_risks(trajectory, ctx, {"performance_dip_threshold": 0.2}), RiskType.PERFORMANCE_DIP)
    assert dips
    assert dips[0].severity in (Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)
    assert "75.0%" in dips[0].description
    assert dips[0].metric == "ctr"
    _assert_well_formed(dips)

    strict = _of_type(detect_risks(trajectory, ctx, {"performance_dip_threshold": 0.8}), RiskType.PERFORMANCE_DIP)
    assert len(strict) < len(dips)


def test_dip_severity_scales_with_decline(make_context, make_trajectory, ramp):
    ctx = make_context(metrics=("impressions",))
    mild = detect_risks(make_trajectory({"impressions": ramp(1000, 750)}), ctx)
    steep = detect_risks(make_trajectory({"impressions": ramp(1000, 300)}), ctx)
    assert _of_type(mild, RiskType.PERFORMANCE_DIP)[0].severity == Severity.MEDIUM
    assert _of_type(steep, RiskType.PERFORMANCE_DIP)[0].severity == Severity.CRITICAL


def test_rising_cost_is_a_dip(make_context, make_trajectory, ramp):
    ctx = make_context(metrics=("cpc",))
    dips = _of_type(detect_risks(make_trajectory({"cpc": ramp(1.0, 1.6)}), ctx), RiskType.PERFORMANCE_DIP)
    assert dips and "rise" in dips[0].description
    assert not detect_risks(make_trajectory({"cpc": ramp(1.6, 1.0)}), ctx)


def test_engagement_decline_is_fatigue(make_context, make_trajectory, ramp):
    ctx = make_context(metrics=("ctr", "impressions"))
    trajectory = make_trajectory({"ctr": ramp(0.03, 0.02), "impressions": ramp(10000, 10100)})
    fatigue = _of_type(detect_risks(trajectory, ctx), RiskType.AUDIENCE_FATIGUE)
    assert len(fatigue) == 1
    assert any("Introduce new creative variations" in rec for rec in fatigue[0].recommendations)
    _assert_well_formed(fatigue)


def test_broad_decline_is_not_fatigue(make_context, make_trajectory, ramp):
    ctx = make_context(metrics=("ctr", "impressions"))
    trajectory = make_trajectory({"ctr": ramp(0.03, 0.02), "impressions": ramp(10000, 6000)})
    risks = detect_risks(trajectory, ctx)
    assert not _of_type(risks, RiskType.AUDIENCE_FATIGUE)
    assert _of_type(risks, RiskType.PERFORMANCE_DIP)


def test_aged_creatives_raise_fatigue_probability(make_context, make_trajectory, ramp):
    trajectory = make_trajectory({"ctr": ramp(0.03, 0.02), "impressions": [10000] * 30})
    fresh = make_context(metrics=("ctr", "impressions"))
    aged = make_context(
        metrics=("ctr", "impressions"),
        creative_assets=[CreativeAsset(id="hero", launched_at=trajectory[0].date - timedelta(days=60))],
    )
    p_fresh = _of_type(detect_risks(trajectory, fresh), RiskType.AUDIENCE_FATIGUE)[0].probability
    p_aged = _of_type(detect_risks(trajectory, aged), RiskType.AUDIENCE_FATIGUE)[0].probability
    assert p_aged > p_fresh


@pytest.mark.parametrize("metrics", [("ctr",), ("ctr", "cpc")])
def test_engagement_alone_is_a_dip_not_fatigue(make_context, make_trajectory, ramp, metrics):
    """Without a reach or conversion metric to compare against, an engagement decline stays a dip."""
    ctx = make_context(metrics=metrics)
    trajectory = make_trajectory({"ctr": ramp(0.03, 0.02), "cpc": [1.0] * 30})
    risks = detect_risks(trajectory, ctx)
    assert _of_type(risks, RiskType.PERFORMANCE_DIP)
    assert not _of_type(risks, RiskType.AUDIENCE_FATIGUE)


def test_rising_competitor_spend_is_a_threat(make_context, competitor_spend_rising):
    ctx = make_context(competitors=competitor_spend_rising)
    threats = _of_type(detect_risks([], ctx), RiskType.COMPETITOR_THREAT)
    assert threats
    assert any(r.metric == "ad_spend" and "100.0%" in r.description for r in threats)
    for r in threats:
        assert "competitor" in r.description.lower()
        assert any("Monitor competitor campaigns" in rec for rec in r.recommendations)
    _assert_well_formed(threats)


def test_no_competitor_data_no_threat(make_context, make_trajectory, ramp):
    ctx = make_context(competitors=[])
    risks = detect_risks(make_trajectory({"ctr": ramp(0.04, 0.01)}), ctx)
    assert not _of_type(risks, RiskType.COMPETITOR_THREAT)


def test_budget_overrun_with_time_remaining(make_context):
    budget = BudgetData(total=10000, allocated={"meta": 5000, "google": 5000}, spent={"meta": 4800, "google": 3000})
    ctx = make_context(budget=budget)
    overruns = _of_type(detect_risks([], ctx), RiskType.BUDGET_OVERRUN)
    assert [r.description.split()[0] for r in overruns] == ["meta"]
    assert overruns[0].channel == "meta"
    assert any("stricter budget controls" in rec for rec in overruns[0].recommendations)
    _assert_well_formed(overruns)


def test_each_overrunning_channel_is_its_own_alert(make_context):
    budget = BudgetData(allocated={"meta": 1000, "google": 1000}, spent={"meta": 960, "google": 975})
    overruns = _of_type(detect_risks([], make_context(budget=budget)), RiskType.BUDGET_OVERRUN)
    assert sorted(r.channel for r in overruns) == ["google", "meta"]


def test_risk_types_limit_the_detectors(make_context, make_trajectory, ramp, competitor_spend_rising):
    budget = BudgetData(allocated={"meta": 1000}, spent={"meta": 990})
    ctx = make_context(competitors=competitor_spend_rising, budget=budget)
    trajectory = make_trajectory({"ctr": ramp(0.04, 0.01)})
    only_dips = detect_risks(trajectory, ctx, risk_types=[RiskType.PERFORMANCE_DIP])
    assert only_dips and {r.type for r in only_dips} == {RiskType.PERFORMANCE_DIP}
    assert len(detect_risks(trajectory, ctx)) > len(only_dips)


def test_budget_overrun_needs_time_remaining(make_context):
    budget = BudgetData(allocated={"meta": 5000}, spent={"meta": 4800})
    start = date(2025, 3, 1)
    campaign = CampaignData(id="camp_1", start_date=start - timedelta(days=95), end_date=start + timedelta(days=5))
    ctx = make_context(budget=budget, start=start)
    ctx = ctx.model_copy(update={"dataset": ctx.dataset.model_copy(update={"campaign": campaign})})
    assert not _of_type(detect_risks([], ctx), RiskType.BUDGET_OVERRUN)


def test_empty_trajectory_is_valid(make_context):
    assert detect_risks([], make_context()) == []


def test_ranking_is_severity_then_impact_then_probability():
    def alert(severity, impact, probability, metric):
        return RiskAlert(
            type=RiskType.PERFORMANCE_DIP,
            severity=severity,
            probability=probability,
            impact=impact,
            confidence=0.9,
            timeframe=DateRange(start=date(2025, 1, 1), end=date(2025, 1, 2)),
            description="ctr is projected to decline 30.0%",
            recommendations=["Review and refresh creative assets"],
            metric=metric,
        )

    risks = [
        alert(Severity.LOW, 90, 0.9, "a"),
        alert(Severity.CRITICAL, 10, 0.5, "b"),
        alert(Severity.HIGH, 50, 0.4, "c"),
        alert(Severity.HIGH, 50, 0.8, "d"),
        alert(Severity.HIGH, 50, 0.8, "e"),
        alert(Severity.HIGH, 70, 0.1, "f"),
    ]
    assert [r.metric for r in rank_risks(risks)] == ["b", "f", "d", "e", "c", "a"]


def test_mixed_risks_are_ranked(make_context, make_trajectory, ramp, competitor_spend_rising):
    budget = BudgetData(allocated={"meta": 5000}, spent={"meta": 4700})
    ctx = make_context(metrics=("ctr", "impressions"), competitors=competitor_spend_rising, budget=budget)
    trajectory = make_trajectory({"ctr": ramp(0.04, 0.01), "impressions": ramp(10000, 9000)})
    risks = detect_risks(trajectory, ctx)
    assert len({r.type for r in risks}) >= 3
    ranks = [r.severity.rank for r in risks]
    assert ranks == sorted(ranks, reverse=True)


@pytest.mark.parametrize("high,low", [(0.9, 0.5), (0.8, 0.0), (1.0, 0.85)])
def test_lower_confidence_threshold_returns_superset(make_context, make_trajectory, ramp, competitor_spend_rising, high, low):
    ctx = make_context(metrics=("ctr",), competitors=competitor_spend_rising)
    trajectory = make_trajectory({"ctr": ramp(0.04, 0.01)}, confidence=0.7)
    strict = detect_risks(trajectory, ctx, RiskThresholds(confidence_threshold=high))
    loose = detect_risks(trajectory, ctx, RiskThresholds(confidence_threshold=low))
    assert len(loose) >= len(strict)
    assert all(r in loose for r in strict)


def test_detection_is_idempotent(make_context, make_trajectory, ramp, competitor_spend_rising):
    ctx = make_context(metrics=("ctr",), competitors=competitor_spend_rising)
    trajectory = make_trajectory({"ctr": ramp(0.04, 0.01)})
    assert detect_risks(trajectory, ctx) == detect_risks(trajectory, ctx)


def test_trajectory_ref_is_attached(make_context, make_trajectory, ramp):
    ctx = make_context(metrics=("ctr",))
    risks = detect_risks(make_trajectory({"ctr": ramp(0.04, 0.01)}), ctx, trajectory_ref="scenario:pessimistic")
    assert risks and all(r.trajectory_ref == "scenario:pessimistic" for r in risks)


def test_unknown_threshold_override_is_rejected(make_context):
    with pytest.raises(ValueError):
        detect_risks([], make_context(), {"performance_dip": 0.3})
