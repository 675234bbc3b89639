from __future__ import annotations

from datetime import UTC, datetime

import pytest

from repomon.analysis import BASELINE_RECOMMENDATIONS, RiskLevel, analyze_record, risk_level_for, risk_score_for
from repomon.merge import synthesize_minimal_record
from repomon.monitor_config import ConfidencePolicy
from repomon.schemas import ActivityLevel, CanonicalRecord, ProjectStatus

NOW = datetime(2026, 4, 1, 12, 0, tzinfo=UTC)


def _record(**fields: object) -> CanonicalRecord:
    return CanonicalRecord(id="repo@acme-atlas", name="acme/atlas", last_updated=NOW, **fields)


def test_healthy_record_scores_low_and_gets_baseline_recommendations() -> None:
    record = _record(status=ProjectStatus.active, activity=ActivityLevel.high, confidence=0.9)

    analysis = analyze_record(record)

    assert analysis.risk_score == 2
    assert analysis.risk_level == RiskLevel.low
    assert analysis.recommendations == list(BASELINE_RECOMMENDATIONS)


def test_stalled_record_with_risks_is_critical_and_follows_context() -> None:
    record = _record(
        status=ProjectStatus.stalled,
        activity=ActivityLevel.none,
        risk_factors=["Budget", "Hiring", "Vendor delay"],
        confidence=0.5,
    )

    analysis = analyze_record(record, context="SOC2 audit before the Q3 release")

    assert analysis.risk_score == 81
    assert analysis.risk_level == RiskLevel.critical
    assert analysis.recommendations == [
        "Immediate risk mitigation required",
        "Review open risk factors with the project owner",
        "Confirm ownership and a restart date for the stalled work",
        "Corroborate this record with another source or a manual entry",
        "Schedule regular compliance audits",
        "Check the delivery plan against the upcoming deadline",
    ]


def test_archived_projects_are_not_penalized_for_inactivity() -> None:
    record = _record(status=ProjectStatus.archived, activity=ActivityLevel.none, confidence=0.9)

    assert risk_score_for(record) == 17


def test_minimal_record_is_high_risk_and_asks_for_status() -> None:
    record = synthesize_minimal_record("https://github.com/acme/atlas", entity_id="repo@acme-atlas", confidence=0.1)

    analysis = analyze_record(record)

    assert analysis.risk_level == RiskLevel.high
    assert "Record the current project status with a manual entry" in analysis.recommendations


def test_corroboration_follows_enhancement_threshold() -> None:
    record = _record(status=ProjectStatus.active, activity=ActivityLevel.high, confidence=0.7)

    strict = analyze_record(record)
    lenient = analyze_record(record, policy=ConfidencePolicy(enhancement_threshold=0.6))

    corroborate = "Corroborate this record with another source or a manual entry"
    assert corroborate in strict.recommendations
    assert corroborate not in lenient.recommendations


def test_analysis_is_repeatable() -> None:
    record = _record(status=ProjectStatus.unknown, risk_factors=["Budget"], confidence=0.4)

    assert analyze_record(record, context="security") == analyze_record(record, context="security")


@pytest.mark.parametrize(
    ("score", "expected"),
    [(0, RiskLevel.low), (24, RiskLevel.low), (25, RiskLevel.medium), (50, RiskLevel.high), (75, RiskLevel.critical)],
)
def test_risk_level_bands(score: int, expected: RiskLevel) -> None:
    assert risk_level_for(score) == expected


def test_analysis_serializes_with_aliases() -> None:
    payload = analyze_record(_record(confidence=0.9)).model_dump(mode="json", by_alias=True)

    assert set(payload) == {"riskLevel", "riskScore", "recommendations"}
