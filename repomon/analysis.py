from __future__ import annotations

from enum import Enum

from pydantic import Field

from repomon.monitor_config import ConfidencePolicy
from repomon.schemas import ActivityLevel, CanonicalRecord, ProjectStatus, RepoMonBaseModel, dedupe_preserving_order

RISK_FACTOR_WEIGHT = 12
RISK_FACTOR_CAP = 48
CONFIDENCE_GAP_WEIGHT = 20
MIN_RECOMMENDATIONS = 3

STATUS_RISK = {
    ProjectStatus.active: 0,
    ProjectStatus.planning: 5,
    ProjectStatus.unknown: 10,
    ProjectStatus.archived: 15,
    ProjectStatus.stalled: 20,
}
ACTIVITY_RISK = {
    ActivityLevel.high: 0,
    ActivityLevel.medium: 3,
    ActivityLevel.low: 8,
    ActivityLevel.none: 15,
}

CONTEXT_RECOMMENDATIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("security", "vulnerab", "breach"), "Schedule a security review"),
    (("compliance", "audit", "regulat"), "Schedule regular compliance audits"),
    (("deadline", "release", "launch", "milestone"), "Check the delivery plan against the upcoming deadline"),
    (("vendor", "third-party", "supplier"), "Review vendor dependencies and their support terms"),
)
BASELINE_RECOMMENDATIONS = (
    "Keep manual entries current after each status review",
    "Monitor contributor activity for sudden drops",
    "Document ownership and escalation contacts",
)


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class RecordAnalysis(RepoMonBaseModel):
    risk_level: RiskLevel = Field(alias="riskLevel")
    risk_score: int = Field(alias="riskScore", ge=0, le=100)
    recommendations: list[str] = Field(default_factory=list)


def risk_score_for(record: CanonicalRecord) -> int:
    score = min(len(record.risk_factors) * RISK_FACTOR_WEIGHT, RISK_FACTOR_CAP)
    score += STATUS_RISK[record.status]
    # Archived projects are expected to be quiet.
    if record.status != ProjectStatus.archived:
        score += ACTIVITY_RISK[record.activity]
    score += round((1.0 - record.confidence) * CONFIDENCE_GAP_WEIGHT)
    return max(0, min(100, score))


def risk_level_for(score: int) -> RiskLevel:
    if score >= 75:
        return RiskLevel.critical
    if score >= 50:
        return RiskLevel.high
    if score >= 25:
        return RiskLevel.medium
    return RiskLevel.low


def analyze_record(
    record: CanonicalRecord,
    *,
    context: str | None = None,
    policy: ConfidencePolicy | None = None,
) -> RecordAnalysis:
    """Score a record's risk and suggest next steps.

    The result depends only on the record, the caller's context and the
    policy, so repeated calls on the same record agree.
    """
    resolved_policy = policy or ConfidencePolicy()
    score = risk_score_for(record)
    level = risk_level_for(score)

    recommendations: list[str] = []
    if level in {RiskLevel.high, RiskLevel.critical}:
        recommendations.append("Immediate risk mitigation required")
        recommendations.append("Review open risk factors with the project owner")
    if record.status == ProjectStatus.stalled:
        recommendations.append("Confirm ownership and a restart date for the stalled work")
    elif record.status == ProjectStatus.unknown:
        recommendations.append("Record the current project status with a manual entry")
    if record.confidence < resolved_policy.enhancement_threshold:
        recommendations.append("Corroborate this record with another source or a manual entry")

    lowered = (context or "").lower()
    for keywords, recommendation in CONTEXT_RECOMMENDATIONS:
        if any(keyword in lowered for keyword in keywords):
            recommendations.append(recommendation)

    recommendations = dedupe_preserving_order(recommendations)
    for baseline in BASELINE_RECOMMENDATIONS:
        if len(recommendations) >= MIN_RECOMMENDATIONS:
            break
        if baseline not in recommendations:
            recommendations.append(baseline)

    return RecordAnalysis(risk_level=level, risk_score=score, recommendations=recommendations)
