from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from repomon.executor import StrategyOutcome
from repomon.rules import LIST_FIELDS
from repomon.schemas import (
    ActivityLevel,
    CanonicalRecord,
    ProjectStatus,
    Provenance,
    SourceType,
    dedupe_preserving_order,
    utc_now,
)

LIMITED_INFORMATION_RISK = "Limited information available"
GATHER_MORE_DATA_OPPORTUNITY = "Gather more data about repository"


class NoOutcomesError(ValueError):
    pass


def is_default_value(field_name: str, value: Any) -> bool:
    if value is None:
        return True
    if field_name == "status":
        return value == ProjectStatus.unknown
    if field_name == "activity":
        return value == ActivityLevel.none
    if field_name == "progress":
        return value == 0
    if isinstance(value, str):
        return not value.strip()
    return False


def sort_outcomes(outcomes: Iterable[StrategyOutcome]) -> list[StrategyOutcome]:
    return sorted(outcomes, key=lambda outcome: (-outcome.confidence, outcome.strategy.value))


def merge_outcomes(
    outcomes: list[StrategyOutcome],
    *,
    now: Callable[[], datetime] = utc_now,
) -> CanonicalRecord:
    """Fold strategy outcomes into one record.

    Single-valued fields come from the most confident outcome that asserts a
    non-default value. List fields are unioned in confidence order and every
    provenance entry is kept.
    """
    if not outcomes:
        raise NoOutcomesError("cannot merge an empty outcome list")
    if len(outcomes) == 1:
        return outcomes[0].record

    ranked = sort_outcomes(outcomes)
    records = [outcome.record for outcome in ranked]
    best = records[0]

    merged: dict[str, Any] = {}
    for field_name in ("id", "name", "description", "status", "activity", "progress"):
        merged[field_name] = getattr(best, field_name)
        for record in records:
            value = getattr(record, field_name)
            if not is_default_value(field_name, value):
                merged[field_name] = value
                break

    for field_name in LIST_FIELDS:
        merged[field_name] = dedupe_preserving_order(
            value for record in records for value in getattr(record, field_name)
        )

    activity_times = [record.last_activity for record in records if record.last_activity is not None]
    return CanonicalRecord(
        **merged,
        data_sources=[source for record in records for source in record.data_sources],
        confidence=max(outcome.confidence for outcome in ranked),
        last_activity=max(activity_times) if activity_times else None,
        last_updated=now(),
    )


def synthesize_minimal_record(
    identifier: str,
    *,
    entity_id: str | None = None,
    hints: Mapping[str, str] | None = None,
    confidence: float = 0.1,
    reason: str | None = None,
) -> CanonicalRecord:
    """Build the placeholder record returned when nothing else produced one."""
    score = min(max(confidence, 0.0), 0.1)
    hint_values = dict(hints or {})
    text = identifier.strip() or "unknown"
    metadata: dict[str, Any] = {"synthetic": True}
    if reason:
        metadata["reason"] = reason
    return CanonicalRecord(
        id=entity_id or text,
        name=hint_values.get("name") or text,
        description=hint_values.get("description"),
        status=ProjectStatus.unknown,
        activity=ActivityLevel.none,
        progress=0,
        risk_factors=[LIMITED_INFORMATION_RISK],
        opportunities=[GATHER_MORE_DATA_OPPORTUNITY],
        data_sources=[
            Provenance(
                source_type=SourceType.manual,
                source_identifier=text,
                confidence=score,
                metadata=metadata,
            )
        ],
        confidence=score,
    )


def apply_hints(record: CanonicalRecord, hints: Mapping[str, str] | None) -> CanonicalRecord:
    """Fill a missing description or placeholder name from caller-supplied hints."""
    if not hints:
        return record
    updates: dict[str, Any] = {}
    if hints.get("description") and not record.description:
        updates["description"] = hints["description"]
    if hints.get("name") and record.name in {record.id, ""}:
        updates["name"] = hints["name"]
    if not updates:
        return record
    return record.model_copy(update=updates)
