from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from repomon.rules import (
    RuleTable,
    UnsupportedFieldValue,
    canonical_field_name,
    coerce_field_value,
    coerce_record_fields,
    load_rule_table,
)
from repomon.schemas import ActivityLevel, ProjectStatus


def test_extract_text_fields_picks_up_technologies_status_and_progress() -> None:
    rules = RuleTable()
    found = rules.extract_text_fields(
        "The migration is 75% complete. Built with Python and Docker. The project is on hold."
    )

    assert found["technologies"] == ["Python", "Docker"]
    assert found["status"] == ["stalled"]
    assert found["progress"] == ["75"]


def test_extract_text_fields_reports_risks_and_opportunities() -> None:
    rules = RuleTable()
    found = rules.extract_text_fields("Release is delayed by tech debt. Help wanted on the CLI.")

    assert found["risk_factors"] == ["Schedule slippage", "Technical debt noted"]
    assert found["opportunities"] == ["Open contribution opportunities"]


def test_technologies_for_markers_and_extensions() -> None:
    rules = RuleTable()

    assert rules.technologies_for_markers(["README.md", "pyproject.toml", "Dockerfile"]) == ["Python", "Docker"]
    assert rules.technologies_for_extensions({".py": 40, ".ts": 10, ".go": 1}) == ["Python", "TypeScript"]
    assert rules.technologies_for_extensions({}) == []


def test_resolve_status_accepts_canonical_values_and_aliases() -> None:
    rules = RuleTable()

    assert rules.resolve_status("Active") == ProjectStatus.active
    assert rules.resolve_status("paused") == ProjectStatus.stalled
    assert rules.resolve_status("in-progress") == ProjectStatus.active
    with pytest.raises(UnsupportedFieldValue, match="unrecognized status"):
        rules.resolve_status("exploding")


def test_canonical_field_name_maps_aliases() -> None:
    assert canonical_field_name("riskFactors") == "risk_factors"
    assert canonical_field_name("recentChanges") == "recent_changes"
    assert canonical_field_name("Tech") == "technologies"
    assert canonical_field_name("status") == "status"


def test_coerce_field_value_handles_each_field_shape() -> None:
    rules = RuleTable()

    assert coerce_field_value("technologies", "Python, Go ,Python", rules=rules) == ["Python", "Go"]
    assert coerce_field_value("contributors", ["ana", "bo"], rules=rules) == ["ana", "bo"]
    assert coerce_field_value("progress", "140", rules=rules) == 100
    assert coerce_field_value("progress", "-5", rules=rules) == 0
    assert coerce_field_value("progress", "42%", rules=rules) == 42
    assert coerce_field_value("activity", "HIGH", rules=rules) == ActivityLevel.high
    assert coerce_field_value("last_activity", "2026-01-02T03:04:05Z", rules=rules) == datetime(
        2026, 1, 2, 3, 4, 5, tzinfo=UTC
    )
    assert coerce_field_value("name", "  Atlas  ", rules=rules) == "Atlas"


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("progress", "most of it"),
        ("progress", True),
        ("technologies", 7),
        ("technologies", ""),
        ("activity", "frantic"),
        ("name", "   "),
        ("id", "replaced"),
    ],
)
def test_coerce_field_value_rejects_uninterpretable_values(field: str, value: object) -> None:
    with pytest.raises(UnsupportedFieldValue):
        coerce_field_value(field, value, rules=RuleTable())


def test_coerce_record_fields_splits_accepted_and_rejected_keys() -> None:
    fields, rejected = coerce_record_fields(
        {
            "status": "on hold",
            "riskFactors": ["Bus factor"],
            "progress": "n/a",
            "mystery": 1,
            "description": None,
        },
        rules=RuleTable(),
    )

    assert fields == {"status": ProjectStatus.stalled, "risk_factors": ["Bus factor"]}
    assert rejected == ["progress", "mystery"]


def test_load_rule_table_replaces_or_extends_defaults(tmp_path: Path) -> None:
    replace_path = tmp_path / "replace.yml"
    replace_path.write_text(
        "marker_rules:\n"
        "  - filename: mix.exs\n"
        "    technology: Elixir\n",
        encoding="utf-8",
    )
    replaced = load_rule_table(replace_path)
    assert replaced.technologies_for_markers(["mix.exs", "package.json"]) == ["Elixir"]
    assert replaced.text_rules == RuleTable().text_rules

    extend_path = tmp_path / "extend.yml"
    extend_path.write_text(
        "extend: true\n"
        "marker_rules:\n"
        "  - filename: mix.exs\n"
        "    technology: Elixir\n"
        "status_aliases:\n"
        "  frozen: stalled\n",
        encoding="utf-8",
    )
    extended = load_rule_table(extend_path)
    assert extended.technologies_for_markers(["mix.exs", "package.json"]) == ["Node.js", "Elixir"]
    assert extended.resolve_status("Frozen") == ProjectStatus.stalled


def test_load_rule_table_rejects_invalid_rules(tmp_path: Path) -> None:
    path = tmp_path / "bad.yml"
    path.write_text(
        "text_rules:\n"
        "  - pattern: '('\n"
        "    field: status\n",
        encoding="utf-8",
    )

    with pytest.raises(ValueError, match="invalid pattern"):
        load_rule_table(path)
