from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator

from repomon.schemas import ActivityLevel, ProjectStatus, RepoMonBaseModel, dedupe_preserving_order, ensure_utc

SCALAR_FIELDS = ("name", "description", "status", "activity", "progress", "last_activity")
LIST_FIELDS = ("technologies", "contributors", "recent_changes", "risk_factors", "opportunities")

FIELD_NAME_ALIASES = {
    "recentchanges": "recent_changes",
    "recent_changes": "recent_changes",
    "changes": "recent_changes",
    "riskfactors": "risk_factors",
    "risk_factors": "risk_factors",
    "risks": "risk_factors",
    "lastactivity": "last_activity",
    "last_activity": "last_activity",
    "tech": "technologies",
    "stack": "technologies",
    "technology": "technologies",
    "team": "contributors",
    "contributor": "contributors",
    "opportunity": "opportunities",
    "summary": "description",
    "state": "status",
}


class UnsupportedFieldValue(ValueError):
    pass


class TextRule(RepoMonBaseModel):
    """Maps a regex hit in free text to a record field.

    When ``value`` is unset the first capture group (or the whole match) becomes
    the field value.
    """

    pattern: str
    field: str
    value: str | None = None
    ignore_case: bool = True

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid pattern: {exc}") from exc
        return value

    @field_validator("field")
    @classmethod
    def validate_field(cls, value: str) -> str:
        canonical = canonical_field_name(value)
        if canonical not in SCALAR_FIELDS and canonical not in LIST_FIELDS:
            raise ValueError(f"unknown record field '{value}'")
        return canonical

    def compiled(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.IGNORECASE if self.ignore_case else 0)


class MarkerRule(RepoMonBaseModel):
    filename: str
    technology: str


class ExtensionRule(RepoMonBaseModel):
    extension: str
    technology: str

    @field_validator("extension")
    @classmethod
    def normalize_extension(cls, value: str) -> str:
        text = value.strip().lower()
        return text if text.startswith(".") else f".{text}"


def _default_text_rules() -> list[TextRule]:
    technologies = {
        r"\bpython\b": "Python",
        r"\bdjango\b": "Django",
        r"\bflask\b": "Flask",
        r"\bfastapi\b": "FastAPI",
        r"\btypescript\b": "TypeScript",
        r"\bjavascript\b": "JavaScript",
        r"\bnode(?:\.js)?\b": "Node.js",
        r"\breact\b": "React",
        r"\bnext\.js\b": "Next.js",
        r"\bvue(?:\.js)?\b": "Vue",
        r"\bgolang\b|\bgo module\b": "Go",
        r"\brust\b": "Rust",
        r"\bjava\b": "Java",
        r"\bkotlin\b": "Kotlin",
        r"\bpostgres(?:ql)?\b": "PostgreSQL",
        r"\bmysql\b": "MySQL",
        r"\bredis\b": "Redis",
        r"\bdocker\b": "Docker",
        r"\bkubernetes\b|\bk8s\b": "Kubernetes",
        r"\bterraform\b": "Terraform",
        r"\baws\b": "AWS",
    }
    rules = [TextRule(pattern=pattern, field="technologies", value=tech) for pattern, tech in technologies.items()]
    rules.extend(
        [
            TextRule(pattern=r"\b(?:on hold|paused|blocked indefinitely|stalled)\b", field="status", value="stalled"),
            TextRule(pattern=r"\b(?:archived|deprecated|sunset|end of life)\b", field="status", value="archived"),
            TextRule(pattern=r"\b(?:in progress|under active development|actively developed)\b", field="status", value="active"),
            TextRule(pattern=r"\b(?:proposal|planning phase|roadmap draft|not yet started)\b", field="status", value="planning"),
            TextRule(pattern=r"\b(\d{1,3})\s*%\s*(?:complete|completed|done|finished)\b", field="progress"),
            TextRule(pattern=r"\bprogress[:\s]+(\d{1,3})\s*%", field="progress"),
            TextRule(pattern=r"\b(?:blocked|blocker)\b", field="risk_factors", value="Blocked work reported"),
            TextRule(pattern=r"\b(?:behind schedule|delayed|delay)\b", field="risk_factors", value="Schedule slippage"),
            TextRule(pattern=r"\b(?:over budget|budget overrun)\b", field="risk_factors", value="Budget overrun"),
            TextRule(pattern=r"\b(?:security (?:issue|vulnerability)|cve-\d{4}-\d+)\b", field="risk_factors", value="Security issue reported"),
            TextRule(pattern=r"\btech(?:nical)? debt\b", field="risk_factors", value="Technical debt noted"),
            TextRule(pattern=r"\b(?:help wanted|good first issue)\b", field="opportunities", value="Open contribution opportunities"),
            TextRule(pattern=r"\b(?:automate|automation)\b", field="opportunities", value="Automation opportunities identified"),
        ]
    )
    return rules


def _default_marker_rules() -> list[MarkerRule]:
    markers = {
        "package.json": "Node.js",
        "tsconfig.json": "TypeScript",
        "next.config.js": "Next.js",
        "pyproject.toml": "Python",
        "setup.py": "Python",
        "requirements.txt": "Python",
        "go.mod": "Go",
        "Cargo.toml": "Rust",
        "pom.xml": "Java",
        "build.gradle": "Java",
        "Gemfile": "Ruby",
        "composer.json": "PHP",
        "Dockerfile": "Docker",
        "docker-compose.yml": "Docker",
        "CMakeLists.txt": "C++",
    }
    return [MarkerRule(filename=name, technology=tech) for name, tech in markers.items()]


def _default_extension_rules() -> list[ExtensionRule]:
    extensions = {
        ".py": "Python",
        ".ts": "TypeScript",
        ".tsx": "TypeScript",
        ".js": "JavaScript",
        ".go": "Go",
        ".rs": "Rust",
        ".java": "Java",
        ".kt": "Kotlin",
        ".rb": "Ruby",
        ".php": "PHP",
        ".cs": "C#",
        ".cpp": "C++",
        ".swift": "Swift",
    }
    return [ExtensionRule(extension=ext, technology=tech) for ext, tech in extensions.items()]


def _default_status_aliases() -> dict[str, ProjectStatus]:
    return {
        "paused": ProjectStatus.stalled,
        "on hold": ProjectStatus.stalled,
        "on-hold": ProjectStatus.stalled,
        "blocked": ProjectStatus.stalled,
        "inactive": ProjectStatus.stalled,
        "completed": ProjectStatus.archived,
        "done": ProjectStatus.archived,
        "deprecated": ProjectStatus.archived,
        "in progress": ProjectStatus.active,
        "in-progress": ProjectStatus.active,
        "ongoing": ProjectStatus.active,
        "planned": ProjectStatus.planning,
        "proposed": ProjectStatus.planning,
    }


class RuleTable(RepoMonBaseModel):
    text_rules: list[TextRule] = Field(default_factory=_default_text_rules)
    marker_rules: list[MarkerRule] = Field(default_factory=_default_marker_rules)
    extension_rules: list[ExtensionRule] = Field(default_factory=_default_extension_rules)
    status_aliases: dict[str, ProjectStatus] = Field(default_factory=_default_status_aliases)
    min_extension_share: float = 0.05

    @field_validator("status_aliases")
    @classmethod
    def normalize_alias_keys(cls, value: dict[str, ProjectStatus]) -> dict[str, ProjectStatus]:
        return {key.strip().lower(): status for key, status in value.items()}

    def extract_text_fields(self, text: str) -> dict[str, list[str]]:
        found: dict[str, list[str]] = {}
        for rule in self.text_rules:
            match = rule.compiled().search(text)
            if match is None:
                continue
            if rule.value is not None:
                value = rule.value
            elif match.groups():
                value = match.group(1)
            else:
                value = match.group(0)
            values = found.setdefault(rule.field, [])
            if value not in values:
                values.append(value)
        return found

    def technologies_for_markers(self, filenames: Iterable[str]) -> list[str]:
        names = set(filenames)
        return dedupe_preserving_order(rule.technology for rule in self.marker_rules if rule.filename in names)

    def technologies_for_extensions(self, extension_counts: dict[str, int]) -> list[str]:
        total = sum(extension_counts.values())
        if total == 0:
            return []
        by_extension = {rule.extension: rule.technology for rule in self.extension_rules}
        ranked = sorted(extension_counts.items(), key=lambda item: (-item[1], item[0]))
        return dedupe_preserving_order(
            by_extension[ext]
            for ext, count in ranked
            if ext in by_extension and count / total >= self.min_extension_share
        )

    def resolve_status(self, value: Any) -> ProjectStatus:
        if isinstance(value, ProjectStatus):
            return value
        text = str(value).strip().lower()
        try:
            return ProjectStatus(text)
        except ValueError:
            pass
        alias = self.status_aliases.get(text)
        if alias is None:
            raise UnsupportedFieldValue(f"unrecognized status '{value}'")
        return alias


def canonical_field_name(name: str) -> str:
    text = name.strip()
    lowered = text.lower()
    return FIELD_NAME_ALIASES.get(lowered, FIELD_NAME_ALIASES.get(lowered.replace("-", "_"), lowered))


def coerce_field_value(field: str, value: Any, *, rules: RuleTable) -> Any:
    """Coerce a loosely typed value into the shape a record field expects.

    Raises ``UnsupportedFieldValue`` when the field is unknown or the value cannot
    be interpreted.
    """
    if field in LIST_FIELDS:
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, (list, tuple, set)):
            items = [str(part) for part in value if part is not None]
        else:
            raise UnsupportedFieldValue(f"{field} expects a list or comma-separated string")
        cleaned = dedupe_preserving_order(items)
        if not cleaned:
            raise UnsupportedFieldValue(f"{field} value is empty")
        return cleaned
    if field == "status":
        return rules.resolve_status(value)
    if field == "activity":
        try:
            return ActivityLevel(str(value).strip().lower())
        except ValueError as exc:
            raise UnsupportedFieldValue(f"unrecognized activity '{value}'") from exc
    if field == "progress":
        if isinstance(value, bool):
            raise UnsupportedFieldValue("progress must be numeric")
        try:
            number = float(str(value).strip().rstrip("%"))
        except ValueError as exc:
            raise UnsupportedFieldValue(f"progress must be numeric, got '{value}'") from exc
        return int(round(min(100.0, max(0.0, number))))
    if field == "last_activity":
        if isinstance(value, datetime):
            return ensure_utc(value)
        try:
            return ensure_utc(datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")))
        except ValueError as exc:
            raise UnsupportedFieldValue(f"last_activity must be ISO-8601, got '{value}'") from exc
    if field in ("name", "description"):
        text = str(value).strip() if value is not None else ""
        if not text:
            raise UnsupportedFieldValue(f"{field} must be non-empty")
        return text
    raise UnsupportedFieldValue(f"unknown record field '{field}'")


def coerce_record_fields(
    payload: dict[str, Any],
    *,
    rules: RuleTable,
) -> tuple[dict[str, Any], list[str]]:
    """Coerce every recognizable key of a loose payload; return ``(fields, rejected_keys)``."""
    fields: dict[str, Any] = {}
    rejected: list[str] = []
    for key, value in payload.items():
        if value is None:
            continue
        field = canonical_field_name(str(key))
        try:
            fields[field] = coerce_field_value(field, value, rules=rules)
        except UnsupportedFieldValue:
            rejected.append(str(key))
    return fields, rejected


def load_rule_table(path: Path) -> RuleTable:
    """Load a YAML rule table; sections that are omitted keep their defaults.

    ``extend: true`` at the top level appends the file's rules to the defaults
    instead of replacing them.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"rule table {path} must contain a mapping")
    extend = bool(raw.pop("extend", False))
    if not extend:
        return RuleTable.model_validate(raw)

    defaults = RuleTable()
    merged = defaults.model_dump(mode="python")
    for key in ("text_rules", "marker_rules", "extension_rules"):
        merged[key] = merged[key] + list(raw.get(key) or [])
    merged["status_aliases"] = {**merged["status_aliases"], **(raw.get("status_aliases") or {})}
    if "min_extension_share" in raw:
        merged["min_extension_share"] = raw["min_extension_share"]
    return RuleTable.model_validate(merged)
