from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SLUG_TOKEN_RE = re.compile(r"[^a-z0-9]+")


class RepoMonBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ProjectStatus(str, Enum):
    active = "active"
    stalled = "stalled"
    archived = "archived"
    planning = "planning"
    unknown = "unknown"


class ActivityLevel(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"
    none = "none"


class SourceType(str, Enum):
    git = "git"
    local = "local"
    document = "document"
    manual = "manual"
    api = "api"
    ai = "ai"


class EntrySource(str, Enum):
    user = "user"
    manager = "manager"
    developer = "developer"


class DocumentType(str, Enum):
    pdf = "pdf"
    doc = "doc"
    docx = "docx"
    txt = "txt"
    md = "md"
    ppt = "ppt"
    xls = "xls"
    xlsx = "xlsx"
    json = "json"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def slugify(value: str) -> str:
    slug = SLUG_TOKEN_RE.sub("-", value.strip().lower()).strip("-")
    return slug or "unnamed"


def dedupe_preserving_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        text = value.strip() if isinstance(value, str) else str(value)
        if not text or text in seen:
            continue
        seen.add(text)
        ordered.append(text)
    return ordered


def _validate_unit_interval(value: float) -> float:
    if value < 0 or value > 1:
        raise ValueError("confidence must be between 0 and 1")
    return value


class Provenance(RepoMonBaseModel):
    source_type: SourceType = Field(alias="sourceType")
    source_identifier: str = Field(alias="sourceIdentifier")
    confidence: float
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        return _validate_unit_interval(value)

    @field_validator("source_identifier")
    @classmethod
    def validate_source_identifier(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("sourceIdentifier must be non-empty")
        return text


class CanonicalRecord(RepoMonBaseModel):
    """Single reconciled description of a project, built from every source that answered."""

    id: str
    name: str
    description: str | None = None
    status: ProjectStatus = ProjectStatus.unknown
    activity: ActivityLevel = ActivityLevel.none
    progress: int = 0
    technologies: list[str] = Field(default_factory=list)
    contributors: list[str] = Field(default_factory=list)
    recent_changes: list[str] = Field(default_factory=list, alias="recentChanges")
    risk_factors: list[str] = Field(default_factory=list, alias="riskFactors")
    opportunities: list[str] = Field(default_factory=list)
    data_sources: list[Provenance] = Field(default_factory=list, alias="dataSources")
    confidence: float = 0.0
    last_activity: datetime | None = Field(default=None, alias="lastActivity")
    last_updated: datetime = Field(default_factory=utc_now, alias="lastUpdated")

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        return _validate_unit_interval(value)

    @field_validator("progress")
    @classmethod
    def validate_progress(cls, value: int) -> int:
        if value < 0 or value > 100:
            raise ValueError("progress must be between 0 and 100")
        return value

    @field_validator("technologies", "contributors", "recent_changes", "risk_factors", "opportunities")
    @classmethod
    def validate_string_lists(cls, value: list[str]) -> list[str]:
        return dedupe_preserving_order(value)

    @field_validator("last_activity", "last_updated")
    @classmethod
    def validate_timestamps(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)


class DocumentMetadata(RepoMonBaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    size: int
    created: datetime
    modified: datetime
    author: str | None = None
    title: str | None = None

    @field_validator("size")
    @classmethod
    def validate_size(cls, value: int) -> int:
        if value < 0:
            raise ValueError("size must be >= 0")
        return value


class DocumentUpload(RepoMonBaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    id: str
    filename: str
    type: DocumentType
    content: str
    metadata: DocumentMetadata

    @field_validator("id", "filename")
    @classmethod
    def validate_non_empty_token(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must be non-empty")
        return text


class ManualEntry(RepoMonBaseModel):
    """One user-asserted fact about a repository.

    Range and emptiness checks on ``confidence`` and ``field`` are enforced by the
    ledger so that a rejected entry surfaces as a ledger validation error rather
    than at construction time.
    """

    id: str
    repository_id: str = Field(alias="repositoryId")
    field: str
    value: Any
    source: EntrySource = EntrySource.user
    confidence: float
    timestamp: datetime = Field(default_factory=utc_now)
    notes: str | None = None

    @field_validator("id", "repository_id")
    @classmethod
    def validate_non_empty_token(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must be non-empty")
        return text

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class UrlInput(RepoMonBaseModel):
    kind: Literal["url"] = "url"
    url: str


class PathInput(RepoMonBaseModel):
    kind: Literal["path"] = "path"
    path: str


class DocumentInput(RepoMonBaseModel):
    kind: Literal["document"] = "document"
    document: DocumentUpload


class ManualInput(RepoMonBaseModel):
    kind: Literal["manual"] = "manual"
    entry: ManualEntry


MonitorInput = UrlInput | PathInput | DocumentInput | ManualInput


def input_identifier(value: MonitorInput) -> str:
    if isinstance(value, UrlInput):
        return value.url
    if isinstance(value, PathInput):
        return value.path
    if isinstance(value, DocumentInput):
        return value.document.filename
    return value.entry.repository_id
