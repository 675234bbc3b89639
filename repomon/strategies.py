from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from repomon.classifier import StrategyName
from repomon.inference import (
    build_document_messages,
    build_identifier_messages,
    parse_record_payload,
)
from repomon.monitor_config import ConfidencePolicy
from repomon.rules import LIST_FIELDS, RuleTable, coerce_record_fields
from repomon.schemas import (
    ActivityLevel,
    CanonicalRecord,
    DocumentInput,
    DocumentUpload,
    MonitorInput,
    PathInput,
    ProjectStatus,
    Provenance,
    SourceType,
    UrlInput,
    input_identifier,
)
from repomon.source_adapters import (
    DocumentTextAdapter,
    ExternalApiAdapter,
    ExtractedDocument,
    FilesystemAdapter,
    FilesystemAdapterError,
    GitAdapterError,
    InferenceProvider,
    InferenceProviderError,
    InferenceUnavailableError,
    StrategyInputError,
    VersionControlAdapter,
)

logger = logging.getLogger(__name__)

ACTIVE_WINDOW_DAYS = 30
STALLED_WINDOW_DAYS = 180
RECENT_WINDOW = timedelta(days=30)
MAX_DESCRIPTION_CHARS = 280
RECENT_CHANGE_COUNT = 5

StrategyFn = Callable[[], CanonicalRecord]


@dataclass(frozen=True)
class Strategy:
    name: StrategyName
    run: StrategyFn


@dataclass(frozen=True)
class StrategyContext:
    """Collaborators shared by every strategy of one monitoring call."""

    policy: ConfidencePolicy
    rules: RuleTable
    git: VersionControlAdapter | None = None
    filesystem: FilesystemAdapter | None = None
    documents: DocumentTextAdapter | None = None
    api: ExternalApiAdapter | None = None
    provider: InferenceProvider | None = None
    temperature: float = 0.2
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))


def status_for_age(age_days: int) -> ProjectStatus:
    if age_days <= ACTIVE_WINDOW_DAYS:
        return ProjectStatus.active
    if age_days <= STALLED_WINDOW_DAYS:
        return ProjectStatus.stalled
    return ProjectStatus.archived


def activity_for_count(count: int) -> ActivityLevel:
    if count >= 20:
        return ActivityLevel.high
    if count >= 5:
        return ActivityLevel.medium
    if count >= 1:
        return ActivityLevel.low
    return ActivityLevel.none


def build_strategies(
    names: list[StrategyName],
    *,
    target: MonitorInput,
    entity_id: str,
    display_name: str,
    context: StrategyContext,
    additional_context: str | None = None,
) -> list[Strategy]:
    """Bind each planned strategy name to a zero-argument callable for ``target``.

    ``manual`` is not bound here; ledger writes happen outside the executor.
    """
    strategies: list[Strategy] = []
    for name in names:
        if name == StrategyName.manual:
            continue
        run = _bind(
            name,
            target=target,
            entity_id=entity_id,
            display_name=display_name,
            context=context,
            additional_context=additional_context,
        )
        strategies.append(Strategy(name=name, run=run))
    return strategies


def _bind(
    name: StrategyName,
    *,
    target: MonitorInput,
    entity_id: str,
    display_name: str,
    context: StrategyContext,
    additional_context: str | None,
) -> StrategyFn:
    if name == StrategyName.git:
        location = target.url if isinstance(target, UrlInput) else _require_path(target, name)
        return lambda: git_strategy(context, location, entity_id=entity_id, display_name=display_name)
    if name == StrategyName.local:
        path = _require_path(target, name)
        return lambda: local_strategy(context, path, entity_id=entity_id, display_name=display_name)
    if name == StrategyName.api:
        if not isinstance(target, UrlInput):
            raise StrategyInputError(source=SourceType.api, details="api strategy needs a url input")
        url = target.url
        return lambda: api_strategy(context, url, entity_id=entity_id, display_name=display_name)
    if name == StrategyName.document_inference:
        return lambda: document_inference_strategy(context, target, entity_id=entity_id, display_name=display_name)
    if name == StrategyName.document:
        document = _require_document(target, name)
        return lambda: document_strategy(context, document, entity_id=entity_id, display_name=display_name)
    if name == StrategyName.ai_document:
        document = _require_document(target, name)
        return lambda: ai_document_strategy(
            context,
            document,
            entity_id=entity_id,
            display_name=display_name,
            additional_context=additional_context,
        )
    if name == StrategyName.ai_fallback:
        identifier = input_identifier(target)
        return lambda: ai_fallback_strategy(
            context,
            identifier,
            entity_id=entity_id,
            display_name=display_name,
            additional_context=additional_context,
        )
    raise StrategyInputError(source=name.value, details=f"no strategy bound for '{name.value}'")


def _require_path(target: MonitorInput, name: StrategyName) -> str:
    if not isinstance(target, PathInput):
        raise StrategyInputError(source=name.value, details=f"{name.value} strategy needs a path input")
    return target.path


def _require_document(target: MonitorInput, name: StrategyName) -> DocumentUpload:
    if not isinstance(target, DocumentInput):
        raise StrategyInputError(source=name.value, details=f"{name.value} strategy needs a document input")
    return target.document


def git_strategy(context: StrategyContext, location: str, *, entity_id: str, display_name: str) -> CanonicalRecord:
    if context.git is None:
        raise GitAdapterError(reason="no version-control adapter configured")
    facts = context.git.inspect(location)
    if not facts.reachable:
        raise GitAdapterError(reason="repository unreachable", details=location)

    policy = context.policy
    metadata: dict[str, Any] = {
        "commit_count": len(facts.commits),
        "default_branch": facts.default_branch,
    }
    if facts.latest_commit is None:
        confidence = policy.git_empty_history
        return CanonicalRecord(
            id=entity_id,
            name=display_name,
            status=ProjectStatus.planning,
            risk_factors=["Repository has no commits yet"],
            data_sources=[_provenance(SourceType.git, facts.target, confidence, metadata)],
            confidence=confidence,
        )

    now = context.clock()
    latest = facts.latest_commit
    age_days = max(0, (now - latest.committed_at).days)
    recent_count = sum(1 for commit in facts.commits if now - commit.committed_at <= RECENT_WINDOW)
    status = status_for_age(age_days)
    risks: list[str] = []
    if len(facts.contributors) == 1:
        risks.append("Single contributor")
    if status != ProjectStatus.active:
        risks.append(f"No commits in {age_days} days")

    metadata["latest_commit"] = latest.sha
    metadata["commits_last_30_days"] = recent_count
    confidence = policy.git
    return CanonicalRecord(
        id=entity_id,
        name=display_name,
        status=status,
        activity=activity_for_count(recent_count),
        contributors=facts.contributors,
        recent_changes=[commit.subject for commit in facts.commits[:RECENT_CHANGE_COUNT] if commit.subject],
        risk_factors=risks,
        data_sources=[_provenance(SourceType.git, facts.target, confidence, metadata)],
        confidence=confidence,
        last_activity=latest.committed_at,
    )


def local_strategy(context: StrategyContext, path: str, *, entity_id: str, display_name: str) -> CanonicalRecord:
    if context.filesystem is None:
        raise FilesystemAdapterError(reason="no filesystem adapter configured")
    facts = context.filesystem.scan(path)
    if not facts.exists:
        raise FilesystemAdapterError(reason="path does not exist", details=path)

    policy = context.policy
    technologies = [
        *context.rules.technologies_for_markers(facts.marker_files),
        *context.rules.technologies_for_extensions(facts.extension_counts),
    ]
    risks: list[str] = []
    if not facts.has_vcs_marker:
        risks.append("No version control detected")
    if facts.newest_modified is None:
        status = ProjectStatus.planning
        risks.append("Directory is empty")
    else:
        status = status_for_age(max(0, (context.clock() - facts.newest_modified).days))

    confidence = policy.local + (policy.local_vcs_bonus if facts.has_vcs_marker else 0.0)
    metadata = {
        "file_count": facts.file_count,
        "has_vcs_marker": facts.has_vcs_marker,
        "recently_modified_count": facts.recently_modified_count,
    }
    return CanonicalRecord(
        id=entity_id,
        name=display_name,
        status=status,
        activity=activity_for_count(facts.recently_modified_count),
        technologies=technologies,
        risk_factors=risks,
        data_sources=[_provenance(SourceType.local, path, confidence, metadata)],
        confidence=confidence,
        last_activity=facts.newest_modified,
    )


def api_strategy(context: StrategyContext, url: str, *, entity_id: str, display_name: str) -> CanonicalRecord:
    if context.api is None:
        raise StrategyInputError(source=SourceType.api, details="no external api adapter configured")
    facts = context.api.describe(url)

    if facts.archived:
        status = ProjectStatus.archived
    elif facts.pushed_at is not None:
        status = status_for_age(max(0, (context.clock() - facts.pushed_at).days))
    else:
        status = ProjectStatus.unknown

    opportunities: list[str] = []
    if facts.open_issues:
        opportunities.append(f"{facts.open_issues} open issues to triage")
    confidence = context.policy.api
    metadata = {
        "full_name": facts.full_name,
        "stars": facts.stars,
        "topics": facts.topics,
        "open_issues": facts.open_issues,
    }
    return CanonicalRecord(
        id=entity_id,
        name=facts.full_name or display_name,
        description=facts.description,
        status=status,
        technologies=facts.languages,
        opportunities=opportunities,
        data_sources=[_provenance(SourceType.api, facts.html_url or url, confidence, metadata)],
        confidence=confidence,
        last_activity=facts.pushed_at,
    )


def document_inference_strategy(
    context: StrategyContext,
    target: MonitorInput,
    *,
    entity_id: str,
    display_name: str,
) -> CanonicalRecord:
    if isinstance(target, UrlInput):
        if context.api is None:
            raise StrategyInputError(source=SourceType.api, details="no external api adapter configured")
        extracted = context.api.fetch_readme(target.url)
        source_type = SourceType.api
    elif isinstance(target, PathInput):
        if context.filesystem is None:
            raise FilesystemAdapterError(reason="no filesystem adapter configured")
        extracted = context.filesystem.read_readme(target.path)
        source_type = SourceType.local
    else:
        raise StrategyInputError(source=SourceType.document, details="readme inference needs a url or path input")

    return record_from_text(
        context,
        extracted,
        entity_id=entity_id,
        name=display_name,
        source_type=source_type,
        confidence=context.policy.document_inference,
        extra_metadata={"strategy": StrategyName.document_inference.value},
    )


def document_strategy(context: StrategyContext, document: DocumentUpload, *, entity_id: str, display_name: str) -> CanonicalRecord:
    if context.documents is None:
        raise StrategyInputError(source=SourceType.document, details="no document adapter configured")
    extracted = context.documents.extract(document)
    return record_from_text(
        context,
        extracted,
        entity_id=entity_id,
        name=extracted.title or display_name,
        source_type=SourceType.document,
        confidence=context.policy.document,
        extra_metadata={"filename": document.filename, "type": document.type.value},
    )


def ai_document_strategy(
    context: StrategyContext,
    document: DocumentUpload,
    *,
    entity_id: str,
    display_name: str,
    additional_context: str | None,
) -> CanonicalRecord:
    provider = _require_provider(context)
    messages = build_document_messages(
        filename=document.filename,
        text=document.content,
        context=additional_context,
    )
    payload = parse_record_payload(provider.complete(messages, temperature=context.temperature))
    return record_from_payload(
        context,
        payload,
        entity_id=entity_id,
        name=display_name,
        identifier=f"document:{document.id}",
        confidence=context.policy.ai_document,
        strategy=StrategyName.ai_document,
    )


def ai_fallback_strategy(
    context: StrategyContext,
    identifier: str,
    *,
    entity_id: str,
    display_name: str,
    additional_context: str | None,
) -> CanonicalRecord:
    provider = _require_provider(context)
    messages = build_identifier_messages(identifier=identifier, context=additional_context)
    payload = parse_record_payload(provider.complete(messages, temperature=context.temperature))
    return record_from_payload(
        context,
        payload,
        entity_id=entity_id,
        name=display_name,
        identifier=identifier,
        confidence=context.policy.ai_fallback,
        strategy=StrategyName.ai_fallback,
    )


def record_from_text(
    context: StrategyContext,
    extracted: ExtractedDocument,
    *,
    entity_id: str,
    name: str,
    source_type: SourceType,
    confidence: float,
    extra_metadata: dict[str, Any] | None = None,
) -> CanonicalRecord:
    found = context.rules.extract_text_fields(extracted.text)
    scalars = {key: values[0] for key, values in found.items() if key not in LIST_FIELDS}
    fields, rejected = coerce_record_fields(scalars, rules=context.rules)
    for key in LIST_FIELDS:
        if key in found:
            fields[key] = found[key]
    if rejected:
        logger.debug("ignored unparseable text matches for %s: %s", extracted.document_id, ", ".join(rejected))

    metadata: dict[str, Any] = {
        "document_id": extracted.document_id,
        "size": extracted.size,
        "matched_fields": sorted(found),
        **(extra_metadata or {}),
    }
    contributors = [extracted.author] if extracted.author else []
    return CanonicalRecord(
        id=entity_id,
        name=name,
        description=first_paragraph(extracted.text),
        status=fields.get("status", ProjectStatus.unknown),
        progress=fields.get("progress", 0),
        technologies=fields.get("technologies", []),
        contributors=contributors,
        risk_factors=fields.get("risk_factors", []),
        opportunities=fields.get("opportunities", []),
        data_sources=[_provenance(source_type, extracted.document_id, confidence, metadata)],
        confidence=confidence,
        last_activity=extracted.modified,
    )


def record_from_payload(
    context: StrategyContext,
    payload: dict[str, Any],
    *,
    entity_id: str,
    name: str,
    identifier: str,
    confidence: float,
    strategy: StrategyName,
) -> CanonicalRecord:
    fields, rejected = coerce_record_fields(payload, rules=context.rules)
    if not fields:
        raise InferenceProviderError(
            reason="completion had no usable fields",
            details=", ".join(rejected) or None,
        )
    metadata = {"strategy": strategy.value, "fields": sorted(fields), "rejected": rejected}
    fields.setdefault("name", name)
    return CanonicalRecord(
        id=entity_id,
        **fields,
        data_sources=[_provenance(SourceType.ai, identifier, confidence, metadata)],
        confidence=confidence,
    )


def first_paragraph(text: str) -> str | None:
    for block in text.split("\n\n"):
        lines = [line.strip() for line in block.strip().splitlines()]
        content = " ".join(line for line in lines if line and not line.startswith(("#", "=", "-", "[", "!", "<")))
        if content:
            if len(content) > MAX_DESCRIPTION_CHARS:
                return content[: MAX_DESCRIPTION_CHARS - 3].rstrip() + "..."
            return content
    return None


def _require_provider(context: StrategyContext) -> InferenceProvider:
    if context.provider is None:
        raise InferenceUnavailableError()
    return context.provider


def _provenance(source_type: SourceType, identifier: str, confidence: float, metadata: dict[str, Any]) -> Provenance:
    return Provenance(
        source_type=source_type,
        source_identifier=identifier,
        confidence=confidence,
        metadata=metadata,
    )
