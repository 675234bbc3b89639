from __future__ import annotations

import re
from enum import Enum
from pathlib import PurePath
from typing import Any

from repomon.schemas import (
    DocumentInput,
    DocumentUpload,
    ManualEntry,
    ManualInput,
    MonitorInput,
    PathInput,
    UrlInput,
    slugify,
)
from repomon.source_adapters import FORGE_HOST_PREFIXES, parse_repository_slug

_URL_SCHEME_RE = re.compile(r"^(?:https?|git|ssh)://", re.IGNORECASE)
_SCP_STYLE_RE = re.compile(r"^[\w.-]+@[\w.-]+:[\w./-]+$")


class StrategyName(str, Enum):
    git = "git"
    local = "local"
    api = "api"
    document_inference = "document_inference"
    document = "document"
    ai_document = "ai_document"
    manual = "manual"
    ai_fallback = "ai_fallback"


FORCE_METHOD_ALIASES: dict[str, tuple[StrategyName, ...]] = {
    "github": (StrategyName.git, StrategyName.api),
    "ai": (StrategyName.ai_document, StrategyName.ai_fallback),
}

_PLANS: dict[str, tuple[StrategyName, ...]] = {
    "url": (StrategyName.git, StrategyName.api, StrategyName.document_inference),
    "path": (StrategyName.local, StrategyName.git, StrategyName.document_inference),
    "document": (StrategyName.document, StrategyName.ai_document),
    "manual": (StrategyName.manual,),
}


class InputClassificationError(ValueError):
    pass


def looks_like_url(value: str) -> bool:
    text = value.strip()
    lowered = text.lower()
    return bool(
        _URL_SCHEME_RE.match(text)
        or _SCP_STYLE_RE.match(text)
        or lowered.startswith(FORGE_HOST_PREFIXES)
    )


def classify_input(raw: Any) -> MonitorInput:
    if isinstance(raw, (UrlInput, PathInput, DocumentInput, ManualInput)):
        return raw
    if isinstance(raw, DocumentUpload):
        return DocumentInput(document=raw)
    if isinstance(raw, ManualEntry):
        return ManualInput(entry=raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise InputClassificationError("input string must be non-empty")
        if looks_like_url(text):
            return UrlInput(url=text)
        return PathInput(path=text)
    raise InputClassificationError(f"unsupported input type: {type(raw).__name__}")


def entity_id_for_input(value: MonitorInput) -> str:
    if isinstance(value, UrlInput):
        slug = parse_repository_slug(value.url)
        if slug is not None:
            return f"repo@{slugify('-'.join(slug))}"
        return f"repo@{slugify(value.url)}"
    if isinstance(value, PathInput):
        return f"path@{slugify(value.path)}"
    if isinstance(value, DocumentInput):
        return f"document@{slugify(value.document.id)}"
    return value.entry.repository_id


def display_name_for_input(value: MonitorInput) -> str:
    if isinstance(value, UrlInput):
        slug = parse_repository_slug(value.url)
        return "/".join(slug) if slug is not None else value.url
    if isinstance(value, PathInput):
        parts = [part for part in value.path.replace("\\", "/").split("/") if part]
        return parts[-1] if parts else value.path
    if isinstance(value, DocumentInput):
        metadata = value.document.metadata
        return metadata.title or PurePath(value.document.filename).stem or value.document.filename
    return value.entry.repository_id


def plan_strategies(value: MonitorInput, *, force_method: str | None = None) -> list[StrategyName]:
    planned = [*_PLANS[value.kind], StrategyName.ai_fallback]
    if force_method is None:
        return planned

    token = force_method.strip().lower()
    allowed = set(FORCE_METHOD_ALIASES.get(token, ()))
    try:
        allowed.add(StrategyName(token))
    except ValueError:
        pass
    return [name for name in planned if name in allowed]
