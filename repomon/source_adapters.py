from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Protocol, runtime_checkable
from urllib.parse import urlparse

from pydantic import Field, field_validator

from repomon.schemas import DocumentUpload, RepoMonBaseModel, SourceType


class CommitInfo(RepoMonBaseModel):
    sha: str
    author: str
    committed_at: datetime
    subject: str

    @field_validator("sha", "author")
    @classmethod
    def validate_non_empty_text(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must be non-empty")
        return text


class GitRepositoryFacts(RepoMonBaseModel):
    target: str
    reachable: bool
    default_branch: str | None = None
    latest_commit: CommitInfo | None = None
    commits: list[CommitInfo] = Field(default_factory=list)
    contributors: list[str] = Field(default_factory=list)


class FilesystemFacts(RepoMonBaseModel):
    path: str
    exists: bool
    file_count: int = 0
    newest_modified: datetime | None = None
    oldest_modified: datetime | None = None
    recently_modified_count: int = 0
    has_vcs_marker: bool = False
    marker_files: list[str] = Field(default_factory=list)
    extension_counts: dict[str, int] = Field(default_factory=dict)


class ExtractedDocument(RepoMonBaseModel):
    document_id: str
    text: str
    size: int
    created: datetime
    modified: datetime
    author: str | None = None
    title: str | None = None


class ApiRepositoryFacts(RepoMonBaseModel):
    full_name: str
    html_url: str | None = None
    description: str | None = None
    archived: bool = False
    default_branch: str | None = None
    pushed_at: datetime | None = None
    open_issues: int = 0
    stars: int = 0
    languages: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)


class ChatMessage(RepoMonBaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class SourceAdapterError(RuntimeError):
    """Base class for source adapter and strategy failures."""

    source: str
    details: str | None

    def __init__(self, *, source: SourceType | str, message: str, details: str | None = None) -> None:
        source_text = source.value if isinstance(source, SourceType) else str(source)
        self.source = source_text
        self.details = details
        full_message = message
        if details:
            full_message = f"{message} ({details})"
        super().__init__(full_message)


class GitAdapterError(SourceAdapterError):
    def __init__(self, *, reason: str, details: str | None = None) -> None:
        super().__init__(source=SourceType.git, message=f"git inspection failed: {reason}", details=details)


class FilesystemAdapterError(SourceAdapterError):
    def __init__(self, *, reason: str, details: str | None = None) -> None:
        super().__init__(source=SourceType.local, message=f"filesystem scan failed: {reason}", details=details)


class DocumentAdapterError(SourceAdapterError):
    def __init__(self, *, reason: str, details: str | None = None) -> None:
        super().__init__(source=SourceType.document, message=f"document extraction failed: {reason}", details=details)


class ApiAdapterError(SourceAdapterError):
    def __init__(self, *, reason: str, details: str | None = None) -> None:
        super().__init__(source=SourceType.api, message=f"api lookup failed: {reason}", details=details)


class InferenceProviderError(SourceAdapterError):
    def __init__(self, *, reason: str, details: str | None = None) -> None:
        super().__init__(source=SourceType.ai, message=f"inference failed: {reason}", details=details)


class InferenceUnavailableError(InferenceProviderError):
    def __init__(self) -> None:
        super().__init__(reason="no inference provider configured")


class StrategyInputError(SourceAdapterError):
    def __init__(self, *, source: SourceType | str, details: str) -> None:
        super().__init__(source=source, message="strategy cannot handle input", details=details)


@runtime_checkable
class VersionControlAdapter(Protocol):
    def inspect(self, target: str) -> GitRepositoryFacts: ...


@runtime_checkable
class FilesystemAdapter(Protocol):
    def scan(self, path: str) -> FilesystemFacts: ...

    def read_readme(self, path: str) -> ExtractedDocument: ...


@runtime_checkable
class DocumentTextAdapter(Protocol):
    def extract(self, document: DocumentUpload) -> ExtractedDocument: ...


@runtime_checkable
class ExternalApiAdapter(Protocol):
    def describe(self, url: str) -> ApiRepositoryFacts: ...

    def fetch_readme(self, url: str) -> ExtractedDocument: ...


@runtime_checkable
class InferenceProvider(Protocol):
    def complete(self, messages: list[ChatMessage], *, temperature: float) -> str: ...


FORGE_HOST_PREFIXES = ("github.com/", "gitlab.com/", "bitbucket.org/")


def normalize_repository_url(url: str) -> str:
    text = url.strip()
    if text.startswith(FORGE_HOST_PREFIXES):
        return f"https://{text}"
    return text


def parse_repository_slug(url: str) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` for forge-style URLs, including ``git@host:owner/repo.git``."""
    text = normalize_repository_url(url)
    if text.startswith("git@") and ":" in text:
        path = text.split(":", 1)[1]
    else:
        parsed = urlparse(text)
        path = parsed.path
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return None
    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not owner or not repo:
        return None
    return owner, repo


def trim_output(value: Any, *, limit: int = 400) -> str:
    text = str(value or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."
