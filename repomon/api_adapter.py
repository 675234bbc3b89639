from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from repomon.http_client import HttpResponse, HttpTransport, HttpTransportError, http_request
from repomon.monitor_config import GitHubSettings
from repomon.schemas import ensure_utc
from repomon.source_adapters import (
    ApiAdapterError,
    ApiRepositoryFacts,
    ExtractedDocument,
    normalize_repository_url,
    parse_repository_slug,
    trim_output,
)

logger = logging.getLogger(__name__)

SUPPORTED_HOSTS = {"github.com", "www.github.com"}


class GitHubApiAdapter:
    def __init__(
        self,
        *,
        settings: GitHubSettings | None = None,
        transport: HttpTransport = http_request,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or GitHubSettings()
        self._transport = transport
        env = os.environ if environ is None else environ
        self._token = (env.get(self._settings.token_env_var) or "").strip() or None

    def describe(self, url: str) -> ApiRepositoryFacts:
        owner, repo = self._resolve_slug(url)
        payload = self._get_json(f"/repos/{owner}/{repo}")
        if not isinstance(payload, dict):
            raise ApiAdapterError(reason="unexpected repository payload", details=f"{owner}/{repo}")

        languages: list[str] = []
        try:
            language_payload = self._get_json(f"/repos/{owner}/{repo}/languages")
        except ApiAdapterError as exc:
            logger.info("languages lookup failed for %s/%s: %s", owner, repo, exc)
        else:
            if isinstance(language_payload, dict):
                ranked = sorted(language_payload.items(), key=lambda item: (-int(item[1]), item[0]))
                languages = [name for name, _ in ranked]
        if not languages and isinstance(payload.get("language"), str):
            languages = [payload["language"]]

        topics = payload.get("topics")
        return ApiRepositoryFacts(
            full_name=str(payload.get("full_name") or f"{owner}/{repo}"),
            html_url=payload.get("html_url"),
            description=_optional_text(payload.get("description")),
            archived=bool(payload.get("archived", False)),
            default_branch=_optional_text(payload.get("default_branch")),
            pushed_at=_parse_timestamp(payload.get("pushed_at")),
            open_issues=int(payload.get("open_issues_count") or 0),
            stars=int(payload.get("stargazers_count") or 0),
            languages=languages,
            topics=[str(topic) for topic in topics] if isinstance(topics, list) else [],
        )

    def fetch_readme(self, url: str) -> ExtractedDocument:
        owner, repo = self._resolve_slug(url)
        response = self._request(
            f"/repos/{owner}/{repo}/readme",
            accept="application/vnd.github.raw+json",
        )
        text = response.text
        if not text.strip():
            raise ApiAdapterError(reason="empty readme", details=f"{owner}/{repo}")
        now = datetime.now(tz=UTC)
        return ExtractedDocument(
            document_id=f"{owner}/{repo}/README",
            text=text,
            size=len(text.encode("utf-8")),
            created=now,
            modified=now,
            title=repo,
        )

    def _resolve_slug(self, url: str) -> tuple[str, str]:
        normalized = normalize_repository_url(url)
        host = urlparse(normalized).hostname or ""
        if normalized.startswith("git@github.com:"):
            host = "github.com"
        if host.lower() not in SUPPORTED_HOSTS:
            raise ApiAdapterError(reason="unsupported host", details=host or normalized)
        slug = parse_repository_slug(normalized)
        if slug is None:
            raise ApiAdapterError(reason="url does not name a repository", details=normalized)
        return slug

    def _get_json(self, path: str) -> Any:
        response = self._request(path, accept="application/vnd.github+json")
        try:
            return response.json()
        except ValueError as exc:
            raise ApiAdapterError(reason="invalid JSON response", details=path) from exc

    def _request(self, path: str, *, accept: str) -> HttpResponse:
        headers = {"Accept": accept}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            response = self._transport(
                "GET",
                f"{self._settings.api_base}{path}",
                headers=headers,
                timeout=self._settings.request_timeout_seconds,
            )
        except HttpTransportError as exc:
            raise ApiAdapterError(reason="request failed", details=str(exc)) from exc
        if response.status != 200:
            raise ApiAdapterError(
                reason=f"HTTP {response.status}",
                details=trim_output(response.text, limit=200) or path,
            )
        return response


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        return None
