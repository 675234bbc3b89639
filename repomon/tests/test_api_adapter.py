from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import pytest

from repomon.api_adapter import GitHubApiAdapter
from repomon.http_client import HttpResponse, HttpTransportError
from repomon.monitor_config import GitHubSettings
from repomon.source_adapters import ApiAdapterError


def _json_response(status: int, payload: Any) -> HttpResponse:
    return HttpResponse(status=status, body=json.dumps(payload).encode("utf-8"))


def _text_response(status: int, text: str) -> HttpResponse:
    return HttpResponse(status=status, body=text.encode("utf-8"))


class FakeTransport:
    def __init__(self, routes: dict[str, HttpResponse | Exception]) -> None:
        self.routes = routes
        self.requests: list[dict[str, Any]] = []

    def __call__(self, method: str, url: str, *, headers: dict[str, str], timeout: float) -> HttpResponse:
        self.requests.append({"method": method, "url": url, "headers": headers, "timeout": timeout})
        route = self.routes.get(url)
        if route is None:
            return _json_response(404, {"message": "Not Found"})
        if isinstance(route, Exception):
            raise route
        return route


REPO_PAYLOAD = {
    "full_name": "acme/atlas",
    "html_url": "https://github.com/acme/atlas",
    "description": "  Ledger sync service ",
    "archived": False,
    "default_branch": "main",
    "pushed_at": "2026-03-30T10:00:00Z",
    "open_issues_count": 7,
    "stargazers_count": 42,
    "language": "Python",
    "topics": ["ledger", "sync"],
}


def _adapter(transport: FakeTransport, environ: dict[str, str] | None = None) -> GitHubApiAdapter:
    return GitHubApiAdapter(settings=GitHubSettings(), transport=transport, environ=environ or {})


def test_describe_reads_repository_and_languages() -> None:
    transport = FakeTransport(
        {
            "https://api.github.com/repos/acme/atlas": _json_response(200, REPO_PAYLOAD),
            "https://api.github.com/repos/acme/atlas/languages": _json_response(200, {"Go": 300, "Python": 9000}),
        }
    )

    facts = _adapter(transport, {"GITHUB_TOKEN": "tok"}).describe("https://github.com/acme/atlas.git")

    assert facts.full_name == "acme/atlas"
    assert facts.description == "Ledger sync service"
    assert facts.languages == ["Python", "Go"]
    assert facts.topics == ["ledger", "sync"]
    assert facts.open_issues == 7
    assert facts.pushed_at == datetime(2026, 3, 30, 10, 0, tzinfo=UTC)
    assert transport.requests[0]["headers"]["Authorization"] == "Bearer tok"
    assert transport.requests[0]["timeout"] == GitHubSettings().request_timeout_seconds


def test_describe_falls_back_to_primary_language_when_languages_fail() -> None:
    transport = FakeTransport({"https://api.github.com/repos/acme/atlas": _json_response(200, REPO_PAYLOAD)})

    facts = _adapter(transport).describe("github.com/acme/atlas")

    assert facts.languages == ["Python"]
    assert "Authorization" not in transport.requests[0]["headers"]


def test_describe_rejects_non_github_hosts() -> None:
    with pytest.raises(ApiAdapterError, match="unsupported host"):
        _adapter(FakeTransport({})).describe("https://gitlab.com/acme/atlas")


def test_describe_maps_http_and_transport_errors() -> None:
    with pytest.raises(ApiAdapterError, match="HTTP 404"):
        _adapter(FakeTransport({})).describe("https://github.com/acme/missing")

    failing = FakeTransport(
        {"https://api.github.com/repos/acme/atlas": HttpTransportError("connection refused")}
    )
    with pytest.raises(ApiAdapterError, match="request failed") as exc_info:
        _adapter(failing).describe("https://github.com/acme/atlas")
    assert exc_info.value.source == "api"


def test_fetch_readme_requests_raw_content() -> None:
    transport = FakeTransport(
        {
            "https://api.github.com/repos/acme/atlas/readme": _text_response(
                200,
                "# Atlas\n\nLedger sync for Python shops.\n",
            )
        }
    )

    extracted = _adapter(transport).fetch_readme("git@github.com:acme/atlas.git")

    assert extracted.document_id == "acme/atlas/README"
    assert extracted.text.startswith("# Atlas")
    assert transport.requests[0]["headers"]["Accept"] == "application/vnd.github.raw+json"


def test_fetch_readme_rejects_empty_body() -> None:
    transport = FakeTransport({"https://api.github.com/repos/acme/atlas/readme": _text_response(200, "  ")})

    with pytest.raises(ApiAdapterError, match="empty readme"):
        _adapter(transport).fetch_readme("https://github.com/acme/atlas")
