from __future__ import annotations

import io
import urllib.error
import urllib.request
from email.message import Message

import pytest

from repomon import http_client
from repomon.http_client import HttpResponse, HttpTransportError, http_request


class FakeUrlResponse:
    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> FakeUrlResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


def test_http_request_returns_status_and_body(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[urllib.request.Request] = []

    def fake_urlopen(request: urllib.request.Request, timeout: float) -> FakeUrlResponse:
        seen.append(request)
        return FakeUrlResponse(200, b'{"ok": true}')

    monkeypatch.setattr(http_client.urllib.request, "urlopen", fake_urlopen)

    response = http_request("GET", "https://api.example.com/x", headers={"Accept": "application/json"})

    assert response == HttpResponse(status=200, body=b'{"ok": true}')
    assert response.json() == {"ok": True}
    assert seen[0].get_method() == "GET"
    assert seen[0].get_header("User-agent") == http_client.USER_AGENT
    assert seen[0].get_header("Accept") == "application/json"


def test_http_request_returns_error_statuses_as_responses(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(request: urllib.request.Request, timeout: float) -> FakeUrlResponse:
        raise urllib.error.HTTPError(request.full_url, 404, "Not Found", Message(), io.BytesIO(b"missing"))

    monkeypatch.setattr(http_client.urllib.request, "urlopen", fake_urlopen)

    response = http_request("GET", "https://api.example.com/missing")

    assert response.status == 404
    assert response.text == "missing"


def test_http_request_wraps_transport_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(request: urllib.request.Request, timeout: float) -> FakeUrlResponse:
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(http_client.urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(HttpTransportError, match="connection refused"):
        http_request("GET", "https://api.example.com/x")
