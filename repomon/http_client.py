from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

USER_AGENT = "repomon/0.1"


class HttpTransportError(RuntimeError):
    """The request never produced an HTTP status (DNS, refused connection, timeout)."""


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


HttpTransport = Callable[..., HttpResponse]


def http_request(
    method: str,
    url: str,
    *,
    data: bytes | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float = 10.0,
) -> HttpResponse:
    """Send one request; non-2xx statuses come back as responses, not exceptions."""
    request = urllib.request.Request(
        url=url,
        method=method,
        data=data,
        headers={"User-Agent": USER_AGENT, **dict(headers or {})},
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return HttpResponse(status=response.status, body=response.read())
    except urllib.error.HTTPError as exc:
        return HttpResponse(status=exc.code, body=exc.read())
    except (urllib.error.URLError, http.client.HTTPException, TimeoutError, ValueError) as exc:
        reason = exc.reason if isinstance(exc, urllib.error.URLError) else exc
        raise HttpTransportError(str(reason)) from exc
