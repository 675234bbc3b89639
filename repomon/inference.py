from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from typing import Any

from repomon.http_client import HttpTransport, HttpTransportError, http_request
from repomon.monitor_config import InferenceSettings
from repomon.schemas import CanonicalRecord
from repomon.source_adapters import ChatMessage, InferenceProviderError, trim_output

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(?P<body>.*?)```", re.DOTALL | re.IGNORECASE)

SYSTEM_PROMPT = (
    "You are a project analyst. You receive partial, possibly conflicting facts about a "
    "software project and answer with a single JSON object only. Allowed keys: name, "
    "description, status (active|stalled|archived|planning|unknown), activity "
    "(high|medium|low|none), progress (0-100), technologies, contributors, "
    "recentChanges, riskFactors, opportunities. Omit keys you cannot support with "
    "evidence."
)


class OpenAICompatibleProvider:
    """Chat-completions client for any endpoint that speaks the OpenAI wire format."""

    def __init__(
        self,
        *,
        settings: InferenceSettings,
        api_key: str | None = None,
        transport: HttpTransport = http_request,
    ) -> None:
        self._settings = settings
        self._api_key = api_key
        self._transport = transport

    def complete(self, messages: list[ChatMessage], *, temperature: float) -> str:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        body = {
            "model": self._settings.model,
            "temperature": temperature,
            "messages": [message.model_dump(mode="json") for message in messages],
        }
        try:
            response = self._transport(
                "POST",
                self._settings.endpoint,
                data=json.dumps(body).encode("utf-8"),
                headers=headers,
                timeout=self._settings.request_timeout_seconds,
            )
        except HttpTransportError as exc:
            raise InferenceProviderError(reason="request failed", details=str(exc)) from exc
        if response.status != 200:
            raise InferenceProviderError(
                reason=f"HTTP {response.status}",
                details=trim_output(response.text, limit=200),
            )
        try:
            payload = response.json()
            return str(payload["choices"][0]["message"]["content"])
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InferenceProviderError(reason="malformed completion payload", details=str(exc)) from exc


def build_default_provider(
    settings: InferenceSettings,
    *,
    environ: Mapping[str, str] | None = None,
) -> OpenAICompatibleProvider | None:
    if not settings.enabled:
        return None
    env = os.environ if environ is None else environ
    api_key = (env.get(settings.api_key_env_var) or "").strip()
    if not api_key:
        return None
    return OpenAICompatibleProvider(settings=settings, api_key=api_key)


def parse_record_payload(text: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model reply.

    Handles bare JSON, fenced code blocks and prose around an object. Raises
    ``InferenceProviderError`` when no object can be decoded.
    """
    candidate = text.strip()
    if not candidate:
        raise InferenceProviderError(reason="empty completion")

    fenced = _CODE_FENCE_RE.search(candidate)
    if fenced is not None:
        candidate = fenced.group("body").strip()

    decoder = json.JSONDecoder()
    start = candidate.find("{")
    while start != -1:
        try:
            parsed, _ = decoder.raw_decode(candidate, start)
        except json.JSONDecodeError:
            start = candidate.find("{", start + 1)
            continue
        if isinstance(parsed, dict):
            return parsed
        start = candidate.find("{", start + 1)
    raise InferenceProviderError(reason="completion did not contain a JSON object", details=trim_output(text, limit=200))


def _record_summary(record: CanonicalRecord) -> str:
    payload = record.model_dump(mode="json", by_alias=True, exclude={"data_sources", "last_updated"})
    return json.dumps(payload, indent=2, sort_keys=True)


def build_enhancement_messages(record: CanonicalRecord, *, context: str | None) -> list[ChatMessage]:
    lines = [
        "Fill the gaps in this project record. Keep every value that is already set; "
        "suggest risk factors and opportunities based on the evidence.",
        "",
        _record_summary(record),
    ]
    if context:
        lines.extend(["", f"Additional context: {context}"])
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content="\n".join(lines)),
    ]


def build_document_messages(*, filename: str, text: str, context: str | None, max_chars: int = 12_000) -> list[ChatMessage]:
    excerpt = text if len(text) <= max_chars else text[:max_chars] + "\n[truncated]"
    lines = [f"Describe the project documented in '{filename}'.", "", excerpt]
    if context:
        lines.extend(["", f"Additional context: {context}"])
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content="\n".join(lines)),
    ]


def build_identifier_messages(*, identifier: str, context: str | None) -> list[ChatMessage]:
    lines = [
        f"Only this identifier is known for a project: {identifier}",
        "Infer what you reasonably can; leave out anything speculative.",
    ]
    if context:
        lines.append(f"Additional context: {context}")
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content="\n".join(lines)),
    ]
