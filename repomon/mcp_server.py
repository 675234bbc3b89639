from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from fastmcp import FastMCP
from pydantic import ValidationError

from repomon.analysis import RecordAnalysis
from repomon.document_adapter import document_from_text
from repomon.ledger import BusyLedgerError, ManualEntryValidationError, YamlLedgerStore
from repomon.monitor import MonitorOptions, RepositoryMonitor, build_default_monitor
from repomon.monitor_config import MonitorConfig, load_monitor_config_from_env
from repomon.schemas import CanonicalRecord, ManualEntry

logger = logging.getLogger(__name__)

AUTH_TOKEN_ENV_VAR = "REPOMON_MCP_AUTH_TOKEN"


def verify_auth_token(auth_token: str | None) -> None:
    expected = (os.getenv(AUTH_TOKEN_ENV_VAR) or "").strip()
    if not expected:
        return

    provided = (auth_token or "").strip()
    if not provided or not secrets.compare_digest(provided, expected):
        raise PermissionError("invalid or missing auth token")


def error_payload(code: str, message: str, *, retryable: bool = False) -> dict[str, Any]:
    return {"ok": False, "error": {"code": code, "retryable": retryable, "message": message}}


def record_payload(record: CanonicalRecord, analysis: RecordAnalysis) -> dict[str, Any]:
    return {
        "ok": True,
        "record": record.model_dump(mode="json", by_alias=True),
        "analysis": analysis.model_dump(mode="json", by_alias=True),
    }


def build_monitor_for_ledger(ledger_path: Path | None, *, config: MonitorConfig | None = None) -> RepositoryMonitor:
    resolved = config or load_monitor_config_from_env()
    store = YamlLedgerStore(ledger_path) if ledger_path is not None else None
    return build_default_monitor(resolved, ledger_store=store)


def create_mcp_server(*, monitor: RepositoryMonitor) -> FastMCP:
    server = FastMCP(
        name="Repository Monitor",
        instructions=(
            "Builds a canonical project-status record for a repository URL, local path, "
            "uploaded document or manual entry. Manual entries are appended to a ledger."
        ),
    )

    @server.tool
    def monitor_repository(
        target: str,
        method: str | None = None,
        context: str | None = None,
        hints: dict[str, str] | None = None,
        deadline_seconds: float | None = None,
        auth_token: str | None = None,
    ) -> dict[str, Any]:
        try:
            verify_auth_token(auth_token)
        except PermissionError as exc:
            return error_payload("unauthorized", str(exc))
        if not target.strip():
            return error_payload("invalid_input", "target must be non-empty")

        options = MonitorOptions(
            force_method=method,
            additional_context=context,
            hints=hints or {},
            deadline_seconds=deadline_seconds,
        )
        record = monitor.monitor_repository(target, options)
        return record_payload(record, monitor.analyze(record, context=context))

    @server.tool
    def upload_document(
        filename: str,
        content: str,
        document_type: str | None = None,
        document_id: str | None = None,
        title: str | None = None,
        author: str | None = None,
        context: str | None = None,
        auth_token: str | None = None,
    ) -> dict[str, Any]:
        try:
            verify_auth_token(auth_token)
            document = document_from_text(
                filename,
                content,
                document_id=document_id,
                document_type=document_type,
                title=title,
                author=author,
            )
        except PermissionError as exc:
            return error_payload("unauthorized", str(exc))
        except (ValidationError, ValueError) as exc:
            return error_payload("invalid_input", str(exc))

        record = monitor.process_document_upload(document, MonitorOptions(additional_context=context))
        return record_payload(record, monitor.analyze(record, context=context))

    @server.tool
    def add_manual_entry(
        repository_id: str,
        field: str,
        value: Any,
        confidence: float,
        source: Literal["user", "manager", "developer"] = "user",
        notes: str | None = None,
        entry_id: str | None = None,
        auth_token: str | None = None,
    ) -> dict[str, Any]:
        try:
            verify_auth_token(auth_token)
            entry = ManualEntry(
                id=entry_id or str(uuid4()),
                repository_id=repository_id,
                field=field,
                value=value,
                source=source,
                confidence=confidence,
                notes=notes,
            )
        except PermissionError as exc:
            return error_payload("unauthorized", str(exc))
        except ValidationError as exc:
            return error_payload("invalid_input", str(exc))

        try:
            record = monitor.add_manual_entry(entry)
        except ManualEntryValidationError as exc:
            return error_payload("invalid_input", str(exc))
        except BusyLedgerError as exc:
            return error_payload("busy", str(exc), retryable=True)
        except OSError as exc:
            logger.exception("persisting manual entry %s failed", entry.id)
            return error_payload("write_failed", str(exc))
        return record_payload(record, monitor.analyze(record))

    return server


def run_server(
    *,
    monitor: RepositoryMonitor | None = None,
    ledger_path: Path | None = None,
    transport: Literal["stdio", "http", "sse", "streamable-http"] = "stdio",
    host: str = "127.0.0.1",
    port: int = 8001,
    path: str | None = None,
) -> None:
    resolved_monitor = monitor or build_monitor_for_ledger(ledger_path)
    server = create_mcp_server(monitor=resolved_monitor)
    kwargs: dict[str, Any] = {}
    if transport in {"http", "sse", "streamable-http"}:
        kwargs["host"] = host
        kwargs["port"] = port
        if path:
            kwargs["path"] = path
    server.run(transport=transport, **kwargs)


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Run the repository monitor FastMCP server.")
    parser.add_argument("--ledger", type=Path, default=None, help="YAML file that persists manual entries.")
    parser.add_argument(
        "--transport",
        default="stdio",
        choices=["stdio", "http", "sse", "streamable-http"],
        help="FastMCP transport to run.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="HTTP host when using HTTP transports.")
    parser.add_argument("--port", type=int, default=8001, help="HTTP port when using HTTP transports.")
    parser.add_argument("--path", default=None, help="Optional HTTP route path for streamable-http/sse.")
    args = parser.parse_args()

    run_server(
        ledger_path=args.ledger,
        transport=args.transport,
        host=args.host,
        port=args.port,
        path=args.path,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
