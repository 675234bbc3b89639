from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any
from uuid import uuid4

import yaml
from pydantic import ValidationError

from repomon.analysis import RecordAnalysis
from repomon.document_adapter import document_from_file
from repomon.ledger import BusyLedgerError, ManualEntryValidationError, YamlLedgerStore
from repomon.mcp_server import build_monitor_for_ledger
from repomon.mcp_server import run_server as run_fastmcp_server
from repomon.monitor import MonitorOptions, build_default_monitor
from repomon.monitor_config import MonitorConfig, load_monitor_config_file, load_monitor_config_from_env
from repomon.schemas import CanonicalRecord, EntrySource, ManualEntry
from repomon.source_adapters import DocumentAdapterError

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Repository status monitor")
    parser.add_argument("--log-level", default="WARNING", choices=LOG_LEVELS, help="Logging level (default: WARNING).")
    parser.add_argument("--config", type=Path, default=None, help="Optional YAML config file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor_parser = subparsers.add_parser("monitor", help="Build a status record for a URL or local path.")
    monitor_parser.add_argument("target", help="Repository URL or filesystem path.")
    monitor_parser.add_argument(
        "--method",
        default=None,
        help="Run only strategies matching this name (e.g. git, local, api, github, ai).",
    )
    monitor_parser.add_argument("--context", default=None, help="Free-text context passed to AI inference.")
    monitor_parser.add_argument(
        "--hint",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Caller hint such as name=... or description=... (repeatable).",
    )
    monitor_parser.add_argument("--deadline", type=float, default=None, help="Overall deadline in seconds.")
    monitor_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    upload_parser = subparsers.add_parser("upload", help="Build a status record from a document file.")
    upload_parser.add_argument("file", type=Path, help="Document path (txt, md, json, pdf, docx, ...).")
    upload_parser.add_argument("--document-id", default=None, help="Document id (default: random UUID).")
    upload_parser.add_argument("--context", default=None, help="Free-text context passed to AI inference.")
    upload_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    manual_parser = subparsers.add_parser("manual", help="Append a manual entry to a ledger file and rebuild.")
    manual_parser.add_argument("--ledger", type=Path, required=True, help="YAML ledger file (created if missing).")
    manual_parser.add_argument("--repository-id", required=True, help="Repository id the entry belongs to.")
    manual_parser.add_argument("--field", required=True, help="Record field, e.g. status or technologies.")
    manual_parser.add_argument("--value", required=True, help="Value; parsed as YAML so lists and numbers work.")
    manual_parser.add_argument("--confidence", type=float, default=0.8, help="Confidence in [0, 1] (default: 0.8).")
    manual_parser.add_argument(
        "--source",
        default=EntrySource.user.value,
        choices=[source.value for source in EntrySource],
        help="Who asserted the value.",
    )
    manual_parser.add_argument("--notes", default=None, help="Optional free-text notes.")
    manual_parser.add_argument("--entry-id", default=None, help="Entry id (default: random UUID).")
    manual_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    mcp_parser = subparsers.add_parser("mcp-server", help="Run the FastMCP server.")
    mcp_parser.add_argument("--ledger", type=Path, default=None, help="YAML file that persists manual entries.")
    mcp_parser.add_argument(
        "--transport",
        default="stdio",
        choices=["stdio", "http", "sse", "streamable-http"],
        help="FastMCP transport.",
    )
    mcp_parser.add_argument("--host", default="127.0.0.1", help="HTTP host for HTTP transports.")
    mcp_parser.add_argument("--port", type=int, default=8001, help="HTTP port for HTTP transports.")
    mcp_parser.add_argument("--path", default=None, help="Optional HTTP route path.")
    return parser


def _print_payload(payload: dict[str, Any], *, pretty: bool) -> None:
    if pretty:
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        print(json.dumps(payload, sort_keys=True))


def _record_payload(record: CanonicalRecord, analysis: RecordAnalysis) -> dict[str, Any]:
    return {
        "ok": True,
        "record": record.model_dump(mode="json", by_alias=True),
        "analysis": analysis.model_dump(mode="json", by_alias=True),
    }


def _error_payload(exc: Exception) -> dict[str, Any]:
    return {"ok": False, "error_type": exc.__class__.__name__, "message": str(exc)}


def _load_config(args: argparse.Namespace) -> MonitorConfig:
    base = load_monitor_config_file(args.config) if getattr(args, "config", None) else None
    return load_monitor_config_from_env(base_config=base)


def parse_hints(raw_hints: list[str]) -> dict[str, str]:
    hints: dict[str, str] = {}
    for raw in raw_hints:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"hint must look like KEY=VALUE, got '{raw}'")
        hints[key.strip()] = value.strip()
    return hints


def run_monitor(args: argparse.Namespace) -> int:
    try:
        hints = parse_hints(args.hint)
    except ValueError as exc:
        _print_payload(_error_payload(exc), pretty=args.pretty)
        return 2

    monitor = build_default_monitor(_load_config(args))
    options = MonitorOptions(
        force_method=args.method,
        additional_context=args.context,
        hints=hints,
        deadline_seconds=args.deadline,
    )
    record = monitor.monitor_repository(args.target, options)
    _print_payload(_record_payload(record, monitor.analyze(record, context=args.context)), pretty=args.pretty)
    return 0


def run_upload(args: argparse.Namespace) -> int:
    try:
        document = document_from_file(args.file, document_id=args.document_id)
    except DocumentAdapterError as exc:
        _print_payload(_error_payload(exc), pretty=args.pretty)
        return 1

    monitor = build_default_monitor(_load_config(args))
    record = monitor.process_document_upload(document, MonitorOptions(additional_context=args.context))
    _print_payload(_record_payload(record, monitor.analyze(record, context=args.context)), pretty=args.pretty)
    return 0


def run_manual(args: argparse.Namespace) -> int:
    ledger_path: Path = args.ledger
    try:
        entry = ManualEntry(
            id=args.entry_id or str(uuid4()),
            repository_id=args.repository_id,
            field=args.field,
            value=yaml.safe_load(args.value),
            source=EntrySource(args.source),
            confidence=args.confidence,
            notes=args.notes,
        )
        monitor = build_default_monitor(_load_config(args), ledger_store=YamlLedgerStore(ledger_path))
        record = monitor.add_manual_entry(entry)
    except (ManualEntryValidationError, ValidationError, yaml.YAMLError) as exc:
        _print_payload(_error_payload(exc), pretty=args.pretty)
        return 2
    except BusyLedgerError as exc:
        _print_payload(_error_payload(exc), pretty=args.pretty)
        return 1

    _print_payload(_record_payload(record, monitor.analyze(record)), pretty=args.pretty)
    return 0


def run_mcp_server(args: argparse.Namespace) -> int:
    run_fastmcp_server(
        monitor=build_monitor_for_ledger(args.ledger, config=_load_config(args)),
        ledger_path=args.ledger,
        transport=args.transport,
        host=args.host,
        port=args.port,
        path=args.path,
    )
    return 0


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "monitor":
        return run_monitor(args)
    if args.command == "upload":
        return run_upload(args)
    if args.command == "manual":
        return run_manual(args)
    if args.command == "mcp-server":
        return run_mcp_server(args)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
