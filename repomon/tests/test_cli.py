from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from repomon.cli import build_parser, parse_hints, run_manual, run_monitor, run_upload
from repomon.document_adapter import PlainTextDocumentAdapter
from repomon.ledger import ledger_file_lock, load_ledger_yaml
from repomon.monitor import MonitorOptions, RepositoryMonitor
from repomon.monitor_config import MonitorConfig
from repomon.schemas import CanonicalRecord
from repomon.source_adapters import CommitInfo, GitRepositoryFacts

NOW = datetime(2026, 4, 1, 12, 0, tzinfo=UTC)


class StubGit:
    def inspect(self, target: str) -> GitRepositoryFacts:
        commit = CommitInfo(sha="c1", author="Ana", committed_at=NOW - timedelta(days=2), subject="Add exporter")
        return GitRepositoryFacts(target=target, reachable=True, latest_commit=commit, commits=[commit], contributors=["Ana"])


class RecordingMonitor(RepositoryMonitor):
    def __init__(self, **kwargs: object) -> None:
        super().__init__(git=StubGit(), documents=PlainTextDocumentAdapter(), clock=lambda: NOW, **kwargs)
        self.calls: list[tuple[object, MonitorOptions | None]] = []

    def monitor_repository(self, raw: object, options: MonitorOptions | None = None) -> CanonicalRecord:
        self.calls.append((raw, options))
        return super().monitor_repository(raw, options)


def test_parse_hints_splits_key_value_pairs() -> None:
    assert parse_hints(["name=Atlas", "description = Ledger sync "]) == {"name": "Atlas", "description": "Ledger sync"}
    with pytest.raises(ValueError, match="KEY=VALUE"):
        parse_hints(["just-a-name"])


def test_monitor_command_prints_record(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monitor = RecordingMonitor()
    monkeypatch.setattr("repomon.cli.build_default_monitor", lambda config, **kwargs: monitor)
    args = build_parser().parse_args(
        [
            "monitor",
            "https://github.com/acme/atlas",
            "--method",
            "git",
            "--hint",
            "name=Atlas",
            "--deadline",
            "5",
            "--pretty",
        ]
    )

    exit_code = run_monitor(args)

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["ok"] is True
    assert payload["record"]["id"] == "repo@acme-atlas"
    assert payload["record"]["status"] == "active"
    assert set(payload["analysis"]) == {"riskLevel", "riskScore", "recommendations"}
    raw, options = monitor.calls[0]
    assert raw == "https://github.com/acme/atlas"
    assert options is not None
    assert options.force_method == "git"
    assert options.hints == {"name": "Atlas"}
    assert options.deadline_seconds == 5.0


def test_monitor_command_rejects_malformed_hints(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    def fail_build(*args: object, **kwargs: object) -> RepositoryMonitor:
        raise AssertionError("monitor should not be built")

    monkeypatch.setattr("repomon.cli.build_default_monitor", fail_build)
    args = build_parser().parse_args(["monitor", "/work/atlas", "--hint", "oops"])

    exit_code = run_monitor(args)

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 2
    assert payload == {"ok": False, "error_type": "ValueError", "message": "hint must look like KEY=VALUE, got 'oops'"}


def test_upload_command_reads_document(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    document_path = tmp_path / "atlas.md"
    document_path.write_text("Atlas is on hold pending budget.\n", encoding="utf-8")
    monitor = RecordingMonitor()
    monkeypatch.setattr("repomon.cli.build_default_monitor", lambda config, **kwargs: monitor)
    args = build_parser().parse_args(["upload", str(document_path), "--document-id", "doc-atlas"])

    exit_code = run_upload(args)

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["record"]["id"] == "document@doc-atlas"
    assert payload["record"]["status"] == "stalled"
    assert "doc-atlas" in monitor.document_cache


def test_upload_command_reports_missing_file(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    args = build_parser().parse_args(["upload", str(tmp_path / "missing.md")])

    exit_code = run_upload(args)

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 1
    assert payload["error_type"] == "DocumentAdapterError"


def _fake_default_monitor(config: MonitorConfig | None = None, **kwargs: object) -> RepositoryMonitor:
    return RepositoryMonitor(config=config, ledger_store=kwargs.get("ledger_store"))


def test_manual_command_appends_to_ledger_file(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.setattr("repomon.cli.build_default_monitor", _fake_default_monitor)
    ledger_path = tmp_path / "ledger.yaml"
    base = ["manual", "--ledger", str(ledger_path), "--repository-id", "atlas"]

    first = run_manual(build_parser().parse_args([*base, "--field", "status", "--value", "paused", "--entry-id", "e1"]))
    capsys.readouterr()
    second = run_manual(
        build_parser().parse_args(
            [*base, "--field", "technologies", "--value", "[Python, Go]", "--confidence", "0.6", "--entry-id", "e2"]
        )
    )

    payload = json.loads(capsys.readouterr().out)
    assert (first, second) == (0, 0)
    assert payload["record"]["status"] == "stalled"
    assert payload["record"]["technologies"] == ["Python", "Go"]
    assert [entry.id for entry in load_ledger_yaml(ledger_path)] == ["e1", "e2"]


def test_manual_command_rejects_invalid_confidence(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.setattr("repomon.cli.build_default_monitor", _fake_default_monitor)
    ledger_path = tmp_path / "ledger.yaml"
    args = build_parser().parse_args(
        ["manual", "--ledger", str(ledger_path), "--repository-id", "atlas", "--field", "status", "--value", "active", "--confidence", "3"]
    )

    exit_code = run_manual(args)

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 2
    assert payload["error_type"] == "ManualEntryValidationError"
    assert not ledger_path.exists()


def test_manual_command_reports_busy_ledger(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.setattr("repomon.cli.build_default_monitor", _fake_default_monitor)
    ledger_path = tmp_path / "ledger.yaml"
    args = build_parser().parse_args(
        ["manual", "--ledger", str(ledger_path), "--repository-id", "atlas", "--field", "status", "--value", "active"]
    )

    with ledger_file_lock(ledger_path):
        exit_code = run_manual(args)

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 1
    assert payload["error_type"] == "BusyLedgerError"
