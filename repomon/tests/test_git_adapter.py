from __future__ import annotations

import subprocess
from datetime import UTC, datetime
from pathlib import Path

import pytest

from repomon.git_adapter import GitCliAdapter, GitCommandResult, parse_git_log
from repomon.monitor_config import GitSettings
from repomon.source_adapters import GitAdapterError

FS = "\x1f"
RS = "\x1e"


def _log_line(sha: str, author: str, when: str, subject: str) -> str:
    return f"{sha}{FS}{author}{FS}{when}{FS}{subject}{RS}\n"


LOG_OUTPUT = (
    _log_line("c3", "Ana", "2026-03-10T12:00:00+00:00", "Add exporter")
    + _log_line("c2", "Bo", "2026-03-09T08:30:00+02:00", "Fix parser")
    + _log_line("c1", "Ana", "2026-02-01T00:00:00Z", "Initial commit")
)


class RecordingRunner:
    def __init__(self, responses: dict[str, GitCommandResult]) -> None:
        self.responses = responses
        self.calls: list[list[str]] = []

    def __call__(self, argv: list[str], cwd: Path | None, timeout: float) -> GitCommandResult:
        self.calls.append(argv)
        for marker, result in self.responses.items():
            if marker in argv:
                return result
        raise AssertionError(f"unexpected git call: {argv}")


def test_parse_git_log_reads_separated_records() -> None:
    commits = parse_git_log(LOG_OUTPUT)

    assert [commit.sha for commit in commits] == ["c3", "c2", "c1"]
    assert commits[1].committed_at == datetime(2026, 3, 9, 6, 30, tzinfo=UTC)
    assert commits[2].subject == "Initial commit"


def test_parse_git_log_accepts_empty_commit_subject() -> None:
    output = _log_line("abc123", "Ana", "2026-03-01T10:00:00+00:00", "") + _log_line("c1", "Bo", "2026-02-01T00:00:00Z", "Initial")

    commits = parse_git_log(output)

    assert [commit.sha for commit in commits] == ["abc123", "c1"]
    assert commits[0].subject == ""
    assert commits[0].author == "Ana"


def test_parse_git_log_rejects_malformed_records() -> None:
    with pytest.raises(GitAdapterError, match="unexpected log format"):
        parse_git_log(f"abc{FS}only-two-fields{RS}")

    with pytest.raises(GitAdapterError, match="invalid commit timestamp"):
        parse_git_log(_log_line("abc", "Ana", "yesterday", "Oops"))


def test_inspect_remote_probes_clones_and_reads_log() -> None:
    runner = RecordingRunner(
        {
            "ls-remote": GitCommandResult(returncode=0, stdout="ref: refs/heads/main\tHEAD\nc3\tHEAD\n"),
            "clone": GitCommandResult(returncode=0),
            "log": GitCommandResult(returncode=0, stdout=LOG_OUTPUT),
        }
    )
    adapter = GitCliAdapter(settings=GitSettings(history_depth=20), runner=runner)

    facts = adapter.inspect("github.com/acme/atlas")

    assert facts.reachable is True
    assert facts.target == "https://github.com/acme/atlas"
    assert facts.default_branch == "main"
    assert facts.latest_commit is not None and facts.latest_commit.sha == "c3"
    assert facts.contributors == ["Ana", "Bo"]
    clone_call = runner.calls[1]
    assert clone_call[:2] == ["git", "clone"]
    assert "--depth=20" in clone_call
    assert "--bare" in clone_call


def test_inspect_remote_reports_unreachable_repository() -> None:
    runner = RecordingRunner(
        {"ls-remote": GitCommandResult(returncode=128, stderr="fatal: repository not found")}
    )
    adapter = GitCliAdapter(runner=runner)

    with pytest.raises(GitAdapterError, match="repository unreachable") as exc_info:
        adapter.inspect("https://github.com/acme/missing")

    assert exc_info.value.source == "git"
    assert "repository not found" in (exc_info.value.details or "")


def test_inspect_local_working_copy_reads_log_in_place(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    runner = RecordingRunner({"log": GitCommandResult(returncode=0, stdout=LOG_OUTPUT)})
    adapter = GitCliAdapter(runner=runner)

    facts = adapter.inspect(str(tmp_path))

    assert facts.reachable is True
    assert len(facts.commits) == 3
    assert runner.calls == [
        ["git", "-C", str(tmp_path), "log", "-n50", runner.calls[0][-1]],
    ]


def test_inspect_local_repository_without_commits_returns_empty_history(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    runner = RecordingRunner(
        {
            "log": GitCommandResult(
                returncode=128,
                stderr="fatal: your current branch 'main' does not have any commits yet",
            )
        }
    )

    facts = GitCliAdapter(runner=runner).inspect(str(tmp_path))

    assert facts.commits == []
    assert facts.latest_commit is None


def test_inspect_rejects_plain_directories(tmp_path: Path) -> None:
    with pytest.raises(GitAdapterError, match="not a git working copy"):
        GitCliAdapter(runner=RecordingRunner({})).inspect(str(tmp_path))


def test_inspect_maps_timeouts_and_missing_executable() -> None:
    def slow_runner(argv: list[str], cwd: Path | None, timeout: float) -> GitCommandResult:
        raise subprocess.TimeoutExpired(cmd=argv, timeout=timeout)

    with pytest.raises(GitAdapterError, match="command timed out"):
        GitCliAdapter(runner=slow_runner).inspect("https://github.com/acme/atlas")

    def missing_runner(argv: list[str], cwd: Path | None, timeout: float) -> GitCommandResult:
        raise FileNotFoundError("git")

    with pytest.raises(GitAdapterError, match="git executable unavailable"):
        GitCliAdapter(runner=missing_runner).inspect("https://github.com/acme/atlas")
