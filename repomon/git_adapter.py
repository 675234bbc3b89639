from __future__ import annotations

import subprocess
import tempfile
from collections import Counter
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from repomon.monitor_config import GitSettings
from repomon.schemas import RepoMonBaseModel, ensure_utc
from repomon.source_adapters import (
    CommitInfo,
    GitAdapterError,
    GitRepositoryFacts,
    normalize_repository_url,
    trim_output,
)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = f"%H{_FIELD_SEP}%an{_FIELD_SEP}%cI{_FIELD_SEP}%s{_RECORD_SEP}"


class GitCommandResult(RepoMonBaseModel):
    returncode: int
    stdout: str = ""
    stderr: str = ""


GitRunner = Callable[[list[str], Path | None, float], GitCommandResult]


class GitCliAdapter:
    """Reads commit history through the ``git`` executable.

    Remote targets are probed with ``git ls-remote`` and then cloned bare, blob-less
    and shallow into a temporary directory. Local working copies are read in place.
    """

    def __init__(self, *, settings: GitSettings | None = None, runner: GitRunner | None = None) -> None:
        self._settings = settings or GitSettings()
        self._runner = runner or _default_runner

    def inspect(self, target: str) -> GitRepositoryFacts:
        local_root = Path(target).expanduser()
        if local_root.is_dir():
            if not (local_root / ".git").exists():
                raise GitAdapterError(reason="not a git working copy", details=str(local_root))
            commits = self._read_log(local_root)
            return _build_facts(target=target, reachable=True, default_branch=None, commits=commits)

        remote = normalize_repository_url(target)
        default_branch = self._probe_remote(remote)
        with tempfile.TemporaryDirectory(prefix="repomon-git-") as tmp:
            clone_dir = Path(tmp) / "repo.git"
            clone = self._run(
                [
                    "clone",
                    "--bare",
                    "--filter=blob:none",
                    "--single-branch",
                    f"--depth={self._settings.history_depth}",
                    remote,
                    str(clone_dir),
                ],
                cwd=None,
            )
            if clone.returncode != 0:
                raise GitAdapterError(
                    reason=f"clone exited with status {clone.returncode}",
                    details=trim_output(clone.stderr or clone.stdout),
                )
            commits = self._read_log(clone_dir)
        return _build_facts(target=remote, reachable=True, default_branch=default_branch, commits=commits)

    def _probe_remote(self, remote: str) -> str | None:
        probe = self._run(["ls-remote", "--symref", remote, "HEAD"], cwd=None)
        if probe.returncode != 0:
            raise GitAdapterError(
                reason="repository unreachable",
                details=trim_output(probe.stderr or probe.stdout) or remote,
            )
        for line in probe.stdout.splitlines():
            if line.startswith("ref:") and "\tHEAD" in line:
                ref = line.split()[1]
                return ref.removeprefix("refs/heads/")
        return None

    def _read_log(self, repo_dir: Path) -> list[CommitInfo]:
        result = self._run(
            [
                "-C",
                str(repo_dir),
                "log",
                f"-n{self._settings.history_depth}",
                f"--format={_LOG_FORMAT}",
            ],
            cwd=None,
        )
        if result.returncode != 0:
            stderr = result.stderr.lower()
            # A repository with no commits yet has no HEAD to log.
            if "does not have any commits" in stderr or "bad default revision" in stderr:
                return []
            raise GitAdapterError(
                reason=f"log exited with status {result.returncode}",
                details=trim_output(result.stderr or result.stdout),
            )
        return parse_git_log(result.stdout)

    def _run(self, args: list[str], *, cwd: Path | None) -> GitCommandResult:
        argv = [self._settings.executable, *args]
        try:
            return self._runner(argv, cwd, self._settings.command_timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            raise GitAdapterError(
                reason="command timed out",
                details=f"{' '.join(args[:2])} after {exc.timeout}s",
            ) from exc
        except OSError as exc:
            raise GitAdapterError(reason="git executable unavailable", details=str(exc)) from exc


def parse_git_log(output: str) -> list[CommitInfo]:
    commits: list[CommitInfo] = []
    for raw_record in output.split(_RECORD_SEP):
        record = raw_record.strip("\r\n")
        if not record.strip():
            continue
        parts = record.split(_FIELD_SEP)
        if len(parts) != 4:
            raise GitAdapterError(reason="unexpected log format", details=trim_output(record))
        sha, author, committed_at, subject = parts
        try:
            timestamp = datetime.fromisoformat(committed_at.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise GitAdapterError(reason="invalid commit timestamp", details=committed_at) from exc
        commits.append(
            CommitInfo(
                sha=sha,
                author=author,
                committed_at=ensure_utc(timestamp),
                subject=subject.strip(),
            )
        )
    return commits


def _build_facts(
    *,
    target: str,
    reachable: bool,
    default_branch: str | None,
    commits: list[CommitInfo],
) -> GitRepositoryFacts:
    ordered = sorted(commits, key=lambda commit: commit.committed_at, reverse=True)
    author_counts = Counter(commit.author for commit in ordered)
    # most_common keeps first-encountered order for equal counts, newest author first.
    contributors = [author for author, _ in author_counts.most_common()]
    return GitRepositoryFacts(
        target=target,
        reachable=reachable,
        default_branch=default_branch,
        latest_commit=ordered[0] if ordered else None,
        commits=ordered,
        contributors=contributors,
    )


def _default_runner(argv: list[str], cwd: Path | None, timeout: float) -> GitCommandResult:
    completed = subprocess.run(
        argv,
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
    )
    return GitCommandResult(
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
