from __future__ import annotations

import os
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from repomon.source_adapters import ExtractedDocument, FilesystemAdapterError, FilesystemFacts

VCS_MARKERS = (".git", ".hg", ".svn")
SKIPPED_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", ".tox", "dist", "build"}
README_CANDIDATES = ("README.md", "README.rst", "README.txt", "README", "readme.md")
RECENT_WINDOW = timedelta(days=30)
MAX_README_BYTES = 256 * 1024


class LocalFilesystemAdapter:
    def __init__(
        self,
        *,
        max_files: int = 50_000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._max_files = max_files
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def scan(self, path: str) -> FilesystemFacts:
        root = Path(path).expanduser()
        if not root.exists():
            return FilesystemFacts(path=path, exists=False)
        if not root.is_dir():
            raise FilesystemAdapterError(reason="path is not a directory", details=str(root))

        cutoff = self._clock() - RECENT_WINDOW
        file_count = 0
        recent = 0
        newest: datetime | None = None
        oldest: datetime | None = None
        extensions: Counter[str] = Counter()

        try:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = [name for name in dirnames if name not in SKIPPED_DIRS]
                for filename in filenames:
                    file_path = Path(dirpath) / filename
                    try:
                        modified = datetime.fromtimestamp(file_path.stat().st_mtime, tz=UTC)
                    except OSError:
                        continue
                    file_count += 1
                    if newest is None or modified > newest:
                        newest = modified
                    if oldest is None or modified < oldest:
                        oldest = modified
                    if modified >= cutoff:
                        recent += 1
                    suffix = file_path.suffix.lower()
                    if suffix:
                        extensions[suffix] += 1
                    if file_count >= self._max_files:
                        break
                if file_count >= self._max_files:
                    break
        except OSError as exc:
            raise FilesystemAdapterError(reason="directory walk failed", details=str(exc)) from exc

        return FilesystemFacts(
            path=path,
            exists=True,
            file_count=file_count,
            newest_modified=newest,
            oldest_modified=oldest,
            recently_modified_count=recent,
            has_vcs_marker=any((root / marker).exists() for marker in VCS_MARKERS),
            marker_files=sorted(entry.name for entry in root.iterdir() if entry.is_file()),
            extension_counts=dict(extensions.most_common()),
        )

    def read_readme(self, path: str) -> ExtractedDocument:
        root = Path(path).expanduser()
        if not root.is_dir():
            raise FilesystemAdapterError(reason="path is not a directory", details=str(root))
        for candidate in README_CANDIDATES:
            readme = root / candidate
            if not readme.is_file():
                continue
            try:
                stat = readme.stat()
                raw = readme.read_bytes()[:MAX_README_BYTES]
            except OSError as exc:
                raise FilesystemAdapterError(reason="unable to read readme", details=str(exc)) from exc
            return ExtractedDocument(
                document_id=str(readme),
                text=raw.decode("utf-8", errors="replace"),
                size=stat.st_size,
                created=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
                modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                title=root.name,
            )
        raise FilesystemAdapterError(reason="no readme found", details=str(root))
