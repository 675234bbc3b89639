from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from repomon.schemas import DocumentUpload


@runtime_checkable
class DocumentCache(Protocol):
    def put(self, document: DocumentUpload) -> DocumentUpload: ...

    def get(self, document_id: str) -> DocumentUpload | None: ...


class InMemoryDocumentCache:
    """Uploaded documents by id. The first insert for an id wins; later ones are no-ops."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, DocumentUpload] = {}

    def put(self, document: DocumentUpload) -> DocumentUpload:
        with self._lock:
            return self._documents.setdefault(document.id, document)

    def get(self, document_id: str) -> DocumentUpload | None:
        return self._documents.get(document_id)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    def __len__(self) -> int:
        return len(self._documents)
