from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from repomon.schemas import DocumentMetadata, DocumentType, DocumentUpload
from repomon.source_adapters import DocumentAdapterError, ExtractedDocument

_EXTENSION_TYPES = {
    ".pdf": DocumentType.pdf,
    ".doc": DocumentType.doc,
    ".docx": DocumentType.docx,
    ".txt": DocumentType.txt,
    ".md": DocumentType.md,
    ".markdown": DocumentType.md,
    ".ppt": DocumentType.ppt,
    ".pptx": DocumentType.ppt,
    ".xls": DocumentType.xls,
    ".xlsx": DocumentType.xlsx,
    ".json": DocumentType.json,
}
_TEXT_TYPES = {DocumentType.txt, DocumentType.md}
PLACEHOLDER_MARKER = "Full text extraction requires additional libraries."


def document_type_for_filename(filename: str) -> DocumentType:
    return _EXTENSION_TYPES.get(Path(filename).suffix.lower(), DocumentType.txt)


def document_from_file(path: Path, *, document_id: str | None = None) -> DocumentUpload:
    """Build a ``DocumentUpload`` from a file on disk.

    Plain text and markdown are decoded as UTF-8 and JSON is re-indented. Binary
    office formats get a placeholder body; parsing them is left to an upstream
    extraction service.
    """
    try:
        raw = path.read_bytes()
        stat = path.stat()
    except OSError as exc:
        raise DocumentAdapterError(reason="unable to read file", details=str(exc)) from exc

    doc_type = document_type_for_filename(path.name)
    if doc_type in _TEXT_TYPES:
        content = raw.decode("utf-8", errors="replace")
    elif doc_type == DocumentType.json:
        text = raw.decode("utf-8", errors="replace")
        try:
            content = json.dumps(json.loads(text), indent=2)
        except json.JSONDecodeError:
            content = text
    else:
        content = (
            f"[Document content for {path.name}]\n\n"
            f"File type: {doc_type.value}\n"
            f"Size: {stat.st_size} bytes\n\n"
            f"Note: {PLACEHOLDER_MARKER}"
        )

    return DocumentUpload(
        id=document_id or str(uuid4()),
        filename=path.name,
        type=doc_type,
        content=content,
        metadata=DocumentMetadata(
            size=stat.st_size,
            created=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
            modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            title=path.stem,
        ),
    )


def document_from_text(
    filename: str,
    content: str,
    *,
    document_id: str | None = None,
    document_type: DocumentType | str | None = None,
    title: str | None = None,
    author: str | None = None,
) -> DocumentUpload:
    now = datetime.now(tz=UTC)
    return DocumentUpload(
        id=document_id or str(uuid4()),
        filename=filename,
        type=DocumentType(document_type) if document_type else document_type_for_filename(filename),
        content=content,
        metadata=DocumentMetadata(
            size=len(content.encode("utf-8")),
            created=now,
            modified=now,
            author=author,
            title=title or Path(filename).stem or None,
        ),
    )


class PlainTextDocumentAdapter:
    """Hands back the text already carried by an upload; no OCR or parsing happens here."""

    def extract(self, document: DocumentUpload) -> ExtractedDocument:
        text = document.content.strip()
        if not text:
            raise DocumentAdapterError(reason="document has no text content", details=document.filename)
        if PLACEHOLDER_MARKER in text:
            raise DocumentAdapterError(reason="document text was not extracted", details=document.filename)
        return ExtractedDocument(
            document_id=document.id,
            text=text,
            size=document.metadata.size,
            created=document.metadata.created,
            modified=document.metadata.modified,
            author=document.metadata.author,
            title=document.metadata.title,
        )
