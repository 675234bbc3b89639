from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from repomon.document_adapter import (
    PLACEHOLDER_MARKER,
    PlainTextDocumentAdapter,
    document_from_file,
    document_from_text,
    document_type_for_filename,
)
from repomon.schemas import DocumentMetadata, DocumentType, DocumentUpload
from repomon.source_adapters import DocumentAdapterError


def test_document_type_for_filename_defaults_to_text() -> None:
    assert document_type_for_filename("plan.MD") == DocumentType.md
    assert document_type_for_filename("deck.pptx") == DocumentType.ppt
    assert document_type_for_filename("notes") == DocumentType.txt


def test_document_from_file_reads_markdown(tmp_path: Path) -> None:
    path = tmp_path / "atlas-status.md"
    path.write_text("# Atlas\n\n80% complete.\n", encoding="utf-8")

    document = document_from_file(path, document_id="doc-atlas")

    assert document.id == "doc-atlas"
    assert document.type == DocumentType.md
    assert document.content.startswith("# Atlas")
    assert document.metadata.title == "atlas-status"
    assert document.metadata.size == path.stat().st_size


def test_document_from_file_pretty_prints_json(tmp_path: Path) -> None:
    path = tmp_path / "status.json"
    path.write_text('{"status":"active","progress":40}', encoding="utf-8")

    document = document_from_file(path)

    assert json.loads(document.content) == {"status": "active", "progress": 40}
    assert "\n" in document.content
    assert document.id


def test_document_from_file_uses_placeholder_for_binary_formats(tmp_path: Path) -> None:
    path = tmp_path / "roadmap.pdf"
    path.write_bytes(b"%PDF-1.7 binary")

    document = document_from_file(path)

    assert document.type == DocumentType.pdf
    assert PLACEHOLDER_MARKER in document.content
    with pytest.raises(DocumentAdapterError, match="document text was not extracted"):
        PlainTextDocumentAdapter().extract(document)


def test_document_from_file_reports_unreadable_files(tmp_path: Path) -> None:
    with pytest.raises(DocumentAdapterError, match="unable to read file"):
        document_from_file(tmp_path / "missing.md")


def test_document_from_text_infers_type_and_title() -> None:
    document = document_from_text("q3-update.txt", "Shipping soon.", author="Ana")

    assert document.type == DocumentType.txt
    assert document.metadata.title == "q3-update"
    assert document.metadata.author == "Ana"
    assert document.metadata.size == len("Shipping soon.")


def test_plain_text_adapter_extracts_text_and_metadata() -> None:
    now = datetime(2026, 3, 1, tzinfo=UTC)
    document = DocumentUpload(
        id="doc-2",
        filename="update.txt",
        type=DocumentType.txt,
        content="  Atlas is under active development.  ",
        metadata=DocumentMetadata(size=40, created=now, modified=now, author="Bo", title="Update"),
    )

    extracted = PlainTextDocumentAdapter().extract(document)

    assert extracted.document_id == "doc-2"
    assert extracted.text == "Atlas is under active development."
    assert extracted.author == "Bo"
    assert extracted.modified == now


def test_plain_text_adapter_rejects_empty_documents() -> None:
    document = document_from_text("empty.md", "   ")

    with pytest.raises(DocumentAdapterError, match="document has no text content"):
        PlainTextDocumentAdapter().extract(document)
