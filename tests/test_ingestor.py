import base64
import io

import openpyxl
import pytest

from conftest import FakeStorage
from exceptions import DocumentIngestError
from ingestor import (
    PRESENTATION, TEXT, DocumentIngestor, decode_document, presentation_parts, text_documents,
)
from models import DealDocument
from storage import parse_upload_path


def _xlsx_bytes(rows):
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_csv_rows_are_joined():
    doc = decode_document("financials.csv", b"Q1,100000\nQ2,150000\n")
    assert doc.type == TEXT
    assert doc.data == "Q1,100000\nQ2,150000"


def test_first_worksheet_is_serialized_as_csv():
    content = _xlsx_bytes([["Quarter", "Revenue"], ["Q1", 100000], ["Q2", 150000]])
    doc = decode_document("model.xlsx", content)
    assert doc.type == TEXT
    assert doc.data == "Quarter,Revenue\nQ1,100000\nQ2,150000"


def test_json_is_compacted():
    doc = decode_document("metrics.json", b'{"arr": 500000, "months": [1, 2]}')
    assert doc.data == '{"arr":500000,"months":[1,2]}'


def test_pdf_is_a_presentation_regardless_of_case():
    doc = decode_document("Deck.PDF", b"%PDF-1.4")
    assert doc.type == PRESENTATION
    assert doc.mime_type == "application/pdf"
    assert base64.b64decode(doc.data) == b"%PDF-1.4"


def test_pptx_mime_type():
    doc = decode_document("deck.pptx", b"PK")
    assert doc.mime_type == "application/vnd.openxmlformats-officedocument.presentationml.presentation"


def test_unknown_extension_falls_back_to_text():
    doc = decode_document("notes.md", b"# Founders\nTwo ex-Stripe engineers")
    assert doc.type == TEXT
    assert doc.data.startswith("# Founders")


def test_parts_split_by_type():
    docs = [decode_document("deck.pdf", b"x"), decode_document("a.csv", b"a,b")]
    assert presentation_parts(docs) == [{"inline_data": {"mime_type": "application/pdf", "data": "eA=="}}]
    assert [d.file_name for d in text_documents(docs)] == ["a.csv"]


@pytest.mark.asyncio
async def test_ingest_downloads_every_document():
    storage = FakeStorage({"uploads/u/d/a.csv": b"x,1", "uploads/u/d/deck.pdf": b"%PDF"})
    docs = [
        DealDocument(file_name="a.csv", storage_path="uploads/u/d/a.csv"),
        DealDocument(file_name="deck.pdf", storage_path="uploads/u/d/deck.pdf"),
    ]

    processed = await DocumentIngestor(storage).ingest(docs)

    assert [p.type for p in processed] == [TEXT, PRESENTATION]


@pytest.mark.asyncio
async def test_one_missing_file_fails_the_batch():
    storage = FakeStorage({"uploads/u/d/a.csv": b"x,1"})
    docs = [
        DealDocument(file_name="a.csv", storage_path="uploads/u/d/a.csv"),
        DealDocument(file_name="gone.pdf", storage_path="uploads/u/d/gone.pdf"),
    ]

    with pytest.raises(DocumentIngestError) as exc_info:
        await DocumentIngestor(storage).ingest(docs)

    assert exc_info.value.file_name == "gone.pdf"


def test_upload_path_parsing():
    upload = parse_upload_path("uploads/user-1/deal-9/deck.pdf")
    assert (upload.user_id, upload.deal_id, upload.file_name) == ("user-1", "deal-9", "deck.pdf")

    assert parse_upload_path("avatars/user-1/me.png") is None
    assert parse_upload_path("uploads/user-1/deck.pdf") is None
    assert parse_upload_path("uploads/user-1/deal-9/nested/deck.pdf") is None
    assert parse_upload_path(None) is None
