"""
SealDeal - Document Ingestor
Downloads deal documents and turns them into model-ready parts
"""

import asyncio
import base64
import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Optional

import openpyxl

from exceptions import DocumentIngestError
from models import DealDocument

logger = logging.getLogger(__name__)

PRESENTATION = "presentation"
TEXT = "text"

# Sent to the model as binary attachments
PRESENTATION_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}


@dataclass
class ProcessedDocument:
    """One ingested file: base64 presentation payload or decoded text"""
    type: str
    data: str
    file_name: str
    mime_type: Optional[str] = None

    def to_inline_part(self) -> Dict:
        return {"inline_data": {"mime_type": self.mime_type, "data": self.data}}


def csv_to_text(content: bytes) -> str:
    """Parsed rows, cells joined with commas, rows joined with newlines"""
    reader = csv.reader(io.StringIO(content.decode("utf-8")))
    return "\n".join(",".join(row) for row in reader)


def xlsx_to_text(content: bytes) -> str:
    """First worksheet serialized as CSV text"""
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        worksheet = workbook.worksheets[0]
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        for row in worksheet.iter_rows(values_only=True):
            writer.writerow(["" if cell is None else cell for cell in row])
    finally:
        workbook.close()
    return buffer.getvalue().rstrip("\n")


def json_to_text(content: bytes) -> str:
    return json.dumps(json.loads(content), separators=(",", ":"), ensure_ascii=False)


def decode_document(file_name: str, content: bytes) -> ProcessedDocument:
    """Classify by extension and decode"""
    suffix = PurePosixPath(file_name).suffix.lower()

    if suffix in PRESENTATION_MIME_TYPES:
        return ProcessedDocument(
            type=PRESENTATION,
            data=base64.b64encode(content).decode("ascii"),
            file_name=file_name,
            mime_type=PRESENTATION_MIME_TYPES[suffix],
        )

    if suffix == ".csv":
        text = csv_to_text(content)
    elif suffix == ".xlsx":
        text = xlsx_to_text(content)
    elif suffix == ".json":
        text = json_to_text(content)
    else:
        text = content.decode("utf-8", errors="replace")

    return ProcessedDocument(type=TEXT, data=text, file_name=file_name)


class DocumentIngestor:
    """Fetches and decodes every document of a deal concurrently"""

    def __init__(self, storage):
        self.storage = storage

    async def ingest_one(self, document: DealDocument) -> ProcessedDocument:
        try:
            content = await self.storage.download(document.storage_path)
            processed = decode_document(document.file_name, content)
        except Exception as e:
            logger.error(f"[Ingestor] {document.file_name} failed: {e}")
            raise DocumentIngestError(document.file_name, str(e)) from e

        logger.info(f"[Ingestor] {document.file_name} -> {processed.type} ({len(content)} bytes)")
        return processed

    async def ingest(self, documents: List[DealDocument]) -> List[ProcessedDocument]:
        """All-or-nothing: the first failing document aborts the batch"""
        return list(await asyncio.gather(*(self.ingest_one(d) for d in documents)))

    async def exists(self, storage_path: str) -> bool:
        return await self.storage.exists(storage_path)


def presentation_parts(documents: List[ProcessedDocument]) -> List[Dict]:
    return [d.to_inline_part() for d in documents if d.type == PRESENTATION and d.mime_type]


def text_documents(documents: List[ProcessedDocument]) -> List[ProcessedDocument]:
    return [d for d in documents if d.type == TEXT]
