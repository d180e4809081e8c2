# app/utils/converter.py
"""
Document format conversion between txt, pdf and docx.

Everything goes through plain text: PDFs are read and written with PyMuPDF,
DOCX files with python-docx.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import docx
import fitz

from app.core.exceptions import ConversionError
from app.core.jobs import WorkContext, WorkItem
from app.schemas.job import WorkOutput
from app.schemas.utilities import FileConverterConfig

NAMESPACE = "file-converter"
JOB_PREFIX = "file-convert"

ALLOWED_CONTENT_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "application/octet-stream",
}

FORMATS = {".pdf": "pdf", ".docx": "docx", ".txt": "txt"}

# A4 in points, 1 inch margins
PAGE_WIDTH, PAGE_HEIGHT = 595, 842
MARGIN = 72
FONT_SIZE = 11
LINES_PER_PAGE = 54


@dataclass(frozen=True)
class UploadedDocument:
    path: str
    original_name: str


def detect_format(filename: str, data: bytes = b"") -> str:
    ext = os.path.splitext(filename)[1].lower()
    if ext in FORMATS:
        return FORMATS[ext]
    if data.startswith(b"%PDF"):
        return "pdf"
    if data.startswith(b"PK"):
        return "docx"
    return "unknown"


# --- readers ---


def read_txt(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def read_pdf(path: Path) -> str:
    with fitz.open(path) as doc:
        return "\n\n".join(page.get_text("text") or "" for page in doc).strip()


def read_docx(path: Path) -> str:
    document = docx.Document(str(path))
    return "\n".join(p.text for p in document.paragraphs)


READERS = {"txt": read_txt, "pdf": read_pdf, "docx": read_docx}


# --- writers ---


def _wrap(text: str, width: int = 90) -> List[str]:
    lines: List[str] = []
    for raw in text.splitlines() or [""]:
        while len(raw) > width:
            cut = raw.rfind(" ", 0, width)
            cut = cut if cut > 0 else width
            lines.append(raw[:cut])
            raw = raw[cut:].lstrip()
        lines.append(raw)
    return lines


def write_txt(text: str, target: Path) -> None:
    target.write_text(text, encoding="utf-8")


def write_pdf(text: str, target: Path) -> None:
    lines = _wrap(text)
    with fitz.open() as doc:
        for start in range(0, max(len(lines), 1), LINES_PER_PAGE):
            page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            chunk = "\n".join(lines[start : start + LINES_PER_PAGE])
            page.insert_text((MARGIN, MARGIN), chunk, fontsize=FONT_SIZE, fontname="helv")
        doc.save(str(target))


def write_docx(text: str, target: Path) -> None:
    document = docx.Document()
    for line in text.splitlines():
        document.add_paragraph(line)
    document.save(str(target))


WRITERS = {"txt": write_txt, "pdf": write_pdf, "docx": write_docx}


def convert_file(source: Path, target: Path, input_format: str, output_format: str) -> None:
    """Blocking conversion; raises ConversionError for unsupported pairs."""
    if input_format not in READERS:
        raise ConversionError(f"Unsupported input format: {input_format}")
    if input_format == output_format:
        raise ConversionError(f"File is already in {output_format} format")
    try:
        text = READERS[input_format](source)
    except Exception as e:
        raise ConversionError(f"Could not read {input_format} file: {e}") from e

    target.parent.mkdir(parents=True, exist_ok=True)
    WRITERS[output_format](text, target)


def describe(source_bytes: int, target: Path) -> Dict[str, Any]:
    converted = target.stat().st_size
    ratio = (source_bytes - converted) / source_bytes * 100 if source_bytes else 0.0
    return {
        "originalSize": source_bytes,
        "convertedSize": converted,
        "compressionRatio": round(max(0.0, ratio), 2),
    }


async def convert_work(
    payload: UploadedDocument, config: FileConverterConfig, context: WorkContext
) -> WorkOutput:
    """Work function: convert one uploaded document; the upload is always removed."""
    source = Path(payload.path)
    stem = Path(payload.original_name).stem or "document"
    filename = f"{stem}_converted_{context.index + 1}.{config.output_format}"
    target = Path(context.work_dir) / filename

    try:
        with open(source, "rb") as f:
            head = f.read(8)
        input_format = detect_format(payload.original_name, head)
        source_bytes = source.stat().st_size
        await asyncio.to_thread(convert_file, source, target, input_format, config.output_format)
    except Exception:
        if target.exists():
            target.unlink()
        raise
    finally:
        if source.exists():
            source.unlink()

    return WorkOutput(
        message="File converted successfully",
        artifact_location=str(target),
        archive_name=f"{stem}.{config.output_format}",
        details={
            "originalFileName": payload.original_name,
            "convertedFileName": filename,
            "inputFormat": input_format,
            "outputFormat": config.output_format,
            **describe(source_bytes, target),
        },
    )


def build_items(documents: list) -> List[WorkItem]:
    return [WorkItem(identity=d.original_name, payload=d) for d in documents]
