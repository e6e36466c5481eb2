"""Upload validation and content preparation for the extraction model.

PDFs and images go to the model as binary attachments. Text-like formats
are rendered to plain text first so the model sees rows and cells rather
than bytes.
"""

from __future__ import annotations

import csv
import io
import logging
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from youphoria.core.errors import ValidationError
from youphoria.core.llm.provider import Attachment

logger = logging.getLogger(__name__)

PDF = "application/pdf"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS = "application/vnd.ms-excel"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC = "application/msword"

ALLOWED_MIME_TYPES = frozenset({
    PDF,
    "image/jpeg",
    "image/png",
    "text/plain",
    "text/csv",
    "text/rtf",
    XLSX,
    XLS,
    DOCX,
    DOC,
})

MAX_TABLE_ROWS = 100
MAX_TEXT_CHARS = 20_000

_WORD_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"


@dataclass
class PreparedContent:
    """What the extraction model receives for one file."""

    description: str
    text: str = ""
    attachment: Attachment | None = None

    @property
    def is_binary(self) -> bool:
        return self.attachment is not None


def validate_upload(
    file_bytes: bytes,
    file_name: str,
    mime_type: str,
    *,
    max_bytes: int,
) -> None:
    """Reject uploads before anything is stored.

    Raises:
        ValidationError: Empty, oversized, unnamed or disallowed file.
    """
    if not file_name:
        raise ValidationError("File name is required")
    if not file_bytes:
        raise ValidationError("Uploaded file is empty")
    if len(file_bytes) > max_bytes:
        raise ValidationError(
            f"File is {len(file_bytes)} bytes; the limit is {max_bytes} bytes",
            public_message=f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit.",
        )
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"File type {mime_type or 'unknown'} is not supported")


def describe_mime_type(mime_type: str) -> str:
    if mime_type == PDF:
        return "PDF document"
    if mime_type.startswith("image/"):
        return "image"
    if mime_type == "text/csv":
        return "CSV spreadsheet"
    if mime_type in (XLSX, XLS):
        return "Excel spreadsheet"
    if mime_type in (DOCX, DOC):
        return "Word document"
    return "text file"


def _decode(file_bytes: bytes) -> str:
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        return file_bytes.decode("latin-1")


def render_csv(file_bytes: bytes) -> str:
    """Header plus the first ``MAX_TABLE_ROWS`` data rows."""
    rows = csv.reader(io.StringIO(_decode(file_bytes)))
    header = next(rows, [])
    lines = ["CSV Data:", f"Headers: {', '.join(header)}", ""]
    for index, row in enumerate(rows, start=1):
        if index > MAX_TABLE_ROWS:
            lines.append(f"...(truncated after {MAX_TABLE_ROWS} rows)")
            break
        if row:
            lines.append(f"Row {index}: {', '.join(row)}")
    return "\n".join(lines)


def render_xlsx(file_bytes: bytes) -> str:
    """Every sheet, first ``MAX_TABLE_ROWS`` rows each."""
    workbook = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    try:
        lines = ["Excel Data:", ""]
        for sheet in workbook.worksheets:
            lines.append(f"Sheet: {sheet.title}")
            for index, row in enumerate(sheet.iter_rows(values_only=True), start=1):
                if index > MAX_TABLE_ROWS:
                    break
                cells = ["" if cell is None else str(cell) for cell in row]
                if any(cells):
                    lines.append(f"Row {index}: {', '.join(cells)}")
            lines.append("")
        return "\n".join(lines)
    finally:
        workbook.close()


def render_docx(file_bytes: bytes) -> str:
    """Paragraph text from ``word/document.xml``."""
    with zipfile.ZipFile(io.BytesIO(file_bytes)) as archive:
        root = ET.fromstring(archive.read("word/document.xml"))
    paragraphs = []
    for para in root.iter(f"{_WORD_NS}p"):
        text = "".join(node.text or "" for node in para.iter(f"{_WORD_NS}t"))
        if text.strip():
            paragraphs.append(text)
    return "\n".join(paragraphs)


def prepare_content(file_bytes: bytes, file_name: str, mime_type: str) -> PreparedContent:
    """Turn an accepted upload into model input.

    Raises:
        ValidationError: The file claims a type it cannot be read as.
    """
    description = describe_mime_type(mime_type)

    if mime_type == PDF or mime_type.startswith("image/"):
        return PreparedContent(
            description=description,
            attachment=Attachment(data=file_bytes, mime_type=mime_type, file_name=file_name),
        )

    try:
        if mime_type == "text/csv":
            text = render_csv(file_bytes)
        elif mime_type == XLSX:
            text = render_xlsx(file_bytes)
        elif mime_type == DOCX:
            text = render_docx(file_bytes)
        elif mime_type in (XLS, DOC):
            # legacy binary Office formats are not parsed
            text = f"{description} content (legacy binary format, not parsed): {file_name}"
        else:
            text = _decode(file_bytes)
    except (
        csv.Error, zipfile.BadZipFile, InvalidFileException, KeyError, ET.ParseError, OSError, ValueError,
    ) as exc:
        logger.warning("Could not read %s as %s: %s", file_name, description, exc)
        raise ValidationError(f"Could not read {file_name} as a {description}") from exc

    if len(text) > MAX_TEXT_CHARS:
        text = text[:MAX_TEXT_CHARS] + " ...(truncated)"
    return PreparedContent(description=description, text=text)
