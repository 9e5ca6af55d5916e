"""
Office template rendering: fills ``{{placeholder}}`` tokens in uploaded
.docx / .xlsx templates.

Parsing and writing of the Office packages is delegated to python-docx and
openpyxl; this module only walks the text and substitutes values.
"""

import re
import zipfile
from io import BytesIO
from typing import Mapping, Union

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
import structlog

from crm.services.errors import TemplateRenderError, UnsupportedTemplateTypeError

logger = structlog.get_logger()

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

SUPPORTED_MIME_TYPES = {
    DOCX_MIME_TYPE: "docx",
    XLSX_MIME_TYPE: "xlsx",
}

TemplateValue = Union[str, int, float, None]

_DOCX_TAG = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")
_XLSX_TAG = re.compile(r"\{\{([A-Za-z0-9_]+)\}\}")
_DIGITS_ONLY = re.compile(r"[0-9]+")


def extension_for(mime_type: str) -> str:
    try:
        return SUPPORTED_MIME_TYPES[mime_type]
    except KeyError:
        raise UnsupportedTemplateTypeError(mime_type)


def _as_text(value: TemplateValue) -> str:
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Word
# ---------------------------------------------------------------------------


def _render_paragraph(paragraph, data: Mapping[str, TemplateValue]) -> None:
    runs = paragraph.runs
    if not runs:
        return
    # Word splits text into runs at arbitrary points, so match on the joined text
    text = "".join(run.text for run in runs)
    if "{{" not in text:
        return

    rendered = _DOCX_TAG.sub(lambda m: _as_text(data.get(m.group(1))), text)
    if "{{" in rendered:
        snippet = rendered[rendered.index("{{"):][:40]
        raise TemplateRenderError(f"Unclosed or invalid tag near '{snippet}'")

    # Formatting of the first run wins for the whole paragraph
    runs[0].text = rendered
    for run in runs[1:]:
        run.text = ""


def _render_tables(tables, data: Mapping[str, TemplateValue]) -> None:
    for table in tables:
        seen = set()
        for row in table.rows:
            for cell in row.cells:
                # Merged cells are yielded once per grid position
                if id(cell._tc) in seen:
                    continue
                seen.add(id(cell._tc))
                _render_block(cell, data)


def _render_block(block, data: Mapping[str, TemplateValue]) -> None:
    for paragraph in block.paragraphs:
        _render_paragraph(paragraph, data)
    _render_tables(block.tables, data)


def render_docx(template: bytes, data: Mapping[str, TemplateValue]) -> bytes:
    try:
        document = Document(BytesIO(template))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise TemplateRenderError(f"Cannot read Word template: {e}") from e

    try:
        _render_block(document, data)
        for section in document.sections:
            for part in (
                section.header,
                section.footer,
                section.first_page_header,
                section.first_page_footer,
                section.even_page_header,
                section.even_page_footer,
            ):
                if not part.is_linked_to_previous:
                    _render_block(part, data)

        output = BytesIO()
        document.save(output)
    except TemplateRenderError:
        raise
    except Exception as e:
        raise TemplateRenderError(f"Cannot render Word template: {e}") from e
    return output.getvalue()


# ---------------------------------------------------------------------------
# Excel
# ---------------------------------------------------------------------------


def render_cell_text(text: str, data: Mapping[str, TemplateValue]) -> Union[str, int]:
    """
    Substitute known placeholders in one cell's text.

    Unknown placeholders are left untouched. A result made only of digits is
    returned as an int so the cell stays numeric.
    """
    rendered = _XLSX_TAG.sub(
        lambda m: _as_text(data[m.group(1)]) if m.group(1) in data else m.group(0),
        text,
    )
    if _DIGITS_ONLY.fullmatch(rendered):
        return int(rendered)
    return rendered


def render_xlsx(template: bytes, data: Mapping[str, TemplateValue]) -> bytes:
    try:
        workbook = load_workbook(BytesIO(template))
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise TemplateRenderError(f"Cannot read Excel template: {e}") from e

    try:
        for worksheet in workbook.worksheets:
            for row in worksheet.iter_rows():
                for cell in row:
                    if cell.value is None:
                        continue
                    text = str(cell.value)
                    if "{{" not in text:
                        continue
                    cell.value = render_cell_text(text, data)

        output = BytesIO()
        workbook.save(output)
    except Exception as e:
        raise TemplateRenderError(f"Cannot render Excel template: {e}") from e
    return output.getvalue()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def render_document(
    mime_type: str, template: bytes, data: Mapping[str, TemplateValue]
) -> bytes:
    """Render ``template`` according to its mime type."""
    kind = extension_for(mime_type)
    if kind == "docx":
        content = render_docx(template, data)
    else:
        content = render_xlsx(template, data)
    logger.info("document_rendered", kind=kind, placeholders=len(data), size=len(content))
    return content
