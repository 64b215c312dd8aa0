"""
Template service: downloadable files for the allocation bulk upload.

Two flavours are offered:

* **CSV** - header line plus two sample rows, the simplest thing to fill
  in with any editor.
* **XLSX** - built with ``openpyxl``: an ``Allocations`` sheet with styled
  column headers and the same sample rows, and an ``Instructions`` sheet.

Both return raw bytes; the router wraps them in a ``StreamingResponse``.
The column headers come from ``cbms.parsers.COLUMNS`` so a downloaded
template always parses.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from cbms.parsers import COLUMNS
from cbms.utils import fiscal

logger = logging.getLogger(__name__)

_HEX_PRIMARY = "1D4ED8"        # header background, same blue as excel_exporter
_HEX_WHITE = "FFFFFF"
_HEX_LABEL_BG = "EFF6FF"
_HEX_LABEL_TEXT = "1E293B"
_HEX_BORDER = "E2E8F0"

CSV_MEDIA_TYPE = "text/csv"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _sample_rows() -> list[list[Any]]:
    year = fiscal.current_financial_year()
    return [
        ["DEPT-001", "BH-001", 100000, year, "Initial allocation"],
        ["DEPT-002", "BH-002", 150000, year, "Increased budget for infrastructure"],
    ]


def template_filename(fmt: str) -> str:
    return f"allocation_upload_template.{fmt}"


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def generate_csv_template() -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(list(COLUMNS.values()))
    writer.writerows(_sample_rows())
    return buffer.getvalue().encode("utf-8")


# ---------------------------------------------------------------------------
# XLSX
# ---------------------------------------------------------------------------


def _thin_border() -> Border:
    side = Side(style="thin", color=_HEX_BORDER)
    return Border(left=side, right=side, top=side, bottom=side)


def _apply_header_style(cell: Any) -> None:
    """Bold white text on the primary blue, thin border, centred and wrapped."""
    cell.font = Font(bold=True, color=_HEX_WHITE, size=10, name="Calibri")
    cell.fill = PatternFill(fill_type="solid", fgColor=_HEX_PRIMARY)
    cell.border = _thin_border()
    cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _write_instructions_sheet(wb: Workbook) -> None:
    ws = wb.create_sheet(title="Instructions")
    title = ws["A1"]
    title.value = "HOW TO FILL IN THIS TEMPLATE"
    title.font = Font(bold=True, size=13, color=_HEX_LABEL_TEXT, name="Calibri")
    title.fill = PatternFill(fill_type="solid", fgColor=_HEX_LABEL_BG)
    ws.row_dimensions[1].height = 24

    lines = [
        "1. Enter one allocation per row on the 'Allocations' sheet, starting at row 2.",
        "2. Department Code and Budget Head Code must match existing codes exactly.",
        "3. Allocated Amount must be a number greater than zero.",
        "4. Financial Year uses the form YYYY-YYYY, e.g. 2026-2027.",
        "5. Remarks are optional. Do not rename or remove the column headers.",
        "6. Rows that fail are reported by row number; the remaining rows are still created.",
    ]
    for offset, text in enumerate(lines, start=2):
        cell = ws.cell(row=offset, column=1, value=text)
        cell.font = Font(size=10, name="Calibri", color="374151")
        cell.alignment = Alignment(horizontal="left", vertical="center", wrap_text=True)
    ws.column_dimensions["A"].width = 90


def generate_xlsx_template() -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Allocations"
    ws.row_dimensions[1].height = 22

    for col_idx, header in enumerate(COLUMNS.values(), start=1):
        _apply_header_style(ws.cell(row=1, column=col_idx, value=header))
        ws.column_dimensions[get_column_letter(col_idx)].width = max(14, min(40, len(header) + 6))
    for row_idx, values in enumerate(_sample_rows(), start=2):
        for col_idx, value in enumerate(values, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            cell.border = _thin_border()
    ws.freeze_panes = "A2"

    _write_instructions_sheet(wb)

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.debug("generate_xlsx_template: %d bytes", buffer.tell())
    return buffer.getvalue()


def generate_template(fmt: str) -> tuple[bytes, str]:
    """Return ``(content, media_type)`` for ``fmt`` in ``csv`` or ``xlsx``."""
    if fmt == "xlsx":
        return generate_xlsx_template(), XLSX_MEDIA_TYPE
    return generate_csv_template(), CSV_MEDIA_TYPE
