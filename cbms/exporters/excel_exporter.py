"""
Excel report builder on top of xlsxwriter.

``ExcelExporter`` writes one styled worksheet in memory: a title block with
the applied filters, an optional row of summary figures, the data table and
an optional totals row.  ``finalize`` returns the workbook bytes for a
``StreamingResponse``.

Usage example::

    exporter = ExcelExporter(title="Consolidated budget 2026-2027",
                             filters={"Financial year": "2026-2027"})
    exporter.add_header()
    exporter.add_summary_row({"Allocated": 250000.0, "Spent": 90000.0})
    exporter.add_data_table(headers, rows, money_cols={2, 3, 4, 5})
    exporter.add_totals_row(["Total", "", 250000.0, ...])
    data = exporter.finalize()

Design notes
------------
- Column widths follow the longest value in each column, capped at 60.
- Money columns use ``#,##0.00``; percentage columns hold plain numbers
  (``37.5`` means 37.5 %) and use ``0.00``.
- Every other data row is shaded.
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Any, Sequence

import xlsxwriter

_COLOR_PRIMARY = "#1D4ED8"
_COLOR_DARK = "#1E293B"
_COLOR_WHITE = "#FFFFFF"
_COLOR_SHADE = "#F1F5F9"
_COLOR_BORDER = "#E2E8F0"

_MONEY = "#,##0.00"
_PERCENT = "0.00"

_MAX_COL_WIDTH = 60
_MIN_COL_WIDTH = 8


class ExcelExporter:
    """Single-sheet workbook builder for CBMS reports.

    Args:
        title: Report title shown in the merged header row.
        filters: ``{label: value}`` pairs describing the applied filters.
        sheet_name: Worksheet tab name.
    """

    def __init__(
        self,
        title: str,
        filters: dict[str, str] | None = None,
        sheet_name: str = "Report",
    ) -> None:
        self._title = title
        self._filters = filters or {}
        self._buffer = io.BytesIO()
        self._workbook = xlsxwriter.Workbook(self._buffer, {"in_memory": True})
        self._worksheet = self._workbook.add_worksheet(sheet_name[:31])
        self._row = 0
        self._num_cols = 6
        self._money_cols: set[int] = set()
        self._pct_cols: set[int] = set()
        self._formats = self._build_formats()

    def _build_formats(self) -> dict[str, Any]:
        wb = self._workbook
        cell = {"font_size": 9, "valign": "vcenter", "border": 1, "border_color": _COLOR_BORDER}
        formats: dict[str, Any] = {
            "title": wb.add_format({
                "bold": True, "font_size": 15, "font_color": _COLOR_WHITE,
                "bg_color": _COLOR_PRIMARY, "align": "center", "valign": "vcenter",
            }),
            "subtitle": wb.add_format({
                "font_size": 9, "font_color": _COLOR_WHITE, "bg_color": _COLOR_DARK,
                "align": "center", "valign": "vcenter",
            }),
            "filter_key": wb.add_format({"bold": True, "font_size": 9, "align": "right", "bg_color": "#E5E7EB"}),
            "filter_value": wb.add_format({"font_size": 9, "align": "left"}),
            "summary_label": wb.add_format({
                "bold": True, "font_size": 9, "align": "center", "bg_color": "#EFF6FF", "border": 1,
            }),
            "summary_value": wb.add_format({
                "bold": True, "font_size": 11, "font_color": _COLOR_PRIMARY, "align": "center",
                "bg_color": "#EFF6FF", "border": 1, "num_format": _MONEY,
            }),
            "col_header": wb.add_format({
                "bold": True, "font_size": 10, "font_color": _COLOR_WHITE, "bg_color": _COLOR_DARK,
                "align": "center", "valign": "vcenter", "border": 1, "text_wrap": True,
            }),
            "total_text": wb.add_format({**cell, "bold": True, "top": 2}),
            "total_money": wb.add_format({**cell, "bold": True, "top": 2, "align": "right", "num_format": _MONEY}),
            "total_pct": wb.add_format({**cell, "bold": True, "top": 2, "align": "right", "num_format": _PERCENT}),
        }
        for shaded in (False, True):
            suffix = "_alt" if shaded else ""
            bg = _COLOR_SHADE if shaded else _COLOR_WHITE
            formats[f"text{suffix}"] = wb.add_format({**cell, "bg_color": bg, "align": "left"})
            formats[f"money{suffix}"] = wb.add_format({**cell, "bg_color": bg, "align": "right", "num_format": _MONEY})
            formats[f"pct{suffix}"] = wb.add_format({**cell, "bg_color": bg, "align": "right", "num_format": _PERCENT})
        return formats

    def _cell_format(self, col: int, kind: str = "") -> Any:
        if col in self._money_cols:
            return self._formats[f"money{kind}"]
        if col in self._pct_cols:
            return self._formats[f"pct{kind}"]
        return self._formats[f"text{kind}"]

    # -----------------------------------------------------------------------
    # Builder methods
    # -----------------------------------------------------------------------

    def add_header(self, num_cols: int | None = None) -> "ExcelExporter":
        """Write the title, generation timestamp and one row per filter."""
        ws = self._worksheet
        last_col = max(num_cols or self._num_cols, 2) - 1

        ws.set_row(self._row, 28)
        ws.merge_range(self._row, 0, self._row, last_col, self._title, self._formats["title"])
        self._row += 1

        generated = datetime.now(timezone.utc).strftime("%d/%m/%Y %H:%M UTC")
        ws.merge_range(self._row, 0, self._row, last_col, f"Generated {generated}", self._formats["subtitle"])
        self._row += 1

        for key, value in self._filters.items():
            ws.write(self._row, 0, key, self._formats["filter_key"])
            ws.merge_range(self._row, 1, self._row, last_col, value, self._formats["filter_value"])
            self._row += 1

        self._row += 1
        return self

    def add_summary_row(self, figures: dict[str, Any]) -> "ExcelExporter":
        """Write ``{label: value}`` pairs as a label row above a value row."""
        ws = self._worksheet
        for col, (label, value) in enumerate(figures.items()):
            ws.write(self._row, col, label, self._formats["summary_label"])
            ws.write(self._row + 1, col, value, self._formats["summary_value"])
        self._row += 3
        return self

    def add_data_table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[Any]],
        money_cols: set[int] | None = None,
        pct_cols: set[int] | None = None,
    ) -> "ExcelExporter":
        """Write the column headers and data rows with alternate shading.

        Args:
            headers: Column titles.
            rows: One sequence per row, same length as ``headers``.
            money_cols: Zero-based indices formatted as money.
            pct_cols: Zero-based indices formatted as percentages.
        """
        ws = self._worksheet
        self._num_cols = len(headers)
        self._money_cols = set(money_cols or ())
        self._pct_cols = set(pct_cols or ())
        widths = [len(str(h)) for h in headers]

        ws.set_row(self._row, 20)
        for col, header in enumerate(headers):
            ws.write(self._row, col, header, self._formats["col_header"])
        self._row += 1

        for index, data_row in enumerate(rows):
            kind = "_alt" if index % 2 == 1 else ""
            for col, value in enumerate(data_row):
                ws.write(self._row, col, value, self._cell_format(col, kind))
                widths[col] = min(_MAX_COL_WIDTH, max(widths[col], len("" if value is None else str(value))))
            self._row += 1

        for col, width in enumerate(widths):
            ws.set_column(col, col, max(width + 2, _MIN_COL_WIDTH))
        return self

    def add_totals_row(self, values: Sequence[Any]) -> "ExcelExporter":
        ws = self._worksheet
        for col, value in enumerate(values):
            if col in self._money_cols:
                fmt = self._formats["total_money"]
            elif col in self._pct_cols:
                fmt = self._formats["total_pct"]
            else:
                fmt = self._formats["total_text"]
            ws.write(self._row, col, value, fmt)
        self._row += 1
        return self

    def finalize(self) -> bytes:
        """Close the workbook and return the ``.xlsx`` bytes."""
        self._workbook.close()
        self._buffer.seek(0)
        return self._buffer.read()
