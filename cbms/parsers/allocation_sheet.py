"""Parser for allocation upload sheets (CSV or XLSX).

Expected columns, in any order and case::

    Department Code | Budget Head Code | Allocated Amount | Financial Year | Remarks

Every cell is read as a string; the parser only normalises and shapes the
rows.  Looking up codes and creating allocations is left to
``bulk_allocation_service``, which reports problems per row.
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

COLUMNS: dict[str, str] = {
    "department_code": "Department Code",
    "budget_head_code": "Budget Head Code",
    "allocated_amount": "Allocated Amount",
    "financial_year": "Financial Year",
    "remarks": "Remarks",
}
REQUIRED = ("department_code", "budget_head_code", "allocated_amount", "financial_year")

_XLSX_MAGIC = b"PK\x03\x04"


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class ParseResult:
    """Rows read from an upload.

    Attributes:
        records: One dict per non-empty data row, keyed by the names in
            ``COLUMNS`` plus ``row`` (1-based data row number) and ``raw``
            (the cells as they appeared in the file, keyed by header).
        errors: Structural problems; when present no records are returned.
        format_name: ``csv`` or ``xlsx``.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    format_name: str = "csv"

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0

    def summary(self) -> str:
        status = "OK" if self.ok else "ERROR"
        return f"[{status}] format={self.format_name} records={len(self.records)} errors={len(self.errors)}"


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class AllocationSheetParser:
    """Read an allocation upload from raw bytes.

    The format is taken from the file name extension, falling back to the
    zip signature every XLSX file starts with.
    """

    def __init__(self, content: bytes, file_name: str = "") -> None:
        self.content = content
        self.file_name = file_name
        self.result = ParseResult(format_name=self._detect_format())

    def _detect_format(self) -> str:
        name = self.file_name.lower()
        if name.endswith((".xlsx", ".xlsm")):
            return "xlsx"
        if name.endswith(".csv"):
            return "csv"
        return "xlsx" if self.content.startswith(_XLSX_MAGIC) else "csv"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self) -> pd.DataFrame:
        """Load the first sheet (or the CSV) with every cell as a string."""
        buffer = io.BytesIO(self.content)
        try:
            if self.result.format_name == "xlsx":
                return pd.read_excel(buffer, sheet_name=0, dtype=str, engine="openpyxl")
            return pd.read_csv(buffer, dtype=str, skip_blank_lines=True, encoding="utf-8-sig")
        except (ValueError, UnicodeDecodeError, zipfile.BadZipFile) as exc:
            msg = f"Could not read {self.result.format_name.upper()} file: {exc}"
            logger.warning(msg)
            self.result.errors.append(msg)
            return pd.DataFrame()

    @staticmethod
    def _normalise_header(value: Any) -> str:
        return re.sub(r"[\s_]+", "_", str(value).strip().lower())

    @staticmethod
    def _clean_str(value: Any) -> str:
        """Return a stripped string, converting NaN/None to empty string."""
        if value is None:
            return ""
        if isinstance(value, float) and pd.isna(value):
            return ""
        return str(value).strip()

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def validate_structure(self, df: pd.DataFrame) -> list[str]:
        present = {self._normalise_header(c) for c in df.columns}
        missing = [COLUMNS[key] for key in REQUIRED if key not in present]
        if missing:
            return [f"Missing required column(s): {', '.join(missing)}"]
        return []

    def parse(self) -> ParseResult:
        if not self.content:
            self.result.errors.append("The uploaded file is empty.")
            return self.result

        df = self._load()
        if not self.result.ok:
            return self.result
        structure_errors = self.validate_structure(df)
        if structure_errors:
            self.result.errors.extend(structure_errors)
            return self.result

        headers = {c: self._normalise_header(c) for c in df.columns}
        row_number = 0
        for _, series in df.iterrows():
            raw = {str(c): self._clean_str(series[c]) for c in df.columns}
            if not any(raw.values()):
                continue
            row_number += 1
            record: dict[str, Any] = {key: "" for key in COLUMNS}
            for column, key in headers.items():
                if key in COLUMNS:
                    record[key] = raw[str(column)]
            record["row"] = row_number
            record["raw"] = raw
            self.result.records.append(record)

        logger.info("AllocationSheetParser: %s", self.result.summary())
        return self.result


def parse_allocation_sheet(content: bytes, file_name: str = "") -> ParseResult:
    return AllocationSheetParser(content, file_name).parse()
