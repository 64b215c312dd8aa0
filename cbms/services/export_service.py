"""
Export service layer.

Turns the report service's rows into downloadable files:

- ``proposals_csv``      proposal report as CSV.
- ``consolidated_csv``   department x budget head report as CSV.
- ``consolidated_excel`` the same report as a styled ``.xlsx`` workbook.

Design notes
------------
- Data always comes from ``report_service`` so the exports and the JSON
  endpoints never disagree.
- CSVs are produced with a pandas ``DataFrame`` (UTF-8 with BOM so that
  spreadsheet applications detect the encoding); the workbook with
  ``ExcelExporter``.
"""

from __future__ import annotations

import logging
from typing import Any

import pandas as pd
from sqlalchemy.orm import Session

from cbms.exporters.excel_exporter import ExcelExporter
from cbms.models.user import User
from cbms.services import report_service

logger = logging.getLogger(__name__)

_PROPOSAL_COLUMNS = {
    "proposal_id": "Proposal ID",
    "department_name": "Department",
    "financial_year": "Financial Year",
    "status": "Status",
    "item_count": "Items",
    "total_proposed_amount": "Total Proposed",
    "submitted_date": "Submitted",
    "approved_date": "Approved",
}

_CONSOLIDATED_COLUMNS = {
    "department_name": "Department",
    "budget_head_name": "Budget Head",
    "proposed": "Proposed",
    "allocated": "Allocated",
    "spent": "Spent",
    "remaining": "Remaining",
    "utilization_percent": "Utilization (%)",
}


def _to_csv(records: list[dict[str, Any]], columns: dict[str, str]) -> bytes:
    df = pd.DataFrame.from_records(records, columns=list(columns))
    df = df.rename(columns=columns)
    return df.to_csv(index=False).encode("utf-8-sig")


def proposals_csv(
    db: Session,
    user: User,
    financial_year: str | None = None,
    department_id: int | None = None,
    status: str | None = None,
) -> bytes:
    rows = report_service.get_proposal_rows(db, user, financial_year, department_id, status)
    data = _to_csv([r.model_dump() for r in rows], _PROPOSAL_COLUMNS)
    logger.info("proposals_csv: year=%s rows=%d bytes=%d", financial_year, len(rows), len(data))
    return data


def consolidated_csv(
    db: Session,
    user: User,
    financial_year: str,
    department_id: int | None = None,
) -> bytes:
    report = report_service.get_consolidated(db, user, financial_year, department_id)
    data = _to_csv([r.model_dump() for r in report.rows], _CONSOLIDATED_COLUMNS)
    logger.info("consolidated_csv: year=%s rows=%d bytes=%d", financial_year, len(report.rows), len(data))
    return data


def consolidated_excel(
    db: Session,
    user: User,
    financial_year: str,
    department_id: int | None = None,
) -> bytes:
    """Consolidated report as an ``.xlsx`` workbook with a totals row."""
    report = report_service.get_consolidated(db, user, financial_year, department_id)
    headers = list(_CONSOLIDATED_COLUMNS.values())
    rows = [[getattr(r, key) for key in _CONSOLIDATED_COLUMNS] for r in report.rows]

    filters = {"Financial year": financial_year}
    if department_id is not None:
        filters["Department ID"] = str(department_id)

    exporter = ExcelExporter(title=f"Consolidated Budget {financial_year}", filters=filters)
    exporter.add_header(num_cols=len(headers))
    exporter.add_summary_row({
        "Proposed": report.totals["proposed"],
        "Allocated": report.totals["allocated"],
        "Spent": report.totals["spent"],
        "Remaining": report.totals["remaining"],
    })
    exporter.add_data_table(headers, rows, money_cols={2, 3, 4, 5}, pct_cols={6})
    exporter.add_totals_row([
        "Total", "",
        report.totals["proposed"],
        report.totals["allocated"],
        report.totals["spent"],
        report.totals["remaining"],
        report.totals["utilization_percent"],
    ])
    data = exporter.finalize()
    logger.info("consolidated_excel: year=%s rows=%d bytes=%d", financial_year, len(rows), len(data))
    return data
