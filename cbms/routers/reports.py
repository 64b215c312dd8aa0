"""
Reports router: dashboard KPIs, tabular reports and their file exports.

Mounts under ``/api/reports`` (prefix set in ``main.py``).

Department roles only see their own department; every other role sees the
whole college and may narrow it with ``department_id``.

Endpoints
---------
GET /dashboard             KPIs for a financial year (defaults to the current one).
GET /consolidated          Department x budget head: proposed, allocated, spent.
GET /proposals             Proposal report rows.
GET /expenditures          Expenditure report with a status summary.
GET /compare               Allocated/spent per department across two years.
GET /proposals/csv         Proposal report as CSV.
GET /consolidated/csv      Consolidated report as CSV.
GET /consolidated/excel    Consolidated report as a styled ``.xlsx`` workbook.

The file endpoints answer with ``Content-Disposition: attachment`` so that
browsers download instead of rendering the content.
"""

from __future__ import annotations

import io
import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.schemas.report import (
    ConsolidatedReport,
    DashboardResponse,
    ExpenditureReport,
    ProposalReportRow,
    YearComparison,
)
from cbms.services import export_service, report_service
from cbms.services.auth_service import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reports"])

_DB = Annotated[Session, Depends(get_db)]
_User = Annotated[User, Depends(get_current_user)]
_OptionalYear = Annotated[str | None, Query(pattern=r"^\d{4}-\d{4}$", description="e.g. '2026-2027'")]
_Year = Annotated[str, Query(pattern=r"^\d{4}-\d{4}$", description="e.g. '2026-2027'")]
_Department = Annotated[int | None, Query(ge=1)]

_CSV_MEDIA_TYPE = "text/csv"
_XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _make_filename(report: str, financial_year: str | None, ext: str) -> str:
    """Build a timestamped download name, e.g. ``cbms_consolidated_2026-2027_2026-10-19.csv``."""
    parts = ["cbms", report.replace(" ", "_").lower()]
    if financial_year:
        parts.append(financial_year)
    parts.append(date.today().isoformat())
    return f"{'_'.join(parts)}.{ext}"


def _attachment(content: bytes, filename: str, media_type: str) -> StreamingResponse:
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Content-Length": str(len(content)),
    }
    return StreamingResponse(io.BytesIO(content), media_type=media_type, headers=headers)


# ---------------------------------------------------------------------------
# JSON reports
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_model=DashboardResponse, summary="Dashboard KPIs")
def dashboard(
    db: _DB,
    current_user: _User,
    financial_year: _OptionalYear = None,
    department_id: _Department = None,
) -> DashboardResponse:
    return report_service.get_dashboard(db, current_user, financial_year, department_id)


@router.get("/consolidated", response_model=ConsolidatedReport, summary="Consolidated budget report")
def consolidated(
    financial_year: _Year,
    db: _DB,
    current_user: _User,
    department_id: _Department = None,
) -> ConsolidatedReport:
    return report_service.get_consolidated(db, current_user, financial_year, department_id)


@router.get("/proposals", response_model=list[ProposalReportRow], summary="Proposal report")
def proposal_report(
    db: _DB,
    current_user: _User,
    financial_year: _OptionalYear = None,
    department_id: _Department = None,
    status: Annotated[str | None, Query(max_length=30)] = None,
) -> list[ProposalReportRow]:
    return report_service.get_proposal_rows(db, current_user, financial_year, department_id, status)


@router.get("/expenditures", response_model=ExpenditureReport, summary="Expenditure report")
def expenditure_report(
    db: _DB,
    current_user: _User,
    financial_year: _OptionalYear = None,
    department_id: _Department = None,
    status: Annotated[str | None, Query(max_length=30)] = None,
) -> ExpenditureReport:
    return report_service.get_expenditure_report(db, current_user, financial_year, department_id, status)


@router.get("/compare", response_model=YearComparison, summary="Compare two financial years")
def compare_years(
    base_year: _Year,
    compare_year: _Year,
    db: _DB,
    current_user: _User,
) -> YearComparison:
    return report_service.compare_years(db, current_user, base_year, compare_year)


# ---------------------------------------------------------------------------
# File exports
# ---------------------------------------------------------------------------


@router.get(
    "/proposals/csv",
    response_class=StreamingResponse,
    summary="Export proposals as CSV",
    responses={200: {"content": {_CSV_MEDIA_TYPE: {}}}},
)
def export_proposals_csv(
    db: _DB,
    current_user: _User,
    financial_year: _OptionalYear = None,
    department_id: _Department = None,
    status: Annotated[str | None, Query(max_length=30)] = None,
) -> StreamingResponse:
    content = export_service.proposals_csv(db, current_user, financial_year, department_id, status)
    filename = _make_filename("proposals", financial_year, "csv")
    logger.info("export_proposals_csv: user=%s bytes=%d", current_user.email, len(content))
    return _attachment(content, filename, _CSV_MEDIA_TYPE)


@router.get(
    "/consolidated/csv",
    response_class=StreamingResponse,
    summary="Export the consolidated report as CSV",
    responses={200: {"content": {_CSV_MEDIA_TYPE: {}}}},
)
def export_consolidated_csv(
    financial_year: _Year,
    db: _DB,
    current_user: _User,
    department_id: _Department = None,
) -> StreamingResponse:
    content = export_service.consolidated_csv(db, current_user, financial_year, department_id)
    filename = _make_filename("consolidated", financial_year, "csv")
    logger.info("export_consolidated_csv: user=%s bytes=%d", current_user.email, len(content))
    return _attachment(content, filename, _CSV_MEDIA_TYPE)


@router.get(
    "/consolidated/excel",
    response_class=StreamingResponse,
    summary="Export the consolidated report to Excel (.xlsx)",
    responses={200: {"content": {_XLSX_MEDIA_TYPE: {}}}},
)
def export_consolidated_excel(
    financial_year: _Year,
    db: _DB,
    current_user: _User,
    department_id: _Department = None,
) -> StreamingResponse:
    content = export_service.consolidated_excel(db, current_user, financial_year, department_id)
    filename = _make_filename("consolidated", financial_year, "xlsx")
    logger.info("export_consolidated_excel: user=%s bytes=%d", current_user.email, len(content))
    return _attachment(content, filename, _XLSX_MEDIA_TYPE)
