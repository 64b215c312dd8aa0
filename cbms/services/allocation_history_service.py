"""
Allocation version history.

Every change to an allocation's amount or remarks appends a numbered
version holding a snapshot of the allocation after the change.  Versions
are written in the caller's transaction (no commit here) so a change and
its history row commit or roll back together.  Rolling back is done by
``allocation_service.rollback_allocation``, which records its own
``rollback`` version.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from cbms.exceptions import NotFound
from cbms.models.allocation import Allocation
from cbms.models.allocation_history import AllocationHistory
from cbms.models.user import User
from cbms.schemas.allocation import (
    AllocationHistoryListResponse,
    AllocationHistoryResponse,
    AllocationSnapshot,
)
from cbms.schemas.common import PaginationParams
from cbms.utils.amounts import to_float

logger = logging.getLogger(__name__)


def _snapshot(allocation: Allocation) -> dict:
    return {
        "financial_year": allocation.financial_year,
        "department_id": allocation.department_id,
        "budget_head_id": allocation.budget_head_id,
        "allocated_amount": to_float(allocation.allocated_amount),
        "spent_amount": to_float(allocation.spent_amount),
        "remarks": allocation.remarks,
    }


def build_response(row: AllocationHistory) -> AllocationHistoryResponse:
    return AllocationHistoryResponse(
        id=row.id,
        allocation_id=row.allocation_id,
        version=row.version,
        change_type=row.change_type,
        snapshot=AllocationSnapshot(**row.snapshot),
        previous_amount=to_float(row.previous_amount) if row.previous_amount is not None else None,
        new_amount=to_float(row.new_amount),
        previous_remarks=row.previous_remarks,
        new_remarks=row.new_remarks,
        change_reason=row.change_reason,
        changed_by_id=row.changed_by_id,
        changed_by_name=row.changed_by.name if row.changed_by is not None else None,
        changed_at=row.changed_at,
    )


def latest_version(db: Session, allocation_id: int) -> int:
    return db.query(func.coalesce(func.max(AllocationHistory.version), 0)).filter(
        AllocationHistory.allocation_id == allocation_id
    ).scalar()


def record_version(
    db: Session,
    allocation: Allocation,
    change_type: str,
    user: User,
    previous_amount: Decimal | None = None,
    previous_remarks: str | None = None,
    reason: str | None = None,
) -> AllocationHistory:
    """Append the next version for *allocation* to the session (no commit).

    Args:
        allocation: Allocation already carrying its new values.
        change_type: ``created``, ``updated``, ``amended`` or ``rollback``.
        previous_amount: Allocated amount before the change; ``None`` on creation.
        previous_remarks: Remarks before the change.
        reason: Why the change was made.
    """
    row = AllocationHistory(
        allocation_id=allocation.id,
        version=latest_version(db, allocation.id) + 1,
        change_type=change_type,
        snapshot=_snapshot(allocation),
        previous_amount=previous_amount,
        new_amount=allocation.allocated_amount,
        previous_remarks=previous_remarks,
        new_remarks=allocation.remarks,
        change_reason=reason,
        changed_by_id=user.id,
    )
    db.add(row)
    db.flush()
    logger.debug(
        "record_version: allocation=%d v%d %s", allocation.id, row.version, change_type
    )
    return row


def get_version_row(db: Session, allocation_id: int, version: int) -> AllocationHistory:
    row = (
        db.query(AllocationHistory)
        .filter(
            AllocationHistory.allocation_id == allocation_id,
            AllocationHistory.version == version,
        )
        .first()
    )
    if row is None:
        raise NotFound("AllocationVersion", version)
    return row


def list_history(
    db: Session, allocation_id: int, pagination: PaginationParams
) -> AllocationHistoryListResponse:
    """Versions of one allocation, newest first."""
    q = db.query(AllocationHistory).filter(AllocationHistory.allocation_id == allocation_id)
    total = q.count()
    rows = (
        q.order_by(AllocationHistory.version.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return AllocationHistoryListResponse(
        rows=[build_response(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def delete_history(db: Session, allocation_id: int) -> int:
    return (
        db.query(AllocationHistory)
        .filter(AllocationHistory.allocation_id == allocation_id)
        .delete(synchronize_session=False)
    )
