"""
Workflow router: serves the canonical transition table.

Mounts under ``/api/workflow``.  Clients render available actions from this
table instead of hard-coding role rules.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from cbms.models.user import User
from cbms.schemas.workflow import TransitionResponse
from cbms.services import workflow
from cbms.services.auth_service import get_current_user

router = APIRouter(tags=["Workflow"])


@router.get(
    "/transitions",
    response_model=list[TransitionResponse],
    summary="Workflow transition table",
    description=(
        "Every (document, action) pair with the statuses it may start from, "
        "the resulting status and the roles allowed to perform it."
    ),
)
def list_transitions(
    _current_user: Annotated[User, Depends(get_current_user)],
    document: Annotated[
        str | None,
        Query(description="proposal, expenditure, allocation_amendment or budget_override"),
    ] = None,
) -> list[TransitionResponse]:
    return [
        TransitionResponse(
            document=t.document,
            action=t.action,
            from_statuses=list(t.from_statuses),
            to_status=t.to_status,
            roles=list(t.roles),
            notes=t.notes,
        )
        for t in workflow.list_transitions(document)
    ]
