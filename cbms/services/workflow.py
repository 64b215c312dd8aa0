"""
Canonical workflow transition table for every approvable document.

Proposals, expenditures, allocation amendments and budget overrides all
move through status transitions gated by role.  The rules live in exactly
one place, ``TRANSITIONS``, which the services consult through
``check_transition`` and which ``GET /api/workflow/transitions`` serves to
clients so they never re-derive them.

Design notes
------------
- A transition lists the statuses it may start from and the roles allowed
  to perform it.  ``role_from_statuses`` narrows the start statuses for a
  specific role (office may approve only what was verified first).
- ``own_department_roles`` are roles that may act only on documents of
  their own department (``hod`` verifying, ``department`` submitting).
- Wrong status and wrong role both raise ``InvalidTransition``; the
  document is never touched before the check passes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from cbms.exceptions import InvalidTransition
from cbms.models.user import User

logger = logging.getLogger(__name__)

PROPOSAL = "proposal"
EXPENDITURE = "expenditure"
AMENDMENT = "allocation_amendment"
OVERRIDE = "budget_override"


@dataclass(frozen=True)
class Transition:
    document: str
    action: str
    from_statuses: tuple[str, ...]
    to_status: str | None
    roles: tuple[str, ...]
    own_department_roles: tuple[str, ...] = ()
    role_from_statuses: dict[str, tuple[str, ...]] = field(default_factory=dict)
    notes: str | None = None

    def allowed_from(self, role: str) -> tuple[str, ...]:
        return self.role_from_statuses.get(role, self.from_statuses)


_APPROVERS = ("admin", "office", "principal", "vice_principal")

TRANSITIONS: dict[tuple[str, str], Transition] = {
    (t.document, t.action): t
    for t in (
        # -- Budget proposals ------------------------------------------------
        Transition(
            PROPOSAL, "submit", ("draft", "revised"), "submitted",
            roles=("department", "hod"),
            own_department_roles=("department", "hod"),
            notes="Every item needs a budget head, an amount > 0 and a justification.",
        ),
        Transition(
            PROPOSAL, "verify", ("submitted",), "verified",
            roles=("hod", "office"),
            own_department_roles=("hod",),
        ),
        Transition(
            PROPOSAL, "approve", ("submitted", "verified"), "approved",
            roles=_APPROVERS,
            role_from_statuses={"office": ("verified",)},
            notes="Office may only approve verified proposals.",
        ),
        Transition(
            PROPOSAL, "reject", ("submitted", "verified"), "rejected",
            roles=_APPROVERS,
            notes="A rejection reason is mandatory.",
        ),
        Transition(
            PROPOSAL, "resubmit", ("rejected",), "revised",
            roles=("department", "hod", "admin"),
            own_department_roles=("department", "hod"),
            notes="Creates a new draft copy; the rejected original becomes revised.",
        ),
        # -- Expenditures ----------------------------------------------------
        Transition(
            EXPENDITURE, "verify", ("pending",), "verified",
            roles=("hod", "office"),
            own_department_roles=("hod",),
        ),
        Transition(
            EXPENDITURE, "approve", ("pending", "verified"), "approved",
            roles=("office", "vice_principal", "principal"),
            role_from_statuses={"office": ("verified",)},
            notes=(
                "Office may only approve verified expenditures; the vice principal "
                "is limited to the configured amount."
            ),
        ),
        Transition(
            EXPENDITURE, "reject", ("pending", "verified"), "rejected",
            roles=("hod", "office", "vice_principal", "principal"),
            own_department_roles=("hod",),
            notes="Remarks are mandatory.",
        ),
        Transition(
            EXPENDITURE, "resubmit", ("rejected",), "pending",
            roles=("department", "hod", "office", "admin"),
            own_department_roles=("department", "hod"),
            notes="Only the original submitter; creates a new pending copy.",
        ),
        # -- Allocation amendments -------------------------------------------
        Transition(
            AMENDMENT, "approve", ("pending",), "approved",
            roles=("admin", "principal", "vice_principal"),
        ),
        Transition(
            AMENDMENT, "reject", ("pending",), "rejected",
            roles=("admin", "principal", "vice_principal"),
        ),
        # -- Budget overrides ------------------------------------------------
        Transition(
            OVERRIDE, "approve", ("pending",), "approved",
            roles=("admin", "principal"),
        ),
        Transition(
            OVERRIDE, "reject", ("pending",), "rejected",
            roles=("admin", "principal"),
        ),
    )
}


def get_transition(document: str, action: str) -> Transition:
    try:
        return TRANSITIONS[(document, action)]
    except KeyError as exc:
        raise InvalidTransition(f"Unknown action '{action}' for {document}.", action=action) from exc


def check_transition(
    document: str,
    action: str,
    current_status: str,
    user: User,
    department_id: int | None = None,
) -> Transition:
    """Validate that *user* may perform *action* on a document in *current_status*.

    Args:
        document: One of ``PROPOSAL``, ``EXPENDITURE``, ``AMENDMENT``, ``OVERRIDE``.
        action: Transition name, e.g. ``"approve"``.
        current_status: The document's status as read from the database.
        user: The acting user.
        department_id: The document's department, for own-department roles.

    Returns:
        The matching ``Transition``.

    Raises:
        InvalidTransition: If the role may not perform the action, the
            document belongs to another department, or the current status
            does not permit it.
    """
    transition = get_transition(document, action)
    label = document.replace("_", " ")

    if user.role not in transition.roles:
        raise InvalidTransition(
            f"Role '{user.role}' cannot {action} a {label}.",
            action=action, current_status=current_status, role=user.role,
        )

    if user.role in transition.own_department_roles and user.department_id != department_id:
        raise InvalidTransition(
            f"Role '{user.role}' can only {action} a {label} of their own department.",
            action=action, current_status=current_status, role=user.role,
        )

    allowed = transition.allowed_from(user.role)
    if current_status not in allowed:
        raise InvalidTransition(
            f"Cannot {action} a {label} in status '{current_status}' "
            f"(allowed for {user.role}: {', '.join(allowed)}).",
            action=action, current_status=current_status, role=user.role,
        )

    logger.debug(
        "check_transition: %s.%s from=%s role=%s ok", document, action, current_status, user.role
    )
    return transition


def list_transitions(document: str | None = None) -> list[Transition]:
    return [
        t for t in TRANSITIONS.values()
        if document is None or t.document == document
    ]
