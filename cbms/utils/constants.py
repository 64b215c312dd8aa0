"""
Application-wide constants for the College Budget Management System.

Defines domain enumerations, business rule thresholds, and
lookup lists used across routers, services, and models.
"""

from typing import Final

# ---------------------------------------------------------------------------
# User roles
# ---------------------------------------------------------------------------

ROLES: Final[list[str]] = [
    "admin",
    "office",
    "department",
    "hod",
    "vice_principal",
    "principal",
    "auditor",
]

# Roles that belong to exactly one department
DEPARTMENT_ROLES: Final[list[str]] = ["department", "hod"]

# ---------------------------------------------------------------------------
# Budget proposal states
# ---------------------------------------------------------------------------

PROPOSAL_STATUSES: Final[list[str]] = [
    "draft",
    "submitted",
    "verified",
    "approved",
    "rejected",
    "revised",
]

# Proposals in these states block a second proposal for the same department/year
OPEN_PROPOSAL_STATUSES: Final[list[str]] = ["draft", "submitted"]

# ---------------------------------------------------------------------------
# Expenditure states
# ---------------------------------------------------------------------------

EXPENDITURE_STATUSES: Final[list[str]] = [
    "pending",
    "verified",
    "approved",
    "rejected",
]

# ---------------------------------------------------------------------------
# Allocation, amendment and override states
# ---------------------------------------------------------------------------

ALLOCATION_STATUSES: Final[list[str]] = ["active", "amended"]

DECISION_STATUSES: Final[list[str]] = ["pending", "approved", "rejected"]

# ---------------------------------------------------------------------------
# Financial years
# ---------------------------------------------------------------------------

FINANCIAL_YEAR_STATUSES: Final[list[str]] = [
    "planning",
    "active",
    "locked",
    "closed",
]

# Allocations cannot be created or modified in these years
FROZEN_YEAR_STATUSES: Final[list[str]] = ["locked", "closed"]

# April is the first month of the financial year
FINANCIAL_YEAR_START_MONTH: Final[int] = 4

# ---------------------------------------------------------------------------
# Income
# ---------------------------------------------------------------------------

INCOME_SOURCES: Final[list[str]] = [
    "government_grant",
    "student_fees",
    "donation",
    "research_grant",
    "endowment",
    "consultancy",
    "other",
]

INCOME_CATEGORIES: Final[list[str]] = ["recurring", "non-recurring"]

INCOME_STATUSES: Final[list[str]] = ["expected", "received", "verified"]

# Income counted as received for year totals
RECEIVED_INCOME_STATUSES: Final[list[str]] = ["received", "verified"]

# ---------------------------------------------------------------------------
# Budget head categories
# ---------------------------------------------------------------------------

BUDGET_HEAD_CATEGORIES: Final[list[str]] = [
    "academic",
    "infrastructure",
    "lab_equipment",
    "events",
    "maintenance",
    "operations",
    "other",
]

# ---------------------------------------------------------------------------
# Overspend policy
# ---------------------------------------------------------------------------

OVERSPEND_POLICIES: Final[list[str]] = ["disallow", "override", "allow"]

SETTING_OVERSPEND_POLICY: Final[str] = "budget_overspend_policy"
SETTING_VICE_PRINCIPAL_LIMIT: Final[str] = "vice_principal_approval_limit"
SETTING_EXHAUSTION_THRESHOLD: Final[str] = "budget_exhaustion_threshold"
