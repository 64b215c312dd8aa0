"""SQLAlchemy models package for CBMS.

Importing all models here ensures that SQLAlchemy's mapper registry is
populated before ``Base.metadata.create_all()`` or Alembic migrations run.
The import order follows the foreign-key dependency graph so that parent
tables are always registered before their children.

Usage from other modules:
    from cbms.models import Allocation, Department
"""

# Organisation and people
from cbms.models.department import Department  # noqa: F401
from cbms.models.user import User  # noqa: F401

# Master data
from cbms.models.budget_head import BudgetHead  # noqa: F401
from cbms.models.category import Category  # noqa: F401
from cbms.models.financial_year import FinancialYear  # noqa: F401

# Planning chain
from cbms.models.budget_proposal import (  # noqa: F401
    BudgetProposal,
    ProposalApprovalStep,
    ProposalItem,
)
from cbms.models.allocation import Allocation  # noqa: F401
from cbms.models.allocation_amendment import AllocationAmendment  # noqa: F401
from cbms.models.allocation_history import AllocationHistory  # noqa: F401
from cbms.models.bulk_upload_log import BulkUploadLog  # noqa: F401

# Execution chain
from cbms.models.expenditure import Expenditure, ExpenditureApprovalStep  # noqa: F401
from cbms.models.budget_override import BudgetOverride  # noqa: F401
from cbms.models.income import Income  # noqa: F401

# Cross-cutting concerns
from cbms.models.setting import Setting  # noqa: F401
from cbms.models.audit_log import AuditLog  # noqa: F401
from cbms.models.notification import Notification  # noqa: F401

__all__ = [
    "Department",
    "User",
    "BudgetHead",
    "Category",
    "FinancialYear",
    "BudgetProposal",
    "ProposalItem",
    "ProposalApprovalStep",
    "Allocation",
    "AllocationAmendment",
    "AllocationHistory",
    "BulkUploadLog",
    "Expenditure",
    "ExpenditureApprovalStep",
    "BudgetOverride",
    "Income",
    "Setting",
    "AuditLog",
    "Notification",
]
