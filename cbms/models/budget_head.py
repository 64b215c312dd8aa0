"""BudgetHead model: spending category budgets are allocated against."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class BudgetHead(Base):
    """A budget line such as "Lab Consumables" or "Library Books".

    A head with ``department_id`` NULL is available to every department;
    otherwise it is specific to that department.

    Attributes:
        id: Primary key.
        name: Display name.
        code: Unique short code.
        category: One of ``constants.BUDGET_HEAD_CATEGORIES``.
        description: Free text.
        department_id: Owning department, or NULL for a college-wide head.
        is_active: Inactive heads cannot receive new allocations.
    """

    __tablename__ = "budget_head"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    code = Column(String(30), unique=True, nullable=False)
    category = Column(String(50), nullable=False, default="other")
    # "academic", "infrastructure", "lab_equipment", "events", "maintenance",
    # "operations", "other"
    description = Column(Text, nullable=True)
    department_id = Column(Integer, ForeignKey("department.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    department = relationship("Department", lazy="select")
