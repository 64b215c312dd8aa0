"""BudgetOverride model: approval request for an expenditure over its allocation."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class BudgetOverride(Base):
    """Created when policy ``override`` lets an over-budget bill be submitted.

    The allocation figures are snapshots at request time;
    ``overrun_amount = max(0, expense_amount - (allocation_amount - allocation_spent))``.
    The linked expenditure cannot be approved while this is not approved.
    """

    __tablename__ = "budget_override"

    id = Column(Integer, primary_key=True, autoincrement=True)
    expenditure_id = Column(Integer, ForeignKey("expenditure.id"), nullable=False)
    allocation_id = Column(Integer, ForeignKey("allocation.id"), nullable=False)
    allocation_amount = Column(Numeric(15, 2), nullable=False)
    allocation_spent = Column(Numeric(15, 2), nullable=False)
    expense_amount = Column(Numeric(15, 2), nullable=False)
    overrun_amount = Column(Numeric(15, 2), nullable=False)
    justification = Column(Text, nullable=False)
    requested_by_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # "pending", "approved", "rejected"
    approved_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    approval_remarks = Column(Text, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    expenditure = relationship("Expenditure", lazy="select")
    allocation = relationship("Allocation", lazy="select")
    requested_by = relationship("User", foreign_keys=[requested_by_id], lazy="select")
    approved_by = relationship("User", foreign_keys=[approved_by_id], lazy="select")
