"""Allocation model: money granted to a department under a budget head for one year."""

from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class Allocation(Base):
    """Budget allocated to (financial_year, department, budget_head).

    ``remaining_amount`` is never stored; it is always
    ``allocated_amount - spent_amount`` and can go negative only when the
    overspend policy lets an expenditure through.  ``available_amount`` is
    the non-negative figure shown to users.

    Attributes:
        financial_year: Label ``"YYYY-YYYY"``; immutable.
        department_id: Immutable.
        budget_head_id: Immutable.
        allocated_amount: Granted amount; changed only by edit or amendment.
        spent_amount: Sum of approved expenditures, updated atomically on approval.
        status: ``active`` or ``amended`` (after an approved amendment).
        source_proposal_id: Proposal the allocation was created from, if any.
    """

    __tablename__ = "allocation"
    __table_args__ = (
        UniqueConstraint(
            "financial_year", "department_id", "budget_head_id",
            name="uq_allocation_year_department_head",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    financial_year = Column(String(9), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("department.id"), nullable=False)
    budget_head_id = Column(Integer, ForeignKey("budget_head.id"), nullable=False)
    allocated_amount = Column(Numeric(15, 2), default=0, nullable=False)
    spent_amount = Column(Numeric(15, 2), default=0, nullable=False)
    status = Column(String(20), default="active", nullable=False)  # "active", "amended"
    remarks = Column(Text, nullable=True)
    source_proposal_id = Column(Integer, ForeignKey("budget_proposal.id"), nullable=True)
    created_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    last_modified_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    department = relationship("Department", back_populates="allocations", lazy="select")
    budget_head = relationship("BudgetHead", lazy="select")
    created_by = relationship("User", foreign_keys=[created_by_id], lazy="select")

    @property
    def remaining_amount(self) -> Decimal:
        return Decimal(self.allocated_amount or 0) - Decimal(self.spent_amount or 0)

    @property
    def available_amount(self) -> Decimal:
        return max(Decimal("0"), self.remaining_amount)

    @property
    def utilization_percent(self) -> float:
        allocated = Decimal(self.allocated_amount or 0)
        if allocated == 0:
            return 0.0
        return round(float(Decimal(self.spent_amount or 0) / allocated * 100), 2)
