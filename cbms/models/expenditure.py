"""Expenditure model: a bill booked against a department's allocation."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class Expenditure(Base):
    """A bill submitted for approval.

    ``financial_year`` is derived from ``bill_date`` (April-to-March) when
    the record is created.  Approval increments the matching allocation's
    ``spent_amount`` in the same transaction; rejection leaves it alone.

    Attributes:
        bill_number: Unique per department and financial year.
        bill_amount: Amount charged to the allocation on approval.
        attachments: JSON list of ``{filename, original_name, mimetype, size, url}``.
        status: ``pending`` -> ``verified`` -> ``approved`` | ``rejected``.
        is_resubmission: True for copies created from a rejected expenditure.
        original_expenditure_id: The rejected original, for resubmissions.
    """

    __tablename__ = "expenditure"

    id = Column(Integer, primary_key=True, autoincrement=True)
    department_id = Column(Integer, ForeignKey("department.id"), nullable=False)
    budget_head_id = Column(Integer, ForeignKey("budget_head.id"), nullable=False)
    financial_year = Column(String(9), nullable=False, index=True)
    bill_number = Column(String(100), nullable=False)
    bill_date = Column(Date, nullable=False)
    bill_amount = Column(Numeric(15, 2), nullable=False)
    party_name = Column(String(300), nullable=False)
    expense_details = Column(Text, nullable=False)
    reference_budget_register_no = Column(String(100), nullable=True)
    attachments = Column(JSON, nullable=False, default=list)
    status = Column(String(20), default="pending", nullable=False)
    # "pending", "verified", "approved", "rejected"
    submitted_by_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    is_resubmission = Column(Boolean, default=False, nullable=False)
    original_expenditure_id = Column(Integer, ForeignKey("expenditure.id"), nullable=True)
    resubmission_remarks = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    department = relationship("Department", lazy="select")
    budget_head = relationship("BudgetHead", lazy="select")
    submitted_by = relationship("User", foreign_keys=[submitted_by_id], lazy="select")
    approval_steps = relationship(
        "ExpenditureApprovalStep",
        back_populates="expenditure",
        order_by="ExpenditureApprovalStep.id",
        lazy="select",
        cascade="all, delete-orphan",
    )


class ExpenditureApprovalStep(Base):
    """Immutable record of a verify/approve/reject decision on an expenditure."""

    __tablename__ = "expenditure_approval_step"

    id = Column(Integer, primary_key=True, autoincrement=True)
    expenditure_id = Column(Integer, ForeignKey("expenditure.id"), nullable=False)
    actor_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    role = Column(String(30), nullable=False)
    decision = Column(String(20), nullable=False)  # "verify", "approve", "reject"
    remarks = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=func.now(), nullable=False)

    # Relationships
    expenditure = relationship("Expenditure", back_populates="approval_steps", lazy="select")
    actor = relationship("User", lazy="select")
