"""BudgetProposal model: a department's itemised budget request for one year."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class BudgetProposal(Base):
    """Budget proposal moving through the approval workflow.

    ``total_proposed_amount`` is derived: the service layer recomputes it
    from ``items`` on every create or edit, so it always equals the sum of
    item amounts.

    Attributes:
        id: Primary key.
        financial_year: Label ``"YYYY-YYYY"``.
        department_id: Owning department.
        status: Workflow state, see ``constants.PROPOSAL_STATUSES``.
        total_proposed_amount: Sum of item amounts.
        notes: Free text.
        submitted_date: Set on submit.
        approved_date / approved_by_id: Set on approve.
        rejection_reason: Set on reject.
        submitted_by_id: Creator of the proposal.
        last_modified_by_id: Last user to edit items or notes.
        original_proposal_id: For resubmitted copies, the rejected original.
    """

    __tablename__ = "budget_proposal"

    id = Column(Integer, primary_key=True, autoincrement=True)
    financial_year = Column(String(9), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("department.id"), nullable=False)
    status = Column(String(20), default="draft", nullable=False)
    # "draft", "submitted", "verified", "approved", "rejected", "revised"
    total_proposed_amount = Column(Numeric(15, 2), default=0, nullable=False)
    notes = Column(Text, nullable=True)
    submitted_date = Column(DateTime, nullable=True)
    approved_date = Column(DateTime, nullable=True)
    approved_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    submitted_by_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    last_modified_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    original_proposal_id = Column(Integer, ForeignKey("budget_proposal.id"), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    department = relationship("Department", lazy="select")
    submitted_by = relationship("User", foreign_keys=[submitted_by_id], lazy="select")
    approved_by = relationship("User", foreign_keys=[approved_by_id], lazy="select")
    items = relationship(
        "ProposalItem",
        back_populates="proposal",
        order_by="ProposalItem.position",
        lazy="select",
        cascade="all, delete-orphan",
    )
    approval_steps = relationship(
        "ProposalApprovalStep",
        back_populates="proposal",
        order_by="ProposalApprovalStep.id",
        lazy="select",
        cascade="all, delete-orphan",
    )


class ProposalItem(Base):
    """One line of a proposal: a budget head with the amount requested for it.

    Attributes:
        position: 0-based order within the proposal.
        budget_head_id: Head the money is requested for.
        proposed_amount: Requested amount (> 0 to submit).
        justification: Required to submit.
        previous_year_utilization: Informational figure entered by the proposer.
        allocation_id: Allocation created from this item once allocated.
    """

    __tablename__ = "proposal_item"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposal_id = Column(Integer, ForeignKey("budget_proposal.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    budget_head_id = Column(Integer, ForeignKey("budget_head.id"), nullable=True)
    proposed_amount = Column(Numeric(15, 2), default=0, nullable=False)
    justification = Column(Text, nullable=True)
    previous_year_utilization = Column(Numeric(15, 2), default=0, nullable=False)
    allocation_id = Column(Integer, ForeignKey("allocation.id"), nullable=True)

    # Relationships
    proposal = relationship("BudgetProposal", back_populates="items", lazy="select")
    budget_head = relationship("BudgetHead", lazy="select")


class ProposalApprovalStep(Base):
    """Immutable record of a verify/approve/reject decision on a proposal."""

    __tablename__ = "proposal_approval_step"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposal_id = Column(Integer, ForeignKey("budget_proposal.id"), nullable=False)
    actor_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    role = Column(String(30), nullable=False)
    decision = Column(String(20), nullable=False)  # "verify", "approve", "reject"
    remarks = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=func.now(), nullable=False)

    # Relationships
    proposal = relationship("BudgetProposal", back_populates="approval_steps", lazy="select")
    actor = relationship("User", lazy="select")
