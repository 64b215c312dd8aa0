"""AllocationAmendment model: request to change an allocation's amount."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class AllocationAmendment(Base):
    """Pending/decided change of ``Allocation.allocated_amount``.

    ``original_amount`` is a snapshot taken when the request is made;
    ``change_amount`` and ``change_percent`` are computed from it at request
    time and never recomputed.  ``approved_at`` and ``rejected_at`` are set
    once, by the single decision the amendment can receive.
    """

    __tablename__ = "allocation_amendment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    allocation_id = Column(Integer, ForeignKey("allocation.id"), nullable=False)
    original_amount = Column(Numeric(15, 2), nullable=False)
    requested_amount = Column(Numeric(15, 2), nullable=False)
    change_amount = Column(Numeric(15, 2), nullable=False)
    change_percent = Column(Integer, nullable=False, default=0)
    change_reason = Column(Text, nullable=False)
    requested_by_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # "pending", "approved", "rejected"
    approved_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    approval_remarks = Column(Text, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    allocation = relationship("Allocation", lazy="select")
    requested_by = relationship("User", foreign_keys=[requested_by_id], lazy="select")
    approved_by = relationship("User", foreign_keys=[approved_by_id], lazy="select")
