"""AllocationHistory model: numbered versions of an allocation's amount and remarks."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class AllocationHistory(Base):
    """One row per change to an allocation, numbered from 1 per allocation.

    Attributes:
        version: 1-based, strictly increasing per allocation.
        change_type: ``created``, ``updated``, ``amended`` or ``rollback``.
        snapshot: Allocation state *after* the change: department, head,
            year, allocated and spent amounts, remarks.
        previous_amount / new_amount: Allocated amount before and after.
        previous_remarks / new_remarks: Remarks before and after.
        change_reason: Free text; amendment reason or rollback reason.
    """

    __tablename__ = "allocation_history"
    __table_args__ = (
        UniqueConstraint("allocation_id", "version", name="uq_allocation_history_version"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    allocation_id = Column(Integer, ForeignKey("allocation.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    change_type = Column(String(20), nullable=False)
    snapshot = Column(JSON, nullable=False)
    previous_amount = Column(Numeric(15, 2), nullable=True)
    new_amount = Column(Numeric(15, 2), nullable=False)
    previous_remarks = Column(Text, nullable=True)
    new_remarks = Column(Text, nullable=True)
    change_reason = Column(Text, nullable=True)
    changed_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    changed_at = Column(DateTime, default=func.now(), nullable=False)

    changed_by = relationship("User", lazy="select")
