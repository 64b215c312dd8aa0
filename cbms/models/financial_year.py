"""FinancialYear model: April-to-March budgeting period and its totals."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class FinancialYear(Base):
    """One financial year, e.g. ``"2025-2026"``.

    The ``total_*`` columns are cached aggregates refreshed by
    ``financial_year_service.recalculate_totals``; they are never the source
    of truth for workflow checks.

    Attributes:
        year: Unique label ``"YYYY-YYYY"``.
        start_date / end_date: Period bounds (end after start).
        status: ``planning`` -> ``active`` -> ``locked`` -> ``closed``.
        carryforward_amount: Income received minus spent, fixed at closing.
        carryforward_allowed: Whether the balance may roll into the next year.
    """

    __tablename__ = "financial_year"

    id = Column(Integer, primary_key=True, autoincrement=True)
    year = Column(String(9), unique=True, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), default="planning", nullable=False)
    # "planning", "active", "locked", "closed"
    total_income_expected = Column(Numeric(15, 2), default=0, nullable=False)
    total_income_received = Column(Numeric(15, 2), default=0, nullable=False)
    total_allocated = Column(Numeric(15, 2), default=0, nullable=False)
    total_spent = Column(Numeric(15, 2), default=0, nullable=False)
    carryforward_amount = Column(Numeric(15, 2), default=0, nullable=False)
    carryforward_allowed = Column(Boolean, default=True, nullable=False)
    description = Column(Text, nullable=True)
    locked_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    locked_at = Column(DateTime, nullable=True)
    lock_remarks = Column(Text, nullable=True)
    closed_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    closed_at = Column(DateTime, nullable=True)
    closure_remarks = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    locked_by = relationship("User", foreign_keys=[locked_by_id], lazy="select")
    closed_by = relationship("User", foreign_keys=[closed_by_id], lazy="select")
