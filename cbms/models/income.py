"""Income model: expected or received funds for a financial year."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class Income(Base):
    """An income entry.

    Attributes:
        financial_year: Label of an existing, non-closed FinancialYear.
        source: One of ``constants.INCOME_SOURCES``.
        category: ``recurring`` or ``non-recurring``.
        status: ``expected`` -> ``received`` -> ``verified``.
        received_date: Defaults to today when status becomes ``received``.
        verified_by_id / verified_at: Set on verification.
    """

    __tablename__ = "income"

    id = Column(Integer, primary_key=True, autoincrement=True)
    financial_year = Column(String(9), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    category = Column(String(20), default="recurring", nullable=False)  # "recurring", "non-recurring"
    amount = Column(Numeric(15, 2), nullable=False)
    expected_date = Column(Date, nullable=True)
    received_date = Column(Date, nullable=True)
    status = Column(String(20), default="expected", nullable=False)  # "expected", "received", "verified"
    reference_number = Column(String(100), nullable=True)
    description = Column(Text, nullable=False)
    remarks = Column(Text, nullable=True)
    verified_by_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    created_by_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    created_by = relationship("User", foreign_keys=[created_by_id], lazy="select")
    verified_by = relationship("User", foreign_keys=[verified_by_id], lazy="select")
