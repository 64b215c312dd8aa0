"""BulkUploadLog model: one row per allocation spreadsheet upload."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from cbms.database import Base


class BulkUploadLog(Base):
    """Outcome of a bulk upload, written whether rows succeeded or not.

    Attributes:
        file_name: Name supplied by the uploader.
        upload_type: Kind of records in the file; ``allocation`` today.
        total_rows: Data rows read from the file (header excluded).
        success_count / failure_count: Rows created and rows refused.
        errors: ``[{"row": n, "error": "...", "data": {...}}]`` for refused rows.
        status: ``completed`` when at least one row was created, ``failed``
            when every row was refused.
        processing_ms: Wall-clock processing time.
        financial_year: Year label when every row shared one, else ``None``.
    """

    __tablename__ = "bulk_upload_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(500), nullable=False)
    upload_type = Column(String(30), default="allocation", nullable=False, index=True)
    uploaded_by_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    total_rows = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    errors = Column(JSON, nullable=True)
    status = Column(String(20), default="processing", nullable=False)  # processing | completed | failed
    processing_ms = Column(Integer, nullable=True)
    financial_year = Column(String(9), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False, index=True)
