"""AuditLog model: append-only trail of every mutation."""

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from cbms.database import Base


class AuditLog(Base):
    """Persistent audit record written in the same transaction as the change.

    Attributes:
        event_type: Dotted event name, e.g. ``"proposal.approve"``.
        actor_id: ID of the User who performed the action.
        actor_role: Snapshot of the actor's role at the time.
        target_entity: Table/entity name, e.g. ``"budget_proposal"``.
        target_id: Primary key of the affected row.
        details: Free-form JSON context (remarks, amounts).
        previous_values / new_values: JSON snapshots of changed fields.
        ip_address: Client address when known.
    """

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(100), nullable=False, index=True)
    actor_id = Column(Integer, nullable=True)
    actor_role = Column(String(30), nullable=True)
    target_entity = Column(String(50), nullable=False)
    target_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    previous_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False, index=True)
