"""
Payroll Workflow - Audit Log Model

Immutable audit trail of payroll state changes. Each entry holds enough
detail to reconstruct the before/after level and status without re-reading
the payroll record.

This table should have no UPDATE or DELETE permissions.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, String, Uuid, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.database import Base


class AuditAction(str, enum.Enum):
    """Audit action types."""
    PAYROLL_CREATE = "payroll_create"
    PAYROLL_BATCH_CREATE = "payroll_batch_create"
    PAYROLL_SUBMIT = "payroll_submit"
    PAYROLL_RESUBMIT = "payroll_resubmit"
    PAYROLL_APPROVE = "payroll_approve"
    PAYROLL_REJECT = "payroll_reject"
    PAYROLL_RETURN = "payroll_return"
    PAYROLL_CANCEL = "payroll_cancel"
    PAYROLL_PAY = "payroll_pay"
    PAYROLL_BULK_SUBMIT = "payroll_bulk_submit"
    PAYROLL_BULK_APPROVE = "payroll_bulk_approve"
    PAYROLL_BULK_REJECT = "payroll_bulk_reject"


class AuditLog(Base):
    """Immutable audit log entry."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction),
        nullable=False,
        index=True,
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # System actions may not have an actor
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )

    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action={self.action}, entity={self.entity_type}:{self.entity_id})>"
