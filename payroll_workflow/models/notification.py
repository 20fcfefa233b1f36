"""
Payroll Workflow - Notification Model

Model for storing user notifications.

Notification Types:
- Payroll lifecycle updates for the employee
- Pending approval requests for the next approver
- Batch processing results for the initiator
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.models.base import BaseModel


class NotificationType(str, Enum):
    """Types of notifications."""
    # Payroll lifecycle
    PAYROLL_DRAFT_CREATED = "payroll_draft_created"
    PAYROLL_SUBMITTED = "payroll_submitted"
    PAYROLL_APPROVAL_REQUIRED = "payroll_approval_required"
    PAYROLL_APPROVED = "payroll_approved"
    PAYROLL_REJECTED = "payroll_rejected"
    PAYROLL_RETURNED = "payroll_returned"
    PAYROLL_CANCELLED = "payroll_cancelled"
    PAYROLL_COMPLETED = "payroll_completed"
    PAYROLL_PAID = "payroll_paid"

    # Bulk
    DEPARTMENT_PAYROLL_APPROVED = "department_payroll_approved"
    BATCH_PROCESSING_COMPLETED = "batch_processing_completed"


class NotificationPriority(str, Enum):
    """Notification priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Notification(BaseModel):
    """User notification."""

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    notification_type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType),
        nullable=False,
    )
    priority: Mapped[NotificationPriority] = mapped_column(
        SQLEnum(NotificationPriority),
        default=NotificationPriority.MEDIUM,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Event payload (payroll id, level, period...)
    extra_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def mark_as_read(self) -> None:
        """Mark notification as read."""
        self.is_read = True
        self.read_at = datetime.utcnow()
