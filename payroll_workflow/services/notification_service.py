"""
Payroll Workflow - Notification Service

Stores in-app notifications for payroll events. Delivery over email/SMS is
handled outside this service.
"""

import uuid
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.models.notification import (
    Notification,
    NotificationType,
    NotificationPriority,
)

logger = logging.getLogger(__name__)


DEFAULT_TITLES = {
    NotificationType.PAYROLL_DRAFT_CREATED: "Payroll Draft Created",
    NotificationType.PAYROLL_SUBMITTED: "Payroll Submitted",
    NotificationType.PAYROLL_APPROVAL_REQUIRED: "Payroll Approval Required",
    NotificationType.PAYROLL_APPROVED: "Payroll Approved",
    NotificationType.PAYROLL_REJECTED: "Payroll Rejected",
    NotificationType.PAYROLL_RETURNED: "Payroll Returned for Revision",
    NotificationType.PAYROLL_CANCELLED: "Payroll Cancelled",
    NotificationType.PAYROLL_COMPLETED: "Payroll Fully Approved",
    NotificationType.PAYROLL_PAID: "Salary Paid",
    NotificationType.DEPARTMENT_PAYROLL_APPROVED: "Department Payroll Approved",
    NotificationType.BATCH_PROCESSING_COMPLETED: "Payroll Batch Completed",
}

HIGH_PRIORITY = {
    NotificationType.PAYROLL_APPROVAL_REQUIRED,
    NotificationType.PAYROLL_REJECTED,
}


class NotificationService:
    """Service for storing user notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify(
        self,
        recipient_id: uuid.UUID,
        event_type: NotificationType,
        payload: Optional[Dict[str, Any]],
        message: str,
        title: Optional[str] = None,
    ) -> Notification:
        """
        Create a notification for a user.

        The caller owns the transaction; this only adds and flushes.
        """
        priority = NotificationPriority.HIGH if event_type in HIGH_PRIORITY else NotificationPriority.MEDIUM
        notification = Notification(
            user_id=recipient_id,
            notification_type=event_type,
            priority=priority,
            title=title or DEFAULT_TITLES.get(event_type, "Payroll Update"),
            message=message,
            extra_data=payload,
            is_read=False,
        )

        self.db.add(notification)
        await self.db.flush()

        logger.info(f"Notification {event_type.value} created for user {recipient_id}")
        return notification

    async def get_user_notifications(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
    ) -> List[Notification]:
        """Notifications for a user, oldest first."""
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.is_read == False)  # noqa: E712

        result = await self.db.execute(
            select(Notification)
            .where(and_(*conditions))
            .order_by(Notification.created_at, Notification.id)
        )
        return list(result.scalars().all())
