"""
Payroll Workflow - Audit Trail Service

Audit logging for payroll state changes.
"""

import uuid
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.models.audit import AuditLog, AuditAction

logger = logging.getLogger(__name__)


class AuditService:
    """Service for managing the payroll audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_action(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Log an audit action.

        Args:
            action: Type of action performed
            entity_type: Type of entity (e.g., 'payroll', 'payroll_batch')
            entity_id: ID of the affected entity
            actor_id: ID of user who performed the action
            details: Before/after state and any action-specific context

        Returns:
            Created AuditLog record
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=actor_id,
            details=details,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def get_entity_history(
        self,
        entity_type: str,
        entity_id: str,
    ) -> List[AuditLog]:
        """Audit entries for one entity, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(and_(
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == str(entity_id),
            ))
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())
