"""
Payroll Workflow - Approver Resolver

Finds the user who should act next on a payroll at a given approval level.
"""

import uuid
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.models.department import Department
from payroll_workflow.models.payroll import ApprovalLevel
from payroll_workflow.models.user import User
from payroll_workflow.utils.permissions import (
    Capability,
    is_finance_department,
    is_hr_department,
    required_capability,
    resolve_capabilities,
)

logger = logging.getLogger(__name__)


class ApproverResolver:
    """Looks up approvers by capability and department."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _active_users(self, department_id: Optional[uuid.UUID] = None) -> List[User]:
        query = select(User).where(User.is_active == True)  # noqa: E712
        if department_id is not None:
            query = query.where(User.department_id == department_id)
        result = await self.db.execute(query.order_by(User.email))
        return list(result.scalars().all())

    async def _department_names(self) -> dict:
        result = await self.db.execute(select(Department.id, Department.name))
        return {row.id: row.name for row in result.all()}

    async def find_approver_for_level(
        self,
        level: ApprovalLevel,
        department_id: Optional[uuid.UUID],
    ) -> Optional[User]:
        """
        Approver for ``level``, or None when nobody is eligible.

        DEPARTMENT_HEAD is looked up within the payroll's department. HR and
        finance approvers in the matching department are preferred over
        holders of the capability elsewhere.
        """
        capability = required_capability(level)
        if capability is None:
            return None

        if capability == Capability.DEPARTMENT_HEAD:
            if department_id is None:
                return None
            candidates = await self._active_users(department_id)
            return next((u for u in candidates if capability in resolve_capabilities(u)), None)

        candidates = [u for u in await self._active_users() if capability in resolve_capabilities(u)]
        if not candidates:
            logger.warning(f"No active user holds capability {capability.value}")
            return None

        if capability in (Capability.HR_MANAGER, Capability.FINANCE_DIRECTOR):
            matches_department = is_hr_department if capability == Capability.HR_MANAGER else is_finance_department
            names = await self._department_names()
            preferred = [u for u in candidates if matches_department(names.get(u.department_id))]
            if preferred:
                return preferred[0]

        return candidates[0]
