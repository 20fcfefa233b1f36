"""
Payroll Workflow - Bonus Service

Records bonuses, approves or rejects them, and lists the approved bonuses
that fall inside a payroll month.
"""

import calendar
import uuid
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.models.bonus import Bonus, BonusStatus, BonusType
from payroll_workflow.models.user import User
from payroll_workflow.services.deduction_calculator import to_amount
from payroll_workflow.utils.error_handling import (
    EmployeeNotFoundException,
    ErrorCode,
    NotFoundException,
    StateConflictException,
    ValidationException,
)

logger = logging.getLogger(__name__)


def pay_period(month: int, year: int) -> Tuple[date, date]:
    """First and last day of a payroll month."""
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


class BonusService:
    """Service for employee bonuses."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_bonus(self, bonus_id: uuid.UUID) -> Bonus:
        bonus = await self.db.get(Bonus, bonus_id)
        if bonus is None:
            raise NotFoundException("Bonus", bonus_id, code=ErrorCode.BONUS_NOT_FOUND)
        return bonus

    async def create_bonus(
        self,
        data: Dict[str, Any],
        created_by_id: Optional[uuid.UUID] = None,
    ) -> Bonus:
        """Record a bonus awaiting approval."""
        employee = await self.db.get(User, data.get("employee_id"))
        if employee is None:
            raise EmployeeNotFoundException(data.get("employee_id"))

        try:
            bonus_type = BonusType(data.get("bonus_type"))
        except ValueError:
            raise ValidationException(
                f"Invalid bonus type: {data.get('bonus_type')}",
                field="bonus_type",
                code=ErrorCode.INVALID_INPUT,
                details={"allowed": [t.value for t in BonusType]},
            )

        amount = to_amount(data.get("amount"), "amount")
        if amount <= 0:
            raise ValidationException("Bonus amount must be greater than zero", field="amount", code=ErrorCode.INVALID_INPUT)
        if not isinstance(data.get("payment_date"), date):
            raise ValidationException("Bonus payment date is required", field="payment_date")

        bonus = Bonus(
            employee_id=employee.id,
            bonus_type=bonus_type,
            amount=amount,
            description=data.get("description"),
            payment_date=data.get("payment_date"),
            approval_status=BonusStatus.PENDING,
            is_active=True,
            created_by_id=created_by_id,
        )
        self.db.add(bonus)
        await self.db.commit()
        await self.db.refresh(bonus)

        logger.info(f"Recorded {bonus_type.value} bonus of {amount} for employee {employee.id}")
        return bonus

    async def decide_bonus(self, bonus_id: uuid.UUID, actor_id: uuid.UUID, approved: bool) -> Bonus:
        """Approve or reject a pending bonus."""
        bonus = await self.get_bonus(bonus_id)
        if bonus.approval_status != BonusStatus.PENDING:
            raise StateConflictException(
                f"Bonus has already been {bonus.approval_status.value}",
                details={"current_status": bonus.approval_status.value},
            )

        bonus.approval_status = BonusStatus.APPROVED if approved else BonusStatus.REJECTED
        bonus.approved_by_id = actor_id
        bonus.approved_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(bonus)

        logger.info(f"Bonus {bonus_id} {bonus.approval_status.value} by {actor_id}")
        return bonus

    async def get_period_bonuses(self, employee_id: uuid.UUID, month: int, year: int) -> List[Dict[str, str]]:
        """
        Approved, active bonuses paid within the month, as fixed pay components
        for DeductionCalculator.compute_payroll.
        """
        start, end = pay_period(month, year)
        result = await self.db.execute(
            select(Bonus).where(and_(
                Bonus.employee_id == employee_id,
                Bonus.approval_status == BonusStatus.APPROVED,
                Bonus.is_active == True,  # noqa: E712
                Bonus.payment_date >= start,
                Bonus.payment_date <= end,
            )).order_by(Bonus.payment_date, Bonus.created_at)
        )
        return [
            {
                "name": bonus.bonus_type.value,
                "calculation_method": "fixed",
                "value": str(Decimal(bonus.amount)),
            }
            for bonus in result.scalars().all()
        ]
