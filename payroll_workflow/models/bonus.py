"""
Payroll Workflow - Bonus Model

One-off payments to an employee. Approved, active bonuses whose payment date
falls inside a payroll's month are added to that payroll's gross pay.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Numeric, Text, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.models.base import BaseModel, AuditMixin


class BonusType(str, Enum):
    PERFORMANCE = "performance"
    THIRTEENTH_MONTH = "thirteenth_month"
    SPECIAL = "special"
    ACHIEVEMENT = "achievement"
    RETENTION = "retention"
    PROJECT = "project"


class BonusStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Bonus(BaseModel, AuditMixin):
    """A bonus awarded to one employee."""

    __tablename__ = "bonuses"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    bonus_type: Mapped[BonusType] = mapped_column(SQLEnum(BonusType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    approval_status: Mapped[BonusStatus] = mapped_column(
        SQLEnum(BonusStatus),
        default=BonusStatus.PENDING,
        nullable=False,
    )
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
