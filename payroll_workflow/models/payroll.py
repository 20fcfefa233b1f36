"""
Payroll Workflow - Payroll Record Model

A payroll record is one employee's pay for one period. Its status and
approval level are governed by the approval workflow; records are never
deleted, only moved to CANCELLED.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON, DateTime, ForeignKey, Index, Integer, Numeric, Text, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.models.base import BaseModel, AuditMixin


class PayrollStatus(str, Enum):
    """Payroll record status."""
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PayrollFrequency(str, Enum):
    """Pay frequency."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class ApprovalLevel(str, Enum):
    """Approval chain stages, in order."""
    DRAFT = "DRAFT"
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    HR_MANAGER = "HR_MANAGER"
    FINANCE_DIRECTOR = "FINANCE_DIRECTOR"
    SUPER_ADMIN = "SUPER_ADMIN"
    COMPLETED = "COMPLETED"


class ApprovalEventStatus(str, Enum):
    SUBMIT = "SUBMIT"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"


class ApprovalAction(str, Enum):
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    RETURN = "RETURN"


# Statuses that do not block a new record for the same employee/period
RELEASED_STATUSES = (PayrollStatus.CANCELLED, PayrollStatus.REJECTED)


class PayrollRecord(BaseModel, AuditMixin):
    """Employee payroll for a single pay period."""

    __tablename__ = "payroll_records"
    __table_args__ = (
        Index("ix_payroll_records_employee_period", "employee_id", "year", "month", "frequency"),
        Index("ix_payroll_records_department_period", "department_id", "year", "month"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="RESTRICT"),
        nullable=False,
    )
    salary_grade_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_grades.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Period
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[PayrollFrequency] = mapped_column(
        SQLEnum(PayrollFrequency),
        default=PayrollFrequency.MONTHLY,
        nullable=False,
    )

    # Earnings
    basic_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    allowances: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    bonuses: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    # Deductions
    statutory_deductions: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    voluntary_deductions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    deduction_breakdown: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(
        JSON, nullable=True,
        comment="Itemized deduction lines; back-filled on read when missing",
    )

    # Totals
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_allowances: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_bonuses: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    status: Mapped[PayrollStatus] = mapped_column(
        SQLEnum(PayrollStatus),
        default=PayrollStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Approval flow
    current_level: Mapped[ApprovalLevel] = mapped_column(
        SQLEnum(ApprovalLevel),
        default=ApprovalLevel.DRAFT,
        nullable=False,
        index=True,
    )
    approval_history: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    submitted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Payment
    payment_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def period_label(self) -> str:
        return f"{self.year}-{self.month:02d}"
