"""
Payroll Workflow - Deduction Definition Models

Statutory and voluntary deduction definitions, and employee enrolment in
voluntary deductions.
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON, Boolean, ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.models.base import BaseModel, AuditMixin


class DeductionType(str, Enum):
    STATUTORY = "statutory"
    VOLUNTARY = "voluntary"


class CalculationMethod(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    PROGRESSIVE = "progressive"


class DeductionScope(str, Enum):
    COMPANY_WIDE = "company_wide"
    DEPARTMENT = "department"
    INDIVIDUAL = "individual"


class DeductionDefinition(BaseModel, AuditMixin):
    """
    A deduction rule.

    Progressive definitions carry ``tax_brackets`` as a list of
    ``{"min": int, "max": int | None, "rate": number}`` ordered by ``min``.
    """

    __tablename__ = "deduction_definitions"

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deduction_type: Mapped[DeductionType] = mapped_column(
        SQLEnum(DeductionType),
        nullable=False,
    )
    calculation_method: Mapped[CalculationMethod] = mapped_column(
        SQLEnum(CalculationMethod),
        nullable=False,
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False,
    )
    tax_brackets: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(
        JSON, nullable=True,
    )
    scope: Mapped[DeductionScope] = mapped_column(
        SQLEnum(DeductionScope),
        default=DeductionScope.COMPANY_WIDE,
        nullable=False,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class DeductionEnrollment(BaseModel):
    """An employee's opt-in to a voluntary deduction."""

    __tablename__ = "deduction_enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "deduction_id", name="uq_deduction_enrollment_user_deduction"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    deduction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("deduction_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
