"""
Payroll Workflow - Salary Grade Model

A salary grade fixes the basic salary and allowance components for every
employee on a grade level.
"""

from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import JSON, Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.models.base import BaseModel


class SalaryGrade(BaseModel):
    """Grade level pay structure."""

    __tablename__ = "salary_grades"

    level: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    basic_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # [{"name": "Housing", "calculation_method": "percentage", "value": "25"}]
    allowances: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
