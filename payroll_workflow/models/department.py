"""
Payroll Workflow - Department Model
"""

from typing import Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.models.base import BaseModel


class Department(BaseModel):
    """Organizational department. Payroll records are owned per department."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
