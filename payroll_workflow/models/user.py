"""
Payroll Workflow - User Model

Employees and approvers share one table. Approval rights come from the
``capabilities`` list, the job title table in settings, and the role.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, String, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from payroll_workflow.models.base import BaseModel


class UserRole(str, Enum):
    """System roles."""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    USER = "user"


class User(BaseModel):
    """Employee / approver account."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    staff_id: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True,
        comment="Internal employee ID/staff number",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole),
        default=UserRole.USER,
        nullable=False,
    )
    position: Mapped[Optional[str]] = mapped_column(
        String(150), nullable=True,
        comment="Free-text job title",
    )
    capabilities: Mapped[List[str]] = mapped_column(
        JSON, default=list, nullable=False,
        comment="Approval capabilities assigned as data",
    )

    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    grade_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    # Employee-specific allowances on top of the grade's, same shape as SalaryGrade.allowances
    additional_allowances: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False,
    )

    # Salary account
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
