"""
Payroll Workflow - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from payroll_workflow.models.base import BaseModel, TimestampMixin, AuditMixin
from payroll_workflow.models.department import Department
from payroll_workflow.models.user import User, UserRole
from payroll_workflow.models.salary_grade import SalaryGrade
from payroll_workflow.models.bonus import Bonus, BonusStatus, BonusType
from payroll_workflow.models.deduction import (
    DeductionDefinition,
    DeductionEnrollment,
    DeductionType,
    CalculationMethod,
    DeductionScope,
)
from payroll_workflow.models.payroll import (
    PayrollRecord,
    PayrollStatus,
    PayrollFrequency,
    ApprovalLevel,
    ApprovalEventStatus,
    ApprovalAction,
    RELEASED_STATUSES,
)
from payroll_workflow.models.notification import (
    Notification,
    NotificationType,
    NotificationPriority,
)
from payroll_workflow.models.audit import AuditLog, AuditAction

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Organization
    "Department",
    "User",
    "UserRole",
    "SalaryGrade",
    "Bonus",
    "BonusStatus",
    "BonusType",
    # Deductions
    "DeductionDefinition",
    "DeductionEnrollment",
    "DeductionType",
    "CalculationMethod",
    "DeductionScope",
    # Payroll
    "PayrollRecord",
    "PayrollStatus",
    "PayrollFrequency",
    "ApprovalLevel",
    "ApprovalEventStatus",
    "ApprovalAction",
    "RELEASED_STATUSES",
    # Notifications & audit
    "Notification",
    "NotificationType",
    "NotificationPriority",
    "AuditLog",
    "AuditAction",
]
