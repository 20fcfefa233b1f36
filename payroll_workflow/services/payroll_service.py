"""
Payroll Workflow - Payroll Service

Single-record payroll lifecycle:
- Create (validation, duplicate check, calculation)
- Submit / approve / reject / return / resubmit / cancel
- Payment processing
- Read with lazy breakdown back-fill

Every transition is persisted with a conditional UPDATE keyed on the status
and level that were read, committed, and only then audited and notified.
Audit and notification failures are logged and never undo the transition.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.models.audit import AuditAction
from payroll_workflow.models.department import Department
from payroll_workflow.models.notification import NotificationType
from payroll_workflow.models.payroll import (
    ApprovalAction,
    ApprovalEventStatus,
    ApprovalLevel,
    PayrollFrequency,
    PayrollRecord,
    PayrollStatus,
    RELEASED_STATUSES,
)
from payroll_workflow.models.salary_grade import SalaryGrade
from payroll_workflow.models.user import User
from payroll_workflow.services.approval_workflow import (
    WorkflowTransition,
    approval_workflow,
    make_event,
)
from payroll_workflow.services.approver_resolver import ApproverResolver
from payroll_workflow.services.audit_service import AuditService
from payroll_workflow.services.bonus_service import BonusService
from payroll_workflow.services.deduction_calculator import (
    PayrollComputation,
    build_breakdown,
)
from payroll_workflow.services.deduction_service import DeductionService
from payroll_workflow.services.notification_service import NotificationService
from payroll_workflow.utils.error_handling import (
    ConcurrentModificationException,
    DuplicatePayrollException,
    EmployeeNotFoundException,
    ErrorCode,
    InvalidFrequencyException,
    MissingSalaryGradeException,
    NotFoundException,
    PayrollNotFoundException,
    ValidationException,
)
from payroll_workflow.utils.permissions import ActorContext

logger = logging.getLogger(__name__)


def parse_frequency(value: Any) -> PayrollFrequency:
    """PayrollFrequency from a value or raise InvalidFrequencyException."""
    if isinstance(value, PayrollFrequency):
        return value
    try:
        return PayrollFrequency(str(value).strip().lower())
    except ValueError:
        raise InvalidFrequencyException(value, [f.value for f in PayrollFrequency])


def validate_period(month: Any, year: Any) -> Tuple[int, int]:
    """Month must be 1-12 and year a plausible four-digit year."""
    try:
        month_value, year_value = int(month), int(year)
    except (TypeError, ValueError):
        raise ValidationException(
            f"Invalid payroll period: {month}/{year}",
            field="month",
            code=ErrorCode.INVALID_PERIOD,
        )
    if not 1 <= month_value <= 12:
        raise ValidationException(
            f"Invalid month: {month}. Must be between 1 and 12",
            field="month",
            code=ErrorCode.INVALID_PERIOD,
        )
    if not 2000 <= year_value <= 2100:
        raise ValidationException(
            f"Invalid year: {year}",
            field="year",
            code=ErrorCode.INVALID_PERIOD,
        )
    return month_value, year_value


def ensure_breakdown(payroll: PayrollRecord) -> List[Dict[str, str]]:
    """Stored breakdown, or one rebuilt from the stored deductions."""
    if payroll.deduction_breakdown is not None:
        return payroll.deduction_breakdown
    return build_breakdown(payroll.statutory_deductions or {}, payroll.voluntary_deductions or [])


def computation_values(computation: PayrollComputation) -> Dict[str, Any]:
    """Column values for a payroll computed by the calculator."""
    return {
        "basic_salary": computation.basic_salary,
        "allowances": [line.to_dict() for line in computation.allowances],
        "bonuses": [line.to_dict() for line in computation.bonuses],
        "statutory_deductions": computation.deductions.statutory.to_dict(),
        "voluntary_deductions": [line.to_dict() for line in computation.deductions.voluntary],
        "deduction_breakdown": computation.deductions.breakdown,
        "gross_pay": computation.gross_pay,
        "total_allowances": computation.total_allowances,
        "total_bonuses": computation.total_bonuses,
        "total_deductions": computation.total_deductions,
        "net_pay": computation.net_pay,
    }


class PayrollService:
    """Service for the payroll record lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.workflow = approval_workflow
        self.audit = AuditService(db)
        self.notifications = NotificationService(db)
        self.approvers = ApproverResolver(db)
        self.deductions = DeductionService(db)
        self.bonuses = BonusService(db)
        # Degraded-but-recoverable conditions from the last operation
        self.warnings: List[Dict[str, Any]] = []

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def get_actor(self, user: User) -> ActorContext:
        department = None
        if user.department_id is not None:
            department = await self.db.get(Department, user.department_id)
        return ActorContext.from_user(user, department)

    async def get_employee(self, employee_id: uuid.UUID) -> User:
        employee = await self.db.get(User, employee_id)
        if employee is None:
            raise EmployeeNotFoundException(employee_id)
        return employee

    async def get_department(self, department_id: uuid.UUID) -> Department:
        department = await self.db.get(Department, department_id)
        if department is None:
            raise NotFoundException("Department", department_id, code=ErrorCode.DEPARTMENT_NOT_FOUND)
        return department

    async def _load_payroll(self, payroll_id: uuid.UUID) -> PayrollRecord:
        payroll = await self.db.get(PayrollRecord, payroll_id)
        if payroll is None:
            raise PayrollNotFoundException(payroll_id)
        return payroll

    async def get_payroll(self, payroll_id: uuid.UUID) -> PayrollRecord:
        """Payroll by ID; a missing breakdown is rebuilt and stored."""
        payroll = await self._load_payroll(payroll_id)
        if payroll.deduction_breakdown is None:
            payroll.deduction_breakdown = ensure_breakdown(payroll)
            await self.db.commit()
            await self.db.refresh(payroll)
            logger.info(f"Back-filled deduction breakdown for payroll {payroll_id}")
        return payroll

    async def list_payrolls(
        self,
        department_id: Optional[uuid.UUID] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[PayrollStatus] = None,
        level: Optional[ApprovalLevel] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[PayrollRecord], int]:
        """Filtered payroll list with total count."""
        conditions = []
        if department_id:
            conditions.append(PayrollRecord.department_id == department_id)
        if employee_id:
            conditions.append(PayrollRecord.employee_id == employee_id)
        if status:
            conditions.append(PayrollRecord.status == status)
        if level:
            conditions.append(PayrollRecord.current_level == level)
        if month:
            conditions.append(PayrollRecord.month == month)
        if year:
            conditions.append(PayrollRecord.year == year)

        query = select(PayrollRecord)
        count_query = select(func.count(PayrollRecord.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await self.db.execute(count_query)).scalar_one()

        query = query.order_by(
            PayrollRecord.year.desc(),
            PayrollRecord.month.desc(),
            PayrollRecord.created_at.desc(),
            PayrollRecord.id,
        )
        query = query.offset((page - 1) * per_page).limit(per_page)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def find_active_payroll(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        frequency: PayrollFrequency,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[PayrollRecord]:
        """Existing payroll that blocks a new one for the same employee and period."""
        conditions = [
            PayrollRecord.employee_id == employee_id,
            PayrollRecord.month == month,
            PayrollRecord.year == year,
            PayrollRecord.frequency == frequency,
            PayrollRecord.status.notin_(RELEASED_STATUSES),
        ]
        if exclude_id is not None:
            conditions.append(PayrollRecord.id != exclude_id)
        result = await self.db.execute(select(PayrollRecord).where(and_(*conditions)).limit(1))
        return result.scalar_one_or_none()

    # ===========================================
    # CALCULATION
    # ===========================================

    async def preview_calculation(
        self,
        basic_salary: Decimal,
        allowances: Optional[List[Dict[str, Any]]] = None,
        voluntary: Optional[List[Dict[str, Any]]] = None,
        bonuses: Optional[List[Dict[str, Any]]] = None,
    ) -> PayrollComputation:
        """Compute a payroll snapshot without persisting anything."""
        calculator = await self.deductions.get_calculator()
        return calculator.compute_payroll(basic_salary, allowances or [], voluntary or [], bonuses or [])

    async def get_active_salary_grade(self, grade_level: str) -> SalaryGrade:
        result = await self.db.execute(
            select(SalaryGrade).where(and_(
                SalaryGrade.level == grade_level,
                SalaryGrade.is_active == True,  # noqa: E712
            )).limit(1)
        )
        grade = result.scalar_one_or_none()
        if grade is None:
            raise MissingSalaryGradeException(grade_level)
        return grade

    async def compute_for_employee(
        self,
        employee: User,
        month: int,
        year: int,
    ) -> Tuple[SalaryGrade, PayrollComputation]:
        """
        Salary grade and computed pay for ``employee`` in a month.

        Grade allowances come first, then the employee's additional
        allowances; approved bonuses paid in the month are added to gross pay.
        """
        if not employee.grade_level:
            raise ValidationException(
                f"Employee {employee.id} has no grade level assigned",
                field="grade_level",
                code=ErrorCode.NO_GRADE_LEVEL,
            )
        grade = await self.get_active_salary_grade(employee.grade_level)
        calculator = await self.deductions.get_calculator()
        voluntary = await self.deductions.get_voluntary_selections(employee)
        allowances = list(grade.allowances or []) + list(employee.additional_allowances or [])
        bonuses = await self.bonuses.get_period_bonuses(employee.id, month, year)
        computation = calculator.compute_payroll(grade.basic_salary, allowances, voluntary, bonuses)
        return grade, computation


    # ===========================================
    # CREATION
    # ===========================================

    async def create_payroll(
        self,
        employee_id: uuid.UUID,
        actor: ActorContext,
        month: int,
        year: int,
        frequency: Any = PayrollFrequency.MONTHLY,
        department_id: Optional[uuid.UUID] = None,
        remarks: Optional[str] = None,
        audit: bool = True,
    ) -> PayrollRecord:
        """
        Create a payroll for one employee and period.

        The record is DRAFT, or PENDING at HR_MANAGER when the creator is the
        HR head. ``audit=False`` leaves auditing to a batch caller.
        """
        self.warnings = []
        month, year = validate_period(month, year)
        frequency = parse_frequency(frequency)

        employee = await self.get_employee(employee_id)
        if not employee.is_active:
            raise ValidationException(
                f"Employee {employee_id} is not active",
                field="employee_id",
            )
        if employee.department_id is None:
            raise ValidationException(
                f"Employee {employee_id} is not assigned to a department",
                field="department_id",
                code=ErrorCode.EMPLOYEE_NOT_IN_DEPARTMENT,
            )
        if department_id is not None and employee.department_id != department_id:
            raise ValidationException(
                f"Employee {employee_id} does not belong to department {department_id}",
                field="department_id",
                code=ErrorCode.EMPLOYEE_NOT_IN_DEPARTMENT,
            )

        self.workflow.check_payroll_admin(actor, employee.department_id)

        if await self.find_active_payroll(employee.id, month, year, frequency):
            raise DuplicatePayrollException(employee.id, month, year, frequency.value)

        grade, computation = await self.compute_for_employee(employee, month, year)

        now = datetime.utcnow()
        payroll = PayrollRecord(
            employee_id=employee.id,
            department_id=employee.department_id,
            salary_grade_id=grade.id,
            month=month,
            year=year,
            frequency=frequency,
            status=PayrollStatus.DRAFT,
            current_level=ApprovalLevel.DRAFT,
            approval_history=[],
            remarks=remarks,
            created_by_id=actor.id,
            **computation_values(computation),
        )
        if actor.is_hr_head:
            payroll.status = PayrollStatus.PENDING
            payroll.current_level = ApprovalLevel.HR_MANAGER
            payroll.approval_history = [make_event(
                ApprovalLevel.HR_MANAGER,
                ApprovalEventStatus.SUBMIT,
                ApprovalAction.SUBMIT,
                actor.id,
                now,
                remarks,
            )]
            payroll.submitted_by_id = actor.id
            payroll.submitted_at = now

        self.db.add(payroll)
        await self.db.commit()
        await self.db.refresh(payroll)

        event = PayrollEventContext.from_payroll(payroll)
        logger.info(
            f"Created payroll {event.payroll_id} for employee {event.employee_id} "
            f"({event.period}, {frequency.value}) status={event.status.value}"
        )

        if audit:
            await self._write_audit(
                AuditAction.PAYROLL_CREATE,
                event,
                actor.id,
                {
                    "new_status": event.status.value,
                    "new_level": event.level.value,
                    "employee_id": str(event.employee_id),
                    "period": event.period,
                    "frequency": frequency.value,
                    "net_pay": str(computation.net_pay),
                },
            )

        if event.status == PayrollStatus.PENDING:
            await self._notify(
                event.employee_id,
                NotificationType.PAYROLL_SUBMITTED,
                event,
                f"Your payroll for {event.period} has been submitted for approval",
            )
            await self._notify_next_approver(event)
        else:
            await self._notify(
                event.employee_id,
                NotificationType.PAYROLL_DRAFT_CREATED,
                event,
                f"A draft payroll for {event.period} has been created",
            )
        return await self._reload(event.payroll_id)

    # ===========================================
    # WORKFLOW TRANSITIONS
    # ===========================================

    async def submit_payroll(
        self,
        payroll_id: uuid.UUID,
        actor: ActorContext,
        remarks: Optional[str] = None,
        frequency: Any = None,
    ) -> PayrollRecord:
        """Submit a DRAFT payroll for approval."""
        self.warnings = []
        new_frequency = parse_frequency(frequency) if frequency is not None else None

        result = await self.db.execute(
            select(PayrollRecord).where(and_(
                PayrollRecord.id == payroll_id,
                PayrollRecord.status == PayrollStatus.DRAFT,
            ))
        )
        payroll = result.scalar_one_or_none()
        if payroll is None:
            raise PayrollNotFoundException(payroll_id, message=f"No draft payroll found with ID '{payroll_id}'")

        transition = self.workflow.submit(payroll, actor, remarks)

        extra: Dict[str, Any] = {}
        if new_frequency is not None and new_frequency != payroll.frequency:
            if await self.find_active_payroll(
                payroll.employee_id, payroll.month, payroll.year, new_frequency, exclude_id=payroll.id
            ):
                raise DuplicatePayrollException(
                    payroll.employee_id, payroll.month, payroll.year, new_frequency.value
                )
            extra["frequency"] = new_frequency

        event = await self._apply(payroll, transition, extra)
        await self._write_audit(AuditAction.PAYROLL_SUBMIT, event, actor.id, transition.audit_details())

        await self._notify(
            event.employee_id,
            NotificationType.PAYROLL_SUBMITTED,
            event,
            f"Your payroll for {event.period} has been submitted for approval",
        )
        await self._notify_next_approver(event)
        return await self._reload(event.payroll_id)

    async def approve_payroll(
        self,
        payroll_id: uuid.UUID,
        actor: ActorContext,
        remarks: Optional[str] = None,
    ) -> PayrollRecord:
        """Approve at the current level."""
        self.warnings = []
        payroll = await self._load_payroll(payroll_id)
        transition = self.workflow.approve(payroll, actor, remarks)

        event = await self._apply(payroll, transition)
        await self._write_audit(AuditAction.PAYROLL_APPROVE, event, actor.id, transition.audit_details())

        if transition.completed:
            await self._notify(
                event.employee_id,
                NotificationType.PAYROLL_COMPLETED,
                event,
                f"Your payroll for {event.period} has been fully approved",
            )
        else:
            await self._notify(
                event.employee_id,
                NotificationType.PAYROLL_APPROVED,
                event,
                f"Your payroll for {event.period} was approved at "
                f"{transition.expected_level.value} and moved to {transition.new_level.value}",
            )
            await self._notify_next_approver(event)
        return await self._reload(event.payroll_id)

    async def reject_payroll(
        self,
        payroll_id: uuid.UUID,
        actor: ActorContext,
        remarks: Optional[str] = None,
    ) -> PayrollRecord:
        """Reject at the current level."""
        self.warnings = []
        payroll = await self._load_payroll(payroll_id)
        transition = self.workflow.reject(payroll, actor, remarks)

        event = await self._apply(payroll, transition)
        await self._write_audit(AuditAction.PAYROLL_REJECT, event, actor.id, transition.audit_details())

        message = f"Your payroll for {event.period} was rejected at {transition.expected_level.value}"
        if remarks:
            message += f": {remarks}"
        await self._notify(event.employee_id, NotificationType.PAYROLL_REJECTED, event, message)
        if event.submitted_by_id and event.submitted_by_id != event.employee_id:
            await self._notify(event.submitted_by_id, NotificationType.PAYROLL_REJECTED, event, message)
        return await self._reload(event.payroll_id)

    async def return_for_revision(
        self,
        payroll_id: uuid.UUID,
        actor: ActorContext,
        remarks: Optional[str] = None,
    ) -> PayrollRecord:
        """Send a PENDING payroll back to DRAFT."""
        self.warnings = []
        payroll = await self._load_payroll(payroll_id)
        transition = self.workflow.return_for_revision(payroll, actor, remarks)

        event = await self._apply(payroll, transition)
        await self._write_audit(AuditAction.PAYROLL_RETURN, event, actor.id, transition.audit_details())

        await self._notify(
            event.submitted_by_id or event.employee_id,
            NotificationType.PAYROLL_RETURNED,
            event,
            f"Payroll for {event.period} was returned for revision"
            + (f": {remarks}" if remarks else ""),
        )
        return await self._reload(event.payroll_id)

    async def resubmit_payroll(
        self,
        payroll_id: uuid.UUID,
        actor: ActorContext,
        remarks: Optional[str] = None,
    ) -> PayrollRecord:
        """Recalculate a REJECTED payroll and restart its approval flow."""
        self.warnings = []
        payroll = await self._load_payroll(payroll_id)
        transition = self.workflow.resubmit(payroll, actor, remarks)

        # A rejected record releases its period, so a newer one may hold it now
        if await self.find_active_payroll(
            payroll.employee_id, payroll.month, payroll.year, payroll.frequency, exclude_id=payroll.id
        ):
            raise DuplicatePayrollException(
                payroll.employee_id, payroll.month, payroll.year, PayrollFrequency(payroll.frequency).value
            )

        # Salary grade, allowances, bonuses or deductions may have changed since rejection
        employee = await self.get_employee(payroll.employee_id)
        grade, computation = await self.compute_for_employee(employee, payroll.month, payroll.year)
        extra = computation_values(computation)
        extra["salary_grade_id"] = grade.id

        event = await self._apply(payroll, transition, extra)
        details = transition.audit_details()
        details["net_pay"] = str(computation.net_pay)
        await self._write_audit(AuditAction.PAYROLL_RESUBMIT, event, actor.id, details)

        await self._notify(
            event.employee_id,
            NotificationType.PAYROLL_SUBMITTED,
            event,
            f"Your payroll for {event.period} has been resubmitted for approval",
        )
        await self._notify_next_approver(event)
        return await self._reload(event.payroll_id)

    async def cancel_payroll(
        self,
        payroll_id: uuid.UUID,
        actor: ActorContext,
        remarks: Optional[str] = None,
    ) -> PayrollRecord:
        """Cancel a payroll that has not been approved."""
        self.warnings = []
        payroll = await self._load_payroll(payroll_id)
        transition = self.workflow.cancel(payroll, actor, remarks)

        event = await self._apply(payroll, transition)
        await self._write_audit(AuditAction.PAYROLL_CANCEL, event, actor.id, transition.audit_details())

        await self._notify(
            event.employee_id,
            NotificationType.PAYROLL_CANCELLED,
            event,
            f"Your payroll for {event.period} has been cancelled",
        )
        return await self._reload(event.payroll_id)

    async def process_payment(
        self,
        payroll_id: uuid.UUID,
        actor: ActorContext,
        payment_details: Optional[Dict[str, Optional[str]]] = None,
    ) -> PayrollRecord:
        """
        Mark an APPROVED payroll as PAID.

        Bank fields not supplied in ``payment_details`` are taken from the
        employee's salary account.
        """
        self.warnings = []
        payroll = await self._load_payroll(payroll_id)
        employee = await self.get_employee(payroll.employee_id)

        supplied = payment_details or {}
        bank_details = {
            "account_name": supplied.get("account_name") or employee.account_name,
            "account_number": supplied.get("account_number") or employee.account_number,
            "bank_name": supplied.get("bank_name") or employee.bank_name,
        }
        transition = self.workflow.pay(payroll, actor, bank_details)
        amount = str(payroll.net_pay)

        event = await self._apply(payroll, transition)
        details = transition.audit_details()
        details["amount"] = amount
        await self._write_audit(AuditAction.PAYROLL_PAY, event, actor.id, details)

        await self._notify(
            event.employee_id,
            NotificationType.PAYROLL_PAID,
            event,
            f"Your salary for {event.period} has been paid",
        )
        return await self._reload(event.payroll_id)

    # ===========================================
    # PERSISTENCE & SIDE EFFECTS
    # ===========================================

    async def _reload(self, payroll_id: uuid.UUID) -> PayrollRecord:
        # Refreshes the instance if a failed side effect rolled back (and expired) it
        return await self._load_payroll(payroll_id)

    async def _apply(
        self,
        payroll: PayrollRecord,
        transition: WorkflowTransition,
        extra: Optional[Dict[str, Any]] = None,
    ) -> "PayrollEventContext":
        """Conditional write of a transition; fails if the record moved on."""
        values = dict(transition.changes)
        if extra:
            values.update(extra)
        payroll_id = transition.payroll_id

        result = await self.db.execute(
            update(PayrollRecord)
            .where(and_(
                PayrollRecord.id == payroll_id,
                PayrollRecord.status == transition.expected_status,
                PayrollRecord.current_level == transition.expected_level,
            ))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            logger.warning(
                f"Conditional update of payroll {payroll_id} lost the race "
                f"(expected {transition.expected_status.value}/{transition.expected_level.value})"
            )
            raise ConcurrentModificationException(
                payroll_id,
                transition.expected_level.value,
                transition.expected_status.value,
            )

        await self.db.commit()
        await self.db.refresh(payroll)

        logger.info(
            f"Payroll {payroll_id} {transition.action}: "
            f"{transition.expected_status.value}/{transition.expected_level.value} -> "
            f"{transition.new_status.value}/{transition.new_level.value}"
        )
        return PayrollEventContext.from_payroll(payroll)

    async def _write_audit(
        self,
        action: AuditAction,
        event: "PayrollEventContext",
        actor_id: uuid.UUID,
        details: Dict[str, Any],
    ) -> None:
        try:
            await self.audit.log_action(
                action=action,
                entity_type="payroll",
                entity_id=str(event.payroll_id),
                actor_id=actor_id,
                details=details,
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Audit entry {action.value} for payroll {event.payroll_id} failed: {e}")
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Audit entry {action.value} for payroll {event.payroll_id} failed: {e}", exc_info=True)

    async def _notify(
        self,
        recipient_id: uuid.UUID,
        event_type: NotificationType,
        event: "PayrollEventContext",
        message: str,
    ) -> None:
        try:
            await self.notifications.notify(recipient_id, event_type, event.payload(), message)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Notification {event_type.value} to {recipient_id} failed: {e}")
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Notification {event_type.value} to {recipient_id} failed: {e}", exc_info=True)

    async def _notify_next_approver(self, event: "PayrollEventContext") -> None:
        """Tell the approver at the payroll's current level that it is waiting."""
        try:
            approver = await self.approvers.find_approver_for_level(event.level, event.department_id)
            approver_id = approver.id if approver is not None else None
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Approver lookup for payroll {event.payroll_id} failed: {e}")
            approver_id = None
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Approver lookup for payroll {event.payroll_id} failed: {e}", exc_info=True)
            approver_id = None

        if approver_id is None:
            message = f"No eligible approver found for level {event.level.value}"
            logger.warning(f"{message} (payroll {event.payroll_id}, department {event.department_id})")
            self.warnings.append({
                "code": ErrorCode.NO_ELIGIBLE_APPROVER.value,
                "item_id": str(event.payroll_id),
                "message": message,
            })
            return

        await self._notify(
            approver_id,
            NotificationType.PAYROLL_APPROVAL_REQUIRED,
            event,
            f"A payroll for {event.period} is awaiting your approval at {event.level.value}",
        )


@dataclass(frozen=True)
class PayrollEventContext:
    """
    Snapshot of a persisted payroll used for audit and notification.

    Plain values only: a failed side effect rolls the session back, which
    expires every ORM instance it holds.
    """
    payroll_id: uuid.UUID
    employee_id: uuid.UUID
    department_id: uuid.UUID
    submitted_by_id: Optional[uuid.UUID]
    period: str
    status: PayrollStatus
    level: ApprovalLevel

    @classmethod
    def from_payroll(cls, payroll: PayrollRecord) -> "PayrollEventContext":
        return cls(
            payroll_id=payroll.id,
            employee_id=payroll.employee_id,
            department_id=payroll.department_id,
            submitted_by_id=payroll.submitted_by_id,
            period=payroll.period_label,
            status=PayrollStatus(payroll.status),
            level=ApprovalLevel(payroll.current_level),
        )

    def payload(self) -> Dict[str, Any]:
        return {
            "payroll_id": str(self.payroll_id),
            "employee_id": str(self.employee_id),
            "department_id": str(self.department_id),
            "period": self.period,
            "status": self.status.value,
            "level": self.level.value,
        }
