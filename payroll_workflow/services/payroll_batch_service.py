"""
Payroll Workflow - Batch Orchestrator

Fans a payroll operation out over many employees or records:
- Batch creation (explicit employee list, or a whole department)
- Bulk submission of DRAFT records
- Department-wide approval and rejection

Items are processed one at a time. A failing item is recorded in the
ProcessingSummary and never stops its siblings; only a precondition failure
(invalid period, actor without the required capability) aborts the batch
before any item is touched.
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.models.audit import AuditAction
from payroll_workflow.models.notification import NotificationType
from payroll_workflow.models.payroll import (
    ApprovalLevel,
    PayrollFrequency,
    PayrollRecord,
    PayrollStatus,
)
from payroll_workflow.models.user import User
from payroll_workflow.services.approval_workflow import APPROVAL_CHAIN
from payroll_workflow.services.payroll_service import (
    PayrollService,
    parse_frequency,
    validate_period,
)
from payroll_workflow.utils.error_handling import (
    AppException,
    BatchItemError,
    ErrorCode,
    InsufficientCapabilityException,
    ValidationException,
)
from payroll_workflow.utils.permissions import ActorContext, PAYROLL_ADMIN_CAPABILITIES

logger = logging.getLogger(__name__)


SUCCESS = "SUCCESS"
SKIPPED = "SKIPPED"
FAILED = "FAILED"

# Item failures that leave nothing to do rather than something broken
SKIP_CODES = {ErrorCode.PAYROLL_ALREADY_EXISTS.value}


@dataclass
class ProcessingSummary:
    """Aggregate result of a batch operation."""
    total_attempted: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    details: List[Dict[str, Any]] = field(default_factory=list)

    def record_success(self, item_id: Any, payroll_id: Any) -> None:
        self.total_attempted += 1
        self.processed += 1
        self.details.append({
            "item_id": str(item_id),
            "status": SUCCESS,
            "payroll_id": str(payroll_id),
        })

    def record_skip(self, error: BatchItemError) -> None:
        self.total_attempted += 1
        self.skipped += 1
        self.details.append({
            "item_id": error.item_id,
            "status": SKIPPED,
            "code": error.code,
            "message": error.message,
        })

    def record_failure(self, error: BatchItemError) -> None:
        self.total_attempted += 1
        self.failed += 1
        self.errors.append(error.to_dict())
        self.details.append({
            "item_id": error.item_id,
            "status": FAILED,
            "code": error.code,
            "message": error.message,
        })

    def record_error(self, error: BatchItemError) -> None:
        if error.code in SKIP_CODES:
            self.record_skip(error)
        else:
            self.record_failure(error)

    def add_warning(self, code: Any, item_id: Any, message: str) -> None:
        self.warnings.append({
            "code": code.value if isinstance(code, ErrorCode) else code,
            "item_id": str(item_id) if item_id is not None else None,
            "message": message,
        })

    def extend_warnings(self, warnings: Iterable[Dict[str, Any]]) -> None:
        self.warnings.extend(warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_attempted": self.total_attempted,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "details": list(self.details),
        }


class PayrollBatchService:
    """Batch and bulk payroll operations built on PayrollService."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.payrolls = PayrollService(db)
        self.workflow = self.payrolls.workflow

    async def _run_item(self, summary: ProcessingSummary, item_id: Any, operation) -> Optional[PayrollRecord]:
        """Run one item, recording its outcome; returns the payroll on success."""
        try:
            payroll = await operation()
        except AppException as e:
            error = BatchItemError.from_exception(item_id, e)
            logger.info(f"Batch item {item_id} not processed: {error.code} {error.message}")
        except SQLAlchemyError as e:
            await self.db.rollback()
            error = BatchItemError(ErrorCode.DATABASE_ERROR, item_id, str(e), cause=e)
            logger.error(f"Database error on batch item {item_id}: {e}", exc_info=True)
        except Exception as e:
            await self.db.rollback()
            error = BatchItemError.from_exception(item_id, e)
            logger.error(f"Unexpected error on batch item {item_id}: {e}", exc_info=True)
        else:
            summary.record_success(item_id, payroll.id)
            summary.extend_warnings(self.payrolls.warnings)
            return payroll

        summary.record_error(error)
        return None

    async def _audit_batch(
        self,
        action: AuditAction,
        entity_id: str,
        actor: ActorContext,
        summary: ProcessingSummary,
        context: Dict[str, Any],
    ) -> None:
        details = dict(context)
        details.update({
            "total_attempted": summary.total_attempted,
            "processed": summary.processed,
            "skipped": summary.skipped,
            "failed": summary.failed,
            "payroll_ids": [d["payroll_id"] for d in summary.details if d["status"] == SUCCESS],
        })
        try:
            await self.payrolls.audit.log_action(
                action=action,
                entity_type="payroll_batch",
                entity_id=entity_id,
                actor_id=actor.id,
                details=details,
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Batch audit entry {action.value} failed: {e}")
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Batch audit entry {action.value} failed: {e}", exc_info=True)

    async def _notify_user(
        self,
        recipient_id: uuid.UUID,
        event_type: NotificationType,
        payload: Dict[str, Any],
        message: str,
    ) -> None:
        try:
            await self.payrolls.notifications.notify(recipient_id, event_type, payload, message)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Notification {event_type.value} to {recipient_id} failed: {e}")
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Notification {event_type.value} to {recipient_id} failed: {e}", exc_info=True)

    # ===========================================
    # CREATION
    # ===========================================

    async def create_single_employee_payroll(
        self,
        employee_id: uuid.UUID,
        actor: ActorContext,
        month: int,
        year: int,
        frequency: Any = PayrollFrequency.MONTHLY,
        department_id: Optional[uuid.UUID] = None,
        remarks: Optional[str] = None,
    ) -> Tuple[PayrollRecord, ProcessingSummary]:
        """Create one payroll; errors propagate to the caller."""
        payroll = await self.payrolls.create_payroll(
            employee_id=employee_id,
            actor=actor,
            month=month,
            year=year,
            frequency=frequency,
            department_id=department_id,
            remarks=remarks,
        )
        summary = ProcessingSummary()
        summary.record_success(employee_id, payroll.id)
        summary.extend_warnings(self.payrolls.warnings)
        return payroll, summary

    async def create_batch_payroll(
        self,
        employee_ids: List[uuid.UUID],
        actor: ActorContext,
        month: int,
        year: int,
        frequency: Any = PayrollFrequency.MONTHLY,
        department_id: Optional[uuid.UUID] = None,
        remarks: Optional[str] = None,
    ) -> ProcessingSummary:
        """
        Create payrolls for many employees.

        Per-employee validation and calculation failures are recorded in the
        summary; a duplicate payroll counts as skipped.
        """
        month, year = validate_period(month, year)
        frequency = parse_frequency(frequency)
        if department_id is not None:
            await self.payrolls.get_department(department_id)
            self.workflow.check_payroll_admin(actor, department_id)
        elif not actor.has_any(PAYROLL_ADMIN_CAPABILITIES):
            raise InsufficientCapabilityException(
                " or ".join(sorted(c.value for c in PAYROLL_ADMIN_CAPABILITIES)),
                message="Only HR managers, department heads and super admins can create payrolls",
            )

        summary = ProcessingSummary()
        for employee_id in employee_ids:
            await self._run_item(
                summary,
                employee_id,
                lambda employee_id=employee_id: self.payrolls.create_payroll(
                    employee_id=employee_id,
                    actor=actor,
                    month=month,
                    year=year,
                    frequency=frequency,
                    department_id=department_id,
                    remarks=remarks,
                    audit=False,
                ),
            )

        logger.info(
            f"Batch payroll {month:02d}/{year}: {summary.processed} created, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )

        await self._audit_batch(
            AuditAction.PAYROLL_BATCH_CREATE,
            f"{department_id or 'batch'}:{year}-{month:02d}",
            actor,
            summary,
            {"month": month, "year": year, "frequency": frequency.value,
             "department_id": str(department_id) if department_id else None},
        )
        await self._notify_user(
            actor.id,
            NotificationType.BATCH_PROCESSING_COMPLETED,
            {"month": month, "year": year, **summary.to_dict()},
            f"Payroll batch for {year}-{month:02d} finished: {summary.processed} created, "
            f"{summary.skipped} skipped, {summary.failed} failed",
        )
        return summary

    async def process_department_payroll(
        self,
        department_id: uuid.UUID,
        actor: ActorContext,
        month: int,
        year: int,
        frequency: Any = PayrollFrequency.MONTHLY,
        remarks: Optional[str] = None,
    ) -> ProcessingSummary:
        """Create payrolls for every active employee of a department."""
        validate_period(month, year)
        parse_frequency(frequency)
        await self.payrolls.get_department(department_id)
        self.workflow.check_payroll_admin(actor, department_id)

        result = await self.db.execute(
            select(User.id)
            .where(and_(
                User.department_id == department_id,
                User.is_active == True,  # noqa: E712
            ))
            .order_by(User.email)
        )
        employee_ids = list(result.scalars().all())

        if not employee_ids:
            summary = ProcessingSummary()
            summary.add_warning(
                ErrorCode.NO_EMPLOYEES_FOUND,
                department_id,
                f"No active employees found in department {department_id}",
            )
            return summary

        return await self.create_batch_payroll(
            employee_ids,
            actor,
            month,
            year,
            frequency=frequency,
            department_id=department_id,
            remarks=remarks,
        )

    # ===========================================
    # BULK SUBMISSION
    # ===========================================

    async def submit_bulk_payrolls(
        self,
        actor: ActorContext,
        payroll_ids: Optional[List[uuid.UUID]] = None,
        department_id: Optional[uuid.UUID] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
        remarks: Optional[str] = None,
    ) -> ProcessingSummary:
        """Submit DRAFT payrolls given by ID list, or by department and period."""
        if payroll_ids is None:
            if department_id is None or month is None or year is None:
                raise ValidationException(
                    "Provide payroll_ids, or department_id with month and year",
                    field="payroll_ids",
                )
            validate_period(month, year)
            await self.payrolls.get_department(department_id)
            self.workflow.check_payroll_admin(actor, department_id)

            result = await self.db.execute(
                select(PayrollRecord.id).where(and_(
                    PayrollRecord.department_id == department_id,
                    PayrollRecord.month == month,
                    PayrollRecord.year == year,
                    PayrollRecord.status == PayrollStatus.DRAFT,
                ))
            )
            payroll_ids = list(result.scalars().all())

        summary = ProcessingSummary()
        if not payroll_ids:
            summary.add_warning(ErrorCode.NO_PAYROLLS_FOUND, department_id, "No draft payrolls found to submit")
            return summary

        for payroll_id in payroll_ids:
            await self._run_item(
                summary,
                payroll_id,
                lambda payroll_id=payroll_id: self.payrolls.submit_payroll(payroll_id, actor, remarks),
            )

        logger.info(
            f"Bulk submission: {summary.processed} submitted, {summary.failed} failed "
            f"of {summary.total_attempted}"
        )
        await self._audit_batch(
            AuditAction.PAYROLL_BULK_SUBMIT,
            str(department_id) if department_id else "bulk",
            actor,
            summary,
            {"department_id": str(department_id) if department_id else None, "month": month, "year": year},
        )
        return summary

    # ===========================================
    # DEPARTMENT APPROVAL / REJECTION
    # ===========================================

    async def _pending_for_department(
        self,
        department_id: uuid.UUID,
        month: int,
        year: int,
        level: Optional[ApprovalLevel],
    ) -> List[Tuple[uuid.UUID, ApprovalLevel, Optional[uuid.UUID]]]:
        conditions = [
            PayrollRecord.department_id == department_id,
            PayrollRecord.month == month,
            PayrollRecord.year == year,
            PayrollRecord.status == PayrollStatus.PENDING,
        ]
        if level is not None:
            conditions.append(PayrollRecord.current_level == level)
        result = await self.db.execute(
            select(PayrollRecord.id, PayrollRecord.current_level, PayrollRecord.submitted_by_id)
            .where(and_(*conditions))
        )
        return [(row.id, ApprovalLevel(row.current_level), row.submitted_by_id) for row in result.all()]

    async def _department_precondition(
        self,
        department_id: uuid.UUID,
        actor: ActorContext,
        month: int,
        year: int,
        level: Optional[ApprovalLevel],
    ) -> List[Tuple[uuid.UUID, ApprovalLevel, Optional[uuid.UUID]]]:
        """
        Records the actor may act on; raises before touching any of them.

        With an explicit level the actor must hold its capability. Without
        one, the actor acts at every pending level they are entitled to, and
        must be entitled to at least one.
        """
        validate_period(month, year)
        await self.payrolls.get_department(department_id)

        if level is not None:
            level = ApprovalLevel(level)
            self.workflow.check_level_permission(actor, level, department_id)
            return await self._pending_for_department(department_id, month, year, level)

        pending = await self._pending_for_department(department_id, month, year, None)
        actable = {lvl for lvl in APPROVAL_CHAIN if self.workflow.can_act(actor, lvl, department_id)}
        if pending and not any(lvl in actable for _, lvl, _ in pending):
            # Raises the specific permission error for the lowest pending level
            lowest = min((lvl for _, lvl, _ in pending), key=APPROVAL_CHAIN.index)
            self.workflow.check_level_permission(actor, lowest, department_id)
        return [item for item in pending if item[1] in actable]

    async def approve_department_payrolls(
        self,
        department_id: uuid.UUID,
        actor: ActorContext,
        month: int,
        year: int,
        level: Optional[ApprovalLevel] = None,
        remarks: Optional[str] = None,
    ) -> ProcessingSummary:
        """Approve every PENDING payroll of a department and period at the actor's level."""
        items = await self._department_precondition(department_id, actor, month, year, level)

        summary = ProcessingSummary()
        if not items:
            summary.add_warning(
                ErrorCode.NO_PAYROLLS_FOUND,
                department_id,
                f"No pending payrolls found for department {department_id} in {year}-{month:02d}",
            )
            return summary

        submitters = set()
        for payroll_id, _, submitted_by_id in items:
            payroll = await self._run_item(
                summary,
                payroll_id,
                lambda payroll_id=payroll_id: self.payrolls.approve_payroll(payroll_id, actor, remarks),
            )
            if payroll is not None and submitted_by_id is not None:
                submitters.add(submitted_by_id)

        logger.info(
            f"Department {department_id} approval {year}-{month:02d}: "
            f"{summary.processed} approved, {summary.failed} failed"
        )
        await self._audit_batch(
            AuditAction.PAYROLL_BULK_APPROVE,
            str(department_id),
            actor,
            summary,
            {"department_id": str(department_id), "month": month, "year": year,
             "level": ApprovalLevel(level).value if level else None},
        )

        for submitter_id in sorted(submitters, key=str):
            await self._notify_user(
                submitter_id,
                NotificationType.DEPARTMENT_PAYROLL_APPROVED,
                {"department_id": str(department_id), "month": month, "year": year,
                 "approved": summary.processed},
                f"{summary.processed} payroll(s) for {year}-{month:02d} were approved",
            )
        return summary

    async def reject_department_payrolls(
        self,
        department_id: uuid.UUID,
        actor: ActorContext,
        month: int,
        year: int,
        level: Optional[ApprovalLevel] = None,
        remarks: Optional[str] = None,
    ) -> ProcessingSummary:
        """Reject every PENDING payroll of a department and period at the actor's level."""
        items = await self._department_precondition(department_id, actor, month, year, level)

        summary = ProcessingSummary()
        if not items:
            summary.add_warning(
                ErrorCode.NO_PAYROLLS_FOUND,
                department_id,
                f"No pending payrolls found for department {department_id} in {year}-{month:02d}",
            )
            return summary

        for payroll_id, _, _ in items:
            await self._run_item(
                summary,
                payroll_id,
                lambda payroll_id=payroll_id: self.payrolls.reject_payroll(payroll_id, actor, remarks),
            )

        logger.info(
            f"Department {department_id} rejection {year}-{month:02d}: "
            f"{summary.processed} rejected, {summary.failed} failed"
        )
        await self._audit_batch(
            AuditAction.PAYROLL_BULK_REJECT,
            str(department_id),
            actor,
            summary,
            {"department_id": str(department_id), "month": month, "year": year,
             "level": ApprovalLevel(level).value if level else None, "remarks": remarks},
        )
        return summary
