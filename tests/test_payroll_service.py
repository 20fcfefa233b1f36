"""
Payroll Workflow - Payroll Service Tests

Lifecycle tests against an in-memory database: creation, the approval
chain, rejection, payment, concurrency and side effects.

IDs and actor contexts are captured before any call that may roll the
session back, since a rollback expires every loaded ORM instance.
"""

import logging
import pytest
from collections import Counter
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, select, update
from sqlalchemy.exc import OperationalError

from payroll_workflow.models.audit import AuditAction
from payroll_workflow.models.notification import NotificationType
from payroll_workflow.models.payroll import ApprovalLevel, PayrollRecord, PayrollStatus, RELEASED_STATUSES
from payroll_workflow.services.approval_workflow import approved_levels
from payroll_workflow.services.audit_service import AuditService
from payroll_workflow.services.bonus_service import BonusService
from payroll_workflow.services.notification_service import NotificationService
from payroll_workflow.services.payroll_service import PayrollService
from payroll_workflow.utils.error_handling import (
    ConcurrentModificationException,
    DuplicatePayrollException,
    ErrorCode,
    IncompletePaymentDetailsException,
    InsufficientCapabilityException,
    InvalidFrequencyException,
    PayrollNotFoundException,
    StateConflictException,
    ValidationException,
)
from payroll_workflow.utils.permissions import ActorContext


MONTH, YEAR = 6, 2026


async def create_and_submit(service, actor, employee_id):
    payroll = await service.create_payroll(employee_id, actor, MONTH, YEAR)
    return await service.submit_payroll(payroll.id, actor, remarks="June payroll")


async def approve_through(service, approval_chain, payroll_id, levels):
    approver_keys = {
        ApprovalLevel.DEPARTMENT_HEAD: "department_head",
        ApprovalLevel.HR_MANAGER: "hr_head",
        ApprovalLevel.FINANCE_DIRECTOR: "finance_director",
        ApprovalLevel.SUPER_ADMIN: "super_admin",
    }
    payroll = None
    for level in levels:
        payroll = await service.approve_payroll(payroll_id, approval_chain[approver_keys[level]])
    return payroll


ALL_LEVELS = [
    ApprovalLevel.DEPARTMENT_HEAD,
    ApprovalLevel.HR_MANAGER,
    ApprovalLevel.FINANCE_DIRECTOR,
    ApprovalLevel.SUPER_ADMIN,
]


class TestPayrollCreation:
    """Creating payroll records."""

    @pytest.mark.asyncio
    async def test_create_draft(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await service.create_payroll(employee.id, approval_chain["department_head"], MONTH, YEAR)

        assert payroll.status == PayrollStatus.DRAFT
        assert payroll.current_level == ApprovalLevel.DRAFT
        assert payroll.gross_pay == Decimal("650000.00")
        assert payroll.total_deductions == Decimal("114000.00")
        assert payroll.net_pay == Decimal("536000.00")
        assert [line["name"] for line in payroll.deduction_breakdown] == ["PAYE", "Pension", "NHF"]
        assert payroll.approval_history == []

    @pytest.mark.asyncio
    async def test_hr_head_creation_skips_department_head(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await service.create_payroll(employee.id, approval_chain["hr_head"], MONTH, YEAR)

        assert payroll.status == PayrollStatus.PENDING
        assert payroll.current_level == ApprovalLevel.HR_MANAGER
        assert [e["status"] for e in payroll.approval_history] == ["SUBMIT"]
        assert payroll.submitted_by_id == approval_chain["hr_head"].id

    @pytest.mark.asyncio
    async def test_invalid_frequency(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        with pytest.raises(InvalidFrequencyException) as exc_info:
            await service.create_payroll(
                employee.id, approval_chain["department_head"], MONTH, YEAR, frequency="fortnightly",
            )
        assert exc_info.value.code == ErrorCode.INVALID_FREQUENCY

    @pytest.mark.asyncio
    async def test_invalid_month(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        with pytest.raises(ValidationException) as exc_info:
            await service.create_payroll(employee.id, approval_chain["department_head"], 13, YEAR)
        assert exc_info.value.code == ErrorCode.INVALID_PERIOD

    @pytest.mark.asyncio
    async def test_duplicate_for_same_period(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id = employee.id
        await service.create_payroll(employee_id, actor, MONTH, YEAR)

        with pytest.raises(DuplicatePayrollException) as exc_info:
            await service.create_payroll(employee_id, actor, MONTH, YEAR)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_cancelled_payroll_does_not_block(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id = employee.id
        first = await service.create_payroll(employee_id, actor, MONTH, YEAR)
        await service.cancel_payroll(first.id, actor)

        second = await service.create_payroll(employee_id, actor, MONTH, YEAR)
        assert second.id != first.id
        assert second.status == PayrollStatus.DRAFT

    @pytest.mark.asyncio
    async def test_other_frequency_is_not_a_duplicate(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id = employee.id
        await service.create_payroll(employee_id, actor, MONTH, YEAR)

        weekly = await service.create_payroll(employee_id, actor, MONTH, YEAR, frequency="weekly")
        assert weekly.frequency.value == "weekly"

    @pytest.mark.asyncio
    async def test_employee_cannot_create(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        with pytest.raises(InsufficientCapabilityException) as exc_info:
            await service.create_payroll(employee.id, approval_chain["employee"], MONTH, YEAR)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_wrong_department(self, db_session, approval_chain, employee, hr_department):
        service = PayrollService(db_session)
        with pytest.raises(ValidationException) as exc_info:
            await service.create_payroll(
                employee.id, approval_chain["super_admin"], MONTH, YEAR, department_id=hr_department.id,
            )
        assert exc_info.value.code == ErrorCode.EMPLOYEE_NOT_IN_DEPARTMENT


class TestApprovalChain:
    """Walking a payroll through every level."""

    @pytest.mark.asyncio
    async def test_full_chain(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], employee.id)
        assert payroll.current_level == ApprovalLevel.DEPARTMENT_HEAD

        payroll = await approve_through(service, approval_chain, payroll.id, ALL_LEVELS)

        assert payroll.status == PayrollStatus.APPROVED
        assert payroll.current_level == ApprovalLevel.COMPLETED
        assert payroll.net_pay == Decimal("536000.00")
        assert approved_levels(payroll.approval_history) == [level.value for level in ALL_LEVELS]
        assert service.warnings == []

    @pytest.mark.asyncio
    async def test_submit_non_draft(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        payroll = await create_and_submit(service, actor, employee.id)

        with pytest.raises(PayrollNotFoundException):
            await service.submit_payroll(payroll.id, actor)

    @pytest.mark.asyncio
    async def test_submit_with_new_frequency(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        payroll = await service.create_payroll(employee.id, actor, MONTH, YEAR)

        payroll = await service.submit_payroll(payroll.id, actor, frequency="biweekly")
        assert payroll.frequency.value == "biweekly"
        assert payroll.status == PayrollStatus.PENDING

    @pytest.mark.asyncio
    async def test_concurrent_approval_conflict(self, db_session, approval_chain, employee):
        """The loser of a race on the same level gets a conflict."""
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        payroll = await create_and_submit(service, actor, employee.id)
        payroll_id = payroll.id

        # Another request approves first; the session still holds the old state
        await db_session.execute(
            update(PayrollRecord)
            .where(PayrollRecord.id == payroll_id)
            .values(current_level=ApprovalLevel.HR_MANAGER)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()

        with pytest.raises(ConcurrentModificationException) as exc_info:
            await service.approve_payroll(payroll_id, actor)
        assert exc_info.value.code == ErrorCode.CONCURRENT_MODIFICATION

        current = await db_session.get(PayrollRecord, payroll_id)
        assert current.current_level == ApprovalLevel.HR_MANAGER
        history = await service.audit.get_entity_history("payroll", str(payroll_id))
        assert AuditAction.PAYROLL_APPROVE not in [entry.action for entry in history]

    @pytest.mark.asyncio
    async def test_missing_approver_is_a_warning(self, db_session, engineering, employee, department_head):
        """No HR manager exists: the approval stands and a warning is reported."""
        service = PayrollService(db_session)
        actor = ActorContext.from_user(department_head, engineering)
        payroll = await create_and_submit(service, actor, employee.id)

        payroll = await service.approve_payroll(payroll.id, actor)

        assert payroll.current_level == ApprovalLevel.HR_MANAGER
        assert [w["code"] for w in service.warnings] == [ErrorCode.NO_ELIGIBLE_APPROVER.value]


class TestRejectionAndRevision:
    """Reject, return and resubmit."""

    @pytest.mark.asyncio
    async def test_reject_truncates_history(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], employee.id)
        payroll_id = payroll.id
        await approve_through(service, approval_chain, payroll_id, ALL_LEVELS[:2])

        payroll = await service.reject_payroll(payroll_id, approval_chain["finance_director"], remarks="Recheck")

        assert payroll.status == PayrollStatus.REJECTED
        assert len(payroll.approval_history) == 1
        assert payroll.approval_history[0]["level"] == "FINANCE_DIRECTOR"
        assert payroll.rejected_by_id == approval_chain["finance_director"].id

        history = await service.audit.get_entity_history("payroll", str(payroll_id))
        rejection = [entry for entry in history if entry.action == AuditAction.PAYROLL_REJECT][0]
        assert len(rejection.details["previous_history"]) == 3

    @pytest.mark.asyncio
    async def test_resubmit_recalculates_and_restarts(self, db_session, approval_chain, employee, salary_grade):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        payroll = await create_and_submit(service, actor, employee.id)
        payroll_id = payroll.id
        await approve_through(service, approval_chain, payroll_id, ALL_LEVELS[:1])
        await service.reject_payroll(payroll_id, approval_chain["hr_head"])

        salary_grade.basic_salary = Decimal("600000.00")
        await db_session.commit()

        payroll = await service.resubmit_payroll(payroll_id, actor)

        assert payroll.status == PayrollStatus.PENDING
        assert payroll.current_level == ApprovalLevel.DEPARTMENT_HEAD
        assert [e["status"] for e in payroll.approval_history] == ["SUBMIT"]
        assert payroll.basic_salary == Decimal("600000.00")
        assert payroll.rejected_by_id is None

    @pytest.mark.asyncio
    async def test_resubmit_refused_when_period_taken(self, db_session, approval_chain, employee):
        """A replacement created after rejection keeps the period."""
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id = employee.id
        payroll = await create_and_submit(service, actor, employee_id)
        rejected_id = payroll.id
        await service.reject_payroll(rejected_id, actor, remarks="Wrong grade")

        replacement = await service.create_payroll(employee_id, actor, MONTH, YEAR)
        replacement_id = replacement.id

        with pytest.raises(DuplicatePayrollException) as exc_info:
            await service.resubmit_payroll(rejected_id, actor)
        assert exc_info.value.code == ErrorCode.PAYROLL_ALREADY_EXISTS

        db_session.expunge_all()
        rejected = await db_session.get(PayrollRecord, rejected_id)
        assert rejected.status == PayrollStatus.REJECTED
        result = await db_session.execute(
            select(PayrollRecord.id).where(and_(
                PayrollRecord.employee_id == employee_id,
                PayrollRecord.month == MONTH,
                PayrollRecord.year == YEAR,
                PayrollRecord.status.notin_(RELEASED_STATUSES),
            ))
        )
        assert list(result.scalars().all()) == [replacement_id]

    @pytest.mark.asyncio
    async def test_resubmit_after_replacement_cancelled(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id = employee.id
        payroll = await create_and_submit(service, actor, employee_id)
        rejected_id = payroll.id
        await service.reject_payroll(rejected_id, actor)
        replacement = await service.create_payroll(employee_id, actor, MONTH, YEAR)
        await service.cancel_payroll(replacement.id, actor)

        payroll = await service.resubmit_payroll(rejected_id, actor)
        assert payroll.status == PayrollStatus.PENDING

    @pytest.mark.asyncio
    async def test_return_for_revision(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        payroll = await create_and_submit(service, actor, employee.id)
        payroll_id = payroll.id

        payroll = await service.return_for_revision(payroll_id, actor, remarks="Missing overtime")
        assert payroll.status == PayrollStatus.DRAFT
        assert payroll.current_level == ApprovalLevel.DRAFT

        payroll = await service.submit_payroll(payroll_id, actor)
        assert payroll.current_level == ApprovalLevel.DEPARTMENT_HEAD


class TestPayment:
    """Payment of approved payrolls."""

    @pytest.mark.asyncio
    async def test_pay_with_employee_bank_details(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], employee.id)
        await approve_through(service, approval_chain, payroll.id, ALL_LEVELS)

        payroll = await service.process_payment(payroll.id, approval_chain["finance_director"])

        assert payroll.status == PayrollStatus.PAID
        assert payroll.payment_details["account_number"] == "3012345678"
        assert payroll.payment_details["bank_name"] == "First Bank"
        assert payroll.paid_at is not None

    @pytest.mark.asyncio
    async def test_missing_bank_details(self, db_session, approval_chain, second_employee):
        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], second_employee.id)
        payroll_id = payroll.id
        await approve_through(service, approval_chain, payroll_id, ALL_LEVELS)

        with pytest.raises(IncompletePaymentDetailsException) as exc_info:
            await service.process_payment(payroll_id, approval_chain["finance_director"])
        assert exc_info.value.details["missing_fields"] == ["account_name", "account_number", "bank_name"]

        current = await db_session.get(PayrollRecord, payroll_id)
        assert current.status == PayrollStatus.APPROVED

    @pytest.mark.asyncio
    async def test_supplied_details_override(self, db_session, approval_chain, second_employee):
        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], second_employee.id)
        await approve_through(service, approval_chain, payroll.id, ALL_LEVELS)

        payroll = await service.process_payment(
            payroll.id,
            approval_chain["super_admin"],
            {"account_name": "Bayo Eze", "account_number": "0123456789", "bank_name": "GTBank"},
        )
        assert payroll.payment_details["bank_name"] == "GTBank"


class TestReadAndSideEffects:
    """Breakdown back-fill, audit entries and notification order."""

    @pytest.mark.asyncio
    async def test_breakdown_back_fill(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await service.create_payroll(employee.id, approval_chain["department_head"], MONTH, YEAR)
        payroll_id = payroll.id
        original = list(payroll.deduction_breakdown)

        await db_session.execute(
            update(PayrollRecord)
            .where(PayrollRecord.id == payroll_id)
            .values(deduction_breakdown=None)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
        db_session.expunge_all()

        payroll = await service.get_payroll(payroll_id)
        assert payroll.deduction_breakdown == original

        db_session.expunge_all()
        stored = await db_session.get(PayrollRecord, payroll_id)
        assert stored.deduction_breakdown == original

    @pytest.mark.asyncio
    async def test_one_audit_entry_per_transition(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], employee.id)
        await approve_through(service, approval_chain, payroll.id, ALL_LEVELS)
        await service.process_payment(payroll.id, approval_chain["finance_director"])

        history = await service.audit.get_entity_history("payroll", str(payroll.id))
        assert Counter(entry.action for entry in history) == Counter({
            AuditAction.PAYROLL_CREATE: 1,
            AuditAction.PAYROLL_SUBMIT: 1,
            AuditAction.PAYROLL_APPROVE: 4,
            AuditAction.PAYROLL_PAY: 1,
        })
        approval = [entry for entry in history if entry.action == AuditAction.PAYROLL_APPROVE][0]
        assert approval.details["previous_status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_employee_notified_before_next_approver(
        self, db_session, approval_chain, employee, monkeypatch,
    ):
        calls = []
        original_notify = NotificationService.notify

        async def recording_notify(self, recipient_id, event_type, payload, message, title=None):
            calls.append((recipient_id, event_type))
            return await original_notify(self, recipient_id, event_type, payload, message, title)

        monkeypatch.setattr(NotificationService, "notify", recording_notify)

        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], employee.id)
        calls.clear()

        await service.approve_payroll(payroll.id, approval_chain["department_head"])

        assert calls == [
            (approval_chain["employee"].id, NotificationType.PAYROLL_APPROVED),
            (approval_chain["hr_head"].id, NotificationType.PAYROLL_APPROVAL_REQUIRED),
        ]

    @pytest.mark.asyncio
    async def test_completion_notifies_employee_only(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        payroll = await create_and_submit(service, approval_chain["department_head"], employee.id)
        await approve_through(service, approval_chain, payroll.id, ALL_LEVELS)

        notifications = await service.notifications.get_user_notifications(approval_chain["employee"].id)
        types = [n.notification_type for n in notifications]
        assert NotificationType.PAYROLL_COMPLETED in types
        assert types.count(NotificationType.PAYROLL_APPROVED) == 3

    @pytest.mark.asyncio
    async def test_failed_side_effects_keep_transition(
        self, db_session, approval_chain, employee, monkeypatch, caplog,
    ):
        async def unavailable(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(NotificationService, "notify", unavailable)
        monkeypatch.setattr(AuditService, "log_action", unavailable)

        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        payroll = await create_and_submit(service, actor, employee.id)
        payroll_id = payroll.id

        with caplog.at_level(logging.WARNING):
            payroll = await service.approve_payroll(payroll_id, actor)

        assert payroll.status == PayrollStatus.PENDING
        assert payroll.current_level == ApprovalLevel.HR_MANAGER

        db_session.expunge_all()
        stored = await db_session.get(PayrollRecord, payroll_id)
        assert (stored.status, stored.current_level) == (PayrollStatus.PENDING, ApprovalLevel.HR_MANAGER)
        assert "Audit entry payroll_approve" in caplog.text
        assert "Notification payroll_approved" in caplog.text

    @pytest.mark.asyncio
    async def test_non_database_notification_failure(self, db_session, approval_chain, employee, monkeypatch):
        async def sink_down(*args, **kwargs):
            raise RuntimeError("notification relay unavailable")

        monkeypatch.setattr(NotificationService, "notify", sink_down)

        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        payroll = await create_and_submit(service, actor, employee.id)

        payroll = await service.approve_payroll(payroll.id, actor)
        assert payroll.current_level == ApprovalLevel.HR_MANAGER

        history = await service.audit.get_entity_history("payroll", str(payroll.id))
        assert AuditAction.PAYROLL_APPROVE in [entry.action for entry in history]


class TestListing:
    """Filtering and pagination."""

    @pytest.mark.asyncio
    async def test_paginated_newest_period_first(self, db_session, approval_chain, employee, second_employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id, second_id = employee.id, second_employee.id
        for month in (3, 4, 5):
            await service.create_payroll(employee_id, actor, month, YEAR)
        await service.create_payroll(second_id, actor, 5, YEAR)

        first_page, total = await service.list_payrolls(page=1, per_page=2)
        second_page, _ = await service.list_payrolls(page=2, per_page=2)

        assert total == 4
        assert [p.month for p in first_page] == [5, 5]
        assert [p.month for p in second_page] == [4, 3]

    @pytest.mark.asyncio
    async def test_total_counts_filtered_rows(self, db_session, approval_chain, employee, second_employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id, second_id = employee.id, second_employee.id
        for month in (3, 4, 5):
            await service.create_payroll(employee_id, actor, month, YEAR)
        await service.create_payroll(second_id, actor, 5, YEAR)

        records, total = await service.list_payrolls(employee_id=employee_id, per_page=1)
        assert total == 3
        assert len(records) == 1
        assert records[0].month == 5

        records, total = await service.list_payrolls(page=5, per_page=2)
        assert records == []
        assert total == 4


class TestBonusesAndAllowances:
    """Bonuses paid in the month and employee-specific allowances."""

    async def _bonus(self, db_session, approval_chain, employee_id, amount, payment_date, approved=True):
        bonuses = BonusService(db_session)
        bonus = await bonuses.create_bonus(
            {
                "employee_id": employee_id,
                "bonus_type": "performance",
                "amount": Decimal(amount),
                "payment_date": payment_date,
            },
            created_by_id=approval_chain["hr_head"].id,
        )
        if approved is not None:
            bonus = await bonuses.decide_bonus(bonus.id, approval_chain["finance_director"].id, approved)
        return bonus

    @pytest.mark.asyncio
    async def test_approved_bonus_in_month_added_to_gross(self, db_session, approval_chain, employee):
        employee_id = employee.id
        await self._bonus(db_session, approval_chain, employee_id, "100000", date(YEAR, MONTH, 15))

        service = PayrollService(db_session)
        payroll = await service.create_payroll(employee_id, approval_chain["department_head"], MONTH, YEAR)

        assert payroll.total_bonuses == Decimal("100000.00")
        assert payroll.gross_pay == payroll.basic_salary + payroll.total_allowances + payroll.total_bonuses
        assert payroll.gross_pay == Decimal("750000.00")
        assert payroll.statutory_deductions["paye"] == "76500.00"
        assert payroll.net_pay == Decimal("621000.00")
        assert [(b["name"], b["amount"]) for b in payroll.bonuses] == [("performance", "100000.00")]

    @pytest.mark.asyncio
    async def test_unapproved_and_out_of_period_bonuses_ignored(self, db_session, approval_chain, employee):
        employee_id = employee.id
        await self._bonus(db_session, approval_chain, employee_id, "50000", date(YEAR, MONTH, 10), approved=None)
        await self._bonus(db_session, approval_chain, employee_id, "60000", date(YEAR, MONTH, 11), approved=False)
        await self._bonus(db_session, approval_chain, employee_id, "70000", date(YEAR, MONTH + 1, 1))
        await self._bonus(db_session, approval_chain, employee_id, "80000", date(YEAR, MONTH - 1, 30))

        service = PayrollService(db_session)
        payroll = await service.create_payroll(employee_id, approval_chain["department_head"], MONTH, YEAR)

        assert payroll.bonuses == []
        assert payroll.total_bonuses == Decimal("0.00")
        assert payroll.gross_pay == Decimal("650000.00")

    @pytest.mark.asyncio
    async def test_additional_allowances_follow_grade(self, db_session, approval_chain, employee):
        employee.additional_allowances = [{"name": "Hazard", "calculation_method": "fixed", "value": "30000"}]
        await db_session.commit()
        employee_id = employee.id

        service = PayrollService(db_session)
        payroll = await service.create_payroll(employee_id, approval_chain["department_head"], MONTH, YEAR)

        assert [a["name"] for a in payroll.allowances] == ["Housing", "Transport", "Hazard"]
        assert payroll.total_allowances == Decimal("180000.00")
        assert payroll.gross_pay == Decimal("680000.00")

    @pytest.mark.asyncio
    async def test_resubmit_picks_up_new_bonus(self, db_session, approval_chain, employee):
        service = PayrollService(db_session)
        actor = approval_chain["department_head"]
        employee_id = employee.id
        payroll = await create_and_submit(service, actor, employee_id)
        payroll_id = payroll.id
        await service.reject_payroll(payroll_id, actor, remarks="Performance bonus missing")

        await self._bonus(db_session, approval_chain, employee_id, "100000", date(YEAR, MONTH, 28))
        payroll = await service.resubmit_payroll(payroll_id, actor)

        assert payroll.total_bonuses == Decimal("100000.00")
        assert payroll.gross_pay == Decimal("750000.00")

    @pytest.mark.asyncio
    async def test_bonus_decided_once(self, db_session, approval_chain, employee):
        bonus = await self._bonus(db_session, approval_chain, employee.id, "10000", date(YEAR, MONTH, 1))
        bonus_id = bonus.id

        with pytest.raises(StateConflictException) as exc_info:
            await BonusService(db_session).decide_bonus(bonus_id, approval_chain["super_admin"].id, False)
        assert exc_info.value.status_code == 409
