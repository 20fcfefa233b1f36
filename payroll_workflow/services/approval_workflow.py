"""
Payroll Approval Workflow Engine

State machine over approval levels:

    DRAFT -> DEPARTMENT_HEAD -> HR_MANAGER -> FINANCE_DIRECTOR -> SUPER_ADMIN -> COMPLETED

- Submission from DRAFT starts at DEPARTMENT_HEAD, or at HR_MANAGER when the
  submitter is the HR head (HR department + HR manager capability).
- Approval at a level appends an APPROVED event and advances one level;
  reaching COMPLETED marks the payroll APPROVED.
- Rejection replaces the history with a single REJECTED event.
- Resubmission of a REJECTED payroll starts a fresh flow.

The engine is pure: it validates and returns a WorkflowTransition, and the
payroll service persists it with a conditional update.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence
from uuid import UUID
import logging

from payroll_workflow.models.payroll import (
    ApprovalAction,
    ApprovalEventStatus,
    ApprovalLevel,
    PayrollStatus,
)
from payroll_workflow.utils.error_handling import (
    AlreadyApprovedAtLevelException,
    AuthorizationException,
    ErrorCode,
    IncompletePaymentDetailsException,
    InsufficientCapabilityException,
    InvalidStatusException,
    StateConflictException,
)
from payroll_workflow.utils.permissions import (
    ActorContext,
    Capability,
    PAYMENT_CAPABILITIES,
    PAYROLL_ADMIN_CAPABILITIES,
    required_capability,
)

logger = logging.getLogger(__name__)


# Single source of truth for level progression
_NEXT_LEVEL: Dict[ApprovalLevel, ApprovalLevel] = {
    ApprovalLevel.DRAFT: ApprovalLevel.DEPARTMENT_HEAD,
    ApprovalLevel.DEPARTMENT_HEAD: ApprovalLevel.HR_MANAGER,
    ApprovalLevel.HR_MANAGER: ApprovalLevel.FINANCE_DIRECTOR,
    ApprovalLevel.FINANCE_DIRECTOR: ApprovalLevel.SUPER_ADMIN,
    ApprovalLevel.SUPER_ADMIN: ApprovalLevel.COMPLETED,
}

APPROVAL_CHAIN: Sequence[ApprovalLevel] = (
    ApprovalLevel.DEPARTMENT_HEAD,
    ApprovalLevel.HR_MANAGER,
    ApprovalLevel.FINANCE_DIRECTOR,
    ApprovalLevel.SUPER_ADMIN,
)

CANCELLABLE_STATUSES = (PayrollStatus.DRAFT, PayrollStatus.PENDING, PayrollStatus.REJECTED)

PAYMENT_FIELDS = ("account_name", "account_number", "bank_name")


def next_level(level: ApprovalLevel) -> ApprovalLevel:
    """Level that follows ``level``."""
    level = ApprovalLevel(level)
    if level not in _NEXT_LEVEL:
        raise StateConflictException(
            f"No approval level follows {level.value}",
            code=ErrorCode.INVALID_STATUS,
            details={"level": level.value},
        )
    return _NEXT_LEVEL[level]


def initial_level(submitter: ActorContext) -> ApprovalLevel:
    """HR heads skip the department-head level for their own submissions."""
    if submitter.is_hr_head:
        return ApprovalLevel.HR_MANAGER
    return ApprovalLevel.DEPARTMENT_HEAD


class PayrollState(Protocol):
    """The parts of a payroll record the engine reads."""
    id: Any
    department_id: Any
    status: PayrollStatus
    current_level: ApprovalLevel
    approval_history: List[Dict[str, Any]]


def make_event(
    level: ApprovalLevel,
    status: ApprovalEventStatus,
    action: ApprovalAction,
    actor_id: UUID,
    timestamp: datetime,
    remarks: Optional[str] = None,
) -> Dict[str, Any]:
    """Approval history entry."""
    return {
        "level": ApprovalLevel(level).value,
        "status": status.value,
        "action": action.value,
        "actor_id": str(actor_id),
        "timestamp": timestamp.isoformat(),
        "remarks": remarks,
    }


def current_cycle(history: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Events since the most recent submission."""
    for index in range(len(history) - 1, -1, -1):
        if history[index].get("status") == ApprovalEventStatus.SUBMIT.value:
            return list(history[index:])
    return list(history)


def already_approved_at(history: Sequence[Dict[str, Any]], level: ApprovalLevel) -> bool:
    """True when the latest event at ``level`` in the current cycle is an approval."""
    level_value = ApprovalLevel(level).value
    for event in reversed(current_cycle(history)):
        if event.get("level") == level_value:
            return event.get("status") == ApprovalEventStatus.APPROVED.value
    return False


def approved_levels(history: Sequence[Dict[str, Any]]) -> List[str]:
    """Levels approved so far, in order."""
    return [
        event["level"] for event in history
        if event.get("status") == ApprovalEventStatus.APPROVED.value
    ]


@dataclass
class WorkflowTransition:
    """
    Result of a workflow operation.

    ``changes`` holds column values to write; ``expected_status`` and
    ``expected_level`` are the values the write is conditional on.
    """
    action: str
    payroll_id: Any
    expected_status: PayrollStatus
    expected_level: ApprovalLevel
    new_status: PayrollStatus
    new_level: ApprovalLevel
    event: Optional[Dict[str, Any]]
    changes: Dict[str, Any] = field(default_factory=dict)
    discarded_history: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.new_level == ApprovalLevel.COMPLETED

    def audit_details(self) -> Dict[str, Any]:
        details = {
            "previous_status": self.expected_status.value,
            "new_status": self.new_status.value,
            "previous_level": self.expected_level.value,
            "new_level": self.new_level.value,
        }
        if self.event is not None:
            details["event"] = self.event
        if self.discarded_history:
            details["previous_history"] = self.discarded_history
        return details


class ApprovalWorkflowEngine:
    """
    Payroll approval state machine.
    """

    # ===========================================
    # PERMISSION CHECKS
    # ===========================================

    def check_level_permission(
        self,
        actor: ActorContext,
        level: ApprovalLevel,
        department_id: Any,
    ) -> None:
        """Raise unless ``actor`` may approve/reject at ``level`` for ``department_id``."""
        capability = required_capability(level)
        if capability is None:
            raise StateConflictException(
                f"No approval action is possible at level {ApprovalLevel(level).value}",
                details={"level": ApprovalLevel(level).value},
            )
        if not actor.has(capability):
            raise InsufficientCapabilityException(
                capability.value,
                level=ApprovalLevel(level).value,
                message=f"You are not authorized to act at the {ApprovalLevel(level).value} level",
            )
        if capability == Capability.DEPARTMENT_HEAD and actor.department_id != department_id:
            raise AuthorizationException(
                message="Department heads can only act on payrolls of their own department",
                required_permission=capability.value,
                code=ErrorCode.PERMISSION_DENIED,
                details={"department_id": str(department_id)},
            )

    def can_act(self, actor: ActorContext, level: ApprovalLevel, department_id: Any) -> bool:
        try:
            self.check_level_permission(actor, level, department_id)
        except (AuthorizationException, StateConflictException):
            return False
        return True

    def check_payroll_admin(self, actor: ActorContext, department_id: Any) -> None:
        """Raise unless ``actor`` may create, submit or cancel payrolls for ``department_id``."""
        if actor.has(Capability.HR_MANAGER) or actor.has(Capability.SUPER_ADMIN):
            return
        if actor.has(Capability.DEPARTMENT_HEAD):
            if actor.department_id == department_id:
                return
            raise AuthorizationException(
                message="Department heads can only manage payrolls of their own department",
                code=ErrorCode.PERMISSION_DENIED,
                details={"department_id": str(department_id)},
            )
        raise InsufficientCapabilityException(
            " or ".join(sorted(c.value for c in PAYROLL_ADMIN_CAPABILITIES)),
            message="Only HR managers, department heads and super admins can manage payrolls",
        )

    # ===========================================
    # TRANSITIONS
    # ===========================================

    def submit(
        self,
        payroll: PayrollState,
        actor: ActorContext,
        remarks: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowTransition:
        """DRAFT -> PENDING at the initial level."""
        if payroll.status != PayrollStatus.DRAFT:
            raise InvalidStatusException(payroll.status.value, [PayrollStatus.DRAFT.value], "submit")
        self.check_payroll_admin(actor, payroll.department_id)

        now = now or datetime.utcnow()
        level = initial_level(actor)
        event = make_event(level, ApprovalEventStatus.SUBMIT, ApprovalAction.SUBMIT, actor.id, now, remarks)
        history = list(payroll.approval_history or []) + [event]

        return WorkflowTransition(
            action="submit",
            payroll_id=payroll.id,
            expected_status=payroll.status,
            expected_level=payroll.current_level,
            new_status=PayrollStatus.PENDING,
            new_level=level,
            event=event,
            changes={
                "status": PayrollStatus.PENDING,
                "current_level": level,
                "approval_history": history,
                "submitted_by_id": actor.id,
                "submitted_at": now,
                "remarks": remarks,
            },
        )

    def approve(
        self,
        payroll: PayrollState,
        actor: ActorContext,
        remarks: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowTransition:
        """Approve at the current level and advance."""
        if payroll.status != PayrollStatus.PENDING:
            raise InvalidStatusException(payroll.status.value, [PayrollStatus.PENDING.value], "approve")
        level = ApprovalLevel(payroll.current_level)
        self.check_level_permission(actor, level, payroll.department_id)
        if already_approved_at(payroll.approval_history or [], level):
            raise AlreadyApprovedAtLevelException(level.value)

        now = now or datetime.utcnow()
        event = make_event(level, ApprovalEventStatus.APPROVED, ApprovalAction.APPROVE, actor.id, now, remarks)
        history = list(payroll.approval_history or []) + [event]
        new_level = next_level(level)
        new_status = PayrollStatus.APPROVED if new_level == ApprovalLevel.COMPLETED else PayrollStatus.PENDING

        return WorkflowTransition(
            action="approve",
            payroll_id=payroll.id,
            expected_status=payroll.status,
            expected_level=level,
            new_status=new_status,
            new_level=new_level,
            event=event,
            changes={
                "status": new_status,
                "current_level": new_level,
                "approval_history": history,
                "remarks": remarks,
            },
        )

    def reject(
        self,
        payroll: PayrollState,
        actor: ActorContext,
        remarks: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowTransition:
        """Reject at the current level. History is replaced by the rejection event."""
        if payroll.status != PayrollStatus.PENDING:
            raise InvalidStatusException(payroll.status.value, [PayrollStatus.PENDING.value], "reject")
        level = ApprovalLevel(payroll.current_level)
        self.check_level_permission(actor, level, payroll.department_id)

        now = now or datetime.utcnow()
        event = make_event(level, ApprovalEventStatus.REJECTED, ApprovalAction.REJECT, actor.id, now, remarks)

        return WorkflowTransition(
            action="reject",
            payroll_id=payroll.id,
            expected_status=payroll.status,
            expected_level=level,
            new_status=PayrollStatus.REJECTED,
            new_level=level,
            event=event,
            changes={
                "status": PayrollStatus.REJECTED,
                "approval_history": [event],
                "rejected_by_id": actor.id,
                "rejected_at": now,
                "remarks": remarks,
            },
            discarded_history=list(payroll.approval_history or []),
        )

    def resubmit(
        self,
        payroll: PayrollState,
        actor: ActorContext,
        remarks: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowTransition:
        """REJECTED -> PENDING with a fresh flow."""
        if payroll.status != PayrollStatus.REJECTED:
            raise InvalidStatusException(payroll.status.value, [PayrollStatus.REJECTED.value], "resubmit")
        self.check_payroll_admin(actor, payroll.department_id)

        now = now or datetime.utcnow()
        level = initial_level(actor)
        event = make_event(level, ApprovalEventStatus.SUBMIT, ApprovalAction.SUBMIT, actor.id, now, remarks)

        return WorkflowTransition(
            action="resubmit",
            payroll_id=payroll.id,
            expected_status=payroll.status,
            expected_level=payroll.current_level,
            new_status=PayrollStatus.PENDING,
            new_level=level,
            event=event,
            changes={
                "status": PayrollStatus.PENDING,
                "current_level": level,
                "approval_history": [event],
                "submitted_by_id": actor.id,
                "submitted_at": now,
                "rejected_by_id": None,
                "rejected_at": None,
                "remarks": remarks,
            },
            discarded_history=list(payroll.approval_history or []),
        )

    def return_for_revision(
        self,
        payroll: PayrollState,
        actor: ActorContext,
        remarks: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowTransition:
        """PENDING -> DRAFT so the creator can revise and submit again."""
        if payroll.status != PayrollStatus.PENDING:
            raise InvalidStatusException(payroll.status.value, [PayrollStatus.PENDING.value], "return")
        level = ApprovalLevel(payroll.current_level)
        self.check_level_permission(actor, level, payroll.department_id)

        now = now or datetime.utcnow()
        event = make_event(level, ApprovalEventStatus.RETURNED, ApprovalAction.RETURN, actor.id, now, remarks)

        return WorkflowTransition(
            action="return",
            payroll_id=payroll.id,
            expected_status=payroll.status,
            expected_level=level,
            new_status=PayrollStatus.DRAFT,
            new_level=ApprovalLevel.DRAFT,
            event=event,
            changes={
                "status": PayrollStatus.DRAFT,
                "current_level": ApprovalLevel.DRAFT,
                "approval_history": list(payroll.approval_history or []) + [event],
                "remarks": remarks,
            },
        )

    def cancel(
        self,
        payroll: PayrollState,
        actor: ActorContext,
        remarks: Optional[str] = None,
    ) -> WorkflowTransition:
        """DRAFT / PENDING / REJECTED -> CANCELLED."""
        if payroll.status not in CANCELLABLE_STATUSES:
            raise InvalidStatusException(
                payroll.status.value, [s.value for s in CANCELLABLE_STATUSES], "cancel"
            )
        self.check_payroll_admin(actor, payroll.department_id)

        return WorkflowTransition(
            action="cancel",
            payroll_id=payroll.id,
            expected_status=payroll.status,
            expected_level=payroll.current_level,
            new_status=PayrollStatus.CANCELLED,
            new_level=payroll.current_level,
            event=None,
            changes={
                "status": PayrollStatus.CANCELLED,
                "remarks": remarks,
            },
        )

    def pay(
        self,
        payroll: PayrollState,
        actor: ActorContext,
        bank_details: Dict[str, Optional[str]],
        now: Optional[datetime] = None,
    ) -> WorkflowTransition:
        """APPROVED -> PAID, stamping the payment details."""
        if payroll.status != PayrollStatus.APPROVED:
            raise InvalidStatusException(payroll.status.value, [PayrollStatus.APPROVED.value], "pay")
        if not actor.has_any(PAYMENT_CAPABILITIES):
            raise InsufficientCapabilityException(
                " or ".join(sorted(c.value for c in PAYMENT_CAPABILITIES)),
                message="Only finance directors and super admins can process payments",
            )

        missing = [name for name in PAYMENT_FIELDS if not (bank_details.get(name) or "").strip()]
        if missing:
            raise IncompletePaymentDetailsException(missing)

        now = now or datetime.utcnow()
        payment_details = {name: bank_details[name].strip() for name in PAYMENT_FIELDS}
        payment_details["processed_by"] = str(actor.id)
        payment_details["processed_at"] = now.isoformat()

        return WorkflowTransition(
            action="pay",
            payroll_id=payroll.id,
            expected_status=payroll.status,
            expected_level=payroll.current_level,
            new_status=PayrollStatus.PAID,
            new_level=payroll.current_level,
            event=None,
            changes={
                "status": PayrollStatus.PAID,
                "payment_details": payment_details,
                "paid_at": now,
            },
        )


# Singleton instance
approval_workflow = ApprovalWorkflowEngine()
