"""
Payroll Workflow - Payroll Router

API endpoints for payroll creation, the multi-level approval flow, batch
operations, payment and deduction definitions.

Services raise AppException subclasses; the handlers registered in
``setup_exception_handlers`` turn them into error responses.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.database import get_async_session
from payroll_workflow.dependencies import get_current_actor
from payroll_workflow.models.payroll import ApprovalLevel, PayrollStatus
from payroll_workflow.services.bonus_service import BonusService
from payroll_workflow.services.deduction_service import DeductionService
from payroll_workflow.services.payroll_batch_service import PayrollBatchService
from payroll_workflow.services.payroll_service import PayrollService
from payroll_workflow.schemas.payroll import (
    # Calculation
    CalculationRequest,
    CalculationResponse,
    # Records
    PayrollCreate,
    PayrollBatchCreate,
    DepartmentPayrollProcess,
    PayrollResponse,
    PayrollListResponse,
    PayrollActionResponse,
    PayrollCreateResponse,
    BatchResponse,
    # Workflow
    WorkflowActionRequest,
    SubmitPayrollRequest,
    PaymentRequest,
    BulkSubmitRequest,
    DepartmentActionRequest,
    # Deductions
    DeductionDefinitionCreate,
    DeductionDefinitionResponse,
    EnrollmentRequest,
    EnrollmentResponse,
    # Bonuses
    BonusCreate,
    BonusDecision,
    BonusResponse,
)
from payroll_workflow.utils.error_handling import InsufficientCapabilityException
from payroll_workflow.utils.permissions import ActorContext, Capability, PAYROLL_ADMIN_CAPABILITIES


router = APIRouter()

DEDUCTION_ADMIN_CAPABILITIES = {Capability.HR_MANAGER, Capability.SUPER_ADMIN}
BONUS_APPROVER_CAPABILITIES = {Capability.FINANCE_DIRECTOR, Capability.SUPER_ADMIN}


def _action_response(service: PayrollService, payroll) -> PayrollActionResponse:
    return PayrollActionResponse(
        record=PayrollResponse.model_validate(payroll),
        warnings=service.warnings,
    )


def _require_deduction_admin(actor: ActorContext) -> None:
    if not actor.has_any(DEDUCTION_ADMIN_CAPABILITIES):
        raise InsufficientCapabilityException(
            "HR_MANAGER or SUPER_ADMIN",
            message="Only HR managers and super admins can manage deduction definitions",
        )


# ===========================================
# CALCULATION
# ===========================================

@router.post(
    "/calculate",
    response_model=CalculationResponse,
    summary="Preview a payroll calculation",
    description="Compute allowances, statutory and voluntary deductions and net pay without saving anything.",
)
async def calculate_payroll(
    data: CalculationRequest,
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    """Preview a payroll calculation."""
    service = PayrollService(db)
    computation = await service.preview_calculation(
        basic_salary=data.basic_salary,
        allowances=[a.model_dump() for a in data.allowances],
        voluntary=[v.model_dump() for v in data.voluntary_deductions],
        bonuses=[
            {"name": b.name, "calculation_method": "fixed", "value": b.amount}
            for b in data.bonuses
        ],
    )
    return CalculationResponse(
        basic_salary=computation.basic_salary,
        allowances=[line.to_dict() for line in computation.allowances],
        total_allowances=computation.total_allowances,
        bonuses=[line.to_dict() for line in computation.bonuses],
        total_bonuses=computation.total_bonuses,
        gross_pay=computation.gross_pay,
        statutory_deductions=computation.deductions.statutory.to_dict(),
        voluntary_deductions=[line.to_dict() for line in computation.deductions.voluntary],
        deduction_breakdown=computation.deductions.breakdown,
        paye_bands=computation.paye_bands,
        total_deductions=computation.total_deductions,
        net_pay=computation.net_pay,
    )


# ===========================================
# RECORD CREATION
# ===========================================

@router.post(
    "/records",
    response_model=PayrollCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payroll for one employee",
)
async def create_payroll(
    data: PayrollCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    """Create a payroll record (DRAFT, or PENDING for the HR head)."""
    service = PayrollBatchService(db)
    payroll, summary = await service.create_single_employee_payroll(
        employee_id=data.employee_id,
        actor=actor,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        department_id=data.department_id,
        remarks=data.remarks,
    )
    return PayrollCreateResponse(
        record=PayrollResponse.model_validate(payroll),
        summary=summary.to_dict(),
    )


@router.post(
    "/records/batch",
    response_model=BatchResponse,
    summary="Create payrolls for many employees",
    description="Per-employee failures are reported in the summary and do not stop the batch.",
)
async def create_batch_payroll(
    data: PayrollBatchCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollBatchService(db)
    summary = await service.create_batch_payroll(
        employee_ids=data.employee_ids,
        actor=actor,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        department_id=data.department_id,
        remarks=data.remarks,
    )
    return BatchResponse(summary=summary.to_dict())


@router.post(
    "/departments/{department_id}/process",
    response_model=BatchResponse,
    summary="Create payrolls for a whole department",
)
async def process_department_payroll(
    data: DepartmentPayrollProcess,
    department_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollBatchService(db)
    summary = await service.process_department_payroll(
        department_id=department_id,
        actor=actor,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        remarks=data.remarks,
    )
    return BatchResponse(summary=summary.to_dict())


# ===========================================
# RECORD QUERIES
# ===========================================

@router.get(
    "/records",
    response_model=PayrollListResponse,
    summary="List payroll records",
)
async def list_payrolls(
    department_id: Optional[uuid.UUID] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    status_filter: Optional[PayrollStatus] = Query(None, alias="status"),
    level: Optional[ApprovalLevel] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    """List payrolls; employees without an approval capability see only their own."""
    if not actor.capabilities:
        employee_id = actor.id

    service = PayrollService(db)
    records, total = await service.list_payrolls(
        department_id=department_id,
        employee_id=employee_id,
        status=status_filter,
        level=level,
        month=month,
        year=year,
        page=page,
        per_page=per_page,
    )
    return PayrollListResponse(
        items=[PayrollResponse.model_validate(r) for r in records],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/records/{payroll_id}",
    response_model=PayrollResponse,
    summary="Get a payroll record",
)
async def get_payroll(
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.get_payroll(payroll_id)
    return PayrollResponse.model_validate(payroll)


# ===========================================
# APPROVAL FLOW
# ===========================================

@router.post(
    "/records/submit-bulk",
    response_model=BatchResponse,
    summary="Submit many draft payrolls",
)
async def submit_bulk_payrolls(
    data: BulkSubmitRequest,
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollBatchService(db)
    summary = await service.submit_bulk_payrolls(
        actor=actor,
        payroll_ids=data.payroll_ids,
        department_id=data.department_id,
        month=data.month,
        year=data.year,
        remarks=data.remarks,
    )
    return BatchResponse(summary=summary.to_dict())


@router.post(
    "/records/{payroll_id}/submit",
    response_model=PayrollActionResponse,
    summary="Submit a draft payroll for approval",
)
async def submit_payroll(
    data: SubmitPayrollRequest,
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.submit_payroll(payroll_id, actor, data.remarks, data.frequency)
    return _action_response(service, payroll)


@router.post(
    "/records/{payroll_id}/approve",
    response_model=PayrollActionResponse,
    summary="Approve a payroll at its current level",
)
async def approve_payroll(
    data: WorkflowActionRequest,
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.approve_payroll(payroll_id, actor, data.remarks)
    return _action_response(service, payroll)


@router.post(
    "/records/{payroll_id}/reject",
    response_model=PayrollActionResponse,
    summary="Reject a payroll at its current level",
)
async def reject_payroll(
    data: WorkflowActionRequest,
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.reject_payroll(payroll_id, actor, data.remarks)
    return _action_response(service, payroll)


@router.post(
    "/records/{payroll_id}/return",
    response_model=PayrollActionResponse,
    summary="Return a pending payroll for revision",
)
async def return_payroll(
    data: WorkflowActionRequest,
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.return_for_revision(payroll_id, actor, data.remarks)
    return _action_response(service, payroll)


@router.post(
    "/records/{payroll_id}/resubmit",
    response_model=PayrollActionResponse,
    summary="Recalculate and resubmit a rejected payroll",
)
async def resubmit_payroll(
    data: WorkflowActionRequest,
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.resubmit_payroll(payroll_id, actor, data.remarks)
    return _action_response(service, payroll)


@router.post(
    "/records/{payroll_id}/cancel",
    response_model=PayrollActionResponse,
    summary="Cancel a payroll",
)
async def cancel_payroll(
    data: WorkflowActionRequest,
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.cancel_payroll(payroll_id, actor, data.remarks)
    return _action_response(service, payroll)


@router.post(
    "/records/{payroll_id}/pay",
    response_model=PayrollActionResponse,
    summary="Mark an approved payroll as paid",
    description="Bank fields not provided are taken from the employee's salary account.",
)
async def pay_payroll(
    data: PaymentRequest,
    payroll_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollService(db)
    payroll = await service.process_payment(payroll_id, actor, data.model_dump())
    return _action_response(service, payroll)


@router.post(
    "/departments/{department_id}/approve",
    response_model=BatchResponse,
    summary="Approve a department's pending payrolls for a period",
)
async def approve_department_payrolls(
    data: DepartmentActionRequest,
    department_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollBatchService(db)
    summary = await service.approve_department_payrolls(
        department_id=department_id,
        actor=actor,
        month=data.month,
        year=data.year,
        level=ApprovalLevel(data.level) if data.level else None,
        remarks=data.remarks,
    )
    return BatchResponse(summary=summary.to_dict())


@router.post(
    "/departments/{department_id}/reject",
    response_model=BatchResponse,
    summary="Reject a department's pending payrolls for a period",
)
async def reject_department_payrolls(
    data: DepartmentActionRequest,
    department_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    service = PayrollBatchService(db)
    summary = await service.reject_department_payrolls(
        department_id=department_id,
        actor=actor,
        month=data.month,
        year=data.year,
        level=ApprovalLevel(data.level) if data.level else None,
        remarks=data.remarks,
    )
    return BatchResponse(summary=summary.to_dict())


# ===========================================
# DEDUCTION DEFINITIONS
# ===========================================

@router.post(
    "/deductions",
    response_model=DeductionDefinitionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a deduction definition",
)
async def create_deduction(
    data: DeductionDefinitionCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    _require_deduction_admin(actor)
    service = DeductionService(db)
    definition = await service.create_definition(data.model_dump(), created_by_id=actor.id)
    return DeductionDefinitionResponse.model_validate(definition)


@router.post(
    "/deductions/seed-defaults",
    response_model=List[DeductionDefinitionResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create the default PAYE, pension, NHF and common voluntary deductions",
)
async def seed_default_deductions(
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    _require_deduction_admin(actor)
    service = DeductionService(db)
    created = await service.seed_defaults(created_by_id=actor.id)
    return [DeductionDefinitionResponse.model_validate(d) for d in created]


@router.post(
    "/deductions/{deduction_id}/enroll",
    response_model=EnrollmentResponse,
    summary="Enrol an employee in a voluntary deduction",
)
async def enroll_in_deduction(
    data: EnrollmentRequest,
    deduction_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    """Employees may enrol themselves; payroll administrators may enrol anyone."""
    if data.user_id != actor.id and not actor.has_any(PAYROLL_ADMIN_CAPABILITIES):
        raise InsufficientCapabilityException(
            " or ".join(sorted(c.value for c in PAYROLL_ADMIN_CAPABILITIES)),
            message="You can only enrol yourself in a deduction",
        )
    service = DeductionService(db)
    enrollment = await service.enroll(deduction_id, data.user_id)
    return EnrollmentResponse.model_validate(enrollment)


# ===========================================
# BONUSES
# ===========================================

@router.post(
    "/bonuses",
    response_model=BonusResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a bonus for an employee",
)
async def create_bonus(
    data: BonusCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    """The bonus is paid with the payroll of its payment month once approved."""
    if not actor.has_any(DEDUCTION_ADMIN_CAPABILITIES):
        raise InsufficientCapabilityException(
            "HR_MANAGER or SUPER_ADMIN",
            message="Only HR managers and super admins can record bonuses",
        )
    service = BonusService(db)
    bonus = await service.create_bonus(data.model_dump(), created_by_id=actor.id)
    return BonusResponse.model_validate(bonus)


@router.post(
    "/bonuses/{bonus_id}/decision",
    response_model=BonusResponse,
    summary="Approve or reject a pending bonus",
)
async def decide_bonus(
    data: BonusDecision,
    bonus_id: uuid.UUID = Path(...),
    db: AsyncSession = Depends(get_async_session),
    actor: ActorContext = Depends(get_current_actor),
):
    if not actor.has_any(BONUS_APPROVER_CAPABILITIES):
        raise InsufficientCapabilityException(
            "FINANCE_DIRECTOR or SUPER_ADMIN",
            message="Only finance directors and super admins can approve bonuses",
        )
    service = BonusService(db)
    bonus = await service.decide_bonus(bonus_id, actor.id, data.approved)
    return BonusResponse.model_validate(bonus)
