"""
Payroll Workflow - Payroll Schemas

Pydantic schemas for payroll requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


# ===========================================
# ENUMS AS LITERALS
# ===========================================

PayrollStatusEnum = Literal["DRAFT", "PENDING", "APPROVED", "REJECTED", "PAID", "CANCELLED"]

PayrollFrequencyEnum = Literal["weekly", "biweekly", "monthly", "quarterly", "annual"]

ApprovalLevelEnum = Literal[
    "DRAFT", "DEPARTMENT_HEAD", "HR_MANAGER", "FINANCE_DIRECTOR", "SUPER_ADMIN", "COMPLETED"
]

CalculationMethodEnum = Literal["fixed", "percentage"]


# ===========================================
# CALCULATION PREVIEW
# ===========================================

class PayComponent(BaseModel):
    """Allowance or voluntary deduction input."""
    name: str = Field(..., min_length=1, max_length=100)
    calculation_method: CalculationMethodEnum
    value: Decimal = Field(..., ge=0)


class BonusComponent(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)


class CalculationRequest(BaseModel):
    """Compute a payroll without saving it."""
    basic_salary: Decimal = Field(..., ge=0)
    allowances: List[PayComponent] = Field(default_factory=list)
    voluntary_deductions: List[PayComponent] = Field(default_factory=list)
    bonuses: List[BonusComponent] = Field(default_factory=list)


class CalculationResponse(BaseModel):
    basic_salary: Decimal
    allowances: List[Dict[str, Any]]
    total_allowances: Decimal
    bonuses: List[Dict[str, Any]]
    total_bonuses: Decimal
    gross_pay: Decimal
    statutory_deductions: Dict[str, str]
    voluntary_deductions: List[Dict[str, Any]]
    deduction_breakdown: List[Dict[str, Any]]
    paye_bands: List[Dict[str, Any]]
    total_deductions: Decimal
    net_pay: Decimal


# ===========================================
# PAYROLL RECORDS
# ===========================================

class PayrollCreate(BaseModel):
    """Create a payroll for one employee."""
    employee_id: UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    frequency: PayrollFrequencyEnum = "monthly"
    department_id: Optional[UUID] = None
    remarks: Optional[str] = Field(None, max_length=1000)


class PayrollBatchCreate(BaseModel):
    """Create payrolls for an explicit list of employees."""
    employee_ids: List[UUID] = Field(..., min_length=1)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    frequency: PayrollFrequencyEnum = "monthly"
    department_id: Optional[UUID] = None
    remarks: Optional[str] = Field(None, max_length=1000)


class DepartmentPayrollProcess(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    frequency: PayrollFrequencyEnum = "monthly"
    remarks: Optional[str] = Field(None, max_length=1000)


class WorkflowActionRequest(BaseModel):
    """Remarks attached to an approval-flow action."""
    remarks: Optional[str] = Field(None, max_length=1000)


class SubmitPayrollRequest(WorkflowActionRequest):
    # Free text so an unknown frequency reaches the service's own validation
    frequency: Optional[str] = None


class PaymentRequest(BaseModel):
    """Bank details for payment; omitted fields come from the employee."""
    account_name: Optional[str] = Field(None, max_length=200)
    account_number: Optional[str] = Field(None, max_length=30)
    bank_name: Optional[str] = Field(None, max_length=100)


class BulkSubmitRequest(BaseModel):
    """Submit by explicit IDs, or by department and period."""
    payroll_ids: Optional[List[UUID]] = None
    department_id: Optional[UUID] = None
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=2000, le=2100)
    remarks: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_target(self) -> "BulkSubmitRequest":
        if self.payroll_ids is None and not (self.department_id and self.month and self.year):
            raise ValueError("Provide payroll_ids, or department_id with month and year")
        return self


class DepartmentActionRequest(BaseModel):
    """Approve or reject a department's payrolls for a period."""
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    level: Optional[ApprovalLevelEnum] = None
    remarks: Optional[str] = Field(None, max_length=1000)

    @field_validator("level")
    @classmethod
    def check_actionable_level(cls, v: Optional[str]) -> Optional[str]:
        if v in ("DRAFT", "COMPLETED"):
            raise ValueError(f"No approval action is possible at level {v}")
        return v


class ApprovalFlow(BaseModel):
    current_level: ApprovalLevelEnum
    history: List[Dict[str, Any]]


class PayrollTotals(BaseModel):
    gross_pay: Decimal
    total_allowances: Decimal
    total_bonuses: Decimal = Decimal("0")
    total_deductions: Decimal
    net_pay: Decimal


class PayrollDeductions(BaseModel):
    statutory: Dict[str, Any]
    voluntary: List[Dict[str, Any]]
    breakdown: Optional[List[Dict[str, Any]]] = None


class PayrollResponse(BaseModel):
    """Payroll record as stored."""
    id: UUID
    employee_id: UUID
    department_id: UUID
    salary_grade_id: Optional[UUID] = None
    month: int
    year: int
    frequency: PayrollFrequencyEnum
    status: PayrollStatusEnum
    basic_salary: Decimal
    allowances: List[Dict[str, Any]]
    bonuses: List[Dict[str, Any]] = Field(default_factory=list)
    deductions: PayrollDeductions
    totals: PayrollTotals
    approval_flow: ApprovalFlow
    submitted_by_id: Optional[UUID] = None
    submitted_at: Optional[datetime] = None
    rejected_by_id: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    remarks: Optional[str] = None
    payment_details: Optional[Dict[str, Any]] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def group_record_fields(cls, data: Any) -> Any:
        """Group the flat ORM columns into deductions/totals/approval_flow."""
        if isinstance(data, dict):
            return data
        return {
            "id": data.id,
            "employee_id": data.employee_id,
            "department_id": data.department_id,
            "salary_grade_id": data.salary_grade_id,
            "month": data.month,
            "year": data.year,
            "frequency": getattr(data.frequency, "value", data.frequency),
            "status": getattr(data.status, "value", data.status),
            "basic_salary": data.basic_salary,
            "allowances": data.allowances or [],
            "bonuses": data.bonuses or [],
            "deductions": {
                "statutory": data.statutory_deductions or {},
                "voluntary": data.voluntary_deductions or [],
                "breakdown": data.deduction_breakdown,
            },
            "totals": {
                "gross_pay": data.gross_pay,
                "total_allowances": data.total_allowances,
                "total_bonuses": data.total_bonuses if data.total_bonuses is not None else Decimal("0"),
                "total_deductions": data.total_deductions,
                "net_pay": data.net_pay,
            },
            "approval_flow": {
                "current_level": getattr(data.current_level, "value", data.current_level),
                "history": data.approval_history or [],
            },
            "submitted_by_id": data.submitted_by_id,
            "submitted_at": data.submitted_at,
            "rejected_by_id": data.rejected_by_id,
            "rejected_at": data.rejected_at,
            "remarks": data.remarks,
            "payment_details": data.payment_details,
            "paid_at": data.paid_at,
            "created_at": data.created_at,
            "updated_at": data.updated_at,
        }


class PayrollListResponse(BaseModel):
    items: List[PayrollResponse]
    total: int
    page: int
    per_page: int


# ===========================================
# SUMMARIES
# ===========================================

class SummaryItem(BaseModel):
    code: str
    item_id: Optional[str] = None
    message: str


class SummaryDetail(BaseModel):
    item_id: Optional[str] = None
    status: Literal["SUCCESS", "SKIPPED", "FAILED"]
    payroll_id: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None


class ProcessingSummaryResponse(BaseModel):
    """Aggregate outcome of a batch operation."""
    total_attempted: int
    processed: int
    skipped: int
    failed: int
    errors: List[SummaryItem]
    warnings: List[SummaryItem]
    details: List[SummaryDetail]


class PayrollActionResponse(BaseModel):
    """Single-record action result with any non-fatal warnings."""
    record: PayrollResponse
    warnings: List[SummaryItem] = Field(default_factory=list)


class PayrollCreateResponse(BaseModel):
    record: PayrollResponse
    summary: ProcessingSummaryResponse


class BatchResponse(BaseModel):
    summary: ProcessingSummaryResponse


# ===========================================
# DEDUCTION DEFINITIONS
# ===========================================

class TaxBracketInput(BaseModel):
    min: Decimal = Field(..., ge=0)
    max: Optional[Decimal] = None
    rate: Decimal = Field(..., ge=0, le=100)


class DeductionDefinitionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    deduction_type: Literal["statutory", "voluntary"] = "voluntary"
    calculation_method: Literal["fixed", "percentage", "progressive"]
    value: Decimal = Field(default=Decimal("0"), ge=0)
    tax_brackets: Optional[List[TaxBracketInput]] = None
    scope: Literal["company_wide", "department", "individual"] = "company_wide"
    department_id: Optional[UUID] = None
    is_active: bool = True


class DeductionDefinitionResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    deduction_type: str
    calculation_method: str
    value: Decimal
    tax_brackets: Optional[List[Dict[str, Any]]] = None
    scope: str
    department_id: Optional[UUID] = None
    is_active: bool

    class Config:
        from_attributes = True

    @field_validator("deduction_type", "calculation_method", "scope", mode="before")
    @classmethod
    def enum_value(cls, v):
        return getattr(v, "value", v)


class EnrollmentRequest(BaseModel):
    user_id: UUID


class EnrollmentResponse(BaseModel):
    id: UUID
    user_id: UUID
    deduction_id: UUID
    is_active: bool

    class Config:
        from_attributes = True


# ===========================================
# BONUSES
# ===========================================

BonusTypeEnum = Literal[
    "performance", "thirteenth_month", "special", "achievement", "retention", "project"
]


class BonusCreate(BaseModel):
    """A one-off payment to an employee, paid with the payroll of its month."""
    employee_id: UUID
    bonus_type: BonusTypeEnum
    amount: Decimal = Field(..., gt=0)
    payment_date: date
    description: Optional[str] = Field(None, max_length=1000)


class BonusDecision(BaseModel):
    approved: bool = True


class BonusResponse(BaseModel):
    id: UUID
    employee_id: UUID
    bonus_type: str
    amount: Decimal
    payment_date: date
    description: Optional[str] = None
    approval_status: str
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    is_active: bool

    class Config:
        from_attributes = True

    @field_validator("bonus_type", "approval_status", mode="before")
    @classmethod
    def enum_value(cls, v):
        return getattr(v, "value", v)
