"""
Payroll Workflow - Deduction Definition Service

Loads deduction definitions into a DeductionCalculator, resolves the
voluntary deductions applying to an employee, seeds the default definitions
and manages employee enrolment.
"""

import uuid
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.config import settings
from payroll_workflow.models.deduction import (
    CalculationMethod,
    DeductionDefinition,
    DeductionEnrollment,
    DeductionScope,
    DeductionType,
)
from payroll_workflow.models.user import User
from payroll_workflow.services.deduction_calculator import (
    COMMON_VOLUNTARY_DEDUCTIONS,
    DEFAULT_PAYE_BRACKETS,
    NHF_NAME,
    PAYE_NAME,
    PENSION_NAME,
    DeductionCalculator,
    parse_brackets,
    to_amount,
)
from payroll_workflow.utils.error_handling import (
    ErrorCode,
    EmployeeNotFoundException,
    InvalidCalculationMethodException,
    InvalidDeductionDefinitionException,
    NotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


class DeductionService:
    """Service for deduction definitions and enrolments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # CALCULATOR CONFIGURATION
    # ===========================================

    async def get_calculator(self) -> DeductionCalculator:
        """
        Calculator configured from the active company-wide statutory definitions.

        Falls back to default brackets and the configured pension/NHF rates.
        """
        result = await self.db.execute(
            select(DeductionDefinition).where(and_(
                DeductionDefinition.deduction_type == DeductionType.STATUTORY,
                DeductionDefinition.scope == DeductionScope.COMPANY_WIDE,
                DeductionDefinition.is_active == True,  # noqa: E712
            ))
        )
        by_name = {d.name.strip().lower(): d for d in result.scalars().all()}

        paye = by_name.get(PAYE_NAME.lower())
        pension = by_name.get(PENSION_NAME.lower())
        nhf = by_name.get(NHF_NAME.lower())

        brackets = None
        if paye is not None:
            if paye.calculation_method != CalculationMethod.PROGRESSIVE:
                raise InvalidDeductionDefinitionException(paye.name, "PAYE must use the progressive method")
            brackets = parse_brackets(paye.tax_brackets, paye.name)

        return DeductionCalculator(
            brackets=brackets,
            pension_rate=pension.value if pension is not None else settings.pension_rate,
            nhf_rate=nhf.value if nhf is not None else settings.nhf_rate,
        )

    async def get_voluntary_selections(self, employee: User) -> List[Dict[str, Any]]:
        """
        Voluntary deductions applying to ``employee``.

        Active enrolments plus active voluntary definitions scoped company-wide
        or to the employee's department.
        """
        scope_filter = DeductionDefinition.scope == DeductionScope.COMPANY_WIDE
        if employee.department_id is not None:
            scope_filter = or_(
                scope_filter,
                and_(
                    DeductionDefinition.scope == DeductionScope.DEPARTMENT,
                    DeductionDefinition.department_id == employee.department_id,
                ),
            )
        scoped = await self.db.execute(
            select(DeductionDefinition).where(and_(
                DeductionDefinition.deduction_type == DeductionType.VOLUNTARY,
                DeductionDefinition.is_active == True,  # noqa: E712
                scope_filter,
            ))
        )
        enrolled = await self.db.execute(
            select(DeductionDefinition)
            .join(DeductionEnrollment, DeductionEnrollment.deduction_id == DeductionDefinition.id)
            .where(and_(
                DeductionEnrollment.user_id == employee.id,
                DeductionEnrollment.is_active == True,  # noqa: E712
                DeductionDefinition.deduction_type == DeductionType.VOLUNTARY,
                DeductionDefinition.is_active == True,  # noqa: E712
            ))
        )

        definitions: Dict[uuid.UUID, DeductionDefinition] = {}
        for definition in list(scoped.scalars().all()) + list(enrolled.scalars().all()):
            definitions.setdefault(definition.id, definition)

        return [
            {
                "name": d.name,
                "calculation_method": d.calculation_method.value,
                "value": str(d.value),
            }
            for d in sorted(definitions.values(), key=lambda d: d.name)
        ]

    # ===========================================
    # DEFINITIONS
    # ===========================================

    async def create_definition(
        self,
        data: Dict[str, Any],
        created_by_id: Optional[uuid.UUID] = None,
    ) -> DeductionDefinition:
        """Create a deduction definition after validating its method and brackets."""
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationException("Deduction name is required", field="name")

        try:
            method = CalculationMethod(data.get("calculation_method"))
        except ValueError:
            raise InvalidCalculationMethodException(data.get("calculation_method"), name)
        try:
            deduction_type = DeductionType(data.get("deduction_type", DeductionType.VOLUNTARY.value))
            scope = DeductionScope(data.get("scope", DeductionScope.COMPANY_WIDE.value))
        except ValueError as e:
            raise ValidationException(str(e), code=ErrorCode.INVALID_INPUT)

        brackets = None
        if method == CalculationMethod.PROGRESSIVE:
            brackets = [b.to_dict() for b in parse_brackets(data.get("tax_brackets"), name)]
        elif data.get("tax_brackets"):
            raise InvalidDeductionDefinitionException(name, "only progressive deductions carry tax brackets")

        if scope == DeductionScope.DEPARTMENT and not data.get("department_id"):
            raise ValidationException("Department-scoped deductions need a department_id", field="department_id")

        definition = DeductionDefinition(
            name=name,
            description=data.get("description"),
            deduction_type=deduction_type,
            calculation_method=method,
            value=to_amount(data.get("value", 0), "value"),
            tax_brackets=brackets,
            scope=scope,
            department_id=data.get("department_id"),
            is_active=data.get("is_active", True),
            created_by_id=created_by_id,
        )
        self.db.add(definition)
        await self.db.commit()
        await self.db.refresh(definition)

        logger.info(f"Created {deduction_type.value} deduction '{name}' ({method.value})")
        return definition

    async def seed_defaults(self, created_by_id: Optional[uuid.UUID] = None) -> List[DeductionDefinition]:
        """Create PAYE, Pension, NHF and the common voluntary deductions if missing."""
        result = await self.db.execute(select(DeductionDefinition.name))
        existing = {name.strip().lower() for name in result.scalars().all()}

        defaults: List[Dict[str, Any]] = [
            {
                "name": PAYE_NAME,
                "description": "Pay As You Earn income tax",
                "deduction_type": DeductionType.STATUTORY,
                "calculation_method": CalculationMethod.PROGRESSIVE,
                "value": Decimal("0"),
                "tax_brackets": [b.to_dict() for b in DEFAULT_PAYE_BRACKETS],
            },
            {
                "name": PENSION_NAME,
                "description": "Employee pension contribution (basic salary)",
                "deduction_type": DeductionType.STATUTORY,
                "calculation_method": CalculationMethod.PERCENTAGE,
                "value": Decimal(str(settings.pension_rate)),
            },
            {
                "name": NHF_NAME,
                "description": "National Housing Fund (basic salary)",
                "deduction_type": DeductionType.STATUTORY,
                "calculation_method": CalculationMethod.PERCENTAGE,
                "value": Decimal(str(settings.nhf_rate)),
            },
        ]
        for item in COMMON_VOLUNTARY_DEDUCTIONS:
            defaults.append({
                "name": item["name"],
                "description": item["description"],
                "deduction_type": DeductionType.VOLUNTARY,
                "calculation_method": CalculationMethod(item["calculation_method"]),
                "value": Decimal(item["value"]),
                "scope": DeductionScope.INDIVIDUAL,
            })

        created = []
        for item in defaults:
            if item["name"].lower() in existing:
                continue
            definition = DeductionDefinition(
                name=item["name"],
                description=item["description"],
                deduction_type=item["deduction_type"],
                calculation_method=item["calculation_method"],
                value=item["value"],
                tax_brackets=item.get("tax_brackets"),
                scope=item.get("scope", DeductionScope.COMPANY_WIDE),
                is_active=True,
                created_by_id=created_by_id,
            )
            self.db.add(definition)
            created.append(definition)

        await self.db.commit()
        logger.info(f"Seeded {len(created)} default deduction definitions")
        return created

    # ===========================================
    # ENROLMENT
    # ===========================================

    async def enroll(self, deduction_id: uuid.UUID, user_id: uuid.UUID) -> DeductionEnrollment:
        """Opt an employee into a voluntary deduction (re-activating an old enrolment)."""
        definition = await self.db.get(DeductionDefinition, deduction_id)
        if definition is None or not definition.is_active:
            raise NotFoundException("Deduction", deduction_id, code=ErrorCode.DEDUCTION_NOT_FOUND)
        if definition.deduction_type != DeductionType.VOLUNTARY:
            raise ValidationException(
                f"'{definition.name}' is statutory; employees cannot enrol in it",
                field="deduction_id",
            )

        employee = await self.db.get(User, user_id)
        if employee is None:
            raise EmployeeNotFoundException(user_id)

        result = await self.db.execute(
            select(DeductionEnrollment).where(and_(
                DeductionEnrollment.user_id == user_id,
                DeductionEnrollment.deduction_id == deduction_id,
            ))
        )
        enrollment = result.scalar_one_or_none()
        if enrollment is None:
            enrollment = DeductionEnrollment(user_id=user_id, deduction_id=deduction_id, is_active=True)
            self.db.add(enrollment)
        else:
            enrollment.is_active = True

        await self.db.commit()
        await self.db.refresh(enrollment)

        logger.info(f"Enrolled user {user_id} in deduction '{definition.name}'")
        return enrollment
