"""
Payroll Workflow - Deduction Calculator

Pure statutory and voluntary deduction calculations. Nothing in this module
touches the database.

Default PAYE brackets (monthly gross salary):
- ₦0 - ₦300,000: 7%
- ₦300,001 - ₦600,000: 11%
- ₦600,001 - ₦1,100,000: 15%
- ₦1,100,001 - ₦1,600,000: 19%
- ₦1,600,001 - ₦3,200,000: 21%
- Above ₦3,200,000: 24%

Pension: 8% of basic salary.
NHF (National Housing Fund): 2.5% of basic salary.

A bracket starting at zero covers ``max`` naira; every other bracket covers
``max - min + 1`` naira. The open-ended last bracket absorbs the remainder.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from payroll_workflow.utils.error_handling import (
    InvalidCalculationMethodException,
    InvalidDeductionDefinitionException,
    InvalidInputException,
)


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

PENSION_RATE = Decimal("8")
NHF_RATE = Decimal("2.5")

PAYE_NAME = "PAYE"
PENSION_NAME = "Pension"
NHF_NAME = "NHF"

Number = Union[int, float, str, Decimal]


def to_money(value: Decimal) -> Decimal:
    """Round to kobo."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Coerce ``value`` to a non-negative Decimal.

    Raises InvalidInputException for None, booleans, non-numeric strings,
    NaN/infinity and negative numbers.
    """
    if value is None or isinstance(value, bool):
        raise InvalidInputException(field_name, value)
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInputException(field_name, value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInputException(field_name, value)
    if not amount.is_finite() or amount < 0:
        raise InvalidInputException(field_name, value)
    return amount


# ===========================================
# TAX BRACKETS
# ===========================================

@dataclass(frozen=True)
class TaxBracket:
    """Progressive tax bracket. ``max`` is None for the open top bracket."""
    min: Decimal
    max: Optional[Decimal]
    rate: Decimal

    @property
    def size(self) -> Optional[Decimal]:
        if self.max is None:
            return None
        if self.min == 0:
            return self.max
        return self.max - self.min + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": str(self.min),
            "max": None if self.max is None else str(self.max),
            "rate": str(self.rate),
        }


DEFAULT_PAYE_BRACKETS: List[TaxBracket] = [
    TaxBracket(Decimal("0"), Decimal("300000"), Decimal("7")),
    TaxBracket(Decimal("300001"), Decimal("600000"), Decimal("11")),
    TaxBracket(Decimal("600001"), Decimal("1100000"), Decimal("15")),
    TaxBracket(Decimal("1100001"), Decimal("1600000"), Decimal("19")),
    TaxBracket(Decimal("1600001"), Decimal("3200000"), Decimal("21")),
    TaxBracket(Decimal("3200001"), None, Decimal("24")),
]


def parse_brackets(
    raw: Optional[Sequence[Union[TaxBracket, Mapping[str, Any]]]],
    name: str = PAYE_NAME,
) -> List[TaxBracket]:
    """
    Parse and validate a bracket list.

    The list must be non-empty and ordered by ``min``, each bracket must start
    one naira after the previous one ends, rates must lie in [0, 100], and only
    the last bracket may (and must) be open-ended.
    """
    if not raw:
        raise InvalidDeductionDefinitionException(name, "tax bracket list is empty")

    brackets: List[TaxBracket] = []
    for index, item in enumerate(raw):
        if isinstance(item, TaxBracket):
            brackets.append(item)
            continue
        if not isinstance(item, Mapping) or "min" not in item or "rate" not in item:
            raise InvalidDeductionDefinitionException(name, f"bracket {index} must define min, max and rate")
        try:
            lower = Decimal(str(item["min"]))
            upper = None if item.get("max") is None else Decimal(str(item["max"]))
            rate = Decimal(str(item["rate"]))
        except (InvalidOperation, ValueError):
            raise InvalidDeductionDefinitionException(name, f"bracket {index} has a non-numeric bound or rate")
        brackets.append(TaxBracket(lower, upper, rate))

    last = len(brackets) - 1
    for index, bracket in enumerate(brackets):
        if not bracket.min.is_finite() or bracket.min < 0:
            raise InvalidDeductionDefinitionException(name, f"bracket {index} has a negative minimum")
        if not bracket.rate.is_finite() or bracket.rate < 0 or bracket.rate > 100:
            raise InvalidDeductionDefinitionException(name, f"bracket {index} rate must be between 0 and 100")
        if bracket.max is None and index != last:
            raise InvalidDeductionDefinitionException(name, "only the last bracket may be open-ended")
        if bracket.max is not None and bracket.max < bracket.min:
            raise InvalidDeductionDefinitionException(name, f"bracket {index} max is below its min")
        if index > 0:
            previous = brackets[index - 1]
            if bracket.min != previous.max + 1:
                raise InvalidDeductionDefinitionException(
                    name, f"bracket {index} must start at {previous.max + 1}, got {bracket.min}"
                )

    if brackets[last].max is not None:
        raise InvalidDeductionDefinitionException(name, "the last bracket must be open-ended (max = null)")

    return brackets


# ===========================================
# RESULT TYPES
# ===========================================

@dataclass
class StatutoryDeductions:
    """PAYE, pension and NHF for one payroll."""
    paye: Decimal = ZERO
    pension: Decimal = ZERO
    nhf: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return to_money(self.paye + self.pension + self.nhf)

    def to_dict(self) -> Dict[str, str]:
        return {
            "paye": str(self.paye),
            "pension": str(self.pension),
            "nhf": str(self.nhf),
            "total": str(self.total),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StatutoryDeductions":
        return cls(
            paye=to_money(to_amount(data.get("paye", 0), "paye")),
            pension=to_money(to_amount(data.get("pension", 0), "pension")),
            nhf=to_money(to_amount(data.get("nhf", 0), "nhf")),
        )


@dataclass
class PayLine:
    """An allowance or voluntary deduction line."""
    name: str
    amount: Decimal
    calculation_method: str
    value: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "amount": str(self.amount),
            "calculation_method": self.calculation_method,
            "value": str(self.value),
        }


@dataclass
class DeductionResult:
    """Statutory plus voluntary deductions with the merged breakdown."""
    statutory: StatutoryDeductions
    voluntary: List[PayLine]
    breakdown: List[Dict[str, str]]

    @property
    def total_voluntary(self) -> Decimal:
        return to_money(sum((line.amount for line in self.voluntary), ZERO))

    @property
    def total(self) -> Decimal:
        return to_money(self.statutory.total + self.total_voluntary)


@dataclass
class PayrollComputation:
    """Complete pay snapshot for one employee and period."""
    basic_salary: Decimal
    allowances: List[PayLine]
    deductions: DeductionResult
    paye_bands: List[Dict[str, str]] = field(default_factory=list)
    bonuses: List[PayLine] = field(default_factory=list)

    @property
    def total_allowances(self) -> Decimal:
        return to_money(sum((line.amount for line in self.allowances), ZERO))

    @property
    def total_bonuses(self) -> Decimal:
        return to_money(sum((line.amount for line in self.bonuses), ZERO))

    @property
    def gross_pay(self) -> Decimal:
        return to_money(self.basic_salary + self.total_allowances + self.total_bonuses)

    @property
    def total_deductions(self) -> Decimal:
        return self.deductions.total

    @property
    def net_pay(self) -> Decimal:
        return to_money(self.gross_pay - self.total_deductions)

    def totals(self) -> Dict[str, str]:
        return {
            "basic_salary": str(self.basic_salary),
            "gross_pay": str(self.gross_pay),
            "total_allowances": str(self.total_allowances),
            "total_bonuses": str(self.total_bonuses),
            "total_deductions": str(self.total_deductions),
            "net_pay": str(self.net_pay),
        }


# ===========================================
# COMPONENTS
# ===========================================

def calculate_component(name: str, method: Any, value: Any, salary: Decimal) -> Decimal:
    """
    Amount for a fixed or percentage component.

    fixed -> value; percentage -> salary * value / 100.
    """
    method_value = getattr(method, "value", method)
    amount = to_amount(value, f"{name}.value")
    if method_value == "fixed":
        return to_money(amount)
    if method_value == "percentage":
        return to_money(salary * amount / 100)
    raise InvalidCalculationMethodException(method_value, name)


def _lines(
    components: Iterable[Mapping[str, Any]],
    salary: Decimal,
) -> List[PayLine]:
    lines = []
    for component in components:
        name = component.get("name") or "Unnamed"
        method = component.get("calculation_method", component.get("calculationMethod"))
        value = component.get("value", component.get("amount"))
        method_value = getattr(method, "value", method)
        lines.append(PayLine(
            name=name,
            amount=calculate_component(name, method_value, value, salary),
            calculation_method=str(method_value),
            value=to_amount(value, f"{name}.value"),
        ))
    return lines


def build_breakdown(
    statutory: Union[StatutoryDeductions, Mapping[str, Any]],
    voluntary: Iterable[Union[PayLine, Mapping[str, Any]]] = (),
) -> List[Dict[str, str]]:
    """
    Itemized deduction lines: PAYE, Pension, NHF, then voluntary lines.

    Deterministic in its inputs, so rebuilding from a stored record yields
    the same list.
    """
    if not isinstance(statutory, StatutoryDeductions):
        statutory = StatutoryDeductions.from_dict(statutory)

    breakdown = [
        {"name": PAYE_NAME, "type": "statutory", "amount": str(statutory.paye), "calculation_method": "progressive"},
        {"name": PENSION_NAME, "type": "statutory", "amount": str(statutory.pension), "calculation_method": "percentage"},
        {"name": NHF_NAME, "type": "statutory", "amount": str(statutory.nhf), "calculation_method": "percentage"},
    ]
    for line in voluntary:
        if isinstance(line, PayLine):
            name, amount, method = line.name, line.amount, line.calculation_method
        else:
            name = line.get("name") or "Unnamed"
            amount = to_money(to_amount(line.get("amount", 0), f"{name}.amount"))
            method = line.get("calculation_method") or "fixed"
        breakdown.append({
            "name": name,
            "type": "voluntary",
            "amount": str(amount),
            "calculation_method": str(method),
        })
    return breakdown


# ===========================================
# CALCULATOR
# ===========================================

class DeductionCalculator:
    """
    Statutory deduction calculator.

    Brackets and rates come from active deduction definitions when present,
    otherwise the defaults above.
    """

    def __init__(
        self,
        brackets: Optional[Sequence[Union[TaxBracket, Mapping[str, Any]]]] = None,
        pension_rate: Optional[Number] = None,
        nhf_rate: Optional[Number] = None,
    ):
        self.brackets = parse_brackets(brackets) if brackets is not None else list(DEFAULT_PAYE_BRACKETS)
        self.pension_rate = PENSION_RATE if pension_rate is None else to_amount(pension_rate, "pension_rate")
        self.nhf_rate = NHF_RATE if nhf_rate is None else to_amount(nhf_rate, "nhf_rate")

    def paye_bands(self, gross_salary: Number) -> List[Dict[str, str]]:
        """Per-bracket taxable amount and tax for ``gross_salary``."""
        remaining = to_amount(gross_salary, "gross_salary")
        bands = []
        for bracket in self.brackets:
            if remaining <= 0:
                break
            size = bracket.size
            taxable = remaining if size is None else min(remaining, size)
            bands.append({
                "min": str(bracket.min),
                "max": None if bracket.max is None else str(bracket.max),
                "rate": str(bracket.rate),
                "taxable_amount": str(taxable),
                "tax": str(taxable * bracket.rate / 100),
            })
            remaining -= taxable
        return bands

    def calculate_paye(self, gross_salary: Number) -> Decimal:
        """Progressive PAYE on gross salary."""
        total = sum((Decimal(band["tax"]) for band in self.paye_bands(gross_salary)), Decimal("0"))
        return to_money(total)

    def calculate_pension(self, basic_salary: Number) -> Decimal:
        return to_money(to_amount(basic_salary, "basic_salary") * self.pension_rate / 100)

    def calculate_nhf(self, basic_salary: Number) -> Decimal:
        return to_money(to_amount(basic_salary, "basic_salary") * self.nhf_rate / 100)

    def calculate_statutory(self, basic_salary: Number, gross_salary: Number) -> StatutoryDeductions:
        return StatutoryDeductions(
            paye=self.calculate_paye(gross_salary),
            pension=self.calculate_pension(basic_salary),
            nhf=self.calculate_nhf(basic_salary),
        )

    def calculate_voluntary(
        self,
        selections: Iterable[Mapping[str, Any]],
        salary: Number,
    ) -> List[PayLine]:
        """Voluntary deductions; percentage lines are taken of ``salary``."""
        return _lines(selections, to_amount(salary, "salary"))

    def calculate_deductions(
        self,
        basic_salary: Number,
        gross_salary: Number,
        voluntary: Iterable[Mapping[str, Any]] = (),
    ) -> DeductionResult:
        """Statutory + voluntary deductions and the merged breakdown."""
        basic = to_amount(basic_salary, "basic_salary")
        gross = to_amount(gross_salary, "gross_salary")
        statutory = self.calculate_statutory(basic, gross)
        voluntary_lines = self.calculate_voluntary(voluntary, basic)
        return DeductionResult(
            statutory=statutory,
            voluntary=voluntary_lines,
            breakdown=build_breakdown(statutory, voluntary_lines),
        )

    def compute_payroll(
        self,
        basic_salary: Number,
        allowances: Iterable[Mapping[str, Any]] = (),
        voluntary: Iterable[Mapping[str, Any]] = (),
        bonuses: Iterable[Mapping[str, Any]] = (),
    ) -> PayrollComputation:
        """
        Allowances, gross pay, deductions and net pay for one employee.

        Bonuses are paid on top of allowances and are taxed with them:
        PAYE is taken of basic + allowances + bonuses.
        """
        basic = to_money(to_amount(basic_salary, "basic_salary"))
        allowance_lines = _lines(allowances, basic)
        bonus_lines = _lines(bonuses, basic)
        gross = to_money(basic + sum((line.amount for line in allowance_lines + bonus_lines), ZERO))
        return PayrollComputation(
            basic_salary=basic,
            allowances=allowance_lines,
            deductions=self.calculate_deductions(basic, gross, voluntary),
            paye_bands=self.paye_bands(gross),
            bonuses=bonus_lines,
        )


# ===========================================
# DEFAULT COMPONENTS (seed data)
# ===========================================

STANDARD_ALLOWANCES: List[Dict[str, str]] = [
    {"name": "Housing", "calculation_method": "percentage", "value": "25"},
    {"name": "Transport", "calculation_method": "fixed", "value": "60000"},
    {"name": "Medical", "calculation_method": "fixed", "value": "40000"},
]

COMMON_VOLUNTARY_DEDUCTIONS: List[Dict[str, str]] = [
    {"name": "Loan Repayment", "calculation_method": "fixed", "value": "20000",
     "description": "Monthly loan repayment deduction"},
    {"name": "Union Dues", "calculation_method": "percentage", "value": "1",
     "description": "Staff union monthly dues"},
    {"name": "Insurance Premium", "calculation_method": "fixed", "value": "15000",
     "description": "Health insurance premium"},
    {"name": "Cooperative Contribution", "calculation_method": "percentage", "value": "5",
     "description": "Staff cooperative savings"},
]


# Module-level helpers using the default brackets and rates
_default_calculator = DeductionCalculator()


def calculate_paye(gross_salary: Number) -> Decimal:
    return _default_calculator.calculate_paye(gross_salary)


def calculate_pension(basic_salary: Number) -> Decimal:
    return _default_calculator.calculate_pension(basic_salary)


def calculate_nhf(basic_salary: Number) -> Decimal:
    return _default_calculator.calculate_nhf(basic_salary)


def calculate_statutory_deductions(basic_salary: Number, gross_salary: Number) -> StatutoryDeductions:
    return _default_calculator.calculate_statutory(basic_salary, gross_salary)
