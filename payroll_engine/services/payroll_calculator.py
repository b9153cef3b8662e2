"""
Payroll Engine - Payroll Calculator

Pure payroll arithmetic: (basic salary, allowances, deductions, bonuses,
frequency, period) -> itemized totals. No I/O, no clock, no randomness, so
identical inputs always yield identical totals.

Calculation bases:
- Overtime is paid as an "Overtime" allowance line, so it counts towards
  total allowances and gross.
- Percentage allowances and bonuses use their declared base amount, or the
  basic salary when none is declared.
- Deductions in the `tax` category (PAYE) use gross earnings.
- Every other percentage or progressive deduction (pension, NHF, loans,
  voluntary and department deductions) uses the basic salary.

Default PAYE bands (applied marginally to the base):
- ₦0 - ₦300,000: 7%
- ₦300,000 - ₦600,000: 11%
- ₦600,000 - ₦1,100,000: 15%
- ₦1,100,000 - ₦1,600,000: 19%
- ₦1,600,000 - ₦3,200,000: 21%
- Above ₦3,200,000: 24%

Frequency only moves the period boundaries; salary figures are taken as
stored for that frequency and never scaled here.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from payroll_engine.models.compensation import (
    CalculationMethod, DeductionCategory, DeductionKind, DeductionScope
)
from payroll_engine.models.payroll import PayrollFrequency
from payroll_engine.utils.error_handling import (
    CalculationException, InvalidFrequencyException, validate_period
)


# ===========================================
# CONSTANTS
# ===========================================

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
MAX_PERCENTAGE = Decimal("100")

PENSION_EMPLOYEE_RATE = Decimal("8")  # 8% of basic
NHF_RATE = Decimal("2.5")  # 2.5% of basic

NET_PAY_NEGATIVE = "net_pay_negative"
OVERTIME_ITEM = "Overtime"

PERIOD_LENGTHS = {
    PayrollFrequency.WEEKLY: relativedelta(days=7),
    PayrollFrequency.BIWEEKLY: relativedelta(days=14),
    PayrollFrequency.MONTHLY: relativedelta(months=1),
    PayrollFrequency.QUARTERLY: relativedelta(months=3),
    PayrollFrequency.ANNUAL: relativedelta(years=1),
}


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Coerce a numeric input, rejecting missing, non-numeric and negative values."""
    if value is None:
        raise CalculationException(f"Missing required numeric input: {field_name}", field=field_name)
    if isinstance(value, bool):
        raise CalculationException(f"Invalid numeric input for {field_name}: {value}", field=field_name)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise CalculationException(f"Invalid numeric input for {field_name}: {value}", field=field_name)
    if not amount.is_finite():
        raise CalculationException(f"Invalid numeric input for {field_name}: {value}", field=field_name)
    if amount < 0:
        raise CalculationException(
            f"Negative value not allowed for {field_name}: {amount}",
            field=field_name,
            details={"value": str(amount)},
        )
    return amount


def parse_frequency(frequency: Any) -> PayrollFrequency:
    """Normalize a frequency given as enum or string."""
    if isinstance(frequency, PayrollFrequency):
        return frequency
    try:
        return PayrollFrequency(str(frequency).lower())
    except ValueError:
        raise InvalidFrequencyException(frequency, [f.value for f in PayrollFrequency])


def compute_pay_period(month: int, year: int, frequency: Any) -> Tuple[date, date]:
    """
    Pay period boundaries for (month, year, frequency).

    The period starts on the 1st of the month and ends the day before
    start + {7 days, 14 days, 1 month, 3 months, 1 year}.
    """
    validate_period(month, year)
    freq = parse_frequency(frequency)
    start = date(year, month, 1)
    end = start + PERIOD_LENGTHS[freq] - timedelta(days=1)
    return start, end


# ===========================================
# INPUT TYPES
# ===========================================

@dataclass(frozen=True)
class TaxBracket:
    """Progressive band. `upper` None means unbounded."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    def calculate_tax(self, base: Decimal) -> Decimal:
        """Tax on the slice of base falling inside this band."""
        if base <= self.lower:
            return Decimal("0")

        if self.upper is None:
            taxable_in_band = base - self.lower
        else:
            taxable_in_band = min(base, self.upper) - self.lower

        if taxable_in_band <= 0:
            return Decimal("0")

        return taxable_in_band * (self.rate / 100)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaxBracket":
        upper = data.get("max")
        return cls(
            lower=to_decimal(data.get("min", 0), "tax_brackets.min"),
            upper=to_decimal(upper, "tax_brackets.max") if upper is not None else None,
            rate=to_decimal(data.get("rate"), "tax_brackets.rate"),
        )


DEFAULT_PAYE_BRACKETS: Tuple[TaxBracket, ...] = (
    TaxBracket(Decimal("0"), Decimal("300000"), Decimal("7")),
    TaxBracket(Decimal("300000"), Decimal("600000"), Decimal("11")),
    TaxBracket(Decimal("600000"), Decimal("1100000"), Decimal("15")),
    TaxBracket(Decimal("1100000"), Decimal("1600000"), Decimal("19")),
    TaxBracket(Decimal("1600000"), Decimal("3200000"), Decimal("21")),
    TaxBracket(Decimal("3200000"), None, Decimal("24")),
)


@dataclass(frozen=True)
class EarningComponent:
    """Allowance or bonus as seen by the calculator."""
    name: str
    method: CalculationMethod
    value: Any
    base_amount: Optional[Any] = None


@dataclass(frozen=True)
class DeductionComponent:
    """Deduction as seen by the calculator."""
    name: str
    kind: DeductionKind
    category: DeductionCategory
    method: CalculationMethod
    value: Any
    scope: DeductionScope = DeductionScope.COMPANY_WIDE
    brackets: Tuple[TaxBracket, ...] = ()


@dataclass(frozen=True)
class LineItem:
    name: str
    amount: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "amount": str(self.amount)}


# ===========================================
# OUTPUT
# ===========================================

@dataclass(frozen=True)
class PayrollTotals:
    """Itemized result of one payroll computation."""

    frequency: PayrollFrequency
    period_start: date
    period_end: date

    basic_salary: Decimal
    overtime_amount: Decimal
    allowance_items: Tuple[LineItem, ...]
    bonus_items: Tuple[LineItem, ...]
    total_allowances: Decimal
    total_bonuses: Decimal
    gross_earnings: Decimal

    tax: Decimal
    pension: Decimal
    nhf: Decimal
    other_statutory_items: Tuple[LineItem, ...]
    total_statutory: Decimal

    loan_items: Tuple[LineItem, ...]
    other_voluntary_items: Tuple[LineItem, ...]
    department_items: Tuple[LineItem, ...]
    total_voluntary: Decimal

    total_deductions: Decimal
    net_pay: Decimal
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def record_fields(self) -> Dict[str, Any]:
        """Column values for a PayrollRecord."""

        def items(values: Sequence[LineItem]) -> List[Dict[str, str]]:
            return [item.to_dict() for item in values]

        return {
            "frequency": self.frequency,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "basic_salary": self.basic_salary,
            "overtime_amount": self.overtime_amount,
            "allowance_items": items(self.allowance_items),
            "bonus_items": items(self.bonus_items),
            "total_allowances": self.total_allowances,
            "total_bonuses": self.total_bonuses,
            "gross_earnings": self.gross_earnings,
            "tax": self.tax,
            "pension": self.pension,
            "nhf": self.nhf,
            "other_statutory_items": items(self.other_statutory_items),
            "total_statutory": self.total_statutory,
            "loan_items": items(self.loan_items),
            "other_voluntary_items": items(self.other_voluntary_items),
            "department_items": items(self.department_items),
            "total_voluntary": self.total_voluntary,
            "total_deductions": self.total_deductions,
            "net_pay": self.net_pay,
            "warnings": list(self.warnings),
        }


# ===========================================
# CALCULATOR
# ===========================================

class PayrollCalculator:
    """
    Stateless payroll calculator.

    Safe to share across requests and batch workers.
    """

    def __init__(self, default_tax_brackets: Sequence[TaxBracket] = DEFAULT_PAYE_BRACKETS):
        self.default_tax_brackets = tuple(default_tax_brackets)

    def calculate(
        self,
        basic_salary: Any,
        allowances: Sequence[EarningComponent],
        deductions: Sequence[DeductionComponent],
        bonuses: Sequence[EarningComponent],
        frequency: Any,
        month: int,
        year: int,
        overtime_amount: Any = ZERO,
    ) -> PayrollTotals:
        """Compute itemized totals for one employee and period."""
        freq = parse_frequency(frequency)
        period_start, period_end = compute_pay_period(month, year, freq)

        basic = _round(to_decimal(basic_salary, "basic_salary"))
        overtime = _round(to_decimal(overtime_amount, "overtime_amount"))

        allowance_items = tuple(self._earning(a, basic, "allowance") for a in allowances)
        if overtime > 0:
            allowance_items += (LineItem(OVERTIME_ITEM, overtime),)
        bonus_items = tuple(self._earning(b, basic, "bonus") for b in bonuses)
        total_allowances = sum((i.amount for i in allowance_items), ZERO)
        total_bonuses = sum((i.amount for i in bonus_items), ZERO)
        gross = basic + total_allowances + total_bonuses

        tax = pension = nhf = ZERO
        other_statutory: List[LineItem] = []
        loans: List[LineItem] = []
        other_voluntary: List[LineItem] = []
        department: List[LineItem] = []

        for deduction in deductions:
            base = gross if deduction.category == DeductionCategory.TAX else basic
            amount = self._deduction_amount(deduction, base)

            if deduction.kind == DeductionKind.STATUTORY:
                if deduction.category == DeductionCategory.TAX:
                    tax += amount
                elif deduction.category == DeductionCategory.PENSION:
                    pension += amount
                elif deduction.category == DeductionCategory.HOUSING:
                    nhf += amount
                else:
                    other_statutory.append(LineItem(deduction.name, amount))
            elif deduction.scope == DeductionScope.DEPARTMENT:
                department.append(LineItem(deduction.name, amount))
            elif deduction.category == DeductionCategory.LOAN:
                loans.append(LineItem(deduction.name, amount))
            else:
                other_voluntary.append(LineItem(deduction.name, amount))

        total_statutory = tax + pension + nhf + sum((i.amount for i in other_statutory), ZERO)
        total_voluntary = sum((i.amount for i in loans + other_voluntary + department), ZERO)
        total_deductions = total_statutory + total_voluntary
        net_pay = gross - total_deductions

        warnings = (NET_PAY_NEGATIVE,) if net_pay < 0 else ()

        return PayrollTotals(
            frequency=freq,
            period_start=period_start,
            period_end=period_end,
            basic_salary=basic,
            overtime_amount=overtime,
            allowance_items=allowance_items,
            bonus_items=bonus_items,
            total_allowances=total_allowances,
            total_bonuses=total_bonuses,
            gross_earnings=gross,
            tax=tax,
            pension=pension,
            nhf=nhf,
            other_statutory_items=tuple(other_statutory),
            total_statutory=total_statutory,
            loan_items=tuple(loans),
            other_voluntary_items=tuple(other_voluntary),
            department_items=tuple(department),
            total_voluntary=total_voluntary,
            total_deductions=total_deductions,
            net_pay=net_pay,
            warnings=warnings,
        )

    def _earning(self, component: EarningComponent, basic: Decimal, kind: str) -> LineItem:
        value = to_decimal(component.value, f"{kind}.{component.name}")

        if component.method == CalculationMethod.FIXED:
            return LineItem(component.name, _round(value))

        if component.method == CalculationMethod.PERCENTAGE:
            self._check_percentage(value, component.name)
            base = basic
            if component.base_amount is not None:
                base = to_decimal(component.base_amount, f"{kind}.{component.name}.base_amount")
            return LineItem(component.name, _round(base * value / 100))

        raise CalculationException(
            f"Unsupported calculation method '{component.method}' for {kind} '{component.name}'",
            field=kind,
        )

    def _deduction_amount(self, deduction: DeductionComponent, base: Decimal) -> Decimal:
        if deduction.method == CalculationMethod.FIXED:
            return _round(to_decimal(deduction.value, f"deduction.{deduction.name}"))

        if deduction.method == CalculationMethod.PERCENTAGE:
            value = to_decimal(deduction.value, f"deduction.{deduction.name}")
            self._check_percentage(value, deduction.name)
            return _round(base * value / 100)

        if deduction.method == CalculationMethod.PROGRESSIVE:
            brackets = deduction.brackets
            if not brackets and deduction.category == DeductionCategory.TAX:
                brackets = self.default_tax_brackets
            if not brackets:
                raise CalculationException(
                    f"Progressive deduction '{deduction.name}' has no tax brackets",
                    field="tax_brackets",
                )
            return _round(sum((b.calculate_tax(base) for b in brackets), Decimal("0")))

        raise CalculationException(
            f"Unsupported calculation method '{deduction.method}' for deduction '{deduction.name}'",
            field="calculation_method",
        )

    @staticmethod
    def _check_percentage(value: Decimal, name: str) -> None:
        if value > MAX_PERCENTAGE:
            raise CalculationException(
                f"Percentage for '{name}' exceeds 100: {value}",
                field="value",
                details={"value": str(value)},
            )
