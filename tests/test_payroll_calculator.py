"""
Payroll Engine - Payroll Calculator Tests

Unit tests for the pure payroll arithmetic.
"""

import pytest
from datetime import date
from decimal import Decimal

from payroll_engine.models.compensation import (
    CalculationMethod, DeductionCategory, DeductionKind, DeductionScope
)
from payroll_engine.models.payroll import PayrollFrequency
from payroll_engine.services.payroll_calculator import (
    DEFAULT_PAYE_BRACKETS,
    NET_PAY_NEGATIVE,
    OVERTIME_ITEM,
    DeductionComponent,
    EarningComponent,
    PayrollCalculator,
    TaxBracket,
    compute_pay_period,
)
from payroll_engine.utils.error_handling import (
    CalculationException, InvalidFrequencyException, InvalidPeriodException
)


def pension(rate="8"):
    return DeductionComponent(
        name="Pension",
        kind=DeductionKind.STATUTORY,
        category=DeductionCategory.PENSION,
        method=CalculationMethod.PERCENTAGE,
        value=Decimal(rate),
    )


def paye(brackets=()):
    return DeductionComponent(
        name="PAYE",
        kind=DeductionKind.STATUTORY,
        category=DeductionCategory.TAX,
        method=CalculationMethod.PROGRESSIVE,
        value=Decimal("0"),
        brackets=tuple(brackets),
    )


@pytest.fixture
def calculator():
    return PayrollCalculator()


class TestPayPeriod:
    """Period boundaries per frequency."""

    def test_monthly_period_in_leap_february(self):
        assert compute_pay_period(2, 2024, "monthly") == (date(2024, 2, 1), date(2024, 2, 29))

    def test_weekly_period_is_seven_days(self):
        start, end = compute_pay_period(1, 2026, PayrollFrequency.WEEKLY)
        assert start == date(2026, 1, 1)
        assert end == date(2026, 1, 7)

    def test_biweekly_period_is_fourteen_days(self):
        assert compute_pay_period(3, 2026, "biweekly") == (date(2026, 3, 1), date(2026, 3, 14))

    def test_quarterly_period_crosses_year_end(self):
        assert compute_pay_period(11, 2025, "quarterly") == (date(2025, 11, 1), date(2026, 1, 31))

    def test_annual_period(self):
        assert compute_pay_period(1, 2026, "annual") == (date(2026, 1, 1), date(2026, 12, 31))

    def test_invalid_month_rejected(self):
        with pytest.raises(InvalidPeriodException):
            compute_pay_period(13, 2026, "monthly")

    def test_invalid_frequency_rejected(self):
        with pytest.raises(InvalidFrequencyException):
            compute_pay_period(1, 2026, "fortnightly")


class TestPayrollTotals:
    """Gross, deduction and net identities."""

    def test_fixed_allowance_and_pension_on_basic(self, calculator):
        """Basic 300,000 + 20,000 allowance, pension 8% of basic."""
        totals = calculator.calculate(
            basic_salary=Decimal("300000"),
            allowances=[EarningComponent("Transport", CalculationMethod.FIXED, Decimal("20000"))],
            deductions=[pension()],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        assert totals.gross_earnings == Decimal("320000.00")
        assert totals.pension == Decimal("24000.00")
        assert totals.total_statutory == Decimal("24000.00")
        assert totals.total_deductions == Decimal("24000.00")
        assert totals.net_pay == Decimal("296000.00")
        assert totals.warnings == ()

    def test_gross_and_net_identities(self, calculator):
        totals = calculator.calculate(
            basic_salary="250000",
            allowances=[
                EarningComponent("Housing", CalculationMethod.PERCENTAGE, "20"),
                EarningComponent("Meal", CalculationMethod.FIXED, "15000.50"),
            ],
            deductions=[pension(), paye()],
            bonuses=[EarningComponent("Performance", CalculationMethod.FIXED, "10000")],
            frequency="monthly",
            month=6,
            year=2026,
        )

        assert totals.gross_earnings == (
            totals.basic_salary + totals.total_allowances + totals.total_bonuses
        )
        assert totals.net_pay == totals.gross_earnings - totals.total_deductions
        assert totals.total_allowances == Decimal("65000.50")

    def test_overtime_is_an_allowance_line(self, calculator):
        totals = calculator.calculate(
            basic_salary=Decimal("300000"),
            allowances=[EarningComponent("Transport", CalculationMethod.FIXED, Decimal("20000"))],
            deductions=[pension()],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
            overtime_amount="5000",
        )

        assert totals.overtime_amount == Decimal("5000.00")
        assert [i.name for i in totals.allowance_items] == ["Transport", OVERTIME_ITEM]
        assert totals.total_allowances == Decimal("25000.00")
        assert totals.gross_earnings == Decimal("325000.00")
        assert totals.gross_earnings == (
            totals.basic_salary + totals.total_allowances + totals.total_bonuses
        )
        assert totals.net_pay == Decimal("301000.00")

    def test_zero_overtime_adds_no_line(self, calculator):
        totals = calculator.calculate(
            basic_salary="300000",
            allowances=[],
            deductions=[],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        assert totals.allowance_items == ()
        assert totals.total_allowances == Decimal("0.00")

    def test_identical_inputs_give_identical_totals(self, calculator):
        kwargs = dict(
            basic_salary=Decimal("410000"),
            allowances=[EarningComponent("Transport", CalculationMethod.FIXED, Decimal("20000"))],
            deductions=[pension(), paye()],
            bonuses=[],
            frequency="monthly",
            month=4,
            year=2026,
        )

        assert calculator.calculate(**kwargs) == calculator.calculate(**kwargs)

    def test_percentage_allowance_uses_declared_base(self, calculator):
        totals = calculator.calculate(
            basic_salary=Decimal("100000"),
            allowances=[
                EarningComponent("Hazard", CalculationMethod.PERCENTAGE, Decimal("10"), Decimal("50000"))
            ],
            deductions=[],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        assert totals.total_allowances == Decimal("5000.00")

    def test_negative_net_pay_is_flagged_not_raised(self, calculator):
        totals = calculator.calculate(
            basic_salary=Decimal("50000"),
            allowances=[],
            deductions=[
                DeductionComponent(
                    "Salary Advance", DeductionKind.VOLUNTARY, DeductionCategory.LOAN,
                    CalculationMethod.FIXED, Decimal("80000"),
                )
            ],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        assert totals.net_pay == Decimal("-30000.00")
        assert NET_PAY_NEGATIVE in totals.warnings

    def test_deductions_are_classified(self, calculator):
        totals = calculator.calculate(
            basic_salary=Decimal("200000"),
            allowances=[],
            deductions=[
                DeductionComponent(
                    "NHF", DeductionKind.STATUTORY, DeductionCategory.HOUSING,
                    CalculationMethod.PERCENTAGE, Decimal("2.5"),
                ),
                DeductionComponent(
                    "NSITF", DeductionKind.STATUTORY, DeductionCategory.OTHER,
                    CalculationMethod.FIXED, Decimal("1000"),
                ),
                DeductionComponent(
                    "Car Loan", DeductionKind.VOLUNTARY, DeductionCategory.LOAN,
                    CalculationMethod.FIXED, Decimal("15000"),
                ),
                DeductionComponent(
                    "Cooperative", DeductionKind.VOLUNTARY, DeductionCategory.COOPERATIVE,
                    CalculationMethod.PERCENTAGE, Decimal("5"),
                ),
                DeductionComponent(
                    "Sports Club", DeductionKind.VOLUNTARY, DeductionCategory.GENERAL,
                    CalculationMethod.FIXED, Decimal("2000"),
                    scope=DeductionScope.DEPARTMENT,
                ),
            ],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        assert totals.nhf == Decimal("5000.00")
        assert [i.name for i in totals.other_statutory_items] == ["NSITF"]
        assert totals.total_statutory == Decimal("6000.00")
        assert [i.name for i in totals.loan_items] == ["Car Loan"]
        assert totals.other_voluntary_items[0].amount == Decimal("10000.00")
        assert [i.name for i in totals.department_items] == ["Sports Club"]
        assert totals.total_voluntary == Decimal("27000.00")
        assert totals.total_deductions == Decimal("33000.00")

    def test_record_fields_serialize_items(self, calculator):
        totals = calculator.calculate(
            basic_salary=Decimal("300000"),
            allowances=[EarningComponent("Transport", CalculationMethod.FIXED, Decimal("20000"))],
            deductions=[],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        fields = totals.record_fields()
        assert fields["allowance_items"] == [{"name": "Transport", "amount": "20000.00"}]
        assert fields["period_end"] == date(2026, 1, 31)


class TestProgressiveTax:
    """PAYE bands applied marginally to gross earnings."""

    def test_paye_uses_gross_earnings(self, calculator):
        totals = calculator.calculate(
            basic_salary=Decimal("300000"),
            allowances=[EarningComponent("Transport", CalculationMethod.FIXED, Decimal("20000"))],
            deductions=[paye()],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        # 300,000 @ 7% = 21,000; 20,000 @ 11% = 2,200
        assert totals.tax == Decimal("23200.00")

    def test_paye_top_band(self, calculator):
        totals = calculator.calculate(
            basic_salary=Decimal("4000000"),
            allowances=[],
            deductions=[paye(DEFAULT_PAYE_BRACKETS)],
            bonuses=[],
            frequency="annual",
            month=1,
            year=2026,
        )

        # 21,000 + 33,000 + 75,000 + 95,000 + 336,000 + 192,000
        assert totals.tax == Decimal("752000.00")

    def test_custom_brackets_from_configuration(self, calculator):
        brackets = [
            TaxBracket.from_dict({"min": 0, "max": 100000, "rate": 0}),
            TaxBracket.from_dict({"min": 100000, "max": None, "rate": 10}),
        ]
        totals = calculator.calculate(
            basic_salary=Decimal("150000"),
            allowances=[],
            deductions=[paye(brackets)],
            bonuses=[],
            frequency="monthly",
            month=1,
            year=2026,
        )

        assert totals.tax == Decimal("5000.00")

    def test_progressive_non_tax_without_brackets_fails(self, calculator):
        deduction = DeductionComponent(
            "Graduated Levy", DeductionKind.VOLUNTARY, DeductionCategory.OTHER,
            CalculationMethod.PROGRESSIVE, Decimal("0"),
        )
        with pytest.raises(CalculationException):
            calculator.calculate(
                basic_salary=Decimal("100000"),
                allowances=[],
                deductions=[deduction],
                bonuses=[],
                frequency="monthly",
                month=1,
                year=2026,
            )


class TestCalculationErrors:
    """Missing and negative inputs."""

    @pytest.mark.parametrize("basic", [None, Decimal("-1"), "abc"])
    def test_bad_basic_salary(self, calculator, basic):
        with pytest.raises(CalculationException):
            calculator.calculate(
                basic_salary=basic,
                allowances=[],
                deductions=[],
                bonuses=[],
                frequency="monthly",
                month=1,
                year=2026,
            )

    def test_negative_allowance_value(self, calculator):
        with pytest.raises(CalculationException):
            calculator.calculate(
                basic_salary=Decimal("100000"),
                allowances=[EarningComponent("Bad", CalculationMethod.FIXED, Decimal("-5"))],
                deductions=[],
                bonuses=[],
                frequency="monthly",
                month=1,
                year=2026,
            )

    def test_percentage_over_100(self, calculator):
        with pytest.raises(CalculationException):
            calculator.calculate(
                basic_salary=Decimal("100000"),
                allowances=[],
                deductions=[pension("101")],
                bonuses=[],
                frequency="monthly",
                month=1,
                year=2026,
            )
