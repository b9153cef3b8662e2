"""
Payroll Engine - Salary Resolver

Resolves everything the calculator needs for one employee and pay period:
the salary grade, applicable allowances, deductions and approved bonuses.

Read-only: nothing here adds, flushes or mutates rows.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_engine.models.compensation import (
    Allowance, ApprovalStatus, Bonus, Deduction, DeductionAssignment,
    DeductionDuration, DeductionScope, SalaryGrade,
)
from payroll_engine.models.employee import Employee
from payroll_engine.services.payroll_calculator import (
    DeductionComponent, EarningComponent, TaxBracket, compute_pay_period,
)
from payroll_engine.utils.error_handling import (
    CalculationException,
    EmployeeNotFoundException,
    MissingDeductionConfigurationException,
    NoActiveGradeForLevelException,
    NoGradeAssignedException,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSalaryInputs:
    """Calculator inputs for one employee and period."""

    employee_id: uuid.UUID
    department_id: Optional[uuid.UUID]
    salary_grade_id: uuid.UUID
    grade_level: str
    basic_salary: Any
    allowances: Tuple[EarningComponent, ...]
    deductions: Tuple[DeductionComponent, ...]
    bonuses: Tuple[EarningComponent, ...]
    period_start: date
    period_end: date


# ===========================================
# APPLICABILITY RULES
# ===========================================

def is_effective(effective: Optional[date], expiry: Optional[date], start: date, end: date) -> bool:
    """Effective on or before period end and not expired before period start."""
    if effective is not None and effective > end:
        return False
    if expiry is not None and expiry < start:
        return False
    return True


def allowance_applies(allowance: Allowance, employee: Employee, start: date, end: date) -> bool:
    if not allowance.is_active or allowance.approval_status != ApprovalStatus.APPROVED:
        return False
    if not is_effective(allowance.effective_date, allowance.expiry_date, start, end):
        return False

    targets = (allowance.employee_id, allowance.department_id, allowance.grade_level)
    if all(t is None for t in targets):
        return True
    if allowance.employee_id is not None and allowance.employee_id != employee.id:
        return False
    if allowance.department_id is not None and allowance.department_id != employee.department_id:
        return False
    if allowance.grade_level is not None and allowance.grade_level != employee.grade_level:
        return False
    return True


def deduction_applies(
    deduction: Deduction,
    employee: Employee,
    assigned_ids: Set[uuid.UUID],
    month: int,
    year: int,
    start: date,
    end: date,
) -> bool:
    if not deduction.is_active:
        return False
    if not is_effective(deduction.effective_date, deduction.expiry_date, start, end):
        return False
    if deduction.duration == DeductionDuration.ONE_OFF:
        if deduction.one_off_month != month or deduction.one_off_year != year:
            return False

    if deduction.scope == DeductionScope.COMPANY_WIDE:
        return True
    if deduction.scope == DeductionScope.DEPARTMENT:
        return deduction.department_id is not None and deduction.department_id == employee.department_id
    return deduction.id in assigned_ids


def bonus_applies(bonus: Bonus, start: date, end: date) -> bool:
    return (
        bonus.is_active
        and bonus.approval_status == ApprovalStatus.APPROVED
        and start <= bonus.payment_date <= end
    )


# ===========================================
# CONVERSIONS
# ===========================================

def grade_components(grade: SalaryGrade) -> List[EarningComponent]:
    return [
        EarningComponent(name=c.name, method=c.calculation_method, value=c.value)
        for c in sorted(grade.components, key=lambda c: c.sort_order)
        if c.is_active
    ]


def to_earning(row: Any) -> EarningComponent:
    name = getattr(row, "name", None) or getattr(row, "description", None) or row.bonus_type.value
    return EarningComponent(
        name=name,
        method=row.calculation_method,
        value=row.value,
        base_amount=getattr(row, "base_amount", None),
    )


def to_deduction(deduction: Deduction) -> DeductionComponent:
    brackets: Tuple[TaxBracket, ...] = ()
    if deduction.tax_brackets:
        try:
            brackets = tuple(TaxBracket.from_dict(b) for b in deduction.tax_brackets)
        except (CalculationException, AttributeError) as e:
            raise MissingDeductionConfigurationException(deduction.name, "valid tax brackets") from e
    return DeductionComponent(
        name=deduction.name,
        kind=deduction.kind,
        category=deduction.category,
        method=deduction.calculation_method,
        value=deduction.value,
        scope=deduction.scope,
        brackets=brackets,
    )


# ===========================================
# RESOLVER
# ===========================================

class SalaryResolver:
    """Loads salary configuration for an employee and period."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_employee(self, employee_id: uuid.UUID) -> Employee:
        employee = await self.db.get(Employee, employee_id)
        if employee is None:
            raise EmployeeNotFoundException(employee_id)
        return employee

    async def resolve(
        self,
        employee: Employee,
        month: int,
        year: int,
        frequency: Any,
        grade_id: Optional[uuid.UUID] = None,
    ) -> ResolvedSalaryInputs:
        """
        Resolve calculator inputs.

        Raises NoGradeAssignedException when the employee has no grade level
        and NoActiveGradeForLevelException when no active grade matches it.
        """
        start, end = compute_pay_period(month, year, frequency)
        grade = await self._resolve_grade(employee, grade_id)

        allowances = grade_components(grade)
        allowances.extend(
            to_earning(a) for a in await self._candidate_allowances(employee)
            if allowance_applies(a, employee, start, end)
        )

        assigned_ids = await self._assigned_deduction_ids(employee.id)
        deductions = [
            to_deduction(d) for d in await self._candidate_deductions(employee, assigned_ids)
            if deduction_applies(d, employee, assigned_ids, month, year, start, end)
        ]

        bonuses = [
            to_earning(b) for b in await self._candidate_bonuses(employee.id, start, end)
            if bonus_applies(b, start, end)
        ]

        logger.debug(
            f"Resolved salary inputs for employee {employee.id}: grade={grade.level}, "
            f"{len(allowances)} allowances, {len(deductions)} deductions, {len(bonuses)} bonuses"
        )

        return ResolvedSalaryInputs(
            employee_id=employee.id,
            department_id=employee.department_id,
            salary_grade_id=grade.id,
            grade_level=grade.level,
            basic_salary=grade.basic_salary,
            allowances=tuple(allowances),
            deductions=tuple(deductions),
            bonuses=tuple(bonuses),
            period_start=start,
            period_end=end,
        )

    async def _resolve_grade(self, employee: Employee, grade_id: Optional[uuid.UUID]) -> SalaryGrade:
        query = select(SalaryGrade).options(selectinload(SalaryGrade.components))

        if grade_id is not None:
            result = await self.db.execute(query.where(SalaryGrade.id == grade_id))
            grade = result.scalar_one_or_none()
            if grade is None or not grade.is_active:
                raise NoActiveGradeForLevelException(grade.level if grade else str(grade_id))
            return grade

        if not employee.grade_level:
            raise NoGradeAssignedException(employee.id)

        result = await self.db.execute(
            query.where(
                and_(
                    SalaryGrade.level == employee.grade_level,
                    SalaryGrade.is_active == True,  # noqa: E712
                )
            )
        )
        grade = result.scalar_one_or_none()
        if grade is None:
            raise NoActiveGradeForLevelException(employee.grade_level)
        return grade

    async def _candidate_allowances(self, employee: Employee) -> Iterable[Allowance]:
        result = await self.db.execute(
            select(Allowance).where(
                and_(
                    Allowance.is_active == True,  # noqa: E712
                    Allowance.approval_status == ApprovalStatus.APPROVED,
                    or_(
                        Allowance.employee_id == employee.id,
                        Allowance.department_id == employee.department_id,
                        Allowance.grade_level == employee.grade_level,
                        and_(
                            Allowance.employee_id.is_(None),
                            Allowance.department_id.is_(None),
                            Allowance.grade_level.is_(None),
                        ),
                    ),
                )
            ).order_by(Allowance.name)
        )
        return result.scalars().all()

    async def _assigned_deduction_ids(self, employee_id: uuid.UUID) -> Set[uuid.UUID]:
        result = await self.db.execute(
            select(DeductionAssignment.deduction_id).where(
                and_(
                    DeductionAssignment.employee_id == employee_id,
                    DeductionAssignment.is_active == True,  # noqa: E712
                )
            )
        )
        return set(result.scalars().all())

    async def _candidate_deductions(
        self, employee: Employee, assigned_ids: Set[uuid.UUID]
    ) -> Iterable[Deduction]:
        scope_filter = [Deduction.scope == DeductionScope.COMPANY_WIDE]
        if employee.department_id is not None:
            scope_filter.append(
                and_(
                    Deduction.scope == DeductionScope.DEPARTMENT,
                    Deduction.department_id == employee.department_id,
                )
            )
        if assigned_ids:
            scope_filter.append(
                and_(
                    Deduction.scope == DeductionScope.INDIVIDUAL,
                    Deduction.id.in_(assigned_ids),
                )
            )

        result = await self.db.execute(
            select(Deduction).where(
                and_(Deduction.is_active == True, or_(*scope_filter))  # noqa: E712
            ).order_by(Deduction.kind, Deduction.name)
        )
        return result.scalars().all()

    async def _candidate_bonuses(
        self, employee_id: uuid.UUID, start: date, end: date
    ) -> Iterable[Bonus]:
        result = await self.db.execute(
            select(Bonus).where(
                and_(
                    Bonus.employee_id == employee_id,
                    Bonus.is_active == True,  # noqa: E712
                    Bonus.approval_status == ApprovalStatus.APPROVED,
                    Bonus.payment_date >= start,
                    Bonus.payment_date <= end,
                )
            ).order_by(Bonus.payment_date)
        )
        return result.scalars().all()
