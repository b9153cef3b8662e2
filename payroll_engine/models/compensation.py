"""
Payroll Engine - Compensation Models

Salary grades, allowances, bonuses and deductions: the configuration a
payroll record is computed from.

Nigerian statutory deductions seeded as company-wide deductions:
1. PAYE: progressive bands applied to gross earnings
2. Pension: 8% of basic salary (employee contribution)
3. NHF: 2.5% of basic salary
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, func
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_engine.models.base import BaseModel, ActorStampMixin


# ===========================================
# ENUMS
# ===========================================

class CalculationMethod(str, Enum):
    """How a component's amount is derived from its value."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    PROGRESSIVE = "progressive"


class ApprovalStatus(str, Enum):
    """Approval status for allowances and bonuses."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DeductionKind(str, Enum):
    """Statutory (mandated) or voluntary withholding."""
    STATUTORY = "statutory"
    VOLUNTARY = "voluntary"


class DeductionCategory(str, Enum):
    """Deduction category. `TAX` items are computed against gross earnings."""
    TAX = "tax"
    PENSION = "pension"
    HOUSING = "housing"
    LOAN = "loan"
    TRANSPORT = "transport"
    COOPERATIVE = "cooperative"
    GENERAL = "general"
    OTHER = "other"


class DeductionScope(str, Enum):
    """Who a deduction applies to."""
    COMPANY_WIDE = "company_wide"
    DEPARTMENT = "department"
    INDIVIDUAL = "individual"


class DeductionDuration(str, Enum):
    """Ongoing deductions recur; one-off deductions apply to one period."""
    ONGOING = "ongoing"
    ONE_OFF = "one_off"


class AssignmentAction(str, Enum):
    """Deduction assignment history actions."""
    ASSIGNED = "assigned"
    REMOVED = "removed"


class BonusType(str, Enum):
    """Bonus types."""
    PERFORMANCE = "performance"
    THIRTEENTH_MONTH = "thirteenth_month"
    SPECIAL = "special"
    HOLIDAY = "holiday"
    RETENTION = "retention"
    PROJECT = "project"


# ===========================================
# SALARY GRADES
# ===========================================

class SalaryGrade(BaseModel, ActorStampMixin):
    """
    Salary grade (e.g. GL-04) with a basic salary and an ordered set of
    components. Percentage components resolve against the basic salary.
    """

    __tablename__ = "salary_grades"

    level: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    basic_salary: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False,
        comment="Basic salary stored for the pay frequency this grade is used with",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    components: Mapped[List["SalaryGradeComponent"]] = relationship(
        "SalaryGradeComponent",
        back_populates="salary_grade",
        cascade="all, delete-orphan",
        order_by="SalaryGradeComponent.sort_order",
    )

    __table_args__ = (
        CheckConstraint("basic_salary >= 0", name="salary_grade_basic_non_negative"),
    )


class SalaryGradeComponent(BaseModel):
    """Allowance component attached to a salary grade."""

    __tablename__ = "salary_grade_components"

    salary_grade_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("salary_grades.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    calculation_method: Mapped[CalculationMethod] = mapped_column(
        SQLEnum(CalculationMethod), nullable=False
    )
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    salary_grade: Mapped["SalaryGrade"] = relationship(
        "SalaryGrade", back_populates="components"
    )

    __table_args__ = (
        CheckConstraint("value >= 0", name="grade_component_value_non_negative"),
    )


# ===========================================
# ALLOWANCES & BONUSES
# ===========================================

class Allowance(BaseModel, ActorStampMixin):
    """
    Allowance outside the grade structure.

    Targeting: employee_id, department_id and grade_level narrow who receives
    it; all three empty means company-wide.
    """

    __tablename__ = "allowances"

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    grade_level: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    calculation_method: Mapped[CalculationMethod] = mapped_column(
        SQLEnum(CalculationMethod), default=CalculationMethod.FIXED, nullable=False
    )
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    base_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="Base for percentage allowances; basic salary when empty",
    )

    approval_status: Mapped[ApprovalStatus] = mapped_column(
        SQLEnum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class Bonus(BaseModel, ActorStampMixin):
    """Bonus awarded to an employee, paid in the period containing payment_date."""

    __tablename__ = "bonuses"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    bonus_type: Mapped[BonusType] = mapped_column(SQLEnum(BonusType), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    calculation_method: Mapped[CalculationMethod] = mapped_column(
        SQLEnum(CalculationMethod), default=CalculationMethod.FIXED, nullable=False
    )
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        SQLEnum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)


# ===========================================
# DEDUCTIONS
# ===========================================

class Deduction(BaseModel, ActorStampMixin):
    """
    Statutory or voluntary deduction.

    One-off deductions carry the (month, year) they apply to; ongoing ones
    apply from effective_date until expiry_date.
    """

    __tablename__ = "deductions"

    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    kind: Mapped[DeductionKind] = mapped_column(SQLEnum(DeductionKind), nullable=False)
    category: Mapped[DeductionCategory] = mapped_column(
        SQLEnum(DeductionCategory), default=DeductionCategory.GENERAL, nullable=False
    )
    scope: Mapped[DeductionScope] = mapped_column(
        SQLEnum(DeductionScope), default=DeductionScope.COMPANY_WIDE, nullable=False
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )

    calculation_method: Mapped[CalculationMethod] = mapped_column(
        SQLEnum(CalculationMethod), nullable=False
    )
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    # [{"min": 0, "max": 300000, "rate": 7}, ...]; max null means unbounded
    tax_brackets: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    duration: Mapped[DeductionDuration] = mapped_column(
        SQLEnum(DeductionDuration), default=DeductionDuration.ONGOING, nullable=False
    )
    one_off_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    one_off_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    assignments: Mapped[List["DeductionAssignment"]] = relationship(
        "DeductionAssignment",
        back_populates="deduction",
        cascade="all, delete-orphan",
    )
    assignment_history: Mapped[List["DeductionAssignmentEvent"]] = relationship(
        "DeductionAssignmentEvent",
        back_populates="deduction",
        cascade="all, delete-orphan",
        order_by="DeductionAssignmentEvent.occurred_at",
    )

    __table_args__ = (
        CheckConstraint("value >= 0", name="deduction_value_non_negative"),
        CheckConstraint(
            "calculation_method != 'PERCENTAGE' OR value <= 100",
            name="deduction_percentage_max_100",
        ),
        CheckConstraint(
            "scope != 'DEPARTMENT' OR department_id IS NOT NULL",
            name="deduction_department_scope_requires_department",
        ),
    )


class DeductionAssignment(BaseModel):
    """Current assignment of an individual deduction to an employee."""

    __tablename__ = "deduction_assignments"

    deduction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deductions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    deduction: Mapped["Deduction"] = relationship("Deduction", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("deduction_id", "employee_id", name="uq_deduction_assignment"),
    )


class DeductionAssignmentEvent(BaseModel):
    """Append-only log of assign/remove actions on a deduction."""

    __tablename__ = "deduction_assignment_events"

    deduction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deductions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    action: Mapped[AssignmentAction] = mapped_column(SQLEnum(AssignmentAction), nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    deduction: Mapped["Deduction"] = relationship(
        "Deduction", back_populates="assignment_history"
    )
