"""
Payroll Engine - Employee Models

Departments and the employee records payroll is computed for.
"""

import uuid
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import Boolean, ForeignKey, String, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_engine.models.base import BaseModel, ActorStampMixin

if TYPE_CHECKING:
    from payroll_engine.models.payroll import PayrollRecord


class EmploymentStatus(str, Enum):
    """Employment status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    OFFBOARDING = "offboarding"


class Department(BaseModel, ActorStampMixin):
    """Organizational department."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    employees: Mapped[List["Employee"]] = relationship(
        "Employee", back_populates="department"
    )


class Employee(BaseModel, ActorStampMixin):
    """
    Employee record.

    `grade_level` links the employee to a SalaryGrade by level; an employee
    without one cannot be paid.
    """

    __tablename__ = "employees"

    staff_code: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True,
        comment="Organization-assigned employee number",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    grade_level: Mapped[Optional[str]] = mapped_column(String(30), nullable=True, index=True)
    pay_frequency: Mapped[str] = mapped_column(String(20), default="monthly", nullable=False)

    employment_status: Mapped[EmploymentStatus] = mapped_column(
        SQLEnum(EmploymentStatus),
        default=EmploymentStatus.ACTIVE,
        nullable=False,
    )

    # Payment destination
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    department: Mapped[Optional["Department"]] = relationship(
        "Department", back_populates="employees"
    )
    payroll_records: Mapped[List["PayrollRecord"]] = relationship(
        "PayrollRecord", back_populates="employee"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def bank_details(self) -> dict:
        return {
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "account_name": self.account_name,
        }
