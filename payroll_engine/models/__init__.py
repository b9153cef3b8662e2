"""
Payroll Engine - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from payroll_engine.models.base import BaseModel, TimestampMixin, ActorStampMixin
from payroll_engine.models.employee import Department, Employee, EmploymentStatus
from payroll_engine.models.compensation import (
    CalculationMethod,
    ApprovalStatus,
    DeductionKind,
    DeductionCategory,
    DeductionScope,
    DeductionDuration,
    AssignmentAction,
    BonusType,
    SalaryGrade,
    SalaryGradeComponent,
    Allowance,
    Bonus,
    Deduction,
    DeductionAssignment,
    DeductionAssignmentEvent,
)
from payroll_engine.models.payroll import (
    PayrollStatus,
    PayrollFrequency,
    ApprovalLevel,
    ApprovalAction,
    PaymentStatus,
    PaymentMethod,
    BatchScope,
    PayrollRecord,
    PayrollApprovalEntry,
    Payment,
    PayrollBatchSummary,
)
from payroll_engine.models.audit import AuditAction, AuditLog, NotificationType, Notification

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "ActorStampMixin",
    # Employees
    "Department",
    "Employee",
    "EmploymentStatus",
    # Compensation
    "CalculationMethod",
    "ApprovalStatus",
    "DeductionKind",
    "DeductionCategory",
    "DeductionScope",
    "DeductionDuration",
    "AssignmentAction",
    "BonusType",
    "SalaryGrade",
    "SalaryGradeComponent",
    "Allowance",
    "Bonus",
    "Deduction",
    "DeductionAssignment",
    "DeductionAssignmentEvent",
    # Payroll
    "PayrollStatus",
    "PayrollFrequency",
    "ApprovalLevel",
    "ApprovalAction",
    "PaymentStatus",
    "PaymentMethod",
    "BatchScope",
    "PayrollRecord",
    "PayrollApprovalEntry",
    "Payment",
    "PayrollBatchSummary",
    # Audit
    "AuditAction",
    "AuditLog",
    "NotificationType",
    "Notification",
]
