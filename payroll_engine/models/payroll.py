"""
Payroll Engine - Payroll Models

Payroll records, their approval history, payment ledger entries and batch
summaries.

A payroll record is unique per (employee, month, year, frequency). Its
breakdown columns are populated at creation and are only editable while the
record is in DRAFT.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, func
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_engine.models.base import BaseModel, ActorStampMixin, money_column

if TYPE_CHECKING:
    from payroll_engine.models.employee import Employee


# ===========================================
# ENUMS
# ===========================================

class PayrollStatus(str, Enum):
    """Payroll record lifecycle status."""
    DRAFT = "draft"
    PROCESSING = "processing"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class PayrollFrequency(str, Enum):
    """Pay cadence."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class ApprovalLevel(str, Enum):
    """Approval level recorded against each history entry."""
    DEPARTMENT_HEAD = "department_head"
    HR_MANAGER = "hr_manager"
    FINANCE_DIRECTOR = "finance_director"
    SUPER_ADMIN = "super_admin"


class ApprovalAction(str, Enum):
    """Action recorded in the approval flow."""
    CREATE = "create"
    START_PROCESSING = "start_processing"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    INITIATE_PAYMENT = "initiate_payment"
    MARK_PAID = "mark_paid"
    MARK_FAILED = "mark_failed"
    CANCEL = "cancel"
    ARCHIVE = "archive"


class PaymentStatus(str, Enum):
    """Payment ledger entry status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Payment channel."""
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    MOBILE_MONEY = "mobile_money"
    OTHER = "other"


class BatchScope(str, Enum):
    """Target population of a batch run."""
    EMPLOYEE = "employee"
    DEPARTMENT = "department"
    ORGANIZATION = "organization"


# ===========================================
# PAYROLL RECORD
# ===========================================

class PayrollRecord(BaseModel, ActorStampMixin):
    """
    Payroll computed for one employee for one period and frequency.

    Item lists (allowances, bonuses, custom statutory, loans, other voluntary
    and department deductions) are JSON arrays of {"name", "amount"} objects.
    """

    __tablename__ = "payroll_records"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True,
    )
    salary_grade_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("salary_grades.id", ondelete="SET NULL"),
        nullable=True,
    )
    batch_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    # Period identity
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[PayrollFrequency] = mapped_column(
        SQLEnum(PayrollFrequency), nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Earnings
    basic_salary: Mapped[Decimal] = money_column()
    overtime_amount: Mapped[Decimal] = money_column("also carried as the Overtime allowance line")
    allowance_items: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    bonus_items: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    total_allowances: Mapped[Decimal] = money_column()
    total_bonuses: Mapped[Decimal] = money_column()
    gross_earnings: Mapped[Decimal] = money_column("basic + allowances + bonuses")

    # Statutory deductions
    tax: Mapped[Decimal] = money_column("PAYE")
    pension: Mapped[Decimal] = money_column()
    nhf: Mapped[Decimal] = money_column("National Housing Fund")
    other_statutory_items: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    total_statutory: Mapped[Decimal] = money_column()

    # Voluntary deductions
    loan_items: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    other_voluntary_items: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    department_items: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    total_voluntary: Mapped[Decimal] = money_column()

    total_deductions: Mapped[Decimal] = money_column()
    net_pay: Mapped[Decimal] = money_column("gross_earnings - total_deductions")
    warnings: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)

    status: Mapped[PayrollStatus] = mapped_column(
        SQLEnum(PayrollStatus),
        default=PayrollStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Payment details
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod), nullable=True,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, nullable=True,
    )
    payment_bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    payment_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    employee: Mapped["Employee"] = relationship(
        "Employee", back_populates="payroll_records"
    )
    approval_history: Mapped[List["PayrollApprovalEntry"]] = relationship(
        "PayrollApprovalEntry",
        back_populates="payroll",
        cascade="all, delete-orphan",
        order_by="PayrollApprovalEntry.sequence",
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="payroll",
        order_by="Payment.created_at",
    )

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "month", "year", "frequency",
            name="uq_payroll_employee_period_frequency",
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="payroll_month_range"),
    )

    def __repr__(self) -> str:
        return (
            f"<PayrollRecord(id={self.id}, employee={self.employee_id}, "
            f"period={self.year}-{self.month:02d}, status={self.status})>"
        )


class PayrollApprovalEntry(BaseModel):
    """
    One step of a payroll record's approval flow.

    Rows are only ever appended; `sequence` orders them within a record.
    """

    __tablename__ = "payroll_approval_entries"

    payroll_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("payroll_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[Optional[ApprovalLevel]] = mapped_column(SQLEnum(ApprovalLevel), nullable=True)
    status: Mapped[PayrollStatus] = mapped_column(SQLEnum(PayrollStatus), nullable=False)
    action: Mapped[ApprovalAction] = mapped_column(SQLEnum(ApprovalAction), nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payroll: Mapped["PayrollRecord"] = relationship(
        "PayrollRecord", back_populates="approval_history"
    )

    __table_args__ = (
        UniqueConstraint("payroll_id", "sequence", name="uq_payroll_approval_sequence"),
    )


# ===========================================
# PAYMENT LEDGER
# ===========================================

class Payment(BaseModel):
    """Payment ledger entry. A payroll record may accumulate several."""

    __tablename__ = "payments"

    payroll_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("payroll_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(SQLEnum(PaymentStatus), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod), default=PaymentMethod.BANK_TRANSFER, nullable=False,
    )
    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    processed_by_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, nullable=True)

    payroll: Mapped["PayrollRecord"] = relationship("PayrollRecord", back_populates="payments")


# ===========================================
# BATCH SUMMARY
# ===========================================

class PayrollBatchSummary(BaseModel):
    """
    Outcome of one batch invocation. Written once when the batch completes.
    """

    __tablename__ = "payroll_batch_summaries"

    batch_id: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True,
        comment="e.g. BATCH-202601-3f9a1c2e",
    )
    scope: Mapped[BatchScope] = mapped_column(SQLEnum(BatchScope), nullable=False)
    scope_target_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[PayrollFrequency] = mapped_column(SQLEnum(PayrollFrequency), nullable=False)

    processed_by_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    processing_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_attempted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_gross_pay: Mapped[Decimal] = money_column(precision=18)
    total_deductions: Mapped[Decimal] = money_column(precision=18)
    total_net_pay: Mapped[Decimal] = money_column(precision=18)

    department_breakdown: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)
    employee_details: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    warnings: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    errors: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "processed + skipped + failed = total_attempted",
            name="batch_counts_consistent",
        ),
    )
