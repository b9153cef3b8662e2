"""
Payroll Engine - Payroll Schemas

Pydantic schemas for payroll requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from payroll_engine.config import settings
from payroll_engine.models.payroll import (
    ApprovalAction, ApprovalLevel, BatchScope, PaymentMethod, PayrollFrequency, PayrollStatus,
)


# ===========================================
# SHARED
# ===========================================

class LineItem(BaseModel):
    """Named monetary line item."""
    model_config = ConfigDict(from_attributes=True)

    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)


class PeriodRequest(BaseModel):
    """Pay period selector."""
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    frequency: PayrollFrequency = PayrollFrequency(settings.payroll_default_frequency)


# ===========================================
# COMPUTATION SCHEMAS
# ===========================================

class ComputePayrollRequest(PeriodRequest):
    """Compute totals for one employee without persisting."""
    employee_id: UUID
    grade_id: Optional[UUID] = None
    overtime_amount: Decimal = Field(default=Decimal("0"), ge=0)


class PayrollTotalsResponse(BaseModel):
    """Itemized payroll computation."""
    model_config = ConfigDict(from_attributes=True)

    frequency: PayrollFrequency
    period_start: date
    period_end: date

    # Earnings
    basic_salary: Decimal
    overtime_amount: Decimal
    allowance_items: List[LineItem]
    bonus_items: List[LineItem]
    total_allowances: Decimal
    total_bonuses: Decimal
    gross_earnings: Decimal

    # Statutory
    tax: Decimal
    pension: Decimal
    nhf: Decimal
    other_statutory_items: List[LineItem]
    total_statutory: Decimal

    # Voluntary
    loan_items: List[LineItem]
    other_voluntary_items: List[LineItem]
    department_items: List[LineItem]
    total_voluntary: Decimal

    total_deductions: Decimal
    net_pay: Decimal
    warnings: List[str] = []


# ===========================================
# RECORD SCHEMAS
# ===========================================

class PayrollCreate(PeriodRequest):
    """Create a DRAFT payroll for one employee."""
    employee_id: UUID
    overtime_amount: Decimal = Field(default=Decimal("0"), ge=0)
    remarks: Optional[str] = Field(None, max_length=1000)


class PayrollDraftUpdate(BaseModel):
    """In-place edit of a DRAFT payroll. Only supplied fields change."""
    basic_salary: Optional[Decimal] = Field(None, ge=0)
    overtime_amount: Optional[Decimal] = Field(None, ge=0)
    tax: Optional[Decimal] = Field(None, ge=0)
    pension: Optional[Decimal] = Field(None, ge=0)
    nhf: Optional[Decimal] = Field(None, ge=0)

    allowance_items: Optional[List[LineItem]] = None
    bonus_items: Optional[List[LineItem]] = None
    other_statutory_items: Optional[List[LineItem]] = None
    loan_items: Optional[List[LineItem]] = None
    other_voluntary_items: Optional[List[LineItem]] = None
    department_items: Optional[List[LineItem]] = None

    payment_method: Optional[PaymentMethod] = None
    payment_bank_name: Optional[str] = Field(None, max_length=100)
    payment_account_number: Optional[str] = Field(None, max_length=20)
    payment_account_name: Optional[str] = Field(None, max_length=200)
    payment_notes: Optional[str] = None

    @model_validator(mode='after')
    def validate_not_empty(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be supplied")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class TransitionRequest(BaseModel):
    """Move a payroll along the approval flow."""
    target_status: PayrollStatus
    remarks: Optional[str] = Field(None, max_length=1000)


class ApprovalEntryResponse(BaseModel):
    """Approval history entry."""
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    level: Optional[ApprovalLevel] = None
    status: PayrollStatus
    action: ApprovalAction
    actor_id: UUID
    occurred_at: datetime
    remarks: Optional[str] = None


class PayrollRecordResponse(PayrollTotalsResponse):
    """Full payroll record."""
    id: UUID
    employee_id: UUID
    department_id: Optional[UUID] = None
    salary_grade_id: Optional[UUID] = None
    batch_id: Optional[str] = None
    month: int
    year: int
    status: PayrollStatus
    warnings: Optional[List[str]] = None

    # Payment
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    payment_bank_name: Optional[str] = None
    payment_account_number: Optional[str] = None
    payment_account_name: Optional[str] = None
    payment_notes: Optional[str] = None
    paid_at: Optional[datetime] = None

    approval_history: List[ApprovalEntryResponse] = []
    created_by_id: Optional[UUID] = None
    updated_by_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ===========================================
# BATCH SCHEMAS
# ===========================================

class BatchRunRequest(PeriodRequest):
    """Run payroll for an employee, a department or the organization."""
    scope: BatchScope = BatchScope.ORGANIZATION
    target_id: Optional[UUID] = None
    employee_ids: Optional[List[UUID]] = None

    @model_validator(mode='after')
    def validate_target(self):
        if self.scope == BatchScope.DEPARTMENT and self.target_id is None:
            raise ValueError("Department scope requires target_id")
        if self.scope == BatchScope.EMPLOYEE and not (self.target_id or self.employee_ids):
            raise ValueError("Employee scope requires target_id or employee_ids")
        return self


class BatchSummaryResponse(BaseModel):
    """Persisted batch summary."""
    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    scope: BatchScope
    scope_target_id: Optional[UUID] = None
    month: int
    year: int
    frequency: PayrollFrequency
    processed_by_id: UUID
    processing_time_ms: int
    total_attempted: int
    processed: int
    skipped: int
    failed: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    department_breakdown: Dict[str, Any] = {}
    employee_details: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    created_at: Optional[datetime] = None


class BatchQueuedResponse(BaseModel):
    """Batch handed to the background worker."""
    task_id: str
    status: str = "queued"


# ===========================================
# PAYMENT SCHEMAS
# ===========================================

class BankDetails(BaseModel):
    """Destination account for a payment."""
    bank_name: Optional[str] = Field(None, max_length=100)
    account_number: Optional[str] = Field(None, max_length=20)
    account_name: Optional[str] = Field(None, max_length=200)


class PaymentInitiateRequest(BaseModel):
    """Initiate payment for an APPROVED payroll."""
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    bank_details: Optional[BankDetails] = None
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentBatchRequest(BaseModel):
    """Settle several payrolls at once."""
    payroll_ids: List[UUID] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)


class PaymentBatchResponse(BaseModel):
    """Per-item settlement outcome."""
    total: int
    succeeded: List[Dict[str, Any]]
    failed: List[Dict[str, Any]]


class CancelRequest(BaseModel):
    """Cancel a payroll."""
    reason: Optional[str] = Field(None, max_length=1000)
