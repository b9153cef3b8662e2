"""
Payroll Engine - Schemas Package

Pydantic schemas for request/response validation.
"""

from payroll_engine.schemas.payroll import (
    LineItem,
    PeriodRequest,
    ComputePayrollRequest,
    PayrollTotalsResponse,
    PayrollCreate,
    PayrollDraftUpdate,
    TransitionRequest,
    ApprovalEntryResponse,
    PayrollRecordResponse,
    BatchRunRequest,
    BatchSummaryResponse,
    BatchQueuedResponse,
    BankDetails,
    PaymentInitiateRequest,
    PaymentBatchRequest,
    PaymentBatchResponse,
    CancelRequest,
)
