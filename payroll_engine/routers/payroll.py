"""
Payroll Engine - Payroll Router

API endpoints for payroll computation, approval flow, batches and payments.

Errors are raised as AppException subclasses and rendered by the handlers
registered in utils.error_handling. Batch endpoints (runs and payment
settlement) return 200 with an embedded per-item summary even when some or
all items failed.
"""

import uuid

from fastapi import APIRouter, Depends, Path, status

from payroll_engine.dependencies import get_current_actor, get_payroll_service
from payroll_engine.schemas.payroll import (
    BatchQueuedResponse,
    BatchRunRequest,
    BatchSummaryResponse,
    CancelRequest,
    ComputePayrollRequest,
    PaymentBatchRequest,
    PaymentBatchResponse,
    PaymentInitiateRequest,
    PayrollCreate,
    PayrollDraftUpdate,
    PayrollRecordResponse,
    PayrollTotalsResponse,
    TransitionRequest,
)
from payroll_engine.services.payroll_service import PayrollService
from payroll_engine.utils.error_handling import PermissionDeniedException
from payroll_engine.utils.permissions import Actor, PayrollPermission


router = APIRouter()


# ===========================================
# COMPUTATION ENDPOINTS
# ===========================================

@router.post(
    "/compute",
    response_model=PayrollTotalsResponse,
    summary="Compute payroll totals",
    description="Resolve salary configuration and compute totals for one employee without persisting.",
)
async def compute_payroll(
    data: ComputePayrollRequest,
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    totals = await service.compute_payroll(
        employee_id=data.employee_id,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        actor=actor,
        grade_id=data.grade_id,
        overtime_amount=data.overtime_amount,
    )
    return PayrollTotalsResponse.model_validate(totals)


# ===========================================
# RECORD ENDPOINTS
# ===========================================

@router.post(
    "/records",
    response_model=PayrollRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payroll record",
)
async def create_payroll(
    data: PayrollCreate,
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    """Create a DRAFT payroll. 409 if one already exists for the period."""
    record = await service.create_payroll(
        employee_id=data.employee_id,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        actor=actor,
        overtime_amount=data.overtime_amount,
        remarks=data.remarks,
    )
    return PayrollRecordResponse.model_validate(record)


@router.get(
    "/records/{payroll_id}",
    response_model=PayrollRecordResponse,
    summary="Get a payroll record",
)
async def get_payroll(
    payroll_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    record = await service.get_payroll(payroll_id, actor)
    return PayrollRecordResponse.model_validate(record)


@router.patch(
    "/records/{payroll_id}",
    response_model=PayrollRecordResponse,
    summary="Edit a DRAFT payroll",
)
async def update_payroll(
    data: PayrollDraftUpdate,
    payroll_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    record = await service.update_draft(payroll_id, data.changes(), actor)
    return PayrollRecordResponse.model_validate(record)


@router.post(
    "/records/{payroll_id}/transition",
    response_model=PayrollRecordResponse,
    summary="Transition a payroll",
    description="Move a payroll along the approval flow (process, submit, approve, reject).",
)
async def transition_payroll(
    data: TransitionRequest,
    payroll_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    record = await service.transition(payroll_id, data.target_status, actor, data.remarks)
    return PayrollRecordResponse.model_validate(record)


@router.post(
    "/records/{payroll_id}/cancel",
    response_model=PayrollRecordResponse,
    summary="Cancel a payroll",
)
async def cancel_payroll(
    data: CancelRequest,
    payroll_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    record = await service.cancel_payroll(payroll_id, actor, data.reason)
    return PayrollRecordResponse.model_validate(record)


@router.post(
    "/records/{payroll_id}/archive",
    response_model=PayrollRecordResponse,
    summary="Archive a payroll",
)
async def archive_payroll(
    payroll_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    record = await service.archive_payroll(payroll_id, actor)
    return PayrollRecordResponse.model_validate(record)


# ===========================================
# BATCH ENDPOINTS
# ===========================================

@router.post(
    "/batches",
    response_model=BatchSummaryResponse,
    summary="Run a payroll batch",
    description="Process every employee in scope. Per-employee failures are reported in the summary.",
)
async def run_batch(
    data: BatchRunRequest,
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    summary = await service.run_batch(
        scope=data.scope,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        actor=actor,
        target_id=data.target_id,
        employee_ids=data.employee_ids,
    )
    return BatchSummaryResponse.model_validate(summary)


@router.post(
    "/batches/queue",
    response_model=BatchQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a payroll batch",
    description="Run the batch in the background worker. Poll GET /batches/{batch_id} for the summary.",
)
async def queue_batch(
    data: BatchRunRequest,
    actor: Actor = Depends(get_current_actor),
):
    from payroll_engine.tasks.celery_tasks import run_payroll_batch_task

    if not actor.can(PayrollPermission.CREATE_PAYROLL):
        raise PermissionDeniedException(PayrollPermission.CREATE_PAYROLL.value, actor.id)

    task = run_payroll_batch_task.delay(
        scope=data.scope.value,
        month=data.month,
        year=data.year,
        frequency=data.frequency.value,
        actor_id=str(actor.id),
        actor_level=actor.level.value if actor.level else None,
        actor_permissions=sorted(p.value for p in actor.permissions),
        actor_email=actor.email,
        target_id=str(data.target_id) if data.target_id else None,
        employee_ids=[str(e) for e in data.employee_ids] if data.employee_ids else None,
    )
    return BatchQueuedResponse(task_id=task.id)


@router.get(
    "/batches/{batch_id}",
    response_model=BatchSummaryResponse,
    summary="Get a batch summary",
)
async def get_batch(
    batch_id: str = Path(..., max_length=64),
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    summary = await service.get_batch_summary(batch_id, actor)
    return BatchSummaryResponse.model_validate(summary)


# ===========================================
# PAYMENT ENDPOINTS
# ===========================================

@router.post(
    "/records/{payroll_id}/payment",
    response_model=PayrollRecordResponse,
    summary="Initiate payment",
    description="Move an APPROVED payroll to PENDING_PAYMENT and assign a payment reference.",
)
async def initiate_payment(
    data: PaymentInitiateRequest,
    payroll_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    record = await service.initiate_payment(
        payroll_id,
        actor,
        method=data.method,
        bank_details=data.bank_details.model_dump() if data.bank_details else None,
        notes=data.notes,
    )
    return PayrollRecordResponse.model_validate(record)


@router.post(
    "/payments/mark-paid",
    response_model=PaymentBatchResponse,
    summary="Mark payrolls paid",
)
async def mark_paid(
    data: PaymentBatchRequest,
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    result = await service.mark_paid(data.payroll_ids, actor)
    return PaymentBatchResponse(**result.to_dict())


@router.post(
    "/payments/mark-failed",
    response_model=PaymentBatchResponse,
    summary="Mark payrolls failed",
)
async def mark_failed(
    data: PaymentBatchRequest,
    service: PayrollService = Depends(get_payroll_service),
    actor: Actor = Depends(get_current_actor),
):
    result = await service.mark_failed(data.payroll_ids, actor, data.reason)
    return PaymentBatchResponse(**result.to_dict())
