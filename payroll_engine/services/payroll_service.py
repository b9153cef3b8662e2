"""
Payroll Engine - Payroll Service

Entry point used by the API and the Celery tasks. Wires the resolver,
calculator, store, state machine, batch processor and payment lifecycle
around one AsyncSession and owns the unit of work for single-record
operations: the business change is committed first, then the resulting
events are dispatched.
"""

import logging
import uuid
from typing import Any, Callable, Dict, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.payroll import (
    BatchScope, PaymentMethod, PayrollBatchSummary, PayrollRecord, PayrollStatus,
)
from payroll_engine.services.approval_state_machine import ApprovalStateMachine
from payroll_engine.services.audit_service import AuditService
from payroll_engine.services.batch_processor import BatchProcessor
from payroll_engine.services.event_dispatcher import EventDispatcher, commit_and_dispatch
from payroll_engine.services.notification_service import EmailQueue, NotificationService
from payroll_engine.services.payment_lifecycle import PaymentBatchResult, PaymentLifecycleManager
from payroll_engine.services.payroll_calculator import PayrollCalculator, PayrollTotals, parse_frequency
from payroll_engine.services.payroll_store import PayrollRecordStore, build_record
from payroll_engine.services.salary_resolver import SalaryResolver
from payroll_engine.utils.error_handling import (
    DuplicatePeriodException, NotFoundException, ValidationException, validate_period,
)
from payroll_engine.utils.permissions import Actor, PayrollPermission

logger = logging.getLogger(__name__)

# Targets owned by the payment lifecycle; they need a reference or ledger entry
PAYMENT_TARGETS = frozenset({
    PayrollStatus.PENDING_PAYMENT,
    PayrollStatus.PAID,
    PayrollStatus.FAILED,
})


def parse_status(value: Any) -> PayrollStatus:
    try:
        return PayrollStatus(value)
    except ValueError:
        raise ValidationException(
            f"Invalid payroll status: {value}",
            field="target_status",
            details={"allowed": [s.value for s in PayrollStatus]},
        )


class PayrollService:
    """
    Payroll service facade.

    Collaborators default to the DB-backed implementations and can be
    replaced for tests.
    """

    def __init__(
        self,
        db: AsyncSession,
        email_queue: Optional[EmailQueue] = None,
        session_factory: Optional[Callable[[], Any]] = None,
        calculator: Optional[PayrollCalculator] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.db = db
        self.resolver = SalaryResolver(db)
        self.calculator = calculator or PayrollCalculator()
        self.store = PayrollRecordStore(db)
        self.state_machine = ApprovalStateMachine()
        self.dispatcher = dispatcher or EventDispatcher(
            AuditService(db), NotificationService(db, email_queue),
        )
        self.batches = BatchProcessor(
            db, self.resolver, self.calculator, self.store, self.state_machine,
            self.dispatcher, session_factory=session_factory,
        )
        self.payments = PaymentLifecycleManager(db, self.store, self.state_machine, self.dispatcher)

    # ===========================================
    # COMPUTATION
    # ===========================================

    async def compute_payroll(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        frequency: Any,
        actor: Actor,
        grade_id: Optional[uuid.UUID] = None,
        overtime_amount: Any = 0,
    ) -> PayrollTotals:
        """Resolve and compute totals without persisting anything."""
        validate_period(month, year)
        freq = parse_frequency(frequency)
        self.state_machine.require_permission(actor, PayrollPermission.VIEW_PAYROLL)

        employee = await self.resolver.get_employee(employee_id)
        inputs = await self.resolver.resolve(employee, month, year, freq, grade_id=grade_id)
        return self.calculator.calculate(
            basic_salary=inputs.basic_salary,
            allowances=inputs.allowances,
            deductions=inputs.deductions,
            bonuses=inputs.bonuses,
            frequency=freq,
            month=month,
            year=year,
            overtime_amount=overtime_amount,
        )

    # ===========================================
    # RECORDS
    # ===========================================

    async def create_payroll(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        frequency: Any,
        actor: Actor,
        overtime_amount: Any = 0,
        remarks: Optional[str] = None,
    ) -> PayrollRecord:
        """
        Create a single DRAFT payroll record.

        Raises DuplicatePeriodException when one already exists for the
        employee, period and frequency. Configuration errors propagate.
        """
        validate_period(month, year)
        freq = parse_frequency(frequency)
        self.state_machine.require_permission(actor, PayrollPermission.CREATE_PAYROLL)

        employee = await self.resolver.get_employee(employee_id)
        if await self.store.exists(employee.id, month, year, freq):
            raise DuplicatePeriodException(employee.id, month, year, freq.value)

        inputs = await self.resolver.resolve(employee, month, year, freq)
        totals = self.calculator.calculate(
            basic_salary=inputs.basic_salary,
            allowances=inputs.allowances,
            deductions=inputs.deductions,
            bonuses=inputs.bonuses,
            frequency=freq,
            month=month,
            year=year,
            overtime_amount=overtime_amount,
        )

        record = build_record(employee, inputs, totals, month, year)
        events = self.state_machine.initialize(
            record, actor, PayrollStatus.DRAFT, remarks=remarks, employee=employee,
        )
        await self.store.create(record)
        await commit_and_dispatch(self.db, self.dispatcher, events)
        return record

    async def get_payroll(self, payroll_id: uuid.UUID, actor: Actor) -> PayrollRecord:
        self.state_machine.require_permission(actor, PayrollPermission.VIEW_PAYROLL)
        return await self.store.get(payroll_id)

    async def transition(
        self,
        payroll_id: uuid.UUID,
        target: Any,
        actor: Actor,
        remarks: Optional[str] = None,
    ) -> PayrollRecord:
        """
        Approval flow transitions.

        Payment states go through the payment lifecycle so that references
        and ledger entries are written; cancel and archive are delegated.
        """
        target_status = parse_status(target)
        if target_status == PayrollStatus.CANCELLED:
            return await self.payments.cancel(payroll_id, actor, remarks)
        if target_status == PayrollStatus.ARCHIVED:
            return await self.payments.archive(payroll_id, actor)

        record = await self.store.get(payroll_id)
        if target_status in PAYMENT_TARGETS and self.state_machine.can_transition(record.status, target_status):
            raise ValidationException(
                f"Use the payment operations to move a payroll to '{target_status.value}'",
                field="target_status",
            )
        events = self.state_machine.transition(record, target_status, actor, remarks=remarks)
        await self.store.save(record)
        await commit_and_dispatch(self.db, self.dispatcher, events)
        return record

    async def update_draft(
        self,
        payroll_id: uuid.UUID,
        changes: Dict[str, Any],
        actor: Actor,
    ) -> PayrollRecord:
        record = await self.store.get(payroll_id)
        events = self.state_machine.update_draft(record, changes, actor)
        await self.store.save(record)
        await commit_and_dispatch(self.db, self.dispatcher, events)
        return record

    # ===========================================
    # BATCHES
    # ===========================================

    async def run_batch(
        self,
        scope: Any,
        month: int,
        year: int,
        frequency: Any,
        actor: Actor,
        target_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> PayrollBatchSummary:
        try:
            batch_scope = BatchScope(scope)
        except ValueError:
            raise ValidationException(f"Invalid batch scope: {scope}", field="scope")
        return await self.batches.run(
            batch_scope, month, year, frequency, actor,
            target_id=target_id, employee_ids=employee_ids,
        )

    async def get_batch_summary(self, batch_id: str, actor: Actor) -> PayrollBatchSummary:
        self.state_machine.require_permission(actor, PayrollPermission.VIEW_PAYROLL)
        result = await self.db.execute(
            select(PayrollBatchSummary).where(PayrollBatchSummary.batch_id == batch_id)
        )
        summary = result.scalar_one_or_none()
        if summary is None:
            raise NotFoundException("Payroll batch", batch_id)
        return summary

    # ===========================================
    # PAYMENTS
    # ===========================================

    async def initiate_payment(
        self,
        payroll_id: uuid.UUID,
        actor: Actor,
        method: Any = PaymentMethod.BANK_TRANSFER,
        bank_details: Optional[Dict[str, Optional[str]]] = None,
        notes: Optional[str] = None,
    ) -> PayrollRecord:
        return await self.payments.initiate(payroll_id, actor, method, bank_details, notes)

    async def mark_paid(self, payroll_ids: Sequence[uuid.UUID], actor: Actor) -> PaymentBatchResult:
        return await self.payments.mark_paid(payroll_ids, actor)

    async def mark_failed(
        self,
        payroll_ids: Sequence[uuid.UUID],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> PaymentBatchResult:
        return await self.payments.mark_failed(payroll_ids, actor, reason)

    async def cancel_payroll(
        self,
        payroll_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> PayrollRecord:
        return await self.payments.cancel(payroll_id, actor, reason)

    async def archive_payroll(self, payroll_id: uuid.UUID, actor: Actor) -> PayrollRecord:
        return await self.payments.archive(payroll_id, actor)
