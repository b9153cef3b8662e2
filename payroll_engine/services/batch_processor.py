"""
Payroll Engine - Batch Processor

Runs payroll for one employee, one department or every active employee in
the organization, recording a per-employee outcome instead of aborting on
individual failures.

Per employee:
1. Skip with reason AlreadyExists when a record exists for the period.
2. Resolve salary inputs (configuration failures are recorded, not raised).
3. Compute totals.
4. Persist in APPROVED (review bypass) or PENDING.

The batch fails as a whole only when its employee set cannot be enumerated
(unknown employee or department). Afterwards one PayrollBatchSummary is
written, and only then are the transition events dispatched.
"""

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.config import settings
from payroll_engine.models.employee import Department, Employee, EmploymentStatus
from payroll_engine.models.payroll import (
    BatchScope, PayrollBatchSummary, PayrollFrequency, PayrollStatus,
)
from payroll_engine.services.approval_state_machine import ApprovalStateMachine, TransitionEvent
from payroll_engine.services.event_dispatcher import EventDispatcher
from payroll_engine.services.payroll_calculator import (
    ZERO, PayrollCalculator, parse_frequency,
)
from payroll_engine.services.payroll_store import PayrollRecordStore, build_record
from payroll_engine.services.salary_resolver import SalaryResolver
from payroll_engine.utils.error_handling import (
    AppException,
    DepartmentNotFoundException,
    DuplicatePeriodException,
    EmployeeNotFoundException,
    ErrorCode,
    ValidationException,
    validate_period,
)
from payroll_engine.utils.permissions import Actor, PayrollPermission

logger = logging.getLogger(__name__)

ALREADY_EXISTS = "AlreadyExists"
NOT_ACTIVE = "EmployeeNotActive"
UNASSIGNED_DEPARTMENT = "unassigned"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class EmployeeOutcome:
    """Result of processing one employee within a batch."""

    employee_id: uuid.UUID
    employee_name: str
    staff_code: str
    department_id: Optional[uuid.UUID]
    status: OutcomeStatus
    reason: Optional[str] = None
    error_code: Optional[str] = None
    payroll_id: Optional[uuid.UUID] = None
    gross: Optional[Decimal] = None
    deductions: Optional[Decimal] = None
    net: Optional[Decimal] = None
    events: List[TransitionEvent] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "staff_code": self.staff_code,
            "department_id": str(self.department_id) if self.department_id else None,
            "status": self.status.value,
            "reason": self.reason,
            "error_code": self.error_code,
            "payroll_id": str(self.payroll_id) if self.payroll_id else None,
            "gross": str(self.gross) if self.gross is not None else None,
            "deductions": str(self.deductions) if self.deductions is not None else None,
            "net": str(self.net) if self.net is not None else None,
        }


def generate_batch_id(month: int, year: int) -> str:
    return f"{settings.batch_reference_prefix}-{year}{month:02d}-{uuid.uuid4().hex[:8]}"


def department_breakdown(outcomes: Sequence[EmployeeOutcome]) -> Dict[str, Dict[str, Any]]:
    """Per-department counts and totals aggregated from outcomes."""
    breakdown: Dict[str, Dict[str, Any]] = {}
    for outcome in outcomes:
        key = str(outcome.department_id) if outcome.department_id else UNASSIGNED_DEPARTMENT
        entry = breakdown.setdefault(key, {
            "employee_count": 0,
            "processed": 0,
            "skipped": 0,
            "failed": 0,
            "total_gross": ZERO,
            "total_deductions": ZERO,
            "total_net": ZERO,
        })
        entry["employee_count"] += 1
        if outcome.status == OutcomeStatus.SUCCESS:
            entry["processed"] += 1
            entry["total_gross"] += outcome.gross
            entry["total_deductions"] += outcome.deductions
            entry["total_net"] += outcome.net
        elif outcome.status == OutcomeStatus.SKIPPED:
            entry["skipped"] += 1
        else:
            entry["failed"] += 1

    for entry in breakdown.values():
        for key in ("total_gross", "total_deductions", "total_net"):
            entry[key] = str(entry[key])
    return breakdown


class BatchProcessor:
    """
    Orchestrates resolver, calculator, store and state machine over a
    population of employees.

    With `concurrency` > 1 and a `session_factory`, employees are processed
    in parallel, each in its own session. Check-then-create stays serialized
    per (employee, period, frequency) and outcomes keep input order.
    """

    def __init__(
        self,
        db: AsyncSession,
        resolver: SalaryResolver,
        calculator: PayrollCalculator,
        store: PayrollRecordStore,
        state_machine: ApprovalStateMachine,
        dispatcher: EventDispatcher,
        concurrency: Optional[int] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ):
        self.db = db
        self.resolver = resolver
        self.calculator = calculator
        self.store = store
        self.state_machine = state_machine
        self.dispatcher = dispatcher
        self.concurrency = max(1, concurrency if concurrency is not None else settings.payroll_batch_concurrency)
        self.session_factory = session_factory
        self._period_locks: Dict[Tuple, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def run(
        self,
        scope: BatchScope,
        month: int,
        year: int,
        frequency: Any,
        actor: Actor,
        target_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> PayrollBatchSummary:
        """Process the scope and persist one summary. Returns the summary."""
        validate_period(month, year)
        freq = parse_frequency(frequency)
        self.state_machine.require_permission(actor, PayrollPermission.CREATE_PAYROLL)

        started = time.monotonic()
        warnings: List[Dict[str, Any]] = []
        employees = await self._enumerate(scope, target_id, employee_ids, warnings)
        warnings.extend(self._pre_run_warnings(employees, freq))

        batch_id = generate_batch_id(month, year)
        initial_status = self.state_machine.initial_status(actor)

        logger.info(
            f"Batch {batch_id} started: scope={scope.value}, {len(employees)} employees, "
            f"{year}-{month:02d} {freq.value}, initial status {initial_status.value}"
        )

        if self.concurrency > 1 and self.session_factory is not None and len(employees) > 1:
            outcomes = await self._run_concurrent(employees, month, year, freq, actor, batch_id, initial_status)
        else:
            outcomes = []
            for employee in employees:
                outcomes.append(
                    await self._process_in_savepoint(employee, month, year, freq, actor, batch_id, initial_status)
                )

        summary = self._build_summary(
            batch_id, scope, target_id, month, year, freq, actor, outcomes, warnings,
            int((time.monotonic() - started) * 1000),
        )
        await self.store.save_batch_summary(summary)
        await self.db.commit()

        logger.info(
            f"Batch {batch_id} finished: attempted={summary.total_attempted} "
            f"processed={summary.processed} skipped={summary.skipped} failed={summary.failed}"
        )

        # Side effects only after the summary is durable
        events = [event for outcome in outcomes for event in outcome.events]
        failures = await self.dispatcher.dispatch(events)
        failures += await self.dispatcher.dispatch_batch_completed(
            batch_id,
            actor.id,
            {
                "total_attempted": summary.total_attempted,
                "processed": summary.processed,
                "skipped": summary.skipped,
                "failed": summary.failed,
            },
            actor_email=actor.email,
        )
        if failures:
            logger.warning(f"Batch {batch_id}: {failures} event deliveries failed")
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Batch {batch_id}: failed to commit event side effects: {e}")
            await self.db.rollback()
            self.dispatcher.discard_emails()
        else:
            self.dispatcher.release_emails()

        return summary

    # ===========================================
    # ENUMERATION
    # ===========================================

    async def _enumerate(
        self,
        scope: BatchScope,
        target_id: Optional[uuid.UUID],
        employee_ids: Optional[Sequence[uuid.UUID]],
        warnings: List[Dict[str, Any]],
    ) -> List[Employee]:
        if scope == BatchScope.EMPLOYEE:
            ids = list(employee_ids or ([target_id] if target_id else []))
            if not ids:
                raise ValidationException("Employee scope requires an employee id", field="target_id")
            unique_ids = list(dict.fromkeys(ids))
            if len(unique_ids) != len(ids):
                warnings.append({
                    "code": "DUPLICATE_EMPLOYEES_REMOVED",
                    "message": f"{len(ids) - len(unique_ids)} duplicate employee ids removed",
                })
            employees = []
            for employee_id in unique_ids:
                employee = await self.db.get(Employee, employee_id)
                if employee is None:
                    raise EmployeeNotFoundException(employee_id)
                employees.append(employee)
            return sorted(employees, key=lambda e: e.staff_code)

        query = select(Employee).where(Employee.employment_status == EmploymentStatus.ACTIVE)
        if scope == BatchScope.DEPARTMENT:
            if target_id is None:
                raise ValidationException("Department scope requires a department id", field="target_id")
            department = await self.db.get(Department, target_id)
            if department is None:
                raise DepartmentNotFoundException(target_id)
            query = query.where(Employee.department_id == target_id)

        result = await self.db.execute(query.order_by(Employee.staff_code))
        return list(result.scalars().all())

    def _pre_run_warnings(self, employees: Sequence[Employee], freq: PayrollFrequency) -> List[Dict[str, Any]]:
        warnings = []
        if not employees:
            warnings.append({"code": "EMPTY_SCOPE", "message": "No employees found in scope"})
        for employee in employees:
            if employee.pay_frequency and employee.pay_frequency != freq.value:
                warnings.append({
                    "code": "FREQUENCY_MISMATCH",
                    "employee_id": str(employee.id),
                    "message": (
                        f"Employee {employee.staff_code} is paid {employee.pay_frequency} "
                        f"but the batch frequency is {freq.value}"
                    ),
                })
        return warnings

    # ===========================================
    # PER-EMPLOYEE PROCESSING
    # ===========================================

    async def _process_in_savepoint(
        self,
        employee: Employee,
        month: int,
        year: int,
        freq: PayrollFrequency,
        actor: Actor,
        batch_id: str,
        initial_status: PayrollStatus,
    ) -> EmployeeOutcome:
        """Sequential mode: one SAVEPOINT per employee in the batch session."""
        try:
            async with self.db.begin_nested():
                return await self._process_employee(
                    employee, month, year, freq, actor, batch_id, initial_status,
                    self.resolver, self.store,
                )
        except Exception as e:
            return self._failure(employee, e)

    async def _run_concurrent(
        self,
        employees: Sequence[Employee],
        month: int,
        year: int,
        freq: PayrollFrequency,
        actor: Actor,
        batch_id: str,
        initial_status: PayrollStatus,
    ) -> List[EmployeeOutcome]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(employee: Employee) -> EmployeeOutcome:
            async with semaphore:
                async with self.session_factory() as session:
                    try:
                        outcome = await self._process_employee(
                            employee, month, year, freq, actor, batch_id, initial_status,
                            SalaryResolver(session), PayrollRecordStore(session),
                        )
                        await session.commit()
                        return outcome
                    except Exception as e:
                        await session.rollback()
                        return self._failure(employee, e)

        # gather keeps input order regardless of completion order
        return list(await asyncio.gather(*(worker(e) for e in employees)))

    async def _process_employee(
        self,
        employee: Employee,
        month: int,
        year: int,
        freq: PayrollFrequency,
        actor: Actor,
        batch_id: str,
        initial_status: PayrollStatus,
        resolver: SalaryResolver,
        store: PayrollRecordStore,
    ) -> EmployeeOutcome:
        if employee.employment_status != EmploymentStatus.ACTIVE:
            return self._outcome(employee, OutcomeStatus.SKIPPED, reason=NOT_ACTIVE)

        async with self._period_locks[(employee.id, month, year, freq)]:
            if await store.exists(employee.id, month, year, freq):
                return self._outcome(employee, OutcomeStatus.SKIPPED, reason=ALREADY_EXISTS)

            inputs = await resolver.resolve(employee, month, year, freq)
            totals = self.calculator.calculate(
                basic_salary=inputs.basic_salary,
                allowances=inputs.allowances,
                deductions=inputs.deductions,
                bonuses=inputs.bonuses,
                frequency=freq,
                month=month,
                year=year,
            )

            record = build_record(employee, inputs, totals, month, year, batch_id=batch_id)
            events = self.state_machine.initialize(
                record, actor, initial_status, remarks=f"Created by batch {batch_id}", employee=employee,
            )
            await store.create(record)

        outcome = self._outcome(
            employee,
            OutcomeStatus.SUCCESS,
            payroll_id=record.id,
            gross=totals.gross_earnings,
            deductions=totals.total_deductions,
            net=totals.net_pay,
        )
        outcome.events = events
        return outcome

    def _outcome(self, employee: Employee, status: OutcomeStatus, **kwargs) -> EmployeeOutcome:
        return EmployeeOutcome(
            employee_id=employee.id,
            employee_name=employee.full_name,
            staff_code=employee.staff_code,
            department_id=employee.department_id,
            status=status,
            **kwargs,
        )

    def _failure(self, employee: Employee, error: Exception) -> EmployeeOutcome:
        if isinstance(error, DuplicatePeriodException):
            # Lost a race with a concurrent creator
            return self._outcome(employee, OutcomeStatus.SKIPPED, reason=ALREADY_EXISTS)

        if isinstance(error, AppException):
            logger.warning(f"Payroll failed for employee {employee.staff_code}: {error.code.value} {error.message}")
            return self._outcome(
                employee, OutcomeStatus.FAILED, reason=error.message, error_code=error.code.value,
            )

        logger.error(f"Unexpected error processing employee {employee.staff_code}: {error}", exc_info=error)
        return self._outcome(
            employee, OutcomeStatus.FAILED, reason=str(error) or type(error).__name__,
            error_code=ErrorCode.SYSTEM_ERROR.value,
        )

    # ===========================================
    # SUMMARY
    # ===========================================

    def _build_summary(
        self,
        batch_id: str,
        scope: BatchScope,
        target_id: Optional[uuid.UUID],
        month: int,
        year: int,
        freq: PayrollFrequency,
        actor: Actor,
        outcomes: Sequence[EmployeeOutcome],
        warnings: List[Dict[str, Any]],
        processing_time_ms: int,
    ) -> PayrollBatchSummary:
        succeeded = [o for o in outcomes if o.status == OutcomeStatus.SUCCESS]
        return PayrollBatchSummary(
            id=uuid.uuid4(),
            batch_id=batch_id,
            scope=scope,
            scope_target_id=target_id,
            month=month,
            year=year,
            frequency=freq,
            processed_by_id=actor.id,
            processing_time_ms=processing_time_ms,
            total_attempted=len(outcomes),
            processed=len(succeeded),
            skipped=sum(1 for o in outcomes if o.status == OutcomeStatus.SKIPPED),
            failed=sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED),
            total_gross_pay=sum((o.gross for o in succeeded), ZERO),
            total_deductions=sum((o.deductions for o in succeeded), ZERO),
            total_net_pay=sum((o.net for o in succeeded), ZERO),
            department_breakdown=department_breakdown(outcomes),
            employee_details=[o.to_dict() for o in outcomes],
            warnings=warnings,
            errors=[
                {
                    "employee_id": str(o.employee_id),
                    "error_code": o.error_code,
                    "reason": o.reason,
                }
                for o in outcomes if o.status == OutcomeStatus.FAILED
            ],
        )
