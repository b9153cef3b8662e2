"""
Payroll Engine - Payroll Record Store

Persistence boundary for payroll records, payments and batch summaries.

One record per (employee, month, year, frequency): checked before insert
and enforced by the `uq_payroll_employee_period_frequency` constraint, which
is the final arbiter under concurrency.
"""

import logging
import uuid
from typing import Dict, Iterable, Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_engine.models.employee import Employee
from payroll_engine.models.payroll import (
    Payment, PayrollBatchSummary, PayrollFrequency, PayrollRecord, PayrollStatus,
)
from payroll_engine.services.payroll_calculator import PayrollTotals
from payroll_engine.services.salary_resolver import ResolvedSalaryInputs
from payroll_engine.utils.error_handling import DuplicatePeriodException, PayrollNotFoundException

logger = logging.getLogger(__name__)

UNIQUE_PERIOD_CONSTRAINT = "uq_payroll_employee_period_frequency"


def build_record(
    employee: Employee,
    inputs: ResolvedSalaryInputs,
    totals: PayrollTotals,
    month: int,
    year: int,
    batch_id: Optional[str] = None,
) -> PayrollRecord:
    """Transient record with the full breakdown populated."""
    return PayrollRecord(
        id=uuid.uuid4(),
        employee_id=employee.id,
        department_id=employee.department_id,
        salary_grade_id=inputs.salary_grade_id,
        batch_id=batch_id,
        month=month,
        year=year,
        status=PayrollStatus.DRAFT,
        payment_bank_name=employee.bank_name,
        payment_account_number=employee.account_number,
        payment_account_name=employee.account_name,
        **totals.record_fields(),
    )


class PayrollRecordStore:
    """Create, find and update payroll records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_period(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        frequency: PayrollFrequency,
    ) -> Optional[PayrollRecord]:
        result = await self.db.execute(
            select(PayrollRecord).where(
                and_(
                    PayrollRecord.employee_id == employee_id,
                    PayrollRecord.month == month,
                    PayrollRecord.year == year,
                    PayrollRecord.frequency == frequency,
                )
            )
        )
        return result.scalar_one_or_none()

    async def exists(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        frequency: PayrollFrequency,
    ) -> bool:
        return await self.find_by_period(employee_id, month, year, frequency) is not None

    async def get(self, payroll_id: uuid.UUID) -> PayrollRecord:
        """Load a record with its history and employee. Raises PayrollNotFoundException."""
        result = await self.db.execute(
            select(PayrollRecord)
            .options(
                selectinload(PayrollRecord.approval_history),
                selectinload(PayrollRecord.employee),
            )
            .where(PayrollRecord.id == payroll_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise PayrollNotFoundException(payroll_id)
        return record

    async def get_many(self, payroll_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, PayrollRecord]:
        ids = list(payroll_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(PayrollRecord)
            .options(
                selectinload(PayrollRecord.approval_history),
                selectinload(PayrollRecord.employee),
            )
            .where(PayrollRecord.id.in_(ids))
        )
        return {record.id: record for record in result.scalars().all()}

    async def create(self, record: PayrollRecord) -> PayrollRecord:
        """
        Insert a new record.

        Raises DuplicatePeriodException if a record already exists for the
        same (employee, month, year, frequency), whether found by the
        pre-insert check or reported by the unique constraint.
        """
        if await self.exists(record.employee_id, record.month, record.year, record.frequency):
            raise self._duplicate(record)

        try:
            async with self.db.begin_nested():
                self.db.add(record)
        except IntegrityError as e:
            if UNIQUE_PERIOD_CONSTRAINT in str(e.orig):
                raise self._duplicate(record) from e
            raise

        logger.info(
            f"Created payroll {record.id} for employee {record.employee_id} "
            f"({record.year}-{record.month:02d}, {record.frequency.value}) in {record.status.value}"
        )
        return record

    async def save(self, record: PayrollRecord) -> PayrollRecord:
        await self.db.flush()
        return record

    async def add_payment(self, payment: Payment) -> Payment:
        async with self.db.begin_nested():
            self.db.add(payment)
        return payment

    async def save_batch_summary(self, summary: PayrollBatchSummary) -> PayrollBatchSummary:
        self.db.add(summary)
        await self.db.flush()
        return summary

    @staticmethod
    def _duplicate(record: PayrollRecord) -> DuplicatePeriodException:
        return DuplicatePeriodException(
            record.employee_id, record.month, record.year, record.frequency.value
        )
