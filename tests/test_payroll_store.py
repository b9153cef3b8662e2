"""
Payroll Engine - Payroll Record Store Tests

Uniqueness per (employee, month, year, frequency) and record building.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import IntegrityError

from payroll_engine.models.payroll import PayrollFrequency, PayrollStatus
from payroll_engine.services.payroll_calculator import PayrollCalculator
from payroll_engine.services.payroll_store import (
    UNIQUE_PERIOD_CONSTRAINT,
    PayrollRecordStore,
    build_record,
)
from payroll_engine.utils.error_handling import DuplicatePeriodException, PayrollNotFoundException

from factories import (
    make_employee, make_inputs, make_record, scalar_result, scalars_result,
)


class TestBuildRecord:
    """Transient record from resolver inputs and calculator totals."""

    def test_breakdown_is_populated(self):
        employee = make_employee()
        inputs = make_inputs(employee)
        totals = PayrollCalculator().calculate(
            basic_salary=inputs.basic_salary,
            allowances=inputs.allowances,
            deductions=inputs.deductions,
            bonuses=inputs.bonuses,
            frequency="monthly",
            month=1,
            year=2026,
        )

        record = build_record(employee, inputs, totals, 1, 2026, batch_id="BATCH-202601-abc")

        assert record.id is not None
        assert record.status == PayrollStatus.DRAFT
        assert record.frequency == PayrollFrequency.MONTHLY
        assert record.batch_id == "BATCH-202601-abc"
        assert record.allowance_items == [{"name": "Transport", "amount": "20000.00"}]
        assert record.pension == Decimal("24000.00")
        assert record.net_pay == Decimal("296000.00")
        assert record.payment_account_number == employee.account_number


class TestPayrollRecordStore:
    """Persistence against a mocked session."""

    @pytest.mark.asyncio
    async def test_exists_when_period_taken(self, mock_db):
        mock_db.execute = AsyncMock(return_value=scalar_result(make_record()))
        store = PayrollRecordStore(mock_db)
        assert await store.exists(make_employee().id, 1, 2026, PayrollFrequency.MONTHLY)

    @pytest.mark.asyncio
    async def test_get_missing_record(self, mock_db):
        mock_db.execute = AsyncMock(return_value=scalar_result(None))
        with pytest.raises(PayrollNotFoundException):
            await PayrollRecordStore(mock_db).get(make_record().id)

    @pytest.mark.asyncio
    async def test_create_adds_record(self, mock_db):
        mock_db.execute = AsyncMock(return_value=scalar_result(None))
        record = make_record()

        created = await PayrollRecordStore(mock_db).create(record)

        assert created is record
        mock_db.add.assert_called_once_with(record)

    @pytest.mark.asyncio
    async def test_create_rejects_existing_period(self, mock_db):
        mock_db.execute = AsyncMock(return_value=scalar_result(make_record()))

        with pytest.raises(DuplicatePeriodException) as exc:
            await PayrollRecordStore(mock_db).create(make_record())

        assert exc.value.details["frequency"] == "monthly"
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_maps_unique_violation_to_duplicate(self, mock_db):
        """A concurrent insert that wins the race surfaces as DuplicatePeriod."""
        mock_db.execute = AsyncMock(return_value=scalar_result(None))
        orig = Exception(f'duplicate key value violates unique constraint "{UNIQUE_PERIOD_CONSTRAINT}"')
        mock_db.add = MagicMock(side_effect=IntegrityError("INSERT", {}, orig))

        with pytest.raises(DuplicatePeriodException):
            await PayrollRecordStore(mock_db).create(make_record())

    @pytest.mark.asyncio
    async def test_create_reraises_other_integrity_errors(self, mock_db):
        mock_db.execute = AsyncMock(return_value=scalar_result(None))
        orig = Exception('insert or update violates foreign key constraint "fk_payroll_records_employee_id"')
        mock_db.add = MagicMock(side_effect=IntegrityError("INSERT", {}, orig))

        with pytest.raises(IntegrityError):
            await PayrollRecordStore(mock_db).create(make_record())

    @pytest.mark.asyncio
    async def test_get_many_keys_records_by_id(self, mock_db):
        first, second = make_record(), make_record()
        mock_db.execute = AsyncMock(return_value=scalars_result([second, first]))

        found = await PayrollRecordStore(mock_db).get_many([first.id, second.id])

        assert found == {first.id: first, second.id: second}
        mock_db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_many_with_no_ids_skips_query(self, mock_db):
        assert await PayrollRecordStore(mock_db).get_many([]) == {}
        mock_db.execute.assert_not_called()
