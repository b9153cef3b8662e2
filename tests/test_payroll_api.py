"""
Payroll Engine - Payroll API Tests

Endpoint wiring, actor headers and error mapping. The payroll service is
replaced with a mock through FastAPI dependency overrides.
"""

import pytest
import pytest_asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from httpx import ASGITransport, AsyncClient

from main import app
from payroll_engine.dependencies import get_payroll_service
from payroll_engine.models.payroll import (
    ApprovalLevel, BatchScope, PayrollBatchSummary, PayrollFrequency, PayrollStatus,
)
from payroll_engine.services.payment_lifecycle import PaymentBatchResult
from payroll_engine.utils.error_handling import (
    DuplicatePeriodException,
    InvalidTransitionException,
    PayrollNotFoundException,
    PermissionDeniedException,
)
from payroll_engine.utils.permissions import PayrollPermission

from factories import make_record

ACTOR_ID = uuid4()


def actor_headers(level="hr_manager", **extra):
    headers = {"X-Actor-Id": str(ACTOR_ID), "X-Actor-Level": level}
    headers.update(extra)
    return headers


def make_summary(**counts):
    return PayrollBatchSummary(
        id=uuid4(),
        batch_id="BATCH-202601-1a2b3c4d",
        scope=BatchScope.DEPARTMENT,
        scope_target_id=uuid4(),
        month=1,
        year=2026,
        frequency=PayrollFrequency.MONTHLY,
        processed_by_id=ACTOR_ID,
        processing_time_ms=42,
        total_attempted=counts.get("total_attempted", 5),
        processed=counts.get("processed", 3),
        skipped=counts.get("skipped", 2),
        failed=counts.get("failed", 0),
        total_gross_pay=Decimal("960000.00"),
        total_deductions=Decimal("72000.00"),
        total_net_pay=Decimal("888000.00"),
        department_breakdown={},
        employee_details=[],
        warnings=[],
        errors=[],
        created_at=datetime(2026, 1, 31, tzinfo=timezone.utc),
    )


@pytest.fixture
def service():
    mock = MagicMock()
    for name in (
        "compute_payroll", "create_payroll", "get_payroll", "update_draft", "transition",
        "run_batch", "get_batch_summary", "initiate_payment", "mark_paid", "mark_failed",
        "cancel_payroll", "archive_payroll",
    ):
        setattr(mock, name, AsyncMock())
    app.dependency_overrides[get_payroll_service] = lambda: mock
    yield mock
    app.dependency_overrides.pop(get_payroll_service, None)


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealth:
    """Unauthenticated endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestActorHeaders:
    """Actor identity from upstream headers."""

    @pytest.mark.asyncio
    async def test_missing_actor_is_unauthorized(self, client, service):
        response = await client.get(f"/api/v1/payroll/records/{uuid4()}")
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"
        service.get_payroll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_level_rejected(self, client, service):
        response = await client.get(
            f"/api/v1/payroll/records/{uuid4()}", headers=actor_headers(level="janitor"),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_level_and_extra_permissions_are_merged(self, client, service):
        record = make_record(PayrollStatus.DRAFT)
        service.get_payroll.return_value = record

        response = await client.get(
            f"/api/v1/payroll/records/{record.id}",
            headers=actor_headers(level="department_head", **{"X-Actor-Permissions": "manage_payments,bogus"}),
        )

        assert response.status_code == 200
        actor = service.get_payroll.await_args.args[1]
        assert actor.id == ACTOR_ID
        assert actor.level == ApprovalLevel.DEPARTMENT_HEAD
        assert actor.can(PayrollPermission.MANAGE_PAYMENTS)
        assert actor.can(PayrollPermission.VIEW_PAYROLL)
        assert not actor.can(PayrollPermission.APPROVE_PAYROLL)


class TestRecordEndpoints:
    """Creation, retrieval and transitions."""

    @pytest.mark.asyncio
    async def test_create_payroll(self, client, service):
        record = make_record(PayrollStatus.DRAFT)
        service.create_payroll.return_value = record

        response = await client.post(
            "/api/v1/payroll/records",
            json={"employee_id": str(record.employee_id), "month": 1, "year": 2026},
            headers=actor_headers(),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == str(record.id)
        assert body["status"] == "draft"
        assert Decimal(body["net_pay"]) == record.net_pay
        assert body["allowance_items"] == [{"name": "Transport", "amount": "20000.00"}]
        assert body["approval_history"][0]["action"] == "create"
        assert service.create_payroll.await_args.kwargs["frequency"] == PayrollFrequency.MONTHLY

    @pytest.mark.asyncio
    async def test_duplicate_period_is_conflict(self, client, service):
        employee_id = uuid4()
        service.create_payroll.side_effect = DuplicatePeriodException(employee_id, 1, 2026, "monthly")

        response = await client.post(
            "/api/v1/payroll/records",
            json={"employee_id": str(employee_id), "month": 1, "year": 2026},
            headers=actor_headers(),
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "DUPLICATE_PERIOD"
        assert detail["details"]["frequency"] == "monthly"

    @pytest.mark.asyncio
    async def test_invalid_month_is_validation_error(self, client, service):
        response = await client.post(
            "/api/v1/payroll/records",
            json={"employee_id": str(uuid4()), "month": 13, "year": 2026},
            headers=actor_headers(),
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"
        service.create_payroll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_payroll_is_not_found(self, client, service):
        payroll_id = uuid4()
        service.get_payroll.side_effect = PayrollNotFoundException(payroll_id)

        response = await client.get(f"/api/v1/payroll/records/{payroll_id}", headers=actor_headers())

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "PAYROLL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_transition_permission_denied(self, client, service):
        service.transition.side_effect = PermissionDeniedException("approve_payroll", ACTOR_ID)

        response = await client.post(
            f"/api/v1/payroll/records/{uuid4()}/transition",
            json={"target_status": "approved"},
            headers=actor_headers(level="department_head"),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_invalid_transition_is_conflict(self, client, service):
        service.transition.side_effect = InvalidTransitionException("draft", "paid")

        response = await client.post(
            f"/api/v1/payroll/records/{uuid4()}/transition",
            json={"target_status": "paid"},
            headers=actor_headers(),
        )

        assert response.status_code == 409
        assert response.json()["detail"]["details"] == {
            "current_status": "draft",
            "attempted_status": "paid",
        }

    @pytest.mark.asyncio
    async def test_empty_draft_update_rejected(self, client, service):
        response = await client.patch(
            f"/api/v1/payroll/records/{uuid4()}", json={}, headers=actor_headers(),
        )
        assert response.status_code == 422
        service.update_draft.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_draft_update_passes_only_supplied_fields(self, client, service):
        record = make_record(PayrollStatus.DRAFT)
        service.update_draft.return_value = record

        response = await client.patch(
            f"/api/v1/payroll/records/{record.id}",
            json={"overtime_amount": "15000"},
            headers=actor_headers(),
        )

        assert response.status_code == 200
        assert service.update_draft.await_args.args[1] == {"overtime_amount": Decimal("15000")}


class TestBatchEndpoints:
    """Batch runs."""

    @pytest.mark.asyncio
    async def test_batch_returns_summary_with_partial_failures(self, client, service):
        service.run_batch.return_value = make_summary(processed=2, skipped=2, failed=1)

        response = await client.post(
            "/api/v1/payroll/batches",
            json={"scope": "department", "target_id": str(uuid4()), "month": 1, "year": 2026},
            headers=actor_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["batch_id"] == "BATCH-202601-1a2b3c4d"
        assert body["processed"] + body["skipped"] + body["failed"] == body["total_attempted"]

    @pytest.mark.asyncio
    async def test_department_scope_requires_target(self, client, service):
        response = await client.post(
            "/api/v1/payroll/batches",
            json={"scope": "department", "month": 1, "year": 2026},
            headers=actor_headers(),
        )
        assert response.status_code == 422
        service.run_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queue_batch(self, client):
        task = MagicMock(id="task-123")
        with patch("payroll_engine.tasks.celery_tasks.run_payroll_batch_task") as batch_task:
            batch_task.delay.return_value = task
            response = await client.post(
                "/api/v1/payroll/batches/queue",
                json={"scope": "organization", "month": 1, "year": 2026},
                headers=actor_headers(),
            )

        assert response.status_code == 202
        assert response.json() == {"task_id": "task-123", "status": "queued"}
        kwargs = batch_task.delay.call_args.kwargs
        assert kwargs["actor_id"] == str(ACTOR_ID)
        assert kwargs["actor_level"] == "hr_manager"
        assert "create_payroll" in kwargs["actor_permissions"]

    @pytest.mark.asyncio
    async def test_queue_batch_requires_create_permission(self, client):
        with patch("payroll_engine.tasks.celery_tasks.run_payroll_batch_task") as batch_task:
            response = await client.post(
                "/api/v1/payroll/batches/queue",
                json={"scope": "organization", "month": 1, "year": 2026},
                headers=actor_headers(level="department_head"),
            )

        assert response.status_code == 403
        batch_task.delay.assert_not_called()


class TestPaymentEndpoints:
    """Payment initiation and settlement."""

    @pytest.mark.asyncio
    async def test_initiate_payment(self, client, service):
        record = make_record(PayrollStatus.PENDING_PAYMENT, payment_reference="PAY-20260131-ABCDEF123456")
        service.initiate_payment.return_value = record

        response = await client.post(
            f"/api/v1/payroll/records/{record.id}/payment",
            json={"method": "bank_transfer", "bank_details": {"bank_name": "GTBank"}},
            headers=actor_headers(level="finance_director"),
        )

        assert response.status_code == 200
        assert response.json()["payment_reference"] == "PAY-20260131-ABCDEF123456"
        assert service.initiate_payment.await_args.kwargs["bank_details"] == {
            "bank_name": "GTBank", "account_number": None, "account_name": None,
        }

    @pytest.mark.asyncio
    async def test_mark_failed_reports_per_item_outcomes(self, client, service):
        ok_id, missing_id = uuid4(), uuid4()
        service.mark_failed.return_value = PaymentBatchResult(
            total=2,
            succeeded=[{"payroll_id": str(ok_id), "status": "failed", "payment_reference": "PAY-1"}],
            failed=[{"payroll_id": str(missing_id), "error_code": "PAYROLL_NOT_FOUND", "reason": "not found"}],
        )

        response = await client.post(
            "/api/v1/payroll/payments/mark-failed",
            json={"payroll_ids": [str(ok_id), str(missing_id)], "reason": "Bank rejected"},
            headers=actor_headers(level="finance_director"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert len(body["succeeded"]) == 1
        assert body["failed"][0]["payroll_id"] == str(missing_id)
        assert service.mark_failed.await_args.args[2] == "Bank rejected"

    @pytest.mark.asyncio
    async def test_settlement_requires_ids(self, client, service):
        response = await client.post(
            "/api/v1/payroll/payments/mark-paid",
            json={"payroll_ids": []},
            headers=actor_headers(level="finance_director"),
        )
        assert response.status_code == 422
