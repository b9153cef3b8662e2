"""
Payroll Engine - Event Dispatcher Tests

Audit and notification fan-out. Sink failures are counted and logged,
never raised.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from sqlalchemy.exc import OperationalError

from payroll_engine.models.audit import AuditAction, Notification, NotificationType
from payroll_engine.models.payroll import PayrollStatus
from payroll_engine.services.approval_state_machine import ApprovalStateMachine
from payroll_engine.services.audit_service import AuditService
from payroll_engine.services.event_dispatcher import EventDispatcher, commit_and_dispatch
from payroll_engine.services.notification_service import NotificationService

from factories import make_record


def approve_event(actor):
    record = make_record(PayrollStatus.PENDING)
    return ApprovalStateMachine().transition(record, PayrollStatus.APPROVED, actor)[0]


@pytest.fixture
def sinks():
    audit = MagicMock()
    audit.record = AsyncMock()
    notifications = MagicMock()
    notifications.notify = AsyncMock()
    return audit, notifications


class TestEventDispatcher:
    """Delivery to both sinks."""

    @pytest.mark.asyncio
    async def test_event_audited_and_sent_to_employee_and_actor(self, sinks, hr_manager):
        audit, notifications = sinks
        event = approve_event(hr_manager)

        failures = await EventDispatcher(audit, notifications).dispatch([event])

        assert failures == 0
        audit.record.assert_awaited_once()
        action, entity_id, actor_id, payload = audit.record.await_args.args
        assert action == AuditAction.PAYROLL_TRANSITION
        assert entity_id == event.payroll_id
        assert payload["previous_status"] == "pending"
        assert payload["new_status"] == "approved"

        recipients = [c.args[0] for c in notifications.notify.await_args_list]
        assert recipients == [event.employee_id, hr_manager.id]
        assert notifications.notify.await_args_list[1].kwargs["email_to"] == hr_manager.email

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_propagate(self, sinks, hr_manager):
        audit, notifications = sinks
        audit.record = AsyncMock(side_effect=RuntimeError("audit store down"))

        failures = await EventDispatcher(audit, notifications).dispatch([approve_event(hr_manager)])

        assert failures == 1
        assert notifications.notify.await_count == 2

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_stop_other_recipients(self, sinks, hr_manager):
        audit, notifications = sinks
        notifications.notify = AsyncMock(side_effect=[ConnectionError("smtp"), None])

        failures = await EventDispatcher(audit, notifications).dispatch([approve_event(hr_manager)])

        assert failures == 1
        assert notifications.notify.await_count == 2

    @pytest.mark.asyncio
    async def test_batch_completed_notifies_actor(self, sinks):
        audit, notifications = sinks
        actor_id = uuid4()

        failures = await EventDispatcher(audit, notifications).dispatch_batch_completed(
            "BATCH-202601-abcdef12", actor_id, {"processed": 3, "skipped": 2, "failed": 0},
        )

        assert failures == 0
        assert audit.record.await_args.kwargs["entity_type"] == "payroll_batch"
        args = notifications.notify.await_args.args
        assert args[0] == actor_id
        assert args[1] == NotificationType.BATCH_COMPLETED
        assert "3 processed, 2 skipped, 0 failed" in args[3]


class TestCommitAndDispatch:
    """Business change is committed before any side effect."""

    @pytest.mark.asyncio
    async def test_side_effect_commit_failure_rolled_back(self, mock_db, sinks, hr_manager):
        audit, notifications = sinks
        mock_db.commit = AsyncMock(side_effect=[None, OperationalError("COMMIT", {}, Exception("gone"))])

        failures = await commit_and_dispatch(
            mock_db, EventDispatcher(audit, notifications), [approve_event(hr_manager)],
        )

        assert failures == 1
        mock_db.rollback.assert_awaited_once()
        notifications.discard_emails.assert_called_once()
        notifications.release_emails.assert_not_called()

    @pytest.mark.asyncio
    async def test_emails_queued_only_after_side_effects_commit(self, mock_db, sinks, hr_manager):
        audit, _ = sinks
        calls = []
        mock_db.commit = AsyncMock(side_effect=lambda: calls.append("commit"))
        notifications = NotificationService(mock_db, lambda **email: calls.append(email["to_email"]))
        event = approve_event(hr_manager)

        failures = await commit_and_dispatch(mock_db, EventDispatcher(audit, notifications), [event])

        assert failures == 0
        assert calls == ["commit", "commit", event.employee_email, hr_manager.email]

    @pytest.mark.asyncio
    async def test_no_email_queued_when_side_effects_roll_back(self, mock_db, sinks, hr_manager):
        audit, _ = sinks
        queue = MagicMock()
        mock_db.commit = AsyncMock(side_effect=[None, OperationalError("COMMIT", {}, Exception("gone"))])
        notifications = NotificationService(mock_db, queue)

        await commit_and_dispatch(
            mock_db, EventDispatcher(audit, notifications), [approve_event(hr_manager)],
        )

        queue.assert_not_called()
        assert notifications.outbox == []


class TestSinks:
    """DB-backed audit and notification writers."""

    @pytest.mark.asyncio
    async def test_audit_entry_written_in_savepoint(self, mock_db):
        entry = await AuditService(mock_db).record(
            AuditAction.PAYROLL_CREATED, uuid4(), uuid4(), {"amount": "100.00"},
        )

        mock_db.begin_nested.assert_called_once()
        mock_db.add.assert_called_once_with(entry)
        assert entry.entity_type == "payroll_record"

    @pytest.mark.asyncio
    async def test_email_held_until_released(self, mock_db):
        queue = MagicMock()
        service = NotificationService(mock_db, queue)

        notification = await service.notify(
            uuid4(), NotificationType.PAYROLL_APPROVED, {"amount": "296000.00"},
            "Payroll approved", email_to="ada@example.com", recipient_name="Ada",
        )

        assert isinstance(notification, Notification)
        assert notification.title == "Payroll Approved"
        assert notification.email_sent is False
        queue.assert_not_called()

        assert service.release_emails() == 0
        queue.assert_called_once_with(
            notification_id=str(notification.id),
            to_email="ada@example.com",
            recipient_name="Ada",
            title="Payroll Approved",
            message="Payroll approved",
            net_pay="296000.00",
        )
        assert service.outbox == []

    @pytest.mark.asyncio
    async def test_queue_failure_counted_not_raised(self, mock_db):
        queue = MagicMock(side_effect=[ConnectionError("broker down"), None])
        service = NotificationService(mock_db, queue)

        for address in ("ada@example.com", "hr@example.com"):
            await service.notify(
                uuid4(), NotificationType.PAYMENT_FAILED, None, "Payment failed", email_to=address,
            )

        assert service.release_emails() == 1
        assert queue.call_count == 2

    @pytest.mark.asyncio
    async def test_discarded_emails_are_never_queued(self, mock_db):
        queue = MagicMock()
        service = NotificationService(mock_db, queue)
        await service.notify(
            uuid4(), NotificationType.INFO, None, "FYI", email_to="ada@example.com",
        )

        service.discard_emails()
        service.release_emails()

        queue.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_email_without_queue(self, mock_db):
        service = NotificationService(mock_db)
        notification = await service.notify(
            uuid4(), NotificationType.INFO, None, "FYI", email_to="ada@example.com",
        )
        assert notification.email_sent is False
        assert service.outbox == []
