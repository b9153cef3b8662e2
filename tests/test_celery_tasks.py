"""
Payroll Engine - Celery Task Tests

Notification email delivery in the worker: one attempt per run, Celery
retries with exponential backoff, and email_sent set only after delivery.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from celery.exceptions import Retry

from payroll_engine.config import settings
from payroll_engine.tasks.celery_tasks import (
    _send_notification_email,
    send_notification_email_task,
)


EMAIL = dict(
    notification_id=str(uuid4()),
    to_email="ada@example.com",
    recipient_name="Ada",
    title="Payroll Approved",
    message="Your payroll was approved",
    net_pay="296000.00",
)


@pytest.fixture
def task():
    return send_notification_email_task._get_current_object()


def run_at_retry(task, retries):
    task.push_request(retries=retries)
    try:
        return task.run(**EMAIL)
    finally:
        task.pop_request()


class TestSendNotificationEmailTask:
    """Retry schedule."""

    def test_delivered_on_first_attempt(self, task):
        with patch(
            "payroll_engine.tasks.celery_tasks._send_notification_email",
            new=AsyncMock(return_value=True),
        ) as send, patch.object(task, "retry") as retry:
            assert task(**EMAIL) is True

        send.assert_awaited_once_with(
            EMAIL["notification_id"], "ada@example.com", "Ada",
            "Payroll Approved", "Your payroll was approved", "296000.00",
        )
        retry.assert_not_called()

    def test_failure_schedules_retry_with_base_delay(self, task):
        with patch(
            "payroll_engine.tasks.celery_tasks._send_notification_email",
            new=AsyncMock(return_value=False),
        ), patch.object(task, "retry", side_effect=Retry("retry")) as retry:
            with pytest.raises(Retry):
                run_at_retry(task, 0)

        retry.assert_called_once_with(countdown=settings.mail_backoff_base_seconds)

    def test_backoff_doubles_per_retry(self, task):
        with patch(
            "payroll_engine.tasks.celery_tasks._send_notification_email",
            new=AsyncMock(return_value=False),
        ), patch.object(task, "retry", side_effect=Retry("retry")) as retry:
            with pytest.raises(Retry):
                run_at_retry(task, 1)

        retry.assert_called_once_with(countdown=settings.mail_backoff_base_seconds * 2)

    def test_gives_up_after_max_attempts(self, task):
        assert task.max_retries == settings.mail_max_attempts - 1

        with patch(
            "payroll_engine.tasks.celery_tasks._send_notification_email",
            new=AsyncMock(return_value=False),
        ), patch.object(task, "retry") as retry:
            assert run_at_retry(task, task.max_retries) is False

        retry.assert_not_called()


class TestSendNotificationEmail:
    """Delivery and the email_sent flag."""

    @pytest.mark.asyncio
    async def test_delivery_marks_notification_sent(self):
        mailer = MagicMock()
        mailer.send_payroll_status_email = AsyncMock(return_value=True)
        session = MagicMock()
        session.execute = AsyncMock()
        session.commit = AsyncMock()
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=session)
        session_cm.__aexit__ = AsyncMock(return_value=False)
        engine = MagicMock()
        engine.dispose = AsyncMock()

        with patch("payroll_engine.tasks.celery_tasks.MailDispatcher", return_value=mailer), \
                patch("payroll_engine.tasks.celery_tasks.async_session_factory", return_value=session_cm), \
                patch("payroll_engine.tasks.celery_tasks.engine", engine):
            sent = await _send_notification_email(*EMAIL.values())

        assert sent is True
        assert mailer.send_payroll_status_email.await_args.kwargs["net_pay"] == "296000.00"
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_delivery_leaves_flag_untouched(self):
        mailer = MagicMock()
        mailer.send_payroll_status_email = AsyncMock(return_value=False)
        factory = MagicMock()

        with patch("payroll_engine.tasks.celery_tasks.MailDispatcher", return_value=mailer), \
                patch("payroll_engine.tasks.celery_tasks.async_session_factory", factory):
            sent = await _send_notification_email(*EMAIL.values())

        assert sent is False
        factory.assert_not_called()
