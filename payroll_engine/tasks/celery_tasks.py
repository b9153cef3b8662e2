"""
Payroll Engine - Celery Tasks

Out-of-band work for the payroll API:

- payroll batches, run through the same BatchProcessor as the synchronous
  endpoint, returning a JSON-safe digest of the summary;
- notification emails, one delivery attempt per run, retried with
  exponential backoff (`mail_backoff_base_seconds * 2**retries`) up to
  `mail_max_attempts` attempts in total.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from celery import shared_task
from sqlalchemy import update

from payroll_engine.celery_app import celery_app  # noqa: F401  registers the app
from payroll_engine.config import settings
from payroll_engine.database import async_session_factory, engine
from payroll_engine.models.audit import Notification
from payroll_engine.models.payroll import ApprovalLevel
from payroll_engine.services.email_service import MailDispatcher
from payroll_engine.services.payroll_service import PayrollService
from payroll_engine.utils.permissions import Actor

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def build_actor(
    actor_id: str,
    level: Optional[str] = None,
    permissions: Optional[List[str]] = None,
    email: Optional[str] = None,
) -> Actor:
    return Actor.from_claims(
        uuid.UUID(actor_id),
        ApprovalLevel(level) if level else None,
        permissions or [],
        email=email,
    )


# ===========================================
# PAYROLL TASKS
# ===========================================

@shared_task(name='payroll_engine.tasks.celery_tasks.run_payroll_batch_task')
def run_payroll_batch_task(
    scope: str,
    month: int,
    year: int,
    frequency: str,
    actor_id: str,
    actor_level: Optional[str] = None,
    actor_permissions: Optional[List[str]] = None,
    actor_email: Optional[str] = None,
    target_id: Optional[str] = None,
    employee_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Run a payroll batch in the worker."""
    actor = build_actor(actor_id, actor_level, actor_permissions, actor_email)
    return run_async(_run_payroll_batch(
        scope,
        month,
        year,
        frequency,
        actor,
        uuid.UUID(target_id) if target_id else None,
        [uuid.UUID(e) for e in employee_ids] if employee_ids else None,
    ))


async def _run_payroll_batch(
    scope: str,
    month: int,
    year: int,
    frequency: str,
    actor: Actor,
    target_id: Optional[uuid.UUID],
    employee_ids: Optional[List[uuid.UUID]],
) -> Dict[str, Any]:
    """Async implementation of the payroll batch task."""
    try:
        async with async_session_factory() as db:
            service = PayrollService(
                db,
                email_queue=send_notification_email_task.delay,
                session_factory=async_session_factory,
            )
            summary = await service.run_batch(
                scope, month, year, frequency, actor,
                target_id=target_id, employee_ids=employee_ids,
            )
            logger.info(f"Background batch {summary.batch_id} completed")
            return {
                "batch_id": summary.batch_id,
                "total_attempted": summary.total_attempted,
                "processed": summary.processed,
                "skipped": summary.skipped,
                "failed": summary.failed,
                "total_net_pay": str(summary.total_net_pay),
            }
    finally:
        # Pooled connections belong to this task's event loop
        await engine.dispose()


# ===========================================
# EMAIL TASKS
# ===========================================

@shared_task(
    name='payroll_engine.tasks.celery_tasks.send_notification_email_task',
    bind=True,
    max_retries=settings.mail_max_attempts - 1,
)
def send_notification_email_task(
    self,
    notification_id: str,
    to_email: str,
    recipient_name: str,
    title: str,
    message: str,
    net_pay: Optional[str] = None,
) -> bool:
    """Deliver one notification email and mark it sent."""
    sent = run_async(_send_notification_email(
        notification_id, to_email, recipient_name, title, message, net_pay,
    ))
    if sent:
        return True

    attempt = self.request.retries + 1
    if self.request.retries < self.max_retries:
        delay = settings.mail_backoff_base_seconds * (2 ** self.request.retries)
        logger.warning(
            f"Email to {to_email} failed (attempt {attempt}/{self.max_retries + 1}), "
            f"retrying in {delay}s"
        )
        raise self.retry(countdown=delay)

    logger.error(f"Email to {to_email} permanently failed after {attempt} attempts: {title}")
    return False


async def _send_notification_email(
    notification_id: str,
    to_email: str,
    recipient_name: str,
    title: str,
    message: str,
    net_pay: Optional[str],
) -> bool:
    """Async email sending. email_sent is only set after a delivery."""
    mailer = MailDispatcher()
    sent = await mailer.send_payroll_status_email(
        to_email=to_email,
        recipient_name=recipient_name,
        title=title,
        message=message,
        net_pay=net_pay,
    )
    if not sent:
        return False

    try:
        async with async_session_factory() as db:
            await db.execute(
                update(Notification)
                .where(Notification.id == uuid.UUID(notification_id))
                .values(email_sent=True)
            )
            await db.commit()
    finally:
        await engine.dispose()
    return True
