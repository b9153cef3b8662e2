"""
Payroll Engine - Event Dispatcher

Fan-out step for the events returned by state machine operations. Each
event is recorded in the audit trail and sent to the employee and the actor.

Failures here are dependency failures: they are logged and never propagated
to the business operation that produced the events.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.audit import AuditAction, NotificationType
from payroll_engine.services.approval_state_machine import TransitionEvent

logger = logging.getLogger(__name__)


class AuditTrail(Protocol):
    async def record(
        self,
        action: AuditAction,
        entity_id: Any,
        actor_id: Optional[uuid.UUID],
        details: Optional[Dict[str, Any]] = None,
        entity_type: str = "payroll_record",
    ) -> Any:
        ...


class NotificationFanout(Protocol):
    async def notify(
        self,
        recipient_id: uuid.UUID,
        notification_type: NotificationType,
        payload: Optional[Dict[str, Any]],
        message: str,
        title: Optional[str] = None,
        email_to: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> Any:
        ...

    def release_emails(self) -> int:
        ...

    def discard_emails(self) -> None:
        ...


class EventDispatcher:
    """Delivers transition events to the audit trail and notification sinks."""

    def __init__(self, audit: AuditTrail, notifications: NotificationFanout):
        self.audit = audit
        self.notifications = notifications

    async def dispatch(self, events: Iterable[TransitionEvent]) -> int:
        """Deliver every event. Returns the number of failed deliveries."""
        failures = 0
        for event in events:
            failures += await self._record(event)
            failures += await self._notify(event)
        return failures

    async def dispatch_batch_completed(
        self,
        batch_id: str,
        actor_id: uuid.UUID,
        summary: Dict[str, Any],
        actor_email: Optional[str] = None,
    ) -> int:
        failures = 0
        try:
            await self.audit.record(
                AuditAction.BATCH_PROCESSED, batch_id, actor_id, summary, entity_type="payroll_batch"
            )
        except Exception as e:
            failures += 1
            logger.error(f"Audit write failed for batch {batch_id}: {e}", exc_info=True)

        message = (
            f"Batch {batch_id} finished: {summary.get('processed', 0)} processed, "
            f"{summary.get('skipped', 0)} skipped, {summary.get('failed', 0)} failed"
        )
        try:
            await self.notifications.notify(
                actor_id, NotificationType.BATCH_COMPLETED, summary, message, email_to=actor_email,
            )
        except Exception as e:
            failures += 1
            logger.error(f"Notification failed for batch {batch_id}: {e}", exc_info=True)
        return failures

    async def _record(self, event: TransitionEvent) -> int:
        try:
            await self.audit.record(
                event.audit_action, event.payroll_id, event.actor_id, event.payload()
            )
            return 0
        except Exception as e:
            logger.error(
                f"Audit write failed for payroll {event.payroll_id} ({event.action}): {e}",
                exc_info=True,
            )
            return 1

    def release_emails(self) -> None:
        """Queue notification emails once the rows they belong to are committed."""
        failures = self.notifications.release_emails()
        if failures:
            logger.warning(f"{failures} notification emails could not be queued")

    def discard_emails(self) -> None:
        self.notifications.discard_emails()

    async def _notify(self, event: TransitionEvent) -> int:
        if event.notification_type is None:
            return 0

        recipients = [(event.employee_id, event.employee_email, event.employee_name)]
        if event.actor_id != event.employee_id:
            recipients.append((event.actor_id, event.actor_email, None))

        failures = 0
        for recipient_id, email, name in recipients:
            try:
                await self.notifications.notify(
                    recipient_id,
                    event.notification_type,
                    event.payload(),
                    event.message(),
                    email_to=email,
                    recipient_name=name,
                )
            except Exception as e:
                failures += 1
                logger.error(
                    f"Notification to {recipient_id} failed for payroll {event.payroll_id}: {e}",
                    exc_info=True,
                )
        return failures


async def commit_and_dispatch(
    db: AsyncSession,
    dispatcher: EventDispatcher,
    events: List[TransitionEvent],
) -> int:
    """
    Commit the business change, then dispatch its events and commit the
    audit and notification rows they produced.

    The business change is durable before any side effect runs; a failure to
    persist side effects is logged and rolled back on its own. Emails are
    queued only once their notification rows are committed.
    """
    await db.commit()
    failures = await dispatcher.dispatch(events)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        failures += 1
        logger.error(f"Failed to persist event side effects: {e}")
        await db.rollback()
        dispatcher.discard_emails()
    else:
        dispatcher.release_emails()
    if failures:
        logger.warning(f"{failures} event deliveries failed")
    return failures
