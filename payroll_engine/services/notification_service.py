"""
Payroll Engine - Notification Service

Handles in-app notifications and email alerts for payroll events.

Emails are never sent from here. They wait in an outbox until the caller has
committed the notification rows, then go to the email queue (the Celery
email task), which delivers, retries and marks `email_sent`.
"""

import uuid
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.audit import Notification, NotificationType

logger = logging.getLogger(__name__)


# Called with keyword arguments: notification_id, to_email, recipient_name,
# title, message, net_pay
EmailQueue = Callable[..., Any]


NOTIFICATION_TITLES = {
    NotificationType.PAYROLL_CREATED: "Payroll Created",
    NotificationType.PAYROLL_SUBMITTED: "Payroll Submitted for Approval",
    NotificationType.PAYROLL_APPROVED: "Payroll Approved",
    NotificationType.PAYROLL_REJECTED: "Payroll Rejected",
    NotificationType.PAYROLL_CANCELLED: "Payroll Cancelled",
    NotificationType.PAYROLL_ARCHIVED: "Payroll Archived",
    NotificationType.PAYMENT_PENDING: "Payment Initiated",
    NotificationType.PAYMENT_COMPLETED: "Payment Completed",
    NotificationType.PAYMENT_FAILED: "Payment Failed",
    NotificationType.BATCH_COMPLETED: "Payroll Batch Completed",
    NotificationType.INFO: "Payroll Update",
}


class NotificationService:
    """Service for creating payroll notifications."""

    def __init__(self, db: AsyncSession, email_queue: Optional[EmailQueue] = None):
        self.db = db
        self.email_queue = email_queue
        self.outbox: List[Dict[str, Any]] = []

    async def notify(
        self,
        recipient_id: uuid.UUID,
        notification_type: NotificationType,
        payload: Optional[Dict[str, Any]],
        message: str,
        title: Optional[str] = None,
        email_to: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> Notification:
        """
        Create an in-app notification and hold its email, if any, in the outbox.

        The row is written in its own savepoint.
        """
        notification = Notification(
            id=uuid.uuid4(),
            recipient_id=recipient_id,
            notification_type=notification_type,
            title=title or NOTIFICATION_TITLES.get(notification_type, "Payroll Update"),
            message=message,
            payload=payload or {},
            is_read=False,
            email_sent=False,
        )

        async with self.db.begin_nested():
            self.db.add(notification)

        logger.info(f"Notification created for {recipient_id}: {notification.title}")

        if email_to and self.email_queue is not None:
            self.outbox.append({
                "notification_id": str(notification.id),
                "to_email": email_to,
                "recipient_name": recipient_name or email_to,
                "title": notification.title,
                "message": message,
                "net_pay": (payload or {}).get("amount"),
            })

        return notification

    def release_emails(self) -> int:
        """
        Hand held emails to the queue. Call only after the notification rows
        are committed. Returns the number that could not be queued.
        """
        pending, self.outbox = self.outbox, []
        failures = 0
        for email in pending:
            try:
                self.email_queue(**email)
            except Exception as e:
                failures += 1
                logger.error(f"Could not queue email to {email['to_email']}: {e}")
        if pending:
            logger.info(f"Queued {len(pending) - failures} notification emails")
        return failures

    def discard_emails(self) -> None:
        """Drop held emails whose notification rows were rolled back."""
        if self.outbox:
            logger.warning(f"Dropping {len(self.outbox)} emails for rolled-back notifications")
        self.outbox = []
