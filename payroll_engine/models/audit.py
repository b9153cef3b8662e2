"""
Payroll Engine - Audit Log & Notification Models

Append-only audit entries written for every payroll transition, and the
in-app notifications fanned out to employees and actors.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, Text, Enum as SQLEnum, func
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from payroll_engine.database import Base
from payroll_engine.models.base import BaseModel


class AuditAction(str, Enum):
    """Audit action types."""
    PAYROLL_CREATED = "payroll_created"
    PAYROLL_UPDATED = "payroll_updated"
    PAYROLL_TRANSITION = "payroll_transition"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELLED = "payment_cancelled"
    BATCH_PROCESSED = "batch_processed"


class AuditLog(Base):
    """
    Immutable audit log entry.

    This table should have no UPDATE or DELETE permissions.
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    action: Mapped[AuditAction] = mapped_column(SQLEnum(AuditAction), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True,
        comment="Type of entity (payroll_record, payment, batch)",
    )
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,  # System actions may not have an actor
        index=True,
    )
    details: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, entity={self.entity_type}:{self.entity_id})>"


class NotificationType(str, Enum):
    """Types of payroll notifications."""
    PAYROLL_CREATED = "payroll_created"
    PAYROLL_SUBMITTED = "payroll_submitted"
    PAYROLL_APPROVED = "payroll_approved"
    PAYROLL_REJECTED = "payroll_rejected"
    PAYROLL_CANCELLED = "payroll_cancelled"
    PAYROLL_ARCHIVED = "payroll_archived"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    BATCH_COMPLETED = "batch_completed"
    INFO = "info"


class Notification(BaseModel):
    """In-app notification addressed to one recipient."""

    __tablename__ = "notifications"

    recipient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True,
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType),
        default=NotificationType.INFO,
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
