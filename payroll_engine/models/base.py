"""
Payroll Engine - Base Model

Shared column definitions for payroll tables.

Every table gets a UUID primary key and database-maintained timestamps.
Tables edited through the approval workflow also carry actor stamps; actors
are owned by the upstream identity service, so the stamps are plain UUIDs
without foreign keys.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Numeric, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from payroll_engine.database import Base

MONEY_PRECISION = 15
MONEY_SCALE = 2


def money_column(comment: Optional[str] = None, precision: int = MONEY_PRECISION):
    """Non-null amount column defaulting to 0.00."""
    return mapped_column(
        Numeric(precision=precision, scale=MONEY_SCALE),
        default=Decimal("0.00"),
        nullable=False,
        comment=comment,
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
    )


class ActorStampMixin:
    """Acting user that created and last changed the row."""

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    updated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)


class BaseModel(Base, TimestampMixin):
    """Abstract base for payroll tables."""

    __abstract__ = True

    # Server-generated timestamps are fetched on flush so responses never lazy load
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"
