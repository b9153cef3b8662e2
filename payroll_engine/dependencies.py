"""
Payroll Engine - FastAPI Dependencies

Shared dependencies for database sessions, the acting user and the payroll
service.

Authentication happens upstream (API gateway / identity service). The
validated actor arrives in request headers:

    X-Actor-Id            UUID of the acting user (required)
    X-Actor-Level         approval level: department_head, hr_manager,
                          finance_director or super_admin
    X-Actor-Permissions   comma-separated extra payroll permissions
    X-Actor-Email         address for notification emails
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.database import async_session_factory, get_async_session
from payroll_engine.models.payroll import ApprovalLevel
from payroll_engine.services.payroll_service import PayrollService
from payroll_engine.tasks.celery_tasks import send_notification_email_task
from payroll_engine.utils.permissions import Actor


async def get_current_actor(request: Request) -> Actor:
    """
    Build the acting user from upstream-validated headers.

    Raises:
        HTTPException: 401 if the actor id is missing or malformed,
            422 if the approval level is unknown
    """
    raw_id = request.headers.get("X-Actor-Id")
    if not raw_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor identity",
        )
    try:
        actor_id = uuid.UUID(raw_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid actor identity",
        )

    level: Optional[ApprovalLevel] = None
    raw_level = request.headers.get("X-Actor-Level")
    if raw_level:
        try:
            level = ApprovalLevel(raw_level.strip().lower())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unknown approval level: {raw_level}",
            )

    raw_permissions = request.headers.get("X-Actor-Permissions") or ""
    return Actor.from_claims(
        actor_id,
        level,
        raw_permissions.split(","),
        email=request.headers.get("X-Actor-Email"),
    )


async def get_payroll_service(
    db: AsyncSession = Depends(get_async_session),
) -> PayrollService:
    """Notification emails go to the Celery email task after each commit."""
    return PayrollService(
        db,
        email_queue=send_notification_email_task.delay,
        session_factory=async_session_factory,
    )
