"""
Payroll Engine - Audit Trail Service

Append-only audit logging for payroll transitions, payments and batches.
"""

import uuid
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.audit import AuditLog, AuditAction


class AuditService:
    """Service for writing the audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        action: AuditAction,
        entity_id: Union[str, uuid.UUID],
        actor_id: Optional[uuid.UUID],
        details: Optional[Dict[str, Any]] = None,
        entity_type: str = "payroll_record",
    ) -> AuditLog:
        """
        Append an audit entry.

        The entry is written in its own savepoint so a failed insert leaves
        the caller's transaction usable.
        """
        audit_log = AuditLog(
            id=uuid.uuid4(),
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=actor_id,
            details=details or {},
        )

        async with self.db.begin_nested():
            self.db.add(audit_log)

        return audit_log
