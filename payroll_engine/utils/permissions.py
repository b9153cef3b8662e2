"""
Payroll Engine - Permissions System

Role-based permissions for the payroll approval workflow. Authentication
happens upstream; the engine receives an already validated Actor carrying
its approval level and permission set.

Permission Matrix:
==================

| Permission              | Dept Head | HR Manager | Finance Director | Super Admin |
|-------------------------|-----------|------------|------------------|-------------|
| view_payroll            | X         | X          | X                | X           |
| create_payroll          |           | X          | X                | X           |
| edit_payroll            |           | X          |                  | X           |
| process_payroll         | X         | X          | X                | X           |
| approve_payroll         |           | X          | X                | X           |
| bypass_payroll_review   |           |            |                  | X           |
| manage_payments         |           |            | X                | X           |
| cancel_payroll          |           | X          | X                | X           |
| archive_payroll         |           |            | X                | X           |
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Set

from payroll_engine.models.payroll import ApprovalLevel


# ===========================================
# PERMISSION ENUMS
# ===========================================

class PayrollPermission(str, Enum):
    """Permissions checked by the payroll engine."""

    VIEW_PAYROLL = "view_payroll"
    CREATE_PAYROLL = "create_payroll"
    EDIT_PAYROLL = "edit_payroll"
    PROCESS_PAYROLL = "process_payroll"
    APPROVE_PAYROLL = "approve_payroll"
    # Lets batch runs create records directly in APPROVED
    BYPASS_PAYROLL_REVIEW = "bypass_payroll_review"
    MANAGE_PAYMENTS = "manage_payments"
    CANCEL_PAYROLL = "cancel_payroll"
    ARCHIVE_PAYROLL = "archive_payroll"


# ===========================================
# ROLE-PERMISSION MAPPINGS
# ===========================================

LEVEL_PERMISSIONS: dict = {
    ApprovalLevel.DEPARTMENT_HEAD: {
        PayrollPermission.VIEW_PAYROLL,
        PayrollPermission.PROCESS_PAYROLL,
    },
    ApprovalLevel.HR_MANAGER: {
        PayrollPermission.VIEW_PAYROLL,
        PayrollPermission.CREATE_PAYROLL,
        PayrollPermission.EDIT_PAYROLL,
        PayrollPermission.PROCESS_PAYROLL,
        PayrollPermission.APPROVE_PAYROLL,
        PayrollPermission.CANCEL_PAYROLL,
    },
    ApprovalLevel.FINANCE_DIRECTOR: {
        PayrollPermission.VIEW_PAYROLL,
        PayrollPermission.CREATE_PAYROLL,
        PayrollPermission.PROCESS_PAYROLL,
        PayrollPermission.APPROVE_PAYROLL,
        PayrollPermission.MANAGE_PAYMENTS,
        PayrollPermission.CANCEL_PAYROLL,
        PayrollPermission.ARCHIVE_PAYROLL,
    },
    ApprovalLevel.SUPER_ADMIN: set(PayrollPermission),
}


# ===========================================
# ACTOR
# ===========================================

@dataclass(frozen=True)
class Actor:
    """Authenticated user performing a payroll operation."""

    id: uuid.UUID
    level: Optional[ApprovalLevel] = None
    permissions: FrozenSet[PayrollPermission] = field(default_factory=frozenset)
    email: Optional[str] = None

    @classmethod
    def for_level(cls, actor_id: uuid.UUID, level: ApprovalLevel, email: Optional[str] = None) -> "Actor":
        """Build an actor holding the default permissions of an approval level."""
        return cls(
            id=actor_id,
            level=level,
            permissions=frozenset(get_level_permissions(level)),
            email=email,
        )

    @classmethod
    def from_claims(
        cls,
        actor_id: uuid.UUID,
        level: Optional[ApprovalLevel] = None,
        permissions: Iterable[str] = (),
        email: Optional[str] = None,
    ) -> "Actor":
        """Level defaults plus any explicitly granted permission names."""
        granted = get_level_permissions(level) if level else set()
        granted |= parse_permissions(permissions)
        return cls(id=actor_id, level=level, permissions=frozenset(granted), email=email)

    def can(self, permission: PayrollPermission) -> bool:
        return permission in self.permissions


# ===========================================
# PERMISSION HELPER FUNCTIONS
# ===========================================

def get_level_permissions(level: ApprovalLevel) -> Set[PayrollPermission]:
    """Get all permissions for an approval level."""
    return set(LEVEL_PERMISSIONS.get(level, set()))


def parse_permissions(values: Iterable[str]) -> Set[PayrollPermission]:
    """Parse permission names, ignoring unknown ones."""
    known = {p.value for p in PayrollPermission}
    return {PayrollPermission(v.strip()) for v in values if v.strip() in known}


def can_bypass_review(actor: Actor) -> bool:
    """Administrative fast path: approve authority plus review bypass."""
    return actor.can(PayrollPermission.APPROVE_PAYROLL) and actor.can(
        PayrollPermission.BYPASS_PAYROLL_REVIEW
    )
