"""
Payroll Engine - Approval State Machine

Validates and applies payroll status transitions.

    DRAFT -> PROCESSING -> PENDING -> APPROVED -> PENDING_PAYMENT -> PAID

Side branches: REJECTED (from PROCESSING/PENDING), FAILED (from
PENDING_PAYMENT), CANCELLED (from any non-terminal state before payment
completes) and ARCHIVED (from APPROVED or FAILED). PAID, REJECTED, CANCELLED
and ARCHIVED are terminal.

Every transition appends one approval history entry and returns the list of
TransitionEvents for the caller to dispatch after the change is persisted.
The machine itself performs no I/O.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from payroll_engine.models.audit import AuditAction, NotificationType
from payroll_engine.models.employee import Employee
from payroll_engine.models.payroll import (
    ApprovalAction, PaymentMethod, PayrollApprovalEntry, PayrollRecord, PayrollStatus,
)
from payroll_engine.services.payroll_calculator import (
    NET_PAY_NEGATIVE, OVERTIME_ITEM, ZERO, to_decimal,
)
from payroll_engine.utils.error_handling import (
    InvalidTransitionException,
    PermissionDeniedException,
    RecordImmutableException,
    ValidationException,
)
from payroll_engine.utils.permissions import Actor, PayrollPermission, can_bypass_review

logger = logging.getLogger(__name__)


# ===========================================
# TRANSITION TABLE
# ===========================================

TRANSITIONS: Dict[PayrollStatus, Dict[PayrollStatus, ApprovalAction]] = {
    PayrollStatus.DRAFT: {
        PayrollStatus.PROCESSING: ApprovalAction.START_PROCESSING,
        PayrollStatus.PENDING: ApprovalAction.SUBMIT,
        PayrollStatus.CANCELLED: ApprovalAction.CANCEL,
    },
    PayrollStatus.PROCESSING: {
        PayrollStatus.PENDING: ApprovalAction.SUBMIT,
        PayrollStatus.APPROVED: ApprovalAction.APPROVE,
        PayrollStatus.REJECTED: ApprovalAction.REJECT,
        PayrollStatus.CANCELLED: ApprovalAction.CANCEL,
    },
    PayrollStatus.PENDING: {
        PayrollStatus.APPROVED: ApprovalAction.APPROVE,
        PayrollStatus.REJECTED: ApprovalAction.REJECT,
        PayrollStatus.CANCELLED: ApprovalAction.CANCEL,
    },
    PayrollStatus.APPROVED: {
        PayrollStatus.PENDING_PAYMENT: ApprovalAction.INITIATE_PAYMENT,
        PayrollStatus.CANCELLED: ApprovalAction.CANCEL,
        PayrollStatus.ARCHIVED: ApprovalAction.ARCHIVE,
    },
    PayrollStatus.PENDING_PAYMENT: {
        PayrollStatus.PAID: ApprovalAction.MARK_PAID,
        PayrollStatus.FAILED: ApprovalAction.MARK_FAILED,
        PayrollStatus.CANCELLED: ApprovalAction.CANCEL,
    },
    PayrollStatus.FAILED: {
        PayrollStatus.ARCHIVED: ApprovalAction.ARCHIVE,
    },
}

TERMINAL_STATES = frozenset({
    PayrollStatus.PAID,
    PayrollStatus.REJECTED,
    PayrollStatus.CANCELLED,
    PayrollStatus.ARCHIVED,
})

REQUIRED_PERMISSIONS: Dict[PayrollStatus, PayrollPermission] = {
    PayrollStatus.DRAFT: PayrollPermission.CREATE_PAYROLL,
    PayrollStatus.PROCESSING: PayrollPermission.PROCESS_PAYROLL,
    PayrollStatus.PENDING: PayrollPermission.PROCESS_PAYROLL,
    PayrollStatus.APPROVED: PayrollPermission.APPROVE_PAYROLL,
    PayrollStatus.REJECTED: PayrollPermission.APPROVE_PAYROLL,
    PayrollStatus.PENDING_PAYMENT: PayrollPermission.MANAGE_PAYMENTS,
    PayrollStatus.PAID: PayrollPermission.MANAGE_PAYMENTS,
    PayrollStatus.FAILED: PayrollPermission.MANAGE_PAYMENTS,
    PayrollStatus.CANCELLED: PayrollPermission.CANCEL_PAYROLL,
    PayrollStatus.ARCHIVED: PayrollPermission.ARCHIVE_PAYROLL,
}

STATUS_NOTIFICATIONS: Dict[PayrollStatus, NotificationType] = {
    PayrollStatus.DRAFT: NotificationType.PAYROLL_CREATED,
    PayrollStatus.PROCESSING: NotificationType.INFO,
    PayrollStatus.PENDING: NotificationType.PAYROLL_SUBMITTED,
    PayrollStatus.APPROVED: NotificationType.PAYROLL_APPROVED,
    PayrollStatus.REJECTED: NotificationType.PAYROLL_REJECTED,
    PayrollStatus.PENDING_PAYMENT: NotificationType.PAYMENT_PENDING,
    PayrollStatus.PAID: NotificationType.PAYMENT_COMPLETED,
    PayrollStatus.FAILED: NotificationType.PAYMENT_FAILED,
    PayrollStatus.CANCELLED: NotificationType.PAYROLL_CANCELLED,
    PayrollStatus.ARCHIVED: NotificationType.PAYROLL_ARCHIVED,
}

ACTION_AUDIT: Dict[ApprovalAction, AuditAction] = {
    ApprovalAction.CREATE: AuditAction.PAYROLL_CREATED,
    ApprovalAction.INITIATE_PAYMENT: AuditAction.PAYMENT_INITIATED,
    ApprovalAction.MARK_PAID: AuditAction.PAYMENT_COMPLETED,
    ApprovalAction.MARK_FAILED: AuditAction.PAYMENT_FAILED,
}

# Fields editable while a record is in DRAFT
MONEY_FIELDS = ("basic_salary", "overtime_amount", "tax", "pension", "nhf")
ITEM_FIELDS = (
    "allowance_items", "bonus_items", "other_statutory_items",
    "loan_items", "other_voluntary_items", "department_items",
)
PAYMENT_FIELDS = (
    "payment_method", "payment_bank_name", "payment_account_number",
    "payment_account_name", "payment_notes",
)
EDITABLE_FIELDS = frozenset(MONEY_FIELDS + ITEM_FIELDS + PAYMENT_FIELDS)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================
# EVENTS
# ===========================================

@dataclass(frozen=True)
class TransitionEvent:
    """Post-transition side effect request, dispatched after persistence."""

    payroll_id: uuid.UUID
    employee_id: uuid.UUID
    actor_id: uuid.UUID
    action: str
    previous_status: Optional[PayrollStatus]
    new_status: PayrollStatus
    amount: Decimal
    audit_action: AuditAction
    notification_type: Optional[NotificationType]
    occurred_at: datetime
    remarks: Optional[str] = None
    employee_email: Optional[str] = None
    employee_name: Optional[str] = None
    actor_email: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def payload(self) -> Dict[str, Any]:
        data = {
            "payroll_id": str(self.payroll_id),
            "employee_id": str(self.employee_id),
            "action": self.action,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "amount": str(self.amount),
            "occurred_at": self.occurred_at.isoformat(),
        }
        if self.remarks:
            data["remarks"] = self.remarks
        data.update(self.details)
        return data

    def message(self) -> str:
        previous = self.previous_status.value if self.previous_status else "new"
        text = f"Payroll {self.payroll_id} moved from {previous} to {self.new_status.value}"
        if self.remarks:
            text += f": {self.remarks}"
        return text


def build_event(
    record: PayrollRecord,
    actor: Actor,
    action: str,
    previous: Optional[PayrollStatus],
    audit_action: AuditAction,
    notification_type: Optional[NotificationType],
    remarks: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    details: Optional[Dict[str, Any]] = None,
    employee: Optional[Employee] = None,
) -> TransitionEvent:
    if employee is None:
        # Only read the relationship when already loaded; never lazy load
        employee = record.__dict__.get("employee")
    return TransitionEvent(
        payroll_id=record.id,
        employee_id=record.employee_id,
        actor_id=actor.id,
        action=action,
        previous_status=previous,
        new_status=record.status,
        amount=record.net_pay if record.net_pay is not None else ZERO,
        audit_action=audit_action,
        notification_type=notification_type,
        occurred_at=occurred_at or _now(),
        remarks=remarks,
        employee_email=employee.email if employee is not None else None,
        employee_name=employee.full_name if employee is not None else None,
        actor_email=actor.email,
        details=details or {},
    )


# ===========================================
# STATE MACHINE
# ===========================================

class ApprovalStateMachine:
    """Transition rules for payroll records."""

    def can_transition(self, current: PayrollStatus, target: PayrollStatus) -> bool:
        return target in TRANSITIONS.get(current, {})

    def allowed_targets(self, current: PayrollStatus) -> List[PayrollStatus]:
        return list(TRANSITIONS.get(current, {}))

    def is_terminal(self, status: PayrollStatus) -> bool:
        return status in TERMINAL_STATES

    def require_permission(self, actor: Actor, permission: PayrollPermission) -> None:
        if not actor.can(permission):
            raise PermissionDeniedException(permission.value, actor.id)

    def initial_status(self, actor: Actor) -> PayrollStatus:
        """Batch-created records skip review only for actors allowed to bypass it."""
        return PayrollStatus.APPROVED if can_bypass_review(actor) else PayrollStatus.PENDING

    def initialize(
        self,
        record: PayrollRecord,
        actor: Actor,
        status: PayrollStatus,
        remarks: Optional[str] = None,
        employee: Optional[Employee] = None,
    ) -> List[TransitionEvent]:
        """
        Set the creation status and write the opening history entries.

        DRAFT and PENDING records get a single `create` entry. APPROVED
        records (administrative fast path) get `create` at PENDING followed
        by `approve`.
        """
        self.require_permission(actor, PayrollPermission.CREATE_PAYROLL)
        if status not in (PayrollStatus.DRAFT, PayrollStatus.PENDING, PayrollStatus.APPROVED):
            raise InvalidTransitionException("new", status.value)
        if status == PayrollStatus.APPROVED and not can_bypass_review(actor):
            raise PermissionDeniedException(PayrollPermission.BYPASS_PAYROLL_REVIEW.value, actor.id)

        now = _now()
        opening = PayrollStatus.PENDING if status == PayrollStatus.APPROVED else status
        self._append_history(record, actor, opening, ApprovalAction.CREATE, remarks, now)
        if status == PayrollStatus.APPROVED:
            self._append_history(
                record, actor, PayrollStatus.APPROVED, ApprovalAction.APPROVE,
                "Approved on creation", now,
            )

        record.status = status
        record.created_by_id = actor.id
        record.updated_by_id = actor.id

        return [
            build_event(
                record, actor, ApprovalAction.CREATE.value, None,
                AuditAction.PAYROLL_CREATED, STATUS_NOTIFICATIONS[status],
                remarks=remarks, occurred_at=now, employee=employee,
            )
        ]

    def transition(
        self,
        record: PayrollRecord,
        target: PayrollStatus,
        actor: Actor,
        remarks: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> List[TransitionEvent]:
        """
        Move a record to `target`.

        Raises InvalidTransitionException for transitions outside the table
        and PermissionDeniedException when the actor lacks the permission
        the target state requires.
        """
        current = record.status
        if not self.can_transition(current, target):
            raise InvalidTransitionException(current.value, target.value)
        self.require_permission(actor, REQUIRED_PERMISSIONS[target])

        action = TRANSITIONS[current][target]
        now = _now()

        record.status = target
        record.updated_by_id = actor.id
        if target == PayrollStatus.PAID:
            record.paid_at = now
        self._append_history(record, actor, target, action, remarks, now)

        audit_action = ACTION_AUDIT.get(action, AuditAction.PAYROLL_TRANSITION)
        if action == ApprovalAction.CANCEL and current == PayrollStatus.PENDING_PAYMENT:
            audit_action = AuditAction.PAYMENT_CANCELLED

        logger.info(
            f"Payroll {record.id} transitioned {current.value} -> {target.value} by {actor.id}"
        )

        return [
            build_event(
                record, actor, action.value, current, audit_action,
                STATUS_NOTIFICATIONS[target], remarks=remarks, occurred_at=now, details=details,
            )
        ]

    def update_draft(
        self,
        record: PayrollRecord,
        changes: Dict[str, Any],
        actor: Actor,
    ) -> List[TransitionEvent]:
        """
        Edit monetary or payment fields in place. DRAFT only.

        Totals are recomputed from the edited breakdown so the gross and net
        identities keep holding.
        """
        if record.status != PayrollStatus.DRAFT:
            raise RecordImmutableException(record.id, record.status.value)
        self.require_permission(actor, PayrollPermission.EDIT_PAYROLL)

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationException(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        for name, value in changes.items():
            if name in MONEY_FIELDS:
                value = to_decimal(value, name).quantize(Decimal("0.01"))
            elif name in ITEM_FIELDS:
                value = [
                    {
                        "name": str(item["name"]),
                        "amount": str(to_decimal(item.get("amount"), name).quantize(Decimal("0.01"))),
                    }
                    for item in value
                ]
            elif name == "payment_method" and value is not None:
                try:
                    value = PaymentMethod(value)
                except ValueError:
                    raise ValidationException(f"Invalid payment method: {value}", field=name)
            setattr(record, name, value)

        refresh_totals(record)
        record.updated_by_id = actor.id

        return [
            build_event(
                record, actor, "update", record.status, AuditAction.PAYROLL_UPDATED, None,
                details={"fields": sorted(changes)},
            )
        ]

    def _append_history(
        self,
        record: PayrollRecord,
        actor: Actor,
        status: PayrollStatus,
        action: ApprovalAction,
        remarks: Optional[str],
        occurred_at: datetime,
    ) -> PayrollApprovalEntry:
        entry = PayrollApprovalEntry(
            id=uuid.uuid4(),
            sequence=len(record.approval_history) + 1,
            level=actor.level,
            status=status,
            action=action,
            actor_id=actor.id,
            occurred_at=occurred_at,
            remarks=remarks,
        )
        record.approval_history.append(entry)
        return entry


def _items_total(items: Optional[list]) -> Decimal:
    return sum((Decimal(str(i["amount"])) for i in items or []), ZERO)


def refresh_totals(record: PayrollRecord) -> None:
    """
    Recompute subtotals, gross, deductions and net from the breakdown.

    The overtime allowance line always mirrors `overtime_amount`.
    """
    allowances = [i for i in record.allowance_items or [] if i["name"] != OVERTIME_ITEM]
    if record.overtime_amount > 0:
        allowances.append({"name": OVERTIME_ITEM, "amount": str(record.overtime_amount)})
    record.allowance_items = allowances

    record.total_allowances = _items_total(record.allowance_items)
    record.total_bonuses = _items_total(record.bonus_items)
    record.gross_earnings = (
        record.basic_salary + record.total_allowances + record.total_bonuses
    )
    record.total_statutory = (
        record.tax + record.pension + record.nhf + _items_total(record.other_statutory_items)
    )
    record.total_voluntary = (
        _items_total(record.loan_items)
        + _items_total(record.other_voluntary_items)
        + _items_total(record.department_items)
    )
    record.total_deductions = record.total_statutory + record.total_voluntary
    record.net_pay = record.gross_earnings - record.total_deductions

    warnings = [w for w in (record.warnings or []) if w != NET_PAY_NEGATIVE]
    if record.net_pay < 0:
        warnings.append(NET_PAY_NEGATIVE)
    record.warnings = warnings
