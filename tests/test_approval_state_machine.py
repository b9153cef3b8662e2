"""
Payroll Engine - Approval State Machine Tests

Transition table, permission checks, history and draft edits.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from payroll_engine.models.audit import AuditAction, NotificationType
from payroll_engine.models.payroll import ApprovalAction, PayrollStatus
from payroll_engine.services.approval_state_machine import (
    TERMINAL_STATES,
    TRANSITIONS,
    ApprovalStateMachine,
    refresh_totals,
)
from payroll_engine.services.payroll_calculator import NET_PAY_NEGATIVE
from payroll_engine.utils.error_handling import (
    CalculationException,
    InvalidTransitionException,
    PermissionDeniedException,
    RecordImmutableException,
    ValidationException,
)
from payroll_engine.utils.permissions import Actor, PayrollPermission

from factories import make_employee, make_record


@pytest.fixture
def machine():
    return ApprovalStateMachine()


class TestTransitionTable:
    """Shape of the lifecycle graph."""

    def test_terminal_states_have_no_outgoing_transitions(self):
        for status in TERMINAL_STATES:
            assert status not in TRANSITIONS

    def test_paid_is_only_reachable_from_pending_payment(self):
        sources = [s for s, targets in TRANSITIONS.items() if PayrollStatus.PAID in targets]
        assert sources == [PayrollStatus.PENDING_PAYMENT]

    def test_allowed_targets_from_approved(self, machine):
        assert set(machine.allowed_targets(PayrollStatus.APPROVED)) == {
            PayrollStatus.PENDING_PAYMENT,
            PayrollStatus.CANCELLED,
            PayrollStatus.ARCHIVED,
        }

    def test_paid_record_cannot_be_cancelled(self, machine):
        assert not machine.can_transition(PayrollStatus.PAID, PayrollStatus.CANCELLED)


class TestInitialize:
    """Creation status and opening history."""

    def test_draft_gets_single_create_entry(self, machine, hr_manager):
        record = make_record()
        record.approval_history.clear()

        events = machine.initialize(record, hr_manager, PayrollStatus.DRAFT, remarks="January run")

        assert record.status == PayrollStatus.DRAFT
        assert [e.action for e in record.approval_history] == [ApprovalAction.CREATE]
        assert record.approval_history[0].sequence == 1
        assert record.created_by_id == hr_manager.id
        assert len(events) == 1
        assert events[0].audit_action == AuditAction.PAYROLL_CREATED
        assert events[0].notification_type == NotificationType.PAYROLL_CREATED

    def test_approved_on_creation_writes_create_then_approve(self, machine, super_admin):
        record = make_record()
        record.approval_history.clear()

        machine.initialize(record, super_admin, PayrollStatus.APPROVED)

        assert record.status == PayrollStatus.APPROVED
        assert [(e.status, e.action) for e in record.approval_history] == [
            (PayrollStatus.PENDING, ApprovalAction.CREATE),
            (PayrollStatus.APPROVED, ApprovalAction.APPROVE),
        ]

    def test_approved_on_creation_requires_review_bypass(self, machine, hr_manager):
        with pytest.raises(PermissionDeniedException):
            machine.initialize(make_record(), hr_manager, PayrollStatus.APPROVED)

    def test_initial_status_depends_on_bypass(self, machine, hr_manager, super_admin):
        assert machine.initial_status(hr_manager) == PayrollStatus.PENDING
        assert machine.initial_status(super_admin) == PayrollStatus.APPROVED

    def test_cannot_create_in_paid(self, machine, super_admin):
        with pytest.raises(InvalidTransitionException):
            machine.initialize(make_record(), super_admin, PayrollStatus.PAID)


class TestTransition:
    """Applying transitions."""

    def test_submit_then_approve_appends_history(self, machine, hr_manager):
        record = make_record(PayrollStatus.DRAFT)

        machine.transition(record, PayrollStatus.PENDING, hr_manager)
        events = machine.transition(record, PayrollStatus.APPROVED, hr_manager, remarks="ok")

        assert record.status == PayrollStatus.APPROVED
        assert [e.sequence for e in record.approval_history] == [1, 2, 3]
        assert record.approval_history[-1].action == ApprovalAction.APPROVE
        assert record.approval_history[-1].remarks == "ok"
        assert events[0].previous_status == PayrollStatus.PENDING
        assert events[0].new_status == PayrollStatus.APPROVED
        assert events[0].amount == record.net_pay

    def test_invalid_transition_leaves_record_untouched(self, machine, super_admin):
        record = make_record(PayrollStatus.DRAFT)

        with pytest.raises(InvalidTransitionException) as exc:
            machine.transition(record, PayrollStatus.PAID, super_admin)

        assert exc.value.current == "draft"
        assert exc.value.attempted == "paid"
        assert record.status == PayrollStatus.DRAFT
        assert len(record.approval_history) == 1

    def test_rejected_is_terminal(self, machine, super_admin):
        record = make_record(PayrollStatus.REJECTED)
        with pytest.raises(InvalidTransitionException):
            machine.transition(record, PayrollStatus.PENDING, super_admin)

    def test_department_head_cannot_approve(self, machine, department_head):
        record = make_record(PayrollStatus.PENDING)
        with pytest.raises(PermissionDeniedException):
            machine.transition(record, PayrollStatus.APPROVED, department_head)
        assert record.status == PayrollStatus.PENDING

    def test_explicit_permission_grants_approval(self, machine):
        actor = Actor(id=uuid4(), permissions=frozenset({PayrollPermission.APPROVE_PAYROLL}))
        record = make_record(PayrollStatus.PENDING)
        machine.transition(record, PayrollStatus.APPROVED, actor)
        assert record.status == PayrollStatus.APPROVED
        assert record.approval_history[-1].level is None

    def test_mark_paid_sets_paid_at(self, machine, finance_director):
        record = make_record(PayrollStatus.PENDING_PAYMENT)
        events = machine.transition(record, PayrollStatus.PAID, finance_director)
        assert record.paid_at is not None
        assert events[0].audit_action == AuditAction.PAYMENT_COMPLETED

    def test_cancel_during_payment_is_audited_as_payment_cancelled(self, machine, finance_director):
        record = make_record(PayrollStatus.PENDING_PAYMENT)
        events = machine.transition(record, PayrollStatus.CANCELLED, finance_director)
        assert events[0].audit_action == AuditAction.PAYMENT_CANCELLED

    def test_event_carries_loaded_employee_contact(self, machine, hr_manager):
        employee = make_employee("EMP-042")
        record = make_record(PayrollStatus.DRAFT, employee=employee)
        events = machine.transition(record, PayrollStatus.PENDING, hr_manager)
        assert events[0].employee_email == "emp-042@example.com"
        assert events[0].actor_email == hr_manager.email


class TestUpdateDraft:
    """In-place edits while in DRAFT."""

    def test_edit_recomputes_totals(self, machine, hr_manager):
        record = make_record(PayrollStatus.DRAFT)

        machine.update_draft(
            record,
            {"overtime_amount": "15000", "loan_items": [{"name": "Salary advance", "amount": "10000"}]},
            hr_manager,
        )

        assert record.overtime_amount == Decimal("15000.00")
        assert record.allowance_items[-1] == {"name": "Overtime", "amount": "15000.00"}
        assert record.total_allowances == Decimal("35000.00")
        assert record.gross_earnings == Decimal("335000.00")
        assert record.gross_earnings == (
            record.basic_salary + record.total_allowances + record.total_bonuses
        )
        assert record.total_voluntary == Decimal("10000.00")
        assert record.total_deductions == Decimal("56400.00")
        assert record.net_pay == Decimal("278600.00")
        assert record.gross_earnings - record.total_deductions == record.net_pay

    def test_overtime_line_follows_overtime_amount(self, machine, hr_manager):
        record = make_record(PayrollStatus.DRAFT)

        machine.update_draft(record, {"overtime_amount": "15000"}, hr_manager)
        machine.update_draft(record, {"overtime_amount": "4000"}, hr_manager)

        assert record.allowance_items == [
            {"name": "Transport", "amount": "20000.00"},
            {"name": "Overtime", "amount": "4000.00"},
        ]
        assert record.gross_earnings == Decimal("324000.00")

        machine.update_draft(record, {"overtime_amount": "0"}, hr_manager)

        assert record.allowance_items == [{"name": "Transport", "amount": "20000.00"}]
        assert record.gross_earnings == Decimal("320000.00")
        assert record.gross_earnings == (
            record.basic_salary + record.total_allowances + record.total_bonuses
        )

    def test_edit_outside_draft_rejected(self, machine, hr_manager):
        record = make_record(PayrollStatus.PENDING)
        with pytest.raises(RecordImmutableException):
            machine.update_draft(record, {"tax": "1000"}, hr_manager)

    def test_unknown_field_rejected(self, machine, hr_manager):
        with pytest.raises(ValidationException):
            machine.update_draft(make_record(), {"status": "paid"}, hr_manager)

    def test_negative_amount_rejected(self, machine, hr_manager):
        with pytest.raises(CalculationException):
            machine.update_draft(make_record(), {"basic_salary": "-1"}, hr_manager)

    def test_requires_edit_permission(self, machine, finance_director):
        with pytest.raises(PermissionDeniedException):
            machine.update_draft(make_record(), {"tax": "1000"}, finance_director)


class TestRefreshTotals:
    """Net pay warning follows the recomputed figures."""

    def test_negative_net_pay_flagged_and_cleared(self):
        record = make_record()
        record.loan_items = [{"name": "Loan", "amount": "400000.00"}]
        refresh_totals(record)
        assert record.net_pay < 0
        assert NET_PAY_NEGATIVE in record.warnings

        record.loan_items = []
        refresh_totals(record)
        assert record.net_pay == Decimal("273600.00")
        assert NET_PAY_NEGATIVE not in record.warnings
