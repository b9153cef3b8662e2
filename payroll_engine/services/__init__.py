"""
Payroll Engine - Services Package

Business logic services.
"""

from payroll_engine.services.payroll_calculator import PayrollCalculator, PayrollTotals
from payroll_engine.services.salary_resolver import SalaryResolver, ResolvedSalaryInputs
from payroll_engine.services.payroll_store import PayrollRecordStore
from payroll_engine.services.approval_state_machine import ApprovalStateMachine, TransitionEvent
from payroll_engine.services.audit_service import AuditService
from payroll_engine.services.notification_service import NotificationService
from payroll_engine.services.email_service import MailDispatcher
from payroll_engine.services.event_dispatcher import EventDispatcher
from payroll_engine.services.batch_processor import BatchProcessor
from payroll_engine.services.payment_lifecycle import PaymentLifecycleManager
from payroll_engine.services.payroll_service import PayrollService

__all__ = [
    "PayrollCalculator",
    "PayrollTotals",
    "SalaryResolver",
    "ResolvedSalaryInputs",
    "PayrollRecordStore",
    "ApprovalStateMachine",
    "TransitionEvent",
    "AuditService",
    "NotificationService",
    "MailDispatcher",
    "EventDispatcher",
    "BatchProcessor",
    "PaymentLifecycleManager",
    "PayrollService",
]
