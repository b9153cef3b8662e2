"""
Payroll Engine - Payment Lifecycle

Drives approved payroll through payment:

    APPROVED -> PENDING_PAYMENT -> PAID | FAILED
    (any non-terminal state before payment completes) -> CANCELLED
    APPROVED | FAILED -> ARCHIVED

`initiate` stamps the payroll with a unique payment reference and the
channel details. Completion, failure and cancellation each write one
Payment ledger entry. mark_paid / mark_failed accept many payroll ids and
report per-item outcomes instead of aborting on the first failure.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.config import settings
from payroll_engine.models.payroll import (
    Payment, PaymentMethod, PaymentStatus, PayrollRecord, PayrollStatus,
)
from payroll_engine.services.approval_state_machine import ApprovalStateMachine, TransitionEvent
from payroll_engine.services.event_dispatcher import EventDispatcher, commit_and_dispatch
from payroll_engine.services.payroll_store import PayrollRecordStore
from payroll_engine.utils.error_handling import (
    AppException, ErrorCode, InvalidStatusException, PayrollNotFoundException, ValidationException,
)
from payroll_engine.utils.permissions import Actor

logger = logging.getLogger(__name__)


def generate_payment_reference(prefix: Optional[str] = None) -> str:
    """PAY-YYYYMMDD-<12 hex>, e.g. PAY-20260131-3F9A0C1D2B4E"""
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"{prefix or settings.payment_reference_prefix}-{today}-{uuid.uuid4().hex[:12].upper()}"


def generate_cancellation_reference() -> str:
    return generate_payment_reference(f"{settings.payment_reference_prefix}-CANCEL")


@dataclass
class PaymentBatchResult:
    """Per-item accounting for mark_paid / mark_failed."""

    total: int = 0
    succeeded: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


class PaymentLifecycleManager:
    """Payment operations on payroll records."""

    def __init__(
        self,
        db: AsyncSession,
        store: PayrollRecordStore,
        state_machine: ApprovalStateMachine,
        dispatcher: EventDispatcher,
    ):
        self.db = db
        self.store = store
        self.state_machine = state_machine
        self.dispatcher = dispatcher

    async def initiate(
        self,
        payroll_id: uuid.UUID,
        actor: Actor,
        method: Any = PaymentMethod.BANK_TRANSFER,
        bank_details: Optional[Dict[str, Optional[str]]] = None,
        notes: Optional[str] = None,
    ) -> PayrollRecord:
        """
        Move an APPROVED payroll to PENDING_PAYMENT.

        Bank details fall back to those stored on the employee when none
        are supplied. Raises InvalidStatusException for any other status.
        """
        record = await self.store.get(payroll_id)
        if record.status != PayrollStatus.APPROVED:
            raise InvalidStatusException(
                record.status.value, [PayrollStatus.APPROVED.value], "initiate payment for",
            )

        try:
            payment_method = PaymentMethod(method)
        except ValueError:
            raise ValidationException(f"Invalid payment method: {method}", field="method")

        details = bank_details or {}
        employee = record.__dict__.get("employee")
        fallback = employee.bank_details if employee is not None else {}

        reference = generate_payment_reference()
        events = self.state_machine.transition(
            record,
            PayrollStatus.PENDING_PAYMENT,
            actor,
            remarks=notes,
            details={"payment_reference": reference, "payment_method": payment_method.value},
        )

        record.payment_method = payment_method
        record.payment_reference = reference
        record.payment_bank_name = details.get("bank_name") or fallback.get("bank_name")
        record.payment_account_number = details.get("account_number") or fallback.get("account_number")
        record.payment_account_name = details.get("account_name") or fallback.get("account_name")
        record.payment_notes = notes
        await self.store.save(record)

        logger.info(f"Payment initiated for payroll {record.id} with reference {reference}")
        await commit_and_dispatch(self.db, self.dispatcher, events)
        return record

    async def mark_paid(self, payroll_ids: Sequence[uuid.UUID], actor: Actor) -> PaymentBatchResult:
        """PENDING_PAYMENT -> PAID for each id, writing a completed ledger entry."""
        return await self._settle(payroll_ids, actor, PayrollStatus.PAID, PaymentStatus.COMPLETED)

    async def mark_failed(
        self,
        payroll_ids: Sequence[uuid.UUID],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> PaymentBatchResult:
        """PENDING_PAYMENT -> FAILED for each id, writing a failed ledger entry."""
        return await self._settle(payroll_ids, actor, PayrollStatus.FAILED, PaymentStatus.FAILED, reason)

    async def cancel(
        self,
        payroll_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> PayrollRecord:
        record = await self.store.get(payroll_id)
        reference = generate_cancellation_reference()
        events = self.state_machine.transition(
            record,
            PayrollStatus.CANCELLED,
            actor,
            remarks=reason,
            details={"payment_reference": reference},
        )
        await self.store.add_payment(
            self._ledger_entry(record, actor, PaymentStatus.CANCELLED, reference, reason)
        )
        await self.store.save(record)

        logger.info(f"Payroll {record.id} cancelled by {actor.id}")
        await commit_and_dispatch(self.db, self.dispatcher, events)
        return record

    async def archive(self, payroll_id: uuid.UUID, actor: Actor) -> PayrollRecord:
        record = await self.store.get(payroll_id)
        events = self.state_machine.transition(record, PayrollStatus.ARCHIVED, actor)
        await self.store.save(record)
        await commit_and_dispatch(self.db, self.dispatcher, events)
        return record

    # ===========================================
    # BATCH SETTLEMENT
    # ===========================================

    async def _settle(
        self,
        payroll_ids: Sequence[uuid.UUID],
        actor: Actor,
        target: PayrollStatus,
        payment_status: PaymentStatus,
        reason: Optional[str] = None,
    ) -> PaymentBatchResult:
        ids = list(dict.fromkeys(payroll_ids))
        result = PaymentBatchResult(total=len(ids))
        events: List[TransitionEvent] = []
        records = await self.store.get_many(ids)

        for payroll_id in ids:
            try:
                async with self.db.begin_nested():
                    record = records.get(payroll_id)
                    if record is None:
                        raise PayrollNotFoundException(payroll_id)
                    if record.status != PayrollStatus.PENDING_PAYMENT:
                        raise InvalidStatusException(
                            record.status.value,
                            [PayrollStatus.PENDING_PAYMENT.value],
                            f"mark {target.value}",
                        )
                    item_events = self.state_machine.transition(
                        record, target, actor, remarks=reason,
                        details={"payment_reference": record.payment_reference},
                    )
                    await self.store.add_payment(
                        self._ledger_entry(record, actor, payment_status, record.payment_reference, reason)
                    )
                    await self.store.save(record)
            except AppException as e:
                result.failed.append({
                    "payroll_id": str(payroll_id),
                    "error_code": e.code.value,
                    "reason": e.message,
                })
                continue
            except SQLAlchemyError as e:
                logger.error(f"Database error settling payroll {payroll_id}: {e}")
                result.failed.append({
                    "payroll_id": str(payroll_id),
                    "error_code": ErrorCode.SYSTEM_ERROR.value,
                    "reason": str(e),
                })
                continue

            events.extend(item_events)
            result.succeeded.append({
                "payroll_id": str(payroll_id),
                "status": target.value,
                "payment_reference": record.payment_reference,
            })

        logger.info(
            f"Marked {len(result.succeeded)}/{result.total} payrolls {target.value}; "
            f"{len(result.failed)} failed"
        )
        await commit_and_dispatch(self.db, self.dispatcher, events)
        return result

    def _ledger_entry(
        self,
        record: PayrollRecord,
        actor: Actor,
        status: PaymentStatus,
        reference: Optional[str],
        notes: Optional[str],
    ) -> Payment:
        return Payment(
            id=uuid.uuid4(),
            payroll_id=record.id,
            employee_id=record.employee_id,
            amount=record.net_pay,
            status=status,
            method=record.payment_method or PaymentMethod.BANK_TRANSFER,
            reference=reference or generate_payment_reference(),
            processed_by_id=actor.id,
            processed_at=datetime.now(timezone.utc),
            bank_name=record.payment_bank_name,
            account_number=record.payment_account_number,
            account_name=record.payment_account_name,
            notes=notes,
            extra_data={"payroll_status": record.status.value, "month": record.month, "year": record.year},
        )
