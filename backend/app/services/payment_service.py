from __future__ import annotations

import logging
import time
from typing import Any, Optional

from app.core.config import WorkflowConfig
from app.models.payment import ACTIVE_PAYMENT_STATUSES, PaymentStatus
from app.models.submission import SubmissionStatus, WorkflowAction, allowed_targets
from app.models.workflow import (
    Actor,
    ErrorKind,
    Role,
    TransitionKind,
    WorkflowError,
    WorkflowResult,
    notify,
)
from app.services.state_machine import SubmissionStateMachine
from app.services.submission_store import DuplicateKeyError, SubmissionStore, utc_now
from app.services.workflow_common import (
    assigned_editor_ids,
    current_status,
    is_assigned_editor,
    load_submission,
    require_admin,
    workflow_operation,
)

logger = logging.getLogger("manuscripts.payments")

_ACTIVE = {s.value for s in ACTIVE_PAYMENT_STATUSES}


def generate_invoice_number(submission_id: str) -> str:
    short = str(submission_id).replace("-", "")[:8].upper() or "UNKNOWN"
    return f"INV-{int(time.time() * 1000)}-{short}"


def _money(amount: Any) -> str:
    try:
        return f"{float(amount):.2f}"
    except (TypeError, ValueError):
        return str(amount)


class PaymentService:
    """
    APC 付款闸门。

    中文注释:
    - 录用后（accepted）生成付款义务 => payment_pending；确认到账 => 回到 accepted，发布闸门放行。
    - 同一投稿最多一笔有效付款（pending/paid），数据库层有部分唯一索引兜底。
    - 确认到账必须幂等：已 paid 再次确认返回 AlreadyPaid，不重复写时间线、不重复发通知。
    - 对接真实支付渠道不在本服务范围内，这里只记录状态。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        state_machine: Optional[SubmissionStateMachine] = None,
        config: Optional[WorkflowConfig] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.state_machine = state_machine or SubmissionStateMachine(self.store)
        self.config = config or WorkflowConfig.from_env()

    def payment_required(self) -> bool:
        return self.config.fee_required

    def active_payment(self, submission_id: str) -> Optional[dict[str, Any]]:
        for row in self.store.list_payments(submission_id):
            if row.get("status") in _ACTIVE:
                return row
        return None

    def get_payment_gate(self, submission_id: str) -> dict[str, Any]:
        payments = self.store.list_payments(submission_id)
        paid = next((p for p in payments if p.get("status") == PaymentStatus.PAID.value), None)
        required = self.payment_required()
        return {
            "required": required,
            "satisfied": (not required) or paid is not None,
            "payment": paid or next((p for p in payments if p.get("status") in _ACTIVE), None),
        }

    def _load_payment(self, payment_id: str) -> dict[str, Any]:
        payment = self.store.get_payment(payment_id)
        if not payment:
            raise WorkflowError.not_found("Payment", payment_id)
        return payment

    @workflow_operation("Payment")
    def create_payment_obligation(
        self,
        submission_id: str,
        actor: Actor,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
    ) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        is_author = str(submission.get("author_id") or "") == actor.id
        is_editor = actor.has_any_role([Role.EDITOR]) and is_assigned_editor(self.store, submission_id, actor)
        if not (actor.is_admin or is_author or is_editor):
            raise WorkflowError.forbidden()

        status = current_status(submission)
        if SubmissionStatus.PAYMENT_PENDING not in allowed_targets(WorkflowAction.REQUEST_PAYMENT, status):
            raise WorkflowError.invalid_state(
                "Payment can only be requested for accepted submissions", current_status=status.value
            )
        if self.active_payment(submission_id):
            raise WorkflowError.invalid_state("An active payment already exists for this submission")

        value = float(amount) if amount is not None else self.config.apc_amount
        if value <= 0:
            raise WorkflowError.validation("Payment amount must be positive")
        code = (currency or self.config.apc_currency).strip().upper()

        try:
            payment = self.store.insert_payment(
                {
                    "submission_id": submission_id,
                    "amount": value,
                    "currency": code,
                    "status": PaymentStatus.PENDING.value,
                    "invoice_number": generate_invoice_number(submission_id),
                    "created_by": actor.id,
                    "created_at": utc_now(),
                }
            )
        except DuplicateKeyError as e:
            raise WorkflowError.conflict("A payment was created concurrently") from e

        try:
            updated = self.state_machine.transition(
                submission,
                action=WorkflowAction.REQUEST_PAYMENT,
                to_status=SubmissionStatus.PAYMENT_PENDING,
                actor=actor,
                event=TransitionKind.PAYMENT_REQUESTED,
                description=f"Payment of {code} {_money(value)} requested (invoice {payment.get('invoice_number')})",
                metadata={"payment_id": payment.get("id")},
            )
        except Exception:
            self.store.delete_payment(str(payment["id"]))
            raise

        effects = [
            notify(
                TransitionKind.PAYMENT_REQUESTED,
                submission_id,
                [submission.get("author_id")],
                template="payment_request.html",
                submission_title=submission.get("title"),
                amount=_money(value),
                currency=code,
                invoice_number=payment.get("invoice_number"),
            )
        ]
        return WorkflowResult.ok({"payment": payment, "submission": updated}, effects)

    @workflow_operation("Payment")
    def mark_payment_as_paid(
        self, payment_id: str, actor: Actor, transaction_reference: Optional[str] = None
    ) -> WorkflowResult:
        require_admin(actor)
        payment = self._load_payment(payment_id)
        if payment.get("status") == PaymentStatus.PAID.value:
            raise WorkflowError(ErrorKind.ALREADY_PAID, "Payment has already been marked as paid")
        if payment.get("status") != PaymentStatus.PENDING.value:
            raise WorkflowError.invalid_state(
                f"Payment is {payment.get('status')} and cannot be marked as paid"
            )

        submission_id = str(payment["submission_id"])
        submission = load_submission(self.store, submission_id)
        status = current_status(submission)
        if SubmissionStatus.ACCEPTED not in allowed_targets(WorkflowAction.CONFIRM_PAYMENT, status):
            raise WorkflowError.invalid_state(
                "Submission is not awaiting payment", current_status=status.value
            )

        paid = self.store.update_payment_if_status(
            payment_id,
            PaymentStatus.PENDING.value,
            {
                "status": PaymentStatus.PAID.value,
                "paid_at": utc_now(),
                "transaction_reference": transaction_reference,
                "confirmed_by": actor.id,
            },
        )
        if paid is None:
            fresh = self.store.get_payment(payment_id)
            if fresh and fresh.get("status") == PaymentStatus.PAID.value:
                raise WorkflowError(ErrorKind.ALREADY_PAID, "Payment has already been marked as paid")
            raise WorkflowError.conflict("Payment changed concurrently")

        amount = _money(payment.get("amount"))
        currency = payment.get("currency") or self.config.apc_currency
        try:
            updated = self.state_machine.transition(
                submission,
                action=WorkflowAction.CONFIRM_PAYMENT,
                to_status=SubmissionStatus.ACCEPTED,
                actor=actor,
                event=TransitionKind.PAYMENT_RECEIVED,
                description=f"Payment of {currency} {amount} received",
                metadata={"payment_id": payment_id},
            )
        except Exception:
            # 付款与投稿状态必须一起成功：投稿状态写入失败则把付款恢复为 pending
            self.store.update_payment_if_status(
                payment_id,
                PaymentStatus.PAID.value,
                {
                    "status": PaymentStatus.PENDING.value,
                    "paid_at": None,
                    "transaction_reference": payment.get("transaction_reference"),
                    "confirmed_by": None,
                },
            )
            raise

        effects = [
            notify(
                TransitionKind.PAYMENT_RECEIVED,
                submission_id,
                [submission.get("author_id")],
                template="payment_received.html",
                submission_title=submission.get("title"),
                amount=amount,
                currency=currency,
                invoice_number=payment.get("invoice_number"),
            ),
            notify(
                TransitionKind.PAYMENT_RECEIVED,
                submission_id,
                assigned_editor_ids(self.store, submission_id),
                submission_title=submission.get("title"),
                amount=amount,
                currency=currency,
            ),
        ]
        return WorkflowResult.ok({"payment": paid, "submission": updated}, effects)

    def _settle(
        self,
        payment_id: str,
        actor: Actor,
        *,
        expected: PaymentStatus,
        target: PaymentStatus,
        event: TransitionKind,
        reason: Optional[str],
        timestamp_field: str,
    ) -> WorkflowResult:
        require_admin(actor)
        payment = self._load_payment(payment_id)
        if payment.get("status") != expected.value:
            raise WorkflowError.invalid_state(
                f"Payment is {payment.get('status')}, expected {expected.value}"
            )
        updated = self.store.update_payment_if_status(
            payment_id,
            expected.value,
            {"status": target.value, timestamp_field: utc_now(), "status_reason": reason},
        )
        if updated is None:
            raise WorkflowError.conflict("Payment changed concurrently")

        submission = load_submission(self.store, str(payment["submission_id"]))
        amount = _money(payment.get("amount"))
        currency = payment.get("currency") or self.config.apc_currency
        self.state_machine.record(
            submission,
            event=event,
            actor=actor,
            description=f"Payment of {currency} {amount} {target.value}{': ' + reason if reason else ''}",
            metadata={"payment_id": payment_id},
        )
        effects = [
            notify(
                event,
                str(submission["id"]),
                [submission.get("author_id")],
                submission_title=submission.get("title"),
                amount=amount,
                currency=currency,
                reason=reason,
            )
        ]
        return WorkflowResult.ok(updated, effects)

    @workflow_operation("Payment")
    def mark_payment_failed(self, payment_id: str, actor: Actor, reason: Optional[str] = None) -> WorkflowResult:
        return self._settle(
            payment_id,
            actor,
            expected=PaymentStatus.PENDING,
            target=PaymentStatus.FAILED,
            event=TransitionKind.PAYMENT_FAILED,
            reason=reason,
            timestamp_field="failed_at",
        )

    @workflow_operation("Payment")
    def refund_payment(self, payment_id: str, actor: Actor, reason: Optional[str] = None) -> WorkflowResult:
        return self._settle(
            payment_id,
            actor,
            expected=PaymentStatus.PAID,
            target=PaymentStatus.REFUNDED,
            event=TransitionKind.PAYMENT_REFUNDED,
            reason=reason,
            timestamp_field="refunded_at",
        )
