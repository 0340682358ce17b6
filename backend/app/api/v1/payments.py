from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from app.api.v1.common import WorkflowServices, get_services, respond
from app.core.roles import require_any_role
from app.models.payment import MarkPaidRequest, PaymentNoteRequest
from app.models.workflow import Actor

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/{payment_id}/mark-paid")
async def mark_payment_as_paid(
    payment_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[MarkPaidRequest] = None,
    actor: Actor = Depends(require_any_role(["admin"])),
    services: WorkflowServices = Depends(get_services),
):
    """
    财务确认到账（线下转账/支付网关回调由管理员人工核对）

    中文注释: 同一笔付款重复确认返回 409 ALREADY_PAID，不会重复推进状态。
    """
    result = services.payments.mark_payment_as_paid(
        payment_id, actor, payload.transaction_reference if payload else None
    )
    return respond(result, background_tasks, services)


@router.post("/{payment_id}/mark-failed")
async def mark_payment_failed(
    payment_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[PaymentNoteRequest] = None,
    actor: Actor = Depends(require_any_role(["admin"])),
    services: WorkflowServices = Depends(get_services),
):
    result = services.payments.mark_payment_failed(payment_id, actor, payload.reason if payload else None)
    return respond(result, background_tasks, services)


@router.post("/{payment_id}/refund")
async def refund_payment(
    payment_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[PaymentNoteRequest] = None,
    actor: Actor = Depends(require_any_role(["admin"])),
    services: WorkflowServices = Depends(get_services),
):
    result = services.payments.refund_payment(payment_id, actor, payload.reason if payload else None)
    return respond(result, background_tasks, services)
