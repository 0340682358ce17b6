from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from app.api.v1.common import WorkflowServices, get_services, respond
from app.core.roles import get_current_actor
from app.models.payment import PaymentCreate
from app.models.revision import RevisionCreate
from app.models.submission import FileReference, SubmissionCreate, WithdrawRequest
from app.models.workflow import Actor

router = APIRouter(prefix="/submissions", tags=["Submissions"])


@router.post("")
async def create_submission(
    payload: SubmissionCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """作者创建草稿"""
    result = services.submissions.create_submission(actor, payload)
    return respond(result, background_tasks, services)


@router.get("/{submission_id}")
async def get_submission(
    submission_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    return respond(services.submissions.get_submission(submission_id, actor), background_tasks, services)


@router.post("/{submission_id}/files")
async def attach_submission_file(
    submission_id: str,
    file_ref: FileReference,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """
    绑定稿件文件引用（文件本身已由前端直传 Storage）
    """
    result = services.submissions.attach_file(submission_id, actor, file_ref)
    return respond(result, background_tasks, services)


@router.post("/{submission_id}/submit")
async def submit_for_review(
    submission_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.submissions.submit_for_review(submission_id, actor)
    return respond(result, background_tasks, services)


@router.post("/{submission_id}/withdraw")
async def withdraw_submission(
    submission_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[WithdrawRequest] = None,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.submissions.withdraw_submission(submission_id, actor, payload.reason if payload else None)
    return respond(result, background_tasks, services)


@router.get("/{submission_id}/timeline")
async def get_timeline(
    submission_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    return respond(services.submissions.get_timeline(submission_id, actor), background_tasks, services)


@router.post("/{submission_id}/revisions")
async def create_revision(
    submission_id: str,
    payload: RevisionCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.revisions.create_revision(submission_id, actor, payload)
    return respond(result, background_tasks, services)


@router.get("/{submission_id}/revisions")
async def list_revisions(
    submission_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    return respond(services.revisions.list_revisions(submission_id, actor), background_tasks, services)


@router.post("/revisions/{revision_id}/files")
async def attach_revision_file(
    revision_id: str,
    file_ref: FileReference,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.revisions.attach_revision_file(revision_id, actor, file_ref)
    return respond(result, background_tasks, services)


@router.post("/{submission_id}/payments")
async def create_payment(
    submission_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[PaymentCreate] = None,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """
    生成 APC 付款义务（作者 / 编辑 / 管理员均可发起，例如上一笔付款失败后重新发起）
    """
    result = services.payments.create_payment_obligation(
        submission_id,
        actor,
        amount=payload.amount if payload else None,
        currency=payload.currency if payload else None,
    )
    return respond(result, background_tasks, services)
