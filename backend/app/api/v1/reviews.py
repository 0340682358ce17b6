from fastapi import APIRouter, BackgroundTasks, Depends

from app.api.v1.common import WorkflowServices, get_services, respond
from app.core.roles import get_current_actor
from app.models.reviews import InvitationResponse, ReviewDraft, ReviewSubmission
from app.models.workflow import Actor

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("/{review_id}/respond")
async def respond_to_invitation(
    review_id: str,
    payload: InvitationResponse,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """
    审稿人接受 / 拒绝审稿邀请
    """
    result = services.reviewers.respond_to_invitation(review_id, actor, payload.accept, payload.notes)
    return respond(result, background_tasks, services)


@router.put("/{review_id}/draft")
async def save_review_draft(
    review_id: str,
    payload: ReviewDraft,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    return respond(services.reviewers.save_review_draft(review_id, actor, payload), background_tasks, services)


@router.post("/{review_id}/submit")
async def submit_review(
    review_id: str,
    payload: ReviewSubmission,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """
    提交审稿意见

    中文注释: confidential_comments 仅编辑可见，作者视图在 SubmissionService.get_submission 中剔除。
    """
    result = services.reviewers.submit_review(review_id, actor, payload)
    return respond(result, background_tasks, services)
