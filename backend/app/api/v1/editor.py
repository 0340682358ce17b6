from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from app.api.v1.common import WorkflowServices, get_services, respond
from app.core.roles import get_current_actor, require_any_role
from app.models.decision import DecisionRequest, RevisionDecisionRequest
from app.models.publication import PublishRequest
from app.models.reviews import AssignReviewerRequest, ExtendDeadlineRequest, RemoveReviewerRequest
from app.models.submission import AssignEditorRequest, ScreeningRequest, StatusOverrideRequest
from app.models.workflow import Actor

router = APIRouter(prefix="/editor", tags=["Editor Command Center"])


# === 编辑分配 / 初审 ===


@router.post("/submissions/{submission_id}/assign-editor")
async def assign_editor(
    submission_id: str,
    payload: AssignEditorRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_any_role(["editor", "admin"])),
    services: WorkflowServices = Depends(get_services),
):
    result = services.submissions.assign_editor(submission_id, payload.editor_id, actor, is_chief=payload.is_chief)
    return respond(result, background_tasks, services)


@router.post("/submissions/{submission_id}/screening")
async def perform_initial_screening(
    submission_id: str,
    payload: ScreeningRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_any_role(["editor", "admin"])),
    services: WorkflowServices = Depends(get_services),
):
    """
    初审（形式审查）：进入审稿 / 直接拒稿 / 退回修改格式
    """
    result = services.submissions.perform_initial_screening(submission_id, actor, payload.decision, payload.comments)
    return respond(result, background_tasks, services)


# === 审稿人管理 ===


@router.post("/submissions/{submission_id}/reviewers")
async def assign_reviewer(
    submission_id: str,
    payload: AssignReviewerRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.reviewers.assign_reviewer(submission_id, payload.reviewer_id, actor, due_date=payload.due_date)
    return respond(result, background_tasks, services)


@router.get("/submissions/{submission_id}/available-reviewers")
async def get_available_reviewers(
    submission_id: str,
    background_tasks: BackgroundTasks,
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.reviewers.get_available_reviewers(submission_id, actor, limit=limit)
    return respond(result, background_tasks, services)


@router.delete("/reviews/{review_id}")
async def remove_reviewer(
    review_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[RemoveReviewerRequest] = None,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.reviewers.remove_reviewer(review_id, actor, payload.reason if payload else None)
    return respond(result, background_tasks, services)


@router.post("/reviews/{review_id}/remind")
async def send_review_reminder(
    review_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    return respond(services.reviewers.send_review_reminder(review_id, actor), background_tasks, services)


@router.post("/reviews/{review_id}/extend-deadline")
async def extend_review_deadline(
    review_id: str,
    payload: ExtendDeadlineRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.reviewers.extend_review_deadline(review_id, actor, payload.due_date, payload.reason)
    return respond(result, background_tasks, services)


@router.get("/reviews/overdue")
async def get_overdue_reviews(
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_any_role(["editor", "admin"])),
    services: WorkflowServices = Depends(get_services),
):
    return respond(services.reviewers.get_overdue_reviews(actor), background_tasks, services)


# === 决策 ===


@router.post("/submissions/{submission_id}/decision")
async def make_decision(
    submission_id: str,
    payload: DecisionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """
    编辑最终决策（accept / reject / revision_required）

    中文注释: Accept 且需要 APC 时，会自动生成付款义务并进入 payment_pending。
    """
    result = services.decisions.make_decision(submission_id, actor, payload)
    return respond(result, background_tasks, services)


@router.post("/submissions/{submission_id}/revision-decision")
async def handle_revision(
    submission_id: str,
    payload: RevisionDecisionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    result = services.decisions.handle_revision(submission_id, actor, payload.decision, payload.comments)
    return respond(result, background_tasks, services)


# === DOI / 发布 ===


@router.post("/submissions/{submission_id}/doi")
async def assign_doi(
    submission_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    return respond(services.publication.assign_doi(submission_id, actor), background_tasks, services)


@router.post("/submissions/{submission_id}/publish")
async def publish_submission(
    submission_id: str,
    payload: PublishRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """
    发布稿件

    中文注释: 付款闸门（APC 未付 -> 402）与 DOI 检查都在 PublicationService 内完成。
    """
    result = services.publication.publish_submission(
        submission_id,
        actor,
        payload.issue_id,
        pages=payload.pages,
        assign_doi_if_missing=payload.assign_doi_if_missing,
    )
    return respond(result, background_tasks, services)


# === 管理员越权 ===


@router.post("/submissions/{submission_id}/status-override")
async def override_status(
    submission_id: str,
    payload: StatusOverrideRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_any_role(["admin"])),
    services: WorkflowServices = Depends(get_services),
):
    result = services.submissions.override_status(submission_id, actor, payload.status, payload.reason)
    return respond(result, background_tasks, services)
