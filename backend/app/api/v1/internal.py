from fastapi import APIRouter, Depends

from app.api.v1.common import WorkflowServices, get_services
from app.core.scheduler import ReviewReminderJob
from app.core.security import require_admin_key

router = APIRouter(prefix="/internal", tags=["Internal"])


@router.post("/cron/review-reminders")
async def review_reminders(
    _admin: None = Depends(require_admin_key),
    services: WorkflowServices = Depends(get_services),
):
    """
    触发逾期审稿自动催办（内部接口）
    """
    job = ReviewReminderJob(services.reviewers, services.dispatcher, services.reviewers.config)
    result = job.run()
    return {"success": True, **result}
