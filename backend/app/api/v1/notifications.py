from fastapi import APIRouter, Depends, Query

from app.api.v1.common import WorkflowServices, get_services
from app.core.roles import get_current_actor
from app.models.workflow import Actor

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    services: WorkflowServices = Depends(get_services),
):
    """
    当前用户的站内信（按时间倒序）
    """
    data = services.dispatcher.notifications.list_for_user(actor.id, limit=limit)
    return {"success": True, "data": data}
