from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.models.submission import SubmissionStatus, normalize_status
from app.models.workflow import Actor, Role, WorkflowError, WorkflowResult
from app.services.submission_store import SubmissionStore

logger = logging.getLogger("manuscripts.workflow")

EDITOR_ROLES = (Role.EDITOR, Role.ADMIN)


def workflow_operation(tag: str) -> Callable:
    """
    操作边界：把内部抛出的 WorkflowError 转为失败的 WorkflowResult。

    中文注释:
    - 业务规则违反属于可预期结果，不向调用方抛异常。
    - 存储/网络异常不在此处捕获，继续向上传播。
    """

    def decorator(func: Callable[..., WorkflowResult]) -> Callable[..., WorkflowResult]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> WorkflowResult:
            try:
                return func(*args, **kwargs)
            except WorkflowError as e:
                logger.info("[%s] rejected: %s (%s)", tag, e.message, e.kind.value)
                return WorkflowResult.failure(e)

        return wrapper

    return decorator


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def load_submission(store: SubmissionStore, submission_id: str) -> dict[str, Any]:
    submission = store.get_submission(submission_id)
    if not submission:
        raise WorkflowError.not_found("Submission", submission_id)
    return submission


def current_status(submission: dict[str, Any]) -> SubmissionStatus:
    status = normalize_status(submission.get("status"))
    if status is None:
        raise WorkflowError.invalid_state(
            f"Unknown submission status: {submission.get('status')}",
            submission_id=submission.get("id"),
        )
    return status


def assigned_editor_ids(store: SubmissionStore, submission_id: str) -> list[str]:
    return [str(row["editor_id"]) for row in store.list_editor_assignments(submission_id) if row.get("editor_id")]


def active_editor_ids(store: SubmissionStore) -> list[str]:
    return [
        str(p["id"])
        for p in store.list_active_profiles()
        if p.get("id") and Actor.from_profile(p).has_any_role([Role.EDITOR])
    ]


def is_assigned_editor(store: SubmissionStore, submission_id: str, actor: Actor) -> bool:
    return actor.id in assigned_editor_ids(store, submission_id)


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise WorkflowError.forbidden("Admin role required")


def require_editor_role(actor: Actor) -> None:
    if not actor.has_any_role(EDITOR_ROLES):
        raise WorkflowError.forbidden("Editor role required")


def require_submission_editor(store: SubmissionStore, submission: dict[str, Any], actor: Actor) -> None:
    """admin 或该投稿的已分配编辑。"""
    if actor.is_admin:
        return
    if actor.has_any_role([Role.EDITOR]) and is_assigned_editor(store, str(submission["id"]), actor):
        return
    raise WorkflowError.forbidden("Only an assigned editor or an admin can perform this action")


def require_author(submission: dict[str, Any], actor: Actor) -> None:
    if str(submission.get("author_id") or "") != actor.id:
        raise WorkflowError.forbidden("Only the submitting author can perform this action")


def can_view_submission(store: SubmissionStore, submission: dict[str, Any], actor: Actor) -> bool:
    if actor.is_admin or str(submission.get("author_id") or "") == actor.id:
        return True
    submission_id = str(submission["id"])
    if is_assigned_editor(store, submission_id, actor):
        return True
    # 已分配的审稿人可查看稿件（审稿意见可见性在调用方另行裁剪）
    return store.find_review(submission_id, actor.id) is not None
