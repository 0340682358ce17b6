from __future__ import annotations

import logging
from typing import Any, Optional

from app.models.submission import (
    SubmissionStatus,
    WorkflowAction,
    allowed_targets,
    normalize_status,
)
from app.models.workflow import Actor, TransitionKind, WorkflowError
from app.services.submission_store import SubmissionStore, utc_now
from app.services.timeline_service import TimelineRecorder
from app.services.workflow_common import current_status

logger = logging.getLogger("manuscripts.state_machine")

# 已分配 DOI 的投稿只能停留在 accepted 或进入 published
_DOI_STATUSES = frozenset({SubmissionStatus.ACCEPTED, SubmissionStatus.PUBLISHED})


class SubmissionStateMachine:
    """
    统一的投稿状态写入入口（读-比较-写）。

    中文注释:
    1) 校验：目标状态必须在 TRANSITIONS[action][当前状态] 内，否则 InvalidState。
    2) 写入：条件更新 `status = 读到的状态`；0 行 => 重新读取，区分 NotFound 与 Conflict。
    3) 审计：状态写入成功后立即写时间线；时间线失败则把状态写回原值（补偿）并抛出原异常。
    4) 已分配 DOI 的投稿只能发布：撤稿、越权改状态等离开 accepted 的写入一律 InvalidState。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        timeline: Optional[TimelineRecorder] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.timeline = timeline or TimelineRecorder(self.store)

    def transition(
        self,
        submission: dict[str, Any],
        *,
        action: WorkflowAction,
        to_status: SubmissionStatus | str,
        actor: Actor,
        event: TransitionKind,
        description: Optional[str] = None,
        extra_updates: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        submission_id = str(submission["id"])
        from_status = current_status(submission)
        target = normalize_status(to_status)
        if target is None:
            raise WorkflowError.validation(f"Unknown status: {to_status}")

        allowed = allowed_targets(action, from_status)
        if target not in allowed:
            raise WorkflowError.invalid_state(
                f"Cannot {action.value.replace('_', ' ')} while submission is {from_status.value}",
                current_status=from_status.value,
                requested_status=target.value,
                allowed=sorted(s.value for s in allowed),
            )

        keeps_doi = target in _DOI_STATUSES
        if submission.get("doi") and not keeps_doi:
            raise _doi_locked(from_status, target, submission.get("doi"))

        extra = dict(extra_updates or {})
        # 写入前快照；补偿只依赖快照，不读调用方传入的 dict
        snapshot: dict[str, Any] = {key: submission.get(key) for key in extra}
        snapshot["status"] = from_status.value
        snapshot["updated_at"] = submission.get("updated_at")
        payload: dict[str, Any] = {"status": target.value, "updated_at": utc_now(), **extra}
        updated = self.store.update_submission_if_status(
            submission_id, from_status.value, payload, require_no_doi=not keeps_doi
        )
        if updated is None:
            fresh = self.store.get_submission(submission_id)
            if not fresh:
                raise WorkflowError.not_found("Submission", submission_id)
            if not keeps_doi and fresh.get("doi") and fresh.get("status") == from_status.value:
                raise _doi_locked(from_status, target, fresh.get("doi"))
            raise WorkflowError.conflict(
                "Submission status changed concurrently",
                expected_status=from_status.value,
                current_status=fresh.get("status"),
            )

        if description is None:
            description = f"Status changed from {from_status.value} to {target.value}"
        try:
            self.timeline.record(
                submission_id=submission_id,
                event=event,
                from_status=from_status,
                to_status=target,
                actor=actor,
                description=description,
                metadata=metadata,
            )
        except Exception:
            self._rollback(submission_id, target, snapshot)
            raise

        logger.info(
            "[StateMachine] %s %s: %s -> %s by %s",
            action.value,
            submission_id,
            from_status.value,
            target.value,
            actor.id,
        )
        return updated

    def record(
        self,
        submission: dict[str, Any],
        *,
        event: TransitionKind,
        actor: Optional[Actor],
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """记录不改变状态的事件（from == to）。"""
        status = current_status(submission)
        return self.timeline.record(
            submission_id=str(submission["id"]),
            event=event,
            from_status=status,
            to_status=status,
            actor=actor,
            description=description,
            metadata=metadata,
        )

    def _rollback(self, submission_id: str, written: SubmissionStatus, snapshot: dict[str, Any]) -> None:
        revert = dict(snapshot)
        revert["updated_at"] = revert.get("updated_at") or utc_now()
        try:
            restored = self.store.update_submission_if_status(submission_id, written.value, revert)
        except Exception as e:
            logger.error("[StateMachine] rollback of %s failed: %s", submission_id, e, exc_info=True)
            return
        if restored is None:
            logger.error(
                "[StateMachine] rollback of %s skipped: status is no longer %s",
                submission_id,
                written.value,
            )
        else:
            logger.warning(
                "[StateMachine] timeline write failed, %s restored to %s",
                submission_id,
                snapshot.get("status"),
            )


def _doi_locked(from_status: SubmissionStatus, target: SubmissionStatus, doi: Any) -> WorkflowError:
    return WorkflowError.invalid_state(
        "A submission with an assigned DOI can only be published",
        current_status=from_status.value,
        requested_status=target.value,
        doi=doi,
    )
