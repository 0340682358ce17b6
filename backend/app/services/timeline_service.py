from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from app.models.submission import (
    SubmissionStatus,
    WorkflowAction,
    is_transition_allowed,
    normalize_status,
)
from app.models.workflow import Actor, TransitionKind
from app.services.submission_store import SubmissionStore, utc_now

# 会改变状态的事件 -> 对应的流转表 action（审计时只按该 action 的行校验）
EVENT_ACTIONS: dict[TransitionKind, WorkflowAction] = {
    TransitionKind.SUBMISSION_SUBMITTED: WorkflowAction.SUBMIT,
    TransitionKind.EDITOR_ASSIGNED: WorkflowAction.ASSIGN_EDITOR,
    TransitionKind.SCREENING_COMPLETED: WorkflowAction.INITIAL_SCREENING,
    TransitionKind.REVIEWER_ASSIGNED: WorkflowAction.ASSIGN_REVIEWER,
    TransitionKind.DECISION_MADE: WorkflowAction.MAKE_DECISION,
    TransitionKind.REVISION_SUBMITTED: WorkflowAction.CREATE_REVISION,
    TransitionKind.REVISION_HANDLED: WorkflowAction.HANDLE_REVISION,
    TransitionKind.PAYMENT_REQUESTED: WorkflowAction.REQUEST_PAYMENT,
    TransitionKind.PAYMENT_RECEIVED: WorkflowAction.CONFIRM_PAYMENT,
    TransitionKind.PUBLISHED: WorkflowAction.PUBLISH,
    TransitionKind.WITHDRAWN: WorkflowAction.WITHDRAW,
    TransitionKind.STATUS_OVERRIDE: WorkflowAction.ADMIN_OVERRIDE,
}


def is_legal_event(event: Any, from_status: Any, to_status: Any) -> bool:
    try:
        kind = TransitionKind(str(event))
    except ValueError:
        return False
    action = EVENT_ACTIONS.get(kind)
    return action is not None and is_transition_allowed(action, from_status, to_status)


@dataclass(frozen=True)
class IllegalStep:
    event_id: Optional[str]
    event: Optional[str]
    from_status: Optional[str]
    to_status: Optional[str]


class TimelineRecorder:
    """
    投稿时间线（只追加的审计日志）。

    中文注释:
    - 每次状态变化写一条 from/to；不改变状态的事件（分配审稿人、DOI 等）写 from == to。
    - 时间线写入失败必须向上抛出，由状态机负责回滚状态写入，保证“状态变了就一定有记录”。
    """

    def __init__(self, store: Optional[SubmissionStore] = None) -> None:
        self.store = store or SubmissionStore()

    def record(
        self,
        *,
        submission_id: str,
        event: TransitionKind,
        from_status: Optional[SubmissionStatus],
        to_status: Optional[SubmissionStatus],
        actor: Optional[Actor],
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        payload = {
            "submission_id": submission_id,
            "event": event.value,
            "from_status": from_status.value if from_status else None,
            "to_status": to_status.value if to_status else None,
            "description": description,
            "performed_by": actor.id if actor else None,
            "performed_by_name": actor.display_name if actor else None,
            "metadata": metadata or {},
            "created_at": utc_now(),
        }
        return self.store.insert_timeline_event(payload)

    def list_events(self, submission_id: str) -> list[dict[str, Any]]:
        return self.store.list_timeline_events(submission_id)

    @staticmethod
    def status_path(events: Iterable[dict[str, Any]]) -> list[SubmissionStatus]:
        """按时间顺序还原状态路径（自环事件不计入）。"""
        path: list[SubmissionStatus] = []
        for event in events:
            src = normalize_status(event.get("from_status"))
            dst = normalize_status(event.get("to_status"))
            if dst is None or src == dst:
                continue
            if not path and src is not None:
                path.append(src)
            path.append(dst)
        return path

    @staticmethod
    def find_illegal_steps(events: Iterable[dict[str, Any]]) -> list[IllegalStep]:
        """
        校验时间线：每一步状态变化都必须是其事件对应 action 允许的边，且前后衔接。

        中文注释: 管理员越权的边只在 status_override 事件上被接受。
        """
        problems: list[IllegalStep] = []
        last: Optional[SubmissionStatus] = None
        for event in events:
            src = normalize_status(event.get("from_status"))
            dst = normalize_status(event.get("to_status"))
            if dst is None or src == dst:
                continue
            if src is None and last is None and dst is SubmissionStatus.DRAFT:
                last = dst
                continue
            broken_chain = last is not None and src != last
            if broken_chain or not is_legal_event(event.get("event"), src, dst):
                problems.append(
                    IllegalStep(
                        event_id=event.get("id"),
                        event=event.get("event"),
                        from_status=event.get("from_status"),
                        to_status=event.get("to_status"),
                    )
                )
            last = dst
        return problems
