from __future__ import annotations

import logging
from typing import Any, Optional

from app.models.decision import DecisionRequest, EditorialDecision, RevisionDecision
from app.models.reviews import ReviewStatus
from app.models.submission import (
    DECIDABLE_STATUSES,
    SubmissionStatus,
    WorkflowAction,
)
from app.models.workflow import (
    Actor,
    TransitionKind,
    WorkflowError,
    WorkflowResult,
    notify,
)
from app.services.payment_service import PaymentService
from app.services.state_machine import SubmissionStateMachine
from app.services.submission_store import SubmissionStore, utc_now
from app.services.workflow_common import (
    current_status,
    load_submission,
    require_submission_editor,
    workflow_operation,
)

logger = logging.getLogger("manuscripts.decisions")

_DECISION_TARGETS = {
    EditorialDecision.ACCEPT: SubmissionStatus.ACCEPTED,
    EditorialDecision.REJECT: SubmissionStatus.REJECTED,
    EditorialDecision.REVISION_REQUIRED: SubmissionStatus.REVISION_REQUIRED,
}

_REVISION_TARGETS = {
    RevisionDecision.ACCEPT_REVISION: SubmissionStatus.ACCEPTED,
    RevisionDecision.REJECT_REVISION: SubmissionStatus.REJECTED,
    RevisionDecision.SEND_FOR_RE_REVIEW: SubmissionStatus.UNDER_REVIEW,
}

_DECISION_TEMPLATE = "decision.html"


def decide(decision: EditorialDecision | str) -> SubmissionStatus:
    """决策 -> 目标状态（纯函数）。"""
    return _DECISION_TARGETS[EditorialDecision(decision)]


class DecisionService:
    """
    编辑决策引擎。

    中文注释:
    1) 只有 under_review / revised 可以做决策。
    2) Accept / Revision 必须至少有一份已完成的审稿；Reject 不受此限制（编辑可直接拒稿）。
    3) Accept 且需要 APC 时，决策提交后再单独创建付款义务（第二个独立提交的步骤）；
       付款义务创建失败不回滚决策，只记录警告，可由作者/管理员稍后重新发起。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        state_machine: Optional[SubmissionStateMachine] = None,
        payments: Optional[PaymentService] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.state_machine = state_machine or SubmissionStateMachine(self.store)
        self.payments = payments or PaymentService(self.store, self.state_machine)

    def completed_review_count(self, submission_id: str) -> int:
        return sum(
            1
            for r in self.store.list_reviews(submission_id)
            if r.get("status") == ReviewStatus.COMPLETED.value
        )

    def _require_reviews_for(self, submission_id: str, target: SubmissionStatus) -> None:
        if target is SubmissionStatus.REJECTED:
            return
        if self.completed_review_count(submission_id) < 1:
            raise WorkflowError.invalid_state(
                "At least one completed review is required before this decision"
            )

    def _apply(
        self,
        submission: dict[str, Any],
        *,
        actor: Actor,
        action: WorkflowAction,
        target: SubmissionStatus,
        decision_label: str,
        comments: Optional[str],
        confidential_comments: Optional[str] = None,
    ) -> WorkflowResult:
        submission_id = str(submission["id"])
        now = utc_now()
        extra: dict[str, Any] = {
            "decision": decision_label,
            "decision_comments": comments,
            "decision_confidential_comments": confidential_comments,
            "decided_by": actor.id,
            "decided_at": now,
        }
        if target is SubmissionStatus.ACCEPTED:
            extra["accepted_at"] = now
        elif target is SubmissionStatus.REJECTED:
            extra["rejected_at"] = now

        updated = self.state_machine.transition(
            submission,
            action=action,
            to_status=target,
            actor=actor,
            event=TransitionKind.DECISION_MADE
            if action is WorkflowAction.MAKE_DECISION
            else TransitionKind.REVISION_HANDLED,
            description=f"Decision: {decision_label.replace('_', ' ')}",
            extra_updates=extra,
            metadata={"decision": decision_label},
        )

        effects = []
        if target is not SubmissionStatus.UNDER_REVIEW:
            effects.append(
                notify(
                    TransitionKind.DECISION_MADE,
                    submission_id,
                    [submission.get("author_id")],
                    template=_DECISION_TEMPLATE,
                    submission_title=submission.get("title"),
                    decision=target.value,
                    comments=comments,
                )
            )

        data: dict[str, Any] = {"submission": updated, "payment": None}
        if target is SubmissionStatus.ACCEPTED and self.payments.payment_required():
            chained = self.payments.create_payment_obligation(submission_id, actor)
            if chained.success:
                data["submission"] = chained.data["submission"]
                data["payment"] = chained.data["payment"]
                effects.extend(chained.effects)
            else:
                logger.warning(
                    "[Decision] payment obligation for %s not created (ignored): %s",
                    submission_id,
                    chained.error.message if chained.error else "unknown",
                )
        return WorkflowResult.ok(data, effects)

    @workflow_operation("Decision")
    def make_decision(self, submission_id: str, actor: Actor, request: DecisionRequest) -> WorkflowResult:
        """
        编辑决策：under_review / revised -> accepted | rejected | revision_required。

        中文注释:
        - 需要 APC（默认 APC_REQUIRED=true）时，accept 之后紧接着生成支付单，
          投稿最终停在 payment_pending，本次共写入两条时间线事件（decision_made、payment_requested）。
        - 只有无需 APC 时，accept 才停在 accepted 且仅记录一条 decision_made。
        """
        submission = load_submission(self.store, submission_id)
        require_submission_editor(self.store, submission, actor)

        status = current_status(submission)
        if status not in DECIDABLE_STATUSES:
            raise WorkflowError.invalid_state(
                f"Decisions can only be made while under review or revised (current: {status.value})",
                current_status=status.value,
            )
        target = decide(request.decision)
        self._require_reviews_for(submission_id, target)

        return self._apply(
            submission,
            actor=actor,
            action=WorkflowAction.MAKE_DECISION,
            target=target,
            decision_label=request.decision.value,
            comments=request.comments,
            confidential_comments=request.confidential_comments,
        )

    @workflow_operation("Decision")
    def handle_revision(
        self,
        submission_id: str,
        actor: Actor,
        decision: RevisionDecision,
        comments: Optional[str] = None,
    ) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_submission_editor(self.store, submission, actor)

        status = current_status(submission)
        if status is not SubmissionStatus.REVISED:
            raise WorkflowError.invalid_state(
                "Only revised submissions can be handled", current_status=status.value
            )
        target = _REVISION_TARGETS[RevisionDecision(decision)]
        if target is SubmissionStatus.ACCEPTED:
            self._require_reviews_for(submission_id, target)

        return self._apply(
            submission,
            actor=actor,
            action=WorkflowAction.HANDLE_REVISION,
            target=target,
            decision_label=RevisionDecision(decision).value,
            comments=comments,
        )
