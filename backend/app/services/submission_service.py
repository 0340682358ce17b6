from __future__ import annotations

import logging
from typing import Any, Optional

from app.models.submission import (
    FileReference,
    ScreeningDecision,
    SubmissionCreate,
    SubmissionStatus,
    WorkflowAction,
    allowed_targets,
    normalize_status,
)
from app.models.payment import PaymentStatus
from app.models.reviews import OPEN_REVIEW_STATUSES, ReviewStatus
from app.models.workflow import (
    Actor,
    ErrorKind,
    TransitionKind,
    WorkflowError,
    WorkflowResult,
    notify,
)
from app.services.state_machine import SubmissionStateMachine
from app.services.submission_store import DuplicateKeyError, SubmissionStore, utc_now
from app.services.workflow_common import (
    EDITOR_ROLES,
    active_editor_ids,
    assigned_editor_ids,
    can_view_submission,
    current_status,
    is_assigned_editor,
    load_submission,
    require_admin,
    require_author,
    require_editor_role,
    workflow_operation,
)

logger = logging.getLogger("manuscripts.submissions")

_SCREENING_TARGETS = {
    ScreeningDecision.PROCEED_TO_REVIEW: SubmissionStatus.INITIAL_REVIEW,
    ScreeningDecision.REJECT: SubmissionStatus.REJECTED,
    ScreeningDecision.RETURN_FOR_FORMATTING: SubmissionStatus.RETURNED_FOR_FORMATTING,
}


class SubmissionService:
    """
    投稿主流程：草稿、投稿、编辑分配、初筛、撤稿、管理员越权改状态。

    中文注释:
    - 每个操作显式接收 actor，并返回 WorkflowResult（成功数据 + 副作用列表，或错误）。
    - 状态写入全部经由 SubmissionStateMachine，保证条件写与时间线一致。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        state_machine: Optional[SubmissionStateMachine] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.state_machine = state_machine or SubmissionStateMachine(self.store)

    @workflow_operation("Submission")
    def create_submission(self, actor: Actor, payload: SubmissionCreate) -> WorkflowResult:
        now = utc_now()
        submission = self.store.insert_submission(
            {
                "author_id": actor.id,
                "title": payload.title.strip(),
                "abstract": payload.abstract,
                "keywords": payload.keywords,
                "article_type": payload.article_type,
                "cover_letter": payload.cover_letter,
                "suggested_reviewers": payload.suggested_reviewers,
                "excluded_reviewers": payload.excluded_reviewers,
                "is_double_blind": payload.is_double_blind,
                "status": SubmissionStatus.DRAFT.value,
                "created_at": now,
                "updated_at": now,
            }
        )
        for idx, co_author in enumerate(payload.co_authors):
            self.store.insert_co_author(
                {
                    "submission_id": submission["id"],
                    "first_name": co_author.first_name,
                    "last_name": co_author.last_name,
                    "email": co_author.email,
                    "affiliation": co_author.affiliation,
                    "author_order": co_author.order or idx + 1,
                }
            )
        self.state_machine.timeline.record(
            submission_id=str(submission["id"]),
            event=TransitionKind.SUBMISSION_CREATED,
            from_status=None,
            to_status=SubmissionStatus.DRAFT,
            actor=actor,
            description="Draft created",
        )
        return WorkflowResult.ok(submission)

    @workflow_operation("Submission")
    def attach_file(self, submission_id: str, actor: Actor, file_ref: FileReference) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_author(submission, actor)
        status = current_status(submission)
        if status not in {SubmissionStatus.DRAFT, SubmissionStatus.RETURNED_FOR_FORMATTING}:
            raise WorkflowError.invalid_state(
                "Files can only be attached to a draft or a submission returned for formatting",
                current_status=status.value,
            )
        row = self.store.insert_submission_file(
            {
                "submission_id": submission_id,
                "file_path": file_ref.file_path,
                "original_name": file_ref.original_name,
                "file_type": file_ref.file_type,
                "file_size": file_ref.file_size,
                "uploaded_by": actor.id,
                "created_at": utc_now(),
            }
        )
        self.state_machine.record(
            submission,
            event=TransitionKind.FILE_UPLOADED,
            actor=actor,
            description=f"File {file_ref.original_name} uploaded",
        )
        return WorkflowResult.ok(row)

    @workflow_operation("Submission")
    def submit_for_review(self, submission_id: str, actor: Actor) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_author(submission, actor)
        status = current_status(submission)
        if SubmissionStatus.SUBMITTED not in allowed_targets(WorkflowAction.SUBMIT, status):
            raise WorkflowError.invalid_state(
                f"Submission cannot be submitted from {status.value}", current_status=status.value
            )
        if not self.store.list_submission_files(submission_id):
            raise WorkflowError.invalid_state("At least one manuscript file is required before submitting")

        updated = self.state_machine.transition(
            submission,
            action=WorkflowAction.SUBMIT,
            to_status=SubmissionStatus.SUBMITTED,
            actor=actor,
            event=TransitionKind.SUBMISSION_SUBMITTED,
            description=(
                "Submission resubmitted after formatting check"
                if status is SubmissionStatus.RETURNED_FOR_FORMATTING
                else "Submission submitted for review"
            ),
            extra_updates={"submitted_at": utc_now()},
        )
        effects = [
            notify(
                TransitionKind.SUBMISSION_SUBMITTED,
                submission_id,
                [actor.id],
                template="submission_received.html",
                submission_title=submission.get("title"),
                author_name=actor.display_name,
            ),
            notify(
                TransitionKind.SUBMISSION_SUBMITTED,
                submission_id,
                active_editor_ids(self.store),
                submission_title=submission.get("title"),
                author_name=actor.display_name,
            ),
        ]
        return WorkflowResult.ok(updated, effects)

    @workflow_operation("Submission")
    def withdraw_submission(
        self, submission_id: str, actor: Actor, reason: Optional[str] = None
    ) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        if not actor.is_admin:
            require_author(submission, actor)
        updated = self.state_machine.transition(
            submission,
            action=WorkflowAction.WITHDRAW,
            to_status=SubmissionStatus.WITHDRAWN,
            actor=actor,
            event=TransitionKind.WITHDRAWN,
            description=f"Submission withdrawn{': ' + reason if reason else ''}",
            extra_updates={"withdrawn_at": utc_now(), "withdrawal_reason": reason},
        )
        self._void_pending_payments(submission_id)
        open_reviewers = [
            r.get("reviewer_id")
            for r in self.store.list_reviews(submission_id)
            if r.get("status") in {s.value for s in OPEN_REVIEW_STATUSES}
        ]
        effects = [
            notify(
                TransitionKind.WITHDRAWN,
                submission_id,
                [*assigned_editor_ids(self.store, submission_id), *open_reviewers],
                submission_title=submission.get("title"),
                reason=reason,
            )
        ]
        return WorkflowResult.ok(updated, effects)

    def _void_pending_payments(self, submission_id: str) -> None:
        # 撤稿后未付的 APC 不再有效；已付款项保留，由管理员走退款
        for payment in self.store.list_payments(submission_id):
            if payment.get("status") != PaymentStatus.PENDING.value:
                continue
            voided = self.store.update_payment_if_status(
                str(payment["id"]),
                PaymentStatus.PENDING.value,
                {"status": PaymentStatus.FAILED.value, "failed_at": utc_now(), "status_reason": "Submission withdrawn"},
            )
            if voided is not None:
                logger.info("[Submission] %s withdrawn, payment %s voided", submission_id, payment["id"])

    @workflow_operation("EditorAssignment")
    def assign_editor(
        self,
        submission_id: str,
        editor_id: str,
        actor: Actor,
        is_chief: bool = False,
    ) -> WorkflowResult:
        require_editor_role(actor)
        submission = load_submission(self.store, submission_id)

        profile = self.store.get_profile(editor_id)
        editor = Actor.from_profile(profile) if profile else None
        if not profile or profile.get("is_active") is False or not editor.has_any_role(EDITOR_ROLES):
            raise WorkflowError.validation("Invalid editor", editor_id=editor_id)

        assignments = self.store.list_editor_assignments(submission_id)
        if any(str(a.get("editor_id")) == editor_id for a in assignments):
            raise WorkflowError(
                ErrorKind.DUPLICATE_ASSIGNMENT, "Editor already assigned to this submission"
            )

        demoted: list[dict[str, Any]] = []
        if is_chief:
            # 同一投稿最多一位主编：新主编上任前先把旧主编降级
            for row in assignments:
                if row.get("is_chief"):
                    self.store.update_editor_assignment(str(row["id"]), {"is_chief": False})
                    demoted.append(row)

        try:
            assignment = self.store.insert_editor_assignment(
                {
                    "submission_id": submission_id,
                    "editor_id": editor_id,
                    "is_chief": is_chief,
                    "assigned_by": actor.id,
                    "assigned_at": utc_now(),
                }
            )
        except DuplicateKeyError as e:
            for row in demoted:
                self.store.update_editor_assignment(str(row["id"]), {"is_chief": True})
            if any(str(a.get("editor_id")) == editor_id for a in self.store.list_editor_assignments(submission_id)):
                raise WorkflowError(
                    ErrorKind.DUPLICATE_ASSIGNMENT, "Editor already assigned to this submission"
                ) from e
            raise WorkflowError.conflict("Chief editor was assigned concurrently") from e

        description = f"Editor {editor.display_name} assigned{' as chief editor' if is_chief else ''}"
        updated = submission
        if current_status(submission) is SubmissionStatus.SUBMITTED:
            try:
                updated = self.state_machine.transition(
                    submission,
                    action=WorkflowAction.ASSIGN_EDITOR,
                    to_status=SubmissionStatus.INITIAL_REVIEW,
                    actor=actor,
                    event=TransitionKind.EDITOR_ASSIGNED,
                    description=description,
                )
            except WorkflowError as e:
                if e.kind is not ErrorKind.CONFLICT:
                    raise
                # 状态已被并发推进（例如另一位编辑已分配），分配本身仍然有效
                updated = load_submission(self.store, submission_id)
                self.state_machine.record(
                    updated, event=TransitionKind.EDITOR_ASSIGNED, actor=actor, description=description
                )
        else:
            self.state_machine.record(
                submission, event=TransitionKind.EDITOR_ASSIGNED, actor=actor, description=description
            )

        effects = [
            notify(
                TransitionKind.EDITOR_ASSIGNED,
                submission_id,
                [editor_id],
                submission_title=submission.get("title"),
                is_chief=is_chief,
            )
        ]
        return WorkflowResult.ok({"assignment": assignment, "submission": updated}, effects)

    @workflow_operation("Screening")
    def perform_initial_screening(
        self,
        submission_id: str,
        actor: Actor,
        decision: ScreeningDecision,
        comments: Optional[str] = None,
    ) -> WorkflowResult:
        require_editor_role(actor)
        submission = load_submission(self.store, submission_id)
        target = _SCREENING_TARGETS[decision]

        extra: dict[str, Any] = {"screening_comments": comments, "screened_at": utc_now()}
        if target is SubmissionStatus.REJECTED:
            extra["rejected_at"] = utc_now()
        updated = self.state_machine.transition(
            submission,
            action=WorkflowAction.INITIAL_SCREENING,
            to_status=target,
            actor=actor,
            event=TransitionKind.SCREENING_COMPLETED,
            description=f"Initial screening: {decision.value.replace('_', ' ')}",
            extra_updates=extra,
        )

        effects = []
        if target is not SubmissionStatus.INITIAL_REVIEW:
            effects.append(
                notify(
                    TransitionKind.SCREENING_COMPLETED,
                    submission_id,
                    [submission.get("author_id")],
                    template="status_update.html",
                    submission_title=submission.get("title"),
                    status=target.value,
                    comments=comments,
                )
            )
        return WorkflowResult.ok(updated, effects)

    @workflow_operation("Override")
    def override_status(
        self, submission_id: str, actor: Actor, to_status: str, reason: str
    ) -> WorkflowResult:
        require_admin(actor)
        if not (reason or "").strip():
            raise WorkflowError.validation("A reason is required to override the status")
        target = normalize_status(to_status)
        if target is None:
            raise WorkflowError.validation(f"Unknown status: {to_status}")

        submission = load_submission(self.store, submission_id)
        from_status = current_status(submission)
        extra: dict[str, Any] = {}
        if target is SubmissionStatus.ACCEPTED and not submission.get("accepted_at"):
            extra["accepted_at"] = utc_now()
        updated = self.state_machine.transition(
            submission,
            action=WorkflowAction.ADMIN_OVERRIDE,
            to_status=target,
            actor=actor,
            event=TransitionKind.STATUS_OVERRIDE,
            description=f"Status overridden from {from_status.value} to {target.value}: {reason.strip()}",
            extra_updates=extra,
            metadata={"reason": reason.strip()},
        )
        logger.warning(
            "[Override] %s: %s -> %s by admin %s", submission_id, from_status.value, target.value, actor.id
        )
        effects = [
            notify(
                TransitionKind.STATUS_OVERRIDE,
                submission_id,
                [submission.get("author_id")],
                template="status_update.html",
                submission_title=submission.get("title"),
                status=target.value,
                comments=reason.strip(),
            )
        ]
        return WorkflowResult.ok(updated, effects)

    @workflow_operation("Timeline")
    def get_timeline(self, submission_id: str, actor: Actor) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        if not can_view_submission(self.store, submission, actor):
            raise WorkflowError.forbidden()
        events = self.state_machine.timeline.list_events(submission_id)
        author_id = str(submission.get("author_id") or "")
        if author_id == actor.id and not actor.is_admin:
            reviewer_ids = {str(r.get("reviewer_id")) for r in self.store.list_reviews(submission_id)}
            reviewer_ids.update(
                str(e["metadata"]["reviewer_id"]) for e in events if (e.get("metadata") or {}).get("reviewer_id")
            )
            events = self._mask_identities(events, reviewer_ids, "Reviewer")
        elif not self._sees_author(submission, actor):
            events = self._mask_identities(events, {author_id}, "Author")
        return WorkflowResult.ok(events)

    @workflow_operation("Submission")
    def get_submission(self, submission_id: str, actor: Actor) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        if not can_view_submission(self.store, submission, actor):
            raise WorkflowError.forbidden()
        data = dict(submission)
        data["co_authors"] = self.store.list_co_authors(submission_id)
        data["files"] = self.store.list_submission_files(submission_id)
        data["editor_assignments"] = self.store.list_editor_assignments(submission_id)
        if actor.is_admin or is_assigned_editor(self.store, submission_id, actor):
            data["reviews"] = self.store.list_reviews(submission_id)
            return WorkflowResult.ok(data)

        # 作者与审稿人只看到已完成审稿的公开意见，编辑的保密意见不外露
        data.pop("decision_confidential_comments", None)
        data["reviews"] = [
            {
                "id": r.get("id"),
                "recommendation": r.get("recommendation"),
                "author_comments": r.get("author_comments"),
                "submitted_at": r.get("submitted_at"),
            }
            for r in self.store.list_reviews(submission_id)
            if r.get("status") == ReviewStatus.COMPLETED.value
        ]
        if not self._sees_author(submission, actor):
            data["author_id"] = None
            data["co_authors"] = []
            data["files"] = [{k: v for k, v in f.items() if k != "uploaded_by"} for f in data["files"]]
        return WorkflowResult.ok(data)

    def _sees_author(self, submission: dict[str, Any], actor: Actor) -> bool:
        if not submission.get("is_double_blind"):
            return True
        if actor.is_admin or str(submission.get("author_id") or "") == actor.id:
            return True
        return is_assigned_editor(self.store, str(submission["id"]), actor)

    def _mask_identities(
        self, events: list[dict[str, Any]], user_ids: set[str], label: str
    ) -> list[dict[str, Any]]:
        """
        隐去时间线中的指定用户。

        中文注释:
        - performed_by 置空，performed_by_name 换成角色名。
        - 描述里出现的姓名 / 邮箱 / id 统一替换为 "anonymous <role>"；metadata 中指向这些用户的字段移除。
        """
        user_ids = {u for u in user_ids if u}
        names: set[str] = set()
        for user_id in user_ids:
            profile = self.store.get_profile(user_id) or {}
            names.update(v for v in (profile.get("full_name"), profile.get("email"), user_id) if v)
        placeholder = f"anonymous {label.lower()}"

        masked = []
        for event in events:
            row = dict(event)
            description = row.get("description") or ""
            # 长名字先替换，避免邮箱中的子串先被截断
            for name in sorted(names, key=len, reverse=True):
                description = description.replace(name, placeholder)
            row["description"] = description
            row["metadata"] = {
                k: v for k, v in (row.get("metadata") or {}).items() if str(v) not in user_ids
            }
            if str(row.get("performed_by") or "") in user_ids:
                row["performed_by"] = None
                row["performed_by_name"] = label
            masked.append(row)
        return masked
