from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from app.core.config import WorkflowConfig
from app.models.reviews import (
    OPEN_REVIEW_STATUSES,
    InvitationStatus,
    ReviewDraft,
    ReviewStatus,
    ReviewSubmission,
)
from app.models.submission import CLOSED_STATUSES, SubmissionStatus, WorkflowAction, allowed_targets
from app.models.workflow import (
    Actor,
    ErrorKind,
    Role,
    TransitionKind,
    WorkflowError,
    WorkflowResult,
    notify,
)
from app.services.state_machine import SubmissionStateMachine
from app.services.submission_store import DuplicateKeyError, SubmissionStore, utc_now
from app.services.workflow_common import (
    assigned_editor_ids,
    current_status,
    load_submission,
    parse_datetime,
    require_editor_role,
    require_submission_editor,
    workflow_operation,
)

logger = logging.getLogger("manuscripts.reviewers")

# 可被分配为审稿人的角色 / 出现在候选列表中的角色
REVIEWER_ELIGIBLE_ROLES = (Role.REVIEWER, Role.EDITOR, Role.ADMIN)
CANDIDATE_ROLES = (Role.REVIEWER, Role.EDITOR)

_OPEN = {s.value for s in OPEN_REVIEW_STATUSES}
_ADVANCING_STATUSES = {SubmissionStatus.SUBMITTED, SubmissionStatus.INITIAL_REVIEW}


def _excluded_keys(submission: dict[str, Any]) -> set[str]:
    return {str(v).strip().lower() for v in (submission.get("excluded_reviewers") or []) if v}


def _is_excluded(submission: dict[str, Any], profile: dict[str, Any]) -> bool:
    keys = _excluded_keys(submission)
    if not keys:
        return False
    candidate_id = str(profile.get("id") or "").strip().lower()
    candidate_email = str(profile.get("email") or "").strip().lower()
    return candidate_id in keys or (bool(candidate_email) and candidate_email in keys)


class ReviewerService:
    """
    审稿人分配与审稿流程。

    中文注释:
    1) 同一投稿同一审稿人最多一条 Review（预检 + 数据库唯一键双保险）。
    2) Review 与 Invitation 同时创建；任一步失败都会补偿删除已写入的记录。
    3) 分配审稿人只在 submitted/initial_review 时推进到 under_review；
       under_review / revised 阶段追加审稿人不改变投稿状态。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        state_machine: Optional[SubmissionStateMachine] = None,
        config: Optional[WorkflowConfig] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.state_machine = state_machine or SubmissionStateMachine(self.store)
        self.config = config or WorkflowConfig.from_env()

    # === 分配 ===

    def _validate_reviewer(self, submission: dict[str, Any], reviewer_id: str) -> dict[str, Any]:
        profile = self.store.get_profile(reviewer_id)
        if not profile:
            raise WorkflowError(ErrorKind.INVALID_REVIEWER, "Reviewer not found", {"reviewer_id": reviewer_id})
        reviewer = Actor.from_profile(profile)
        if profile.get("is_active") is False:
            raise WorkflowError(ErrorKind.INVALID_REVIEWER, "Reviewer account is inactive")
        if not reviewer.has_any_role(REVIEWER_ELIGIBLE_ROLES):
            raise WorkflowError(ErrorKind.INVALID_REVIEWER, "User does not have a reviewer role")
        if reviewer.id == str(submission.get("author_id") or ""):
            raise WorkflowError(ErrorKind.INVALID_REVIEWER, "Authors cannot review their own submission")
        if _is_excluded(submission, profile):
            raise WorkflowError(ErrorKind.INVALID_REVIEWER, "Reviewer was excluded by the author")
        return profile

    def _resolve_due_date(self, due_date: Optional[datetime]) -> datetime:
        now = datetime.now(timezone.utc)
        if due_date is None:
            return now + timedelta(days=self.config.review_due_default_days)
        resolved = parse_datetime(due_date)
        if resolved is None or resolved <= now:
            raise WorkflowError.validation("Review due date must be in the future")
        return resolved

    @workflow_operation("ReviewerAssignment")
    def assign_reviewer(
        self,
        submission_id: str,
        reviewer_id: str,
        actor: Actor,
        due_date: Optional[datetime] = None,
    ) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_submission_editor(self.store, submission, actor)

        status = current_status(submission)
        if not allowed_targets(WorkflowAction.ASSIGN_REVIEWER, status):
            raise WorkflowError.invalid_state(
                f"Reviewers cannot be assigned while submission is {status.value}",
                current_status=status.value,
            )

        profile = self._validate_reviewer(submission, reviewer_id)
        if self.store.find_review(submission_id, reviewer_id):
            raise WorkflowError(ErrorKind.DUPLICATE_ASSIGNMENT, "Reviewer already assigned to this submission")

        due = self._resolve_due_date(due_date)
        now = utc_now()
        try:
            review = self.store.insert_review(
                {
                    "submission_id": submission_id,
                    "reviewer_id": reviewer_id,
                    "status": ReviewStatus.PENDING.value,
                    "due_date": due.isoformat(),
                    "assigned_at": now,
                    "assigned_by": actor.id,
                    "reminders_sent": 0,
                    "review_round": len(self.store.list_revisions(submission_id)),
                }
            )
        except DuplicateKeyError as e:
            raise WorkflowError(
                ErrorKind.DUPLICATE_ASSIGNMENT, "Reviewer already assigned to this submission"
            ) from e

        invitation: Optional[dict[str, Any]] = None
        try:
            invitation = self.store.insert_invitation(
                {
                    "review_id": review["id"],
                    "submission_id": submission_id,
                    "reviewer_id": reviewer_id,
                    "status": InvitationStatus.PENDING.value,
                    "invited_at": now,
                }
            )
            updated = self._advance_after_assignment(submission, profile, actor)
        except Exception:
            self._discard_assignment(review, invitation)
            raise

        author_name = None
        if not submission.get("is_double_blind"):
            author = self.store.get_profile(str(submission.get("author_id") or "")) or {}
            author_name = author.get("full_name")
        effects = [
            notify(
                TransitionKind.REVIEWER_ASSIGNED,
                submission_id,
                [reviewer_id],
                template="reviewer_invitation.html",
                submission_title=submission.get("title"),
                abstract=submission.get("abstract"),
                due_date=review.get("due_date"),
                review_id=review.get("id"),
                author_name=author_name,
            )
        ]
        return WorkflowResult.ok(
            {"review": review, "invitation": invitation, "submission": updated}, effects
        )

    def _advance_after_assignment(
        self, submission: dict[str, Any], reviewer_profile: dict[str, Any], actor: Actor
    ) -> dict[str, Any]:
        status = current_status(submission)
        target = SubmissionStatus.UNDER_REVIEW if status in _ADVANCING_STATUSES else status
        reviewer_name = reviewer_profile.get("full_name") or reviewer_profile.get("email") or reviewer_profile.get("id")
        description = f"Reviewer assigned: {reviewer_name}"
        try:
            return self.state_machine.transition(
                submission,
                action=WorkflowAction.ASSIGN_REVIEWER,
                to_status=target,
                actor=actor,
                event=TransitionKind.REVIEWER_ASSIGNED,
                description=description,
                metadata={"reviewer_id": reviewer_profile.get("id")},
            )
        except WorkflowError as e:
            if e.kind is not ErrorKind.CONFLICT:
                raise
            # 并发下另一位编辑可能已把投稿推进到 under_review；只要仍处于可追加审稿人的阶段，分配依然有效
            fresh = load_submission(self.store, str(submission["id"]))
            fresh_status = current_status(fresh)
            if fresh_status not in {SubmissionStatus.UNDER_REVIEW, SubmissionStatus.REVISED}:
                raise
            self.state_machine.record(
                fresh,
                event=TransitionKind.REVIEWER_ASSIGNED,
                actor=actor,
                description=description,
                metadata={"reviewer_id": reviewer_profile.get("id")},
            )
            return fresh

    def _discard_assignment(self, review: dict[str, Any], invitation: Optional[dict[str, Any]]) -> None:
        try:
            if invitation:
                self.store.delete_invitation(str(invitation["id"]))
            self.store.delete_review(str(review["id"]))
        except Exception as e:
            logger.error("[ReviewerAssignment] cleanup of review %s failed: %s", review.get("id"), e)

    @workflow_operation("ReviewerAssignment")
    def get_available_reviewers(self, submission_id: str, actor: Actor, limit: int = 50) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_submission_editor(self.store, submission, actor)

        author_id = str(submission.get("author_id") or "")
        assigned = {str(r.get("reviewer_id")) for r in self.store.list_reviews(submission_id)}

        candidates: list[dict[str, Any]] = []
        for profile in self.store.list_active_profiles():
            pid = str(profile.get("id") or "")
            if not pid or pid == author_id or pid in assigned:
                continue
            if not Actor.from_profile(profile).has_any_role(CANDIDATE_ROLES):
                continue
            if _is_excluded(submission, profile):
                continue
            candidates.append(
                {
                    "id": pid,
                    "full_name": profile.get("full_name"),
                    "email": profile.get("email"),
                    "affiliation": profile.get("affiliation"),
                    "expertise": profile.get("expertise") or [],
                    "roles": profile.get("roles") or [],
                }
            )
            if len(candidates) >= limit:
                break
        return WorkflowResult.ok(candidates)

    @workflow_operation("ReviewerAssignment")
    def remove_reviewer(self, review_id: str, actor: Actor, reason: Optional[str] = None) -> WorkflowResult:
        review = self._load_review(review_id)
        submission = load_submission(self.store, str(review["submission_id"]))
        require_submission_editor(self.store, submission, actor)

        status = str(review.get("status") or "")
        if status == ReviewStatus.COMPLETED.value:
            raise WorkflowError.invalid_state("Completed reviews cannot be removed")

        if not self.store.delete_review_if_status(review_id, status):
            if self.store.get_review(review_id) is None:
                raise WorkflowError.not_found("Review", review_id)
            raise WorkflowError.conflict("Review changed concurrently")
        invitation = self.store.get_invitation_for_review(review_id)
        if invitation:
            self.store.delete_invitation(str(invitation["id"]))

        self.state_machine.record(
            submission,
            event=TransitionKind.REVIEWER_REMOVED,
            actor=actor,
            description=f"Reviewer removed{': ' + reason if reason else ''}",
            metadata={"reviewer_id": review.get("reviewer_id"), "review_id": review_id},
        )
        effects = [
            notify(
                TransitionKind.REVIEWER_REMOVED,
                str(submission["id"]),
                [review.get("reviewer_id")],
                submission_title=submission.get("title"),
            )
        ]
        return WorkflowResult.ok({"review_id": review_id, "removed": True}, effects)

    # === 审稿人操作 ===

    def _load_review(self, review_id: str) -> dict[str, Any]:
        review = self.store.get_review(review_id)
        if not review:
            raise WorkflowError.not_found("Review", review_id)
        return review

    def _load_own_review(self, review_id: str, actor: Actor) -> tuple[dict[str, Any], dict[str, Any]]:
        review = self._load_review(review_id)
        if str(review.get("reviewer_id") or "") != actor.id:
            raise WorkflowError.forbidden("Only the assigned reviewer can perform this action")
        submission = load_submission(self.store, str(review["submission_id"]))
        if current_status(submission) in CLOSED_STATUSES:
            raise WorkflowError.invalid_state(
                "Submission is no longer open for review", current_status=submission.get("status")
            )
        return review, submission

    @workflow_operation("Invitation")
    def respond_to_invitation(
        self, review_id: str, actor: Actor, accept: bool, notes: Optional[str] = None
    ) -> WorkflowResult:
        review, submission = self._load_own_review(review_id, actor)
        invitation = self.store.get_invitation_for_review(review_id)
        if not invitation:
            raise WorkflowError.not_found("Invitation", review_id)
        if invitation.get("status") != InvitationStatus.PENDING.value:
            raise WorkflowError.invalid_state("Invitation has already been answered")
        if review.get("status") != ReviewStatus.PENDING.value:
            raise WorkflowError.invalid_state("Review is no longer pending")

        now = utc_now()
        new_invitation_status = InvitationStatus.ACCEPTED if accept else InvitationStatus.DECLINED
        updated_invitation = self.store.update_invitation_if_status(
            str(invitation["id"]),
            InvitationStatus.PENDING.value,
            {"status": new_invitation_status.value, "responded_at": now, "response_notes": notes},
        )
        if updated_invitation is None:
            raise WorkflowError.conflict("Invitation was answered concurrently")

        review_payload: dict[str, Any] = (
            {"status": ReviewStatus.IN_PROGRESS.value, "accepted_at": now}
            if accept
            else {"status": ReviewStatus.DECLINED.value, "declined_at": now, "decline_reason": notes}
        )
        updated_review = self.store.update_review_if_status(review_id, ReviewStatus.PENDING.value, review_payload)
        if updated_review is None:
            self.store.update_invitation_if_status(
                str(invitation["id"]),
                new_invitation_status.value,
                {"status": InvitationStatus.PENDING.value, "responded_at": None, "response_notes": None},
            )
            raise WorkflowError.conflict("Review changed concurrently")

        event = TransitionKind.INVITATION_ACCEPTED if accept else TransitionKind.INVITATION_DECLINED
        self.state_machine.record(
            submission,
            event=event,
            actor=actor,
            description=f"Review invitation {'accepted' if accept else 'declined'} by {actor.display_name}",
            metadata={"review_id": review_id},
        )
        effects = [
            notify(
                event,
                str(submission["id"]),
                assigned_editor_ids(self.store, str(submission["id"])),
                submission_title=submission.get("title"),
                reviewer_name=actor.display_name,
                notes=notes,
            )
        ]
        return WorkflowResult.ok({"review": updated_review, "invitation": updated_invitation}, effects)

    @workflow_operation("Review")
    def save_review_draft(self, review_id: str, actor: Actor, draft: ReviewDraft) -> WorkflowResult:
        review, _submission = self._load_own_review(review_id, actor)
        status = str(review.get("status") or "")
        if status not in {ReviewStatus.ACCEPTED.value, ReviewStatus.IN_PROGRESS.value}:
            raise WorkflowError.invalid_state("Only accepted reviews in progress can be edited")

        payload: dict[str, Any] = draft.model_dump(mode="json", exclude_none=True)
        payload["updated_at"] = utc_now()
        updated = self.store.update_review_if_status(review_id, status, payload)
        if updated is None:
            raise WorkflowError.conflict("Review changed concurrently")
        return WorkflowResult.ok(updated)

    @workflow_operation("Review")
    def submit_review(self, review_id: str, actor: Actor, report: ReviewSubmission) -> WorkflowResult:
        review, submission = self._load_own_review(review_id, actor)
        status = str(review.get("status") or "")
        if status == ReviewStatus.COMPLETED.value:
            raise WorkflowError.invalid_state("Review has already been submitted")
        if status not in {ReviewStatus.ACCEPTED.value, ReviewStatus.IN_PROGRESS.value}:
            raise WorkflowError.invalid_state("Review invitation must be accepted before submitting")

        now = utc_now()
        updated = self.store.update_review_if_status(
            review_id,
            status,
            {
                "status": ReviewStatus.COMPLETED.value,
                "recommendation": report.recommendation.value,
                "author_comments": report.author_comments,
                "confidential_comments": report.confidential_comments,
                "rating": report.rating,
                "submitted_at": now,
                "updated_at": now,
            },
        )
        if updated is None:
            raise WorkflowError.conflict("Review changed concurrently")

        submission_id = str(submission["id"])
        self.state_machine.record(
            submission,
            event=TransitionKind.REVIEW_SUBMITTED,
            actor=actor,
            description=f"Review submitted by {actor.display_name}",
            metadata={"review_id": review_id, "recommendation": report.recommendation.value},
        )
        effects = [
            notify(
                TransitionKind.REVIEW_SUBMITTED,
                submission_id,
                assigned_editor_ids(self.store, submission_id),
                submission_title=submission.get("title"),
                reviewer_name=actor.display_name,
                recommendation=report.recommendation.value,
            ),
            notify(
                TransitionKind.REVIEW_SUBMITTED,
                submission_id,
                [actor.id],
                template="review_thank_you.html",
                submission_title=submission.get("title"),
                reviewer_name=actor.display_name,
            ),
        ]
        return WorkflowResult.ok(updated, effects)

    # === 催办 / 延期 / 逾期 ===

    @workflow_operation("Reminder")
    def send_review_reminder(self, review_id: str, actor: Actor) -> WorkflowResult:
        review = self._load_review(review_id)
        submission = load_submission(self.store, str(review["submission_id"]))
        require_submission_editor(self.store, submission, actor)

        status = str(review.get("status") or "")
        if status not in _OPEN:
            raise WorkflowError.invalid_state("Reminders can only be sent for open reviews")

        sent = int(review.get("reminders_sent") or 0)
        updated = self.store.update_review_if(
            review_id,
            {"status": status, "reminders_sent": sent},
            {"reminders_sent": sent + 1, "last_reminder_at": utc_now()},
        )
        if updated is None:
            raise WorkflowError.conflict("Review changed concurrently")

        effects = [
            notify(
                TransitionKind.REVIEW_REMINDER,
                str(submission["id"]),
                [review.get("reviewer_id")],
                template="review_reminder.html",
                submission_title=submission.get("title"),
                due_date=review.get("due_date"),
                reminder_number=sent + 1,
            )
        ]
        return WorkflowResult.ok(updated, effects)

    @workflow_operation("Reminder")
    def extend_review_deadline(
        self, review_id: str, actor: Actor, due_date: datetime, reason: Optional[str] = None
    ) -> WorkflowResult:
        review = self._load_review(review_id)
        submission = load_submission(self.store, str(review["submission_id"]))
        require_submission_editor(self.store, submission, actor)

        status = str(review.get("status") or "")
        if status not in _OPEN:
            raise WorkflowError.invalid_state("Only open reviews can be extended")

        new_due = parse_datetime(due_date)
        old_due = parse_datetime(review.get("due_date"))
        if new_due is None or new_due <= datetime.now(timezone.utc):
            raise WorkflowError.validation("New due date must be in the future")
        if old_due is not None and new_due <= old_due:
            raise WorkflowError.validation("New due date must be later than the current due date")

        updated = self.store.update_review_if(review_id, {"status": status}, {"due_date": new_due.isoformat()})
        if updated is None:
            raise WorkflowError.conflict("Review changed concurrently")

        self.state_machine.record(
            submission,
            event=TransitionKind.REVIEW_DEADLINE_EXTENDED,
            actor=actor,
            description=f"Review deadline extended to {new_due.date().isoformat()}",
            metadata={"review_id": review_id, "reason": reason},
        )
        effects = [
            notify(
                TransitionKind.REVIEW_DEADLINE_EXTENDED,
                str(submission["id"]),
                [review.get("reviewer_id")],
                submission_title=submission.get("title"),
                due_date=new_due.isoformat(),
            )
        ]
        return WorkflowResult.ok(updated, effects)

    @workflow_operation("Reminder")
    def get_overdue_reviews(self, actor: Actor, now: Optional[datetime] = None) -> WorkflowResult:
        require_editor_role(actor)
        moment = now or datetime.now(timezone.utc)
        rows = self.store.list_overdue_reviews(moment.isoformat(), sorted(_OPEN))
        if not actor.is_admin:
            allowed: dict[str, bool] = {}
            visible = []
            for row in rows:
                sid = str(row.get("submission_id"))
                if sid not in allowed:
                    allowed[sid] = actor.id in assigned_editor_ids(self.store, sid)
                if allowed[sid]:
                    visible.append(row)
            rows = visible
        return WorkflowResult.ok(rows)
