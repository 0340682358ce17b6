from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from app.core.config import WorkflowConfig
from app.core.doi_generator import generate_doi
from app.models.submission import SubmissionStatus, WorkflowAction
from app.models.workflow import (
    Actor,
    Effect,
    EffectKind,
    ErrorKind,
    TransitionKind,
    WorkflowError,
    WorkflowResult,
    email,
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

logger = logging.getLogger("manuscripts.publication")


class PublicationService:
    """
    发布终审：DOI 只分配一次；发布前检查 DOI、卷期、APC 付款闸门。

    中文注释:
    - DOI 生成算法与卷期解析都是可注入的外部策略（doi_generator / issue_resolver）。
    - DOI 写入使用 `doi IS NULL` 条件更新，并发下只会有一个调用成功。
    - 发布后的 RSS/OAI 等 feed 重建是外部协作方，这里只产出 regenerate_feeds 副作用。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        state_machine: Optional[SubmissionStateMachine] = None,
        payments: Optional[PaymentService] = None,
        config: Optional[WorkflowConfig] = None,
        doi_generator: Optional[Callable[[str], str]] = None,
        issue_resolver: Optional[Callable[[str], Optional[dict[str, Any]]]] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.state_machine = state_machine or SubmissionStateMachine(self.store)
        self.config = config or WorkflowConfig.from_env()
        self.payments = payments or PaymentService(self.store, self.state_machine, self.config)
        self.doi_generator = doi_generator or self._default_doi
        self.issue_resolver = issue_resolver or self.store.get_issue

    def _default_doi(self, submission_id: str) -> str:
        return generate_doi(
            submission_id=submission_id,
            prefix=self.config.doi_prefix,
            journal_slug=self.config.journal_slug,
        )

    def _assign(self, submission: dict[str, Any], actor: Actor) -> dict[str, Any]:
        submission_id = str(submission["id"])
        if submission.get("doi"):
            raise WorkflowError(ErrorKind.DOI_ALREADY_ASSIGNED, "DOI has already been assigned")
        status = current_status(submission)
        if status is not SubmissionStatus.ACCEPTED:
            raise WorkflowError.invalid_state(
                "DOI can only be assigned to accepted submissions", current_status=status.value
            )

        doi = self.doi_generator(submission_id)
        updated = self.store.set_doi_if_missing(submission_id, status.value, doi)
        if updated is None:
            fresh = self.store.get_submission(submission_id)
            if not fresh:
                raise WorkflowError.not_found("Submission", submission_id)
            if fresh.get("doi"):
                raise WorkflowError(ErrorKind.DOI_ALREADY_ASSIGNED, "DOI has already been assigned")
            raise WorkflowError.conflict(
                "Submission status changed concurrently", current_status=fresh.get("status")
            )

        self.state_machine.record(
            updated,
            event=TransitionKind.DOI_ASSIGNED,
            actor=actor,
            description=f"DOI {doi} assigned",
            metadata={"doi": doi},
        )
        return updated

    @workflow_operation("DOI")
    def assign_doi(self, submission_id: str, actor: Actor) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_submission_editor(self.store, submission, actor)
        updated = self._assign(submission, actor)
        effects = [
            notify(
                TransitionKind.DOI_ASSIGNED,
                submission_id,
                [submission.get("author_id")],
                submission_title=submission.get("title"),
                doi=updated.get("doi"),
            )
        ]
        return WorkflowResult.ok(updated, effects)

    @workflow_operation("Publish")
    def publish_submission(
        self,
        submission_id: str,
        actor: Actor,
        issue_id: str,
        pages: Optional[str] = None,
        assign_doi_if_missing: bool = False,
    ) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_submission_editor(self.store, submission, actor)

        status = current_status(submission)
        if status is SubmissionStatus.PAYMENT_PENDING:
            raise WorkflowError(ErrorKind.PAYMENT_REQUIRED, "Article processing charge has not been paid")
        if status is not SubmissionStatus.ACCEPTED:
            raise WorkflowError.invalid_state(
                "Only accepted submissions can be published", current_status=status.value
            )

        issue = self.issue_resolver(issue_id) if issue_id else None
        if not issue:
            raise WorkflowError(ErrorKind.ISSUE_NOT_FOUND, "Issue not found", {"issue_id": issue_id})

        gate = self.payments.get_payment_gate(submission_id)
        if not gate["satisfied"]:
            raise WorkflowError(ErrorKind.PAYMENT_REQUIRED, "Article processing charge has not been paid")

        if not submission.get("doi"):
            if not assign_doi_if_missing:
                raise WorkflowError(ErrorKind.MISSING_DOI, "A DOI must be assigned before publishing")
            submission = self._assign(submission, actor)

        updated = self.state_machine.transition(
            submission,
            action=WorkflowAction.PUBLISH,
            to_status=SubmissionStatus.PUBLISHED,
            actor=actor,
            event=TransitionKind.PUBLISHED,
            description=f"Published in volume {issue.get('volume')}, issue {issue.get('number')}",
            extra_updates={
                "published_at": utc_now(),
                "issue_id": issue_id,
                "volume": issue.get("volume"),
                "issue_number": issue.get("number"),
                "pages": pages,
            },
            metadata={"issue_id": issue_id, "doi": submission.get("doi")},
        )

        context = {
            "submission_title": submission.get("title"),
            "doi": submission.get("doi"),
            "volume": issue.get("volume"),
            "issue_number": issue.get("number"),
            "pages": pages,
        }
        co_author_emails = [c.get("email") for c in self.store.list_co_authors(submission_id)]
        effects = [
            notify(
                TransitionKind.PUBLISHED,
                submission_id,
                [submission.get("author_id")],
                template="publication_notification.html",
                **context,
            ),
            email(
                TransitionKind.PUBLISHED,
                submission_id,
                co_author_emails,
                template="publication_notification.html",
                **context,
            ),
            Effect(
                kind=EffectKind.REGENERATE_FEEDS,
                event=TransitionKind.PUBLISHED,
                submission_id=submission_id,
                context={"issue_id": issue_id},
            ),
        ]
        return WorkflowResult.ok(updated, effects)
