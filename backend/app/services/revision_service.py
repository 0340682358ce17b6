from __future__ import annotations

import logging
from typing import Any, Optional

from app.models.revision import RevisionCreate
from app.models.submission import FileReference, SubmissionStatus, WorkflowAction, allowed_targets
from app.models.workflow import Actor, TransitionKind, WorkflowError, WorkflowResult, notify
from app.services.state_machine import SubmissionStateMachine
from app.services.submission_store import DuplicateKeyError, SubmissionStore, utc_now
from app.services.workflow_common import (
    assigned_editor_ids,
    can_view_submission,
    current_status,
    load_submission,
    require_author,
    workflow_operation,
)

logger = logging.getLogger("manuscripts.revisions")


class RevisionService:
    """
    修订循环：作者在 revision_required 状态下提交修订稿（编辑处理前也可在 revised 状态再次提交）。

    中文注释:
    - revision_number = 当前最大值 + 1（从 1 开始，严格递增）。
    - 并发创建时由 (submission_id, revision_number) 唯一键兜底，败者返回 Conflict。
    - 修订文件只能绑定到“最新一轮”修订，并且投稿必须处于 revised 状态。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        state_machine: Optional[SubmissionStateMachine] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.state_machine = state_machine or SubmissionStateMachine(self.store)

    def get_next_revision_number(self, submission_id: str) -> int:
        numbers = [int(r.get("revision_number") or 0) for r in self.store.list_revisions(submission_id)]
        return (max(numbers) if numbers else 0) + 1

    @workflow_operation("Revision")
    def create_revision(self, submission_id: str, actor: Actor, payload: RevisionCreate) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        require_author(submission, actor)
        status = current_status(submission)
        if SubmissionStatus.REVISED not in allowed_targets(WorkflowAction.CREATE_REVISION, status):
            raise WorkflowError.invalid_state(
                "Revisions can only be submitted when a revision was requested",
                current_status=status.value,
            )

        number = self.get_next_revision_number(submission_id)
        try:
            revision = self.store.insert_revision(
                {
                    "submission_id": submission_id,
                    "revision_number": number,
                    "cover_letter": payload.cover_letter,
                    "response_to_reviewers": payload.response_to_reviewers,
                    "submitted_by": actor.id,
                    "created_at": utc_now(),
                }
            )
        except DuplicateKeyError as e:
            raise WorkflowError.conflict("Another revision was submitted concurrently") from e

        try:
            updated = self.state_machine.transition(
                submission,
                action=WorkflowAction.CREATE_REVISION,
                to_status=SubmissionStatus.REVISED,
                actor=actor,
                event=TransitionKind.REVISION_SUBMITTED,
                description=f"Revision {number} submitted by {actor.display_name}",
                extra_updates={"revision_count": number},
                metadata={"revision_id": revision.get("id"), "revision_number": number},
            )
        except Exception:
            self.store.delete_revision(str(revision["id"]))
            raise

        effects = [
            notify(
                TransitionKind.REVISION_SUBMITTED,
                submission_id,
                assigned_editor_ids(self.store, submission_id),
                template="revision_submitted.html",
                submission_title=submission.get("title"),
                revision_number=number,
                author_name=actor.display_name,
            )
        ]
        return WorkflowResult.ok({"revision": revision, "submission": updated}, effects)

    @workflow_operation("Revision")
    def attach_revision_file(self, revision_id: str, actor: Actor, file_ref: FileReference) -> WorkflowResult:
        revision = self.store.get_revision(revision_id)
        if not revision:
            raise WorkflowError.not_found("Revision", revision_id)
        submission_id = str(revision["submission_id"])
        submission = load_submission(self.store, submission_id)
        require_author(submission, actor)

        if current_status(submission) is not SubmissionStatus.REVISED:
            raise WorkflowError.invalid_state("Revision files can only be added while the revision is open")
        if int(revision.get("revision_number") or 0) != self.get_next_revision_number(submission_id) - 1:
            raise WorkflowError.invalid_state("Files can only be attached to the latest revision")

        row = self.store.insert_revision_file(
            {
                "revision_id": revision_id,
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
            event=TransitionKind.REVISION_FILE_UPLOADED,
            actor=actor,
            description=f"File {file_ref.original_name} added to revision {revision.get('revision_number')}",
            metadata={"revision_id": revision_id},
        )
        return WorkflowResult.ok(row)

    @workflow_operation("Revision")
    def list_revisions(self, submission_id: str, actor: Actor) -> WorkflowResult:
        submission = load_submission(self.store, submission_id)
        if not can_view_submission(self.store, submission, actor):
            raise WorkflowError.forbidden()
        out: list[dict[str, Any]] = []
        for revision in self.store.list_revisions(submission_id):
            item = dict(revision)
            item["files"] = self.store.list_revision_files(str(revision["id"]))
            out.append(item)
        return WorkflowResult.ok(out)
