from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import BackgroundTasks, HTTPException

from app.core.config import WorkflowConfig
from app.models.workflow import ErrorKind, WorkflowResult
from app.services.decision_service import DecisionService
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.payment_service import PaymentService
from app.services.publication_service import PublicationService
from app.services.reviewer_service import ReviewerService
from app.services.revision_service import RevisionService
from app.services.state_machine import SubmissionStateMachine
from app.services.submission_service import SubmissionService
from app.services.submission_store import SubmissionStore

# 业务错误 -> HTTP 状态码（不得把可预期错误折叠成 500）
ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.DUPLICATE_ASSIGNMENT: 409,
    ErrorKind.INVALID_REVIEWER: 422,
    ErrorKind.DOI_ALREADY_ASSIGNED: 409,
    ErrorKind.ALREADY_PAID: 409,
    ErrorKind.MISSING_DOI: 400,
    ErrorKind.ISSUE_NOT_FOUND: 404,
    ErrorKind.PAYMENT_REQUIRED: 402,
    ErrorKind.VALIDATION_ERROR: 422,
}


@dataclass
class WorkflowServices:
    store: SubmissionStore
    submissions: SubmissionService
    reviewers: ReviewerService
    decisions: DecisionService
    revisions: RevisionService
    payments: PaymentService
    publication: PublicationService
    dispatcher: NotificationDispatcher

    @classmethod
    def build(cls, store: SubmissionStore | None = None, config: WorkflowConfig | None = None) -> "WorkflowServices":
        store = store or SubmissionStore()
        config = config or WorkflowConfig.from_env()
        machine = SubmissionStateMachine(store)
        payments = PaymentService(store, machine, config)
        return cls(
            store=store,
            submissions=SubmissionService(store, machine),
            reviewers=ReviewerService(store, machine, config),
            decisions=DecisionService(store, machine, payments),
            revisions=RevisionService(store, machine),
            payments=payments,
            publication=PublicationService(store, machine, payments, config),
            dispatcher=NotificationDispatcher(store, config=config),
        )


def get_services() -> WorkflowServices:
    return WorkflowServices.build()


def respond(
    result: WorkflowResult,
    background_tasks: BackgroundTasks,
    services: WorkflowServices,
) -> dict[str, Any]:
    """
    WorkflowResult -> HTTP 响应。

    中文注释:
    - 成功：副作用交给 BackgroundTasks 在响应发出后执行。
    - 失败：按 ErrorKind 映射状态码，detail 带 code/message 以便前端给出具体提示。
    """
    if not result.success:
        assert result.error is not None
        raise HTTPException(
            status_code=ERROR_STATUS.get(result.error.kind, 400),
            detail=result.error.to_dict(),
        )
    if result.effects:
        background_tasks.add_task(services.dispatcher.dispatch, list(result.effects))
    return {"success": True, "data": result.data}
