from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubmissionStatus(str, Enum):
    """
    投稿生命周期状态枚举（封闭集合）。

    中文注释:
    - 数据库存储为小写字符串；服务层写入前一律经过 normalize_status。
    - 合法流转只由下方 TRANSITIONS 表决定，服务层不得绕过。
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    RETURNED_FOR_FORMATTING = "returned_for_formatting"
    INITIAL_REVIEW = "initial_review"
    UNDER_REVIEW = "under_review"
    REVISION_REQUIRED = "revision_required"
    REVISED = "revised"
    ACCEPTED = "accepted"
    PAYMENT_PENDING = "payment_pending"
    REJECTED = "rejected"
    PUBLISHED = "published"
    WITHDRAWN = "withdrawn"


class WorkflowAction(str, Enum):
    SUBMIT = "submit"
    ASSIGN_EDITOR = "assign_editor"
    INITIAL_SCREENING = "initial_screening"
    ASSIGN_REVIEWER = "assign_reviewer"
    MAKE_DECISION = "make_decision"
    CREATE_REVISION = "create_revision"
    HANDLE_REVISION = "handle_revision"
    REQUEST_PAYMENT = "request_payment"
    CONFIRM_PAYMENT = "confirm_payment"
    PUBLISH = "publish"
    WITHDRAW = "withdraw"
    ADMIN_OVERRIDE = "admin_override"


S = SubmissionStatus

CLOSED_STATUSES = frozenset({S.REJECTED, S.PUBLISHED, S.WITHDRAWN})
DECIDABLE_STATUSES = frozenset({S.UNDER_REVIEW, S.REVISED})
_NON_WITHDRAWABLE = frozenset({S.PUBLISHED, S.WITHDRAWN})

# 唯一的状态流转表：action -> {from_status: {allowed to_status}}
# 自环（from == to）表示操作合法但不改变状态，仍走条件写以校验读到的状态未被并发修改。
TRANSITIONS: dict[WorkflowAction, dict[SubmissionStatus, frozenset[SubmissionStatus]]] = {
    WorkflowAction.SUBMIT: {
        S.DRAFT: frozenset({S.SUBMITTED}),
        S.RETURNED_FOR_FORMATTING: frozenset({S.SUBMITTED}),
    },
    WorkflowAction.ASSIGN_EDITOR: {
        S.SUBMITTED: frozenset({S.INITIAL_REVIEW}),
    },
    WorkflowAction.INITIAL_SCREENING: {
        S.SUBMITTED: frozenset({S.INITIAL_REVIEW, S.REJECTED, S.RETURNED_FOR_FORMATTING}),
        S.INITIAL_REVIEW: frozenset({S.INITIAL_REVIEW, S.REJECTED, S.RETURNED_FOR_FORMATTING}),
    },
    WorkflowAction.ASSIGN_REVIEWER: {
        S.SUBMITTED: frozenset({S.UNDER_REVIEW}),
        S.INITIAL_REVIEW: frozenset({S.UNDER_REVIEW}),
        S.UNDER_REVIEW: frozenset({S.UNDER_REVIEW}),
        S.REVISED: frozenset({S.REVISED}),
    },
    WorkflowAction.MAKE_DECISION: {
        S.UNDER_REVIEW: frozenset({S.ACCEPTED, S.REJECTED, S.REVISION_REQUIRED}),
        S.REVISED: frozenset({S.ACCEPTED, S.REJECTED, S.REVISION_REQUIRED}),
    },
    # revised -> revised：编辑处理前作者可再次提交修订稿，编号继续递增
    WorkflowAction.CREATE_REVISION: {
        S.REVISION_REQUIRED: frozenset({S.REVISED}),
        S.REVISED: frozenset({S.REVISED}),
    },
    WorkflowAction.HANDLE_REVISION: {
        S.REVISED: frozenset({S.ACCEPTED, S.REJECTED, S.UNDER_REVIEW}),
    },
    WorkflowAction.REQUEST_PAYMENT: {
        S.ACCEPTED: frozenset({S.PAYMENT_PENDING}),
        S.PAYMENT_PENDING: frozenset({S.PAYMENT_PENDING}),
    },
    WorkflowAction.CONFIRM_PAYMENT: {
        S.PAYMENT_PENDING: frozenset({S.ACCEPTED}),
    },
    WorkflowAction.PUBLISH: {
        S.ACCEPTED: frozenset({S.PUBLISHED}),
    },
    WorkflowAction.WITHDRAW: {
        status: frozenset({S.WITHDRAWN}) for status in S if status not in _NON_WITHDRAWABLE
    },
    # 管理员兜底：不能离开 published/withdrawn，也不能直接跳到 published（发布必须经过 DOI/付款闸门）
    WorkflowAction.ADMIN_OVERRIDE: {
        status: frozenset(t for t in S if t is not status and t is not S.PUBLISHED)
        for status in S
        if status not in _NON_WITHDRAWABLE
    },
}


def normalize_status(value: str | SubmissionStatus | None) -> SubmissionStatus | None:
    if value is None:
        return None
    if isinstance(value, SubmissionStatus):
        return value
    v = str(value).strip().lower().replace(" ", "_").replace("-", "_")
    if not v:
        return None
    try:
        return SubmissionStatus(v)
    except ValueError:
        return None


def allowed_targets(
    action: WorkflowAction, current: str | SubmissionStatus | None
) -> frozenset[SubmissionStatus]:
    status = normalize_status(current)
    if status is None:
        return frozenset()
    return TRANSITIONS.get(action, {}).get(status, frozenset())


def is_transition_allowed(
    action: WorkflowAction,
    from_status: str | SubmissionStatus | None,
    to_status: str | SubmissionStatus | None,
) -> bool:
    target = normalize_status(to_status)
    return target is not None and target in allowed_targets(action, from_status)


class FileReference(BaseModel):
    """外部存储中的文件引用（核心只保存引用，不处理文件内容）"""

    file_path: str = Field(..., min_length=1, description="Storage 中的路径")
    original_name: str = Field(..., min_length=1)
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)


class CoAuthorIn(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    affiliation: Optional[str] = None
    order: int = Field(0, ge=0)


class SubmissionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    abstract: str = Field(..., min_length=1)
    keywords: list[str] = Field(default_factory=list)
    article_type: Optional[str] = None
    cover_letter: Optional[str] = None
    co_authors: list[CoAuthorIn] = Field(default_factory=list)
    suggested_reviewers: list[str] = Field(default_factory=list)
    excluded_reviewers: list[str] = Field(
        default_factory=list, description="作者回避的审稿人（user id 或邮箱）"
    )
    is_double_blind: bool = Field(False, description="双盲评审：审稿人看不到作者身份")


class ScreeningDecision(str, Enum):
    PROCEED_TO_REVIEW = "proceed_to_review"
    REJECT = "reject"
    RETURN_FOR_FORMATTING = "return_for_formatting"


class ScreeningRequest(BaseModel):
    decision: ScreeningDecision
    comments: Optional[str] = None


class AssignEditorRequest(BaseModel):
    editor_id: str = Field(..., min_length=1)
    is_chief: bool = False


class WithdrawRequest(BaseModel):
    reason: Optional[str] = None


class StatusOverrideRequest(BaseModel):
    status: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, description="管理员越权修改状态必须填写原因")
