from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class EditorialDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    REVISION_REQUIRED = "revision_required"


class RevisionDecision(str, Enum):
    ACCEPT_REVISION = "accept_revision"
    REJECT_REVISION = "reject_revision"
    SEND_FOR_RE_REVIEW = "send_for_re_review"


class DecisionRequest(BaseModel):
    """
    编辑决策请求

    中文注释:
    - comments 对作者可见；confidential_comments 仅编辑可见。
    """

    decision: EditorialDecision = Field(..., description="决策结论")
    comments: str | None = Field(default=None, description="作者可见的决策意见")
    confidential_comments: str | None = Field(default=None, description="仅编辑可见")


class RevisionDecisionRequest(BaseModel):
    decision: RevisionDecision
    comments: str | None = None
