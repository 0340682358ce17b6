from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ReviewStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DECLINED = "declined"


# 审稿状态只能前进：pending -> accepted -> in_progress -> completed，或 pending -> declined
REVIEW_STATUS_ORDER = {
    ReviewStatus.PENDING: 0,
    ReviewStatus.ACCEPTED: 1,
    ReviewStatus.IN_PROGRESS: 2,
    ReviewStatus.COMPLETED: 3,
    ReviewStatus.DECLINED: 3,
}

OPEN_REVIEW_STATUSES = frozenset({ReviewStatus.PENDING, ReviewStatus.ACCEPTED, ReviewStatus.IN_PROGRESS})


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Recommendation(str, Enum):
    ACCEPT = "accept"
    MINOR_REVISION = "minor_revision"
    MAJOR_REVISION = "major_revision"
    REJECT = "reject"


class AssignReviewerRequest(BaseModel):
    reviewer_id: str = Field(..., min_length=1)
    due_date: Optional[datetime] = Field(None, description="缺省为 REVIEW_DUE_DEFAULT_DAYS 天后")


class InvitationResponse(BaseModel):
    accept: bool
    notes: Optional[str] = None


class ReviewSubmission(BaseModel):
    """审稿报告提交（双通道评论）"""

    recommendation: Recommendation
    # Public (Author-visible)
    author_comments: str = Field(..., min_length=1, description="作者可见意见")
    # Confidential (Editor-only)
    confidential_comments: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)


class ReviewDraft(BaseModel):
    recommendation: Optional[Recommendation] = None
    author_comments: Optional[str] = None
    confidential_comments: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)


class RemoveReviewerRequest(BaseModel):
    reason: Optional[str] = None


class ExtendDeadlineRequest(BaseModel):
    due_date: datetime
    reason: Optional[str] = None
