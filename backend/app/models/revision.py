"""
Revision models

中文注释: 修订循环的请求模型；作者提交修订稿后，文件只能绑定到最新的修订记录。
"""

from typing import Optional

from pydantic import BaseModel, Field


class RevisionCreate(BaseModel):
    """作者提交修订稿"""

    cover_letter: Optional[str] = Field(None, description="修订说明信")
    response_to_reviewers: str = Field(..., min_length=1, description="逐条回复审稿意见")
